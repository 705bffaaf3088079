"""Repositories over the async session."""

from outreach_agent.db.repositories.appointments import AppointmentRepository
from outreach_agent.db.repositories.base import BaseRepository
from outreach_agent.db.repositories.calls import CallLogRepository
from outreach_agent.db.repositories.campaigns import CampaignCallRepository, CampaignRepository
from outreach_agent.db.repositories.customers import BusinessRepository, CustomerRepository
from outreach_agent.db.repositories.templates import TemplateRepository

__all__ = [
    "AppointmentRepository",
    "BaseRepository",
    "BusinessRepository",
    "CallLogRepository",
    "CampaignCallRepository",
    "CampaignRepository",
    "CustomerRepository",
    "TemplateRepository",
]
