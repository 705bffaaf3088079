"""Database models.

Core Models:
- BusinessModel, CustomerModel, AppointmentModel, CallLogModel

Campaign Models:
- CampaignModel: campaign definition, window and backpressure knobs
- CampaignCallModel: queued/claimed campaign work

Template Models:
- ReminderTemplateModel, CampaignTemplateModel
"""

from outreach_agent.db.models.core import (
    AppointmentModel,
    AppointmentStatus,
    BusinessCategory,
    BusinessModel,
    CallLogModel,
    CallOutcome,
    CallType,
    CustomerModel,
)
from outreach_agent.db.models.campaigns import (
    CampaignCallModel,
    CampaignCallStatus,
    CampaignModel,
    CampaignType,
)
from outreach_agent.db.models.templates import (
    CampaignTemplateModel,
    ReminderTemplateModel,
)

__all__ = [
    "AppointmentModel",
    "AppointmentStatus",
    "BusinessCategory",
    "BusinessModel",
    "CallLogModel",
    "CallOutcome",
    "CallType",
    "CampaignCallModel",
    "CampaignCallStatus",
    "CampaignModel",
    "CampaignTemplateModel",
    "CampaignType",
    "CustomerModel",
    "ReminderTemplateModel",
]
