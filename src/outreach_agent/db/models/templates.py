"""Script template models.

Templates hold placeholder text ({customer_name}, {business_name},
{appointment_time}, ...) rendered per call. Category OTHER is the generic
fallback when a business category has no dedicated template.
"""
from __future__ import annotations

from typing import Any

from sqlalchemy import String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from outreach_agent.db.base import Base, TimestampMixin, UUIDMixin


class ReminderTemplateModel(Base, UUIDMixin, TimestampMixin):
    """Reminder call script for one business category."""

    __tablename__ = "reminder_templates"

    category: Mapped[str] = mapped_column(String(32), nullable=False, unique=True)
    system_prompt: Mapped[str] = mapped_column(Text, nullable=False)
    greeting: Mapped[str] = mapped_column(Text, nullable=False)
    confirmation_ask: Mapped[str] = mapped_column(Text, nullable=False)
    reschedule_ask: Mapped[str] = mapped_column(Text, nullable=False)
    closing: Mapped[str] = mapped_column(Text, nullable=False)
    voicemail: Mapped[str] = mapped_column(Text, nullable=False)

    def to_dict(self) -> dict[str, Any]:
        return {
            "category": self.category,
            "system_prompt": self.system_prompt,
            "greeting": self.greeting,
            "confirmation_ask": self.confirmation_ask,
            "reschedule_ask": self.reschedule_ask,
            "closing": self.closing,
            "voicemail": self.voicemail,
        }


class CampaignTemplateModel(Base, UUIDMixin, TimestampMixin):
    """Campaign call script for one (campaign type, business category)."""

    __tablename__ = "campaign_templates"

    campaign_type: Mapped[str] = mapped_column(String(32), nullable=False)
    business_category: Mapped[str] = mapped_column(String(32), nullable=False)
    system_prompt: Mapped[str] = mapped_column(Text, nullable=False)
    greeting: Mapped[str] = mapped_column(Text, nullable=False)
    goal_prompt: Mapped[str] = mapped_column(Text, nullable=False)
    closing: Mapped[str] = mapped_column(Text, nullable=False)
    voicemail: Mapped[str] = mapped_column(Text, nullable=False)

    __table_args__ = (
        UniqueConstraint(
            "campaign_type", "business_category", name="uq_campaign_template_type_category"
        ),
    )

    def to_dict(self) -> dict[str, Any]:
        return {
            "campaign_type": self.campaign_type,
            "business_category": self.business_category,
            "system_prompt": self.system_prompt,
            "greeting": self.greeting,
            "goal_prompt": self.goal_prompt,
            "closing": self.closing,
            "voicemail": self.voicemail,
        }
