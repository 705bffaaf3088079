"""Campaign ORM models.

A business owns at most one campaign per campaign type. The campaign loop
turns eligible customers into QUEUED campaign calls and dispatches them
inside the campaign's local call window.
"""
from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any
from uuid import UUID

from sqlalchemy import JSON, Boolean, ForeignKey, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from outreach_agent.db.base import Base, TimestampMixin, UTCDateTime, UUIDMixin
from outreach_agent.db.models.core import BusinessModel, CallType, CustomerModel


DEFAULT_WINDOW_START = "09:00"
DEFAULT_WINDOW_END = "17:00"
DEFAULT_ALLOWED_DAYS = "MON,TUE,WED,THU,FRI"


class CampaignType(str, Enum):
    """Recurring outreach campaign kinds."""

    RE_ENGAGEMENT = "RE_ENGAGEMENT"
    REVIEW_COLLECTION = "REVIEW_COLLECTION"
    NO_SHOW_FOLLOWUP = "NO_SHOW_FOLLOWUP"

    @property
    def call_type(self) -> CallType:
        """Call log type recorded for calls of this campaign."""
        return CallType(self.value)


class CampaignCallStatus(str, Enum):
    """Campaign call lifecycle."""

    PENDING = "PENDING"
    QUEUED = "QUEUED"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    SKIPPED = "SKIPPED"
    FAILED = "FAILED"


class CampaignModel(Base, UUIDMixin, TimestampMixin):
    """Campaign definition and its scheduling knobs."""

    __tablename__ = "campaigns"

    business_id: Mapped[UUID] = mapped_column(
        ForeignKey("businesses.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    campaign_type: Mapped[str] = mapped_column(String(32), nullable=False)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    settings: Mapped[dict[str, Any]] = mapped_column(
        JSON,
        nullable=False,
        default=dict,
        comment="Type-specific knobs, e.g. days_since_last_appointment",
    )

    # Call window in the business's local time, HH:MM, inclusive
    call_window_start: Mapped[str] = mapped_column(
        String(5), nullable=False, default=DEFAULT_WINDOW_START
    )
    call_window_end: Mapped[str] = mapped_column(
        String(5), nullable=False, default=DEFAULT_WINDOW_END
    )
    allowed_days: Mapped[str] = mapped_column(
        String(32),
        nullable=False,
        default=DEFAULT_ALLOWED_DAYS,
        comment="Comma separated MON..SUN",
    )

    max_concurrent_calls: Mapped[int] = mapped_column(Integer, nullable=False, default=2)
    min_minutes_between_calls: Mapped[int] = mapped_column(Integer, nullable=False, default=5)
    cycle_frequency_days: Mapped[int] = mapped_column(Integer, nullable=False, default=30)

    last_run_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    next_run_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)

    business: Mapped[BusinessModel] = relationship(lazy="joined")

    __table_args__ = (
        UniqueConstraint("business_id", "campaign_type", name="uq_campaign_business_type"),
    )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": str(self.id),
            "business_id": str(self.business_id),
            "campaign_type": self.campaign_type,
            "name": self.name,
            "enabled": self.enabled,
            "settings": self.settings,
            "call_window_start": self.call_window_start,
            "call_window_end": self.call_window_end,
            "allowed_days": self.allowed_days,
            "max_concurrent_calls": self.max_concurrent_calls,
            "min_minutes_between_calls": self.min_minutes_between_calls,
            "cycle_frequency_days": self.cycle_frequency_days,
            "last_run_at": self.last_run_at.isoformat() if self.last_run_at else None,
            "next_run_at": self.next_run_at.isoformat() if self.next_run_at else None,
        }


class CampaignCallModel(Base, UUIDMixin, TimestampMixin):
    """One unit of campaign work: call this customer at or after scheduled_for."""

    __tablename__ = "campaign_calls"

    campaign_id: Mapped[UUID] = mapped_column(
        ForeignKey("campaigns.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    customer_id: Mapped[UUID] = mapped_column(
        ForeignKey("customers.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    business_id: Mapped[UUID] = mapped_column(
        ForeignKey("businesses.id", ondelete="CASCADE"),
        nullable=False,
    )
    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=CampaignCallStatus.QUEUED.value,
        index=True,
    )
    skip_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    result_data: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)

    scheduled_for: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    started_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)

    customer: Mapped[CustomerModel] = relationship(lazy="joined")

    __table_args__ = (
        Index("ix_campaign_calls_campaign_status", "campaign_id", "status", "scheduled_for"),
    )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": str(self.id),
            "campaign_id": str(self.campaign_id),
            "customer_id": str(self.customer_id),
            "business_id": str(self.business_id),
            "status": self.status,
            "skip_reason": self.skip_reason,
            "result_data": self.result_data,
            "scheduled_for": self.scheduled_for.isoformat() if self.scheduled_for else None,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
        }
