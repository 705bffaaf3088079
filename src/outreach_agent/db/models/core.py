"""Core ORM models: businesses, customers, appointments and call logs."""
from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any
from uuid import UUID

from sqlalchemy import JSON, Boolean, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from outreach_agent.db.base import Base, TimestampMixin, UTCDateTime, UUIDMixin


DEFAULT_TIMEZONE = "America/Los_Angeles"
DEFAULT_VOICE = "Aoede"


class BusinessCategory(str, Enum):
    """Business verticals with dedicated call templates."""

    DENTAL = "DENTAL"
    MEDICAL = "MEDICAL"
    SALON = "SALON"
    BARBERSHOP = "BARBERSHOP"
    SPA = "SPA"
    FITNESS = "FITNESS"
    AUTO = "AUTO"
    VETERINARY = "VETERINARY"
    OTHER = "OTHER"


class AppointmentStatus(str, Enum):
    """Appointment lifecycle."""

    SCHEDULED = "SCHEDULED"
    REMINDED = "REMINDED"
    CONFIRMED = "CONFIRMED"
    RESCHEDULED = "RESCHEDULED"
    CANCELED = "CANCELED"
    COMPLETED = "COMPLETED"
    NO_SHOW = "NO_SHOW"


class CallType(str, Enum):
    """Why a call was placed."""

    REMINDER = "REMINDER"
    TEST = "TEST"
    FOLLOW_UP = "FOLLOW_UP"
    CONFIRMATION = "CONFIRMATION"
    RE_ENGAGEMENT = "RE_ENGAGEMENT"
    REVIEW_COLLECTION = "REVIEW_COLLECTION"
    NO_SHOW_FOLLOWUP = "NO_SHOW_FOLLOWUP"


class CallOutcome(str, Enum):
    """Recorded outcome of a call."""

    ANSWERED = "ANSWERED"
    NO_ANSWER = "NO_ANSWER"
    VOICEMAIL = "VOICEMAIL"
    BUSY = "BUSY"
    FAILED = "FAILED"
    CONFIRMED = "CONFIRMED"
    RESCHEDULED = "RESCHEDULED"
    CANCELED = "CANCELED"
    BOOKED = "BOOKED"
    DECLINED = "DECLINED"
    REVIEW_SENT = "REVIEW_SENT"
    ERROR = "ERROR"


class BusinessModel(Base, UUIDMixin, TimestampMixin):
    """A business placing calls to its customers."""

    __tablename__ = "businesses"

    name: Mapped[str] = mapped_column(String(200), nullable=False)
    phone: Mapped[str | None] = mapped_column(String(32), nullable=True)
    category: Mapped[str] = mapped_column(
        String(32),
        nullable=False,
        default=BusinessCategory.OTHER.value,
        comment="Template category, OTHER is the generic fallback",
    )
    timezone: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
        default=DEFAULT_TIMEZONE,
        comment="IANA timezone of the business",
    )
    voice_preference: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
        default=DEFAULT_VOICE,
    )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": str(self.id),
            "name": self.name,
            "phone": self.phone,
            "category": self.category,
            "timezone": self.timezone,
            "voice_preference": self.voice_preference,
        }


class CustomerModel(Base, UUIDMixin, TimestampMixin):
    """A customer of a business."""

    __tablename__ = "customers"

    business_id: Mapped[UUID] = mapped_column(
        ForeignKey("businesses.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    phone: Mapped[str | None] = mapped_column(String(32), nullable=True)
    email: Mapped[str | None] = mapped_column(String(320), nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    timezone: Mapped[str | None] = mapped_column(
        String(64),
        nullable=True,
        comment="Overrides the business timezone when set",
    )

    business: Mapped[BusinessModel] = relationship(lazy="joined")

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": str(self.id),
            "business_id": str(self.business_id),
            "name": self.name,
            "phone": self.phone,
            "email": self.email,
            "timezone": self.timezone,
        }


class AppointmentModel(Base, UUIDMixin, TimestampMixin):
    """A scheduled appointment that may receive a reminder call."""

    __tablename__ = "appointments"

    business_id: Mapped[UUID] = mapped_column(
        ForeignKey("businesses.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    customer_id: Mapped[UUID] = mapped_column(
        ForeignKey("customers.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    scheduled_at: Mapped[datetime] = mapped_column(
        UTCDateTime(),
        nullable=False,
        index=True,
    )
    duration_min: Mapped[int] = mapped_column(Integer, nullable=False, default=30)
    reminder_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    reminder_minutes_before: Mapped[int | None] = mapped_column(
        Integer,
        nullable=True,
        comment="Reminder lead time, NULL means the default lead",
    )
    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=AppointmentStatus.SCHEDULED.value,
        index=True,
    )

    business: Mapped[BusinessModel] = relationship(lazy="joined")
    customer: Mapped[CustomerModel] = relationship(lazy="joined")

    __table_args__ = (
        Index("ix_appointments_status_scheduled", "status", "scheduled_at"),
    )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": str(self.id),
            "business_id": str(self.business_id),
            "customer_id": str(self.customer_id),
            "title": self.title,
            "description": self.description,
            "scheduled_at": self.scheduled_at.isoformat() if self.scheduled_at else None,
            "duration_min": self.duration_min,
            "reminder_enabled": self.reminder_enabled,
            "reminder_minutes_before": self.reminder_minutes_before,
            "status": self.status,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


class CallLogModel(Base, UUIDMixin, TimestampMixin):
    """One placed call and everything learned from it."""

    __tablename__ = "call_logs"

    business_id: Mapped[UUID] = mapped_column(
        ForeignKey("businesses.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    customer_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("customers.id", ondelete="SET NULL"),
        nullable=True,
    )
    appointment_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("appointments.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    campaign_call_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("campaign_calls.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )

    call_type: Mapped[str] = mapped_column(String(32), nullable=False)
    call_outcome: Mapped[str | None] = mapped_column(String(32), nullable=True)
    call_state: Mapped[str | None] = mapped_column(
        String(32),
        nullable=True,
        comment="Call event state machine phase",
    )
    duration_sec: Mapped[int | None] = mapped_column(Integer, nullable=True)

    provider_call_id: Mapped[str | None] = mapped_column(
        String(256),
        nullable=True,
        index=True,
        comment="Provider correlation handle (call control id / SIP call id)",
    )
    room_name: Mapped[str | None] = mapped_column(String(256), nullable=True, index=True)

    transcript: Mapped[list[dict[str, Any]] | None] = mapped_column(JSON, nullable=True)
    summary: Mapped[str | None] = mapped_column(Text, nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    appointment: Mapped[AppointmentModel | None] = relationship(lazy="joined")

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": str(self.id),
            "business_id": str(self.business_id),
            "customer_id": str(self.customer_id) if self.customer_id else None,
            "appointment_id": str(self.appointment_id) if self.appointment_id else None,
            "campaign_call_id": str(self.campaign_call_id) if self.campaign_call_id else None,
            "call_type": self.call_type,
            "call_outcome": self.call_outcome,
            "call_state": self.call_state,
            "duration_sec": self.duration_sec,
            "provider_call_id": self.provider_call_id,
            "room_name": self.room_name,
            "transcript": self.transcript,
            "summary": self.summary,
            "notes": self.notes,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
