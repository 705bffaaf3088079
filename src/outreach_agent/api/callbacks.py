"""Agent callback endpoints.

Called by conversational agents during and after a call to record what
happened: appointment confirmations, reschedule requests, transcripts,
campaign results and bookings, and agent errors.

All endpoints require the internal API key (see auth.py).
"""

from __future__ import annotations

from datetime import datetime
from typing import Annotated, Any
from uuid import UUID

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel, Field, field_validator
from sqlalchemy.ext.asyncio import AsyncSession

from outreach_agent.api.auth import InternalAuth
from outreach_agent.api.rate_limits import RateLimits, limiter
from outreach_agent.conversation.analysis import TranscriptAnalyzer
from outreach_agent.core.exceptions import RecordNotFoundError, ValidationError
from outreach_agent.core.logging import get_logger
from outreach_agent.db.models import (
    AppointmentModel,
    AppointmentStatus,
    CallOutcome,
)
from outreach_agent.db.repositories import (
    AppointmentRepository,
    CallLogRepository,
    CampaignCallRepository,
    CustomerRepository,
)
from outreach_agent.dependencies import get_db, get_transcript_analyzer

log = get_logger(__name__)

router = APIRouter(dependencies=[InternalAuth])


# ============================================================================
# Request Models
# ============================================================================

MAX_NOTE_LENGTH = 2000
MAX_TRANSCRIPT_MESSAGES = 1000
MAX_AGENT_ERROR_LENGTH = 500

# Statuses an agent may set directly
SETTABLE_STATUSES = (
    AppointmentStatus.SCHEDULED,
    AppointmentStatus.CONFIRMED,
    AppointmentStatus.RESCHEDULED,
    AppointmentStatus.CANCELED,
    AppointmentStatus.COMPLETED,
    AppointmentStatus.NO_SHOW,
)

# Appointment status -> call outcome recorded on the linked call log
STATUS_OUTCOMES = {
    AppointmentStatus.CONFIRMED: CallOutcome.CONFIRMED,
    AppointmentStatus.CANCELED: CallOutcome.CANCELED,
    AppointmentStatus.RESCHEDULED: CallOutcome.RESCHEDULED,
}

# Outcomes a campaign agent may report
CAMPAIGN_OUTCOMES = frozenset(
    {
        CallOutcome.ANSWERED.value,
        CallOutcome.NO_ANSWER.value,
        CallOutcome.VOICEMAIL.value,
        CallOutcome.BUSY.value,
        CallOutcome.FAILED.value,
        CallOutcome.BOOKED.value,
        CallOutcome.DECLINED.value,
        CallOutcome.REVIEW_SENT.value,
    }
)


class StatusUpdateRequest(BaseModel):
    """Appointment status reported by an agent."""

    status: str = Field(..., max_length=20)
    notes: str | None = Field(default=None, max_length=MAX_NOTE_LENGTH)
    call_log_id: UUID | None = None

    @field_validator("status")
    @classmethod
    def validate_status(cls, v: str) -> str:
        status = v.strip().upper()
        allowed = [s.value for s in SETTABLE_STATUSES]
        if status not in allowed:
            raise ValueError(f"Invalid status. Must be one of: {', '.join(allowed)}")
        return status


class RescheduleRequest(BaseModel):
    """Customer asked to move the appointment."""

    preferred_time: str | None = Field(default=None, max_length=200)
    reason: str | None = Field(default=None, max_length=MAX_NOTE_LENGTH)
    call_log_id: UUID | None = None


class TranscriptRequest(BaseModel):
    """End-of-call transcript from a conversational agent."""

    transcript: list[dict[str, Any]] | None = Field(
        default=None, max_length=MAX_TRANSCRIPT_MESSAGES
    )
    summary: str | None = Field(default=None, max_length=MAX_NOTE_LENGTH)
    duration_sec: int | None = Field(default=None, ge=0)
    call_outcome: str | None = Field(default=None, max_length=32)


class AgentErrorRequest(BaseModel):
    """Agent crash or error report."""

    error: str | None = Field(default=None, max_length=10000)
    timestamp: str | None = Field(default=None, max_length=64)


class CampaignResultRequest(BaseModel):
    """Outcome of a campaign call reported by the agent."""

    outcome: str | None = Field(default=None, max_length=32)
    result_data: dict[str, Any] | None = None
    summary: str | None = Field(default=None, max_length=MAX_NOTE_LENGTH)

    @field_validator("result_data")
    @classmethod
    def validate_result_size(cls, v: dict[str, Any] | None) -> dict[str, Any] | None:
        if v is not None and len(v) > 50:
            raise ValueError("result_data cannot have more than 50 keys")
        return v


class CampaignBookingRequest(BaseModel):
    """Appointment booked by the agent during a campaign call."""

    campaign_call_id: UUID | None = None
    customer_id: UUID
    business_id: UUID
    title: str = Field(..., min_length=1, max_length=200)
    scheduled_at: datetime
    duration_min: int = Field(default=30, ge=5, le=480)


# ============================================================================
# Dependencies
# ============================================================================


async def get_appointment_repository(
    session: Annotated[AsyncSession, Depends(get_db)]
) -> AppointmentRepository:
    """Get appointment repository instance."""
    return AppointmentRepository(session)


async def get_call_log_repository(
    session: Annotated[AsyncSession, Depends(get_db)]
) -> CallLogRepository:
    """Get call log repository instance."""
    return CallLogRepository(session)


async def get_campaign_call_repository(
    session: Annotated[AsyncSession, Depends(get_db)]
) -> CampaignCallRepository:
    """Get campaign call repository instance."""
    return CampaignCallRepository(session)


def _campaign_outcome(outcome: str | None) -> str:
    """Reported campaign outcome, or ANSWERED when missing or unknown."""
    if outcome and outcome.strip().upper() in CAMPAIGN_OUTCOMES:
        return outcome.strip().upper()
    return CallOutcome.ANSWERED.value


def _agent_outcome(outcome: str | None) -> str | None:
    if not outcome:
        return None
    value = outcome.strip().upper()
    if value not in CallOutcome.__members__:
        log.warning("Ignoring unknown agent call outcome", call_outcome=outcome)
        return None
    return value


# ============================================================================
# Appointment Callbacks
# ============================================================================


@router.patch("/appointments/{appointment_id}/status")
@limiter.limit(RateLimits.WRITE)
async def update_appointment_status(
    request: Request,
    appointment_id: UUID,
    body: StatusUpdateRequest,
    appointments: Annotated[AppointmentRepository, Depends(get_appointment_repository)],
) -> dict[str, Any]:
    """Set an appointment's status, optionally recording the call outcome.

    With ``call_log_id`` the linked call log gets the matching outcome
    (CONFIRMED, CANCELED, RESCHEDULED, otherwise ANSWERED) and the notes
    as its summary.
    """
    appointment = await appointments.get_or_raise(appointment_id)
    status = AppointmentStatus(body.status)

    log.info(
        "Updating appointment status",
        appointment_id=str(appointment_id),
        status=status.value,
        call_log_id=str(body.call_log_id) if body.call_log_id else None,
    )
    await appointments.set_status(appointment_id, status)

    if body.call_log_id:
        outcome = STATUS_OUTCOMES.get(status, CallOutcome.ANSWERED)
        await CallLogRepository(appointments.session).update_fields(
            body.call_log_id,
            call_outcome=outcome.value,
            summary=body.notes,
        )

    await appointments.session.refresh(appointment)
    return {"success": True, "appointment": appointment.to_dict()}


@router.post("/appointments/{appointment_id}/reschedule")
@limiter.limit(RateLimits.WRITE)
async def request_reschedule(
    request: Request,
    appointment_id: UUID,
    body: RescheduleRequest,
    appointments: Annotated[AppointmentRepository, Depends(get_appointment_repository)],
) -> dict[str, Any]:
    """Mark an appointment RESCHEDULED and append the request to its notes."""
    appointment = await appointments.get_or_raise(appointment_id)
    reason = body.reason or "Not specified"

    log.info(
        "Reschedule requested",
        appointment_id=str(appointment_id),
        preferred_time=body.preferred_time,
        call_log_id=str(body.call_log_id) if body.call_log_id else None,
    )

    note = f"[RESCHEDULE REQUESTED] Preferred time: {body.preferred_time}. Reason: {reason}"
    description = f"{appointment.description}\n\n{note}" if appointment.description else note

    await appointments.update_fields(
        appointment_id,
        status=AppointmentStatus.RESCHEDULED.value,
        description=description,
    )

    if body.call_log_id:
        await CallLogRepository(appointments.session).update_fields(
            body.call_log_id,
            call_outcome=CallOutcome.RESCHEDULED.value,
            summary=(
                "Customer requested to reschedule. "
                f"Preferred time: {body.preferred_time}. Reason: {reason}"
            ),
        )

    await appointments.session.refresh(appointment)
    return {"success": True, "appointment": appointment.to_dict()}


@router.post("/appointments/create-from-campaign", status_code=201)
@limiter.limit(RateLimits.WRITE)
async def create_appointment_from_campaign(
    request: Request,
    body: CampaignBookingRequest,
    appointments: Annotated[AppointmentRepository, Depends(get_appointment_repository)],
) -> dict[str, Any]:
    """Create the appointment an agent booked during a campaign call.

    The campaign call's result data records the booking.
    """
    customer = await CustomerRepository(appointments.session).get(body.customer_id)
    if customer is None:
        raise RecordNotFoundError("Customer not found", details={"id": str(body.customer_id)})
    if customer.business_id != body.business_id:
        raise ValidationError(
            "Customer does not belong to business",
            details={"customer_id": str(body.customer_id), "business_id": str(body.business_id)},
        )

    log.info(
        "Creating appointment from campaign call",
        campaign_call_id=str(body.campaign_call_id) if body.campaign_call_id else None,
        customer_id=str(body.customer_id),
        scheduled_at=body.scheduled_at.isoformat(),
    )

    appointment = await appointments.create(
        AppointmentModel(
            business_id=body.business_id,
            customer_id=body.customer_id,
            title=body.title,
            scheduled_at=body.scheduled_at,
            duration_min=body.duration_min,
            status=AppointmentStatus.SCHEDULED.value,
            reminder_enabled=True,
        )
    )

    if body.campaign_call_id:
        await CampaignCallRepository(appointments.session).update_fields(
            body.campaign_call_id,
            result_data={"booked_appointment": True, "appointment_id": str(appointment.id)},
        )

    return {"success": True, "appointment": appointment.to_dict()}


# ============================================================================
# Call Callbacks
# ============================================================================


@router.get("/calls/by-room/{room_name}")
@limiter.limit(RateLimits.READ)
async def get_call_by_room(
    request: Request,
    room_name: str,
    calls: Annotated[CallLogRepository, Depends(get_call_log_repository)],
) -> dict[str, Any]:
    """Call log for an agent room."""
    call = await calls.get_by_room_name(room_name)
    if call is None:
        raise RecordNotFoundError("Call not found for this room", details={"room_name": room_name})
    return {"call": call.to_dict()}


@router.post("/calls/by-room/{room_name}/error")
@limiter.limit(RateLimits.WRITE)
async def report_agent_error(
    request: Request,
    room_name: str,
    body: AgentErrorRequest,
    calls: Annotated[CallLogRepository, Depends(get_call_log_repository)],
) -> dict[str, Any]:
    """Record an agent error against the room's call log, if there is one."""
    error = body.error or ""
    log.error("Agent error report", room_name=room_name, error=error, reported_at=body.timestamp)

    call = await calls.get_by_room_name(room_name)
    if call is not None:
        await calls.update_fields(
            call.id,
            notes=f"Agent error: {error[:MAX_AGENT_ERROR_LENGTH]}",
            call_outcome=CallOutcome.ERROR.value,
        )
    return {"ok": True}


@router.post("/calls/{call_id}/transcript")
@limiter.limit(RateLimits.WRITE)
async def save_transcript(
    request: Request,
    call_id: UUID,
    body: TranscriptRequest,
    calls: Annotated[CallLogRepository, Depends(get_call_log_repository)],
    analyzer: Annotated[TranscriptAnalyzer, Depends(get_transcript_analyzer)],
) -> dict[str, Any]:
    """Store a call transcript.

    Transcript analysis, when it succeeds, supersedes the agent-provided
    summary and outcome.
    """
    call = await calls.get_or_raise(call_id)
    log.info(
        "Saving transcript",
        call_id=str(call_id),
        duration_sec=body.duration_sec,
        call_outcome=body.call_outcome,
    )

    analysis = await analyzer.analyze(body.transcript)
    if analysis is not None:
        summary, outcome = analysis.summary, analysis.outcome
        log.info("Using transcript analysis", call_id=str(call_id), call_outcome=outcome)
    else:
        summary, outcome = body.summary, _agent_outcome(body.call_outcome)
        log.info("Using agent-provided summary", call_id=str(call_id), call_outcome=outcome)

    values: dict[str, Any] = {"transcript": body.transcript, "summary": summary}
    if body.duration_sec is not None:
        values["duration_sec"] = body.duration_sec
    if outcome:
        values["call_outcome"] = outcome
    await calls.update_fields(call_id, **values)

    await calls.session.refresh(call)
    return {"success": True, "call": call.to_dict()}


# ============================================================================
# Campaign Callbacks
# ============================================================================


@router.post("/campaign-calls/{campaign_call_id}/result")
@limiter.limit(RateLimits.WRITE)
async def report_campaign_result(
    request: Request,
    campaign_call_id: UUID,
    body: CampaignResultRequest,
    campaign_calls: Annotated[CampaignCallRepository, Depends(get_campaign_call_repository)],
) -> dict[str, Any]:
    """Complete a campaign call and record its outcome on the call log."""
    campaign_call = await campaign_calls.get_or_raise(campaign_call_id)
    log.info(
        "Campaign call result reported",
        campaign_call_id=str(campaign_call_id),
        outcome=body.outcome,
    )

    await campaign_calls.complete(campaign_call_id, body.result_data or {})

    calls = CallLogRepository(campaign_calls.session)
    call = await calls.get_by_campaign_call_id(campaign_call_id)
    if call is not None:
        await calls.update_fields(
            call.id,
            call_outcome=_campaign_outcome(body.outcome),
            summary=body.summary,
        )

    await campaign_calls.session.refresh(campaign_call)
    return {"success": True, "campaign_call": campaign_call.to_dict()}
