"""Reminder dispatch loop.

Every tick:
1. Scan SCHEDULED, reminder-enabled appointments around now
2. Keep those whose reminder is due (eligibility predicate)
3. Claim each one (SCHEDULED -> REMINDED) and place the reminder call
4. Release the claim if placing the call fails, so a later tick retries

The claim is the only cross-replica coordination: an appointment is
dialed by whichever replica's conditional update lands first.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from outreach_agent.config import SchedulerSettings
from outreach_agent.core.logging import get_logger
from outreach_agent.db.models.core import (
    DEFAULT_TIMEZONE,
    AppointmentModel,
    CallLogModel,
    CallType,
)
from outreach_agent.db.repositories import AppointmentRepository, CallLogRepository, TemplateRepository
from outreach_agent.scheduling.base import LoopConfig, PeriodicLoop
from outreach_agent.scheduling.eligibility import is_valid_phone, should_trigger, skip_reason
from outreach_agent.telephony.base import CallContext, CallRequest, VoiceProvider

log = get_logger(__name__)


@dataclass
class DispatchReport:
    """Counters for one dispatch pass."""

    candidates: int = 0
    eligible: int = 0
    claimed: int = 0
    dispatched: int = 0
    skipped: int = 0
    failed: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "candidates": self.candidates,
            "eligible": self.eligible,
            "claimed": self.claimed,
            "dispatched": self.dispatched,
            "skipped": self.skipped,
            "failed": self.failed,
        }


def reminder_context(appointment: AppointmentModel) -> CallContext:
    """Call context for an appointment's reminder call.

    The customer's own timezone wins over the business timezone for
    reading out the appointment time.
    """
    customer = appointment.customer
    business = appointment.business
    return CallContext(
        call_type=CallType.REMINDER.value,
        business_id=str(appointment.business_id),
        customer_id=str(appointment.customer_id),
        appointment_id=str(appointment.id),
        customer_name=customer.name if customer else None,
        business_name=business.name if business else None,
        business_category=business.category if business else None,
        business_timezone=(
            (customer.timezone if customer else None)
            or (business.timezone if business else None)
            or DEFAULT_TIMEZONE
        ),
        appointment_title=appointment.title,
        appointment_time=appointment.scheduled_at.isoformat(),
        voice=business.voice_preference if business else None,
    )


class ReminderDispatcher(PeriodicLoop):
    """Places reminder calls for appointments whose reminder is due."""

    name = "reminders"

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        provider: VoiceProvider,
        settings: SchedulerSettings | None = None,
    ):
        """Initialize the dispatcher.

        Args:
            session_factory: Async session factory
            provider: Voice provider placing the calls
            settings: Scheduler settings (intervals, scan window)
        """
        self.settings = settings or SchedulerSettings()
        super().__init__(
            LoopConfig(
                interval_seconds=self.settings.reminder_interval_seconds,
                startup_delay_seconds=self.settings.reminder_startup_delay_seconds,
                stop_timeout_seconds=self.settings.stop_timeout_seconds,
            )
        )
        self.session_factory = session_factory
        self.provider = provider

    async def tick(self, now: datetime) -> DispatchReport:
        report = DispatchReport()

        window_start = now - timedelta(minutes=self.settings.reminder_lookback_minutes)
        window_end = now + timedelta(hours=self.settings.reminder_lookahead_hours)

        async with self.session_factory() as session:
            candidates = await AppointmentRepository(session).get_reminder_candidates(
                window_start, window_end
            )
        report.candidates = len(candidates)

        due: list[AppointmentModel] = []
        for appointment in candidates:
            if should_trigger(appointment, now):
                due.append(appointment)
            else:
                log.debug(
                    "Reminder not due",
                    appointment_id=str(appointment.id),
                    reason=skip_reason(appointment, now),
                    scheduled_at=appointment.scheduled_at.isoformat(),
                    reminder_minutes_before=appointment.reminder_minutes_before,
                )
        report.eligible = len(due)

        if not due:
            log.debug("No pending reminders", candidates=report.candidates)
            return report

        log.info("Dispatching reminders", eligible=report.eligible)
        for appointment in due:
            await self._dispatch_one(appointment, report)

        log.info("Reminder pass complete", **report.to_dict())
        return report

    async def _dispatch_one(self, appointment: AppointmentModel, report: DispatchReport) -> None:
        appointment_id = str(appointment.id)
        phone = appointment.customer.phone if appointment.customer else None

        if not is_valid_phone(phone):
            log.warning("Invalid phone, skipping reminder", appointment_id=appointment_id)
            report.skipped += 1
            return

        async with self.session_factory() as session:
            claimed = await AppointmentRepository(session).claim_for_reminder(appointment.id)
            await session.commit()

        if not claimed:
            log.debug("Appointment already claimed", appointment_id=appointment_id)
            report.skipped += 1
            return
        report.claimed += 1

        try:
            await self._place_call(appointment, phone)
        except Exception as e:
            report.failed += 1
            log.error(
                "Reminder call failed, releasing claim",
                appointment_id=appointment_id,
                error=str(e),
                exc_info=True,
            )
            async with self.session_factory() as session:
                await AppointmentRepository(session).release_reminder_claim(appointment.id)
                await session.commit()
            return

        report.dispatched += 1

    async def _place_call(self, appointment: AppointmentModel, phone: str) -> None:
        context = reminder_context(appointment)

        async with self.session_factory() as session:
            template = await TemplateRepository(session).get_reminder_template(
                context.business_category
            )
            request = CallRequest(
                to=phone,
                context=context,
                reference=str(appointment.id),
                template=template.to_dict() if template else None,
                voice=context.voice,
            )

            result = await self.provider.dial(request)

            await CallLogRepository(session).create(
                CallLogModel(
                    business_id=appointment.business_id,
                    customer_id=appointment.customer_id,
                    appointment_id=appointment.id,
                    call_type=CallType.REMINDER.value,
                    provider_call_id=result.call_id,
                    room_name=result.room_name,
                )
            )
            await session.commit()

        log.info(
            "Reminder call placed",
            appointment_id=str(appointment.id),
            provider=result.provider,
            call_id=result.call_id,
            room_name=result.room_name,
        )
