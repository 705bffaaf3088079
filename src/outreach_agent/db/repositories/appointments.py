"""Appointment Repository.

Reminder candidate scans, the SCHEDULED -> REMINDED claim, and the history
queries campaign candidate generators use.
"""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Sequence
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from outreach_agent.db.models.core import AppointmentModel, AppointmentStatus
from outreach_agent.db.repositories.base import BaseRepository


class AppointmentRepository(BaseRepository[AppointmentModel]):
    """Repository for appointment database operations."""

    def __init__(self, session: AsyncSession):
        super().__init__(AppointmentModel, session)

    # ========================================================================
    # Reminder dispatch
    # ========================================================================

    async def get_reminder_candidates(
        self,
        window_start: datetime,
        window_end: datetime,
    ) -> Sequence[AppointmentModel]:
        """SCHEDULED, reminder-enabled appointments inside the scan window.

        Args:
            window_start: Earliest scheduled_at considered (inclusive)
            window_end: Latest scheduled_at considered (inclusive)

        Returns:
            Appointments with customer and business loaded, soonest first
        """
        stmt = (
            select(self._model)
            .where(self._model.status == AppointmentStatus.SCHEDULED.value)
            .where(self._model.reminder_enabled.is_(True))
            .where(self._model.scheduled_at >= window_start)
            .where(self._model.scheduled_at <= window_end)
            .order_by(self._model.scheduled_at)
        )
        result = await self._session.execute(stmt)
        return result.scalars().all()

    async def claim_for_reminder(self, id: UUID | str) -> bool:
        """Claim an appointment for its reminder call (SCHEDULED -> REMINDED)."""
        return await self.transition_status(
            id, AppointmentStatus.SCHEDULED.value, AppointmentStatus.REMINDED.value
        )

    async def release_reminder_claim(self, id: UUID | str) -> bool:
        """Undo a claim after a failed dispatch so the next tick retries it."""
        return await self.transition_status(
            id, AppointmentStatus.REMINDED.value, AppointmentStatus.SCHEDULED.value
        )

    async def set_status(self, id: UUID | str, status: AppointmentStatus) -> bool:
        """Set status unconditionally (call outcomes, agent callbacks)."""
        return await self.update_fields(id, status=status.value)

    # ========================================================================
    # Campaign candidate queries
    # ========================================================================

    async def get_last_appointment_times(self, business_id: UUID) -> dict[UUID, datetime]:
        """Most recent scheduled_at per customer of a business."""
        stmt = (
            select(self._model.customer_id, func.max(self._model.scheduled_at))
            .where(self._model.business_id == business_id)
            .group_by(self._model.customer_id)
        )
        result = await self._session.execute(stmt)
        latest: dict[UUID, datetime] = {}
        for customer_id, scheduled_at in result.all():
            if scheduled_at is None:
                continue
            if scheduled_at.tzinfo is None:
                scheduled_at = scheduled_at.replace(tzinfo=timezone.utc)
            latest[customer_id] = scheduled_at
        return latest

    async def get_customers_with_upcoming(self, business_id: UUID, now: datetime) -> set[UUID]:
        """Customers holding a future SCHEDULED or CONFIRMED appointment."""
        stmt = (
            select(self._model.customer_id)
            .where(self._model.business_id == business_id)
            .where(
                self._model.status.in_(
                    [AppointmentStatus.SCHEDULED.value, AppointmentStatus.CONFIRMED.value]
                )
            )
            .where(self._model.scheduled_at > now)
            .distinct()
        )
        result = await self._session.execute(stmt)
        return set(result.scalars().all())

    async def get_customers_with_status_between(
        self,
        business_id: UUID,
        status: AppointmentStatus,
        since: datetime,
        until: datetime,
    ) -> set[UUID]:
        """Customers with an appointment in ``status`` scheduled in [since, until]."""
        stmt = (
            select(self._model.customer_id)
            .where(self._model.business_id == business_id)
            .where(self._model.status == status.value)
            .where(self._model.scheduled_at >= since)
            .where(self._model.scheduled_at <= until)
            .distinct()
        )
        result = await self._session.execute(stmt)
        return set(result.scalars().all())
