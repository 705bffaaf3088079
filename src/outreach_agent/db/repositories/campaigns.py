"""Campaign and campaign call repositories."""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Sequence
from uuid import UUID

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from outreach_agent.core.exceptions import CampaignAlreadyExistsError
from outreach_agent.db.models.campaigns import (
    CampaignCallModel,
    CampaignCallStatus,
    CampaignModel,
)
from outreach_agent.db.repositories.base import BaseRepository


class CampaignRepository(BaseRepository[CampaignModel]):
    """Campaign definitions."""

    def __init__(self, session: AsyncSession):
        super().__init__(CampaignModel, session)

    async def get_enabled(self) -> Sequence[CampaignModel]:
        """Enabled campaigns with their business loaded."""
        stmt = (
            select(self._model)
            .where(self._model.enabled.is_(True))
            .order_by(self._model.created_at)
        )
        result = await self._session.execute(stmt)
        return result.scalars().all()

    async def get_for_business(self, business_id: UUID, campaign_type: str) -> CampaignModel | None:
        stmt = (
            select(self._model)
            .where(self._model.business_id == business_id)
            .where(self._model.campaign_type == campaign_type)
        )
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def create_for_business(self, campaign: CampaignModel) -> CampaignModel:
        """Create a campaign, enforcing one per (business, campaign type).

        Raises:
            CampaignAlreadyExistsError: If the business already has one
        """
        existing = await self.get_for_business(campaign.business_id, campaign.campaign_type)
        if existing is not None:
            raise CampaignAlreadyExistsError(
                "Business already has a campaign of this type",
                details={
                    "business_id": str(campaign.business_id),
                    "campaign_type": campaign.campaign_type,
                },
            )
        try:
            return await self.create(campaign)
        except IntegrityError as e:
            # Lost a race with a concurrent create
            await self._session.rollback()
            raise CampaignAlreadyExistsError(
                "Business already has a campaign of this type",
                details={
                    "business_id": str(campaign.business_id),
                    "campaign_type": campaign.campaign_type,
                },
                cause=e,
            ) from e

    async def claim_evaluation(
        self,
        id: UUID,
        seen_next_run_at: datetime | None,
        last_run_at: datetime,
        next_run_at: datetime,
    ) -> bool:
        """Advance the cycle only if ``next_run_at`` is still what the caller read.

        Replicas evaluating the same due campaign race on this update; the
        one that sees an affected row owns this cycle and queues its calls.

        Returns:
            True if this caller claimed the evaluation
        """
        column = self._model.next_run_at
        seen = column.is_(None) if seen_next_run_at is None else column == seen_next_run_at
        stmt = (
            update(self._model)
            .where(self._model.id == id)
            .where(seen)
            .values(last_run_at=last_run_at, next_run_at=next_run_at)
            .execution_options(synchronize_session=False)
        )
        result = await self._session.execute(stmt)
        return result.rowcount == 1


class CampaignCallRepository(BaseRepository[CampaignCallModel]):
    """Campaign work items and their status transitions."""

    def __init__(self, session: AsyncSession):
        super().__init__(CampaignCallModel, session)

    # ========================================================================
    # Dispatch queries
    # ========================================================================

    async def get_due_queued(self, campaign_id: UUID, now: datetime) -> Sequence[CampaignCallModel]:
        """QUEUED calls whose scheduled_for has arrived, earliest first."""
        stmt = (
            select(self._model)
            .where(self._model.campaign_id == campaign_id)
            .where(self._model.status == CampaignCallStatus.QUEUED.value)
            .where(self._model.scheduled_for <= now)
            .order_by(self._model.scheduled_for)
        )
        result = await self._session.execute(stmt)
        return result.scalars().all()

    async def count_in_progress(self, campaign_id: UUID) -> int:
        stmt = (
            select(func.count())
            .select_from(self._model)
            .where(self._model.campaign_id == campaign_id)
            .where(self._model.status == CampaignCallStatus.IN_PROGRESS.value)
        )
        result = await self._session.execute(stmt)
        return result.scalar_one()

    async def get_last_started_at(self, campaign_id: UUID) -> datetime | None:
        """Most recent started_at among IN_PROGRESS and COMPLETED calls."""
        stmt = (
            select(self._model.started_at)
            .where(self._model.campaign_id == campaign_id)
            .where(
                self._model.status.in_(
                    [CampaignCallStatus.IN_PROGRESS.value, CampaignCallStatus.COMPLETED.value]
                )
            )
            .where(self._model.started_at.is_not(None))
            .order_by(self._model.started_at.desc())
            .limit(1)
        )
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_recently_contacted(self, campaign_id: UUID, since: datetime) -> set[UUID]:
        """Customers with a call in this campaign created on or after ``since``."""
        stmt = (
            select(self._model.customer_id)
            .where(self._model.campaign_id == campaign_id)
            .where(self._model.created_at >= since)
            .distinct()
        )
        result = await self._session.execute(stmt)
        return set(result.scalars().all())

    # ========================================================================
    # Status transitions
    # ========================================================================

    async def claim(self, id: UUID | str, now: datetime) -> bool:
        """QUEUED -> IN_PROGRESS, stamping started_at."""
        return await self.transition_status(
            id,
            CampaignCallStatus.QUEUED.value,
            CampaignCallStatus.IN_PROGRESS.value,
            started_at=now,
        )

    async def release(self, id: UUID | str) -> bool:
        """IN_PROGRESS -> QUEUED after a failed dispatch."""
        return await self.transition_status(
            id,
            CampaignCallStatus.IN_PROGRESS.value,
            CampaignCallStatus.QUEUED.value,
            started_at=None,
        )

    async def mark_skipped(self, id: UUID | str, reason: str) -> bool:
        """Terminal skip of a still-QUEUED call."""
        return await self.transition_status(
            id,
            CampaignCallStatus.QUEUED.value,
            CampaignCallStatus.SKIPPED.value,
            skip_reason=reason,
        )

    async def mark_failed(self, id: UUID | str, reason: str) -> bool:
        """Terminal failure of a claimed call."""
        return await self.transition_status(
            id,
            CampaignCallStatus.IN_PROGRESS.value,
            CampaignCallStatus.FAILED.value,
            skip_reason=reason,
            completed_at=datetime.now(timezone.utc),
        )

    async def complete(self, id: UUID | str, result_data: dict[str, Any] | None) -> bool:
        """Record the agent-reported result."""
        return await self.update_fields(
            id,
            status=CampaignCallStatus.COMPLETED.value,
            completed_at=datetime.now(timezone.utc),
            result_data=result_data,
        )
