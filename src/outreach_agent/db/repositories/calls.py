"""Call log repository."""
from __future__ import annotations

from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from outreach_agent.db.models.core import CallLogModel
from outreach_agent.db.repositories.base import BaseRepository, as_uuid


class CallLogRepository(BaseRepository[CallLogModel]):
    """Lookups by the handles providers and agents call back with."""

    def __init__(self, session: AsyncSession):
        super().__init__(CallLogModel, session)

    async def get_by_provider_call_id(self, provider_call_id: str) -> CallLogModel | None:
        """Call log for a provider correlation handle (latest if duplicated)."""
        stmt = (
            select(self._model)
            .where(self._model.provider_call_id == provider_call_id)
            .order_by(self._model.created_at.desc())
            .limit(1)
        )
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_by_room_name(self, room_name: str) -> CallLogModel | None:
        """Call log for a conversational agent room."""
        stmt = (
            select(self._model)
            .where(self._model.room_name == room_name)
            .order_by(self._model.created_at.desc())
            .limit(1)
        )
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_by_campaign_call_id(self, campaign_call_id: UUID | str) -> CallLogModel | None:
        """Call log placed for a campaign call."""
        stmt = (
            select(self._model)
            .where(self._model.campaign_call_id == as_uuid(campaign_call_id))
            .order_by(self._model.created_at.desc())
            .limit(1)
        )
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()
