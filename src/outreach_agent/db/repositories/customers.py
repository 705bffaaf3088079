"""Business and customer repositories."""
from __future__ import annotations

from typing import Sequence
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from outreach_agent.db.models.core import BusinessModel, CustomerModel
from outreach_agent.db.repositories.base import BaseRepository


class BusinessRepository(BaseRepository[BusinessModel]):
    def __init__(self, session: AsyncSession):
        super().__init__(BusinessModel, session)


class CustomerRepository(BaseRepository[CustomerModel]):
    """Customer queries scoped to a business."""

    def __init__(self, session: AsyncSession):
        super().__init__(CustomerModel, session)

    async def get_with_phone(self, business_id: UUID) -> Sequence[CustomerModel]:
        """Customers of a business that have any phone number on file.

        Format validation happens in the caller; this only drops empties.
        """
        stmt = (
            select(self._model)
            .where(self._model.business_id == business_id)
            .where(self._model.phone.is_not(None))
            .where(self._model.phone != "")
            .order_by(self._model.created_at)
        )
        result = await self._session.execute(stmt)
        return result.scalars().all()
