"""Base Repository Pattern.

Generic CRUD plus the conditional status transition every claim relies on.
"""
from __future__ import annotations

from typing import Any, Generic, Sequence, TypeVar
from uuid import UUID

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from outreach_agent.core.exceptions import RecordNotFoundError
from outreach_agent.db.base import Base

ModelT = TypeVar("ModelT", bound=Base)


def as_uuid(value: UUID | str) -> UUID:
    """Coerce a string id to UUID."""
    return value if isinstance(value, UUID) else UUID(str(value))


class BaseRepository(Generic[ModelT]):
    """Generic base repository with async CRUD operations.

    Usage:
        class CustomerRepository(BaseRepository[CustomerModel]):
            def __init__(self, session: AsyncSession):
                super().__init__(CustomerModel, session)
    """

    def __init__(self, model: type[ModelT], session: AsyncSession):
        """Initialize repository with model class and session.

        Args:
            model: SQLAlchemy model class
            session: Async database session
        """
        self._model = model
        self._session = session

    @property
    def session(self) -> AsyncSession:
        """Get the current database session."""
        return self._session

    async def get(self, id: UUID | str) -> ModelT | None:
        """Get a single record by ID.

        Args:
            id: UUID or string primary key

        Returns:
            Model instance or None if not found
        """
        stmt = select(self._model).where(self._model.id == as_uuid(id))
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_or_raise(self, id: UUID | str) -> ModelT:
        """Get a single record by ID.

        Raises:
            RecordNotFoundError: If the record does not exist
        """
        obj = await self.get(id)
        if obj is None:
            raise RecordNotFoundError(
                f"{self._model.__name__} not found",
                details={"id": str(id)},
            )
        return obj

    async def get_multi(self, *, skip: int = 0, limit: int = 100) -> Sequence[ModelT]:
        """Get records, newest first."""
        stmt = (
            select(self._model)
            .order_by(self._model.created_at.desc())
            .offset(skip)
            .limit(limit)
        )
        result = await self._session.execute(stmt)
        return result.scalars().all()

    async def create(self, obj: ModelT) -> ModelT:
        """Add a new record and flush it so defaults are populated."""
        self._session.add(obj)
        await self._session.flush()
        await self._session.refresh(obj)
        return obj

    async def update_fields(self, id: UUID | str, **values: Any) -> bool:
        """Unconditionally update columns of one record.

        Returns:
            True if a row was updated
        """
        stmt = (
            update(self._model)
            .where(self._model.id == as_uuid(id))
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        result = await self._session.execute(stmt)
        return result.rowcount == 1

    async def transition_status(
        self,
        id: UUID | str,
        expected: str,
        new: str,
        **values: Any,
    ) -> bool:
        """Move a record from ``expected`` to ``new`` status atomically.

        Issued as a single ``UPDATE ... WHERE id = :id AND status = :expected``.
        Among concurrent callers racing on the same row exactly one sees an
        affected row; the others get False and must treat the item as
        already handled.

        Returns:
            True if this caller performed the transition
        """
        stmt = (
            update(self._model)
            .where(self._model.id == as_uuid(id))
            .where(self._model.status == expected)
            .values(status=new, **values)
            .execution_options(synchronize_session=False)
        )
        result = await self._session.execute(stmt)
        return result.rowcount == 1

    async def count(self) -> int:
        result = await self._session.execute(select(func.count()).select_from(self._model))
        return result.scalar_one()
