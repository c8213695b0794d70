"""Plantwatch — Base Service Interface.

Keeps business logic out of API routes. Services inherit generic lookups,
creation and deletion from this class and raise domain exceptions from
``core.exceptions`` instead of HTTP errors.

Usage:
    class MachineService(BaseService[Machine]):
        def __init__(self, db: AsyncSession):
            super().__init__(Machine, db)
"""

from __future__ import annotations

from typing import Any, Generic, TypeVar

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from core.exceptions import ConflictError, ResourceNotFound
from logger import get_logger

ModelType = TypeVar("ModelType")

logger = get_logger(__name__)


class BaseService(Generic[ModelType]):
    """Base class for all business logic services."""

    def __init__(self, model: type[ModelType], db: AsyncSession):
        self.model = model
        self.db = db
        self.logger = logger.bind(service=self.__class__.__name__)

    async def get(self, id: Any, *, fresh: bool = False) -> ModelType | None:
        """Get a single record by primary key.

        Args:
            id: Primary key value.
            fresh: Re-read the row from the database even if the session
                already holds it.
        """
        return await self.db.get(self.model, id, populate_existing=fresh)

    async def get_or_404(self, id: Any, *, fresh: bool = False) -> ModelType:
        """Get record or raise ResourceNotFound."""
        obj = await self.get(id, fresh=fresh)
        if obj is None:
            raise ResourceNotFound(self.model.__name__, id)
        return obj

    async def get_multi(self, *, skip: int = 0, limit: int | None = None) -> list[ModelType]:
        """Get multiple records ordered by primary key."""
        stmt = select(self.model).order_by(self.model.id).offset(skip)
        if limit is not None:
            stmt = stmt.limit(limit)
        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    async def add(self, db_obj: ModelType) -> ModelType:
        """Persist a new ORM instance and return it refreshed."""
        self.db.add(db_obj)
        try:
            await self.db.commit()
        except IntegrityError as e:
            await self.db.rollback()
            self.logger.warning(
                "Create failed - integrity error",
                model=self.model.__name__,
                error_type=type(e.orig).__name__ if e.orig else type(e).__name__,
            )
            raise ConflictError(
                f"{self.model.__name__} violates a uniqueness or integrity constraint",
            ) from e

        await self.db.refresh(db_obj)
        self.logger.info(
            "Created new record",
            id=getattr(db_obj, "id", None),
            model=self.model.__name__,
        )
        return db_obj

    async def remove(self, db_obj: ModelType) -> None:
        await self.db.delete(db_obj)
        await self.db.commit()
        self.logger.info(
            "Deleted record",
            id=getattr(db_obj, "id", None),
            model=self.model.__name__,
        )

    async def commit_or_rollback(self) -> None:
        """Commit the current transaction, rolling back and re-raising on error."""
        try:
            await self.db.commit()
        except Exception as e:
            await self.db.rollback()
            self.logger.error(
                "Transaction rolled back",
                error_type=type(e).__name__,
                model=self.model.__name__,
            )
            raise
