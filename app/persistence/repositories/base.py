"""Base repository with tenant-scoped queries."""

from typing import Any, Generic, Type, TypeVar

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import PersistenceError
from app.persistence.database import Base

ModelType = TypeVar("ModelType", bound=Base)


class BaseRepository(Generic[ModelType]):
    """Base repository with tenant-scoped query methods.

    Write failures roll the session back and are re-raised as
    PersistenceError; nothing is swallowed.
    """

    def __init__(self, model: Type[ModelType], session: AsyncSession):
        """Initialize repository with model and session."""
        self.model = model
        self.session = session

    async def get_by_id(self, tenant_id: int | None, id: Any) -> ModelType | None:
        """Get entity by ID, scoped to tenant when one is given."""
        stmt = select(self.model).where(self.model.id == id)
        if tenant_id is not None:
            stmt = stmt.where(self.model.tenant_id == tenant_id)
        try:
            result = await self.session.execute(stmt)
        except SQLAlchemyError as e:
            raise PersistenceError(f"get {self.model.__name__}", str(e)) from e
        return result.scalar_one_or_none()

    async def create(self, tenant_id: int | None, **data) -> ModelType:
        """Create new entity with tenant_id."""
        if tenant_id is not None:
            data["tenant_id"] = tenant_id
        instance = self.model(**data)
        self.session.add(instance)
        await self.commit(f"create {self.model.__name__}")
        await self.session.refresh(instance)
        return instance

    async def commit(self, operation: str) -> None:
        """Commit the current unit of work, rolling back on failure."""
        try:
            await self.session.commit()
        except SQLAlchemyError as e:
            await self.session.rollback()
            raise PersistenceError(operation, str(e)) from e
