"""
Base Repository implementation with common CRUD operations.

Provides the generic base class for all repositories with:
- Common CRUD operations (Create, Read, Update, Delete)
- Filtering by id sets and simple column filters
- Transaction management through the connection manager
- Error handling and logging
- Verbatim row <-> payload conversion used by snapshots
"""

import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import (
    TypeVar, Generic, Optional, List, Dict, Any, Type, Iterable
)

from sqlalchemy import DateTime, select, update, delete, func, and_
from sqlalchemy.exc import SQLAlchemyError, OperationalError, DBAPIError, TimeoutError as PoolTimeoutError

from database.models import Base, as_utc
from database.connection import (
    DatabaseConnectionManager, DatabaseOperationError, get_db_session
)

logger = logging.getLogger(__name__)

ModelType = TypeVar("ModelType", bound=Base)


def model_to_dict(instance: Base) -> Dict[str, Any]:
    """Copy every column of a row into a JSON-serialisable dict."""
    data: Dict[str, Any] = {}
    for column in instance.__table__.columns:
        value = getattr(instance, column.key)
        if isinstance(value, datetime):
            value = as_utc(value).isoformat()
        data[column.key] = value
    return data


def payload_to_values(model: Type[Base], payload: Dict[str, Any]) -> Dict[str, Any]:
    """Inverse of model_to_dict: keep known columns and parse datetimes."""
    values: Dict[str, Any] = {}
    for column in model.__table__.columns:
        if column.key not in payload:
            continue
        value = payload[column.key]
        if isinstance(column.type, DateTime) and isinstance(value, str):
            value = as_utc(datetime.fromisoformat(value))
        values[column.key] = value
    return values


def is_transient(e: Exception) -> bool:
    """Connection drops, lock timeouts and pool exhaustion are worth retrying."""
    if isinstance(e, (OperationalError, PoolTimeoutError)):
        return True
    return isinstance(e, DBAPIError) and bool(e.connection_invalidated)


class BaseRepository(Generic[ModelType]):
    """
    Generic repository with common CRUD operations.

    Provides generic methods for database operations with:
    - Full async/await support
    - Error handling and logging
    - Batch operations
    - Transaction management
    """

    def __init__(self, model: Type[ModelType], db: Optional[DatabaseConnectionManager] = None):
        """
        Initialize repository with model class and optional connection manager.

        Args:
            model: SQLAlchemy model class
            db: Connection manager; the global one is used when omitted
        """
        self.model = model
        self.db = db
        self._table_name = model.__tablename__

    @asynccontextmanager
    async def get_session(self):
        """Get database session with automatic transaction management."""
        if self.db is not None:
            async with self.db.get_session() as session:
                yield session
        else:
            async with get_db_session() as session:
                yield session

    def _error(self, operation: str, e: Exception) -> DatabaseOperationError:
        logger.error(f"Database error in {self._table_name}.{operation}: {e}")
        return DatabaseOperationError(
            f"Failed to {operation} {self._table_name}: {e}",
            transient=is_transient(e),
        )

    # Basic CRUD operations
    async def get_by_id(self, id: Any) -> Optional[ModelType]:
        """
        Get entity by ID.

        Args:
            id: Entity ID

        Returns:
            Entity instance or None if not found
        """
        try:
            async with self.get_session() as session:
                return await session.get(self.model, id)
        except SQLAlchemyError as e:
            raise self._error("get", e) from e

    async def get_many(self, ids: Iterable[Any]) -> List[ModelType]:
        """Get all entities whose id is in ``ids`` (missing ids are ignored)."""
        ids = list(ids)
        if not ids:
            return []
        try:
            async with self.get_session() as session:
                stmt = select(self.model).where(self.model.id.in_(ids)).order_by(self.model.id)
                result = await session.execute(stmt)
                return list(result.scalars().all())
        except SQLAlchemyError as e:
            raise self._error("get_many", e) from e

    async def get_all(self, filters: Optional[Dict[str, Any]] = None) -> List[ModelType]:
        """
        Get all entities, optionally filtered by column equality or membership.

        Args:
            filters: Dictionary of field filters; list values become IN clauses

        Returns:
            List of entities ordered by id
        """
        try:
            async with self.get_session() as session:
                stmt = select(self.model)
                if filters:
                    conditions = []
                    for field, value in filters.items():
                        column = getattr(self.model, field)
                        if isinstance(value, (list, tuple, set)):
                            conditions.append(column.in_(list(value)))
                        else:
                            conditions.append(column == value)
                    stmt = stmt.where(and_(*conditions))
                stmt = stmt.order_by(self.model.id)
                result = await session.execute(stmt)
                return list(result.scalars().all())
        except SQLAlchemyError as e:
            raise self._error("get_all", e) from e

    async def existing_ids(self, ids: Iterable[Any]) -> set:
        """Return the subset of ``ids`` that exist."""
        ids = {i for i in ids if i is not None}
        if not ids:
            return set()
        try:
            async with self.get_session() as session:
                result = await session.execute(
                    select(self.model.id).where(self.model.id.in_(list(ids)))
                )
                return set(result.scalars().all())
        except SQLAlchemyError as e:
            raise self._error("existing_ids", e) from e

    async def count(self, *conditions) -> int:
        """Count entities matching optional SQL conditions."""
        try:
            async with self.get_session() as session:
                stmt = select(func.count()).select_from(self.model)
                if conditions:
                    stmt = stmt.where(and_(*conditions))
                return await session.scalar(stmt) or 0
        except SQLAlchemyError as e:
            raise self._error("count", e) from e

    async def create(self, values: Dict[str, Any]) -> ModelType:
        """Insert a new entity."""
        try:
            async with self.get_session() as session:
                entity = self.model(**values)
                session.add(entity)
                await session.flush()
                await session.refresh(entity)
                return entity
        except SQLAlchemyError as e:
            raise self._error("create", e) from e

    async def update_fields(self, id: Any, values: Dict[str, Any]) -> bool:
        """
        Update columns of one entity.

        Returns:
            True if a row was updated
        """
        try:
            async with self.get_session() as session:
                result = await session.execute(
                    update(self.model).where(self.model.id == id).values(**values)
                )
                return result.rowcount > 0
        except SQLAlchemyError as e:
            raise self._error("update", e) from e

    async def delete_many(self, ids: Iterable[Any]) -> int:
        """Delete entities by id; returns the number of deleted rows."""
        ids = list(ids)
        if not ids:
            return 0
        try:
            async with self.get_session() as session:
                result = await session.execute(
                    delete(self.model).where(self.model.id.in_(ids))
                )
                return result.rowcount or 0
        except SQLAlchemyError as e:
            raise self._error("delete", e) from e
