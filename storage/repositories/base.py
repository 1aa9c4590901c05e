"""
Base Repository Class.

============================================================
PURPOSE
============================================================
Provides common functionality for all repositories including:
- Session management patterns
- Error handling wrappers
- Common query and bulk-delete operations
- Logging setup

============================================================
USAGE
============================================================
All warehouse repositories inherit from BaseRepository.
The session is injected via the constructor; transaction
boundaries belong to the caller (Database.transaction_scope).

============================================================
"""

import logging
from abc import ABC
from typing import Any, Generic, Iterable, Iterator, List, Optional, Sequence, Type, TypeVar

from sqlalchemy import delete, func, select
from sqlalchemy.exc import (
    IntegrityError as SQLAlchemyIntegrityError,
    OperationalError,
    SQLAlchemyError,
)
from sqlalchemy.orm import Session

from storage.models.base import Base
from storage.repositories.exceptions import (
    ConnectionError,
    DuplicateRecordError,
    IntegrityError,
    QueryError,
    RecordNotFoundError,
)


# Type variable for ORM model
T = TypeVar("T", bound=Base)

# Bound parameters per IN (...) clause; below SQLite's limit
IN_CLAUSE_CHUNK = 500


def chunked(values: Sequence[Any], size: int = IN_CLAUSE_CHUNK) -> Iterator[Sequence[Any]]:
    """Split a sequence into IN-clause sized chunks."""
    for start in range(0, len(values), size):
        yield values[start:start + size]


class BaseRepository(ABC, Generic[T]):
    """
    Abstract base class for all repositories.

    ============================================================
    RESPONSIBILITIES
    ============================================================
    - Provides common query patterns
    - Wraps database errors in repository exceptions
    - Manages logging for all operations

    ============================================================
    USAGE
    ============================================================
    class BlockRepository(BaseRepository[BlockRecord]):
        def __init__(self, session: Session):
            super().__init__(session, BlockRecord, "BlockRepository")

    ============================================================
    """

    def __init__(
        self,
        session: Session,
        model_class: Type[T],
        repository_name: str
    ) -> None:
        """
        Initialize the repository.

        Args:
            session: SQLAlchemy session (injected)
            model_class: The ORM model class this repository manages
            repository_name: Name for logging and error messages
        """
        self._session = session
        self._model_class = model_class
        self._repository_name = repository_name
        self._logger = logging.getLogger(f"repository.{repository_name}")

    @property
    def session(self) -> Session:
        return self._session

    @property
    def repository_name(self) -> str:
        return self._repository_name

    # =========================================================
    # PROTECTED HELPER METHODS
    # =========================================================

    def _handle_db_error(
        self,
        error: Exception,
        operation: str,
        context: Optional[dict] = None
    ) -> None:
        """
        Handle database errors by wrapping in repository exceptions.

        Raises:
            RepositoryException: Always raises appropriate exception
        """
        context = context or {}
        self._logger.error(
            f"Database error in {operation}: {error}",
            extra={"context": context},
        )

        if isinstance(error, OperationalError):
            raise ConnectionError(
                repository_name=self._repository_name,
                operation=operation,
                original_error=str(error)
            ) from error

        if isinstance(error, SQLAlchemyIntegrityError):
            error_str = str(error).lower()
            if "duplicate" in error_str or "unique" in error_str:
                raise DuplicateRecordError(
                    repository_name=self._repository_name,
                    constraint_field=context.get("field", "unknown"),
                    value=context.get("value", "unknown")
                ) from error

            raise IntegrityError(
                repository_name=self._repository_name,
                operation=operation,
                constraint_name="unknown",
                message=str(error)
            ) from error

        raise QueryError(
            repository_name=self._repository_name,
            operation=operation,
            query_description=operation,
            original_error=str(error)
        ) from error

    def _add(self, entity: T) -> T:
        """Add an entity to the session and flush."""
        try:
            self._session.add(entity)
            self._session.flush()
            return entity
        except SQLAlchemyError as e:
            self._handle_db_error(e, "add", {"entity": str(entity)})
            raise  # Never reached, but satisfies type checker

    def _add_all(self, entities: Iterable[Any], operation: str = "add_all") -> None:
        """Add many entities (of any model) and flush once."""
        try:
            self._session.add_all(list(entities))
            self._session.flush()
        except SQLAlchemyError as e:
            self._handle_db_error(e, operation)
            raise

    def _get(self, key: Any) -> Optional[T]:
        """Get an entity by primary key (scalar or tuple)."""
        try:
            return self._session.get(self._model_class, key)
        except SQLAlchemyError as e:
            self._handle_db_error(e, "get", {"key": str(key)})
            raise

    def _get_or_raise(self, key: Any, id_field: str = "id") -> T:
        """
        Get an entity by primary key, raising if not found.

        Raises:
            RecordNotFoundError: If entity does not exist
        """
        entity = self._get(key)
        if entity is None:
            raise RecordNotFoundError(
                repository_name=self._repository_name,
                record_id=key,
                id_field=id_field
            )
        return entity

    def _count(self, *criteria: Any) -> int:
        try:
            stmt = select(func.count()).select_from(self._model_class)
            if criteria:
                stmt = stmt.where(*criteria)
            return self._session.execute(stmt).scalar() or 0
        except SQLAlchemyError as e:
            self._handle_db_error(e, "count")
            raise

    def _execute_query(self, stmt: Any, operation: str = "query") -> List[Any]:
        """Execute a select statement and return scalar results."""
        try:
            result = self._session.execute(stmt)
            return list(result.scalars().all())
        except SQLAlchemyError as e:
            self._handle_db_error(e, operation)
            raise

    def _execute_scalar(self, stmt: Any, operation: str = "query_scalar") -> Optional[Any]:
        """Execute a select statement and return a single result."""
        try:
            result = self._session.execute(stmt)
            return result.scalar_one_or_none()
        except SQLAlchemyError as e:
            self._handle_db_error(e, operation)
            raise

    def _delete_where(self, model: Type[Base], *criteria: Any) -> int:
        """Bulk delete; returns the number of rows removed."""
        try:
            result = self._session.execute(
                delete(model).where(*criteria).execution_options(synchronize_session=False)
            )
            return result.rowcount or 0
        except SQLAlchemyError as e:
            self._handle_db_error(e, f"delete:{model.__tablename__}")
            raise
