"""
Repository Layer Exceptions.

Every SQLAlchemy error raised inside a repository leaves it as
one of the exceptions below.

- chain data writes: the warehouse turns any of them into a
  StoreFailure tagged with network and height
- label operations: they reach the query server unchanged and
  are mapped onto status codes (not found, conflict, invalid)
"""

from typing import Any, Optional


class RepositoryException(Exception):
    """Base exception for all repository operations."""

    def __init__(
        self,
        message: str,
        repository_name: str,
        operation: str,
        details: Optional[dict] = None
    ) -> None:
        self.message = message
        self.repository_name = repository_name
        self.operation = operation
        self.details = details or {}
        super().__init__(f"[{repository_name}] {operation}: {message}")


# =============================================================
# CALLER ERRORS
# =============================================================

class RecordNotFoundError(RepositoryException):
    """No live record with this id (soft-deleted rows count as missing)."""

    def __init__(self, repository_name: str, record_id: Any, id_field: str = "id") -> None:
        super().__init__(
            message=f"No record with {id_field}={record_id}",
            repository_name=repository_name,
            operation="get",
            details={id_field: str(record_id)},
        )
        self.record_id = record_id
        self.id_field = id_field


class ConflictError(RepositoryException):
    """The change collides with existing state."""


class DuplicateRecordError(ConflictError):
    """A unique value (label name) is already taken."""

    def __init__(self, repository_name: str, constraint_field: str, value: Any) -> None:
        super().__init__(
            message=f"{constraint_field} {value!r} already exists",
            repository_name=repository_name,
            operation="create",
            details={"field": constraint_field, "value": str(value)},
        )
        self.constraint_field = constraint_field
        self.value = value


class LockedRecordError(ConflictError):
    """A locked label or address refused a change."""

    def __init__(self, repository_name: str, record_ids: Any, attempted_operation: str) -> None:
        ids = list(record_ids) if isinstance(record_ids, (list, tuple)) else [str(record_ids)]
        super().__init__(
            message=f"Cannot {attempted_operation} locked: {', '.join(ids)}",
            repository_name=repository_name,
            operation=attempted_operation,
            details={"locked": ids},
        )
        self.record_ids = ids
        self.attempted_operation = attempted_operation


class ValidationError(RepositoryException):
    """A value was rejected before touching the database."""

    def __init__(self, repository_name: str, operation: str, field: str, reason: str) -> None:
        super().__init__(
            message=f"Invalid {field}: {reason}",
            repository_name=repository_name,
            operation=operation,
            details={"field": field, "reason": reason},
        )
        self.field = field
        self.reason = reason


# =============================================================
# DATABASE ERRORS
# =============================================================

class IntegrityError(RepositoryException):
    """A constraint other than a known unique key was violated."""

    def __init__(self, repository_name: str, operation: str, constraint_name: str, message: str) -> None:
        super().__init__(
            message=f"Constraint {constraint_name} violated: {message}",
            repository_name=repository_name,
            operation=operation,
            details={"constraint": constraint_name},
        )
        self.constraint_name = constraint_name


class ConnectionError(RepositoryException):
    """The database could not be reached, or stayed locked."""

    def __init__(self, repository_name: str, operation: str, original_error: str) -> None:
        super().__init__(
            message=f"Database unavailable: {original_error}",
            repository_name=repository_name,
            operation=operation,
            details={"original_error": original_error},
        )


class QueryError(RepositoryException):
    """A statement failed to execute."""

    def __init__(
        self,
        repository_name: str,
        operation: str,
        query_description: str,
        original_error: str
    ) -> None:
        super().__init__(
            message=f"{query_description} failed: {original_error}",
            repository_name=repository_name,
            operation=operation,
            details={"query": query_description, "original_error": original_error},
        )


class TransactionError(RepositoryException):
    """Commit, rollback or DDL failed; nothing from the scope was kept."""

    def __init__(self, repository_name: str, operation: str, phase: str, original_error: str) -> None:
        super().__init__(
            message=f"{phase} failed: {original_error}",
            repository_name=repository_name,
            operation=operation,
            details={"phase": phase, "original_error": original_error},
        )
        self.phase = phase
