"""
errors.py - Domain-specific exceptions for fieldsync.

All exceptions inherit from FieldSyncError for unified handling.
Each exception type represents a distinct failure mode.
"""

from typing import Any


class FieldSyncError(Exception):
    """Base exception for all fieldsync errors."""

    def __init__(self, message: str, context: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.context = context or {}

    def __str__(self) -> str:
        if self.context:
            context_str = ", ".join(f"{k}={v!r}" for k, v in self.context.items())
            return f"{self.message} [{context_str}]"
        return self.message


class DatabaseError(FieldSyncError):
    """
    Raised when a local store operation fails unexpectedly.

    This wraps SQLite errors with additional context about
    what operation was being attempted.
    """

    def __init__(
        self, message: str, operation: str | None = None, sql: str | None = None
    ) -> None:
        context = {}
        if operation is not None:
            context["operation"] = operation
        if sql is not None:
            # Truncate long SQL for readability
            context["sql"] = sql[:200] + "..." if len(sql) > 200 else sql
        super().__init__(message, context=context)
        self.operation = operation
        self.sql = sql


class ValidationError(FieldSyncError):
    """
    Raised when input validation fails.

    This includes malformed record identities, unknown tables
    and values that don't meet expected constraints.
    """

    def __init__(
        self, message: str, field: str | None = None, value: Any = None
    ) -> None:
        context = {}
        if field is not None:
            context["field"] = field
        if value is not None:
            context["value"] = repr(value)[:100]
        super().__init__(message, context=context)
        self.field = field
        self.value = value


class RemoteError(FieldSyncError):
    """
    Raised when the remote store rejects a request.

    During upload this is recorded on the outbox entry; during
    download it aborts the whole session.
    """

    def __init__(
        self,
        message: str,
        table: str | None = None,
        status_code: int | None = None,
    ) -> None:
        context = {}
        if table is not None:
            context["table"] = table
        if status_code is not None:
            context["status_code"] = status_code
        super().__init__(message, context=context)
        self.table = table
        self.status_code = status_code


class DownloadError(FieldSyncError):
    """
    Raised when a download session fails.

    The local store is guaranteed untouched: either the failure happened
    while fetching, or the apply transaction was rolled back.
    """

    def __init__(
        self, message: str, table: str | None = None, phase: str | None = None
    ) -> None:
        context = {}
        if table is not None:
            context["table"] = table
        if phase is not None:
            context["phase"] = phase
        super().__init__(message, context=context)
        self.table = table
        self.phase = phase


class BusinessRuleError(FieldSyncError):
    """Raised before any mutation when a domain rule forbids it."""

    def __init__(self, message: str, rule: str | None = None) -> None:
        super().__init__(message, context={"rule": rule} if rule else None)
        self.rule = rule


class NotFoundError(FieldSyncError):
    """Raised when a referenced record does not exist locally."""

    def __init__(
        self, message: str, entity: str | None = None, entity_id: Any = None
    ) -> None:
        context = {}
        if entity is not None:
            context["entity"] = entity
        if entity_id is not None:
            context["entity_id"] = entity_id
        super().__init__(message, context=context)
        self.entity = entity
        self.entity_id = entity_id


class AuthenticationError(FieldSyncError):
    """Raised when a login attempt is rejected."""
