"""
fieldsync - Offline-first data layer for field visit tracking

Local mutations are recorded in a durable outbox and uploaded when the
network allows; authoritative remote state is downloaded into the local
SQLite store in one all-or-nothing transaction.
"""

__version__ = "0.1.0"

from fieldsync.db import LocalStore, SettingsStore
from fieldsync.errors import (
    AuthenticationError,
    BusinessRuleError,
    DatabaseError,
    DownloadError,
    FieldSyncError,
    NotFoundError,
    RemoteError,
    ValidationError,
)
from fieldsync.sync import (
    FormSync,
    Outbox,
    PendingChangesMonitor,
    SyncOrchestrator,
    SyncState,
    SyncStatus,
)

__all__ = [
    # Core
    "LocalStore",
    "SettingsStore",
    "Outbox",
    "SyncOrchestrator",
    "FormSync",
    "PendingChangesMonitor",
    "SyncState",
    "SyncStatus",
    # Errors
    "FieldSyncError",
    "AuthenticationError",
    "BusinessRuleError",
    "DatabaseError",
    "DownloadError",
    "NotFoundError",
    "RemoteError",
    "ValidationError",
]
