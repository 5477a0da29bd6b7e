"""
sync - Outbox, upload and download engines, and session orchestration.
"""

from fieldsync.sync.download import DownloadEngine, DownloadResult
from fieldsync.sync.forms import FormSync
from fieldsync.sync.keys import compose_key, decompose_key, is_junction
from fieldsync.sync.locks import SerialWorkQueue, SyncLock
from fieldsync.sync.orchestrator import SyncOrchestrator
from fieldsync.sync.outbox import Operation, Outbox, OutboxEntry
from fieldsync.sync.pending import PendingChangesMonitor, PendingSnapshot
from fieldsync.sync.status import SyncState, SyncStatus
from fieldsync.sync.upload import UploadEngine, UploadResult

__all__ = [
    "DownloadEngine",
    "DownloadResult",
    "FormSync",
    "Operation",
    "Outbox",
    "OutboxEntry",
    "PendingChangesMonitor",
    "PendingSnapshot",
    "SerialWorkQueue",
    "SyncLock",
    "SyncOrchestrator",
    "SyncState",
    "SyncStatus",
    "UploadEngine",
    "UploadResult",
    "compose_key",
    "decompose_key",
    "is_junction",
]
