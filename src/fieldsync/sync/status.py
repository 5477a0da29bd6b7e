"""
status.py - Observable sync session state.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Callable

logger = logging.getLogger(__name__)


class SyncState(str, Enum):
    IDLE = "idle"
    CHECKING = "checking"
    DOWNLOADING = "downloading"
    UPLOADING = "uploading"
    COMPLETE = "complete"
    OFFLINE = "offline"
    ERROR = "error"

    @property
    def active(self) -> bool:
        return self in (SyncState.CHECKING, SyncState.DOWNLOADING, SyncState.UPLOADING)


DEFAULT_MESSAGES: dict[SyncState, str] = {
    SyncState.IDLE: "",
    SyncState.CHECKING: "Checking connection...",
    SyncState.DOWNLOADING: "Downloading data from server...",
    SyncState.UPLOADING: "Uploading local changes...",
    SyncState.COMPLETE: "Sync complete",
    SyncState.OFFLINE: "No internet connection",
    SyncState.ERROR: "Sync failed",
}


@dataclass(frozen=True)
class SyncStatus:
    """Snapshot of the orchestrator state, as shown to the user."""
    state: SyncState
    message: str = ""
    started_at: str | None = None
    error: str | None = None


StatusListener = Callable[[SyncStatus], None]


class StatusPublisher:
    """Holds the current status and fans updates out to subscribers."""

    def __init__(self) -> None:
        self._current = SyncStatus(SyncState.IDLE)
        self._subscribers: list[StatusListener] = []

    @property
    def current(self) -> SyncStatus:
        return self._current

    def subscribe(self, callback: StatusListener) -> Callable[[], None]:
        self._subscribers.append(callback)

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    def publish(self, status: SyncStatus) -> SyncStatus:
        self._current = status
        logger.debug(f"Sync state -> {status.state.value}: {status.message}")
        for callback in list(self._subscribers):
            try:
                callback(status)
            except Exception as e:
                logger.error(f"Status subscriber failed: {e}")
        return status
