"""
pending.py - Pending changes indicator.

Counts unsynced outbox rows, quarantined ones included, so the user
can see that local changes have not reached the server. A dismissal
hides the indicator for a cooldown window; it only goes away for good
once those rows are uploaded.
"""

import logging
from dataclasses import dataclass
from datetime import datetime

from fieldsync.config import SETTING_SYNC_DISMISSED, SyncConfig
from fieldsync.db.settings import SettingsStore
from fieldsync.observability import pending_changes
from fieldsync.sync.outbox import Outbox
from fieldsync.utils.timestamps import Clock, format_timestamp, parse_timestamp, utc_now

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PendingSnapshot:
    total: int
    by_table: dict[str, int]
    quarantined: int
    should_notify: bool
    last_dismissed: datetime | None


class PendingChangesMonitor:
    def __init__(
        self,
        outbox: Outbox,
        settings: SettingsStore,
        config: SyncConfig | None = None,
        clock: Clock = utc_now,
    ):
        self._outbox = outbox
        self._settings = settings
        self._config = config or SyncConfig()
        self._clock = clock

    def last_dismissed(self) -> datetime | None:
        raw = self._settings.get(SETTING_SYNC_DISMISSED)
        if not raw:
            return None
        try:
            return parse_timestamp(raw)
        except ValueError:
            logger.warning(f"Ignoring malformed {SETTING_SYNC_DISMISSED} value: {raw!r}")
            return None

    def snapshot(self) -> PendingSnapshot:
        by_table = self._outbox.pending_by_table()
        total = sum(by_table.values())
        pending_changes.set(total)

        dismissed = self.last_dismissed()
        cooling_down = dismissed is not None and self._clock() - dismissed < self._config.dismiss_cooldown
        return PendingSnapshot(
            total=total,
            by_table=by_table,
            quarantined=len(self._outbox.quarantined(self._config.max_retry)),
            should_notify=total > 0 and not cooling_down,
            last_dismissed=dismissed,
        )

    def dismiss(self) -> None:
        """Hide the indicator for the cooldown window."""
        self._settings.set(SETTING_SYNC_DISMISSED, format_timestamp(self._clock()))
