"""
settings.py - Persisted key-value flags.

Sync checkpoints (initialSyncComplete, last_sync_<table>, last_forms_sync,
lastSyncDismissed) and the session blob live in the app_settings table.
Values are opaque strings; JSON helpers are provided for structured blobs.
"""

import json
from typing import Any

from fieldsync.db.store import LocalStore


class SettingsStore:
    """String key-value store backed by app_settings."""

    def __init__(self, store: LocalStore):
        self._store = store

    def get(self, key: str, default: str | None = None) -> str | None:
        value = self._store.scalar("SELECT value FROM app_settings WHERE key = ?", (key,))
        return default if value is None else value

    def set(self, key: str, value: str) -> None:
        self._store.execute(
            "INSERT INTO app_settings (key, value) VALUES (?, ?) "
            "ON CONFLICT(key) DO UPDATE SET value = excluded.value",
            (key, value),
        )

    def remove(self, *keys: str) -> None:
        for key in keys:
            self._store.execute("DELETE FROM app_settings WHERE key = ?", (key,))

    def get_json(self, key: str) -> Any:
        raw = self.get(key)
        return None if raw is None else json.loads(raw)

    def set_json(self, key: str, value: Any) -> None:
        self.set(key, json.dumps(value, sort_keys=True))

    def items(self, prefix: str = "") -> dict[str, str]:
        rows = self._store.query(
            "SELECT key, value FROM app_settings WHERE key LIKE ? ESCAPE '\\' ORDER BY key",
            (prefix.replace("%", r"\%").replace("_", r"\_") + "%",),
        )
        return {row["key"]: row["value"] for row in rows}
