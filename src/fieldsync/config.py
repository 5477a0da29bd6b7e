"""
config.py - Configuration for fieldsync.

Module-level constants describe the fixed shape of the sync system
(tables, dependency order, retry cap). SyncConfig carries the tunable
copy used by the engines, and Settings reads deployment values from
the environment.
"""

import os
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Final

# SQLite PRAGMA settings for the local store
SQLITE_PRAGMAS: Final[dict[str, str]] = {
    "journal_mode": "WAL",
    "synchronous": "NORMAL",
    "foreign_keys": "ON",
    "busy_timeout": "5000",
}

# Junction tables have no id column; their record identity is both keys
JUNCTION_KEYS: Final[dict[str, tuple[str, str]]] = {
    "user_roles": ("user_id", "role_id"),
    "user_companies": ("user_id", "company_id"),
    "form_companies": ("form_id", "company_id"),
}

COMPOSITE_KEY_DELIMITER: Final[str] = ","

# Referenced tables before referencing tables
DOWNLOAD_ORDER: Final[tuple[str, ...]] = (
    "users",
    "companies",
    "roles",
    "user_roles",
    "user_companies",
    "forms",
    "form_fields",
    "form_companies",
    "visits",
    "form_responses",
    "form_field_responses",
)

# Tables emptied before the downloaded rows are written
REPLACE_TABLES: Final[frozenset[str]] = frozenset(
    {"users", "companies", "roles", "forms"}
)

SYNCABLE_TABLES: Final[frozenset[str]] = frozenset(DOWNLOAD_ORDER)

FORM_TABLES: Final[tuple[str, ...]] = ("forms", "form_fields", "form_companies")
FORM_RESPONSE_TABLES: Final[tuple[str, ...]] = (
    "form_responses",
    "form_field_responses",
)

# Outbox retry cap: entries that failed this many times are quarantined
MAX_RETRY: Final[int] = 3

# Synced or quarantined outbox entries older than this are purged
PURGE_AGE: Final[timedelta] = timedelta(days=7)

# Quiet period collapsing bursts of writes into one upload pass
UPLOAD_DEBOUNCE_SECONDS: Final[float] = 5.0

# Pending-changes indicator stays hidden this long after a dismissal
DISMISS_COOLDOWN: Final[timedelta] = timedelta(hours=1)

# Keys in the app_settings key-value table
SETTING_INITIAL_SYNC: Final[str] = "initialSyncComplete"
SETTING_LAST_SYNC_PREFIX: Final[str] = "last_sync_"
SETTING_LAST_DOWNLOAD: Final[str] = "last_sync_download"
SETTING_LAST_FORMS_SYNC: Final[str] = "last_forms_sync"
SETTING_SYNC_DISMISSED: Final[str] = "lastSyncDismissed"
SETTING_SESSION_USER: Final[str] = "user"


@dataclass
class SyncConfig:
    """Tunable parameters for the sync engines and orchestrator."""
    max_retry: int = MAX_RETRY
    purge_age: timedelta = PURGE_AGE
    debounce_seconds: float = UPLOAD_DEBOUNCE_SECONDS
    dismiss_cooldown: timedelta = DISMISS_COOLDOWN
    http_timeout: float = 30.0
    download_order: tuple[str, ...] = DOWNLOAD_ORDER
    replace_tables: frozenset[str] = field(default_factory=lambda: REPLACE_TABLES)


@dataclass(frozen=True)
class Settings:
    """Deployment settings, usually read from the environment."""
    db_path: str = "fieldsync.db"
    remote_url: str | None = None
    remote_key: str | None = None
    probe_url: str | None = None
    log_level: str = "INFO"
    log_json: bool = False

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            db_path=os.environ.get("FIELDSYNC_DB_PATH", "fieldsync.db"),
            remote_url=os.environ.get("FIELDSYNC_REMOTE_URL"),
            remote_key=os.environ.get("FIELDSYNC_REMOTE_KEY"),
            probe_url=os.environ.get("FIELDSYNC_PROBE_URL"),
            log_level=os.environ.get("FIELDSYNC_LOG_LEVEL", "INFO"),
            log_json=os.environ.get("FIELDSYNC_LOG_JSON", "").lower() in ("1", "true", "yes"),
        )
