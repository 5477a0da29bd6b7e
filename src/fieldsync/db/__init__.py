"""
db - Local store gateway, schema and persisted settings.
"""

from fieldsync.db.store import LocalStore, create_connection
from fieldsync.db.settings import SettingsStore

__all__ = ["LocalStore", "SettingsStore", "create_connection"]
