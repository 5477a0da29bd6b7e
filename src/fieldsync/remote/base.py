"""
base.py - Abstract base class for remote stores.

The remote backend is table oriented. All implementations must inherit
from RemoteStore.
"""

from abc import ABC, abstractmethod
from typing import Any, Sequence


class RemoteStore(ABC):
    """
    Abstract base class for the remote backend.

    Implementations must provide:
    - Reading the active (not soft-deleted) rows of a table
    - Upserting one row by a conflict key
    - Updating and deleting rows matched by equality filters

    Failures are raised as RemoteError.
    """

    @abstractmethod
    async def select_active(self, table: str) -> list[dict[str, Any]]:
        """
        Fetch every row of a table whose deleted_at is null.

        Returns:
            List of rows as column -> value dicts
        """
        pass

    @abstractmethod
    async def upsert(self, table: str, row: dict[str, Any], on_conflict: Sequence[str]) -> None:
        """
        Insert a row, or merge it into the row with the same conflict key.

        Args:
            table: Remote table name
            row: Full row to write
            on_conflict: Columns forming the conflict key
        """
        pass

    @abstractmethod
    async def update(self, table: str, filters: dict[str, Any], values: dict[str, Any]) -> None:
        """Set values on every row matching all equality filters."""
        pass

    @abstractmethod
    async def delete(self, table: str, filters: dict[str, Any]) -> None:
        """Physically delete every row matching all equality filters."""
        pass

    async def close(self) -> None:
        """Release network resources."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Remote name for logging."""
        pass
