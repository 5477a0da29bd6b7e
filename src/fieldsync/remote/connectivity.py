"""
connectivity.py - Network reachability checks.

Every network-touching operation asks a ConnectivityProbe first and
short-circuits to an offline result when it answers False.
"""

import logging
from abc import ABC, abstractmethod

import httpx

logger = logging.getLogger(__name__)


class ConnectivityProbe(ABC):
    @abstractmethod
    async def is_online(self) -> bool:
        pass


class HttpConnectivityProbe(ConnectivityProbe):
    """Online when a HEAD request to url gets any HTTP response."""

    def __init__(
        self,
        url: str,
        timeout: float = 5.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self._url = url
        self._timeout = timeout
        self._transport = transport

    async def is_online(self) -> bool:
        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                await client.head(self._url)
            return True
        except httpx.HTTPError as e:
            logger.info(f"Connectivity probe failed: {e}")
            return False


class StaticConnectivityProbe(ConnectivityProbe):
    """Fixed answer, switchable at runtime."""

    def __init__(self, online: bool = True):
        self.online = online

    async def is_online(self) -> bool:
        return self.online
