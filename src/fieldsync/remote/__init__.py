"""
remote - Remote backend interface, REST client and connectivity probes.

The reference server lives in fieldsync.remote.server and is imported
on demand so the client side does not need FastAPI loaded.
"""

from fieldsync.remote.base import RemoteStore
from fieldsync.remote.connectivity import (
    ConnectivityProbe,
    HttpConnectivityProbe,
    StaticConnectivityProbe,
)
from fieldsync.remote.rest import RestRemoteStore

__all__ = [
    "ConnectivityProbe",
    "HttpConnectivityProbe",
    "RemoteStore",
    "RestRemoteStore",
    "StaticConnectivityProbe",
]
