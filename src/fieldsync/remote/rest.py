"""
rest.py - REST remote store.

Speaks the PostgREST dialect used by Supabase:
- GET    /rest/v1/<table>?select=*&deleted_at=is.null
- POST   /rest/v1/<table>?on_conflict=a,b   (Prefer: resolution=merge-duplicates)
- PATCH  /rest/v1/<table>?col=eq.value
- DELETE /rest/v1/<table>?col=eq.value
"""

import logging
from typing import Any, Sequence

import httpx

from fieldsync.errors import RemoteError
from fieldsync.remote.base import RemoteStore

logger = logging.getLogger(__name__)

REST_PREFIX = "/rest/v1"


def _eq_filters(filters: dict[str, Any]) -> dict[str, str]:
    params = {}
    for column, value in filters.items():
        if value is None:
            params[column] = "is.null"
        elif isinstance(value, bool):
            params[column] = f"eq.{str(value).lower()}"
        else:
            params[column] = f"eq.{value}"
    return params


class RestRemoteStore(RemoteStore):
    """
    HTTP remote store over httpx.AsyncClient.

    A client or transport can be injected; an injected client is not
    closed by close().
    """

    def __init__(
        self,
        base_url: str,
        api_key: str | None = None,
        timeout: float = 30.0,
        client: httpx.AsyncClient | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self._base_url = base_url.rstrip("/")
        headers = {"Content-Type": "application/json"}
        if api_key:
            headers["apikey"] = api_key
            headers["Authorization"] = f"Bearer {api_key}"
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            base_url=self._base_url,
            headers=headers,
            timeout=timeout,
            transport=transport,
        )
        if not self._owns_client:
            self._client.headers.update(headers)

    @property
    def name(self) -> str:
        return "REST"

    @property
    def base_url(self) -> str:
        return self._base_url

    async def select_active(self, table: str) -> list[dict[str, Any]]:
        response = await self._request(
            "GET", table, params={"select": "*", "deleted_at": "is.null"}
        )
        rows = response.json()
        if not isinstance(rows, list):
            raise RemoteError(f"Unexpected response body for {table}", table=table)
        return rows

    async def upsert(self, table: str, row: dict[str, Any], on_conflict: Sequence[str]) -> None:
        await self._request(
            "POST",
            table,
            params={"on_conflict": ",".join(on_conflict)},
            json=row,
            headers={"Prefer": "resolution=merge-duplicates,return=minimal"},
        )

    async def update(self, table: str, filters: dict[str, Any], values: dict[str, Any]) -> None:
        await self._request(
            "PATCH",
            table,
            params=_eq_filters(filters),
            json=values,
            headers={"Prefer": "return=minimal"},
        )

    async def delete(self, table: str, filters: dict[str, Any]) -> None:
        await self._request("DELETE", table, params=_eq_filters(filters))

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def _request(self, method: str, table: str, **kwargs) -> httpx.Response:
        url = f"{self._base_url}{REST_PREFIX}/{table}"
        try:
            response = await self._client.request(method, url, **kwargs)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            detail = e.response.text[:200]
            logger.warning(f"{method} {table} rejected ({e.response.status_code}): {detail}")
            raise RemoteError(
                f"{method} {table} failed: {detail or e.response.reason_phrase}",
                table=table,
                status_code=e.response.status_code,
            ) from e
        except httpx.HTTPError as e:
            logger.warning(f"{method} {table} failed: {e}")
            raise RemoteError(f"{method} {table} failed: {e}", table=table) from e
        return response
