"""HTTP client for a hosted PostgREST (Supabase) project."""
from __future__ import annotations

import json
import logging
from datetime import datetime
from typing import Any, Sequence

import httpx

from ..config import get_settings
from ..security.secrets import require_secret
from .base import DuplicateKeyError, Filter, Order, RemoteStore, RemoteStoreError

logger = logging.getLogger(__name__)


def _literal(value: Any) -> str:
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, datetime):
        return value.isoformat()
    return str(value)


def encode_filter(item: Filter) -> tuple[str, str]:
    """Render a filter as a PostgREST ``column=op.value`` query pair."""

    if item.op == "in":
        values = ",".join(_quote(_literal(v)) for v in item.value)
        return item.column, f"in.({values})"
    return item.column, f"{item.op}.{_literal(item.value)}"


def _quote(value: str) -> str:
    if any(ch in value for ch in ',()"'):
        escaped = value.replace('"', '\\"')
        return f'"{escaped}"'
    return value


def _jsonable(row: dict[str, Any]) -> dict[str, Any]:
    return json.loads(json.dumps(row, default=_literal))


class PostgrestRemoteStore(RemoteStore):
    def __init__(
        self,
        base_url: str | None = None,
        api_key: str | None = None,
        *,
        access_token: str | None = None,
        client: httpx.AsyncClient | None = None,
        timeout: float | None = None,
    ) -> None:
        settings = get_settings()
        base = base_url or settings.supabase_url or require_secret("SUPABASE_URL")
        self._api_key = api_key or settings.supabase_anon_key or require_secret("SUPABASE_ANON_KEY")
        self._access_token = access_token or self._api_key
        self._rest_url = f"{base.rstrip('/')}/rest/v1"
        self._client = client or httpx.AsyncClient(timeout=timeout or settings.remote_timeout_seconds)

    def set_access_token(self, token: str) -> None:
        self._access_token = token

    async def aclose(self) -> None:
        await self._client.aclose()

    def _headers(self, prefer: str | None = None) -> dict[str, str]:
        headers = {
            "apikey": self._api_key,
            "Authorization": f"Bearer {self._access_token}",
            "Content-Type": "application/json",
        }
        if prefer:
            headers["Prefer"] = prefer
        return headers

    async def _request(
        self,
        method: str,
        path: str,
        *,
        params: list[tuple[str, str]] | None = None,
        payload: Any = None,
        headers: dict[str, str] | None = None,
    ) -> Any:
        url = f"{self._rest_url}/{path}"
        try:
            response = await self._client.request(method, url, params=params, json=payload, headers=headers)
        except httpx.HTTPError as exc:
            logger.warning("Remote request %s %s failed: %s", method, path, exc)
            raise RemoteStoreError(f"{method} {path} failed") from exc
        if response.status_code >= 400:
            try:
                body = response.json()
            except ValueError:
                body = {}
            code = body.get("code") if isinstance(body, dict) else None
            message = (body.get("message") if isinstance(body, dict) else None) or response.text
            if response.status_code == 409 or code == "23505":
                raise DuplicateKeyError(message or "duplicate key value violates unique constraint")
            raise RemoteStoreError(message or f"HTTP {response.status_code}", code=code)
        if not response.content:
            return None
        return response.json()

    async def select(
        self,
        table: str,
        filters: Sequence[Filter] = (),
        order: Sequence[Order] = (),
        *,
        limit: int | None = None,
        offset: int = 0,
    ) -> list[dict[str, Any]]:
        params = [("select", "*")] + [encode_filter(item) for item in filters]
        if order:
            params.append(("order", ",".join(f"{o.column}.{'asc' if o.ascending else 'desc'}" for o in order)))
        headers = self._headers()
        if limit is not None:
            headers["Range-Unit"] = "items"
            headers["Range"] = f"{offset}-{offset + limit - 1}"
        elif offset:
            params.append(("offset", str(offset)))
        rows = await self._request("GET", table, params=params, headers=headers)
        return list(rows or [])

    async def insert(self, table: str, row: dict[str, Any]) -> dict[str, Any]:
        rows = await self._request(
            "POST", table, payload=_jsonable(row), headers=self._headers("return=representation")
        )
        if not rows:
            raise RemoteStoreError(f"insert into {table} returned no row")
        return rows[0]

    async def update(self, table: str, filters: Sequence[Filter], patch: dict[str, Any]) -> int:
        rows = await self._request(
            "PATCH",
            table,
            params=[encode_filter(item) for item in filters],
            payload=_jsonable(patch),
            headers=self._headers("return=representation"),
        )
        return len(rows or [])

    async def delete(self, table: str, filters: Sequence[Filter]) -> int:
        rows = await self._request(
            "DELETE",
            table,
            params=[encode_filter(item) for item in filters],
            headers=self._headers("return=representation"),
        )
        return len(rows or [])

    async def upsert_ignore(self, table: str, rows: Sequence[dict[str, Any]]) -> int:
        if not rows:
            return 0
        created = await self._request(
            "POST",
            table,
            payload=[_jsonable(row) for row in rows],
            headers=self._headers("resolution=ignore-duplicates,return=representation"),
        )
        return len(created or [])

    async def get_or_create_dm(self, user_id: str, target_user_id: str) -> str:
        result = await self._request(
            "POST",
            "rpc/get_or_create_dm",
            payload={"target_user_id": target_user_id},
            headers=self._headers(),
        )
        if isinstance(result, list):
            result = result[0] if result else None
        if isinstance(result, dict):
            result = result.get("id") or result.get("get_or_create_dm")
        if not result:
            raise RemoteStoreError("get_or_create_dm returned no chat id")
        return str(result)


__all__ = ["PostgrestRemoteStore", "encode_filter"]
