"""HTTP client for the PostgREST-style backend, plus an in-memory twin for development."""

from __future__ import annotations

import copy
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Mapping, Protocol

import httpx

from planbook.core.config import RemoteConfig

LOGGER = logging.getLogger("planbook.remote")

PRIMARY_KEYS: Dict[str, str] = {
    "schedules": "day_time_key",
    "class_entries": "entry_key",
}


class RemoteError(RuntimeError):
    """Raised when the backend cannot be reached or rejects a request."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class RemoteConfigError(ValueError):
    """Raised when the remote backend is requested without url/key."""


class Remote(Protocol):
    def select(
        self,
        table: str,
        *,
        columns: str = "*",
        filters: Mapping[str, Any] | None = None,
        order: str | None = None,
        descending: bool = False,
        limit: int | None = None,
    ) -> List[Dict[str, Any]]: ...

    def insert(self, table: str, row: Mapping[str, Any]) -> Dict[str, Any]: ...

    def update(self, table: str, values: Mapping[str, Any], *, filters: Mapping[str, Any]) -> List[Dict[str, Any]]: ...

    def upsert(self, table: str, row: Mapping[str, Any], *, on_conflict: str | None = None) -> Dict[str, Any]: ...

    def delete(self, table: str, *, filters: Mapping[str, Any]) -> None: ...

    def close(self) -> None: ...


def primary_key(table: str) -> str:
    return PRIMARY_KEYS.get(table, "id")


class RemoteClient:
    """Thin wrapper over the PostgREST REST dialect (``/rest/v1/<table>``)."""

    def __init__(
        self,
        base_url: str,
        api_key: str,
        *,
        client: httpx.Client | None = None,
        timeout: float = 10.0,
    ) -> None:
        self._api_key = api_key
        if client is None:
            self._client = httpx.Client(
                base_url=base_url.rstrip("/"),
                timeout=timeout,
            )
            self._owns_client = True
        else:
            self._client = client
            self._owns_client = False

    def select(
        self,
        table: str,
        *,
        columns: str = "*",
        filters: Mapping[str, Any] | None = None,
        order: str | None = None,
        descending: bool = False,
        limit: int | None = None,
    ) -> List[Dict[str, Any]]:
        params: Dict[str, Any] = {"select": columns, **_filter_params(filters)}
        if order:
            params["order"] = f"{order}.{'desc' if descending else 'asc'}"
        if limit is not None:
            params["limit"] = str(limit)
        data = self._request("GET", table, params=params)
        return data if isinstance(data, list) else []

    def insert(self, table: str, row: Mapping[str, Any]) -> Dict[str, Any]:
        data = self._request(
            "POST",
            table,
            json=[dict(row)],
            prefer="return=representation",
        )
        return _first_row(data, row)

    def update(self, table: str, values: Mapping[str, Any], *, filters: Mapping[str, Any]) -> List[Dict[str, Any]]:
        if not filters:
            raise ValueError("update requires at least one filter")
        data = self._request(
            "PATCH",
            table,
            params=_filter_params(filters),
            json=dict(values),
            prefer="return=representation",
        )
        return data if isinstance(data, list) else []

    def upsert(self, table: str, row: Mapping[str, Any], *, on_conflict: str | None = None) -> Dict[str, Any]:
        data = self._request(
            "POST",
            table,
            params={"on_conflict": on_conflict or primary_key(table)},
            json=[dict(row)],
            prefer="resolution=merge-duplicates,return=representation",
        )
        return _first_row(data, row)

    def delete(self, table: str, *, filters: Mapping[str, Any]) -> None:
        if not filters:
            raise ValueError("delete requires at least one filter")
        self._request("DELETE", table, params=_filter_params(filters))

    def close(self) -> None:
        if getattr(self, "_owns_client", False):
            self._client.close()

    def _build_headers(self, prefer: str | None) -> Dict[str, str]:
        headers = {
            "apikey": self._api_key,
            "Authorization": f"Bearer {self._api_key}",
        }
        if prefer:
            headers["Prefer"] = prefer
        return headers

    def _request(
        self,
        method: str,
        table: str,
        *,
        params: Mapping[str, Any] | None = None,
        json: Any = None,
        prefer: str | None = None,
    ) -> Any:
        try:
            response = self._client.request(
                method,
                f"/rest/v1/{table}",
                params=params,
                json=json,
                headers=self._build_headers(prefer),
            )
        except httpx.HTTPError as exc:
            raise RemoteError(f"{method} {table} failed: {exc}") from exc
        if response.is_error:
            raise RemoteError(
                f"{method} {table} returned {response.status_code}: {response.text[:200]}",
                status_code=response.status_code,
            )
        if not response.content:
            return []
        try:
            return response.json()
        except ValueError as exc:
            raise RemoteError(f"{method} {table} returned non-JSON payload") from exc

    def __enter__(self) -> "RemoteClient":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()


class InMemoryRemote:
    """Backend twin holding tables in memory.

    Used when ``use_mock`` is configured and throughout the tests. Setting
    ``fail_with`` makes every call raise that error, simulating an outage.
    """

    def __init__(self, tables: Mapping[str, List[Dict[str, Any]]] | None = None) -> None:
        self.tables: Dict[str, List[Dict[str, Any]]] = {
            name: [dict(row) for row in rows] for name, rows in (tables or {}).items()
        }
        self.calls: List[tuple[str, str]] = []
        self.fail_with: RemoteError | None = None
        self._last_created: datetime | None = None
        self._next_id = 1

    def _enter(self, method: str, table: str) -> List[Dict[str, Any]]:
        self.calls.append((method, table))
        if self.fail_with is not None:
            raise self.fail_with
        return self.tables.setdefault(table, [])

    def select(
        self,
        table: str,
        *,
        columns: str = "*",
        filters: Mapping[str, Any] | None = None,
        order: str | None = None,
        descending: bool = False,
        limit: int | None = None,
    ) -> List[Dict[str, Any]]:
        rows = [row for row in self._enter("select", table) if _matches(row, filters)]
        if order:
            rows = sorted(rows, key=lambda row: (row.get(order) is None, row.get(order)), reverse=descending)
        if limit is not None:
            rows = rows[:limit]
        if columns.strip() != "*":
            wanted = [column.strip() for column in columns.split(",")]
            rows = [{key: row.get(key) for key in wanted} for row in rows]
        return copy.deepcopy(rows)

    def insert(self, table: str, row: Mapping[str, Any]) -> Dict[str, Any]:
        rows = self._enter("insert", table)
        record = self._stamp(table, dict(row))
        pk = primary_key(table)
        if any(existing.get(pk) == record.get(pk) for existing in rows):
            raise RemoteError(f"duplicate key value violates unique constraint on {table}.{pk}", status_code=409)
        rows.append(record)
        return copy.deepcopy(record)

    def update(self, table: str, values: Mapping[str, Any], *, filters: Mapping[str, Any]) -> List[Dict[str, Any]]:
        if not filters:
            raise ValueError("update requires at least one filter")
        updated = []
        for row in self._enter("update", table):
            if _matches(row, filters):
                row.update(values)
                updated.append(copy.deepcopy(row))
        return updated

    def upsert(self, table: str, row: Mapping[str, Any], *, on_conflict: str | None = None) -> Dict[str, Any]:
        rows = self._enter("upsert", table)
        pk = on_conflict or primary_key(table)
        for existing in rows:
            if existing.get(pk) == row.get(pk):
                existing.update(row)
                return copy.deepcopy(existing)
        record = self._stamp(table, dict(row))
        rows.append(record)
        return copy.deepcopy(record)

    def delete(self, table: str, *, filters: Mapping[str, Any]) -> None:
        if not filters:
            raise ValueError("delete requires at least one filter")
        rows = self._enter("delete", table)
        rows[:] = [row for row in rows if not _matches(row, filters)]

    def close(self) -> None:
        return None

    def _stamp(self, table: str, record: Dict[str, Any]) -> Dict[str, Any]:
        pk = primary_key(table)
        if record.get(pk) in (None, ""):
            record[pk] = self._next_id
            self._next_id += 1
        now = datetime.now(timezone.utc)
        if self._last_created is not None and now <= self._last_created:
            now = self._last_created + timedelta(microseconds=1)
        self._last_created = now
        record.setdefault("created_at", now.isoformat())
        return record


def build_remote(config: RemoteConfig, *, client: httpx.Client | None = None) -> Remote | None:
    """Return the configured backend, or None when no backend is configured."""
    if config.use_mock:
        LOGGER.warning("Remote backend running in mock mode (use_mock=true); data lives in memory only.")
        return InMemoryRemote()
    if not config.url or not config.anon_key:
        LOGGER.warning("Remote url/anon_key missing; planbook will rely on the local cache.")
        return None
    return RemoteClient(config.url, config.anon_key, client=client, timeout=config.timeout)


def require_remote(config: RemoteConfig) -> Remote:
    remote = build_remote(config)
    if remote is None:
        raise RemoteConfigError("Remote backend required (set SUPABASE_URL and SUPABASE_ANON_KEY or use_mock).")
    return remote


def _filter_params(filters: Mapping[str, Any] | None) -> Dict[str, str]:
    return {column: f"eq.{value}" for column, value in (filters or {}).items()}


def _matches(row: Mapping[str, Any], filters: Mapping[str, Any] | None) -> bool:
    if not filters:
        return True
    return all(str(row.get(column)) == str(value) for column, value in filters.items())


def _first_row(data: Any, fallback: Mapping[str, Any]) -> Dict[str, Any]:
    if isinstance(data, list) and data and isinstance(data[0], dict):
        return data[0]
    if isinstance(data, dict):
        return data
    return dict(fallback)
