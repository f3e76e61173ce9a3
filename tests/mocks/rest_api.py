"""FastAPI mock of the PostgREST endpoints used in integration tests."""

from __future__ import annotations

import json
from typing import Any, Dict, List, Optional

import anyio
import httpx
from fastapi import FastAPI, Header, HTTPException, Request, Response
from fastapi.responses import JSONResponse
from httpx import ASGITransport, BaseTransport

from persistence.remote import InMemoryRemote, RemoteError

_RESERVED_PARAMS = {"select", "order", "limit", "on_conflict"}


class _SyncASGITransport(BaseTransport):
    """Bridge ASGI apps into sync httpx clients."""

    def __init__(self, app: FastAPI) -> None:
        self._asgi = ASGITransport(app=app)

    def handle_request(self, request: httpx.Request) -> httpx.Response:
        async def _send() -> tuple[httpx.Response, bytes]:
            response = await self._asgi.handle_async_request(request)
            body = await response.aread()
            await response.aclose()
            return response, body

        response, body = anyio.run(_send)
        return httpx.Response(
            status_code=response.status_code,
            headers=response.headers,
            content=body,
            extensions=response.extensions,
            request=request,
        )

    def close(self) -> None:
        anyio.run(self._asgi.aclose)


class RestAPIMock:
    """In-memory FastAPI app speaking the ``/rest/v1/<table>`` dialect.

    Rows live in an ``InMemoryRemote``; every request is recorded in ``requests``.
    Setting ``outage`` to a status code makes every request fail with it.
    """

    def __init__(
        self,
        *,
        base_url: str = "http://rest-mock.local",
        api_key: str = "anon-test-key",
    ) -> None:
        self.base_url = base_url
        self.api_key = api_key
        self.app = FastAPI()
        self.store = InMemoryRemote()
        self.requests: List[Dict[str, Any]] = []
        self.outage: Optional[int] = None
        self._httpx_clients: List[httpx.Client] = []
        self._register_routes()

    @property
    def tables(self) -> Dict[str, List[Dict[str, Any]]]:
        return self.store.tables

    def _check(self, request: Request, apikey: Optional[str], authorization: Optional[str]) -> None:
        self.requests.append(
            {
                "method": request.method,
                "path": request.url.path,
                "params": dict(request.query_params),
                "prefer": request.headers.get("prefer"),
            }
        )
        if self.outage is not None:
            raise HTTPException(status_code=self.outage, detail="service unavailable")
        if apikey != self.api_key or authorization != f"Bearer {self.api_key}":
            raise HTTPException(status_code=401, detail="invalid api key")

    def _register_routes(self) -> None:
        app = self.app

        @app.get("/rest/v1/{table}")
        def select_rows(
            table: str,
            request: Request,
            apikey: Optional[str] = Header(default=None),
            authorization: Optional[str] = Header(default=None),
        ) -> List[Dict[str, Any]]:
            self._check(request, apikey, authorization)
            params = request.query_params
            order = params.get("order")
            column, descending = None, False
            if order:
                column, _, direction = order.partition(".")
                descending = direction == "desc"
            limit = params.get("limit")
            return self.store.select(
                table,
                columns=params.get("select", "*"),
                filters=_filters(request),
                order=column,
                descending=descending,
                limit=int(limit) if limit else None,
            )

        @app.post("/rest/v1/{table}")
        async def insert_rows(
            table: str,
            request: Request,
            apikey: Optional[str] = Header(default=None),
            authorization: Optional[str] = Header(default=None),
            prefer: Optional[str] = Header(default=None),
        ) -> Response:
            self._check(request, apikey, authorization)
            rows = _rows(await request.body())
            merge = "resolution=merge-duplicates" in (prefer or "")
            written = []
            for row in rows:
                try:
                    if merge:
                        written.append(self.store.upsert(table, row, on_conflict=request.query_params.get("on_conflict")))
                    else:
                        written.append(self.store.insert(table, row))
                except RemoteError as exc:
                    raise HTTPException(status_code=exc.status_code or 400, detail=str(exc)) from exc
            if "return=representation" in (prefer or ""):
                return JSONResponse(status_code=201, content=written)
            return Response(status_code=201)

        @app.patch("/rest/v1/{table}")
        async def update_rows(
            table: str,
            request: Request,
            apikey: Optional[str] = Header(default=None),
            authorization: Optional[str] = Header(default=None),
        ) -> List[Dict[str, Any]]:
            self._check(request, apikey, authorization)
            values = json.loads(await request.body() or b"{}")
            return self.store.update(table, values, filters=_filters(request))

        @app.delete("/rest/v1/{table}")
        def delete_rows(
            table: str,
            request: Request,
            apikey: Optional[str] = Header(default=None),
            authorization: Optional[str] = Header(default=None),
        ) -> Response:
            self._check(request, apikey, authorization)
            filters = _filters(request)
            if not filters:
                raise HTTPException(status_code=400, detail="DELETE requires a filter")
            self.store.delete(table, filters=filters)
            return Response(status_code=204)

    # ------------------------------------------------------------------

    def reset(self) -> None:
        self.store.tables.clear()
        self.requests.clear()
        self.outage = None

    def build_httpx_client(self, *, timeout: float = 5.0) -> httpx.Client:
        client = httpx.Client(
            base_url=self.base_url,
            transport=_SyncASGITransport(app=self.app),
            timeout=timeout,
        )
        self._httpx_clients.append(client)
        return client

    def close(self) -> None:
        for client in self._httpx_clients:
            client.close()
        self._httpx_clients.clear()


def _filters(request: Request) -> Dict[str, str]:
    filters = {}
    for key, value in request.query_params.items():
        if key in _RESERVED_PARAMS:
            continue
        if not value.startswith("eq."):
            raise HTTPException(status_code=400, detail=f"Unsupported filter {key}={value}")
        filters[key] = value[3:]
    return filters


def _rows(body: bytes) -> List[Dict[str, Any]]:
    payload = json.loads(body or b"[]")
    return payload if isinstance(payload, list) else [payload]


__all__ = ["RestAPIMock"]
