from __future__ import annotations

import json
import logging
import threading
from functools import lru_cache
from typing import Any, Dict

from fastapi import Depends, FastAPI, File, HTTPException, Request, UploadFile
from fastapi.responses import HTMLResponse, JSONResponse, RedirectResponse, Response
from pydantic import BaseModel
from starlette.concurrency import run_in_threadpool

from planbook import get_version
from planbook.actions import ActionError
from planbook.auth import COOKIE_MAX_AGE, COOKIE_NAME
from planbook.core.config import AppConfig, load_app_config
from planbook.i18n import normalize_language
from planbook.runtime import PlanbookRuntime
from planbook.state import VIEWS
from planbook.views import render_login_page, render_page, view_context_summary

LOGGER = logging.getLogger("planbook.web")

BACKUP_FILENAME = "cuaderno-profesor-backup-{day}.json"


@lru_cache
def get_settings() -> AppConfig:
    return load_app_config()


_RUNTIME_LOCK = threading.Lock()


@lru_cache
def _build_runtime() -> PlanbookRuntime:
    return PlanbookRuntime.from_config(get_settings()).start()


def get_runtime() -> PlanbookRuntime:
    # Sync dependencies run in the threadpool; the first load must happen once.
    with _RUNTIME_LOCK:
        return _build_runtime()


class HealthResponse(BaseModel):
    status: str
    version: str
    online: bool
    remote_configured: bool
    loaded_from: str | None = None
    last_error: str | None = None


app = FastAPI(title="Planbook", version=get_version())


def _is_authenticated(request: Request, runtime: PlanbookRuntime) -> bool:
    return runtime.auth.is_authenticated(request.cookies.get(COOKIE_NAME))


def _home() -> RedirectResponse:
    return RedirectResponse("/", status_code=303)


def _page(request: Request, runtime: PlanbookRuntime, *, error: str | None = None, status_code: int = 200) -> HTMLResponse:
    translator = runtime.translator(request.headers.get("accept-language"))
    html = render_page(
        runtime.state,
        translator,
        today=runtime.today(),
        error=error,
        auth_enabled=runtime.auth.enabled,
    )
    return HTMLResponse(html, status_code=status_code)


def _login(request: Request, runtime: PlanbookRuntime, *, failed: bool = False) -> HTMLResponse:
    translator = runtime.translator(request.headers.get("accept-language"))
    return HTMLResponse(render_login_page(translator, failed=failed), status_code=401 if failed else 200)


def _require_auth(request: Request, runtime: PlanbookRuntime) -> None:
    if not _is_authenticated(request, runtime):
        raise HTTPException(status_code=401, detail="Authentication required")


@app.get("/health", response_model=HealthResponse)
def health(runtime: PlanbookRuntime = Depends(get_runtime)) -> HealthResponse:
    return HealthResponse(
        status="ok",
        version=get_version(),
        online=runtime.state.is_online,
        remote_configured=runtime.config.remote.configured,
        loaded_from=runtime.loaded_from,
        last_error=runtime.db.last_error,
    )


@app.get("/", response_class=HTMLResponse)
def index(request: Request, runtime: PlanbookRuntime = Depends(get_runtime)) -> HTMLResponse:
    if not _is_authenticated(request, runtime):
        return _login(request, runtime)
    return _page(request, runtime)


@app.get("/view/{name}", response_class=HTMLResponse)
def show_view(name: str, request: Request, runtime: PlanbookRuntime = Depends(get_runtime)) -> HTMLResponse:
    if not _is_authenticated(request, runtime):
        return _login(request, runtime)
    if name not in VIEWS:
        raise HTTPException(status_code=404, detail=f"Unknown view {name}")
    runtime.state.active_view = name
    return _page(request, runtime)


@app.post("/actions/{name}")
async def run_action(name: str, request: Request, runtime: PlanbookRuntime = Depends(get_runtime)) -> Response:
    _require_auth(request, runtime)
    if name not in runtime.registry:
        raise HTTPException(status_code=404, detail=f"Unknown action {name}")
    form = await request.form()
    payload = {key: value for key, value in form.items() if isinstance(value, str)}
    try:
        result = await run_in_threadpool(runtime.dispatch, name, payload)
    except ActionError as exc:
        LOGGER.info("Action %s rejected: %s", name, exc)
        return await run_in_threadpool(_page, request, runtime, error=str(exc), status_code=400)
    if not result.rerender:
        return Response(status_code=204)
    return _home()


@app.post("/login", response_class=HTMLResponse)
async def login(request: Request, runtime: PlanbookRuntime = Depends(get_runtime)) -> Response:
    if not runtime.auth.enabled:
        return _home()
    form = await request.form()
    password = form.get("password")
    if not isinstance(password, str) or not runtime.auth.verify(password):
        return await run_in_threadpool(_login, request, runtime, failed=True)
    response = _home()
    response.set_cookie(
        COOKIE_NAME,
        runtime.auth.cookie_value(),
        max_age=COOKIE_MAX_AGE,
        path="/",
        httponly=True,
        samesite="strict",
    )
    return response


@app.post("/logout")
def logout() -> Response:
    response = _home()
    response.delete_cookie(COOKIE_NAME, path="/")
    return response


@app.get("/lang/{code}")
def change_language(code: str, runtime: PlanbookRuntime = Depends(get_runtime)) -> Response:
    runtime.set_language(normalize_language(code) or runtime.config.i18n.default_language)
    return _home()


@app.get("/export")
def export_backup(request: Request, runtime: PlanbookRuntime = Depends(get_runtime)) -> Response:
    _require_auth(request, runtime)
    filename = BACKUP_FILENAME.format(day=runtime.today().isoformat())
    body = json.dumps(runtime.state.snapshot.to_backup(), ensure_ascii=False, indent=2)
    return Response(
        content=body,
        media_type="application/json",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@app.post("/import")
async def import_backup(
    request: Request,
    file: UploadFile = File(...),
    runtime: PlanbookRuntime = Depends(get_runtime),
) -> Response:
    _require_auth(request, runtime)
    raw = await file.read()
    try:
        await run_in_threadpool(runtime.dispatch, "import-data", {"data": raw.decode("utf-8")})
    except UnicodeDecodeError:
        return await run_in_threadpool(_page, request, runtime, error="The backup file is not valid UTF-8", status_code=400)
    except ActionError as exc:
        LOGGER.warning("Backup import rejected: %s", exc)
        return await run_in_threadpool(_page, request, runtime, error=str(exc), status_code=400)
    return _home()


@app.get("/api/state")
def api_state(request: Request, runtime: PlanbookRuntime = Depends(get_runtime)) -> Dict[str, Any]:
    _require_auth(request, runtime)
    return {
        "snapshot": runtime.state.snapshot.to_backup(),
        "view": view_context_summary(runtime.state),
        "sync": {
            "use_remote": runtime.db.use_remote,
            "healthy": runtime.db.healthy,
            "last_error": runtime.db.last_error,
            "loaded_from": runtime.loaded_from,
        },
        "counts": runtime.state.snapshot.counts(),
    }


@app.exception_handler(HTTPException)
async def http_error_handler(_: Any, exc: HTTPException) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail})
