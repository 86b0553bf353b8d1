import asyncio
import uuid
from contextlib import asynccontextmanager
from typing import Any, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from csg.core.config import AppConfig
from csg.core.container import build_container
from csg.core.db import db_health
from csg.core.errors import AppError
from csg.core.observability import emit, last_error_summary
from csg.modules.characters.router import router as characters_router
from csg.modules.exports_imports.router import router as exports_imports_router
from csg.modules.series.router import router as series_router
from csg.modules.sync.auth import CredentialProvider
from csg.modules.sync.router import router as sync_router
from csg.modules.sync.transport import BlobTransport

# Contract locks:
# - /health keys: status, version, db, storage, sync, last_error_summary
# - X-Request-Id in/out (missing -> generated; always echoed back; also on errors)
# - Error envelope keys: error, message, request_id, details


def _err_envelope(error: str, message: str, request_id: Optional[str], details: Any, status_code: int) -> JSONResponse:
    headers = {}
    if request_id:
        headers["X-Request-Id"] = request_id
    return JSONResponse(
        status_code=status_code,
        content={
            "error": error,
            "message": message,
            "request_id": request_id,
            "details": details,
        },
        headers=headers,
    )


def create_app(
    config: Optional[AppConfig] = None,
    *,
    transport: Optional[BlobTransport] = None,
    credentials: Optional[CredentialProvider] = None,
) -> FastAPI:
    config = config or AppConfig.from_env()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        container = build_container(config, transport=transport, credentials=credentials)
        app.state.container = container
        container.scheduler.attach(asyncio.get_running_loop())
        emit("info", "app.start", "api started", None, __name__, version=config.app_version,
             sync_transport=config.sync_transport)
        try:
            await container.sync.restore_session()
        except AppError as e:
            emit("error", "sync.restore.failed", e.message, None, __name__, error=e.code)
        try:
            yield
        finally:
            await container.scheduler.close()
            container.engine.dispose()
            emit("info", "app.stop", "api stopped", None, __name__)

    app = FastAPI(title="Character Stat Graph API", version=config.app_version, lifespan=lifespan)

    @app.middleware("http")
    async def _request_id_mw(request: Request, call_next):
        rid = request.headers.get("X-Request-Id") or uuid.uuid4().hex.upper()
        request.state.request_id = rid
        emit("info", "http.request.start", f"{request.method} {request.url.path}", rid, __name__)
        try:
            resp = await call_next(request)
        except Exception as e:
            emit("error", "http.request.exception", str(e), rid, __name__)
            raise
        resp.headers["X-Request-Id"] = rid
        emit("info", "http.request.end", f"{request.method} {request.url.path} -> {getattr(resp, 'status_code', None)}", rid, __name__)
        return resp

    @app.exception_handler(AppError)
    async def _app_exc_handler(request: Request, exc: AppError):
        rid = getattr(request.state, "request_id", None)
        level = "error" if exc.status_code >= 500 else "warn"
        emit(level, "http.request.app_error", exc.message, rid, __name__, error=exc.code)
        return _err_envelope(exc.code, exc.message, rid, exc.details, exc.status_code)

    @app.exception_handler(StarletteHTTPException)
    async def _http_exc_handler(request: Request, exc: StarletteHTTPException):
        rid = getattr(request.state, "request_id", None)
        detail = exc.detail
        if isinstance(detail, dict) and "error" in detail:
            return _err_envelope(
                str(detail["error"]),
                str(detail.get("message") or detail["error"]),
                rid,
                dict(detail.get("details") or {}, status_code=exc.status_code),
                exc.status_code,
            )
        return _err_envelope("http_error", str(detail), rid, {"status_code": exc.status_code}, exc.status_code)

    @app.exception_handler(RequestValidationError)
    async def _validation_exc_handler(request: Request, exc: RequestValidationError):
        rid = getattr(request.state, "request_id", None)
        return _err_envelope("validation_error", "request validation failed", rid, exc.errors(), 422)

    @app.exception_handler(Exception)
    async def _unhandled_exc_handler(request: Request, exc: Exception):
        rid = getattr(request.state, "request_id", None)
        return _err_envelope("internal_error", "internal server error", rid, {"type": type(exc).__name__}, 500)

    @app.get("/health")
    def health(request: Request):
        container = request.app.state.container
        db = db_health(container.engine)
        storage = container.storage.health()
        return {
            "status": "ok" if db.get("status") == "ok" and storage.get("status") == "ok" else "degraded",
            "version": config.app_version,
            "db": db,
            "storage": storage,
            "sync": {
                "enabled": container.sync.enabled,
                "auth_state": container.sync.auth_state.value,
                "state": container.sync.state.value,
                "dirty": container.store.is_dirty,
            },
            "last_error_summary": last_error_summary(),
        }

    app.include_router(series_router)
    app.include_router(characters_router)
    app.include_router(exports_imports_router)
    app.include_router(sync_router)
    return app


app = create_app()


def run() -> None:
    import os

    import uvicorn

    uvicorn.run("csg.main:app", host=os.getenv("HOST", "127.0.0.1"), port=int(os.getenv("PORT", "7000")))
