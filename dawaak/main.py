import logging
import time
import traceback
import uuid
from contextlib import asynccontextmanager
from pathlib import Path

from dotenv import load_dotenv

# Load .env from the project root wherever uvicorn is started from
_PROJ_ROOT = Path(__file__).resolve().parent.parent
load_dotenv(_PROJ_ROOT / ".env")

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from starlette.exceptions import HTTPException

from dawaak.api.admin import router as admin_router
from dawaak.api.ai import router as ai_router
from dawaak.api.auth import router as auth_router
from dawaak.api.tables import router as tables_router
from dawaak.core.config import is_openai_configured, settings
from dawaak.core.rate_limit import limiter
from dawaak.logging import setup_logging
from dawaak.services.seed import seed_defaults
from dawaak.store import PersistenceError, RecordStore, StoreError, build_persistence
from dawaak.store.schema import ERROR_TABLE

setup_logging(level=settings.log_level)
log = logging.getLogger("dawaak")


def _cors_origins_list() -> list[str]:
    if not settings.cors_origins or settings.cors_origins.strip() == "*":
        return ["*"]
    return [o.strip() for o in settings.cors_origins.split(",") if o.strip()]


def _error_response(request: Request, status_code: int, detail: str) -> JSONResponse:
    rid = getattr(request.state, "request_id", None)
    body = {"error": detail, "status_code": status_code}
    if rid:
        body["request_id"] = rid
    return JSONResponse(status_code=status_code, content=body)


def _rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    log.warning("Rate limit exceeded: path=%s limit=%s", request.url.path, exc.detail)
    return _error_response(request, 429, "Too many requests, please wait a minute.")


def _validation_error_message(exc: RequestValidationError) -> str:
    errs = exc.errors()
    if not errs:
        return "Invalid request."
    first = errs[0]
    loc = [str(part) for part in (first.get("loc") or []) if part != "body"]
    if first.get("type") == "json_invalid":
        return "Request body is not valid JSON."
    if first.get("type") == "missing":
        return f"Field '{loc[-1]}' is required." if loc else "Request body is required."
    msg = first.get("msg") or "Invalid request."
    return f"{'.'.join(loc)}: {msg}" if loc else msg


def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    log.warning(
        "Request validation error: path=%s method=%s detail=%s",
        request.url.path,
        request.method,
        exc.errors(),
    )
    return _error_response(request, 400, _validation_error_message(exc))


def store_exception_handler(request: Request, exc: StoreError) -> JSONResponse:
    if isinstance(exc, PersistenceError):
        log.error("Persistence failure: path=%s %s", request.url.path, exc.message)
    else:
        log.info("%s: path=%s %s", type(exc).__name__, request.url.path, exc.message)
    return _error_response(request, exc.status_code, exc.message)


def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    detail = exc.detail if isinstance(exc.detail, str) else str(exc.detail)
    response = _error_response(request, exc.status_code, detail)
    if exc.headers:
        response.headers.update(exc.headers)
    return response


def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    log.exception("Unhandled exception: path=%s %s", request.url.path, exc)
    store = getattr(request.app.state, "store", None)
    if store is not None:
        try:
            store.insert(
                ERROR_TABLE,
                {
                    "endpoint": request.url.path,
                    "method": request.method,
                    "error_message": str(exc)[:2000],
                    "stack_trace": "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))[:10000],
                    "request_id": getattr(request.state, "request_id", None),
                },
            )
        except Exception as e:
            log.warning("error_log write failed: %s", e)
    return _error_response(request, 500, "Internal server error.")


def create_app(store: RecordStore | None = None) -> FastAPI:
    """Builds the API around an explicit store; without one the store comes from STORAGE_URL at startup."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if getattr(app.state, "store", None) is None:
            app.state.store = RecordStore(build_persistence(settings.storage_url))
        if settings.seed_defaults:
            seed_defaults(app.state.store, settings)
        log.info(
            "%s ready: storage=%s openai=%s",
            settings.platform_name,
            app.state.store.persistence.name,
            "yes" if is_openai_configured() else "no",
        )
        yield

    app = FastAPI(
        title="Dawaak API",
        description="دوائك المنزلي: record store and REST tables API",
        lifespan=lifespan,
    )
    app.state.limiter = limiter
    app.state.store = store
    app.state.started_at = time.monotonic()

    app.add_exception_handler(RateLimitExceeded, _rate_limit_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(StoreError, store_exception_handler)
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)

    @app.middleware("http")
    async def request_id_and_latency(request: Request, call_next):
        request.state.request_id = str(uuid.uuid4())
        start = time.perf_counter()
        response = await call_next(request)
        latency_ms = (time.perf_counter() - start) * 1000
        response.headers["X-Request-ID"] = request.state.request_id
        log.info(
            "request_id=%s method=%s path=%s status=%s latency_ms=%.2f",
            request.state.request_id,
            request.method,
            request.url.path,
            response.status_code,
            latency_ms,
        )
        return response

    app.add_middleware(
        CORSMiddleware,
        allow_origins=_cors_origins_list(),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(auth_router)
    app.include_router(tables_router)
    if settings.api_prefix:
        app.include_router(tables_router, prefix=settings.api_prefix)
    app.include_router(admin_router)
    app.include_router(ai_router)

    @app.get("/health")
    def health(request: Request):
        current = request.app.state.store
        return {
            "status": "ok",
            "storage": current.persistence.name if current else None,
            "tables": len(current.table_names) if current else 0,
            "openai_configured": is_openai_configured(),
        }

    return app


app = create_app()
