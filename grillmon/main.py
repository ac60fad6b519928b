"""
main.py — Grill Monitor FastAPI application entry point.

Start with: grillmon-server
        or: uvicorn grillmon.main:app --reload --port 8000
"""
import logging
from contextlib import asynccontextmanager
from datetime import timedelta
from typing import Any

import httpx
import uvicorn
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from grillmon.cache import open_local_cache
from grillmon.config import Settings, settings
from grillmon.sensors.feed import SensorSnapshotSlot
from grillmon.session.backends import FileSessionBackend
from grillmon.session.history import utc_now
from grillmon.session.manager import SessionManager
from grillmon.session.sync import SyncOrchestrator
from grillmon.store import DurableSessionStore
from grillmon.weather.service import WeatherLocation

# ---------------------------------------------------------------------------
# Logging: configured before anything else
# ---------------------------------------------------------------------------
logging.basicConfig(
    level=logging.DEBUG if settings.debug else logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s — %(message)s",
)
logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Startup & shutdown
# ---------------------------------------------------------------------------
async def startup(app: FastAPI, config: Settings = settings, start_sync: bool = True) -> None:
    """
    1. Durable session store (storage root from config.environment)
    2. Local cache (file or Redis) + server SessionManager
    3. Server SyncOrchestrator (background loop unless start_sync=False)
    4. Shared outbound httpx client (sensor upstream, weather)
    """
    app.state.clock = utc_now
    app.state.settings = config

    # --- 1. Durable store ---
    store = DurableSessionStore(
        config.session_dir,
        max_age=timedelta(hours=config.session_max_age_hours),
        max_backups=config.max_backups,
    )
    if not store.initialize():
        raise RuntimeError(f"Session storage unavailable at {config.session_dir}")
    app.state.session_store = store

    # --- 2. Local cache + manager ---
    cache = await open_local_cache(
        config.local_cache_backend,
        config.local_cache_path,
        config.redis_url,
        slot="server",
    )
    manager = SessionManager(
        FileSessionBackend(store),
        cache,
        max_age=timedelta(hours=config.session_max_age_hours),
        retention=timedelta(hours=config.history_retention_hours),
    )
    await manager.initialize()
    await manager.load()
    app.state.session_manager = manager

    # --- 3. Sync ---
    orchestrator = SyncOrchestrator(
        manager,
        interval=timedelta(seconds=config.sync_interval_seconds),
        min_interval=timedelta(seconds=config.sync_min_interval_seconds),
        retention=timedelta(hours=config.history_retention_hours),
        max_readings=config.history_max_readings,
    )
    if start_sync:
        orchestrator.start()
    app.state.session_sync = orchestrator

    # --- 4. Sensor feed + weather ---
    app.state.sensor_slot = SensorSnapshotSlot()
    app.state.sensor_upstream_url = config.sensor_upstream_url
    app.state.http_client = httpx.AsyncClient(timeout=config.http_timeout_seconds)
    app.state.weather_location = WeatherLocation(
        config.weather_latitude,
        config.weather_longitude,
        config.weather_timezone,
        config.weather_location_label,
    )

    logger.info("Grill Monitor v%s starting up environment=%s", config.app_version, config.environment)


async def shutdown(app: FastAPI) -> None:
    await app.state.session_sync.stop()
    await app.state.session_manager.cache.close()
    await app.state.http_client.aclose()
    logger.info("Grill Monitor shutting down")


@asynccontextmanager
async def lifespan(app: FastAPI):
    await startup(app)
    yield
    await shutdown(app)


# ---------------------------------------------------------------------------
# FastAPI application instance
# ---------------------------------------------------------------------------
app = FastAPI(
    title="Grill Monitor API",
    version=settings.app_version,
    description="Live BBQ probe dashboard backend with multi-device cook-session sync.",
    lifespan=lifespan,
    docs_url="/api/docs",
    redoc_url="/api/redoc",
    openapi_url="/api/openapi.json",
)

# ---------------------------------------------------------------------------
# CORS middleware, restricted to dashboard origins from settings
# ---------------------------------------------------------------------------
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ---------------------------------------------------------------------------
# Error response helper
# ---------------------------------------------------------------------------
def _make_error_response(
    code: str,
    message: str,
    details: list[dict[str, Any]] | None = None,
    status_code: int = 500,
) -> JSONResponse:
    """Build a standard {error: {code, message, details}} response."""
    body = {
        "error": {
            "code": code,
            "message": message,
            "details": details or [],
        }
    }
    return JSONResponse(status_code=status_code, content=body)


# ---------------------------------------------------------------------------
# Global exception handlers (registered before routers)
# ---------------------------------------------------------------------------
@app.exception_handler(RequestValidationError)
async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """Returns ALL field violations in one response."""
    details = []
    for error in exc.errors():
        field = ".".join(str(loc) for loc in error["loc"] if loc != "body")
        details.append({"field": field or None, "issue": error["msg"]})
    return _make_error_response(
        code="VALIDATION_ERROR",
        message="Request validation failed",
        details=details,
        status_code=422,
    )


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(
    request: Request, exc: StarletteHTTPException
) -> JSONResponse:
    code_map = {
        400: "BAD_REQUEST",
        404: "NOT_FOUND",
        405: "METHOD_NOT_ALLOWED",
        409: "CONFLICT",
        422: "VALIDATION_ERROR",
        500: "INTERNAL_ERROR",
        502: "BAD_GATEWAY",
        503: "SERVICE_UNAVAILABLE",
    }
    code = code_map.get(exc.status_code, f"HTTP_{exc.status_code}")
    return _make_error_response(
        code=code,
        message=str(exc.detail),
        status_code=exc.status_code,
    )


@app.exception_handler(ValueError)
async def value_error_handler(
    request: Request, exc: ValueError
) -> JSONResponse:
    """
    Malformed session payloads (pydantic ValidationError is a ValueError)
    surface as 422 VALIDATION_ERROR.
    """
    details = []
    errors = getattr(exc, "errors", None)
    if callable(errors):
        for error in errors():
            field = ".".join(str(loc) for loc in error["loc"])
            details.append({"field": field or None, "issue": error["msg"]})
    return _make_error_response(
        code="VALIDATION_ERROR",
        message="Invalid session data" if details else str(exc),
        details=details,
        status_code=422,
    )


@app.exception_handler(Exception)
async def unhandled_exception_handler(
    request: Request, exc: Exception
) -> JSONResponse:
    """Anything unexpected becomes a 500; exception details only in debug mode."""
    logger.error(
        "Unhandled exception on %s %s",
        request.method,
        request.url.path,
        exc_info=True,
    )
    if settings.debug:
        details = [{"issue": f"{type(exc).__name__}: {exc}"}]
        message = "An unexpected error occurred (debug details included)"
    else:
        details = []
        message = "An unexpected error occurred"
    return _make_error_response(
        code="INTERNAL_ERROR",
        message=message,
        details=details,
        status_code=500,
    )


# ---------------------------------------------------------------------------
# Health endpoint
# ---------------------------------------------------------------------------
@app.get("/api/health", tags=["System"])
async def health_check(request: Request) -> dict:
    manager = getattr(request.app.state, "session_manager", None)
    current = manager.current if manager is not None else None
    return {
        "status": "ok",
        "version": settings.app_version,
        "sessionId": current.id if current else None,
        "timestamp": utc_now().isoformat(),
    }


# ---------------------------------------------------------------------------
# Routers
# ---------------------------------------------------------------------------
from grillmon.sensors.routes import router as sensors_router  # noqa: E402
from grillmon.session.routes import router as session_router  # noqa: E402
from grillmon.weather.routes import router as weather_router  # noqa: E402

app.include_router(session_router)
app.include_router(sensors_router)
app.include_router(weather_router)


def run() -> None:
    """Console entry point: grillmon-server"""
    uvicorn.run("grillmon.main:app", host="0.0.0.0", port=8000, reload=settings.debug)
