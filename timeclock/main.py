import asyncio
import logging
import time
from contextlib import suppress
from typing import Any
from uuid import uuid4

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from timeclock import __version__
from timeclock.db import engine, init_db
from timeclock.errors import ApiError, InvalidStateError, error_response
from timeclock.logging_utils import setup_json_logging
from timeclock.routers import admin, metrics
from timeclock.services.org_settings import get_timezone_cache
from timeclock.services.recompute import get_recompute_coordinator
from timeclock.settings import get_cors_origins, get_settings

settings = get_settings()
setup_json_logging(settings.log_level)
logger = logging.getLogger("timeclock.request")
recompute_logger = logging.getLogger("timeclock.recompute")


app = FastAPI(title=settings.app_name, version=__version__)
app.add_middleware(
    CORSMiddleware,
    allow_origins=get_cors_origins(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def request_middleware(request: Request, call_next):
    request_id = request.headers.get("X-Request-Id") or str(uuid4())
    request.state.request_id = request_id
    request.state.actor = getattr(request.state, "actor", "system")
    request.state.actor_id = getattr(request.state, "actor_id", "system")

    start = time.perf_counter()
    status_code = 500
    try:
        response = await call_next(request)
        status_code = response.status_code
        response.headers["X-Request-Id"] = request_id
        return response
    finally:
        latency_ms = round((time.perf_counter() - start) * 1000, 2)
        logger.info(
            "request_complete",
            extra={
                "request_id": request_id,
                "path": request.url.path,
                "method": request.method,
                "status_code": status_code,
                "latency_ms": latency_ms,
                "actor": getattr(request.state, "actor", "system"),
                "actor_id": getattr(request.state, "actor_id", "system"),
                "employee_id": getattr(request.state, "employee_id", None),
            },
        )


@app.exception_handler(ApiError)
async def handle_api_error(request: Request, exc: ApiError) -> JSONResponse:
    return error_response(
        request,
        status_code=exc.status_code,
        code=exc.code,
        message=exc.message,
    )


@app.exception_handler(InvalidStateError)
async def handle_invalid_state(request: Request, exc: InvalidStateError) -> JSONResponse:
    return error_response(
        request,
        status_code=409,
        code="INVALID_STATE",
        message=str(exc),
    )


@app.exception_handler(HTTPException)
async def handle_http_exception(request: Request, exc: HTTPException) -> JSONResponse:
    status_code = exc.status_code
    code_map = {
        404: "NOT_FOUND",
        405: "METHOD_NOT_ALLOWED",
    }
    code = code_map.get(status_code, "HTTP_ERROR")
    message = str(exc.detail) if exc.detail else "Request failed."
    return error_response(
        request,
        status_code=status_code,
        code=code,
        message=message,
    )


@app.exception_handler(RequestValidationError)
async def handle_validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
    return error_response(
        request,
        status_code=422,
        code="VALIDATION_ERROR",
        message=str(exc.errors()),
    )


@app.exception_handler(Exception)
async def handle_unexpected_error(request: Request, exc: Exception) -> JSONResponse:
    logger.exception(
        "unhandled_error",
        extra={
            "request_id": getattr(request.state, "request_id", "unknown"),
            "path": request.url.path,
            "method": request.method,
        },
    )
    return error_response(
        request,
        status_code=500,
        code="INTERNAL_ERROR",
        message="Unexpected server error.",
    )


app.include_router(metrics.router)
app.include_router(admin.router)


@app.on_event("startup")
async def create_schema() -> None:
    if not settings.auto_create_schema:
        return
    await asyncio.to_thread(init_db, engine)
    logger.info("schema_created")


@app.on_event("startup")
async def start_metrics_refresh() -> None:
    if not settings.metrics_refresh_enabled:
        return
    if getattr(app.state, "metrics_refresh_task", None) is not None:
        return

    coordinator = get_recompute_coordinator()
    stop_event = asyncio.Event()
    app.state.metrics_refresh_stop_event = stop_event
    app.state.metrics_refresh_task = asyncio.create_task(coordinator.run_periodic(stop_event))
    recompute_logger.info(
        "metrics_refresh_started",
        extra={"interval_seconds": coordinator.interval_seconds},
    )


@app.on_event("shutdown")
async def stop_metrics_refresh() -> None:
    stop_event: asyncio.Event | None = getattr(app.state, "metrics_refresh_stop_event", None)
    task: asyncio.Task[None] | None = getattr(app.state, "metrics_refresh_task", None)
    if stop_event is not None:
        stop_event.set()
    if task is not None:
        task.cancel()
        with suppress(asyncio.CancelledError):
            await task
    app.state.metrics_refresh_stop_event = None
    app.state.metrics_refresh_task = None


@app.get("/health")
def health() -> dict[str, Any]:
    coordinator = get_recompute_coordinator()
    return {
        "status": "ok",
        "version": __version__,
        "timezone": str(get_timezone_cache().get()),
        "metrics_refresh": {
            "enabled": settings.metrics_refresh_enabled,
            "running": getattr(app.state, "metrics_refresh_task", None) is not None,
            "watched_users": len(coordinator.watched()),
        },
    }
