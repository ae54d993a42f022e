"""HTTP API exposing the endpoints used to exercise an APM agent."""

from __future__ import annotations

import asyncio
import logging
import random
import resource
import sys
import time
import traceback
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional

import anyio
from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from starlette.exceptions import HTTPException as StarletteHTTPException

from .config import ServiceConfig, load_service_config
from .database import ConstraintError, Database, StorageError
from .metrics import MetricsRecorder
from .models import User

logger = logging.getLogger("apm_demo.service")

RandomSource = Callable[[], float]
Sleeper = Callable[[float], Awaitable[None]]

_PROCESS_STARTED = time.monotonic()


class SimulatedFailure(RuntimeError):
    """Raised by the demo endpoints to produce a server error on purpose."""


class CreateUserRequest(BaseModel):
    name: Optional[str] = None
    email: Optional[str] = None


class UserResponse(BaseModel):
    id: int
    name: str
    email: str
    created_at: datetime


def _user_payload(user: User) -> Dict[str, Any]:
    return UserResponse(
        id=user.id,
        name=user.name,
        email=user.email,
        created_at=user.created_at,
    ).model_dump(mode="json")


def _success(data: Any = None, *, status_code: int = status.HTTP_200_OK, **extra: Any) -> JSONResponse:
    content: Dict[str, Any] = {"success": True}
    content.update(extra)
    if data is not None:
        content["data"] = data
    return JSONResponse(status_code=status_code, content=content)


def _failure(message: str, status_code: int, **extra: Any) -> JSONResponse:
    content: Dict[str, Any] = {"success": False, "error": message}
    content.update(extra)
    return JSONResponse(status_code=status_code, content=content)


def _bounded_int(raw: Optional[str], *, default: int, maximum: int) -> int:
    """Parse a positive query parameter, using ``default`` when absent or unusable, capped at ``maximum``."""

    value = default
    if raw is not None:
        try:
            parsed = int(raw.strip())
        except ValueError:
            parsed = 0
        if parsed > 0:
            value = parsed
    return min(value, maximum)


def _allocate_records(size: int) -> List[Dict[str, Any]]:
    return [
        {
            "id": index,
            "data": "x" * 100,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }
        for index in range(size)
    ]


def _memory_usage() -> Dict[str, int]:
    usage = resource.getrusage(resource.RUSAGE_SELF)
    return {
        "maxRss": int(usage.ru_maxrss),
        "allocatedBlocks": sys.getallocatedblocks(),
    }


def _format_validation_error(exc: RequestValidationError) -> str:
    problems = []
    for error in exc.errors():
        location = ".".join(str(part) for part in error.get("loc", ()) if part != "body")
        message = error.get("msg", "invalid value")
        problems.append(f"{location}: {message}" if location else message)
    return "Invalid request: " + "; ".join(problems) if problems else "Invalid request"


def register_api_routes(
    app: FastAPI,
    database: Database,
    *,
    config: ServiceConfig,
    metrics: MetricsRecorder,
    random_source: RandomSource,
    sleep: Sleeper,
) -> None:
    """Expose the JSON API endpoints on the provided FastAPI application."""

    @app.get("/api/health")
    async def healthcheck() -> Dict[str, Any]:
        return {
            "status": "healthy",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "uptime": round(time.monotonic() - _PROCESS_STARTED, 3),
        }

    @app.get("/api/users")
    async def list_users() -> JSONResponse:
        users = database.list_users()
        return _success([_user_payload(user) for user in users])

    @app.post("/api/users")
    async def create_user(payload: Optional[CreateUserRequest] = None) -> JSONResponse:
        name = (payload.name or "").strip() if payload else ""
        email = (payload.email or "").strip() if payload else ""
        if not name or not email:
            return _failure("Name and email are required", status.HTTP_400_BAD_REQUEST)

        try:
            user = database.create_user(name, email)
        except ConstraintError as exc:
            logger.warning("Rejected user %s: %s", email, exc)
            return _failure(str(exc), status.HTTP_409_CONFLICT)

        logger.info("User created: %s", user.id)
        return _success(_user_payload(user), status_code=status.HTTP_201_CREATED)

    @app.get("/api/users/{user_id}")
    async def get_user(user_id: int) -> JSONResponse:
        user = database.get_user(user_id)
        if user is None:
            return _failure("User not found", status.HTTP_404_NOT_FOUND)
        return _success(_user_payload(user))

    @app.get("/api/slow-query")
    async def slow_query(delay: Optional[str] = None) -> JSONResponse:
        delay_ms = _bounded_int(delay, default=config.default_slow_delay_ms, maximum=config.max_delay_ms)
        logger.info("Executing slow query with %sms delay", delay_ms)
        await sleep(delay_ms / 1000)
        users = database.list_users()
        return _success(
            [_user_payload(user) for user in users],
            message=f"Intentionally slow response ({delay_ms}ms)",
        )

    @app.get("/api/memory-intensive")
    async def memory_intensive(size: Optional[str] = None) -> JSONResponse:
        count = _bounded_int(size, default=config.default_allocation_size, maximum=config.max_allocation_size)
        logger.info("Creating large array with %s elements", count)
        records = await anyio.to_thread.run_sync(_allocate_records, count)
        return _success(
            message=f"Created array with {len(records)} elements",
            memoryUsage=_memory_usage(),
        )

    @app.get("/api/random-error")
    async def random_error() -> JSONResponse:
        roll = random_source()
        if roll < 0.3:
            logger.error("Random error occurred!")
            raise SimulatedFailure("Random error occurred! This is for testing error tracking.")
        if roll < 0.5:
            logger.warning("Returning 404 error")
            return _failure("Resource not found", status.HTTP_404_NOT_FOUND)
        if roll < 0.7:
            logger.warning("Returning 500 error")
            return _failure("Internal server error", status.HTTP_500_INTERNAL_SERVER_ERROR)
        return _success(message="No error this time!")

    @app.get("/api/external-call")
    async def external_call() -> JSONResponse:
        logger.info("Simulating external API call")
        await sleep(config.external_call_delay_ms / 1000)
        return _success(
            {
                "service": "external-api",
                "data": {"message": "This simulates an external service call"},
                "responseTime": config.external_call_delay_ms,
            }
        )

    @app.get("/api/custom-metrics")
    async def custom_metrics() -> JSONResponse:
        metrics.record_metric("Custom/BusinessMetric", random_source() * 100)
        metrics.record_metric("Custom/UserActions", 1)
        metrics.add_custom_attribute("customerId", "12345")
        metrics.add_custom_attribute("planType", "premium")
        logger.info("Custom metrics recorded")
        return _success(message="Custom metrics recorded")

    @app.get("/api/metrics")
    async def metrics_snapshot() -> JSONResponse:
        return _success(metrics.snapshot())

    @app.get("/api/complex-operation")
    async def complex_operation() -> JSONResponse:
        logger.info("Starting complex operation")
        step_delay = config.complex_step_delay_ms / 1000

        users = database.list_users()
        await sleep(step_delay)

        details = [database.get_user(user.id) for user in users[:3]]
        await sleep(step_delay)

        return _success(
            {
                "totalUsers": len(users),
                "sampleUsers": [_user_payload(user) if user is not None else None for user in details],
            }
        )


def register_error_handlers(app: FastAPI, *, config: ServiceConfig, metrics: MetricsRecorder) -> None:
    """Convert every failure into the ``{success, error}`` envelope."""

    @app.exception_handler(StarletteHTTPException)
    async def http_error(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        if exc.status_code == status.HTTP_404_NOT_FOUND:
            return _failure("Route not found", exc.status_code)
        return _failure(str(exc.detail), exc.status_code)

    @app.exception_handler(RequestValidationError)
    async def validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
        return _failure(_format_validation_error(exc), status.HTTP_400_BAD_REQUEST)

    @app.exception_handler(StorageError)
    async def storage_error(request: Request, exc: StorageError) -> JSONResponse:
        logger.error("Storage failure while handling %s %s: %s", request.method, request.url.path, exc)
        metrics.notice_error(exc)
        return _failure(str(exc), status.HTTP_500_INTERNAL_SERVER_ERROR)

    def _server_error(exc: Exception) -> JSONResponse:
        metrics.notice_error(exc)
        extra: Dict[str, Any] = {}
        if config.is_development:
            extra["stack"] = "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))
        return _failure(str(exc), status.HTTP_500_INTERNAL_SERVER_ERROR, **extra)

    # Handled inside the middleware stack, so the response keeps its CORS headers.
    @app.exception_handler(SimulatedFailure)
    async def simulated_failure(request: Request, exc: SimulatedFailure) -> JSONResponse:
        logger.error("Simulated failure on %s %s: %s", request.method, request.url.path, exc)
        return _server_error(exc)

    @app.exception_handler(Exception)
    async def unhandled_error(request: Request, exc: Exception) -> JSONResponse:
        logger.error("Unhandled error: %s", exc, exc_info=exc)
        return _server_error(exc)


def create_app(
    *,
    database: Database | None = None,
    config: ServiceConfig | None = None,
    metrics: MetricsRecorder | None = None,
    random_source: RandomSource | None = None,
    sleep: Sleeper | None = None,
) -> FastAPI:
    """Instantiate the FastAPI application for the demo service."""

    settings = config or load_service_config()
    db = database or Database(settings.database_path, seed_sample_data=settings.seed_sample_data)
    db.initialize()

    recorder = metrics or MetricsRecorder()

    app = FastAPI(
        title="APM Demo Service",
        version="0.1.0",
        description="Endpoints with predictable latency, memory and error profiles for APM testing.",
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        logger.info("%s %s", request.method, request.url.path)
        return await call_next(request)

    app.state.database = db
    app.state.config = settings
    app.state.metrics = recorder

    register_error_handlers(app, config=settings, metrics=recorder)
    register_api_routes(
        app,
        db,
        config=settings,
        metrics=recorder,
        random_source=random_source or random.random,
        sleep=sleep or asyncio.sleep,
    )

    return app


__all__ = ["SimulatedFailure", "create_app", "register_api_routes", "register_error_handlers"]
