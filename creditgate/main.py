"""
Main Application - FastAPI application setup.
"""

import asyncio
import time
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from uuid import uuid4

from fastapi import FastAPI, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse
from prometheus_client import generate_latest

from creditgate.api.admin_routes import router as admin_router
from creditgate.api.routes import STORE_UNAVAILABLE_MESSAGE, router
from creditgate.api.status_routes import router as status_router
from creditgate.api.webhook_routes import router as webhook_router
from creditgate.config import settings
from creditgate.db.migration_runner import run_migrations
from creditgate.exceptions import StoreUnavailableError
from creditgate.observability import get_logger, metrics, setup_logging, setup_tracing
from creditgate.observability.logging import log_context
from creditgate.observability.tracing import instrument_fastapi, shutdown_tracing
from creditgate.services.container import ServiceContainer, build_container

# Setup logging before anything else
setup_logging()
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """
    Application lifespan manager.

    Applies migrations, builds the services unless they were injected, and
    drains background notifications on shutdown.
    """
    logger.info(
        "application_starting",
        service=settings.api_title,
        version=settings.api_version,
        port=settings.api_port,
        tracing_enabled=settings.tracing_enabled,
        metrics_enabled=settings.metrics_enabled,
    )
    for component, missing in settings.disabled_components():
        logger.warning("component_disabled", component=component, missing=missing)

    if getattr(app.state, "services", None) is None:
        if settings.database_url and settings.run_migrations_on_startup:
            await asyncio.to_thread(run_migrations, settings)
        app.state.services = build_container(settings)

    yield

    logger.info("application_shutting_down")
    services: ServiceContainer = app.state.services
    await services.close()
    shutdown_tracing()
    logger.info("services_closed")


async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Log detailed validation errors for debugging."""
    sanitized_errors = []
    for error in exc.errors():
        sanitized = {
            "type": error.get("type"),
            "loc": error.get("loc"),
            "msg": error.get("msg"),
            "input": error.get("input"),
        }
        # ctx may hold exception objects
        if "ctx" in error:
            sanitized["ctx"] = {k: str(v) for k, v in error["ctx"].items()}
        sanitized_errors.append(sanitized)

    logger.warning(
        "validation_error",
        path=request.url.path,
        method=request.method,
        errors=sanitized_errors,
    )
    return JSONResponse(status_code=422, content={"detail": sanitized_errors})


async def store_unavailable_handler(request: Request, exc: StoreUnavailableError):
    """Answer store outages like any business failure: 200, success false."""
    metrics.record_error("StoreUnavailableError", request.url.path)
    logger.error("store_unavailable_response", path=request.url.path, error=exc.message)
    return JSONResponse(
        status_code=200,
        content={"success": False, "message": STORE_UNAVAILABLE_MESSAGE},
    )


async def logging_middleware(
    request: Request, call_next: Callable[[Request], Awaitable[Response]]
) -> Response:
    """Log all HTTP requests with timing."""
    start_time = time.perf_counter()
    request_id = request.headers.get("X-Request-ID") or uuid4().hex
    endpoint = request.url.path
    method = request.method

    with log_context(request_id=request_id):
        logger.info("request_started", method=method, path=endpoint)
        metrics.http_requests_in_progress.labels(endpoint=endpoint, method=method).inc()

        try:
            response = await call_next(request)
            duration = time.perf_counter() - start_time
            metrics.record_http_request(endpoint, method, response.status_code, duration)
            logger.info(
                "request_completed",
                method=method,
                path=endpoint,
                status_code=response.status_code,
                duration_seconds=duration,
            )
            response.headers["X-Request-ID"] = request_id
            return response
        except Exception as e:
            duration = time.perf_counter() - start_time
            metrics.record_http_request(endpoint, method, 500, duration)
            metrics.record_error(type(e).__name__, "http_request")
            logger.error(
                "request_failed",
                method=method,
                path=endpoint,
                error=str(e),
                duration_seconds=duration,
                exc_info=True,
            )
            raise
        finally:
            metrics.http_requests_in_progress.labels(endpoint=endpoint, method=method).dec()


def create_app(services: ServiceContainer | None = None) -> FastAPI:
    """
    Build the FastAPI application.

    `services` replaces the container the lifespan would otherwise build.
    """
    app = FastAPI(
        title=settings.api_title,
        version=settings.api_version,
        description=settings.api_description,
        lifespan=lifespan,
    )
    app.state.services = services

    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(StoreUnavailableError, store_unavailable_handler)

    instrument_fastapi(app)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_allow_origins,
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.middleware("http")(logging_middleware)

    app.include_router(router)  # Extension API
    app.include_router(webhook_router)  # Payment provider callbacks
    app.include_router(admin_router)  # Operator endpoints
    app.include_router(status_router)  # Health

    @app.get("/")
    async def root() -> dict[str, str]:
        """Root endpoint."""
        return {
            "service": settings.api_title,
            "version": settings.api_version,
            "status": "running",
        }

    if settings.metrics_enabled:

        @app.get("/metrics")
        async def metrics_endpoint() -> Response:
            """Prometheus metrics in text exposition format."""
            return PlainTextResponse(generate_latest())

    return app


setup_tracing()
app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "creditgate.main:app",
        host=settings.api_host,
        port=settings.api_port,
        log_level=settings.log_level.lower(),
    )
