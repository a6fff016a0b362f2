"""
Status API routes - Health check for the account store.

Public endpoint (no auth) for load balancers and uptime monitors.
"""

import asyncio
from datetime import UTC, datetime

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from structlog import get_logger

from creditgate.api.dependencies import get_services
from creditgate.exceptions import StoreUnavailableError
from creditgate.models.api import HealthResponse
from creditgate.services.container import ServiceContainer

logger = get_logger(__name__)
router = APIRouter(tags=["status"])

CHECK_TIMEOUT = 5.0  # seconds


@router.get("/health", response_model=HealthResponse)
async def health(services: ServiceContainer = Depends(get_services)) -> JSONResponse:
    """Liveness plus a store ping; 503 when the store cannot be reached."""
    store_status = "ok"
    try:
        await asyncio.wait_for(services.store.ping(), timeout=CHECK_TIMEOUT)
    except (StoreUnavailableError, asyncio.TimeoutError) as e:
        logger.warning("health_check_store_unavailable", error=str(e))
        store_status = "unavailable"

    body = HealthResponse(
        status="healthy" if store_status == "ok" else "degraded",
        store=store_status,
        store_backend=services.store.backend_name,
        timestamp=datetime.now(UTC).isoformat(),
    )
    return JSONResponse(
        status_code=200 if store_status == "ok" else 503,
        content=body.model_dump(),
    )
