"""
FastAPI Dependencies - Service lookup and admin key check.

Services live on app.state.services (a ServiceContainer) so tests can build
an application around fakes.
"""

import secrets

from fastapi import Depends, Header, HTTPException, Request, status
from structlog import get_logger

from creditgate.config import Settings
from creditgate.services.activation import ActivationCodec
from creditgate.services.completion import CompletionProxy
from creditgate.services.container import ServiceContainer
from creditgate.services.ledger import CreditLedger
from creditgate.services.payment_events import PaymentEventHandler

logger = get_logger(__name__)


def get_services(request: Request) -> ServiceContainer:
    return request.app.state.services  # type: ignore[no-any-return]


def get_settings(services: ServiceContainer = Depends(get_services)) -> Settings:
    return services.settings


def get_ledger(services: ServiceContainer = Depends(get_services)) -> CreditLedger:
    return services.ledger


def get_codec(services: ServiceContainer = Depends(get_services)) -> ActivationCodec:
    return services.codec


def get_payment_handler(services: ServiceContainer = Depends(get_services)) -> PaymentEventHandler:
    return services.payment_handler


def get_completion_proxy(services: ServiceContainer = Depends(get_services)) -> CompletionProxy:
    return services.completion_proxy


async def require_admin_key(
    request: Request,
    x_admin_key: str | None = Header(None, alias="X-Admin-Key"),
    config: Settings = Depends(get_settings),
) -> None:
    """
    Admin key check for operator endpoints.

    With no ADMIN_API_KEY configured the endpoints are open.
    """
    if not config.admin_api_key:
        return

    if not x_admin_key or not secrets.compare_digest(x_admin_key, config.admin_api_key):
        logger.warning(
            "admin_key_rejected",
            path=request.url.path,
            key_present=bool(x_admin_key),
        )
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or missing admin key",
            headers={"WWW-Authenticate": "ApiKey"},
        )
