"""
PayPal webhook collaborator - signature verification and event parsing.

Verification is delegated to PayPal's verify-webhook-signature API; this
module only forwards the transmission headers and the event body.
"""

import base64
from collections.abc import Mapping
from datetime import UTC, datetime, timedelta
from decimal import Decimal, InvalidOperation
from typing import Any, Protocol

import httpx
from structlog import get_logger

from creditgate.exceptions import MalformedEventError, UpstreamError
from creditgate.models.domain import PaymentEvent

logger = get_logger(__name__)

TRANSMISSION_HEADERS = (
    "paypal-transmission-id",
    "paypal-transmission-time",
    "paypal-transmission-sig",
    "paypal-cert-url",
    "paypal-auth-algo",
)


class WebhookVerifier(Protocol):
    """Decides whether an inbound webhook really came from the provider."""

    async def verify(self, headers: Mapping[str, str], event: dict[str, Any]) -> bool:
        """
        True if authentic, False if rejected.

        Raises:
            UpstreamError: verification could not be performed
        """
        ...

    async def close(self) -> None: ...


class UnverifiedWebhookVerifier:
    """Accepts every event. Selected when PayPal credentials are not configured."""

    async def verify(self, headers: Mapping[str, str], event: dict[str, Any]) -> bool:
        logger.warning(
            "webhook_signature_not_verified",
            event_id=event.get("id"),
            transmission_id=headers.get("paypal-transmission-id"),
        )
        return True

    async def close(self) -> None:
        return None


class PayPalWebhookVerifier:
    """Verifies webhook signatures through the PayPal REST API."""

    TOKEN_PATH = "/v1/oauth2/token"
    VERIFY_PATH = "/v1/notifications/verify-webhook-signature"

    def __init__(
        self,
        api_base: str,
        client_id: str,
        client_secret: str,
        webhook_id: str,
        timeout: float = 10.0,
        http_client: httpx.AsyncClient | None = None,
    ):
        self.api_base = api_base.rstrip("/")
        self.client_id = client_id
        self.client_secret = client_secret
        self.webhook_id = webhook_id
        self.timeout = timeout
        self._http_client = http_client
        self._access_token: str | None = None
        self._token_expires: datetime | None = None

    @property
    def http_client(self) -> httpx.AsyncClient:
        """Get HTTP client."""
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=self.timeout)
        return self._http_client

    async def verify(self, headers: Mapping[str, str], event: dict[str, Any]) -> bool:
        transmission = {name: headers.get(name, "") for name in TRANSMISSION_HEADERS}
        if not all(
            transmission[name]
            for name in ("paypal-transmission-id", "paypal-transmission-time", "paypal-transmission-sig")
        ):
            logger.warning("webhook_signature_headers_missing", event_id=event.get("id"))
            return False

        access_token = await self._get_access_token()
        body = {
            "auth_algo": transmission["paypal-auth-algo"],
            "cert_url": transmission["paypal-cert-url"],
            "transmission_id": transmission["paypal-transmission-id"],
            "transmission_sig": transmission["paypal-transmission-sig"],
            "transmission_time": transmission["paypal-transmission-time"],
            "webhook_id": self.webhook_id,
            "webhook_event": event,
        }

        try:
            response = await self.http_client.post(
                f"{self.api_base}{self.VERIFY_PATH}",
                headers={"Authorization": f"Bearer {access_token}"},
                json=body,
            )
            response.raise_for_status()
            status = response.json().get("verification_status")
        except httpx.HTTPStatusError as e:
            logger.error(
                "webhook_verification_request_failed",
                status=e.response.status_code,
                text=e.response.text[:500],
            )
            raise UpstreamError("paypal", f"verification returned {e.response.status_code}") from e
        except (httpx.HTTPError, ValueError) as e:
            logger.error("webhook_verification_error", error=str(e))
            raise UpstreamError("paypal", f"verification failed: {e}") from e

        if status != "SUCCESS":
            logger.warning(
                "webhook_signature_rejected",
                event_id=event.get("id"),
                verification_status=status,
            )
            return False
        return True

    async def close(self) -> None:
        """Close HTTP client."""
        if self._http_client:
            await self._http_client.aclose()

    async def _get_access_token(self) -> str:
        """Get or refresh the OAuth client-credentials token."""
        now = datetime.now(UTC)
        if self._access_token and self._token_expires and now < self._token_expires:
            return self._access_token

        credentials = base64.b64encode(
            f"{self.client_id}:{self.client_secret}".encode()
        ).decode()
        try:
            response = await self.http_client.post(
                f"{self.api_base}{self.TOKEN_PATH}",
                headers={"Authorization": f"Basic {credentials}"},
                data={"grant_type": "client_credentials"},
            )
            response.raise_for_status()
            token_data = response.json()
            self._access_token = token_data["access_token"]
        except httpx.HTTPStatusError as e:
            logger.error(
                "paypal_token_request_failed",
                status=e.response.status_code,
                text=e.response.text[:500],
            )
            raise UpstreamError("paypal", f"authentication returned {e.response.status_code}") from e
        except (httpx.HTTPError, ValueError, KeyError) as e:
            logger.error("paypal_token_error", error=str(e))
            raise UpstreamError("paypal", f"authentication failed: {e}") from e

        # Refresh a minute before PayPal expires the token
        expires_in = int(token_data.get("expires_in", 32400))
        self._token_expires = now + timedelta(seconds=max(expires_in - 60, 0))
        return self._access_token


# ============================================================================
# Event parsing
# ============================================================================


def _dig(data: Any, *path: str) -> Any:
    for key in path:
        if not isinstance(data, dict):
            return None
        data = data.get(key)
    return data


def extract_payer_email(resource: dict[str, Any]) -> str | None:
    """Payer email across the v1 sale and v2 capture payload shapes."""
    for path in (
        ("payer", "email_address"),
        ("payer", "payer_info", "email"),
        ("payer_email",),
    ):
        value = _dig(resource, *path)
        if isinstance(value, str) and value.strip():
            return value.strip().lower()
    return None


def extract_amount(resource: dict[str, Any]) -> tuple[Decimal | None, str | None]:
    """(amount, currency); amount is None when absent or not a number."""
    amount = resource.get("amount")
    if not isinstance(amount, dict):
        return None, None
    currency = amount.get("currency") or amount.get("currency_code")
    raw = amount.get("total", amount.get("value"))
    if raw is None or isinstance(raw, bool):
        return None, currency
    try:
        value = Decimal(str(raw))
    except InvalidOperation:
        return None, currency
    if not value.is_finite():
        return None, currency
    return value, currency


def parse_payment_event(event: dict[str, Any]) -> PaymentEvent:
    """
    Extract a completed-payment event.

    Raises:
        MalformedEventError: no resource or no payer email
    """
    event_id = event.get("id") if isinstance(event.get("id"), str) else None
    event_type = event.get("event_type")
    if not isinstance(event_type, str) or not event_type:
        raise MalformedEventError("missing event_type", event_id)

    resource = event.get("resource")
    if not isinstance(resource, dict):
        raise MalformedEventError("missing resource", event_id)

    email = extract_payer_email(resource)
    if email is None or "@" not in email:
        raise MalformedEventError("missing payer email", event_id)

    amount, currency = extract_amount(resource)
    payment_id = resource.get("id")

    return PaymentEvent(
        event_id=event_id,
        event_type=event_type,
        payment_id=str(payment_id) if payment_id else None,
        email=email,
        amount=amount,
        currency=currency,
    )
