"""
Test doubles shared across the suite.

Importable as `helpers` because pytest puts the tests directory on sys.path.
"""

from collections.abc import Mapping
from datetime import datetime
from typing import Any

from creditgate.exceptions import UpstreamError


class RecordingNotifier:
    """Notifier that records sends and can be told to fail."""

    transport = "fake"

    def __init__(self, fail_with: Exception | None = None) -> None:
        self.fail_with = fail_with
        self.sent: list[dict[str, Any]] = []
        self.closed = False

    async def send_activation(
        self,
        email: str,
        credits: int,
        activation_code: str | None,
        expires_at: datetime | None,
    ) -> None:
        if self.fail_with is not None:
            raise self.fail_with
        self.sent.append(
            {
                "email": email,
                "credits": credits,
                "activation_code": activation_code,
                "expires_at": expires_at,
            }
        )

    async def close(self) -> None:
        self.closed = True


class ScriptedCompletionClient:
    """Completion client returning a fixed reply or raising a fixed error."""

    def __init__(self, reply: str = "Hello from the model", error: Exception | None = None):
        self.reply = reply
        self.error = error
        self.calls: list[dict[str, Any]] = []

    async def complete(self, prompt: str, model: str, system_prompt: str, max_tokens: int) -> str:
        self.calls.append(
            {
                "prompt": prompt,
                "model": model,
                "system_prompt": system_prompt,
                "max_tokens": max_tokens,
            }
        )
        if self.error is not None:
            raise self.error
        return self.reply

    async def close(self) -> None:
        return None


class FixedVerifier:
    """Webhook verifier with a predetermined answer."""

    def __init__(self, result: bool = True, error: Exception | None = None) -> None:
        self.result = result
        self.error = error
        self.calls = 0

    async def verify(self, headers: Mapping[str, str], event: dict[str, Any]) -> bool:
        self.calls += 1
        if self.error is not None:
            raise self.error
        return self.result

    async def close(self) -> None:
        return None


def upstream_failure(message: str = "Rate limit exceeded") -> UpstreamError:
    return UpstreamError("openai", message)


def paypal_event(
    email: str = "buyer@example.com",
    amount: str | None = "5.00",
    payment_id: str | None = "SALE-1",
    event_type: str = "PAYMENT.SALE.COMPLETED",
    event_id: str = "WH-1",
) -> dict[str, Any]:
    """A PayPal v1 sale-completed webhook payload."""
    resource: dict[str, Any] = {"payer": {"email_address": email}}
    if payment_id is not None:
        resource["id"] = payment_id
    if amount is not None:
        resource["amount"] = {"total": amount, "currency": "USD"}
    return {"id": event_id, "event_type": event_type, "resource": resource}
