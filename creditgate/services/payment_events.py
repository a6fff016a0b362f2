"""
Payment Event Handler - Turns a PayPal webhook into a credit grant.

Flow:
1. Parse the body and verify it with the provider
2. Drop event types other than completed payments
3. Map the paid amount to a credit pack
4. Credit the payer exactly once per provider payment id
5. Send the activation email in the background
"""

import json
from collections.abc import Mapping
from typing import Any

from structlog import get_logger

from creditgate.exceptions import (
    DuplicatePaymentError,
    MalformedEventError,
    StoreUnavailableError,
    UpstreamError,
)
from creditgate.models.api import WebhookOutcome
from creditgate.models.domain import PaymentRecord
from creditgate.observability import metrics
from creditgate.services.activation import ActivationCodec
from creditgate.services.credit_packs import CreditPackPolicy
from creditgate.services.ledger import CreditLedger
from creditgate.services.notifier import NotificationDispatcher
from creditgate.services.paypal import WebhookVerifier, parse_payment_event

logger = get_logger(__name__)

DEFAULT_COMPLETED_EVENTS = ("PAYMENT.SALE.COMPLETED", "PAYMENT.CAPTURE.COMPLETED")


class PaymentEventHandler:
    """Processes inbound payment webhooks."""

    def __init__(
        self,
        ledger: CreditLedger,
        verifier: WebhookVerifier,
        pack_policy: CreditPackPolicy,
        dispatcher: NotificationDispatcher,
        codec: ActivationCodec | None = None,
        completed_event_types: tuple[str, ...] | list[str] = DEFAULT_COMPLETED_EVENTS,
    ) -> None:
        self.ledger = ledger
        self.verifier = verifier
        self.pack_policy = pack_policy
        self.dispatcher = dispatcher
        self.codec = codec
        self.completed_event_types = frozenset(completed_event_types)

    async def handle(self, body: bytes, headers: Mapping[str, str]) -> WebhookOutcome:
        """Process one webhook delivery and report what happened to it."""
        outcome = await self._process(body, headers)
        metrics.record_webhook(outcome.value)
        return outcome

    async def _process(self, body: bytes, headers: Mapping[str, str]) -> WebhookOutcome:
        try:
            event: Any = json.loads(body)
        except (ValueError, RecursionError) as e:
            logger.warning("webhook_body_not_json", error=str(e), size=len(body))
            return WebhookOutcome.MALFORMED
        if not isinstance(event, dict):
            logger.warning("webhook_body_not_object", body_type=type(event).__name__)
            return WebhookOutcome.MALFORMED

        event_id = event.get("id")
        event_type = event.get("event_type")
        logger.info("webhook_received", event_id=event_id, event_type=event_type)

        try:
            authentic = await self.verifier.verify(headers, event)
        except UpstreamError as e:
            metrics.record_error("UpstreamError", "webhook_verification")
            logger.error("webhook_verification_unavailable", event_id=event_id, error=str(e))
            return WebhookOutcome.FAILED
        if not authentic:
            return WebhookOutcome.REJECTED

        if event_type not in self.completed_event_types:
            logger.info("webhook_event_ignored", event_id=event_id, event_type=event_type)
            return WebhookOutcome.IGNORED

        try:
            payment = parse_payment_event(event)
            grant = self.pack_policy.resolve(payment.amount)
        except MalformedEventError as e:
            logger.warning("webhook_event_malformed", event_id=event_id, reason=e.reason)
            return WebhookOutcome.MALFORMED
        except ValueError as e:
            logger.warning("webhook_event_malformed", event_id=event_id, reason=str(e))
            return WebhookOutcome.MALFORMED

        activation_code = None
        expires_at = None
        if self.codec is not None:
            entitlement = self.codec.issue(payment.email, grant.credits)
            activation_code = self.codec.encode(entitlement)
            expires_at = entitlement.expiry_date

        record = PaymentRecord(
            email=payment.email,
            credits_added=grant.credits,
            package=grant.package,
            amount=payment.amount,
            currency=payment.currency,
            payment_id=payment.payment_id,
            event_id=payment.event_id,
            activation_code=activation_code,
        )

        try:
            await self.ledger.record_payment(record, expires_at)
        except DuplicatePaymentError:
            logger.info(
                "webhook_duplicate_payment",
                event_id=event_id,
                payment_id=payment.payment_id,
            )
            return WebhookOutcome.DUPLICATE
        except StoreUnavailableError as e:
            logger.error(
                "webhook_credit_failed",
                event_id=event_id,
                payment_id=payment.payment_id,
                error=e.message,
            )
            return WebhookOutcome.FAILED

        self.dispatcher.dispatch(payment.email, grant.credits, activation_code, expires_at)
        return WebhookOutcome.CREDITED
