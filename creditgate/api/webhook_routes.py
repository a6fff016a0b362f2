"""
Payment webhook route.

Always answers 200 with a short text status so the provider does not retry
deliveries that will never succeed; failures are logged and counted.
"""

from fastapi import APIRouter, Depends, Request
from fastapi.responses import PlainTextResponse
from structlog import get_logger

from creditgate.api.dependencies import get_payment_handler
from creditgate.models.api import WebhookOutcome
from creditgate.observability import metrics
from creditgate.services.payment_events import PaymentEventHandler

logger = get_logger(__name__)
router = APIRouter(tags=["webhooks"])

OUTCOME_TEXT = {
    WebhookOutcome.CREDITED: "OK",
    WebhookOutcome.IGNORED: "Event ignored",
    WebhookOutcome.DUPLICATE: "Duplicate event",
    WebhookOutcome.MALFORMED: "Malformed event",
    WebhookOutcome.REJECTED: "Verification failed",
    WebhookOutcome.FAILED: "Processing failed",
}


@router.post("/webhook/paypal", response_class=PlainTextResponse)
async def paypal_webhook(
    request: Request,
    handler: PaymentEventHandler = Depends(get_payment_handler),
) -> PlainTextResponse:
    """Handle a PayPal webhook delivery."""
    body = await request.body()
    try:
        outcome = await handler.handle(body, request.headers)
    except Exception as e:
        metrics.record_webhook(WebhookOutcome.FAILED.value)
        metrics.record_error(type(e).__name__, "paypal_webhook")
        logger.error("webhook_processing_error", error=str(e), exc_info=True)
        outcome = WebhookOutcome.FAILED

    return PlainTextResponse(OUTCOME_TEXT[outcome], status_code=200)
