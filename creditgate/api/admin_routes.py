"""
Admin API routes - payment log for operators.

Protected by X-Admin-Key when ADMIN_API_KEY is configured.
"""

from fastapi import APIRouter, Depends, Query
from structlog import get_logger

from creditgate.api.dependencies import get_ledger, require_admin_key
from creditgate.models.api import PaymentItem, PaymentListResponse
from creditgate.models.domain import PaymentRecord
from creditgate.services.activation import format_timestamp
from creditgate.services.ledger import CreditLedger

logger = get_logger(__name__)
router = APIRouter(prefix="/api/admin", tags=["admin"], dependencies=[Depends(require_admin_key)])


def _payment_item(record: PaymentRecord) -> PaymentItem:
    return PaymentItem(
        payment_id=record.payment_id,
        event_id=record.event_id,
        email=record.email,
        amount=str(record.amount) if record.amount is not None else None,
        currency=record.currency,
        tokens=record.credits_added,
        package=record.package,
        activation_code=record.activation_code,
        date=format_timestamp(record.created_at),
    )


@router.get("/payments", response_model=PaymentListResponse)
async def list_payments(
    limit: int | None = Query(None, ge=1, le=10000),
    ledger: CreditLedger = Depends(get_ledger),
) -> PaymentListResponse:
    """All credited payments, newest first."""
    records = await ledger.list_payments(limit)
    logger.info("admin_payments_listed", count=len(records))
    return PaymentListResponse(
        total=len(records),
        payments=[_payment_item(record) for record in records],
    )
