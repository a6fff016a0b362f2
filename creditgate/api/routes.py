"""
API Routes - Extension-facing endpoints.

Business failures (unknown device, no credits, bad code) are answered with
HTTP 200 and `success: false` plus a message; only malformed requests get a
4xx.
"""

import math
from datetime import timedelta

from fastapi import APIRouter, Depends, HTTPException, status
from structlog import get_logger

from creditgate.api.dependencies import (
    get_codec,
    get_completion_proxy,
    get_ledger,
    get_settings,
    require_admin_key,
)
from creditgate.config import Settings
from creditgate.exceptions import ActivationFormatError, StoreUnavailableError
from creditgate.models.api import (
    ActivateRequest,
    ActivateResponse,
    BalanceRequest,
    BalanceResponse,
    BalanceStatus,
    CompletionRequest,
    CompletionResponse,
    ExpiryCheckRequest,
    ExpiryCheckResponse,
    ManualActivateRequest,
    ManualActivateResponse,
    RegisterRequest,
    RegisterResponse,
)
from creditgate.models.domain import AccountIdentity, utc_now
from creditgate.services.activation import ActivationCodec, format_timestamp
from creditgate.services.completion import CompletionProxy
from creditgate.services.ledger import CreditLedger

logger = get_logger(__name__)
router = APIRouter(prefix="/api", tags=["credits"])

REMINDER_DAYS = 7
STORE_UNAVAILABLE_MESSAGE = "Service temporarily unavailable"


@router.post("/register", response_model=RegisterResponse)
async def register_device(
    request: RegisterRequest,
    ledger: CreditLedger = Depends(get_ledger),
) -> RegisterResponse:
    """
    Register a device.

    A new device receives the one-time free credit grant; registering a known
    device again changes nothing.
    """
    identity = AccountIdentity(email=request.email, device_id=request.device_id)
    result = await ledger.register_device(identity, request.device_id)

    if result.is_new_device:
        message = f"Welcome! {result.free_granted} free credits granted."
    else:
        message = "Device already registered."

    return RegisterResponse(
        success=True,
        message=message,
        free_credits=result.account.free_credits,
        paid_credits=result.paid_balance,
        is_new_device=result.is_new_device,
    )


@router.post("/balance", response_model=BalanceResponse)
async def get_balance(
    request: BalanceRequest,
    ledger: CreditLedger = Depends(get_ledger),
    config: Settings = Depends(get_settings),
) -> BalanceResponse:
    """
    Balance and entitlement status.

    Status is no_subscription for an unknown account, expired once the last
    activation has lapsed, low_tokens below the threshold, unavailable while
    the store cannot be reached, else active.
    """
    identity = AccountIdentity(email=request.email, device_id=request.device_id)
    try:
        account = await ledger.find_account(identity)
    except StoreUnavailableError:
        return BalanceResponse(
            success=False,
            status=BalanceStatus.UNAVAILABLE,
            message=STORE_UNAVAILABLE_MESSAGE,
        )

    if account is None:
        return BalanceResponse(
            success=False,
            status=BalanceStatus.NO_SUBSCRIPTION,
            message="No active subscription",
            show_payment_link=True,
        )

    expires_at = account.entitlement_expires_at
    expiry_date = format_timestamp(expires_at) if expires_at else None
    counts = {
        "free": account.free_credits,
        "paid": account.paid_credits,
        "balance": account.total_credits,
        "expiry_date": expiry_date,
    }

    if expires_at is not None and utc_now() > expires_at:
        return BalanceResponse(
            success=False,
            status=BalanceStatus.EXPIRED,
            message="Your credits have expired. Buy a credit pack to continue.",
            show_payment_link=True,
            **counts,
        )

    reported = request.token_balance if request.token_balance is not None else account.total_credits
    if reported < config.low_balance_threshold:
        return BalanceResponse(
            success=True,
            status=BalanceStatus.LOW_TOKENS,
            message=f"Only {reported} credits left! Buy more?",
            show_payment_link=True,
            **counts,
        )

    return BalanceResponse(success=True, status=BalanceStatus.ACTIVE, **counts)


@router.post("/check-expiry", response_model=ExpiryCheckResponse)
async def check_expiry(
    request: ExpiryCheckRequest,
    ledger: CreditLedger = Depends(get_ledger),
) -> ExpiryCheckResponse:
    """Renewal reminder: expired, expiring within a week, or fine."""
    account = await ledger.find_account(AccountIdentity(email=request.email))
    if account is None:
        return ExpiryCheckResponse(needs_renewal=False, message="User not found")

    if account.entitlement_expires_at is None:
        return ExpiryCheckResponse(needs_renewal=False, show_reminder=False, days_left=0)

    remaining = account.entitlement_expires_at - utc_now()
    days_left = math.ceil(remaining / timedelta(days=1))

    if days_left <= 0:
        return ExpiryCheckResponse(
            needs_renewal=True,
            days_left=0,
            message="Your credits expired! Purchase again to continue.",
        )
    if days_left <= REMINDER_DAYS:
        return ExpiryCheckResponse(
            needs_renewal=False,
            show_reminder=True,
            days_left=days_left,
            message=f"{days_left} days left! Renew soon.",
        )
    return ExpiryCheckResponse(needs_renewal=False, show_reminder=False, days_left=days_left)


@router.post("/activate", response_model=ActivateResponse)
async def activate(
    request: ActivateRequest,
    ledger: CreditLedger = Depends(get_ledger),
    codec: ActivationCodec = Depends(get_codec),
) -> ActivateResponse:
    """
    Redeem an activation code.

    Accepted when the code decodes and its email belongs to an active
    account. Codes are not single-use.
    """
    try:
        entitlement = codec.decode(request.activation_code)
    except ActivationFormatError as e:
        logger.info("activation_code_malformed", reason=e.reason)
        return ActivateResponse(success=False, message="Invalid activation code format")

    if not await ledger.is_activation_valid(entitlement.email):
        logger.info("activation_code_rejected", email=entitlement.email)
        return ActivateResponse(success=False, message="Invalid or expired activation code")

    logger.info("activation_code_redeemed", email=entitlement.email, tokens=entitlement.tokens)
    return ActivateResponse(
        success=True,
        tokens=entitlement.tokens,
        expiry_date=format_timestamp(entitlement.expiry_date),
        message=(
            f"{entitlement.tokens} tokens activated! "
            f"Valid until {entitlement.expiry_date.date().isoformat()}"
        ),
    )


@router.post(
    "/manual-activate",
    response_model=ManualActivateResponse,
    dependencies=[Depends(require_admin_key)],
)
async def manual_activate(
    request: ManualActivateRequest,
    ledger: CreditLedger = Depends(get_ledger),
    codec: ActivationCodec = Depends(get_codec),
    config: Settings = Depends(get_settings),
) -> ManualActivateResponse:
    """
    Grant credits and mint an activation code without a payment.

    Only available when MANUAL_ACTIVATION_ENABLED is set.
    """
    if not config.manual_activation_enabled:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Not Found")

    tokens = request.tokens or config.basic_pack_credits
    entitlement = codec.issue(request.email, tokens)
    await ledger.grant_credits(
        AccountIdentity(email=request.email), tokens, expires_at=entitlement.expiry_date
    )
    code = codec.encode(entitlement)

    logger.info("manual_activation_issued", email=request.email, tokens=tokens)
    return ManualActivateResponse(
        success=True,
        activation_code=code,
        message=f"Use this code in extension: {code}",
    )


@router.post("/openai", response_model=CompletionResponse)
async def complete(
    request: CompletionRequest,
    proxy: CompletionProxy = Depends(get_completion_proxy),
) -> CompletionResponse:
    """Spend one credit on a chat completion."""
    identity = AccountIdentity(email=request.email, device_id=request.device_id)
    result = await proxy.complete(identity, request.prompt, request.model)
    return CompletionResponse(
        success=result.success,
        response=result.response,
        remaining=result.remaining,
        message=result.message,
    )
