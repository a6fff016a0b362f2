"""
API Models - Pydantic models for request/response validation.

Field names on the wire are camelCase (the browser extension's contract);
Python attributes stay snake_case through aliases.
"""

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class CreditSource(str, Enum):
    """Pool a consumed credit was taken from."""

    PAID = "paid"
    FREE = "free"


class BalanceStatus(str, Enum):
    """Status reported by /api/balance."""

    ACTIVE = "active"
    LOW_TOKENS = "low_tokens"
    EXPIRED = "expired"
    NO_SUBSCRIPTION = "no_subscription"
    UNAVAILABLE = "unavailable"


class WebhookOutcome(str, Enum):
    """Terminal state of a processed payment event."""

    CREDITED = "credited"
    IGNORED = "ignored"
    DUPLICATE = "duplicate"
    MALFORMED = "malformed"
    REJECTED = "rejected"
    FAILED = "failed"


class CamelModel(BaseModel):
    """Base model accepting and emitting camelCase aliases."""

    model_config = ConfigDict(populate_by_name=True)


class StatusResponse(CamelModel):
    """
    Base for every business response.

    `success: false` must always carry a non-empty human readable message.
    """

    success: bool
    message: str | None = None

    @model_validator(mode="after")
    def require_message_on_failure(self) -> "StatusResponse":
        if not self.success and not (self.message and self.message.strip()):
            raise ValueError("Failed responses must include a message")
        return self


def _normalize_email(v: str) -> str:
    v = v.strip().lower()
    if "@" not in v:
        raise ValueError("email must be an email address")
    return v


# ============================================================================
# Registration
# ============================================================================


class RegisterRequest(CamelModel):
    """POST /api/register request body."""

    email: str = Field(..., min_length=3, max_length=255)
    device_id: str = Field(..., alias="deviceId", min_length=1, max_length=255)

    @field_validator("email")
    @classmethod
    def validate_email(cls, v: str) -> str:
        return _normalize_email(v)


class RegisterResponse(StatusResponse):
    """POST /api/register response."""

    free_credits: int = Field(0, alias="freeCredits")
    paid_credits: int = Field(0, alias="paidCredits")
    is_new_device: bool = Field(False, alias="isNewDevice")


# ============================================================================
# Balance
# ============================================================================


class BalanceRequest(CamelModel):
    """POST /api/balance request body."""

    email: str = Field(..., min_length=3, max_length=255)
    device_id: str | None = Field(None, alias="deviceId", max_length=255)
    token_balance: int | None = Field(None, alias="tokenBalance")

    @field_validator("email")
    @classmethod
    def validate_email(cls, v: str) -> str:
        return _normalize_email(v)


class BalanceResponse(StatusResponse):
    """POST /api/balance response."""

    status: BalanceStatus
    free: int = 0
    paid: int = 0
    balance: int = 0
    expiry_date: str | None = Field(None, alias="expiryDate")
    show_payment_link: bool = Field(False, alias="showPaymentLink")


class ExpiryCheckRequest(CamelModel):
    """POST /api/check-expiry request body."""

    email: str = Field(..., min_length=3, max_length=255)

    @field_validator("email")
    @classmethod
    def validate_email(cls, v: str) -> str:
        return _normalize_email(v)


class ExpiryCheckResponse(CamelModel):
    """POST /api/check-expiry response."""

    needs_renewal: bool = Field(False, alias="needsRenewal")
    show_reminder: bool = Field(False, alias="showReminder")
    days_left: int = Field(0, alias="daysLeft")
    message: str | None = None


# ============================================================================
# Activation
# ============================================================================


class ActivateRequest(CamelModel):
    """POST /api/activate request body."""

    # Any JSON value; the codec rejects anything that is not a well-formed code
    activation_code: Any = Field(None, alias="activationCode")


class ActivateResponse(StatusResponse):
    """POST /api/activate response."""

    tokens: int = 0
    expiry_date: str | None = Field(None, alias="expiryDate")


class ManualActivateRequest(CamelModel):
    """POST /api/manual-activate request body."""

    email: str = Field(..., min_length=3, max_length=255)
    tokens: int | None = Field(None, gt=0)

    @field_validator("email")
    @classmethod
    def validate_email(cls, v: str) -> str:
        return _normalize_email(v)


class ManualActivateResponse(StatusResponse):
    """POST /api/manual-activate response."""

    activation_code: str | None = Field(None, alias="activationCode")


# ============================================================================
# Completion proxy
# ============================================================================


class CompletionRequest(CamelModel):
    """POST /api/openai request body."""

    email: str = Field(..., min_length=3, max_length=255)
    device_id: str | None = Field(None, alias="deviceId", max_length=255)
    prompt: str = Field(..., min_length=1, max_length=20000)
    model: str | None = Field(None, max_length=100)

    @field_validator("email")
    @classmethod
    def validate_email(cls, v: str) -> str:
        return _normalize_email(v)


class CompletionResponse(StatusResponse):
    """POST /api/openai response."""

    response: str | None = None
    remaining: int | None = None


# ============================================================================
# Admin
# ============================================================================


class PaymentItem(CamelModel):
    """Single payment in the admin listing."""

    payment_id: str | None = Field(None, alias="paymentId")
    event_id: str | None = Field(None, alias="eventId")
    email: str
    amount: str | None = None
    currency: str | None = None
    tokens: int
    package: str
    activation_code: str | None = Field(None, alias="activationCode")
    date: str


class PaymentListResponse(CamelModel):
    """GET /api/admin/payments response."""

    total: int
    payments: list[PaymentItem]


# ============================================================================
# Health
# ============================================================================


class HealthResponse(BaseModel):
    """GET /health response."""

    status: str
    store: str
    store_backend: str
    timestamp: str
