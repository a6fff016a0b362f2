"""
Domain Models - Internal business logic models using dataclasses.

All data structures handed between the ledger and the stores are immutable.
"""

from dataclasses import dataclass, field
from datetime import UTC, datetime
from decimal import Decimal
from uuid import UUID

from creditgate.models.api import CreditSource


def utc_now() -> datetime:
    """Get current UTC timestamp."""
    return datetime.now(UTC)


@dataclass(frozen=True)
class AccountIdentity:
    """
    Who a request is about.

    With a device_id the account is located by device alone; otherwise by email.
    """

    email: str
    device_id: str | None = None

    def __post_init__(self) -> None:
        """Validate account identity fields."""
        if not self.email or not self.email.strip():
            raise ValueError("email cannot be empty")
        if self.device_id is not None and not self.device_id.strip():
            raise ValueError("device_id cannot be blank")


@dataclass(frozen=True)
class AccountData:
    """Immutable account snapshot."""

    account_id: UUID
    email: str
    device_id: str | None
    free_credits: int
    paid_credits: int
    is_active: bool
    entitlement_expires_at: datetime | None
    created_at: datetime
    updated_at: datetime

    def __post_init__(self) -> None:
        """Validate balance constraints."""
        if self.free_credits < 0:
            raise ValueError(f"Free credits cannot be negative: {self.free_credits}")
        if self.paid_credits < 0:
            raise ValueError(f"Paid credits cannot be negative: {self.paid_credits}")

    @property
    def total_credits(self) -> int:
        return self.free_credits + self.paid_credits

    def to_identity(self) -> AccountIdentity:
        """Convert to AccountIdentity."""
        return AccountIdentity(email=self.email, device_id=self.device_id)


@dataclass(frozen=True)
class RegistrationResult:
    """Outcome of registering a device."""

    free_granted: int
    paid_balance: int
    is_new_device: bool
    account: AccountData


@dataclass(frozen=True)
class BalanceData:
    """Balance view of an account."""

    free: int
    paid: int
    expires_at: datetime | None

    @property
    def total(self) -> int:
        return self.free + self.paid


@dataclass(frozen=True)
class ConsumeResult:
    """A credit was consumed from `source`; `account` is the state afterwards."""

    source: CreditSource
    account: AccountData


@dataclass(frozen=True)
class CreditGrant:
    """Credits awarded for a payment amount."""

    package: str
    credits: int

    def __post_init__(self) -> None:
        if self.credits <= 0:
            raise ValueError(f"Credit grant must be positive: {self.credits}")


@dataclass(frozen=True)
class PaymentEvent:
    """Completed-payment notification extracted from a provider payload."""

    event_id: str | None
    event_type: str
    payment_id: str | None
    email: str
    amount: Decimal | None
    currency: str | None


@dataclass(frozen=True)
class PaymentRecord:
    """Append-only log entry for a credited payment."""

    email: str
    credits_added: int
    package: str
    amount: Decimal | None = None
    currency: str | None = None
    payment_id: str | None = None
    event_id: str | None = None
    activation_code: str | None = None
    created_at: datetime = field(default_factory=utc_now)

    def __post_init__(self) -> None:
        """Validate payment constraints."""
        if self.credits_added <= 0:
            raise ValueError(f"Credits added must be positive: {self.credits_added}")
        if not self.email:
            raise ValueError("Payment email cannot be empty")


@dataclass(frozen=True)
class CompletionResult:
    """
    Outcome of a proxied completion.

    On failure `message` explains why; `charged` tells whether a credit was
    kept for the attempt.
    """

    success: bool
    response: str | None = None
    remaining: int | None = None
    message: str | None = None
    charged: bool = False

    def __post_init__(self) -> None:
        if not self.success and not self.message:
            raise ValueError("Failed completion must carry a message")
