"""
Account Store Protocol - Backend-agnostic persistence interface.

Every mutating operation is a single atomic step at the storage layer; the
ledger never reads a balance and writes it back.
"""

from datetime import datetime
from typing import Protocol

from creditgate.models.api import CreditSource
from creditgate.models.domain import AccountData, AccountIdentity, PaymentRecord


class AccountStore(Protocol):
    """
    Account store protocol.

    Implementations: InMemoryAccountStore (tests, no database configured)
    and SqlAccountStore (PostgreSQL).
    """

    backend_name: str

    async def find(self, identity: AccountIdentity) -> AccountData | None:
        """Resolve an identity to an account, or None."""
        ...

    async def register_device(
        self, email: str, device_id: str, free_credits: int
    ) -> tuple[AccountData, bool]:
        """
        Create the account for a device unless it already exists.

        Returns (account, created). An existing device account is returned
        untouched, including its email.
        """
        ...

    async def add_paid_credits(
        self,
        identity: AccountIdentity,
        amount: int,
        expires_at: datetime | None = None,
    ) -> AccountData:
        """Atomically add paid credits, creating an unbound account if needed."""
        ...

    async def consume_one(
        self, identity: AccountIdentity
    ) -> tuple[AccountData, CreditSource] | None:
        """
        Atomically take one credit, paid before free.

        Returns None when both pools are empty.

        Raises:
            AccountNotFoundError: identity resolves to no account
        """
        ...

    async def restore_one(self, identity: AccountIdentity, source: CreditSource) -> AccountData:
        """
        Give one credit back to `source`.

        Raises:
            AccountNotFoundError: identity resolves to no account
        """
        ...

    async def apply_payment(
        self, record: PaymentRecord, expires_at: datetime | None = None
    ) -> AccountData:
        """
        Append the payment record and add its credits in one transaction.

        Raises:
            DuplicatePaymentError: record.payment_id was already applied
        """
        ...

    async def list_payments(self, limit: int | None = None) -> list[PaymentRecord]:
        """Payment log, newest first."""
        ...

    async def ping(self) -> None:
        """Raise StoreUnavailableError if the backend is unreachable."""
        ...

    async def reconnect(self) -> None:
        """Drop and re-create backend connections."""
        ...

    async def close(self) -> None:
        """Release backend resources."""
        ...
