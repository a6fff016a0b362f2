"""
In-memory Account Store.

Used when no DATABASE_URL is configured and as the test double for the SQL
store. A single asyncio lock serialises every operation, which gives each
one the same atomicity the SQL store gets from single-statement updates.
"""

import asyncio
from dataclasses import dataclass
from datetime import datetime
from uuid import UUID, uuid4

from creditgate.exceptions import AccountNotFoundError, DuplicatePaymentError
from creditgate.models.api import CreditSource
from creditgate.models.domain import AccountData, AccountIdentity, PaymentRecord, utc_now


@dataclass
class _AccountRow:
    account_id: UUID
    email: str
    device_id: str | None
    free_credits: int
    paid_credits: int
    is_active: bool
    entitlement_expires_at: datetime | None
    created_at: datetime
    updated_at: datetime

    def snapshot(self) -> AccountData:
        return AccountData(
            account_id=self.account_id,
            email=self.email,
            device_id=self.device_id,
            free_credits=self.free_credits,
            paid_credits=self.paid_credits,
            is_active=self.is_active,
            entitlement_expires_at=self.entitlement_expires_at,
            created_at=self.created_at,
            updated_at=self.updated_at,
        )


class InMemoryAccountStore:
    """Process-local account store with the AccountStore contract."""

    backend_name = "memory"

    def __init__(self) -> None:
        self._lock = asyncio.Lock()
        self._accounts: dict[UUID, _AccountRow] = {}
        self._by_device: dict[str, UUID] = {}
        self._payments: list[PaymentRecord] = []
        self._payment_ids: set[str] = set()

    # ========================================================================
    # Reads
    # ========================================================================

    async def find(self, identity: AccountIdentity) -> AccountData | None:
        async with self._lock:
            row = self._resolve(identity)
            return row.snapshot() if row else None

    async def list_payments(self, limit: int | None = None) -> list[PaymentRecord]:
        async with self._lock:
            ordered = sorted(self._payments, key=lambda p: p.created_at, reverse=True)
            return ordered[:limit] if limit is not None else ordered

    # ========================================================================
    # Mutations
    # ========================================================================

    async def register_device(
        self, email: str, device_id: str, free_credits: int
    ) -> tuple[AccountData, bool]:
        async with self._lock:
            existing_id = self._by_device.get(device_id)
            if existing_id is not None:
                return self._accounts[existing_id].snapshot(), False

            now = utc_now()
            unbound = self._unbound_for(email)
            if unbound is not None:
                unbound.device_id = device_id
                unbound.free_credits = free_credits
                unbound.updated_at = now
                self._by_device[device_id] = unbound.account_id
                return unbound.snapshot(), True

            row = self._insert(email, device_id, free_credits=free_credits, now=now)
            return row.snapshot(), True

    async def add_paid_credits(
        self,
        identity: AccountIdentity,
        amount: int,
        expires_at: datetime | None = None,
    ) -> AccountData:
        async with self._lock:
            return self._add_paid(identity, amount, expires_at).snapshot()

    async def consume_one(
        self, identity: AccountIdentity
    ) -> tuple[AccountData, CreditSource] | None:
        async with self._lock:
            row = self._require(identity)
            if row.paid_credits > 0:
                row.paid_credits -= 1
                source = CreditSource.PAID
            elif row.free_credits > 0:
                row.free_credits -= 1
                source = CreditSource.FREE
            else:
                return None
            row.updated_at = utc_now()
            return row.snapshot(), source

    async def restore_one(self, identity: AccountIdentity, source: CreditSource) -> AccountData:
        async with self._lock:
            row = self._require(identity)
            if source == CreditSource.PAID:
                row.paid_credits += 1
            else:
                row.free_credits += 1
            row.updated_at = utc_now()
            return row.snapshot()

    async def apply_payment(
        self, record: PaymentRecord, expires_at: datetime | None = None
    ) -> AccountData:
        async with self._lock:
            if record.payment_id is not None and record.payment_id in self._payment_ids:
                raise DuplicatePaymentError(record.payment_id)
            row = self._add_paid(AccountIdentity(email=record.email), record.credits_added, expires_at)
            if record.payment_id is not None:
                self._payment_ids.add(record.payment_id)
            self._payments.append(record)
            return row.snapshot()

    # ========================================================================
    # Lifecycle
    # ========================================================================

    async def ping(self) -> None:
        return None

    async def reconnect(self) -> None:
        return None

    async def close(self) -> None:
        return None

    # ========================================================================
    # Private Helper Methods (caller holds the lock)
    # ========================================================================

    def _resolve(self, identity: AccountIdentity) -> _AccountRow | None:
        if identity.device_id is not None:
            account_id = self._by_device.get(identity.device_id)
            return self._accounts.get(account_id) if account_id else None
        matches = [row for row in self._accounts.values() if row.email == identity.email]
        if not matches:
            return None
        return min(matches, key=lambda row: row.created_at)

    def _require(self, identity: AccountIdentity) -> _AccountRow:
        row = self._resolve(identity)
        if row is None:
            raise AccountNotFoundError(identity.email, identity.device_id)
        return row

    def _unbound_for(self, email: str) -> _AccountRow | None:
        for row in self._accounts.values():
            if row.email == email and row.device_id is None:
                return row
        return None

    def _insert(
        self, email: str, device_id: str | None, *, free_credits: int = 0, now: datetime
    ) -> _AccountRow:
        row = _AccountRow(
            account_id=uuid4(),
            email=email,
            device_id=device_id,
            free_credits=free_credits,
            paid_credits=0,
            is_active=True,
            entitlement_expires_at=None,
            created_at=now,
            updated_at=now,
        )
        self._accounts[row.account_id] = row
        if device_id is not None:
            self._by_device[device_id] = row.account_id
        return row

    def _add_paid(
        self, identity: AccountIdentity, amount: int, expires_at: datetime | None
    ) -> _AccountRow:
        now = utc_now()
        row = self._resolve(identity)
        if row is None:
            row = self._insert(identity.email, identity.device_id, now=now)
        row.paid_credits += amount
        row.is_active = True
        if expires_at is not None:
            row.entitlement_expires_at = expires_at
        row.updated_at = now
        return row
