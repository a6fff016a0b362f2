"""
Credit Ledger - Free and paid credit accounting on top of an AccountStore.

The ledger is the only caller of the store's mutating operations. It never
reads a balance and writes it back; every change is delegated to a single
atomic store operation.
"""

from collections.abc import Awaitable, Callable
from datetime import datetime
from typing import TypeVar

from structlog import get_logger

from creditgate.exceptions import AccountNotFoundError, CreditsDepletedError, StoreUnavailableError
from creditgate.models.api import CreditSource
from creditgate.models.domain import (
    AccountData,
    AccountIdentity,
    BalanceData,
    ConsumeResult,
    PaymentRecord,
    RegistrationResult,
)
from creditgate.observability import metrics
from creditgate.observability.tracing import add_span_attributes, get_tracer
from creditgate.stores.base import AccountStore

logger = get_logger(__name__)
tracer = get_tracer(__name__)

T = TypeVar("T")


class CreditLedger:
    """
    Credit ledger.

    Store calls that fail with StoreUnavailableError are retried once after
    the store reconnects; a second failure propagates to the caller.
    """

    def __init__(self, store: AccountStore, free_credits_per_device: int = 50) -> None:
        self.store = store
        self.free_credits_per_device = free_credits_per_device

    async def register_device(self, identity: AccountIdentity, device_id: str) -> RegistrationResult:
        """
        Register a device, granting the one-time free credits if it is new.

        A known device keeps its stored email even when registered again
        under a different one.
        """
        account, created = await self._call(
            "register_device",
            lambda: self.store.register_device(
                identity.email, device_id, self.free_credits_per_device
            ),
        )
        metrics.record_registration(created)

        if created:
            logger.info(
                "device_registered",
                email=account.email,
                device_id=device_id,
                free_credits=account.free_credits,
                paid_credits=account.paid_credits,
            )
        elif account.email != identity.email:
            logger.info(
                "device_reregistered_with_different_email",
                device_id=device_id,
                stored_email=account.email,
                requested_email=identity.email,
            )

        return RegistrationResult(
            free_granted=self.free_credits_per_device if created else 0,
            paid_balance=account.paid_credits,
            is_new_device=created,
            account=account,
        )

    async def get_balance(self, identity: AccountIdentity) -> BalanceData:
        """
        Current balance of the account.

        Raises:
            AccountNotFoundError: identity resolves to no account
        """
        account = await self.find_account(identity)
        if account is None:
            raise AccountNotFoundError(identity.email, identity.device_id)
        return BalanceData(
            free=account.free_credits,
            paid=account.paid_credits,
            expires_at=account.entitlement_expires_at,
        )

    async def find_account(self, identity: AccountIdentity) -> AccountData | None:
        return await self._call("find", lambda: self.store.find(identity))

    async def grant_credits(
        self,
        identity: AccountIdentity,
        amount: int,
        expires_at: datetime | None = None,
    ) -> AccountData:
        """Add paid credits, creating the account if it does not exist yet."""
        if amount <= 0:
            raise ValueError(f"Grant amount must be positive: {amount}")

        account = await self._call(
            "grant_credits",
            lambda: self.store.add_paid_credits(identity, amount, expires_at),
        )
        metrics.record_credit_grant("manual", amount)
        logger.info(
            "credits_granted",
            email=identity.email,
            device_id=identity.device_id,
            amount=amount,
            paid_credits=account.paid_credits,
        )
        return account

    async def consume_one_credit(self, identity: AccountIdentity) -> ConsumeResult:
        """
        Take one credit, paid before free.

        Raises:
            AccountNotFoundError: identity resolves to no account
            CreditsDepletedError: both pools are empty
        """
        with tracer.start_as_current_span("consume_one_credit") as span:
            add_span_attributes(span, email=identity.email, device_id=identity.device_id)
            try:
                consumed = await self._call("consume_one", lambda: self.store.consume_one(identity))
            except AccountNotFoundError:
                metrics.record_consumption(None, "not_found")
                raise

            if consumed is None:
                metrics.record_consumption(None, "depleted")
                logger.info("credits_depleted", email=identity.email, device_id=identity.device_id)
                raise CreditsDepletedError(identity.email)

            account, source = consumed
            add_span_attributes(span, source=source.value)
            metrics.record_consumption(source.value, "consumed")
            logger.info(
                "credit_consumed",
                email=account.email,
                device_id=account.device_id,
                source=source.value,
                remaining=account.total_credits,
            )
            return ConsumeResult(source=source, account=account)

    async def refund_credit(self, identity: AccountIdentity, source: CreditSource) -> AccountData:
        """Return a consumed credit to the pool it came from."""
        account = await self._call("restore_one", lambda: self.store.restore_one(identity, source))
        metrics.record_refund(source.value)
        logger.info(
            "credit_refunded",
            email=account.email,
            device_id=account.device_id,
            source=source.value,
            remaining=account.total_credits,
        )
        return account

    async def record_payment(
        self, record: PaymentRecord, expires_at: datetime | None = None
    ) -> AccountData:
        """
        Credit a payment exactly once and append it to the payment log.

        Raises:
            DuplicatePaymentError: the provider payment id was already credited
        """
        account = await self._call(
            "apply_payment", lambda: self.store.apply_payment(record, expires_at)
        )
        metrics.record_credit_grant(record.package, record.credits_added)
        logger.info(
            "payment_credited",
            email=record.email,
            payment_id=record.payment_id,
            event_id=record.event_id,
            package=record.package,
            credits_added=record.credits_added,
            paid_credits=account.paid_credits,
        )
        return account

    async def list_payments(self, limit: int | None = None) -> list[PaymentRecord]:
        return await self._call("list_payments", lambda: self.store.list_payments(limit))

    async def is_activation_valid(self, email: str) -> bool:
        """An activation code is honoured only for an existing, active account."""
        account = await self.find_account(AccountIdentity(email=email))
        return account is not None and account.is_active

    # ========================================================================
    # Private Helper Methods
    # ========================================================================

    async def _call(self, operation: str, call: Callable[[], Awaitable[T]]) -> T:
        try:
            return await call()
        except StoreUnavailableError as e:
            logger.warning("store_unavailable_retrying", operation=operation, error=e.message)
            await self.store.reconnect()

        try:
            result = await call()
        except StoreUnavailableError as e:
            metrics.record_store_retry(operation, recovered=False)
            metrics.record_error("StoreUnavailableError", operation)
            logger.error("store_unavailable", operation=operation, error=e.message)
            raise
        metrics.record_store_retry(operation, recovered=True)
        return result
