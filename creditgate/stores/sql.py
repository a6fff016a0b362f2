"""
SQL Account Store - PostgreSQL persistence with atomic conditional updates.

Balance changes are single UPDATE ... RETURNING statements guarded by their
floor condition, so two requests can never both spend the last credit.
"""

import asyncio
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import datetime
from uuid import UUID, uuid4

from sqlalchemy import select, text, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.exc import DBAPIError, IntegrityError, InterfaceError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from structlog import get_logger

from creditgate.config import Settings, settings
from creditgate.db.models import Account, Payment
from creditgate.db.session import close_engines, get_engine, get_session_factory
from creditgate.exceptions import (
    AccountNotFoundError,
    DuplicatePaymentError,
    StoreUnavailableError,
)
from creditgate.models.api import CreditSource
from creditgate.models.domain import AccountData, AccountIdentity, PaymentRecord, utc_now
from creditgate.observability import metrics
from creditgate.observability.tracing import instrument_sqlalchemy

logger = get_logger(__name__)


class SqlAccountStore:
    """PostgreSQL implementation of the AccountStore protocol."""

    backend_name = "postgresql"

    def __init__(
        self,
        config: Settings = settings,
        session_factory: async_sessionmaker[AsyncSession] | None = None,
    ) -> None:
        self._config = config
        self._owns_engine = session_factory is None
        self._session_factory = session_factory
        if self._owns_engine:
            instrument_sqlalchemy(get_engine(config))

    @property
    def _factory(self) -> async_sessionmaker[AsyncSession]:
        if self._session_factory is None:
            self._session_factory = get_session_factory(self._config)
        return self._session_factory

    # ========================================================================
    # Reads
    # ========================================================================

    async def find(self, identity: AccountIdentity) -> AccountData | None:
        async with self._transaction("find") as session:
            account = await session.scalar(self._select_account(identity))
            return _account_to_domain(account) if account is not None else None

    async def list_payments(self, limit: int | None = None) -> list[PaymentRecord]:
        stmt = select(Payment).order_by(Payment.created_at.desc())
        if limit is not None:
            stmt = stmt.limit(limit)
        async with self._transaction("list_payments") as session:
            result = await session.scalars(stmt)
            return [_payment_to_domain(p) for p in result.all()]

    # ========================================================================
    # Mutations
    # ========================================================================

    async def register_device(
        self, email: str, device_id: str, free_credits: int
    ) -> tuple[AccountData, bool]:
        try:
            return await self._register_device_once(email, device_id, free_credits)
        except IntegrityError as e:
            # Another request bound or inserted this device first
            logger.warning("register_device_conflict", device_id=device_id, error=str(e))
            async with self._transaction("register_device_refetch") as session:
                account = await session.scalar(
                    select(Account).where(Account.device_id == device_id)
                )
            if account is None:
                raise
            return _account_to_domain(account), False

    async def add_paid_credits(
        self,
        identity: AccountIdentity,
        amount: int,
        expires_at: datetime | None = None,
    ) -> AccountData:
        async with self._transaction("add_paid_credits") as session:
            account = await self._add_paid_in(session, identity, amount, expires_at)
            return _account_to_domain(account)

    async def consume_one(
        self, identity: AccountIdentity
    ) -> tuple[AccountData, CreditSource] | None:
        async with self._transaction("consume_one") as session:
            account_id = await self._require_account_id(session, identity)
            now = utc_now()

            paid = await session.scalar(
                update(Account)
                .where(Account.id == account_id, Account.paid_credits > 0)
                .values(paid_credits=Account.paid_credits - 1, updated_at=now)
                .returning(Account)
                .execution_options(synchronize_session=False, populate_existing=True)
            )
            if paid is not None:
                return _account_to_domain(paid), CreditSource.PAID

            free = await session.scalar(
                update(Account)
                .where(Account.id == account_id, Account.free_credits > 0)
                .values(free_credits=Account.free_credits - 1, updated_at=now)
                .returning(Account)
                .execution_options(synchronize_session=False, populate_existing=True)
            )
            if free is not None:
                return _account_to_domain(free), CreditSource.FREE

            return None

    async def restore_one(self, identity: AccountIdentity, source: CreditSource) -> AccountData:
        column = Account.paid_credits if source == CreditSource.PAID else Account.free_credits
        async with self._transaction("restore_one") as session:
            account_id = await self._require_account_id(session, identity)
            account = await session.scalar(
                update(Account)
                .where(Account.id == account_id)
                .values({column: column + 1, Account.updated_at: utc_now()})
                .returning(Account)
                .execution_options(synchronize_session=False, populate_existing=True)
            )
            return _account_to_domain(account)

    async def apply_payment(
        self, record: PaymentRecord, expires_at: datetime | None = None
    ) -> AccountData:
        values = {
            "id": uuid4(),
            "payment_id": record.payment_id,
            "event_id": record.event_id,
            "email": record.email,
            "amount": record.amount,
            "currency": record.currency,
            "credits_added": record.credits_added,
            "package": record.package,
            "activation_code": record.activation_code,
            "created_at": record.created_at,
        }
        async with self._transaction("apply_payment") as session:
            stmt = pg_insert(Payment).values(**values)
            if record.payment_id is not None:
                stmt = stmt.on_conflict_do_nothing(index_elements=[Payment.payment_id])
            inserted = await session.scalar(stmt.returning(Payment.id))
            if inserted is None:
                raise DuplicatePaymentError(record.payment_id or "")

            account = await self._add_paid_in(
                session, AccountIdentity(email=record.email), record.credits_added, expires_at
            )
            return _account_to_domain(account)

    # ========================================================================
    # Lifecycle
    # ========================================================================

    async def ping(self) -> None:
        async with self._transaction("ping") as session:
            await session.execute(text("SELECT 1"))

    async def reconnect(self) -> None:
        """Dispose the pool so the next operation opens fresh connections."""
        if not self._owns_engine:
            return
        await close_engines()
        self._session_factory = None
        logger.info("account_store_reconnected")

    async def close(self) -> None:
        if self._owns_engine:
            await close_engines()
            self._session_factory = None

    # ========================================================================
    # Private Helper Methods
    # ========================================================================

    @asynccontextmanager
    async def _transaction(self, operation: str) -> AsyncIterator[AsyncSession]:
        """
        Run one unit of work in a transaction.

        Connection-level failures are reported as StoreUnavailableError;
        everything else propagates unchanged.
        """
        start = time.perf_counter()
        success = False
        try:
            async with self._factory() as session:
                async with session.begin():
                    yield session
            success = True
        except (OperationalError, InterfaceError) as e:
            raise StoreUnavailableError(str(e)) from e
        except DBAPIError as e:
            if e.connection_invalidated:
                raise StoreUnavailableError(str(e)) from e
            raise
        except (OSError, asyncio.TimeoutError) as e:
            raise StoreUnavailableError(str(e) or type(e).__name__) from e
        finally:
            metrics.record_db_query(operation, success, time.perf_counter() - start)

    @staticmethod
    def _select_account(identity: AccountIdentity):
        if identity.device_id is not None:
            return select(Account).where(Account.device_id == identity.device_id)
        return (
            select(Account)
            .where(Account.email == identity.email)
            .order_by(Account.created_at)
            .limit(1)
        )

    async def _require_account_id(
        self, session: AsyncSession, identity: AccountIdentity
    ) -> UUID:
        account_id = await session.scalar(
            self._select_account(identity).with_only_columns(Account.id)
        )
        if account_id is None:
            raise AccountNotFoundError(identity.email, identity.device_id)
        return account_id

    async def _register_device_once(
        self, email: str, device_id: str, free_credits: int
    ) -> tuple[AccountData, bool]:
        async with self._transaction("register_device") as session:
            existing = await session.scalar(select(Account).where(Account.device_id == device_id))
            if existing is not None:
                return _account_to_domain(existing), False

            now = utc_now()

            # A payment may have created the account before the device registered
            bound = await session.scalar(
                update(Account)
                .where(Account.email == email, Account.device_id.is_(None))
                .values(device_id=device_id, free_credits=free_credits, updated_at=now)
                .returning(Account)
                .execution_options(synchronize_session=False, populate_existing=True)
            )
            if bound is not None:
                return _account_to_domain(bound), True

            created = await session.scalar(
                pg_insert(Account)
                .values(
                    id=uuid4(),
                    email=email,
                    device_id=device_id,
                    free_credits=free_credits,
                    paid_credits=0,
                    is_active=True,
                    created_at=now,
                    updated_at=now,
                )
                .on_conflict_do_nothing(index_elements=[Account.device_id])
                .returning(Account)
            )
            if created is not None:
                return _account_to_domain(created), True

            existing = await session.scalar(select(Account).where(Account.device_id == device_id))
            if existing is None:
                raise IntegrityError("register_device", {"device_id": device_id}, Exception())
            return _account_to_domain(existing), False

    async def _add_paid_in(
        self,
        session: AsyncSession,
        identity: AccountIdentity,
        amount: int,
        expires_at: datetime | None,
    ) -> Account:
        """Increment paid credits on the resolved account, or upsert a new one."""
        now = utc_now()
        changes: dict = {
            "paid_credits": Account.paid_credits + amount,
            "is_active": True,
            "updated_at": now,
        }
        if expires_at is not None:
            changes["entitlement_expires_at"] = expires_at

        target = self._select_account(identity).with_only_columns(Account.id).scalar_subquery()
        account = await session.scalar(
            update(Account)
            .where(Account.id == target)
            .values(**changes)
            .returning(Account)
            .execution_options(synchronize_session=False, populate_existing=True)
        )
        if account is not None:
            return account

        table = Account.__table__
        conflict_set = {
            "paid_credits": table.c.paid_credits + amount,
            "is_active": True,
            "updated_at": now,
        }
        if expires_at is not None:
            conflict_set["entitlement_expires_at"] = expires_at

        stmt = pg_insert(Account).values(
            id=uuid4(),
            email=identity.email,
            device_id=identity.device_id,
            free_credits=0,
            paid_credits=amount,
            is_active=True,
            entitlement_expires_at=expires_at,
            created_at=now,
            updated_at=now,
        )
        if identity.device_id is None:
            stmt = stmt.on_conflict_do_update(
                index_elements=[Account.email],
                index_where=Account.device_id.is_(None),
                set_=conflict_set,
            )
        else:
            stmt = stmt.on_conflict_do_update(
                index_elements=[Account.device_id],
                set_=conflict_set,
            )
        account = await session.scalar(
            stmt.returning(Account).execution_options(populate_existing=True)
        )
        logger.info(
            "account_created_by_credit_grant",
            email=identity.email,
            device_id=identity.device_id,
            amount=amount,
        )
        return account


def _account_to_domain(account: Account) -> AccountData:
    """Convert ORM account to domain model."""
    return AccountData(
        account_id=account.id,
        email=account.email,
        device_id=account.device_id,
        free_credits=account.free_credits,
        paid_credits=account.paid_credits,
        is_active=account.is_active,
        entitlement_expires_at=account.entitlement_expires_at,
        created_at=account.created_at,
        updated_at=account.updated_at,
    )


def _payment_to_domain(payment: Payment) -> PaymentRecord:
    """Convert ORM payment to domain model."""
    return PaymentRecord(
        email=payment.email,
        credits_added=payment.credits_added,
        package=payment.package,
        amount=payment.amount,
        currency=payment.currency,
        payment_id=payment.payment_id,
        event_id=payment.event_id,
        activation_code=payment.activation_code,
        created_at=payment.created_at,
    )
