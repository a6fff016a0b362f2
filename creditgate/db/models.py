"""
Database Models - SQLAlchemy ORM models with strict typing.

All columns use Mapped[] type annotations.
"""

from datetime import UTC, datetime
from decimal import Decimal
from uuid import UUID, uuid4

from sqlalchemy import (
    BigInteger,
    Boolean,
    CheckConstraint,
    DateTime,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import UUID as PG_UUID
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


def utc_now() -> datetime:
    """Get current UTC timestamp."""
    return datetime.now(UTC)


class Account(Base):
    """
    ORM model for accounts table.

    One row per registered device. Rows created by a payment that arrived
    before registration have no device and are bound on first registration.
    """

    __tablename__ = "accounts"

    # Primary Key
    id: Mapped[UUID] = mapped_column(PG_UUID(as_uuid=True), primary_key=True, default=uuid4)

    # Identity fields
    email: Mapped[str] = mapped_column(String(255), nullable=False)
    device_id: Mapped[str | None] = mapped_column(String(255), nullable=True)

    # Balances
    free_credits: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    paid_credits: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)

    # Entitlement
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    entitlement_expires_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    # Audit timestamps
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now, onupdate=utc_now
    )

    __table_args__ = (
        CheckConstraint("free_credits >= 0", name="ck_free_credits_non_negative"),
        CheckConstraint("paid_credits >= 0", name="ck_paid_credits_non_negative"),
        UniqueConstraint("device_id", name="uq_accounts_device_id"),
        Index(
            "uq_accounts_unbound_email",
            "email",
            unique=True,
            postgresql_where=(device_id.is_(None)),
        ),
        Index("idx_accounts_email", "email"),
        Index("idx_accounts_created_at", "created_at"),
    )

    def __repr__(self) -> str:
        """String representation for debugging."""
        return (
            f"<Account(id={self.id}, email={self.email}, device_id={self.device_id}, "
            f"free={self.free_credits}, paid={self.paid_credits})>"
        )


class Payment(Base):
    """
    ORM model for payments table.

    Immutable log of credited payments.
    """

    __tablename__ = "payments"

    id: Mapped[UUID] = mapped_column(PG_UUID(as_uuid=True), primary_key=True, default=uuid4)

    # Provider references - payment_id is the idempotency key
    payment_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    event_id: Mapped[str | None] = mapped_column(String(255), nullable=True)

    email: Mapped[str] = mapped_column(String(255), nullable=False)
    amount: Mapped[Decimal | None] = mapped_column(Numeric(12, 2), nullable=True)
    currency: Mapped[str | None] = mapped_column(String(3), nullable=True)
    credits_added: Mapped[int] = mapped_column(BigInteger, nullable=False)
    package: Mapped[str] = mapped_column(String(50), nullable=False)
    activation_code: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )

    __table_args__ = (
        CheckConstraint("credits_added > 0", name="ck_payment_credits_positive"),
        UniqueConstraint("payment_id", name="uq_payments_payment_id"),
        Index("idx_payments_created_at", "created_at"),
        Index("idx_payments_email", "email"),
    )

    def __repr__(self) -> str:
        """String representation for debugging."""
        return (
            f"<Payment(id={self.id}, payment_id={self.payment_id}, "
            f"email={self.email}, credits={self.credits_added})>"
        )
