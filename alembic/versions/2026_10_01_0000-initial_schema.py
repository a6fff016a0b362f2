"""initial schema

Revision ID: 2026_10_01_0000
Revises:
Create Date: 2026-10-01 08:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import UUID


# revision identifiers, used by Alembic.
revision: str = '2026_10_01_0000'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create accounts and payments tables."""

    # ========================================================================
    # Create accounts table
    # ========================================================================
    op.create_table(
        'accounts',
        sa.Column('id', UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('email', sa.String(255), nullable=False),
        sa.Column('device_id', sa.String(255), nullable=True),
        sa.Column('free_credits', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('paid_credits', sa.BigInteger(), nullable=False, server_default='0'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('entitlement_expires_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),

        # Constraints
        sa.CheckConstraint('free_credits >= 0', name='ck_free_credits_non_negative'),
        sa.CheckConstraint('paid_credits >= 0', name='ck_paid_credits_non_negative'),
        sa.UniqueConstraint('device_id', name='uq_accounts_device_id'),
    )

    # At most one unbound (payment-created) account per email
    op.create_index(
        'uq_accounts_unbound_email', 'accounts', ['email'],
        unique=True, postgresql_where=sa.text('device_id IS NULL'),
    )
    op.create_index('idx_accounts_email', 'accounts', ['email'])
    op.create_index('idx_accounts_created_at', 'accounts', ['created_at'])

    # ========================================================================
    # Create payments table
    # ========================================================================
    op.create_table(
        'payments',
        sa.Column('id', UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('payment_id', sa.String(255), nullable=True),
        sa.Column('event_id', sa.String(255), nullable=True),
        sa.Column('email', sa.String(255), nullable=False),
        sa.Column('amount', sa.Numeric(12, 2), nullable=True),
        sa.Column('currency', sa.String(3), nullable=True),
        sa.Column('credits_added', sa.BigInteger(), nullable=False),
        sa.Column('package', sa.String(50), nullable=False),
        sa.Column('activation_code', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),

        sa.CheckConstraint('credits_added > 0', name='ck_payment_credits_positive'),
        sa.UniqueConstraint('payment_id', name='uq_payments_payment_id'),
    )

    op.create_index('idx_payments_created_at', 'payments', ['created_at'])
    op.create_index('idx_payments_email', 'payments', ['email'])


def downgrade() -> None:
    """Drop all tables."""
    op.drop_index('idx_payments_email', table_name='payments')
    op.drop_index('idx_payments_created_at', table_name='payments')
    op.drop_table('payments')

    op.drop_index('idx_accounts_created_at', table_name='accounts')
    op.drop_index('idx_accounts_email', table_name='accounts')
    op.drop_index('uq_accounts_unbound_email', table_name='accounts')
    op.drop_table('accounts')
