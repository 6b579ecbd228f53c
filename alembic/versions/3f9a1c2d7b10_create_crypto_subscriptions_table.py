"""Create crypto_subscriptions table for recurring crypto billing

Revision ID: 3f9a1c2d7b10
Revises:
Create Date: 2026-10-17 09:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '3f9a1c2d7b10'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create crypto_subscriptions table"""
    op.create_table(
        'crypto_subscriptions',
        # Primary key
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),

        # Identity
        sa.Column('account_id', sa.String(128), nullable=True, comment='Owner account (NEAR account or wallet id); NULL until linked'),
        sa.Column('session_id', sa.String(128), nullable=True, comment='Pre-login correlation id for session-based subscribe'),
        sa.Column('intent_id', sa.String(255), nullable=False, comment='Deposit address of the original subscription intent'),
        sa.Column('payment_deposit_address', sa.String(255), nullable=True, comment='Deposit address of the current charge attempt (overrides intent_id)'),

        # Pricing and schedule
        sa.Column('monthly_amount_usd', sa.String(32), nullable=False, comment='Monthly price in USD as canonical decimal string'),
        sa.Column('billing_day', sa.Integer(), nullable=False, comment='Day of month 1-28'),

        # State
        sa.Column('status', sa.String(20), nullable=False, server_default='pending', comment='Subscription status: pending, active, past_due, cancelled'),
        sa.Column('retry_count', sa.Integer(), nullable=False, server_default='0', comment='Consecutive missed payments'),

        # Dates
        sa.Column('last_charge_date', sa.DateTime(timezone=True), nullable=True, comment='Last successful charge'),
        sa.Column('next_charge_date', sa.DateTime(timezone=True), nullable=True, comment='Next billing attempt (daily sweep selects <= now)'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('now()')),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('now()')),

        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('account_id'),
        sa.UniqueConstraint('session_id'),
        sa.UniqueConstraint('intent_id'),
    )

    # Create indexes
    op.create_index('ix_crypto_subscriptions_status', 'crypto_subscriptions', ['status'])
    op.create_index('ix_crypto_subscriptions_next_charge_date', 'crypto_subscriptions', ['next_charge_date'])
    op.create_index('ix_crypto_subscriptions_due', 'crypto_subscriptions', ['status', 'next_charge_date'])


def downgrade() -> None:
    """Drop crypto_subscriptions table"""
    op.drop_index('ix_crypto_subscriptions_due', table_name='crypto_subscriptions')
    op.drop_index('ix_crypto_subscriptions_next_charge_date', table_name='crypto_subscriptions')
    op.drop_index('ix_crypto_subscriptions_status', table_name='crypto_subscriptions')
    op.drop_table('crypto_subscriptions')
