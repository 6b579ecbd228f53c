"""
Database models for the License API

SQLAlchemy 2.0 models with full type hints
"""

from datetime import datetime, UTC
from typing import Optional

from sqlalchemy import String, Integer, DateTime, Index
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from license_api.core.enums import SubscriptionStatus


class Base(DeclarativeBase):
    """Base class for all models"""

    pass


class CryptoSubscription(Base):
    """
    Recurring crypto subscription (monthly license renewal)

    Workflow:
    1. User subscribes (by account) or opens a session (before login)
    2. A long-lived deposit intent is created with the settlement provider
    3. Row is stored with status 'pending'
    4. User funds the deposit address
    5. Confirm request or the daily sweep verifies payment -> 'active'
    6. License ledger is extended, next_charge_date moves one month ahead
    """

    __tablename__ = "crypto_subscriptions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    # Identity
    account_id: Mapped[Optional[str]] = mapped_column(
        String(128),
        unique=True,
        nullable=True,
        comment="Owner account (NEAR account or wallet id); NULL until linked",
    )
    session_id: Mapped[Optional[str]] = mapped_column(
        String(128),
        unique=True,
        nullable=True,
        comment="Pre-login correlation id for session-based subscribe",
    )
    intent_id: Mapped[str] = mapped_column(
        String(255),
        unique=True,
        nullable=False,
        comment="Deposit address of the original subscription intent",
    )
    payment_deposit_address: Mapped[Optional[str]] = mapped_column(
        String(255),
        nullable=True,
        comment="Deposit address of the current charge attempt (overrides intent_id)",
    )

    # Pricing and schedule
    monthly_amount_usd: Mapped[str] = mapped_column(
        String(32),
        nullable=False,
        comment="Monthly price in USD as canonical decimal string",
    )
    billing_day: Mapped[int] = mapped_column(
        Integer, nullable=False, comment="Day of month 1-28"
    )

    # State
    status: Mapped[str] = mapped_column(
        String(20),
        default=SubscriptionStatus.PENDING.value,
        nullable=False,
        index=True,
        comment="Subscription status: pending, active, past_due, cancelled",
    )
    retry_count: Mapped[int] = mapped_column(
        Integer, default=0, nullable=False, comment="Consecutive missed payments"
    )

    # Dates
    last_charge_date: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True, comment="Last successful charge"
    )
    next_charge_date: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
        index=True,
        comment="Next billing attempt (daily sweep selects <= now)",
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(UTC),
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(UTC),
        nullable=False,
    )

    __table_args__ = (
        Index("ix_crypto_subscriptions_due", "status", "next_charge_date"),
    )

    def __repr__(self) -> str:
        return (
            f"<CryptoSubscription(id={self.id}, account_id={self.account_id}, "
            f"status={self.status}, next_charge_date={self.next_charge_date})>"
        )
