"""
Core Enums - shared types of the billing engine.

Defines:
- SubscriptionStatus: lifecycle of a crypto subscription
- PaymentOutcome: result of a payment verification
- BillingAction: what one billing attempt did to a subscription
- ExecutionStatus: settlement provider execution states
"""

from enum import Enum


class SubscriptionStatus(str, Enum):
    """Subscription lifecycle.

    pending -> active on first confirmed payment.
    active <-> past_due while retries remain.
    cancelled is terminal (retry exhaustion or explicit cancel).
    """

    PENDING = "pending"
    ACTIVE = "active"
    PAST_DUE = "past_due"
    CANCELLED = "cancelled"

    @classmethod
    def is_terminal(cls, status: "SubscriptionStatus") -> bool:
        """Terminal statuses are never touched by the scheduler."""
        return status == cls.CANCELLED

    @classmethod
    def is_live(cls, status: "SubscriptionStatus") -> bool:
        """A live subscription blocks creating another one for the account."""
        return status in (cls.ACTIVE, cls.PENDING)


class PaymentOutcome(str, Enum):
    """Payment verification result for one deposit address."""

    RECEIVED = "received"  # settled after the reference timestamp
    PENDING = "pending"  # funds observed, not settled yet
    NONE = "none"  # confirmed absence of a qualifying payment


class BillingAction(str, Enum):
    """Per-record result of a billing attempt."""

    CHARGED = "charged"
    PENDING = "pending"
    PAST_DUE = "past_due"
    CANCELLED = "cancelled"
    SKIPPED = "skipped"  # terminal record, nothing to do
    ERROR = "error"


class ExecutionStatus(str, Enum):
    """Execution status reported by the settlement provider for a deposit address."""

    KNOWN_DEPOSIT_TX = "KNOWN_DEPOSIT_TX"
    PENDING_DEPOSIT = "PENDING_DEPOSIT"
    INCOMPLETE_DEPOSIT = "INCOMPLETE_DEPOSIT"
    PROCESSING = "PROCESSING"
    SUCCESS = "SUCCESS"
    REFUNDED = "REFUNDED"
    FAILED = "FAILED"

    @classmethod
    def parse(cls, raw: str | None) -> "ExecutionStatus | None":
        """Unknown or missing statuses map to None (treated as no payment)."""
        try:
            return cls(raw)
        except ValueError:
            return None

    @classmethod
    def is_in_flight(cls, status: "ExecutionStatus | None") -> bool:
        """Funds were seen but have not settled."""
        return status in (cls.KNOWN_DEPOSIT_TX, cls.PROCESSING)
