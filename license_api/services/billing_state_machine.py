"""
Billing state machine

Pure decision logic: given a subscription, a payment outcome and the current
time, what should happen. No I/O; callers persist the transition and call the
license ledger when grant_license is set.
"""
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from license_api.core.enums import BillingAction, PaymentOutcome, SubscriptionStatus
from license_api.database.subscription_store import SubscriptionRecord
from license_api.services.billing_calendar import next_charge_date

DEFAULT_MAX_RETRIES = 3


@dataclass(frozen=True)
class Transition:
    """Target state of a record after one billing attempt."""
    action: BillingAction
    status: SubscriptionStatus
    retry_count: int
    last_charge_date: Optional[datetime]
    next_charge_date: Optional[datetime]
    grant_license: bool = False
    changed: bool = False

    def apply(self, record: SubscriptionRecord) -> SubscriptionRecord:
        """
        Record with the transition merged in (unchanged record if nothing changed)

        A charge consumes the one-shot payment-page address: the next period
        is checked on the subscription's long-lived intent address again.
        """
        if not self.changed:
            return record
        changes = dict(
            status=self.status,
            retry_count=self.retry_count,
            last_charge_date=self.last_charge_date,
            next_charge_date=self.next_charge_date,
        )
        if self.action == BillingAction.CHARGED:
            changes["payment_deposit_address"] = None
        return record.merge(**changes)


def _unchanged(record: SubscriptionRecord, action: BillingAction) -> Transition:
    return Transition(
        action=action,
        status=record.status,
        retry_count=record.retry_count,
        last_charge_date=record.last_charge_date,
        next_charge_date=record.next_charge_date,
    )


def decide(
    record: SubscriptionRecord,
    outcome: PaymentOutcome,
    now: datetime,
    max_retries: int = DEFAULT_MAX_RETRIES,
) -> Transition:
    """
    Decide the next state of a subscription

    - cancelled: never changes (skipped)
    - received: active, retries reset, charged now, next date one month on,
      license must be extended
    - pending: no change, the next sweep looks again
    - none: one more retry; past_due, or cancelled once retries are exhausted.
      next_charge_date stays so the record is due again tomorrow.
      A pending (never paid) subscription is left alone.

    Args:
        record: Current subscription snapshot
        outcome: Payment verification result
        now: Decision time
        max_retries: Missed payments before cancellation

    Returns:
        Transition describing the target state
    """
    if SubscriptionStatus.is_terminal(record.status):
        return _unchanged(record, BillingAction.SKIPPED)

    if outcome == PaymentOutcome.RECEIVED:
        return Transition(
            action=BillingAction.CHARGED,
            status=SubscriptionStatus.ACTIVE,
            retry_count=0,
            last_charge_date=now,
            next_charge_date=next_charge_date(record.billing_day, now),
            grant_license=True,
            changed=True,
        )

    if outcome == PaymentOutcome.PENDING or record.status == SubscriptionStatus.PENDING:
        return _unchanged(record, BillingAction.PENDING)

    retry_count = record.retry_count + 1
    if retry_count >= max_retries:
        status, action = SubscriptionStatus.CANCELLED, BillingAction.CANCELLED
    else:
        status, action = SubscriptionStatus.PAST_DUE, BillingAction.PAST_DUE

    return Transition(
        action=action,
        status=status,
        retry_count=retry_count,
        last_charge_date=record.last_charge_date,
        next_charge_date=record.next_charge_date,
        changed=True,
    )
