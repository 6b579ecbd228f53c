# coding: utf-8
"""
Charge processor

Applies one verified payment outcome to one subscription: decide the
transition, extend the license when a charge succeeded, then persist the
whole record. Shared by the confirm request and the daily sweep so both
paths produce identical state.

Ordering: the license is extended before the record is written. If the
grant fails nothing is written and the next attempt starts from the same
pre-charge state.
"""
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from loguru import logger

from config.billing import BillingSettings
from license_api.core.exceptions import ConflictError, LicenseGrantError
from license_api.database.subscription_store import SubscriptionRecord, SubscriptionStore
from license_api.services.billing_state_machine import Transition, decide
from license_api.services.license_grantor import LicenseGrantor, LicenseGrantResult
from license_api.services.payment_verifier import PaymentCheck


@dataclass(frozen=True)
class ChargeOutcome:
    transition: Transition
    payment: PaymentCheck
    record: SubscriptionRecord
    grant: Optional[LicenseGrantResult] = None


async def apply_payment_outcome(
    record: SubscriptionRecord,
    payment: PaymentCheck,
    *,
    store: SubscriptionStore,
    grantor: LicenseGrantor,
    settings: BillingSettings,
    now: datetime,
) -> ChargeOutcome:
    """
    Run the state machine for one record and carry out its decision

    Args:
        record: Subscription snapshot the payment was checked for
        payment: Verification result
        store: Store bound to this record's database session
        grantor: License ledger
        settings: Billing settings of this invocation
        now: Decision time

    Returns:
        ChargeOutcome with the persisted (or unchanged) record

    Raises:
        ConflictError: payment received but no account is linked to grant to
        LicenseGrantError: payment received but the ledger refused the grant
    """
    transition = decide(record, payment.outcome, now, settings.max_retry_attempts)

    grant = None
    if transition.grant_license:
        if not record.account_id:
            raise ConflictError(
                f"Payment received for intent {record.intent_id} but no account is linked"
            )

        grant = await grantor.extend(record.account_id, settings.license_duration_days)
        if not grant.success:
            logger.error(
                f"❌ Payment confirmed for {record.account_id} but license grant failed: {grant.error}"
            )
            raise LicenseGrantError(f"License grant failed: {grant.error}")

    if transition.changed:
        record = await store.save(transition.apply(record))
        logger.info(
            f"💳 {record.account_id or record.intent_id}: {transition.action.value} "
            f"(status={record.status.value}, retry={record.retry_count}, "
            f"next={record.next_charge_date.isoformat() if record.next_charge_date else None})"
        )

    return ChargeOutcome(transition=transition, payment=payment, record=record, grant=grant)
