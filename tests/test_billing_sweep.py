"""
Tests for the recurring billing sweep
"""

from datetime import datetime, timedelta, UTC
from decimal import Decimal
from unittest.mock import AsyncMock

import pytest

from license_api.core.enums import BillingAction, PaymentOutcome, SubscriptionStatus
from license_api.core.exceptions import TransientProviderError
from license_api.database.subscription_store import SubscriptionRecord, SubscriptionStore
from license_api.services.payment_verifier import PaymentCheck
from license_api.tasks.billing_sweep import RecurringBillingScheduler


DUE = datetime(2026, 4, 15, tzinfo=UTC)
SWEEP_TIME = datetime(2026, 4, 15, 6, 0, tzinfo=UTC)


def make_verifier(outcome: PaymentOutcome) -> AsyncMock:
    verifier = AsyncMock()
    verifier.check_payment.return_value = PaymentCheck(outcome=outcome, tx_hash="tx-pay")
    return verifier


async def seed(session_maker, intent_id="deposit-1", account_id="alice.near", **overrides) -> SubscriptionRecord:
    values = dict(
        intent_id=intent_id,
        account_id=account_id,
        monthly_amount_usd=Decimal("4.00"),
        billing_day=15,
        status=SubscriptionStatus.ACTIVE,
        last_charge_date=datetime(2026, 3, 15, 6, 0, tzinfo=UTC),
        next_charge_date=DUE,
        created_at=datetime(2026, 2, 10, tzinfo=UTC),
    )
    values.update(overrides)
    async with session_maker() as session:
        return await SubscriptionStore(session).save(SubscriptionRecord(**values))


async def load(session_maker, intent_id="deposit-1") -> SubscriptionRecord:
    async with session_maker() as session:
        return await SubscriptionStore(session).get_by_intent_id(intent_id)


def make_sweep(session_maker, verifier, grantor, billing_settings) -> RecurringBillingScheduler:
    return RecurringBillingScheduler(session_maker, verifier, grantor, billing_settings)


@pytest.mark.asyncio
async def test_missed_payment_on_due_date(session_maker, grantor, billing_settings):
    """Active -> past_due, retry 0 -> 1, date unchanged so it is due again tomorrow"""
    await seed(session_maker)
    sweep = make_sweep(session_maker, make_verifier(PaymentOutcome.NONE), grantor, billing_settings)

    summary = await sweep.run(SWEEP_TIME)

    record = await load(session_maker)
    assert summary.past_due == 1
    assert record.status == SubscriptionStatus.PAST_DUE
    assert record.retry_count == 1
    assert record.next_charge_date == DUE
    assert grantor.calls == []


@pytest.mark.asyncio
async def test_retry_exhaustion_cancels_on_third_miss(session_maker, grantor, billing_settings):
    await seed(session_maker)
    sweep = make_sweep(session_maker, make_verifier(PaymentOutcome.NONE), grantor, billing_settings)

    observed = []
    for day in range(3):
        await sweep.run(SWEEP_TIME + timedelta(days=day))
        record = await load(session_maker)
        observed.append((record.retry_count, record.status))

    assert observed == [
        (1, SubscriptionStatus.PAST_DUE),
        (2, SubscriptionStatus.PAST_DUE),
        (3, SubscriptionStatus.CANCELLED),
    ]

    # Fourth sweep: nothing left to bill
    summary = await sweep.run(SWEEP_TIME + timedelta(days=3))
    record = await load(session_maker)
    assert summary.total_processed == 0
    assert (record.retry_count, record.status) == (3, SubscriptionStatus.CANCELLED)


@pytest.mark.asyncio
async def test_cancelled_record_is_never_touched(session_maker, grantor, billing_settings):
    before = await seed(session_maker, status=SubscriptionStatus.CANCELLED, retry_count=1)
    verifier = make_verifier(PaymentOutcome.RECEIVED)

    summary = await make_sweep(session_maker, verifier, grantor, billing_settings).run(SWEEP_TIME)

    after = await load(session_maker)
    assert summary.total_processed == 0
    assert after == before
    verifier.check_payment.assert_not_called()
    assert grantor.calls == []


@pytest.mark.asyncio
async def test_consecutive_charges_advance_one_month_each(session_maker, grantor, billing_settings):
    await seed(session_maker)
    sweep = make_sweep(session_maker, make_verifier(PaymentOutcome.RECEIVED), grantor, billing_settings)

    first = await sweep.run(SWEEP_TIME)
    after_first = await load(session_maker)

    # Not due again until next month
    idle = await sweep.run(SWEEP_TIME + timedelta(days=5))

    second = await sweep.run(after_first.next_charge_date + timedelta(hours=6))
    after_second = await load(session_maker)

    assert first.charged == 1 and second.charged == 1
    assert idle.total_processed == 0
    assert after_first.next_charge_date == datetime(2026, 5, 15, tzinfo=UTC)
    assert after_second.next_charge_date == datetime(2026, 6, 15, tzinfo=UTC)
    assert after_second.next_charge_date > after_first.next_charge_date > DUE
    assert after_second.retry_count == 0
    assert grantor.calls == [("alice.near", 30), ("alice.near", 30)]


@pytest.mark.asyncio
async def test_past_due_payment_reactivates(session_maker, grantor, billing_settings):
    await seed(session_maker, status=SubscriptionStatus.PAST_DUE, retry_count=2)
    sweep = make_sweep(session_maker, make_verifier(PaymentOutcome.RECEIVED), grantor, billing_settings)

    summary = await sweep.run(SWEEP_TIME)

    record = await load(session_maker)
    assert summary.results[0].action == BillingAction.CHARGED
    assert summary.results[0].tx_hash == "tx-1"
    assert record.status == SubscriptionStatus.ACTIVE
    assert record.retry_count == 0
    assert record.last_charge_date == SWEEP_TIME


@pytest.mark.asyncio
async def test_pending_payment_changes_nothing(session_maker, grantor, billing_settings):
    before = await seed(session_maker)

    summary = await make_sweep(
        session_maker, make_verifier(PaymentOutcome.PENDING), grantor, billing_settings
    ).run(SWEEP_TIME)

    after = await load(session_maker)
    assert summary.pending == 1
    assert after.updated_at == before.updated_at
    assert after.status == SubscriptionStatus.ACTIVE


@pytest.mark.asyncio
async def test_grant_failure_leaves_record_for_next_sweep(session_maker, grantor, failing_grantor, billing_settings):
    """Payment verified but the ledger refused: nothing written, next sweep retries the grant"""
    before = await seed(session_maker)
    verifier = make_verifier(PaymentOutcome.RECEIVED)

    failed = await make_sweep(session_maker, verifier, failing_grantor, billing_settings).run(SWEEP_TIME)

    after_failure = await load(session_maker)
    assert failed.errors == 1
    assert "LicenseGrantError" in failed.results[0].error
    assert after_failure == before

    retried = await make_sweep(session_maker, verifier, grantor, billing_settings).run(SWEEP_TIME + timedelta(days=1))

    record = await load(session_maker)
    assert retried.charged == 1
    assert record.status == SubscriptionStatus.ACTIVE
    assert record.next_charge_date == datetime(2026, 5, 15, tzinfo=UTC)
    assert len(grantor.calls) == 1


@pytest.mark.asyncio
async def test_provider_error_is_isolated_to_its_record(session_maker, grantor, billing_settings):
    await seed(session_maker, intent_id="deposit-1", account_id="alice.near")
    await seed(session_maker, intent_id="deposit-2", account_id="bob.near")

    async def check_payment(deposit_address, since):
        if deposit_address == "deposit-1":
            raise TransientProviderError("Provider GET /v0/status unreachable")
        return PaymentCheck(outcome=PaymentOutcome.RECEIVED)

    verifier = AsyncMock()
    verifier.check_payment.side_effect = check_payment

    summary = await make_sweep(session_maker, verifier, grantor, billing_settings).run(SWEEP_TIME)

    assert summary.total_processed == 2
    assert summary.errors == 1
    assert summary.charged == 1
    assert (await load(session_maker, "deposit-1")).retry_count == 0
    assert (await load(session_maker, "deposit-2")).status == SubscriptionStatus.ACTIVE
    assert grantor.calls == [("bob.near", 30)]


@pytest.mark.asyncio
async def test_unexpected_error_does_not_stop_the_sweep(session_maker, grantor, billing_settings):
    await seed(session_maker, intent_id="deposit-1", account_id="alice.near")
    await seed(session_maker, intent_id="deposit-2", account_id="bob.near")

    verifier = AsyncMock()
    verifier.check_payment.side_effect = [RuntimeError("boom"), PaymentCheck(outcome=PaymentOutcome.NONE)]

    summary = await make_sweep(session_maker, verifier, grantor, billing_settings).run(SWEEP_TIME)

    assert [result.action for result in summary.results] == [BillingAction.ERROR, BillingAction.PAST_DUE]
    assert summary.results[0].success is False


@pytest.mark.asyncio
async def test_payment_checked_on_current_deposit_address(session_maker, grantor, billing_settings):
    await seed(session_maker, payment_deposit_address="pay-2")
    verifier = make_verifier(PaymentOutcome.PENDING)

    await make_sweep(session_maker, verifier, grantor, billing_settings).run(SWEEP_TIME)

    deposit_address, since = verifier.check_payment.call_args.args
    assert deposit_address == "pay-2"
    assert since == datetime(2026, 3, 15, 6, 0, tzinfo=UTC)


@pytest.mark.asyncio
async def test_paid_pending_subscription_is_activated_without_confirm(session_maker, grantor, billing_settings):
    """Subscriber funded the intent but never called confirm: the sweep activates it"""
    await seed(session_maker, status=SubscriptionStatus.PENDING, last_charge_date=None)
    verifier = make_verifier(PaymentOutcome.RECEIVED)

    summary = await make_sweep(session_maker, verifier, grantor, billing_settings).run(SWEEP_TIME)

    record = await load(session_maker)
    assert summary.charged == 1
    assert record.status == SubscriptionStatus.ACTIVE
    assert record.next_charge_date == datetime(2026, 5, 15, tzinfo=UTC)
    assert grantor.calls == [("alice.near", 30)]
    assert verifier.check_payment.call_args.args == ("deposit-1", datetime(2026, 2, 10, tzinfo=UTC))


@pytest.mark.asyncio
async def test_unpaid_pending_subscription_waits(session_maker, grantor, billing_settings):
    before = await seed(session_maker, status=SubscriptionStatus.PENDING, last_charge_date=None)

    summary = await make_sweep(
        session_maker, make_verifier(PaymentOutcome.NONE), grantor, billing_settings
    ).run(SWEEP_TIME)

    after = await load(session_maker)
    assert summary.total_processed == 1
    assert summary.pending == 1
    assert after == before
    assert grantor.calls == []


@pytest.mark.asyncio
async def test_next_period_is_checked_on_intent_address(session_maker, grantor, billing_settings):
    """A payment-page address pays one period; renewals settle to the intent address"""
    await seed(session_maker, payment_deposit_address="quote-march")
    checked = []

    async def check_payment(deposit_address, since):
        checked.append(deposit_address)
        if deposit_address == "quote-march" and since < SWEEP_TIME:
            return PaymentCheck(outcome=PaymentOutcome.RECEIVED)
        if deposit_address == "deposit-1" and since >= SWEEP_TIME:
            return PaymentCheck(outcome=PaymentOutcome.RECEIVED)
        return PaymentCheck(outcome=PaymentOutcome.NONE)

    verifier = AsyncMock()
    verifier.check_payment.side_effect = check_payment
    sweep = make_sweep(session_maker, verifier, grantor, billing_settings)

    first = await sweep.run(SWEEP_TIME)
    after_first = await load(session_maker)
    second = await sweep.run(after_first.next_charge_date + timedelta(hours=6))
    after_second = await load(session_maker)

    assert checked == ["quote-march", "deposit-1"]
    assert first.charged == 1 and second.charged == 1
    assert after_first.payment_deposit_address is None
    assert after_second.status == SubscriptionStatus.ACTIVE
    assert after_second.retry_count == 0
    assert after_second.next_charge_date == datetime(2026, 6, 15, tzinfo=UTC)
