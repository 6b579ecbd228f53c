"""
Unit tests for the subscription store
"""

from datetime import datetime, timedelta, UTC
from decimal import Decimal

import pytest

from license_api.core.enums import SubscriptionStatus
from license_api.database.subscription_store import SubscriptionRecord, SubscriptionStore


NOW = datetime(2026, 4, 15, 6, 0, tzinfo=UTC)


def make_record(intent_id: str, account_id=None, **overrides) -> SubscriptionRecord:
    values = dict(
        intent_id=intent_id,
        account_id=account_id,
        monthly_amount_usd=Decimal("4.00"),
        billing_day=15,
        status=SubscriptionStatus.ACTIVE,
        next_charge_date=datetime(2026, 4, 15, tzinfo=UTC),
        created_at=datetime(2026, 3, 1, tzinfo=UTC),
    )
    values.update(overrides)
    return SubscriptionRecord(**values)


@pytest.mark.asyncio
async def test_save_and_lookup(db_session):
    """Test record round trip through all three keys"""
    store = SubscriptionStore(db_session)

    saved = await store.save(make_record("deposit-1", "alice.near", session_id="sess-1"))

    assert saved.id is not None
    assert saved.monthly_amount_usd == Decimal("4.00")
    assert saved.next_charge_date == datetime(2026, 4, 15, tzinfo=UTC)
    assert saved.next_charge_date.tzinfo is not None

    assert (await store.get_by_account("alice.near")).intent_id == "deposit-1"
    assert (await store.get_by_intent_id("deposit-1")).account_id == "alice.near"
    assert (await store.get_by_session_id("sess-1")).intent_id == "deposit-1"
    assert await store.get_by_account("bob.near") is None


@pytest.mark.asyncio
async def test_save_replaces_whole_row(db_session):
    store = SubscriptionStore(db_session)
    saved = await store.save(make_record("deposit-1", "alice.near", retry_count=2))

    updated = await store.save(saved.merge(status=SubscriptionStatus.PAST_DUE, retry_count=0))

    assert updated.id == saved.id
    assert updated.status == SubscriptionStatus.PAST_DUE
    assert updated.retry_count == 0
    assert updated.updated_at >= saved.updated_at


@pytest.mark.asyncio
async def test_list_due_selects_billable_records(db_session):
    """Test due scan: every non-cancelled record with an account and a past date"""
    store = SubscriptionStore(db_session)

    await store.save(make_record("due-active", "a.near"))
    await store.save(make_record("due-past", "b.near", status=SubscriptionStatus.PAST_DUE,
                                 next_charge_date=NOW - timedelta(days=2)))
    await store.save(make_record("future", "c.near", next_charge_date=NOW + timedelta(days=1)))
    await store.save(make_record("cancelled", "d.near", status=SubscriptionStatus.CANCELLED))
    await store.save(make_record("pending", "e.near", status=SubscriptionStatus.PENDING))
    await store.save(make_record("unlinked", None))

    due = await store.list_due(NOW)

    assert [record.intent_id for record in due] == ["due-past", "due-active", "pending"]


@pytest.mark.asyncio
async def test_update_status_preserves_other_fields(db_session):
    store = SubscriptionStore(db_session)
    await store.save(make_record("deposit-1", "alice.near", retry_count=1, payment_deposit_address="pay-1"))

    updated = await store.update_status("alice.near", SubscriptionStatus.CANCELLED)

    assert updated.status == SubscriptionStatus.CANCELLED
    assert updated.retry_count == 1
    assert updated.payment_deposit_address == "pay-1"
    assert updated.deposit_address == "pay-1"

    assert await store.update_status("nobody.near", SubscriptionStatus.CANCELLED) is None


@pytest.mark.asyncio
async def test_delete(db_session):
    store = SubscriptionStore(db_session)
    await store.save(make_record("deposit-1", "alice.near"))

    assert await store.delete("alice.near") is True
    assert await store.get_by_account("alice.near") is None
    assert await store.delete("alice.near") is False


def test_payment_since_prefers_last_charge():
    record = make_record("deposit-1", "alice.near")
    assert record.payment_since == record.created_at
    assert record.deposit_address == "deposit-1"

    charged = record.merge(last_charge_date=NOW)
    assert charged.payment_since == NOW
