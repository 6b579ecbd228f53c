"""
Subscription store

Durable persistence of crypto subscriptions, keyed by account, intent id and
session id. Rows never leave this module: callers work with immutable
SubscriptionRecord snapshots and every write replaces the whole row.
"""

import dataclasses
import logging
from dataclasses import dataclass, field
from datetime import datetime, UTC
from decimal import Decimal
from typing import List, Optional

from sqlalchemy import select, delete
from sqlalchemy.ext.asyncio import AsyncSession

from license_api.core.enums import SubscriptionStatus
from license_api.database.models import CryptoSubscription

logger = logging.getLogger(__name__)


def utcnow() -> datetime:
    return datetime.now(UTC)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Normalize to aware UTC (SQLite hands back naive datetimes)."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


@dataclass(frozen=True)
class SubscriptionRecord:
    """Immutable snapshot of one subscription row"""

    intent_id: str
    monthly_amount_usd: Decimal
    billing_day: int
    status: SubscriptionStatus = SubscriptionStatus.PENDING
    account_id: Optional[str] = None
    session_id: Optional[str] = None
    payment_deposit_address: Optional[str] = None
    retry_count: int = 0
    last_charge_date: Optional[datetime] = None
    next_charge_date: Optional[datetime] = None
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)
    id: Optional[int] = None

    @property
    def deposit_address(self) -> str:
        """Address the current charge settles to."""
        return self.payment_deposit_address or self.intent_id

    @property
    def payment_since(self) -> datetime:
        """Only payments after this moment count for the current period."""
        return self.last_charge_date or self.created_at

    def merge(self, **changes) -> "SubscriptionRecord":
        """Copy with changes applied; unknown field names raise TypeError."""
        return dataclasses.replace(self, **changes)


def _to_record(row: CryptoSubscription) -> SubscriptionRecord:
    return SubscriptionRecord(
        id=row.id,
        intent_id=row.intent_id,
        account_id=row.account_id,
        session_id=row.session_id,
        payment_deposit_address=row.payment_deposit_address,
        monthly_amount_usd=Decimal(row.monthly_amount_usd),
        billing_day=row.billing_day,
        status=SubscriptionStatus(row.status),
        retry_count=row.retry_count,
        last_charge_date=as_utc(row.last_charge_date),
        next_charge_date=as_utc(row.next_charge_date),
        created_at=as_utc(row.created_at),
        updated_at=as_utc(row.updated_at),
    )


def _write_row(row: CryptoSubscription, record: SubscriptionRecord) -> None:
    """Copy every column from the record onto the row."""
    row.intent_id = record.intent_id
    row.account_id = record.account_id
    row.session_id = record.session_id
    row.payment_deposit_address = record.payment_deposit_address
    row.monthly_amount_usd = str(record.monthly_amount_usd)
    row.billing_day = record.billing_day
    row.status = SubscriptionStatus(record.status).value
    row.retry_count = record.retry_count
    row.last_charge_date = as_utc(record.last_charge_date)
    row.next_charge_date = as_utc(record.next_charge_date)
    row.created_at = as_utc(record.created_at)
    row.updated_at = as_utc(record.updated_at)


class SubscriptionStore:
    """
    Async store over the crypto_subscriptions table

    One instance per database session. Each write commits on its own;
    there is no cross-record transaction.
    """

    def __init__(self, session: AsyncSession):
        self.session = session

    async def _get_row(self, **criteria) -> Optional[CryptoSubscription]:
        stmt = select(CryptoSubscription).filter_by(**criteria)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def save(self, record: SubscriptionRecord) -> SubscriptionRecord:
        """
        Upsert the whole record

        The row is located by id when the record has one, otherwise by
        intent_id. updated_at is always refreshed.

        Args:
            record: Full record to persist

        Returns:
            The stored record (with id and fresh updated_at)
        """
        record = record.merge(updated_at=utcnow())

        row = None
        if record.id is not None:
            row = await self._get_row(id=record.id)
        if row is None:
            row = await self._get_row(intent_id=record.intent_id)
        if row is None:
            row = CryptoSubscription()
            self.session.add(row)

        _write_row(row, record)
        await self.session.commit()
        await self.session.refresh(row)

        logger.debug(
            f"Saved subscription intent={record.intent_id} account={record.account_id} "
            f"status={row.status}"
        )
        return _to_record(row)

    async def get_by_account(self, account_id: str) -> Optional[SubscriptionRecord]:
        row = await self._get_row(account_id=account_id)
        return _to_record(row) if row else None

    async def get_by_intent_id(self, intent_id: str) -> Optional[SubscriptionRecord]:
        row = await self._get_row(intent_id=intent_id)
        return _to_record(row) if row else None

    async def get_by_session_id(self, session_id: str) -> Optional[SubscriptionRecord]:
        row = await self._get_row(session_id=session_id)
        return _to_record(row) if row else None

    async def list_due(self, now: datetime) -> List[SubscriptionRecord]:
        """
        Records the daily sweep should bill

        Args:
            now: Sweep reference time

        Returns:
            Non-cancelled records with a linked account whose
            next_charge_date is at or before now, oldest first
        """
        stmt = (
            select(CryptoSubscription)
            .where(
                CryptoSubscription.status != SubscriptionStatus.CANCELLED.value,
                CryptoSubscription.account_id.is_not(None),
                CryptoSubscription.next_charge_date.is_not(None),
                CryptoSubscription.next_charge_date <= as_utc(now),
            )
            .order_by(CryptoSubscription.next_charge_date, CryptoSubscription.id)
        )
        result = await self.session.execute(stmt)
        return [_to_record(row) for row in result.scalars().all()]

    async def update_status(
        self, account_id: str, new_status: SubscriptionStatus, **fields
    ) -> Optional[SubscriptionRecord]:
        """
        Read-modify-write the record of an account

        Fields not named are preserved from the stored record.

        Returns:
            Updated record, or None if the account has no subscription
        """
        current = await self.get_by_account(account_id)
        if current is None:
            return None
        return await self.save(current.merge(status=new_status, **fields))

    async def delete(self, account_id: str) -> bool:
        """Remove a superseded subscription. Returns True if a row was deleted."""
        result = await self.session.execute(
            delete(CryptoSubscription).where(CryptoSubscription.account_id == account_id)
        )
        await self.session.commit()
        deleted = result.rowcount > 0
        if deleted:
            logger.info(f"Deleted subscription for account {account_id}")
        return deleted
