# coding: utf-8
"""
Subscription Service

Request-side operations of crypto subscriptions:
- subscribe / init_session: allocate a deposit intent, store a pending record
- link_account: attach a wallet account to a session subscription
- confirm: verify the first payment, grant the license, activate
- status / cancel
- create_payment_quote: per-charge committed quote bound to a subscription

Errors are raised as BillingError subclasses; the API layer maps them to
HTTP statuses.
"""
import uuid
from datetime import datetime, timedelta, UTC
from decimal import Decimal
from typing import Any, Dict, Optional

from loguru import logger
from sqlalchemy.exc import SQLAlchemyError

from config.billing import BillingSettings
from config.sentry import set_account_context
from license_api.core.enums import PaymentOutcome, SubscriptionStatus
from license_api.core.exceptions import ConflictError, NotFoundError, PaymentRequiredError
from license_api.database.subscription_store import SubscriptionRecord, SubscriptionStore
from license_api.services.billing_calendar import (
    clamp_billing_day,
    default_billing_day,
    initial_charge_date,
)
from license_api.services.charge_processor import apply_payment_outcome
from license_api.services.license_grantor import LicenseGrantor
from license_api.services.payment_verifier import PaymentVerifier
from license_api.services.quote_service import QuoteService
from license_api.services.settlement_client import isoformat_z


def _iso(value: Optional[datetime]) -> Optional[str]:
    return isoformat_z(value.astimezone(UTC)) if value else None


class SubscriptionService:
    """
    Synchronous (request-scoped) subscription operations

    One instance per request: it holds the request's store and provider
    clients.
    """

    def __init__(
        self,
        store: SubscriptionStore,
        quotes: QuoteService,
        verifier: PaymentVerifier,
        grantor: LicenseGrantor,
        settings: BillingSettings,
    ):
        self.store = store
        self.quotes = quotes
        self.verifier = verifier
        self.grantor = grantor
        self.settings = settings

    async def subscribe(
        self,
        account_id: str,
        billing_day: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> Dict[str, Any]:
        """
        Start a subscription for an account

        Args:
            account_id: Subscriber account
            billing_day: Requested day of month (clamped to 1..28)
            now: Reference time

        Returns:
            {"intentId", "paymentUrl", "monthlyAmount"}

        Raises:
            ConflictError: account already has an active or pending subscription
        """
        now = now or datetime.now(UTC)

        existing = await self.store.get_by_account(account_id)
        if existing and SubscriptionStatus.is_live(existing.status):
            raise ConflictError(
                f"Subscription already exists ({existing.status.value}, intent {existing.intent_id})"
            )

        day = clamp_billing_day(billing_day) if billing_day else default_billing_day(now)
        amount = self.settings.monthly_amount_usd

        intent = await self.quotes.create_subscription_intent(account_id, amount, now=now)

        if existing:
            # Superseded past_due/cancelled subscription
            await self.store.delete(account_id)

        record = await self.store.save(
            SubscriptionRecord(
                account_id=account_id,
                intent_id=intent.intent_id,
                monthly_amount_usd=amount,
                billing_day=day,
                status=SubscriptionStatus.PENDING,
                next_charge_date=initial_charge_date(day, now),
                created_at=now,
            )
        )

        logger.info(
            f"🆕 Subscription created for {account_id}: intent={record.intent_id} "
            f"billing_day={day} first_charge={_iso(record.next_charge_date)}"
        )

        payment_url = self.settings.payment_url(record.intent_id)
        return {
            "intentId": record.intent_id,
            "paymentUrl": payment_url,
            "authorizationUrl": payment_url,
            "monthlyAmount": str(amount),
        }

    async def init_session(
        self, session_id: Optional[str] = None, now: Optional[datetime] = None
    ) -> Dict[str, Any]:
        """
        Start a subscription before the user has connected a wallet

        Returns:
            {"intentId", "paymentUrl", "sessionId"}
        """
        now = now or datetime.now(UTC)
        session_id = session_id or str(uuid.uuid4())

        if await self.store.get_by_session_id(session_id):
            raise ConflictError(f"Session {session_id} already has a subscription")

        amount = self.settings.monthly_amount_usd
        intent = await self.quotes.create_subscription_intent(session_id, amount, now=now)

        record = await self.store.save(
            SubscriptionRecord(
                session_id=session_id,
                intent_id=intent.intent_id,
                monthly_amount_usd=amount,
                billing_day=default_billing_day(now),
                status=SubscriptionStatus.PENDING,
                created_at=now,
            )
        )

        logger.info(f"🆕 Session subscription {session_id}: intent={record.intent_id}")

        return {
            "intentId": record.intent_id,
            "paymentUrl": self.settings.payment_url(record.intent_id),
            "sessionId": session_id,
        }

    async def link_account(self, intent_id: str, account_id: str) -> Dict[str, Any]:
        """
        Attach a wallet account to a pending subscription

        Raises:
            NotFoundError: unknown intent
            ConflictError: subscription already processed, or the account has
                another live subscription
        """
        record = await self.store.get_by_intent_id(intent_id)
        if record is None:
            raise NotFoundError("Subscription not found")

        if record.status != SubscriptionStatus.PENDING:
            raise ConflictError("Subscription already processed")

        if record.account_id != account_id:
            other = await self.store.get_by_account(account_id)
            if other and other.intent_id != intent_id:
                if SubscriptionStatus.is_live(other.status):
                    raise ConflictError("Account already has a subscription")
                await self.store.delete(account_id)

        await self.store.save(record.merge(account_id=account_id))
        logger.info(f"🔗 Linked {account_id} to intent {intent_id}")

        return {"success": True}

    async def confirm(self, intent_id: str, now: Optional[datetime] = None) -> Dict[str, Any]:
        """
        Confirm the first payment and activate the subscription

        Same transition as the daily sweep: active, retries reset, next
        charge one month ahead, license extended.

        Raises:
            NotFoundError: unknown intent
            ConflictError: already active, cancelled, or no account linked
            PaymentRequiredError: no settled payment yet
            LicenseGrantError: payment settled but the grant failed
            TransientProviderError: provider unreachable
        """
        now = now or datetime.now(UTC)

        record = await self.store.get_by_intent_id(intent_id)
        if record is None:
            raise NotFoundError("Subscription not found")

        if record.status == SubscriptionStatus.ACTIVE:
            raise ConflictError("Subscription already active")
        if record.status == SubscriptionStatus.CANCELLED:
            raise ConflictError("Subscription is cancelled")
        if not record.account_id:
            raise ConflictError("No account linked to this subscription")

        set_account_context(record.account_id)

        payment = await self.verifier.check_payment(record.deposit_address, record.payment_since)
        if payment.outcome != PaymentOutcome.RECEIVED:
            raise PaymentRequiredError(f"Payment not yet received (status: {payment.outcome.value})")

        await apply_payment_outcome(
            record,
            payment,
            store=self.store,
            grantor=self.grantor,
            settings=self.settings,
            now=now,
        )

        days = self.settings.license_duration_days
        logger.success(f"✅ Subscription {intent_id} confirmed for {record.account_id}")

        return {
            "success": True,
            "license": {
                "days": days,
                "expiresAt": _iso(now + timedelta(days=days)),
            },
        }

    async def status(self, account_id: str) -> Dict[str, Any]:
        """Subscription status of an account ("none" when it never subscribed)."""
        record = await self.store.get_by_account(account_id)
        if record is None:
            return {
                "status": "none",
                "nextChargeDate": None,
                "monthlyAmount": str(self.settings.monthly_amount_usd),
                "accountId": account_id,
            }

        return {
            "status": record.status.value,
            "nextChargeDate": _iso(record.next_charge_date),
            "monthlyAmount": str(record.monthly_amount_usd),
            "accountId": record.account_id,
        }

    async def cancel(self, account_id: str, now: Optional[datetime] = None) -> Dict[str, Any]:
        """
        Cancel a subscription; the license runs until its current period ends

        Raises:
            NotFoundError: no subscription for the account
            ConflictError: already cancelled
        """
        now = now or datetime.now(UTC)

        record = await self.store.get_by_account(account_id)
        if record is None:
            raise NotFoundError("Subscription not found")
        if record.status == SubscriptionStatus.CANCELLED:
            raise ConflictError("Subscription already cancelled")

        await self.store.update_status(account_id, SubscriptionStatus.CANCELLED)

        active_until = record.payment_since + timedelta(days=self.settings.license_duration_days)
        logger.info(f"🛑 Subscription cancelled for {account_id}, active until {_iso(active_until)}")

        return {"cancelledAt": _iso(now), "activeUntil": _iso(active_until)}

    async def create_payment_quote(
        self,
        origin_asset: str,
        amount_usd: Decimal,
        refund_address: str,
        chain: Optional[str] = None,
        intent_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Committed quote for one payment, optionally bound to a subscription

        The verified deposit address is recorded as the subscription's
        payment_deposit_address so confirm and the sweep check it.
        A failure to record it does not fail the quote.

        Raises:
            AssetSubstitutionError: provider echo did not match
            SettlementProviderError / TransientProviderError: provider failures
        """
        committed = await self.quotes.quote_commit(origin_asset, amount_usd, refund_address)

        if intent_id:
            try:
                record = await self.store.get_by_intent_id(intent_id)
                if record:
                    await self.store.save(
                        record.merge(payment_deposit_address=committed.deposit_address)
                    )
                    logger.info(
                        f"💾 Intent {intent_id} now settles to {committed.deposit_address} "
                        f"(chain={chain or 'unknown'})"
                    )
                else:
                    logger.warning(f"No subscription found for intentId {intent_id}")
            except SQLAlchemyError:
                await self.store.session.rollback()
                logger.exception(f"Failed to record deposit address for intent {intent_id}")

        return {
            "quote": committed.quote_dict(),
            "signature": committed.signature,
            "correlationId": committed.correlation_id,
        }
