# coding: utf-8
"""
Recurring Billing Sweep - daily renewal of crypto subscriptions.

For every active / past-due subscription whose next charge date has come:
verify payment on its deposit address, then charge (extend license, move the
date one month), wait (pending), or count a missed payment (past_due, and
cancelled after MAX_RETRY_ATTEMPTS).

Records are processed one at a time, each in its own database session.
A failure on one record never stops the sweep.

Run: python -m license_api.tasks.billing_sweep

Crontab (daily 06:00 UTC):
    0 6 * * * cd /path && .venv/bin/python -m license_api.tasks.billing_sweep
"""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, UTC
from typing import Callable, List, Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from config.billing import BillingSettings
from license_api.core.enums import BillingAction, SubscriptionStatus
from license_api.core.exceptions import BillingError
from license_api.database.subscription_store import SubscriptionRecord, SubscriptionStore
from license_api.services.charge_processor import apply_payment_outcome
from license_api.services.license_grantor import LicenseGrantor, NearLicenseGrantor
from license_api.services.payment_verifier import PaymentVerifier
from license_api.services.settlement_client import SettlementClient


@dataclass
class ProcessingResult:
    """Outcome of one record in a sweep."""
    account: Optional[str]
    intent_id: str
    success: bool
    action: BillingAction
    tx_hash: Optional[str] = None
    error: Optional[str] = None


@dataclass
class SweepSummary:
    """Counts of one sweep run. Logged, never persisted."""
    run_date: datetime
    total_processed: int = 0
    charged: int = 0
    pending: int = 0
    past_due: int = 0
    cancelled: int = 0
    errors: int = 0
    results: List[ProcessingResult] = field(default_factory=list)

    def add(self, result: ProcessingResult) -> None:
        self.results.append(result)
        self.total_processed += 1

        if result.action == BillingAction.CHARGED:
            self.charged += 1
        elif result.action == BillingAction.PENDING:
            self.pending += 1
        elif result.action == BillingAction.PAST_DUE:
            self.past_due += 1
        elif result.action == BillingAction.CANCELLED:
            self.cancelled += 1
        elif result.action == BillingAction.ERROR:
            self.errors += 1


class RecurringBillingScheduler:
    """
    One-shot billing sweep over all due subscriptions

    Usage:
        sweep = RecurringBillingScheduler(session_maker, verifier, grantor, settings)
        summary = await sweep.run()
    """

    def __init__(
        self,
        session_maker: async_sessionmaker[AsyncSession],
        verifier: PaymentVerifier,
        grantor: LicenseGrantor,
        settings: BillingSettings,
    ):
        self.session_maker = session_maker
        self.verifier = verifier
        self.grantor = grantor
        self.settings = settings

    async def run(self, now: Optional[datetime] = None) -> SweepSummary:
        """
        Process every subscription due at `now`

        Args:
            now: Sweep reference time (default: current UTC time)

        Returns:
            SweepSummary with per-record results
        """
        now = now or datetime.now(UTC)
        summary = SweepSummary(run_date=now)

        async with self.session_maker() as session:
            due = await SubscriptionStore(session).list_due(now)

        logger.info(f"🔄 Billing sweep {now.isoformat()}: {len(due)} subscription(s) due")

        for record in due:
            summary.add(await self._process(record, now))

        log_summary(summary)
        return summary

    async def _process(self, due: SubscriptionRecord, now: datetime) -> ProcessingResult:
        try:
            async with self.session_maker() as session:
                store = SubscriptionStore(session)

                # Re-read: the record may have changed since the due scan
                record = await store.get_by_intent_id(due.intent_id)
                if record is None or SubscriptionStatus.is_terminal(record.status):
                    return ProcessingResult(
                        account=due.account_id,
                        intent_id=due.intent_id,
                        success=True,
                        action=BillingAction.SKIPPED,
                    )

                payment = await self.verifier.check_payment(record.deposit_address, record.payment_since)
                outcome = await apply_payment_outcome(
                    record,
                    payment,
                    store=store,
                    grantor=self.grantor,
                    settings=self.settings,
                    now=now,
                )

                return ProcessingResult(
                    account=record.account_id,
                    intent_id=record.intent_id,
                    success=True,
                    action=outcome.transition.action,
                    tx_hash=outcome.grant.reference if outcome.grant else payment.tx_hash,
                )

        except BillingError as e:
            logger.error(f"❌ Billing failed for {due.account_id} ({type(e).__name__}): {e}")
            return self._error(due, e)

        except Exception as e:
            logger.exception(f"❌ Unexpected error billing {due.account_id}: {e}")
            return self._error(due, e)

    @staticmethod
    def _error(record: SubscriptionRecord, error: Exception) -> ProcessingResult:
        return ProcessingResult(
            account=record.account_id,
            intent_id=record.intent_id,
            success=False,
            action=BillingAction.ERROR,
            error=f"{type(error).__name__}: {error}",
        )


def log_summary(summary: SweepSummary) -> None:
    logger.info("=" * 80)
    logger.info(f"Billing Sweep - Results ({summary.run_date.isoformat()}):")
    logger.info(f"  - Total processed: {summary.total_processed}")
    logger.info(f"  - Charged: {summary.charged}")
    logger.info(f"  - Pending: {summary.pending}")
    logger.info(f"  - Past due: {summary.past_due}")
    logger.info(f"  - Cancelled: {summary.cancelled}")
    logger.info(f"  - Errors: {summary.errors}")
    logger.info("=" * 80)

    for result in summary.results:
        if result.action == BillingAction.ERROR:
            logger.warning(f"  - {result.account} ({result.intent_id}): {result.error}")


async def run_billing_sweep(
    session_maker: async_sessionmaker[AsyncSession],
    settings: Optional[BillingSettings] = None,
    now: Optional[datetime] = None,
) -> SweepSummary:
    """
    Build this run's provider clients and run one sweep

    Args:
        session_maker: Database session factory
        settings: Billing settings (default: snapshot of the environment)
        now: Sweep reference time
    """
    settings = settings or BillingSettings.from_env()

    async with SettlementClient(settings.provider) as client, NearLicenseGrantor(settings.ledger) as grantor:
        sweep = RecurringBillingScheduler(
            session_maker=session_maker,
            verifier=PaymentVerifier(client),
            grantor=grantor,
            settings=settings,
        )
        return await sweep.run(now)


class BillingSweepJob:
    """
    In-process daily trigger (APScheduler) for deployments without crontab

    It only fires the same one-shot sweep as the cron entry point.
    """

    def __init__(
        self,
        session_maker_factory: Callable[[], async_sessionmaker[AsyncSession]],
        hour: int = 6,
    ):
        self.session_maker_factory = session_maker_factory
        self.hour = hour
        self.scheduler: Optional[AsyncIOScheduler] = None
        self._running = False

    def start(self):
        if self._running:
            logger.warning("Billing sweep job already running")
            return

        self.scheduler = AsyncIOScheduler(timezone=UTC)
        self.scheduler.add_job(
            self.trigger_now,
            CronTrigger(hour=self.hour, minute=0, timezone=UTC),
            id="billing_sweep",
            name="Recurring Billing Sweep",
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )
        self.scheduler.start()
        self._running = True
        logger.info(f"Billing sweep job scheduled daily at {self.hour:02d}:00 UTC")

    def stop(self):
        if self.scheduler:
            # A running sweep is never cancelled mid-run
            self.scheduler.shutdown(wait=True)
            self._running = False
            logger.info("Billing sweep job stopped")

    async def trigger_now(self) -> Optional[SweepSummary]:
        try:
            return await run_billing_sweep(self.session_maker_factory())
        except Exception as e:
            logger.exception(f"Billing sweep job failed: {e}")
            return None


async def main():
    """
    Main cron job entry point
    """
    from config.logging import setup_logging
    from config.sentry import init_sentry
    from license_api.database.engine import dispose_engine, get_session_maker

    setup_logging(log_prefix="billing")
    init_sentry()

    logger.info("=" * 80)
    logger.info("Recurring Billing Sweep - Starting")
    logger.info("=" * 80)

    try:
        await run_billing_sweep(get_session_maker())
    except Exception as e:
        logger.exception(f"Error in billing sweep cron job: {e}")
        raise
    finally:
        await dispose_engine()


if __name__ == "__main__":
    asyncio.run(main())
