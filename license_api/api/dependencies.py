# coding: utf-8
"""
FastAPI dependencies for the crypto billing endpoints

Every request gets its own settings snapshot and its own provider clients;
nothing is shared between requests except the database pool and Redis.
"""
from typing import AsyncGenerator

from fastapi import Depends, HTTPException
from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession

from config.billing import BillingSettings
from license_api.cache.redis_manager import get_redis_manager
from license_api.core.exceptions import (
    BillingError,
    SecurityVerificationError,
    SettlementProviderError,
)
from license_api.database.engine import get_session
from license_api.database.subscription_store import SubscriptionStore
from license_api.services.license_grantor import LicenseGrantor, NearLicenseGrantor
from license_api.services.payment_verifier import PaymentVerifier
from license_api.services.quote_service import QuoteService
from license_api.services.settlement_client import SettlementClient
from license_api.services.subscription_service import SubscriptionService


def get_billing_settings() -> BillingSettings:
    return BillingSettings.from_env()


async def get_settlement_client(
    settings: BillingSettings = Depends(get_billing_settings),
) -> AsyncGenerator[SettlementClient, None]:
    async with SettlementClient(settings.provider) as client:
        yield client


async def get_license_grantor(
    settings: BillingSettings = Depends(get_billing_settings),
) -> AsyncGenerator[LicenseGrantor, None]:
    async with NearLicenseGrantor(settings.ledger) as grantor:
        yield grantor


def get_quote_service(
    client: SettlementClient = Depends(get_settlement_client),
    settings: BillingSettings = Depends(get_billing_settings),
) -> QuoteService:
    return QuoteService(client, settings, redis=get_redis_manager())


def get_subscription_service(
    session: AsyncSession = Depends(get_session),
    quotes: QuoteService = Depends(get_quote_service),
    grantor: LicenseGrantor = Depends(get_license_grantor),
    settings: BillingSettings = Depends(get_billing_settings),
) -> SubscriptionService:
    return SubscriptionService(
        store=SubscriptionStore(session),
        quotes=quotes,
        verifier=PaymentVerifier(quotes.client),
        grantor=grantor,
        settings=settings,
    )


def to_http_exception(error: BillingError) -> HTTPException:
    """
    Translate a billing error into the HTTP response for it

    Provider and verification failures are reported without internals.
    """
    if isinstance(error, SecurityVerificationError):
        detail = "Quote verification failed"
    elif isinstance(error, SettlementProviderError):
        detail = "Settlement provider unavailable"
    else:
        detail = error.message

    if error.http_status >= 500:
        logger.error(f"{type(error).__name__}: {error}")

    return HTTPException(status_code=error.http_status, detail={"error": detail})
