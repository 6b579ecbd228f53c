# coding: utf-8
"""
API endpoints for crypto subscriptions

Functionality:
- POST /crypto/subscribe - start a subscription for a wallet account
- POST /crypto/subscribe/init - start a subscription before a wallet is connected
- POST /crypto/subscribe/link - attach a wallet account to a session subscription
- POST /crypto/subscribe/confirm - confirm the first payment, grant the license
- GET /crypto/subscription/status - subscription status of an account
- POST /crypto/subscription/cancel - cancel a subscription
- GET /crypto/license - license expiry recorded on the ledger
"""

import asyncio
from datetime import datetime, UTC
from typing import Optional

import aiohttp
from fastapi import APIRouter, Depends, Query, status
from loguru import logger
from pydantic import BaseModel, ConfigDict, Field

from license_api.api.dependencies import (
    get_license_grantor,
    get_subscription_service,
    to_http_exception,
)
from license_api.core.exceptions import BillingError
from license_api.services.license_grantor import NearLicenseGrantor, NearRpcError
from license_api.services.settlement_client import isoformat_z
from license_api.services.subscription_service import SubscriptionService

router = APIRouter(prefix="/crypto", tags=["Crypto Subscriptions"])


# ===========================
# REQUEST/RESPONSE MODELS
# ===========================


class SubscribeRequest(BaseModel):
    """Request to start a subscription"""

    model_config = ConfigDict(populate_by_name=True)

    account_id: str = Field(..., alias="accountId", min_length=2, max_length=128, description="Wallet account id")
    billing_day: Optional[int] = Field(
        default=None, alias="billingDay", ge=1, le=31, description="Day of month to charge (clamped to 1..28)"
    )


class InitSessionRequest(BaseModel):
    """Request to start a session subscription (no wallet yet)"""

    model_config = ConfigDict(populate_by_name=True)

    session_id: Optional[str] = Field(default=None, alias="sessionId", max_length=128)


class LinkAccountRequest(BaseModel):
    """Request to attach a wallet account to a session subscription"""

    model_config = ConfigDict(populate_by_name=True)

    intent_id: str = Field(..., alias="intentId", min_length=1)
    account_id: str = Field(..., alias="accountId", min_length=2, max_length=128)


class ConfirmRequest(BaseModel):
    """Request to confirm the first payment of a subscription"""

    model_config = ConfigDict(populate_by_name=True)

    intent_id: str = Field(..., alias="intentId", min_length=1)


class CancelRequest(BaseModel):
    """Request to cancel a subscription"""

    model_config = ConfigDict(populate_by_name=True)

    account_id: str = Field(..., alias="accountId", min_length=2, max_length=128)


class SubscribeResponse(BaseModel):
    intentId: str
    paymentUrl: str
    authorizationUrl: str
    monthlyAmount: str


class InitSessionResponse(BaseModel):
    intentId: str
    paymentUrl: str
    sessionId: str


class LicenseGrant(BaseModel):
    days: int
    expiresAt: str


class ConfirmResponse(BaseModel):
    success: bool
    license: LicenseGrant


class SubscriptionStatusResponse(BaseModel):
    status: str
    nextChargeDate: Optional[str] = None
    monthlyAmount: str
    accountId: Optional[str] = None


class CancelResponse(BaseModel):
    cancelledAt: str
    activeUntil: str


class LicenseExpiryResponse(BaseModel):
    accountId: str
    active: bool
    expiresAt: Optional[str] = None


# ===========================
# ENDPOINTS
# ===========================


@router.post("/subscribe", response_model=SubscribeResponse, status_code=status.HTTP_201_CREATED)
async def subscribe(
    request: SubscribeRequest,
    service: SubscriptionService = Depends(get_subscription_service),
):
    """
    Start a subscription for a wallet account

    Returns the deposit intent the subscriber pays into every month.
    """
    try:
        return await service.subscribe(request.account_id, request.billing_day)
    except BillingError as e:
        raise to_http_exception(e)


@router.post("/subscribe/init", response_model=InitSessionResponse, status_code=status.HTTP_201_CREATED)
async def init_session(
    request: InitSessionRequest,
    service: SubscriptionService = Depends(get_subscription_service),
):
    """Start a subscription keyed by a browser session"""
    try:
        return await service.init_session(request.session_id)
    except BillingError as e:
        raise to_http_exception(e)


@router.post("/subscribe/link")
async def link_account(
    request: LinkAccountRequest,
    service: SubscriptionService = Depends(get_subscription_service),
):
    try:
        return await service.link_account(request.intent_id, request.account_id)
    except BillingError as e:
        raise to_http_exception(e)


@router.post("/subscribe/confirm", response_model=ConfirmResponse)
async def confirm_subscription(
    request: ConfirmRequest,
    service: SubscriptionService = Depends(get_subscription_service),
):
    """
    Confirm the first payment and activate the subscription

    Responds 402 while the payment has not settled; the client polls.
    """
    try:
        return await service.confirm(request.intent_id)
    except BillingError as e:
        raise to_http_exception(e)


@router.get("/subscription/status", response_model=SubscriptionStatusResponse)
async def subscription_status(
    account_id: str = Query(..., alias="accountId", min_length=2, max_length=128),
    service: SubscriptionService = Depends(get_subscription_service),
):
    return await service.status(account_id)


@router.post("/subscription/cancel", response_model=CancelResponse)
async def cancel_subscription(
    request: CancelRequest,
    service: SubscriptionService = Depends(get_subscription_service),
):
    """
    Cancel a subscription

    No further charges; the license stays valid until the paid period ends.
    """
    try:
        return await service.cancel(request.account_id)
    except BillingError as e:
        raise to_http_exception(e)


@router.get("/license", response_model=LicenseExpiryResponse)
async def license_expiry(
    account_id: str = Query(..., alias="accountId", min_length=2, max_length=128),
    grantor: NearLicenseGrantor = Depends(get_license_grantor),
):
    """License expiry as recorded on the ledger contract"""
    try:
        expires_at = await grantor.get_license_expiry(account_id)
    except (NearRpcError, aiohttp.ClientError, asyncio.TimeoutError) as e:
        logger.error(f"License lookup failed for {account_id}: {e}")
        raise to_http_exception(BillingError("License ledger unavailable", http_status=502))

    if expires_at is None:
        return {"accountId": account_id, "active": False, "expiresAt": None}

    return {
        "accountId": account_id,
        "active": expires_at > datetime.now(UTC),
        "expiresAt": isoformat_z(expires_at),
    }
