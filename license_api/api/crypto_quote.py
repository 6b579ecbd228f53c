# coding: utf-8
"""
API endpoints for the crypto payment page

Functionality:
- GET /crypto/tokens - tokens the payment page offers
- POST /crypto/quote - dry quote: how much of a token covers the USD amount
- POST /crypto/payment-quote - committed quote with a deposit address
"""

from decimal import Decimal
from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, ConfigDict, Field

from license_api.api.dependencies import (
    get_quote_service,
    get_subscription_service,
    to_http_exception,
)
from license_api.core.exceptions import BillingError
from license_api.services.quote_service import QuoteService
from license_api.services.subscription_service import SubscriptionService

router = APIRouter(prefix="/crypto", tags=["Crypto Payments"])


# ===========================
# REQUEST/RESPONSE MODELS
# ===========================


class QuoteRequest(BaseModel):
    """Request for a quote in a given origin token"""

    model_config = ConfigDict(populate_by_name=True)

    origin_asset: str = Field(..., alias="originAsset", min_length=1, description="Provider asset id, or near:native")
    amount_usd: Decimal = Field(..., alias="amountUsd", gt=0, description="Amount to settle, in USD")
    refund_address: str = Field(..., alias="refundAddress", min_length=1)


class PaymentQuoteRequest(QuoteRequest):
    """Request for a committed quote, optionally bound to a subscription"""

    chain: Optional[str] = Field(default=None, description="Origin chain (informational)")
    intent_id: Optional[str] = Field(default=None, alias="intentId")


class TokensResponse(BaseModel):
    tokens: list[dict]


class QuoteResponse(BaseModel):
    quote: dict


class PaymentQuoteResponse(BaseModel):
    quote: dict
    signature: Optional[str] = None
    correlationId: Optional[str] = None


# ===========================
# ENDPOINTS
# ===========================


@router.get("/tokens", response_model=TokensResponse)
async def supported_tokens(quotes: QuoteService = Depends(get_quote_service)):
    """Popular payment tokens, NEAR chain first"""
    try:
        return {"tokens": await quotes.list_supported_tokens()}
    except BillingError as e:
        raise to_http_exception(e)


@router.post("/quote", response_model=QuoteResponse)
async def quote_preview(
    request: QuoteRequest,
    quotes: QuoteService = Depends(get_quote_service),
):
    """
    Dry quote for display

    No deposit address is allocated; nothing can be paid against it.
    """
    try:
        preview = await quotes.quote_preview(
            request.origin_asset, request.amount_usd, request.refund_address
        )
        return {"quote": preview.to_dict()}
    except BillingError as e:
        raise to_http_exception(e)


@router.post("/payment-quote", response_model=PaymentQuoteResponse)
async def payment_quote(
    request: PaymentQuoteRequest,
    service: SubscriptionService = Depends(get_subscription_service),
):
    """
    Committed quote the user pays into

    The provider's echoed recipient and destination asset are verified
    before the deposit address is returned.
    """
    try:
        return await service.create_payment_quote(
            origin_asset=request.origin_asset,
            amount_usd=request.amount_usd,
            refund_address=request.refund_address,
            chain=request.chain,
            intent_id=request.intent_id,
        )
    except BillingError as e:
        raise to_http_exception(e)
