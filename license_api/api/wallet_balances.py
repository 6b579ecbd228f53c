# coding: utf-8
"""
Wallet balances for the payment page (display only)

- GET /crypto/wallet-balances?chain=&address=
"""

import aiohttp
from fastapi import APIRouter, Depends, Query
from loguru import logger

from config.billing import BillingSettings
from license_api.api.dependencies import get_billing_settings, get_quote_service, to_http_exception
from license_api.core.exceptions import BillingError
from license_api.services.balance_providers import get_balance_provider
from license_api.services.quote_service import QuoteService

router = APIRouter(prefix="/crypto", tags=["Wallet Balances"])


@router.get("/wallet-balances")
async def wallet_balances(
    chain: str = Query(..., min_length=2, max_length=16),
    address: str = Query(..., min_length=2, max_length=128),
    quotes: QuoteService = Depends(get_quote_service),
    settings: BillingSettings = Depends(get_billing_settings),
):
    """
    Non-zero balances of a wallet for the provider's tokens on one chain

    Returns:
        {"chain", "address", "balances": [...]}
    """
    chain = chain.lower()

    try:
        async with aiohttp.ClientSession() as session:
            provider = get_balance_provider(chain, settings, session)
            tokens = await quotes.list_chain_tokens(chain)
            balances = await provider.get_balances(address, tokens)
    except BillingError as e:
        raise to_http_exception(e)

    logger.debug(f"Wallet balances {chain}:{address}: {len(balances)} token(s)")

    return {
        "chain": chain,
        "address": address,
        "balances": [balance.to_dict() for balance in balances],
    }
