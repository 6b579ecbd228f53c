"""
Tests for display-only wallet balance providers
"""

import json
from decimal import Decimal
from unittest.mock import AsyncMock

import pytest

from license_api.core.exceptions import UnsupportedChainError
from license_api.services.balance_providers import (
    BalanceLookupError,
    EvmBalanceProvider,
    NearBalanceProvider,
    TokenBalance,
    get_balance_provider,
)


NEAR_TOKENS = [
    {"assetId": "nep141:wrap.near", "symbol": "wNEAR", "decimals": 24, "price": 2.5},
    {"assetId": "nep141:usdc.near", "symbol": "USDC", "decimals": 6, "price": 1},
    {"assetId": "nep141:empty.near", "symbol": "EMPTY", "decimals": 18},
]


def test_token_balance_formatting():
    balance = TokenBalance(asset_id="nep141:usdc.near", symbol="USDC", decimals=6, balance=12_345_678,
                           price_usd=Decimal("1"))

    assert balance.balance_formatted == Decimal("12.345678")
    assert balance.to_dict()["balanceUsd"] == "12.35"
    assert balance.to_dict()["balance"] == "12345678"


@pytest.mark.asyncio
async def test_near_balances():
    async def rpc(method, params):
        if params["request_type"] == "view_account":
            return {"amount": str(3 * 10**24)}
        contract = params["account_id"]
        if contract == "usdc.near":
            return {"result": list(json.dumps("5000000").encode())}
        if contract == "empty.near":
            return {"result": list(json.dumps("0").encode())}
        raise BalanceLookupError("wrap.near unavailable")

    provider = NearBalanceProvider("https://rpc.test", session=None)
    provider._rpc = AsyncMock(side_effect=rpc)

    balances = await provider.get_balances("alice.near", NEAR_TOKENS)

    assert [(b.symbol, b.balance) for b in balances] == [("NEAR", 3 * 10**24), ("USDC", 5_000_000)]
    assert balances[0].is_native is True
    assert balances[0].balance_usd == Decimal("7.50")


@pytest.mark.asyncio
async def test_evm_balances():
    tokens = [
        {"assetId": "nep141:eth.omft.near", "symbol": "ETH", "decimals": 18, "price": 3000},
        {"assetId": "nep141:eth-usdc.omft.near", "symbol": "USDC", "decimals": 6,
         "contractAddress": "0xa0b86991c6218b36c1d19d4a2e9eb0ce3606eb48", "price": 1},
    ]

    async def rpc(method, params):
        if method == "eth_getBalance":
            return hex(10**18)
        assert params[0]["data"].startswith("0x70a08231")
        assert len(params[0]["data"]) == 10 + 64
        return hex(25_000_000)

    provider = EvmBalanceProvider("eth", "https://rpc.test", session=None)
    provider._rpc = AsyncMock(side_effect=rpc)

    balances = await provider.get_balances("0x" + "ab" * 20, tokens)

    assert [(b.symbol, b.balance_formatted) for b in balances] == [("ETH", Decimal(1)), ("USDC", Decimal(25))]
    assert balances[0].is_native is True
    assert balances[1].is_native is False


@pytest.mark.asyncio
async def test_evm_rejects_non_evm_address():
    provider = EvmBalanceProvider("eth", "https://rpc.test", session=None)

    with pytest.raises(UnsupportedChainError):
        await provider.get_balances("alice.near", [])


def test_registry(billing_settings):
    assert isinstance(get_balance_provider("near", billing_settings, session=None), NearBalanceProvider)

    base = get_balance_provider("base", billing_settings, session=None)
    assert isinstance(base, EvmBalanceProvider)
    assert base.chain == "base"

    with pytest.raises(UnsupportedChainError):
        get_balance_provider("doge", billing_settings, session=None)
