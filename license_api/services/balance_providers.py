# coding: utf-8
"""
Wallet balance providers

Display-only balance lookups for the payment page, one provider per chain.
Not used by the billing engine: a balance is never evidence of payment.

Supported:
- near: native NEAR (view_account) + NEP-141 tokens (ft_balance_of)
- EVM chains (eth, base, arb, pol, bsc, avax, op): native (eth_getBalance)
  + ERC-20 tokens (balanceOf via eth_call)
"""
import asyncio
import base64
import json
from abc import ABC, abstractmethod
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Dict, List, Optional

import aiohttp
from loguru import logger

from config.billing import BillingSettings
from license_api.core.exceptions import UnsupportedChainError


DEFAULT_EVM_RPC_URLS: Dict[str, str] = {
    "eth": "https://eth.llamarpc.com",
    "base": "https://mainnet.base.org",
    "arb": "https://arb1.arbitrum.io/rpc",
    "pol": "https://polygon-rpc.com",
    "bsc": "https://bsc-dataseed.binance.org",
    "avax": "https://api.avax.network/ext/bc/C/rpc",
    "op": "https://mainnet.optimism.io",
}

EVM_NATIVE_SYMBOLS = {"ETH", "POL", "MATIC", "BNB", "AVAX"}

# balanceOf(address)
ERC20_BALANCE_OF = "0x70a08231"

NEAR_NATIVE_DECIMALS = 24


class BalanceLookupError(Exception):
    """One balance could not be read (skipped, never fatal)"""


@dataclass(frozen=True)
class TokenBalance:
    asset_id: str
    symbol: str
    decimals: int
    balance: int
    price_usd: Optional[Decimal] = None
    is_native: bool = False

    @property
    def balance_formatted(self) -> Decimal:
        return Decimal(self.balance).scaleb(-self.decimals)

    @property
    def balance_usd(self) -> Optional[Decimal]:
        if self.price_usd is None:
            return None
        return (self.balance_formatted * self.price_usd).quantize(Decimal("0.01"))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "assetId": self.asset_id,
            "symbol": self.symbol,
            "decimals": self.decimals,
            "balance": str(self.balance),
            "balanceFormatted": str(self.balance_formatted.normalize()),
            "balanceUsd": str(self.balance_usd) if self.balance_usd is not None else None,
            "isNative": self.is_native,
        }


def _price(token: Dict[str, Any]) -> Optional[Decimal]:
    price = token.get("price")
    return Decimal(str(price)) if price is not None else None


class BalanceProvider(ABC):
    """
    Balance lookup for one chain over JSON-RPC

    Subclasses implement get_balances; _rpc handles transport.
    """

    chain: str = ""

    def __init__(self, rpc_url: str, session: aiohttp.ClientSession, timeout_seconds: float = 15.0):
        self.rpc_url = rpc_url
        self.session = session
        self.timeout = aiohttp.ClientTimeout(total=timeout_seconds)

    async def _rpc(self, method: str, params: Any) -> Any:
        payload = {"jsonrpc": "2.0", "id": f"{self.chain}-balance", "method": method, "params": params}
        try:
            async with self.session.post(self.rpc_url, json=payload, timeout=self.timeout) as response:
                data = await response.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            raise BalanceLookupError(f"{self.chain} RPC {method} failed: {e}") from e

        if data.get("error"):
            raise BalanceLookupError(f"{self.chain} RPC {method} error: {data['error']}")
        return data.get("result")

    @abstractmethod
    async def get_balances(self, address: str, tokens: List[Dict[str, Any]]) -> List[TokenBalance]:
        """
        Non-zero balances of `address` for the given provider tokens

        Args:
            address: Wallet address / account id
            tokens: Provider token entries on this chain
        """


class NearBalanceProvider(BalanceProvider):
    chain = "near"

    async def _view_function(self, contract_id: str, method: str, args: Dict[str, Any]) -> Any:
        result = await self._rpc(
            "query",
            {
                "request_type": "call_function",
                "finality": "final",
                "account_id": contract_id,
                "method_name": method,
                "args_base64": base64.b64encode(json.dumps(args).encode()).decode(),
            },
        )
        raw = bytes((result or {}).get("result") or [])
        return json.loads(raw.decode()) if raw else None

    async def get_balances(self, address: str, tokens: List[Dict[str, Any]]) -> List[TokenBalance]:
        balances: List[TokenBalance] = []

        try:
            account = await self._rpc(
                "query",
                {"request_type": "view_account", "finality": "final", "account_id": address},
            )
            amount = int((account or {}).get("amount", 0))
            if amount > 0:
                # Native NEAR is paid as wNEAR; price it the same
                wnear = next((t for t in tokens if str(t.get("symbol")).lower() == "wnear"), {})
                balances.append(
                    TokenBalance(
                        asset_id="near:native",
                        symbol="NEAR",
                        decimals=NEAR_NATIVE_DECIMALS,
                        balance=amount,
                        price_usd=_price(wnear),
                        is_native=True,
                    )
                )
        except BalanceLookupError as e:
            logger.warning(f"NEAR native balance for {address} unavailable: {e}")

        for token in tokens:
            asset_id = str(token.get("assetId", ""))
            if not asset_id.startswith("nep141:"):
                continue
            contract_id = asset_id[len("nep141:"):]
            try:
                raw = await self._view_function(contract_id, "ft_balance_of", {"account_id": address})
            except BalanceLookupError as e:
                logger.debug(f"Skipping {asset_id}: {e}")
                continue

            amount = int(raw or 0)
            if amount > 0:
                balances.append(
                    TokenBalance(
                        asset_id=asset_id,
                        symbol=token.get("symbol", ""),
                        decimals=int(token.get("decimals", 0)),
                        balance=amount,
                        price_usd=_price(token),
                    )
                )

        return balances


class EvmBalanceProvider(BalanceProvider):
    def __init__(self, chain: str, rpc_url: str, session: aiohttp.ClientSession, timeout_seconds: float = 15.0):
        super().__init__(rpc_url, session, timeout_seconds)
        self.chain = chain

    async def get_balances(self, address: str, tokens: List[Dict[str, Any]]) -> List[TokenBalance]:
        if not (address.startswith("0x") and len(address) == 42):
            raise UnsupportedChainError(f"Invalid {self.chain} address: {address}")

        balances: List[TokenBalance] = []
        for token in tokens:
            contract = token.get("contractAddress")
            symbol = str(token.get("symbol", ""))

            try:
                if contract:
                    data = ERC20_BALANCE_OF + address[2:].lower().rjust(64, "0")
                    raw = await self._rpc("eth_call", [{"to": contract, "data": data}, "latest"])
                elif symbol.upper() in EVM_NATIVE_SYMBOLS:
                    raw = await self._rpc("eth_getBalance", [address, "latest"])
                else:
                    continue
            except BalanceLookupError as e:
                logger.debug(f"Skipping {token.get('assetId')}: {e}")
                continue

            amount = int(raw, 16) if raw and raw != "0x" else 0
            if amount > 0:
                balances.append(
                    TokenBalance(
                        asset_id=token.get("assetId", ""),
                        symbol=symbol,
                        decimals=int(token.get("decimals", 18)),
                        balance=amount,
                        price_usd=_price(token),
                        is_native=not contract,
                    )
                )

        return balances


def get_balance_provider(
    chain: str,
    settings: BillingSettings,
    session: aiohttp.ClientSession,
) -> BalanceProvider:
    """
    Balance provider registry

    Raises:
        UnsupportedChainError: no provider for the chain
    """
    timeout = settings.provider.timeout_seconds

    if chain == "near":
        return NearBalanceProvider(settings.ledger.rpc_url, session, timeout)

    rpc_url = settings.evm_rpc_url(chain) or DEFAULT_EVM_RPC_URLS.get(chain)
    if rpc_url:
        return EvmBalanceProvider(chain, rpc_url, session, timeout)

    raise UnsupportedChainError(f"Unsupported chain: {chain}")
