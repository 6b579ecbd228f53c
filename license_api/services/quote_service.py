# coding: utf-8
"""
Quote Service

Two typed operations against the settlement provider:
- quote_preview: dry quote, pricing only, no deposit address
- quote_commit: real quote with a deposit address, verified before use

A committed quote is only returned after the provider's echo of our request
confirms the payout recipient and destination asset. Anything else is treated
as an attempted asset substitution.
"""
from dataclasses import dataclass
from datetime import datetime, timedelta, UTC
from decimal import Decimal, ROUND_FLOOR, InvalidOperation
from typing import Any, Dict, List, Optional, Union

from loguru import logger

from config.billing import BillingSettings
from config.cache_config import CacheTTL, cache_key
from license_api.cache.redis_manager import RedisManager
from license_api.core.exceptions import AssetSubstitutionError, SettlementProviderError
from license_api.services.settlement_client import SettlementClient, isoformat_z


# The provider has no native NEAR asset; payments go through wNEAR
NATIVE_NEAR_ASSET = "near:native"
WRAPPED_NEAR_ASSET = "nep141:wrap.near"

PREVIEW_DEADLINE = timedelta(minutes=10)
PAYMENT_DEADLINE = timedelta(minutes=30)

# Tokens offered on the payment page, and chain display order
POPULAR_SYMBOLS = {"USDC", "USDT", "ETH", "WETH", "NEAR", "WNEAR", "DAI", "WBTC", "SOL"}
CHAIN_ORDER = ["near", "base", "eth", "arb", "sol"]


def usd_to_micro_units(amount_usd: Union[Decimal, str]) -> int:
    """
    Convert a USD amount to settlement micro-units (6 decimals, rounded down)

    Examples:
        >>> usd_to_micro_units("4.00")
        4000000
        >>> usd_to_micro_units("0.0000019")
        1
    """
    try:
        amount = Decimal(str(amount_usd))
    except InvalidOperation as e:
        raise ValueError(f"Invalid USD amount: {amount_usd!r}") from e

    if not amount.is_finite() or amount <= 0:
        raise ValueError(f"USD amount must be positive: {amount_usd!r}")

    return int((amount * 1_000_000).to_integral_value(rounding=ROUND_FLOOR))


def add_one_year(value: datetime) -> datetime:
    try:
        return value.replace(year=value.year + 1)
    except ValueError:
        # Feb 29 -> Feb 28
        return value.replace(year=value.year + 1, day=28)


def verify_quote_echo(
    response: Dict[str, Any],
    expected_recipient: str,
    expected_destination_asset: str,
) -> None:
    """
    Check the provider's echo of our quote request

    A missing echo is a failure too: we cannot prove where funds settle.

    Raises:
        AssetSubstitutionError: recipient or destination asset differs or is absent
    """
    echo = response.get("quoteRequest") or {}
    checks = (
        ("recipient", expected_recipient),
        ("destinationAsset", expected_destination_asset),
    )

    for field_name, expected in checks:
        actual = echo.get(field_name)
        if actual != expected:
            deposit_address = (response.get("quote") or {}).get("depositAddress")
            logger.critical(
                f"🚨 Quote verification failed: {field_name} expected={expected!r} "
                f"got={actual!r} deposit={deposit_address!r} "
                f"correlation={response.get('correlationId')!r}"
            )
            raise AssetSubstitutionError(field_name, expected, actual)


@dataclass(frozen=True)
class QuotePreview:
    """Dry quote: how much of the origin asset covers the USD amount."""
    origin_asset: str
    amount_in: Optional[str]
    amount_in_formatted: Optional[str]
    amount_in_usd: Optional[str]
    amount_out: Optional[str]
    amount_out_formatted: Optional[str]
    amount_out_usd: Optional[str]
    min_amount_out: Optional[str]
    time_estimate: Optional[int]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "originAsset": self.origin_asset,
            "amountIn": self.amount_in,
            "amountInFormatted": self.amount_in_formatted,
            "amountInUsd": self.amount_in_usd,
            "amountOut": self.amount_out,
            "amountOutFormatted": self.amount_out_formatted,
            "amountOutUsd": self.amount_out_usd,
            "minAmountOut": self.min_amount_out,
            "timeEstimate": self.time_estimate,
        }


@dataclass(frozen=True)
class CommittedQuote:
    """Verified quote with a funded-on-deposit address."""
    deposit_address: str
    deposit_memo: Optional[str]
    origin_asset: str
    amount_in: Optional[str]
    amount_in_formatted: Optional[str]
    amount_in_usd: Optional[str]
    amount_out: Optional[str]
    amount_out_formatted: Optional[str]
    deadline: Optional[str]
    time_estimate: Optional[int]
    signature: Optional[str]
    correlation_id: Optional[str]
    is_native_near: bool = False

    def quote_dict(self) -> Dict[str, Any]:
        return {
            "depositAddress": self.deposit_address,
            "depositMemo": self.deposit_memo,
            "originAsset": self.origin_asset,
            "amountIn": self.amount_in,
            "amountInFormatted": self.amount_in_formatted,
            "amountInUsd": self.amount_in_usd,
            "amountOut": self.amount_out,
            "amountOutFormatted": self.amount_out_formatted,
            "deadline": self.deadline,
            "timeEstimate": self.time_estimate,
            "isNativeNear": self.is_native_near,
        }


@dataclass(frozen=True)
class SubscriptionIntent:
    """Long-lived ANY_INPUT deposit address identifying a subscription."""
    intent_id: str
    deposit_address: str
    deposit_memo: Optional[str]
    monthly_amount_usd: Decimal
    deadline: str

class QuoteService:
    """
    Preview and commit quotes with the settlement provider

    No persistence: callers store the deposit address they get back.
    """

    def __init__(
        self,
        client: SettlementClient,
        settings: BillingSettings,
        redis: Optional[RedisManager] = None,
    ):
        self.client = client
        self.settings = settings
        self.redis = redis

    def _base_request(
        self,
        swap_type: str,
        origin_asset: str,
        amount: int,
        refund_to: str,
        deposit_type: str,
        refund_type: str,
        deadline: datetime,
    ) -> Dict[str, Any]:
        return {
            "swapType": swap_type,
            "slippageTolerance": self.settings.provider.slippage_bps,
            "originAsset": origin_asset,
            "depositType": deposit_type,
            "destinationAsset": self.settings.settlement_asset_id,
            "amount": str(amount),
            "refundTo": refund_to,
            "refundType": refund_type,
            "recipient": self.settings.settlement_account,
            "recipientType": "DESTINATION_CHAIN",
            "deadline": isoformat_z(deadline),
            "referral": self.settings.provider.referral,
        }

    async def quote_preview(
        self,
        origin_asset: str,
        usd_amount: Union[Decimal, str],
        refund_address: str,
        now: Optional[datetime] = None,
    ) -> QuotePreview:
        """
        Dry EXACT_OUTPUT quote: how much origin asset settles to usd_amount

        Args:
            origin_asset: Provider asset id the user pays with
            usd_amount: Amount to settle, in USD
            refund_address: Where the provider refunds on failure
            now: Reference time for the quote deadline

        Returns:
            QuotePreview (no deposit address is allocated)
        """
        now = now or datetime.now(UTC)
        request = self._base_request(
            swap_type="EXACT_OUTPUT",
            origin_asset=origin_asset,
            amount=usd_to_micro_units(usd_amount),
            refund_to=refund_address,
            deposit_type="ORIGIN_CHAIN",
            refund_type="ORIGIN_CHAIN",
            deadline=now + PREVIEW_DEADLINE,
        )

        response = await self.client.request_preview(request)
        quote = response.get("quote") or {}

        return QuotePreview(
            origin_asset=origin_asset,
            amount_in=quote.get("amountIn"),
            amount_in_formatted=quote.get("amountInFormatted"),
            amount_in_usd=quote.get("amountInUsd"),
            amount_out=quote.get("amountOut"),
            amount_out_formatted=quote.get("amountOutFormatted"),
            amount_out_usd=quote.get("amountOutUsd"),
            min_amount_out=quote.get("minAmountOut"),
            time_estimate=quote.get("timeEstimate"),
        )

    async def quote_commit(
        self,
        origin_asset: str,
        usd_amount: Union[Decimal, str],
        refund_address: str,
        expected_recipient: Optional[str] = None,
        expected_destination_asset: Optional[str] = None,
        deadline: Optional[datetime] = None,
        swap_type: str = "EXACT_OUTPUT",
        deposit_type: str = "ORIGIN_CHAIN",
        refund_type: str = "ORIGIN_CHAIN",
    ) -> CommittedQuote:
        """
        Committing quote with a real deposit address

        The deposit address is only returned after verify_quote_echo passes.

        Args:
            origin_asset: Provider asset id (near:native is quoted as wNEAR)
            usd_amount: Amount to settle, in USD
            refund_address: Refund address on the origin chain
            expected_recipient: Defaults to the configured settlement account
            expected_destination_asset: Defaults to the configured settlement asset
            deadline: Quote deadline (default: 30 minutes from now)

        Raises:
            AssetSubstitutionError: echoed recipient/asset mismatch or missing
            SettlementProviderError: provider rejected the request or sent no address
            TransientProviderError: network failure (not retried)
        """
        is_native_near = origin_asset == NATIVE_NEAR_ASSET
        quote_asset = WRAPPED_NEAR_ASSET if is_native_near else origin_asset

        request = self._base_request(
            swap_type=swap_type,
            origin_asset=quote_asset,
            amount=usd_to_micro_units(usd_amount),
            refund_to=refund_address,
            deposit_type=deposit_type,
            refund_type=refund_type,
            deadline=deadline or datetime.now(UTC) + PAYMENT_DEADLINE,
        )
        request["dry"] = False

        response = await self.client.request_quote(request)

        verify_quote_echo(
            response,
            expected_recipient or self.settings.settlement_account,
            expected_destination_asset or self.settings.settlement_asset_id,
        )

        quote = response.get("quote") or {}
        deposit_address = quote.get("depositAddress")
        if not deposit_address:
            raise SettlementProviderError("Provider returned no deposit address")

        logger.info(
            f"✅ Committed quote {swap_type} {quote_asset} -> deposit {deposit_address} "
            f"(correlation={response.get('correlationId')})"
        )

        return CommittedQuote(
            deposit_address=deposit_address,
            deposit_memo=quote.get("depositMemo"),
            origin_asset=origin_asset,
            amount_in=quote.get("amountIn"),
            amount_in_formatted=quote.get("amountInFormatted"),
            amount_in_usd=quote.get("amountInUsd"),
            amount_out=quote.get("amountOut"),
            amount_out_formatted=quote.get("amountOutFormatted"),
            deadline=quote.get("deadline"),
            time_estimate=quote.get("timeEstimate"),
            signature=response.get("signature"),
            correlation_id=response.get("correlationId"),
            is_native_near=is_native_near,
        )

    async def create_subscription_intent(
        self,
        owner: str,
        monthly_amount_usd: Optional[Decimal] = None,
        now: Optional[datetime] = None,
    ) -> SubscriptionIntent:
        """
        Allocate the long-lived deposit address that identifies a subscription

        ANY_INPUT quote valid for one year. Refunds go to the owner when it is
        a NEAR account (contains a dot), otherwise to the settlement account.

        Args:
            owner: NEAR account id, or a session id before login
            monthly_amount_usd: Price per period (default: configured price)
            now: Reference time for the deadline
        """
        amount = monthly_amount_usd or self.settings.monthly_amount_usd
        refund_to = owner if "." in owner else self.settings.settlement_account
        deadline = add_one_year(now or datetime.now(UTC))

        committed = await self.quote_commit(
            origin_asset=self.settings.settlement_asset_id,
            usd_amount=amount,
            refund_address=refund_to,
            deadline=deadline,
            swap_type="ANY_INPUT",
            deposit_type="INTENTS",
            refund_type="INTENTS",
        )

        return SubscriptionIntent(
            intent_id=committed.deposit_address,
            deposit_address=committed.deposit_address,
            deposit_memo=committed.deposit_memo,
            monthly_amount_usd=amount,
            deadline=isoformat_z(deadline),
        )

    async def list_supported_tokens(self) -> List[Dict[str, Any]]:
        """
        Payment-page token list (popular assets, NEAR first)

        Cached in Redis when available.
        """
        key = cache_key("tokens", "supported")
        if self.redis is not None:
            cached = await self.redis.get(key)
            if cached is not None:
                return cached

        tokens = await self.client.get_tokens()
        payment_tokens = [
            {
                "assetId": token.get("assetId"),
                "symbol": token.get("symbol"),
                "decimals": token.get("decimals"),
                "blockchain": token.get("blockchain"),
                "priceUsd": token.get("price"),
                "contractAddress": token.get("contractAddress"),
            }
            for token in tokens
            if str(token.get("symbol", "")).upper() in POPULAR_SYMBOLS
        ]
        payment_tokens.sort(key=_token_sort_key)

        if self.redis is not None:
            await self.redis.set(key, payment_tokens, ttl=CacheTTL.SUPPORTED_TOKENS)

        return payment_tokens

    async def list_chain_tokens(self, chain: str) -> List[Dict[str, Any]]:
        """All provider tokens on one chain (used for wallet balances)."""
        key = cache_key("tokens", "chain", chain)
        if self.redis is not None:
            cached = await self.redis.get(key)
            if cached is not None:
                return cached

        tokens = await self.client.get_tokens()
        chain_tokens = [token for token in tokens if token.get("blockchain") == chain]

        if self.redis is not None:
            await self.redis.set(key, chain_tokens, ttl=CacheTTL.SUPPORTED_TOKENS)

        return chain_tokens


def _token_sort_key(token: Dict[str, Any]):
    chain = token.get("blockchain")
    order = CHAIN_ORDER.index(chain) if chain in CHAIN_ORDER else len(CHAIN_ORDER)
    return order, str(token.get("symbol", ""))
