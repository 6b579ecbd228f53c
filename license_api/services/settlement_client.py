# coding: utf-8
"""
Settlement provider client (NEAR Intents 1Click API)

Explicit client object: every invocation builds its own instance from a
ProviderSettings snapshot. Nothing is configured globally.

Endpoints used:
- POST /v0/quote                     preview (dry) and committing quotes
- GET  /v0/status                    execution status of a deposit address
- GET  /v0/any-input/withdrawals     settlements of an ANY_INPUT deposit address
- GET  /v0/tokens                    supported assets

Read-only calls are retried on transient failures. Committing quotes are
never retried here: a retry could allocate a second deposit address.
"""
import asyncio
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

import aiohttp
from loguru import logger
from tenacity import (
    retry,
    stop_after_attempt,
    wait_exponential,
    retry_if_exception_type,
    before_sleep_log,
)

from config.billing import ProviderSettings
from license_api.core.exceptions import SettlementProviderError, TransientProviderError


# Standard logger for tenacity
std_logger = logging.getLogger(__name__)

provider_retry = retry(
    retry=retry_if_exception_type(TransientProviderError),
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=1, max=8),
    before_sleep=before_sleep_log(std_logger, logging.WARNING),
    reraise=True,
)


def isoformat_z(value: datetime) -> str:
    """ISO 8601 with millisecond precision and Z suffix, as the provider expects."""
    return value.strftime("%Y-%m-%dT%H:%M:%S.") + f"{value.microsecond // 1000:03d}Z"


class SettlementClient:
    """
    Async client for the 1Click settlement API

    Usage:
        async with SettlementClient(settings.provider) as client:
            status = await client.get_execution_status(deposit_address)
    """

    def __init__(
        self,
        settings: ProviderSettings,
        session: Optional[aiohttp.ClientSession] = None,
    ):
        self.settings = settings
        self._session = session
        self._owns_session = session is None

    async def __aenter__(self) -> "SettlementClient":
        if self._session is None:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.settings.timeout_seconds)
            )
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    async def close(self) -> None:
        if self._owns_session and self._session is not None:
            await self._session.close()
            self._session = None

    def _get_headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json", "Accept": "application/json"}
        if self.settings.api_key:
            headers["Authorization"] = f"Bearer {self.settings.api_key}"
        return headers

    async def _request(
        self,
        method: str,
        path: str,
        params: Optional[Dict[str, Any]] = None,
        json_body: Optional[Dict[str, Any]] = None,
    ) -> Any:
        """
        Perform one HTTP call and map failures onto the billing error hierarchy

        Raises:
            TransientProviderError: network error, timeout or 5xx
            SettlementProviderError: 4xx or a non-JSON body
        """
        if self._session is None:
            raise RuntimeError("SettlementClient used outside of 'async with'")

        url = f"{self.settings.base_url}{path}"
        if params:
            params = {key: value for key, value in params.items() if value is not None}

        try:
            async with self._session.request(
                method,
                url,
                params=params,
                json=json_body,
                headers=self._get_headers(),
                timeout=aiohttp.ClientTimeout(total=self.settings.timeout_seconds),
            ) as response:
                text = await response.text()

                if response.status >= 500 or response.status == 429:
                    raise TransientProviderError(
                        f"Provider {method} {path} returned {response.status}: {text[:200]}"
                    )
                if response.status >= 400:
                    raise SettlementProviderError(
                        f"Provider {method} {path} rejected request ({response.status}): {text[:200]}"
                    )

                try:
                    return await response.json(content_type=None)
                except ValueError as e:
                    raise SettlementProviderError(
                        f"Provider {method} {path} returned invalid JSON: {e}"
                    ) from e

        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise TransientProviderError(
                f"Provider {method} {path} unreachable: {type(e).__name__}: {e}"
            ) from e

    @provider_retry
    async def _get(self, path: str, params: Optional[Dict[str, Any]] = None) -> Any:
        return await self._request("GET", path, params=params)

    async def request_quote(self, quote_request: Dict[str, Any]) -> Dict[str, Any]:
        """
        Committing quote (dry=false): allocates a deposit address. Not retried.
        """
        logger.debug(
            f"💱 Requesting committing quote: {quote_request.get('swapType')} "
            f"{quote_request.get('originAsset')} -> {quote_request.get('destinationAsset')}"
        )
        return await self._request("POST", "/v0/quote", json_body=quote_request)

    @provider_retry
    async def request_preview(self, quote_request: Dict[str, Any]) -> Dict[str, Any]:
        """Dry quote: pricing only, safe to repeat."""
        return await self._request("POST", "/v0/quote", json_body={**quote_request, "dry": True})

    async def get_execution_status(
        self, deposit_address: str, deposit_memo: Optional[str] = None
    ) -> Dict[str, Any]:
        """Execution status for a deposit address."""
        return await self._get(
            "/v0/status",
            params={"depositAddress": deposit_address, "depositMemo": deposit_memo},
        )

    async def get_any_input_withdrawals(
        self,
        deposit_address: str,
        since: Optional[datetime] = None,
        deposit_memo: Optional[str] = None,
        page: int = 1,
        limit: int = 50,
        sort_order: str = "desc",
    ) -> Dict[str, Any]:
        """Settlements made from an ANY_INPUT deposit address since a timestamp."""
        return await self._get(
            "/v0/any-input/withdrawals",
            params={
                "depositAddress": deposit_address,
                "depositMemo": deposit_memo,
                "timestampFrom": isoformat_z(since) if since else None,
                "page": page,
                "limit": limit,
                "sortOrder": sort_order,
            },
        )

    async def get_tokens(self) -> List[Dict[str, Any]]:
        """Supported assets."""
        data = await self._get("/v0/tokens")
        if not isinstance(data, list):
            raise SettlementProviderError("Provider token list is not a list")
        return data
