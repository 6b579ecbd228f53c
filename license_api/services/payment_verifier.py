# coding: utf-8
"""
Payment Verifier

Classifies a deposit address as received / pending / none relative to a
reference timestamp (the previous charge, or subscription creation).

Provider failures propagate as TransientProviderError. They are never
reported as "none": a missed payment must be a confirmed absence.
"""
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Iterable, Optional

from loguru import logger

from license_api.core.enums import ExecutionStatus, PaymentOutcome
from license_api.services.settlement_client import SettlementClient


WITHDRAWAL_SETTLED = {"SUCCESS"}
WITHDRAWAL_IN_FLIGHT = {"PENDING", "PROCESSING"}


@dataclass(frozen=True)
class PaymentCheck:
    outcome: PaymentOutcome
    tx_hash: Optional[str] = None
    amount_received_usd: Optional[str] = None
    provider_status: Optional[str] = None


def parse_timestamp(raw: Optional[str]) -> Optional[datetime]:
    if not raw:
        return None
    try:
        return datetime.fromisoformat(raw.replace("Z", "+00:00"))
    except ValueError:
        logger.warning(f"Unparseable provider timestamp: {raw!r}")
        return None


def _iter_withdrawals(payload: Dict[str, Any]) -> Iterable[Dict[str, Any]]:
    # The listing is either a list or a single latest-withdrawal object
    withdrawals = payload.get("withdrawals")
    if isinstance(withdrawals, list):
        return withdrawals
    if isinstance(withdrawals, dict):
        return [withdrawals]
    return []


class PaymentVerifier:
    """
    Payment checks against the settlement provider

    Usage:
        verifier = PaymentVerifier(client)
        check = await verifier.check_payment(record.deposit_address, record.payment_since)
    """

    def __init__(self, client: SettlementClient):
        self.client = client

    async def check_payment(
        self,
        deposit_address: str,
        since: datetime,
        deposit_memo: Optional[str] = None,
    ) -> PaymentCheck:
        """
        Check whether the deposit address settled a payment after `since`

        Args:
            deposit_address: Address to inspect
            since: Only settlements after this moment count
            deposit_memo: Optional memo for memo-based deposit addresses

        Returns:
            PaymentCheck with outcome received, pending or none

        Raises:
            TransientProviderError: provider unreachable (retry next sweep)
            SettlementProviderError: provider rejected the lookup
        """
        status_response = await self.client.get_execution_status(deposit_address, deposit_memo)
        raw_status = status_response.get("status")
        status = ExecutionStatus.parse(raw_status)

        if status == ExecutionStatus.SUCCESS:
            updated_at = parse_timestamp(status_response.get("updatedAt"))
            if updated_at is not None and updated_at > since:
                details = status_response.get("swapDetails") or {}
                tx_hashes = details.get("nearTxHashes") or []
                return PaymentCheck(
                    outcome=PaymentOutcome.RECEIVED,
                    tx_hash=tx_hashes[0] if tx_hashes else None,
                    amount_received_usd=details.get("amountInUsd"),
                    provider_status=raw_status,
                )

        if ExecutionStatus.is_in_flight(status):
            return PaymentCheck(outcome=PaymentOutcome.PENDING, provider_status=raw_status)

        # ANY_INPUT addresses keep accepting deposits; each settlement is a withdrawal
        listing = await self.client.get_any_input_withdrawals(deposit_address, since=since, deposit_memo=deposit_memo)

        in_flight = False
        for withdrawal in _iter_withdrawals(listing):
            settled_at = parse_timestamp(withdrawal.get("timestamp"))
            if settled_at is not None and settled_at <= since:
                continue

            withdrawal_status = str(withdrawal.get("status", "")).upper()
            if withdrawal_status in WITHDRAWAL_SETTLED:
                return PaymentCheck(
                    outcome=PaymentOutcome.RECEIVED,
                    tx_hash=withdrawal.get("hash"),
                    amount_received_usd=withdrawal.get("amountOutUsd"),
                    provider_status=raw_status,
                )
            if withdrawal_status in WITHDRAWAL_IN_FLIGHT:
                in_flight = True

        if in_flight:
            return PaymentCheck(outcome=PaymentOutcome.PENDING, provider_status=raw_status)

        logger.debug(f"No payment on {deposit_address} since {since.isoformat()} (status={raw_status})")
        return PaymentCheck(outcome=PaymentOutcome.NONE, provider_status=raw_status)
