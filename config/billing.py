# coding: utf-8
"""
Billing settings snapshot

Module-level constants in config.config are read once at import. The billing
engine never reads them directly: every entry point (request handler, cron
sweep) builds a BillingSettings snapshot and passes it down explicitly, so a
single invocation always sees one consistent provider configuration.
"""
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Dict, Optional

from config import config


# Default public RPC endpoints for the license ledger, per NEAR network
NEAR_RPC_DEFAULTS: Dict[str, str] = {
    "mainnet": "https://rpc.mainnet.fastnear.com",
    "testnet": "https://rpc.testnet.fastnear.com",
}


@dataclass(frozen=True)
class ProviderSettings:
    """Settlement provider (1Click API) connection."""
    base_url: str
    api_key: str = ""
    timeout_seconds: float = 15.0
    referral: str = "license-api"
    slippage_bps: int = 100


@dataclass(frozen=True)
class LedgerSettings:
    """NEAR license contract access."""
    rpc_url: str
    contract_id: str
    signer_account_id: str
    private_key: str = ""
    fastnear_api_key: str = ""
    timeout_seconds: float = 15.0
    network: str = "mainnet"


@dataclass(frozen=True)
class BillingSettings:
    """
    Everything one billing invocation needs.

    Build with BillingSettings.from_env() at the edge; tests construct it
    directly.
    """
    provider: ProviderSettings
    ledger: LedgerSettings
    settlement_account: str
    settlement_asset_id: str
    monthly_amount_usd: Decimal = Decimal("4.00")
    license_duration_days: int = 30
    max_retry_attempts: int = 3
    public_base_url: str = "http://localhost:8000"
    evm_rpc_urls: Dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_env(cls) -> "BillingSettings":
        """Snapshot of the current process configuration."""
        network = config.NEAR_NETWORK
        rpc_url = config.NEAR_RPC_URL or NEAR_RPC_DEFAULTS.get(
            network, NEAR_RPC_DEFAULTS["mainnet"]
        )

        return cls(
            provider=ProviderSettings(
                base_url=config.NEAR_INTENTS_API_URL.rstrip("/"),
                api_key=config.NEAR_INTENTS_API_KEY,
                timeout_seconds=config.PROVIDER_TIMEOUT_SECONDS,
                referral=config.QUOTE_REFERRAL,
                slippage_bps=config.QUOTE_SLIPPAGE_BPS,
            ),
            ledger=LedgerSettings(
                rpc_url=rpc_url,
                contract_id=config.LICENSE_CONTRACT_ID,
                # Grants are signed by the contract account itself (admin = deployer)
                signer_account_id=config.LICENSE_CONTRACT_ID,
                private_key=config.NEAR_PRIVATE_KEY,
                fastnear_api_key=config.FASTNEAR_API_KEY,
                timeout_seconds=config.PROVIDER_TIMEOUT_SECONDS,
                network=network,
            ),
            settlement_account=config.SETTLEMENT_ACCOUNT,
            settlement_asset_id=config.SETTLEMENT_ASSET_ID,
            monthly_amount_usd=Decimal(config.CRYPTO_MONTHLY_USD),
            license_duration_days=config.LICENSE_DURATION_DAYS,
            max_retry_attempts=config.MAX_RETRY_ATTEMPTS,
            public_base_url=config.PUBLIC_BASE_URL.rstrip("/"),
            evm_rpc_urls=dict(config.EVM_RPC_URLS),
        )

    def payment_url(self, intent_id: str) -> str:
        """Hosted payment page for a deposit intent."""
        return f"{self.public_base_url}/pay/{intent_id}"

    def evm_rpc_url(self, chain: str) -> Optional[str]:
        return self.evm_rpc_urls.get(chain)
