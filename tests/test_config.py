"""
Unit tests for configuration
"""

from decimal import Decimal
from importlib import reload

import pytest

import config.config as cfg
from config.billing import BillingSettings, NEAR_RPC_DEFAULTS


@pytest.fixture
def configured(monkeypatch):
    """Minimal valid configuration"""
    monkeypatch.setattr(cfg, "DATABASE_URL", "sqlite+aiosqlite:///:memory:")
    monkeypatch.setattr(cfg, "SETTLEMENT_ACCOUNT", "billing.near")
    monkeypatch.setattr(cfg, "NEAR_INTENTS_API_URL", "https://1click.chaindefuser.com/")
    monkeypatch.setattr(cfg, "LICENSE_CONTRACT_ID", "license.near")
    monkeypatch.setattr(cfg, "NEAR_PRIVATE_KEY", "ed25519:secret")
    monkeypatch.setattr(cfg, "LICENSE_DURATION_DAYS", 30)
    return cfg


def test_validate_config_passes(configured):
    assert configured.validate_config() is True


def test_validate_config_lists_every_missing_value(configured, monkeypatch):
    monkeypatch.setattr(cfg, "SETTLEMENT_ACCOUNT", "")
    monkeypatch.setattr(cfg, "NEAR_PRIVATE_KEY", "")

    with pytest.raises(ValueError) as exc_info:
        cfg.validate_config()

    message = str(exc_info.value)
    assert "SETTLEMENT_ACCOUNT is required" in message
    assert "NEAR_PRIVATE_KEY is required" in message
    assert "LICENSE_CONTRACT_ID" not in message


def test_billing_settings_snapshot(configured, monkeypatch):
    monkeypatch.setattr(cfg, "NEAR_NETWORK", "testnet")
    monkeypatch.setattr(cfg, "NEAR_RPC_URL", "")
    monkeypatch.setattr(cfg, "CRYPTO_MONTHLY_USD", "9.99")
    monkeypatch.setattr(cfg, "PUBLIC_BASE_URL", "https://license.example/")

    settings = BillingSettings.from_env()

    assert settings.provider.base_url == "https://1click.chaindefuser.com"
    assert settings.ledger.rpc_url == NEAR_RPC_DEFAULTS["testnet"]
    assert settings.ledger.signer_account_id == "license.near"
    assert settings.monthly_amount_usd == Decimal("9.99")
    assert settings.payment_url("deposit-1") == "https://license.example/pay/deposit-1"


def test_env_parsing(monkeypatch):
    """Test EVM_RPC_URLS and BILLING_SWEEP_ENABLED parsing"""
    monkeypatch.setenv("EVM_RPC_URLS", "eth=https://eth.example, base = https://base.example,broken")
    monkeypatch.setenv("BILLING_SWEEP_ENABLED", "TRUE")
    try:
        reload(cfg)
        assert cfg.EVM_RPC_URLS == {"eth": "https://eth.example", "base": "https://base.example"}
        assert cfg.BILLING_SWEEP_ENABLED is True
    finally:
        monkeypatch.delenv("EVM_RPC_URLS")
        monkeypatch.delenv("BILLING_SWEEP_ENABLED")
        reload(cfg)

    assert cfg.EVM_RPC_URLS == {}
    assert cfg.BILLING_SWEEP_ENABLED is False
