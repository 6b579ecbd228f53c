"""
Pytest configuration and fixtures for License API tests
"""

from decimal import Decimal
from typing import AsyncGenerator, List, Tuple
from unittest.mock import AsyncMock

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.pool import StaticPool

from config.billing import BillingSettings, LedgerSettings, ProviderSettings
from license_api.database.models import Base
from license_api.services.license_grantor import LicenseGrantor, LicenseGrantResult


# Test database URL (in-memory SQLite for testing)
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

SETTLEMENT_ACCOUNT = "billing.testnet"
SETTLEMENT_ASSET = "nep141:usdc.testnet"


@pytest.fixture(scope="function")
async def test_db_engine():
    """
    Create test database engine
    """
    engine = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest.fixture(scope="function")
def session_maker(test_db_engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(test_db_engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture(scope="function")
async def db_session(session_maker) -> AsyncGenerator[AsyncSession, None]:
    """
    Create test database session
    """
    async with session_maker() as session:
        yield session
        await session.rollback()


@pytest.fixture
def billing_settings() -> BillingSettings:
    return BillingSettings(
        provider=ProviderSettings(base_url="https://1click.test", api_key="test-key", timeout_seconds=5),
        ledger=LedgerSettings(
            rpc_url="https://rpc.testnet.test",
            contract_id="license.testnet",
            signer_account_id="license.testnet",
            network="testnet",
        ),
        settlement_account=SETTLEMENT_ACCOUNT,
        settlement_asset_id=SETTLEMENT_ASSET,
        monthly_amount_usd=Decimal("4.00"),
        license_duration_days=30,
        max_retry_attempts=3,
        public_base_url="https://app.test",
    )


def quote_response(
    deposit_address: str,
    recipient: str = SETTLEMENT_ACCOUNT,
    destination_asset: str = SETTLEMENT_ASSET,
) -> dict:
    """Committing quote response as the provider sends it"""
    return {
        "quote": {
            "depositAddress": deposit_address,
            "amountIn": "4010000",
            "amountInFormatted": "4.01",
            "amountInUsd": "4.01",
            "amountOut": "4000000",
            "amountOutFormatted": "4.00",
            "deadline": "2026-11-01T00:00:00.000Z",
            "timeEstimate": 20,
        },
        "quoteRequest": {
            "recipient": recipient,
            "destinationAsset": destination_asset,
        },
        "signature": "ed25519:sig",
        "correlationId": f"corr-{deposit_address}",
    }


class FakeGrantor(LicenseGrantor):
    """License ledger double that records every extension"""

    def __init__(self, succeed: bool = True):
        self.succeed = succeed
        self.calls: List[Tuple[str, int]] = []

    async def extend(self, account_id: str, duration_days: int) -> LicenseGrantResult:
        self.calls.append((account_id, duration_days))
        if not self.succeed:
            return LicenseGrantResult(success=False, error="contract panicked")
        return LicenseGrantResult(success=True, reference=f"tx-{len(self.calls)}")


@pytest.fixture
def grantor() -> FakeGrantor:
    return FakeGrantor()


@pytest.fixture
def settlement_client() -> AsyncMock:
    """
    Settlement provider double

    Every new intent gets a fresh deposit address; nothing is paid.
    """
    client = AsyncMock()
    counter = {"n": 0}

    async def request_quote(request):
        counter["n"] += 1
        return quote_response(f"deposit-{counter['n']}")

    client.request_quote.side_effect = request_quote
    client.get_execution_status.return_value = {"status": "PENDING_DEPOSIT"}
    client.get_any_input_withdrawals.return_value = {"withdrawals": []}
    client.get_tokens.return_value = []
    return client


@pytest.fixture
def failing_grantor() -> FakeGrantor:
    return FakeGrantor(succeed=False)


@pytest.fixture
def make_quote_response():
    return quote_response
