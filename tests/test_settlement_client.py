"""
Tests for the settlement provider client (HTTP error mapping and retries)
"""

import json
from datetime import datetime, UTC

import aiohttp
import pytest
from tenacity import wait_none

from license_api.core.exceptions import SettlementProviderError, TransientProviderError
from license_api.services.settlement_client import SettlementClient, isoformat_z


class FakeResponse:
    def __init__(self, status: int, body):
        self.status = status
        self._text = body if isinstance(body, str) else json.dumps(body)

    async def text(self):
        return self._text

    async def json(self, content_type=None):
        return json.loads(self._text)

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False


class FakeSession:
    """Replays queued responses (or raises queued exceptions) and records requests"""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.requests = []

    def request(self, method, url, **kwargs):
        self.requests.append((method, url, kwargs))
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


@pytest.fixture(autouse=True)
def no_retry_wait(monkeypatch):
    monkeypatch.setattr(SettlementClient._get.retry, "wait", wait_none())
    monkeypatch.setattr(SettlementClient.request_preview.retry, "wait", wait_none())


def make_client(billing_settings, session: FakeSession) -> SettlementClient:
    return SettlementClient(billing_settings.provider, session=session)


def test_isoformat_z():
    assert isoformat_z(datetime(2026, 4, 1, 12, 30, 5, 123456, tzinfo=UTC)) == "2026-04-01T12:30:05.123Z"


@pytest.mark.asyncio
async def test_status_request(billing_settings):
    session = FakeSession(FakeResponse(200, {"status": "SUCCESS"}))

    result = await make_client(billing_settings, session).get_execution_status("deposit-1")

    method, url, kwargs = session.requests[0]
    assert result == {"status": "SUCCESS"}
    assert (method, url) == ("GET", "https://1click.test/v0/status")
    assert kwargs["params"] == {"depositAddress": "deposit-1"}
    assert kwargs["headers"]["Authorization"] == "Bearer test-key"


@pytest.mark.asyncio
async def test_withdrawals_request(billing_settings):
    session = FakeSession(FakeResponse(200, {"withdrawals": []}))

    await make_client(billing_settings, session).get_any_input_withdrawals(
        "deposit-1", since=datetime(2026, 3, 15, tzinfo=UTC)
    )

    params = session.requests[0][2]["params"]
    assert params["timestampFrom"] == "2026-03-15T00:00:00.000Z"
    assert params["sortOrder"] == "desc"
    assert "depositMemo" not in params


@pytest.mark.asyncio
async def test_server_error_is_retried_then_transient(billing_settings):
    session = FakeSession(*[FakeResponse(503, "unavailable") for _ in range(3)])

    with pytest.raises(TransientProviderError):
        await make_client(billing_settings, session).get_execution_status("deposit-1")

    assert len(session.requests) == 3


@pytest.mark.asyncio
async def test_transient_failure_recovers(billing_settings):
    session = FakeSession(
        aiohttp.ClientConnectionError("reset"),
        FakeResponse(200, [{"assetId": "nep141:wrap.near"}]),
    )

    tokens = await make_client(billing_settings, session).get_tokens()

    assert tokens == [{"assetId": "nep141:wrap.near"}]


@pytest.mark.asyncio
async def test_client_error_is_not_retried(billing_settings):
    session = FakeSession(FakeResponse(400, {"message": "bad amount"}))

    with pytest.raises(SettlementProviderError) as exc_info:
        await make_client(billing_settings, session).get_execution_status("deposit-1")

    assert not isinstance(exc_info.value, TransientProviderError)
    assert len(session.requests) == 1


@pytest.mark.asyncio
async def test_committing_quote_is_never_retried(billing_settings):
    session = FakeSession(FakeResponse(502, "bad gateway"), FakeResponse(200, {}))

    with pytest.raises(TransientProviderError):
        await make_client(billing_settings, session).request_quote({"swapType": "EXACT_OUTPUT"})

    assert len(session.requests) == 1


@pytest.mark.asyncio
async def test_preview_is_dry(billing_settings):
    session = FakeSession(FakeResponse(200, {"quote": {}}))

    await make_client(billing_settings, session).request_preview({"swapType": "EXACT_OUTPUT"})

    method, url, kwargs = session.requests[0]
    assert (method, url) == ("POST", "https://1click.test/v0/quote")
    assert kwargs["json"] == {"swapType": "EXACT_OUTPUT", "dry": True}


@pytest.mark.asyncio
async def test_invalid_json(billing_settings):
    session = FakeSession(FakeResponse(200, "<html>"))

    with pytest.raises(SettlementProviderError):
        await make_client(billing_settings, session).get_execution_status("deposit-1")


@pytest.mark.asyncio
async def test_token_list_must_be_a_list(billing_settings):
    session = FakeSession(FakeResponse(200, {"tokens": []}))

    with pytest.raises(SettlementProviderError):
        await make_client(billing_settings, session).get_tokens()
