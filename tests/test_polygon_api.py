from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from nft_dashboard.platforms.polygon import PolygonScanAPI, PolygonScanError

CONTRACT = "0x8d1566569d5b695d44a9a234540f68b554e8d597"


class FakeResponse:
    def __init__(self, payload):
        self.payload = payload

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False

    def raise_for_status(self):
        return None

    async def json(self, content_type=None):
        return self.payload


def make_api(logger, *payloads, api_key="KEY"):
    api = PolygonScanAPI(logger, "https://api.polygonscan.com/api", CONTRACT, api_key=api_key)
    session = MagicMock()
    session.closed = False
    session.get.side_effect = [FakeResponse(p) for p in payloads]
    api.session = session
    return api, session


@pytest.fixture
def no_sleep():
    with patch("nft_dashboard.utils.decorators.asyncio.sleep", new=AsyncMock()) as sleep:
        yield sleep


@pytest.mark.asyncio
async def test_token_transfers_query(logger):
    api, session = make_api(logger, {"status": "1", "message": "OK", "result": [{"hash": "0x1"}]})
    assert await api.get_token_transfers() == [{"hash": "0x1"}]
    params = session.get.call_args.kwargs["params"]
    assert params["action"] == "token1155tx"
    assert params["contractaddress"] == CONTRACT
    assert params["sort"] == "desc"
    assert params["apikey"] == "KEY"


@pytest.mark.asyncio
async def test_api_key_is_optional(logger):
    api, session = make_api(logger, {"status": "1", "result": []}, api_key=None)
    await api.get_token_transfers()
    assert "apikey" not in session.get.call_args.kwargs["params"]


@pytest.mark.asyncio
async def test_no_transactions_is_empty(logger):
    api, _ = make_api(logger, {"status": "0", "message": "No transactions found", "result": []})
    assert await api.get_token_transfers() == []


@pytest.mark.asyncio
async def test_other_errors_raise(logger):
    api, _ = make_api(logger, {"status": "0", "message": "NOTOK", "result": "Invalid API Key"})
    with pytest.raises(PolygonScanError, match="Invalid API Key"):
        await api.get_token_transfers()


@pytest.mark.asyncio
async def test_rate_limited_body_is_retried(logger, no_sleep):
    api, session = make_api(
        logger,
        {"status": "0", "message": "NOTOK", "result": "Max calls per sec rate limit reached (5/sec)"},
        {"status": "1", "message": "OK", "result": [{"hash": "0x2"}]},
    )
    assert await api.get_token_transfers() == [{"hash": "0x2"}]
    assert session.get.call_count == 2
    no_sleep.assert_awaited_once_with(1)


@pytest.mark.asyncio
async def test_close_releases_session(logger):
    api, session = make_api(logger)
    session.close = AsyncMock()
    await api.close()
    session.close.assert_awaited_once()
    assert api.session is None
