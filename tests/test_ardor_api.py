import asyncio
from unittest.mock import AsyncMock, MagicMock, patch

import aiohttp
import pytest

from nft_dashboard.cache.memory_store import MemoryStore
from nft_dashboard.platforms.ardor import ArdorAPI, ArdorAPIError
from tests.helpers import FakeClock

PRIMARY = "https://primary.example/nxt"
FALLBACK = "https://fallback.example/nxt"


@pytest.fixture
def clock():
    return FakeClock(start=1000.0)


@pytest.fixture
def api(logger, clock):
    cache = MemoryStore(name="requests", logger=logger)
    return ArdorAPI(logger, PRIMARY, FALLBACK, chain_id=2, request_cache=cache, clock=clock)


@pytest.fixture
def no_sleep():
    with patch("nft_dashboard.utils.decorators.asyncio.sleep", new=AsyncMock()) as sleep:
        yield sleep


@pytest.mark.asyncio
async def test_request_adds_chain_and_drops_none_params(api):
    api._fetch_json = AsyncMock(return_value={"asset": "1"})
    await api.request("getAsset", {"asset": "1", "account": None})
    url, params = api._fetch_json.await_args.args
    assert url == PRIMARY
    assert params == {"requestType": "getAsset", "chain": 2, "asset": "1"}


@pytest.mark.asyncio
async def test_identical_requests_are_deduplicated(api):
    api._fetch_json = AsyncMock(return_value={"trades": []})
    await api.request("getTrades", {"asset": "1"})
    await api.request("getTrades", {"asset": "1"})
    await api.request("getTrades", {"asset": "2"})
    assert api._fetch_json.await_count == 2


@pytest.mark.asyncio
async def test_uncached_requests_always_hit_the_node(api):
    api._fetch_json = AsyncMock(return_value={"numberOfBlocks": 10})
    await api.get_blockchain_status()
    await api.get_blockchain_status()
    assert api._fetch_json.await_count == 2
    assert "chain" not in api._fetch_json.await_args.args[1]


@pytest.mark.asyncio
async def test_error_code_raises(api):
    api._fetch_json = AsyncMock(return_value={"errorCode": 5, "errorDescription": "Unknown asset"})
    with pytest.raises(ArdorAPIError) as excinfo:
        await api.request("getAsset", {"asset": "404"})
    assert excinfo.value.error_code == 5
    assert "Unknown asset" in str(excinfo.value)
    # errors are never cached
    assert len(api.request_cache) == 0


@pytest.mark.asyncio
async def test_network_failure_switches_to_fallback(api):
    api._fetch_json = AsyncMock(side_effect=[aiohttp.ServerDisconnectedError(), {"ok": True}])
    assert await api.request("getAsset", {"asset": "1"}) == {"ok": True}
    assert api.using_fallback is True
    assert api._fetch_json.await_args_list[1].args[0] == FALLBACK
    assert api.node_status()["current_url"] == FALLBACK


@pytest.mark.asyncio
async def test_primary_restored_after_check_interval(api, clock):
    api._fetch_json = AsyncMock(side_effect=[aiohttp.ServerDisconnectedError(), {"ok": 1}])
    await api.request("getAsset", {"asset": "1"})
    assert api.using_fallback

    clock.advance(61)
    api._fetch_json = AsyncMock(side_effect=[{"numberOfBlocks": 1}, {"ok": 2}])
    await api.request("getAsset", {"asset": "2"})
    assert api.using_fallback is False
    health_url, health_params = api._fetch_json.await_args_list[0].args
    assert health_url == PRIMARY
    assert health_params == {"requestType": "getBlockchainStatus"}
    assert api._fetch_json.await_args_list[1].args[0] == PRIMARY


@pytest.mark.asyncio
async def test_primary_not_probed_before_check_interval(api, clock):
    api._fetch_json = AsyncMock(side_effect=[aiohttp.ServerDisconnectedError(), {"ok": 1}, {"ok": 2}])
    await api.request("getAsset", {"asset": "1"})
    clock.advance(10)
    await api.request("getAsset", {"asset": "2"})
    assert api.using_fallback is True
    assert api._fetch_json.await_count == 3


@pytest.mark.asyncio
async def test_retries_with_backoff_without_fallback(logger, no_sleep):
    api = ArdorAPI(logger, PRIMARY)
    api._fetch_json = AsyncMock(side_effect=[asyncio.TimeoutError(), asyncio.TimeoutError(), {"ok": True}])
    assert await api.request("getAsset", {"asset": "1"}) == {"ok": True}
    assert [call.args[0] for call in no_sleep.await_args_list] == [1, 2]


@pytest.mark.asyncio
async def test_gives_up_after_max_retries(logger, no_sleep):
    api = ArdorAPI(logger, PRIMARY)
    api._fetch_json = AsyncMock(side_effect=aiohttp.ServerDisconnectedError())
    with pytest.raises(aiohttp.ServerDisconnectedError):
        await api.request("getAsset", {"asset": "1"})
    assert api._fetch_json.await_count == 4
    logger.error.assert_called()


@pytest.mark.asyncio
async def test_client_errors_are_not_retried(logger, no_sleep):
    api = ArdorAPI(logger, PRIMARY)
    error = aiohttp.ClientResponseError(request_info=MagicMock(), history=(), status=404, message="Not Found")
    api._fetch_json = AsyncMock(side_effect=error)
    with pytest.raises(aiohttp.ClientResponseError):
        await api.request("getAsset", {"asset": "1"})
    assert api._fetch_json.await_count == 1
    no_sleep.assert_not_awaited()


@pytest.mark.asyncio
async def test_paging_walks_until_short_page(api):
    pages = [{"trades": [{"n": i} for i in range(100)]}, {"trades": [{"n": 100}]}]
    api._fetch_json = AsyncMock(side_effect=pages)
    trades = await api.get_trades("123")
    assert len(trades) == 101
    first, second = (call.args[1] for call in api._fetch_json.await_args_list)
    assert (first["firstIndex"], first["lastIndex"]) == (0, 99)
    assert (second["firstIndex"], second["lastIndex"]) == (100, 199)
    assert first["asset"] == "123"


@pytest.mark.asyncio
async def test_paging_stops_at_max_pages(api, logger):
    api._fetch_json = AsyncMock(side_effect=lambda url, params: {"trades": [{}] * 100})
    trades = await api.get_trades("123", max_pages=2)
    assert len(trades) == 200
    logger.warning.assert_called()


@pytest.mark.asyncio
async def test_asset_transfers_need_a_filter(api):
    with pytest.raises(ValueError):
        await api.get_asset_transfers()


@pytest.mark.asyncio
async def test_asset_transfers_by_recipient(api):
    api._fetch_json = AsyncMock(return_value={"transfers": [{"recipientRS": "ARDOR-X"}]})
    transfers = await api.get_asset_transfers(recipient="ARDOR-X")
    assert transfers == [{"recipientRS": "ARDOR-X"}]
    params = api._fetch_json.await_args.args[1]
    assert params["account"] == "ARDOR-X"
    assert "asset" not in params


@pytest.mark.asyncio
async def test_gather_for_assets_merges_batches(api):
    async def fetch(asset_id):
        return [{"asset": asset_id}]

    merged = await api.gather_for_assets(fetch, ["1", "2", "3"])
    assert merged == [{"asset": "1"}, {"asset": "2"}, {"asset": "3"}]


@pytest.mark.asyncio
async def test_gather_for_assets_forwards_keyword_arguments(api):
    api._fetch_json = AsyncMock(return_value={"trades": [{"id": 1}]})
    await api.gather_for_assets(api.get_trades, ["1"], use_cache=False)
    await api.gather_for_assets(api.get_trades, ["1"], use_cache=False)
    assert api._fetch_json.await_count == 2
    assert len(api.request_cache) == 0


@pytest.mark.asyncio
async def test_uncached_pages_skip_the_request_cache(api):
    api._fetch_json = AsyncMock(side_effect=[{"trades": [{"id": 1}]}, {"trades": [{"id": 1}, {"id": 2}]}])
    assert len(await api.get_trades("123")) == 1
    assert len(await api.get_trades("123", use_cache=False)) == 2
    # the cached first page is still served to cached callers
    assert len(await api.get_trades("123")) == 1
    assert api._fetch_json.await_count == 2


@pytest.mark.asyncio
async def test_transaction_with_prunable_message(api):
    api._fetch_json = AsyncMock(return_value={"fullHash": "ab", "attachment": {"message": "hi"}})
    await api.get_transaction("ab", include_prunable=True)
    params = api._fetch_json.await_args.args[1]
    assert params["includePrunable"] == "true"
    assert params["fullHash"] == "ab"

    await api.get_transaction("cd")
    assert "includePrunable" not in api._fetch_json.await_args.args[1]


def test_same_fallback_as_primary_is_ignored(logger):
    api = ArdorAPI(logger, PRIMARY, PRIMARY)
    assert api.fallback_url is None
    assert api._switch_to_fallback() is False


@pytest.mark.asyncio
async def test_context_manager_closes_session(logger):
    async with ArdorAPI(logger, PRIMARY) as api:
        assert api.session is not None
    assert api.session is None