from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest

from nft_dashboard.cache.memory_store import MemoryStore
from nft_dashboard.cache.period_filter import FilterOptions, PeriodFilter
from nft_dashboard.cache.persistent_store import PersistentStore
from nft_dashboard.cache.refresh_coordinator import RefreshCoordinator
from nft_dashboard.cache.unified_cache import UnifiedCacheFacade
from nft_dashboard.platforms.ardor import ArdorAPI, ArdorAPIError
from nft_dashboard.services.datasets import (
    DashboardFetchers,
    DatasetRegistry,
    DatasetSpec,
    build_default_registry,
)
from nft_dashboard.utils.timestamps import PLATFORM_EPOCH_MS
from tests.helpers import NOW_MS

BURN_ACCOUNT = "ARDOR-Q9KZ-74XD-WERK-CV6GB"
GIFTZ_TOKEN = "13993107092599641878"
DISTRIBUTOR = "ARDOR-8WCM-6LBD-3AC9-9F22P"
DISTRIBUTOR_ID = "8827069720377389395"


def make_config(**overrides):
    values = {
        "ARDOR_TOKEN_IDS": ["111", "222"],
        "ARDOR_BURN_ACCOUNT": BURN_ACCOUNT,
        "ARDOR_PLATFORM_EPOCH_MS": PLATFORM_EPOCH_MS,
        "WARMUP_DATASETS": ["trades", "burns"],
        "REQUIRED_DATASETS": ["trades"],
        "GIFTZ_TOKEN_ID": GIFTZ_TOKEN,
        "GIFTZ_DISTRIBUTOR": DISTRIBUTOR,
        "GIFTZ_DISTRIBUTOR_ID": DISTRIBUTOR_ID,
    }
    values.update(overrides)
    return SimpleNamespace(**values)


@pytest.fixture
def ardor():
    client = MagicMock()
    client.gather_for_assets = AsyncMock()
    client.get_asset_transfers = AsyncMock()
    client.get_transaction = AsyncMock()
    return client


@pytest.fixture
def polygon():
    client = MagicMock()
    client.get_token_transfers = AsyncMock()
    return client


@pytest.fixture
def fetchers(ardor, polygon, normalizer):
    return DashboardFetchers(ardor, polygon, ["111", "222"], BURN_ACCOUNT, normalizer,
                             giftz_token_id=GIFTZ_TOKEN, giftz_distributor=DISTRIBUTOR,
                             giftz_distributor_id=DISTRIBUTOR_ID, logger=MagicMock())


async def _noop():
    return {}


class TestRegistry:
    def test_register_and_lookup(self):
        registry = DatasetRegistry()
        spec = registry.register(DatasetSpec(name="trades", fetch_fn=_noop))
        assert registry.get("trades") is spec
        assert "trades" in registry
        assert len(registry) == 1
        assert registry.names() == ["trades"]
        assert spec.filter_options == FilterOptions()

    def test_duplicate_names_are_rejected(self):
        registry = DatasetRegistry()
        registry.register(DatasetSpec(name="trades", fetch_fn=_noop))
        with pytest.raises(ValueError):
            registry.register(DatasetSpec(name="trades", fetch_fn=_noop))

    def test_unknown_name_raises_key_error(self):
        with pytest.raises(KeyError, match="Unknown dataset"):
            DatasetRegistry().get("sales")

    def test_warmup_keeps_registration_order(self):
        registry = DatasetRegistry()
        registry.register(DatasetSpec(name="a", fetch_fn=_noop, warm_on_startup=True))
        registry.register(DatasetSpec(name="b", fetch_fn=_noop))
        registry.register(DatasetSpec(name="c", fetch_fn=_noop, warm_on_startup=True))
        assert [spec.name for spec in registry.warmup()] == ["a", "c"]
        assert [spec.name for spec in registry] == ["a", "b", "c"]


class TestDefaultRegistry:
    def test_registers_all_datasets(self, ardor, polygon, normalizer):
        registry = build_default_registry(ardor, polygon, make_config(), normalizer)
        assert registry.names() == ["trades", "burns", "giftz_sales", "active_users", "polygon_transfers"]
        assert registry.get("trades").required is True
        assert registry.get("burns").required is False
        assert registry.get("burns").warm_on_startup is True
        assert registry.get("polygon_transfers").warm_on_startup is False
        assert registry.get("burns").filter_options.array_field == "burns"
        assert registry.get("polygon_transfers").filter_options.array_field == "transfers"
        users = registry.get("active_users").filter_options
        assert (users.array_field, users.date_field) == ("ardor_users", "last_seen")
        assert registry.get("giftz_sales").filter_options.array_field == "sales"

    def test_polygon_dataset_needs_a_client(self, ardor):
        registry = build_default_registry(ardor, None, make_config())
        assert "polygon_transfers" not in registry

    def test_giftz_dataset_needs_token_and_distributor(self, ardor):
        registry = build_default_registry(ardor, None, make_config(GIFTZ_TOKEN_ID=None))
        assert "giftz_sales" not in registry
        assert "active_users" in registry


class TestFetchers:
    @pytest.mark.asyncio
    async def test_trades_are_stamped_and_sorted(self, fetchers, ardor):
        ardor.gather_for_assets.return_value = [
            {"asset": "111", "timestamp": 100},
            {"asset": "222", "timestamp": 300},
            {"asset": "111", "timestamp": 200},
        ]
        result = await fetchers.trades()
        ardor.gather_for_assets.assert_awaited_once_with(ardor.get_trades, ["111", "222"], use_cache=False)
        assert [t["timestamp"] for t in result["trades"]] == [300, 200, 100]
        assert result["count"] == 3
        assert result["trades"][0]["timestampISO"] == "2018-01-01T00:05:00.000Z"

    @pytest.mark.asyncio
    async def test_burns_only_count_transfers_to_burn_account(self, fetchers, ardor):
        ardor.get_asset_transfers.return_value = [
            {"recipientRS": BURN_ACCOUNT, "quantityQNT": "2", "timestamp": 10},
            {"recipientRS": "ARDOR-OTHER", "quantityQNT": "5", "timestamp": 20},
            {"recipientRS": BURN_ACCOUNT, "quantityQNT": "3", "timestamp": 30},
        ]
        result = await fetchers.burns()
        ardor.get_asset_transfers.assert_awaited_once_with(recipient=BURN_ACCOUNT, use_cache=False)
        assert result["count"] == 2
        assert result["totalQuantityQNT"] == "5"
        assert [b["timestamp"] for b in result["burns"]] == [30, 10]

    @pytest.mark.asyncio
    async def test_polygon_transfers_use_unix_seconds(self, fetchers, polygon):
        polygon.get_token_transfers.return_value = [{"hash": "0x1", "timeStamp": "1718452800"}, {"hash": "0x2"}]
        result = await fetchers.polygon_transfers()
        first, second = result["transfers"]
        assert first["timestampISO"] == "2024-06-15T12:00:00.000Z"
        assert first["date"] == "2024-06-15"
        assert "timestampISO" not in second
        assert result["count"] == 2


GIFTZ_TRANSFERS = [
    {"senderRS": DISTRIBUTOR, "sender": DISTRIBUTOR_ID, "recipientRS": "ARDOR-BUYER", "recipient": "1",
     "quantityQNT": "3", "timestamp": 200, "assetTransferFullHash": "sale1"},
    {"sender": DISTRIBUTOR_ID, "recipientRS": "ARDOR-BUYER2", "quantityQNT": "1", "timestamp": 300,
     "assetTransferFullHash": "sale2"},
    {"senderRS": DISTRIBUTOR, "quantityQNT": "5", "timestamp": 250, "assetTransferFullHash": "board"},
    {"senderRS": DISTRIBUTOR, "quantityQNT": "7", "timestamp": 260, "assetTransferFullHash": "nomsg"},
    {"senderRS": DISTRIBUTOR, "quantityQNT": "9", "timestamp": 270, "assetTransferFullHash": "gone"},
    {"senderRS": DISTRIBUTOR, "quantityQNT": "2", "timestamp": 280},
    {"senderRS": "ARDOR-OTHER", "quantityQNT": "4", "timestamp": 400, "assetTransferFullHash": "resale"},
]

GIFTZ_TRANSACTIONS = {
    "sale1": {"attachment": {"message": "order 1"}},
    "sale2": {"attachment": {"message": '{"order": 2}'}},
    "board": {"attachment": {"message": '{"leaderboardEndBlock": 5}'}},
    "nomsg": {"attachment": {}},
}


async def giftz_transaction(full_hash, **_kwargs):
    if full_hash == "gone":
        raise ArdorAPIError("getTransaction", 5, "Unknown transaction")
    return GIFTZ_TRANSACTIONS[full_hash]


class TestGiftzSales:
    @pytest.mark.asyncio
    async def test_only_distributor_transfers_with_purchase_messages(self, fetchers, ardor):
        ardor.get_asset_transfers.return_value = GIFTZ_TRANSFERS
        ardor.get_transaction.side_effect = giftz_transaction

        result = await fetchers.giftz_sales()

        ardor.get_asset_transfers.assert_awaited_once_with(asset_id=GIFTZ_TOKEN, use_cache=False)
        assert [s["id"] for s in result["sales"]] == ["sale2", "sale1"]
        assert result["count"] == 2
        assert result["totalQuantity"] == 4
        sale = result["sales"][1]
        assert sale["buyer"] == "ARDOR-BUYER"
        assert sale["seller"] == DISTRIBUTOR
        assert sale["quantity"] == 3
        assert sale["type"] == "giftz"
        assert sale["timestampISO"] == "2018-01-01T00:03:20.000Z"
        looked_up = {c.args[0] for c in ardor.get_transaction.await_args_list}
        assert looked_up == {"sale1", "sale2", "board", "nomsg", "gone"}
        fetchers.logger.warning.assert_called_once()

    @pytest.mark.asyncio
    async def test_network_errors_fail_the_dataset(self, fetchers, ardor):
        ardor.get_asset_transfers.return_value = GIFTZ_TRANSFERS[:1]
        ardor.get_transaction.side_effect = ConnectionError("node unreachable")
        with pytest.raises(ConnectionError):
            await fetchers.giftz_sales()


class TestActiveUsers:
    TRADES = [
        {"buyerRS": "ARDOR-A", "sellerRS": "ARDOR-B", "timestamp": 100},
        {"buyerRS": "ARDOR-A", "sellerRS": "ARDOR-C", "timestamp": 300},
    ]
    TRANSFERS = [
        {"senderRS": "ARDOR-C", "recipientRS": BURN_ACCOUNT, "timestamp": 400},
        {"senderRS": "ARDOR-D", "recipientRS": "ARDOR-A"},
    ]

    def _upstream(self, ardor, trades, transfers):
        async def gather(fetch, asset_ids, **kwargs):
            assert kwargs == {"use_cache": False}
            return trades if fetch is ardor.get_trades else transfers
        ardor.gather_for_assets.side_effect = gather

    @pytest.mark.asyncio
    async def test_accounts_from_trades_and_transfers(self, fetchers, ardor):
        self._upstream(ardor, self.TRADES, self.TRANSFERS)
        result = await fetchers.active_users()

        assert result["count"] == 4
        assert [u["account"] for u in result["ardor_users"]] == ["ARDOR-C", "ARDOR-A", "ARDOR-B", "ARDOR-D"]
        assert result["ardor_users"][0] == {
            "account": "ARDOR-C",
            "trades": 1,
            "transfers": 1,
            "first_seen": "2018-01-01T00:05:00.000Z",
            "last_seen": "2018-01-01T00:06:40.000Z",
        }
        user_a = result["ardor_users"][1]
        assert (user_a["trades"], user_a["transfers"]) == (2, 1)
        assert result["ardor_users"][3]["last_seen"] is None

    @pytest.mark.asyncio
    async def test_period_filter_uses_last_seen(self, fetchers, ardor, ardor_registry_options, normalizer):
        recent = (NOW_MS - PLATFORM_EPOCH_MS) // 1000 - 3600
        trades = [{"buyerRS": "ARDOR-NEW", "sellerRS": "ARDOR-OLD", "timestamp": recent}]
        transfers = [{"senderRS": "ARDOR-OLD", "recipientRS": "ARDOR-GONE", "timestamp": 100}]
        self._upstream(ardor, trades, transfers)
        payload = await fetchers.active_users()

        filtered = PeriodFilter(normalizer).filter_payload(payload, "24h", ardor_registry_options)
        assert sorted(u["account"] for u in filtered["ardor_users"]) == ["ARDOR-NEW", "ARDOR-OLD"]
        assert filtered["count"] == 2


@pytest.fixture
def ardor_registry_options(ardor):
    return build_default_registry(ardor, None, make_config()).get("active_users").filter_options


@pytest.mark.asyncio
async def test_forced_refresh_reaches_the_node(tmp_path, logger, normalizer):
    request_cache = MemoryStore(name="requests", logger=logger)
    api = ArdorAPI(logger, "https://primary.example/nxt", request_cache=request_cache, request_ttl=300)
    api._fetch_json = AsyncMock(side_effect=[
        {"trades": [{"id": 1, "timestamp": 100}]},
        {"trades": [{"id": 1, "timestamp": 100}, {"id": 2, "timestamp": 200}]},
    ])
    fetchers = DashboardFetchers(api, None, ["111"], BURN_ACCOUNT, normalizer)
    store = PersistentStore(str(tmp_path / "storage"), logger=logger, normalizer=normalizer)
    facade = UnifiedCacheFacade(RefreshCoordinator(store, logger=logger, max_age_seconds=300),
                                PeriodFilter(normalizer, logger), logger=logger)

    first = await facade.get_cached_data("trades", "all", fetchers.trades)
    forced = await facade.get_cached_data("trades", "all", fetchers.trades, force_refresh=True)

    assert first["count"] == 1
    assert forced["count"] == 2
    assert api._fetch_json.await_count == 2
