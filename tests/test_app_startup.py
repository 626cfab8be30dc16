import asyncio
from types import SimpleNamespace
from unittest.mock import AsyncMock

import pytest
import pytest_asyncio

from nft_dashboard.app import DashboardApp, StartupError
from nft_dashboard.cache.period_filter import FilterOptions
from nft_dashboard.cache.persistent_store import PersistentStore
from nft_dashboard.services.datasets import DatasetRegistry, DatasetSpec


def make_config(tmp_path, **overrides):
    values = {
        "ARDOR_PLATFORM_EPOCH_MS": 1514764800000,
        "ARDOR_NODE_URL": "http://localhost:27876/nxt",
        "ARDOR_FALLBACK_NODE_URL": None,
        "ARDOR_CHAIN_ID": 2,
        "ARDOR_REQUEST_TIMEOUT": 30.0,
        "POLYGON_API_URL": "https://api.polygonscan.com/api",
        "POLYGON_CONTRACT_ADDRESS": "0xabc",
        "POLYGONSCAN_API_KEY": None,
        "CACHE_STORAGE_DIR": str(tmp_path / "storage"),
        "DATASET_MAX_AGE_SECONDS": 300.0,
        "FETCH_TIMEOUT_SECONDS": 5.0,
        "MEMORY_MAX_ITEMS": 100,
        "MEMORY_SWEEP_INTERVAL_SECONDS": 900.0,
        "REQUEST_CACHE_TTL_SECONDS": 300.0,
        "VIEW_CACHE_TTL_SECONDS": 15.0,
        "REFRESH_INTERVAL_SECONDS": 180.0,
        "SCHEDULER_ENABLED": False,
        "HOST": "127.0.0.1",
        "PORT": 3999,
        "ENABLE_CORS": False,
        "CORS_ORIGINS": [],
        "RATE_LIMIT_PER_MINUTE": 0,
    }
    values.update(overrides)
    return SimpleNamespace(**values)


async def healthy():
    return {"trades": [{"id": 1}], "count": 1}


async def broken():
    raise ConnectionError("node unreachable")


def make_registry(*specs):
    registry = DatasetRegistry()
    for spec in specs:
        registry.register(spec)
    return registry


@pytest_asyncio.fixture
async def app_factory(tmp_path, logger):
    apps = []

    def factory(registry, **overrides):
        app = DashboardApp(logger, make_config(tmp_path, **overrides))
        app.registry = registry
        apps.append(app)
        return app

    yield factory
    for app in apps:
        await app.shutdown()


@pytest.mark.asyncio
async def test_initialize_warms_datasets(app_factory):
    registry = make_registry(
        DatasetSpec(name="trades", fetch_fn=healthy, filter_options=FilterOptions(array_field="trades"),
                    warm_on_startup=True),
        DatasetSpec(name="burns", fetch_fn=broken),
    )
    app = app_factory(registry)
    await app.initialize()
    assert app.warmup_results == {"trades": "ok"}
    assert (await app.store.read("trades"))["count"] == 1
    assert app.server is not None
    assert app.refresher.interval == 180.0
    assert all(store.running for store in app.memory_stores)


@pytest.mark.asyncio
async def test_optional_dataset_failure_does_not_block_startup(app_factory, logger):
    app = app_factory(make_registry(DatasetSpec(name="burns", fetch_fn=broken, warm_on_startup=True)))
    await app.initialize()
    assert app.warmup_results == {"burns": "failed"}
    logger.error.assert_called()


@pytest.mark.asyncio
async def test_required_dataset_failure_raises(app_factory):
    app = app_factory(make_registry(
        DatasetSpec(name="trades", fetch_fn=broken, required=True),
        DatasetSpec(name="burns", fetch_fn=healthy, warm_on_startup=True),
    ))
    with pytest.raises(StartupError, match="trades"):
        await app.initialize()
    assert app.warmup_results == {"trades": "failed", "burns": "ok"}


@pytest.mark.asyncio
async def test_required_dataset_served_from_disk_is_enough(app_factory, tmp_path):
    store = PersistentStore(str(tmp_path / "storage"))
    await store.write("trades", {"trades": [{"id": 1}], "count": 1})

    app = app_factory(make_registry(DatasetSpec(name="trades", fetch_fn=broken, required=True)),
                      DATASET_MAX_AGE_SECONDS=None)
    await app.initialize()
    assert app.warmup_results == {"trades": "ok"}


@pytest.mark.asyncio
async def test_stale_copy_counts_as_warm(app_factory, tmp_path):
    store = PersistentStore(str(tmp_path / "storage"))
    await store.write("trades", {"trades": [{"id": 1}], "count": 1, "timestamp": "2020-01-01T00:00:00.000Z"})

    app = app_factory(make_registry(DatasetSpec(name="trades", fetch_fn=broken, required=True)))
    await app.initialize()
    assert app.warmup_results == {"trades": "stale"}


@pytest.mark.asyncio
async def test_run_starts_scheduler_and_server(app_factory):
    app = app_factory(make_registry(), SCHEDULER_ENABLED=True)
    await app.initialize()
    started = []

    async def fake_start():
        started.append(True)
        return asyncio.create_task(asyncio.sleep(0))

    app.server.start = fake_start
    app.refresher.start = lambda: started.append("scheduler")
    await app.run()
    assert started == ["scheduler", True]


@pytest.mark.asyncio
async def test_shutdown_is_idempotent(app_factory):
    app = app_factory(make_registry())
    await app.initialize()
    app.ardor.close = AsyncMock()
    await app.shutdown()
    await app.shutdown()
    app.ardor.close.assert_awaited_once()
    assert not any(store.running for store in app.memory_stores)