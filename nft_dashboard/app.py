import asyncio
from typing import Dict, List, Optional

from nft_dashboard.cache.errors import UpstreamFetchError
from nft_dashboard.cache.memory_store import MemoryStore
from nft_dashboard.cache.period_filter import PeriodFilter
from nft_dashboard.cache.persistent_store import PersistentStore
from nft_dashboard.cache.refresh_coordinator import EXPIRED_CACHE_FLAG, RefreshCoordinator
from nft_dashboard.cache.unified_cache import UnifiedCacheFacade
from nft_dashboard.contracts.config import ConfigProtocol
from nft_dashboard.dashboard.server import DashboardServer
from nft_dashboard.logger.logger import Logger
from nft_dashboard.platforms.ardor import ArdorAPI
from nft_dashboard.platforms.polygon import PolygonScanAPI
from nft_dashboard.services.datasets import DatasetRegistry, DatasetSpec, build_default_registry
from nft_dashboard.services.scheduled_refresh import ScheduledRefresher
from nft_dashboard.utils.timestamps import TimestampNormalizer


class StartupError(RuntimeError):
    """A required dataset has neither fresh nor cached data after warm-up."""


class DashboardApp:
    """Composition root: builds the cache stack, the upstream clients and the HTTP server."""

    def __init__(self, logger: Logger, config: ConfigProtocol):
        self.logger = logger
        self.config = config
        self.normalizer: Optional[TimestampNormalizer] = None
        self.request_cache: Optional[MemoryStore] = None
        self.view_cache: Optional[MemoryStore] = None
        self.store: Optional[PersistentStore] = None
        self.coordinator: Optional[RefreshCoordinator] = None
        self.facade: Optional[UnifiedCacheFacade] = None
        self.ardor: Optional[ArdorAPI] = None
        self.polygon: Optional[PolygonScanAPI] = None
        self.registry: Optional[DatasetRegistry] = None
        self.refresher: Optional[ScheduledRefresher] = None
        self.server: Optional[DashboardServer] = None
        self.warmup_results: Dict[str, str] = {}
        self._shutdown_done = False

    @property
    def memory_stores(self) -> List[MemoryStore]:
        return [store for store in (self.request_cache, self.view_cache) if store is not None]

    def _build_cache(self) -> None:
        cfg = self.config
        self.normalizer = TimestampNormalizer(platform_epoch_ms=cfg.ARDOR_PLATFORM_EPOCH_MS)
        self.request_cache = MemoryStore(
            name="requests", logger=self.logger, default_ttl=cfg.REQUEST_CACHE_TTL_SECONDS,
            max_items=cfg.MEMORY_MAX_ITEMS, sweep_interval=cfg.MEMORY_SWEEP_INTERVAL_SECONDS,
        )
        self.view_cache = MemoryStore(
            name="views", logger=self.logger, default_ttl=cfg.VIEW_CACHE_TTL_SECONDS,
            max_items=cfg.MEMORY_MAX_ITEMS, sweep_interval=cfg.MEMORY_SWEEP_INTERVAL_SECONDS,
        )
        self.store = PersistentStore(cfg.CACHE_STORAGE_DIR, logger=self.logger, normalizer=self.normalizer)
        self.coordinator = RefreshCoordinator(
            self.store, logger=self.logger, max_age_seconds=cfg.DATASET_MAX_AGE_SECONDS,
            fetch_timeout=cfg.FETCH_TIMEOUT_SECONDS, normalizer=self.normalizer,
        )
        self.facade = UnifiedCacheFacade(
            self.coordinator, PeriodFilter(self.normalizer, logger=self.logger), logger=self.logger,
            view_cache=self.view_cache, view_ttl=cfg.VIEW_CACHE_TTL_SECONDS,
        )

    def _build_clients(self) -> None:
        cfg = self.config
        self.ardor = ArdorAPI(
            self.logger, cfg.ARDOR_NODE_URL, cfg.ARDOR_FALLBACK_NODE_URL, chain_id=cfg.ARDOR_CHAIN_ID,
            request_cache=self.request_cache, request_ttl=cfg.REQUEST_CACHE_TTL_SECONDS,
            timeout=cfg.ARDOR_REQUEST_TIMEOUT,
        )
        self.polygon = PolygonScanAPI(
            self.logger, cfg.POLYGON_API_URL, cfg.POLYGON_CONTRACT_ADDRESS, api_key=cfg.POLYGONSCAN_API_KEY,
        )

    async def initialize(self) -> None:
        """Build every component, start the memory sweeps and warm the configured datasets.

        Raises:
            StartupError: A required dataset could be neither fetched nor loaded from disk.
        """
        self.logger.info("Initializing NFT dashboard backend...")
        self._build_cache()
        self._build_clients()
        if self.registry is None:
            self.registry = build_default_registry(self.ardor, self.polygon, self.config, self.normalizer)

        for store in self.memory_stores:
            await store.start()

        await self.warm_up()

        self.refresher = ScheduledRefresher(
            self.facade, self.registry, self.config.REFRESH_INTERVAL_SECONDS, self.logger
        )
        self.server = DashboardServer(
            self.facade, self.registry, self.config, self.logger, memory_stores=self.memory_stores,
            ardor=self.ardor, host=self.config.HOST, port=self.config.PORT,
        )
        self.logger.info(f"Registered datasets: {', '.join(self.registry.names())}")

    async def _warm_one(self, spec: DatasetSpec) -> str:
        try:
            payload = await self.coordinator.get_or_fetch(spec.name, spec.fetch_fn)
        except UpstreamFetchError as e:
            self.logger.error(f"Warm-up of {spec.name} failed: {e}")
            return "failed"
        if payload.get(EXPIRED_CACHE_FLAG):
            self.logger.warning(f"Warm-up of {spec.name} is serving expired data")
            return "stale"
        return "ok"

    async def warm_up(self) -> Dict[str, str]:
        specs = [spec for spec in self.registry if spec.warm_on_startup or spec.required]
        if not specs:
            return {}
        self.logger.info(f"Warming up datasets: {', '.join(spec.name for spec in specs)}")
        outcomes = await asyncio.gather(*(self._warm_one(spec) for spec in specs))
        self.warmup_results = dict(zip((spec.name for spec in specs), outcomes))

        missing = [spec.name for spec, outcome in zip(specs, outcomes) if spec.required and outcome == "failed"]
        if missing:
            raise StartupError(f"Required datasets unavailable: {', '.join(missing)}")
        return self.warmup_results

    async def run(self) -> None:
        """Serve the API until cancelled."""
        if self.config.SCHEDULER_ENABLED:
            self.refresher.start()
        server_task = await self.server.start()
        self.logger.info(f"Serving dashboard API on {self.config.HOST}:{self.config.PORT}")
        await server_task

    async def shutdown(self) -> None:
        if self._shutdown_done:
            return
        self._shutdown_done = True
        self.logger.info("Shutting down gracefully...")
        if self.refresher:
            await self.refresher.stop()
        if self.server:
            await self.server.stop()
        for store in self.memory_stores:
            await store.stop()
        for client in (self.ardor, self.polygon):
            if client:
                await client.close()
        self.logger.info("Shutdown complete")
