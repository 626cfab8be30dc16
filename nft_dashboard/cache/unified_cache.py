"""
Single call surface for period-filtered dataset views.

The facade asks the refresh coordinator for the full raw dataset, projects it
onto the requested rolling window and stamps the result. Filtered views can be
memoized for a few seconds in a MemoryStore; the raw dataset itself always
lives in the PersistentStore.
"""
import logging
from typing import Any, Dict, List, Mapping, Optional, Union

from nft_dashboard.cache.memory_store import MemoryStore
from nft_dashboard.cache.period_filter import FilterOptions, PeriodFilter
from nft_dashboard.cache.refresh_coordinator import EXPIRED_CACHE_FLAG, FetchFn, RefreshCoordinator
from nft_dashboard.utils.timestamps import parse_period

VIEW_KEY_PREFIX = "view:"


class UnifiedCacheFacade:
    """Combines dataset retrieval and period projection."""

    def __init__(self,
                 coordinator: RefreshCoordinator,
                 period_filter: PeriodFilter,
                 logger: Optional[logging.Logger] = None,
                 view_cache: Optional[MemoryStore] = None,
                 view_ttl: Optional[float] = 15):
        self.coordinator = coordinator
        self.period_filter = period_filter
        self.logger = logger or logging.getLogger(__name__)
        self.view_cache = view_cache
        self.view_ttl = view_ttl

    @property
    def store(self):
        return self.coordinator.store

    @property
    def normalizer(self):
        return self.period_filter.normalizer

    @staticmethod
    def _view_key(dataset_name: str, period: str, options: FilterOptions, source_timestamp: Any) -> str:
        return f"{VIEW_KEY_PREFIX}{dataset_name}:{period}:{options.cache_key()}:{source_timestamp}"

    async def get_cached_data(self,
                              dataset_name: str,
                              period: Optional[str],
                              fetch_fn: FetchFn,
                              force_refresh: bool = False,
                              filter_options: Union[FilterOptions, Mapping[str, Any], None] = None,
                              now_ms: Optional[int] = None) -> Dict[str, Any]:
        """Dataset ``dataset_name`` filtered to ``period`` and stamped with query metadata.

        Rolling windows end at the wall clock when the view is built. With a view
        cache, a memoized 24h/7d/30d view is reused for up to ``view_ttl``
        seconds, so its window can trail the current time by that much. Passing
        ``now_ms`` or ``force_refresh`` always builds a fresh view.

        Args:
            dataset_name: Raw dataset cache key (e.g. "trades")
            period: One of 24h, 7d, 30d, all
            fetch_fn: Zero-argument callable returning the complete dataset
            force_refresh: Fetch from upstream even when the stored copy is fresh
            filter_options: Field-name hints (timestamp, date, ISO date and array fields)
            now_ms: End of the rolling window; defaults to the wall clock at query time

        Raises:
            InvalidPeriodError: Unknown period token.
            UpstreamFetchError: The fetch failed and nothing was cached.
        """
        token = parse_period(period)
        options = FilterOptions.coerce(filter_options)

        payload = await self.coordinator.get_or_fetch(dataset_name, fetch_fn, force_refresh)
        source_timestamp = payload.get("timestamp")
        from_expired = bool(payload.get(EXPIRED_CACHE_FLAG))

        use_view_cache = (
            self.view_cache is not None and self.view_ttl
            and now_ms is None and not force_refresh and not from_expired and token != "all"
        )
        view_key = self._view_key(dataset_name, token, options, source_timestamp)
        view = self.view_cache.get(view_key) if use_view_cache else None
        if view is None:
            view = self.period_filter.filter_payload(payload, token, options, now_ms, label=dataset_name)
            if use_view_cache:
                self.view_cache.set(view_key, view, self.view_ttl)

        result = dict(view)
        result["period"] = token
        result["cachedAt"] = source_timestamp
        result["timestamp"] = self.normalizer.now_iso()
        if from_expired:
            result[EXPIRED_CACHE_FLAG] = True
        return result

    async def refresh(self, dataset_name: str, fetch_fn: FetchFn) -> Dict[str, Any]:
        """Force a refresh of the raw dataset without projecting it."""
        return await self.coordinator.get_or_fetch(dataset_name, fetch_fn, force_refresh=True)

    # ------------------------------------------------------------------
    # administration
    # ------------------------------------------------------------------

    async def list_datasets(self) -> List[Dict[str, Any]]:
        entries = await self.store.list()
        for entry in entries:
            entry["state"] = self.coordinator.state(entry["key"])
        return entries

    def _drop_views(self, dataset_name: Optional[str] = None) -> int:
        if self.view_cache is None:
            return 0
        prefix = VIEW_KEY_PREFIX if dataset_name is None else f"{VIEW_KEY_PREFIX}{dataset_name}:"
        return self.view_cache.delete_prefix(prefix)

    async def delete_dataset(self, dataset_name: str) -> bool:
        """Remove the persisted entry and every derived copy of ``dataset_name``."""
        deleted = await self.store.delete(dataset_name)
        self.coordinator.invalidate(dataset_name)
        self._drop_views(dataset_name)
        self.logger.info(f"Cache for {dataset_name} {'deleted' if deleted else 'was not present'}")
        return deleted

    async def clear_all(self) -> Dict[str, int]:
        result = await self.store.clear()
        self.coordinator.invalidate_all()
        result["views_dropped"] = self._drop_views()
        return result

    def stats(self, extra_stores: Optional[List[MemoryStore]] = None) -> Dict[str, Any]:
        stores = [self.view_cache] if self.view_cache is not None else []
        stores.extend(extra_stores or [])
        return {
            "memory_caches": {store.name: store.stats() for store in stores},
            "fail_open": self.period_filter.fail_open_counter.snapshot(),
            "refresh": {
                "in_flight": self.coordinator.in_flight(),
                "fetches": self.coordinator.fetch_count,
                "expired_cache_fallbacks": self.coordinator.fallback_count,
                "max_age_seconds": self.coordinator.max_age_seconds,
            },
        }
