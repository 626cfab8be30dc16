"""
Single-flight refresh of raw datasets.

For every dataset name at most one fetch runs at a time. Callers that arrive
while a fetch is in flight await the same task, so a scheduled refresh and a
user-triggered one collapse into a single upstream call. Successful results
are persisted as whole-dataset replacements; failed fetches fall back to the
last known copy, marked ``fromExpiredCache``.
"""
import asyncio
import inspect
import logging
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, Union

from nft_dashboard.cache.errors import UpstreamFetchError
from nft_dashboard.cache.persistent_store import CACHE_VERSION, CacheEntry, PersistentStore
from nft_dashboard.utils.timestamps import TimestampNormalizer

FetchFn = Callable[[], Union[Awaitable[Any], Any]]

EXPIRED_CACHE_FLAG = "fromExpiredCache"


class RefreshCoordinator:
    """Decides between serving a stored dataset and fetching it again."""

    def __init__(self,
                 store: PersistentStore,
                 logger: Optional[logging.Logger] = None,
                 max_age_seconds: Optional[float] = None,
                 fetch_timeout: Optional[float] = None,
                 normalizer: Optional[TimestampNormalizer] = None):
        self.store = store
        self.logger = logger or logging.getLogger(__name__)
        self.max_age_seconds = max_age_seconds
        self.fetch_timeout = fetch_timeout
        self.normalizer = normalizer or store.normalizer
        self._in_flight: Dict[str, asyncio.Task] = {}
        self._latest: Dict[str, CacheEntry] = {}
        self.fetch_count = 0
        self.fallback_count = 0

    # ------------------------------------------------------------------
    # state
    # ------------------------------------------------------------------

    def state(self, dataset_name: str) -> str:
        task = self._in_flight.get(dataset_name)
        return "fetching" if task is not None and not task.done() else "idle"

    def in_flight(self) -> List[str]:
        return [name for name, task in self._in_flight.items() if not task.done()]

    def invalidate(self, dataset_name: str) -> None:
        """Forget the in-memory copy; the next request re-reads or re-fetches."""
        self._latest.pop(dataset_name, None)

    def invalidate_all(self) -> None:
        self._latest.clear()

    def is_fresh(self, entry: CacheEntry, now_ms: Optional[int] = None) -> bool:
        now = self.normalizer.now_ms() if now_ms is None else now_ms
        if entry.timestamp_ms > now:
            return False
        if self.max_age_seconds is None:
            return True
        return (now - entry.timestamp_ms) <= self.max_age_seconds * 1000

    async def _load_entry(self, dataset_name: str) -> Optional[CacheEntry]:
        entry = self._latest.get(dataset_name)
        if entry is not None:
            return entry
        entry = await self.store.read_entry(dataset_name)
        if entry is not None and dataset_name not in self._latest:
            self._latest[dataset_name] = entry
        return self._latest.get(dataset_name, entry)

    # ------------------------------------------------------------------
    # public API
    # ------------------------------------------------------------------

    async def get_or_fetch(self, dataset_name: str, fetch_fn: FetchFn, force_refresh: bool = False) -> Dict[str, Any]:
        """Full, unfiltered dataset for ``dataset_name``.

        Args:
            dataset_name: Cache key of the raw dataset
            fetch_fn: Zero-argument callable returning the complete dataset (awaitable or plain)
            force_refresh: Skip the freshness check and fetch, unless a fetch is already running

        Returns:
            The dataset envelope. Fallback copies carry ``fromExpiredCache: True``.

        Raises:
            UpstreamFetchError: The fetch failed and no stored copy exists.
        """
        pending = self._in_flight.get(dataset_name)
        if pending is not None:
            return await asyncio.shield(pending)

        if not force_refresh:
            entry = await self._load_entry(dataset_name)
            if entry is not None and self.is_fresh(entry):
                return entry.payload
            # another caller may have started or finished a fetch while we were reading
            pending = self._in_flight.get(dataset_name)
            if pending is not None:
                return await asyncio.shield(pending)
            latest = self._latest.get(dataset_name)
            if latest is not None and latest is not entry and self.is_fresh(latest):
                return latest.payload

        return await asyncio.shield(self._launch(dataset_name, fetch_fn))

    def _launch(self, dataset_name: str, fetch_fn: FetchFn) -> asyncio.Task:
        task = asyncio.create_task(self._refresh(dataset_name, fetch_fn), name=f"refresh:{dataset_name}")
        self._in_flight[dataset_name] = task

        def _clear(done: asyncio.Task) -> None:
            if self._in_flight.get(dataset_name) is done:
                del self._in_flight[dataset_name]
            if not done.cancelled():
                # the exception is delivered to waiters; mark it retrieved for tasks nobody awaited
                done.exception()

        task.add_done_callback(_clear)
        return task

    async def _call_fetch(self, fetch_fn: FetchFn) -> Any:
        result = fetch_fn()
        if inspect.isawaitable(result):
            if self.fetch_timeout:
                return await asyncio.wait_for(result, timeout=self.fetch_timeout)
            return await result
        return result

    async def _refresh(self, dataset_name: str, fetch_fn: FetchFn) -> Dict[str, Any]:
        self.fetch_count += 1
        self.logger.debug(f"Fetching fresh data for {dataset_name}")
        try:
            result = await self._call_fetch(fetch_fn)
            if not isinstance(result, Mapping):
                raise UpstreamFetchError(
                    dataset_name,
                    message=f"Fetch for {dataset_name} returned {type(result).__name__}, expected an object",
                )
        except asyncio.CancelledError:
            raise
        except Exception as e:
            return await self._fallback(dataset_name, e)

        record = dict(result)
        now_ms = self.normalizer.now_ms()
        record["timestamp"] = self.normalizer.to_iso_string(now_ms)
        record.pop(EXPIRED_CACHE_FLAG, None)

        if not await self.store.write(dataset_name, record):
            self.logger.warning(f"Serving {dataset_name} without persisting it; it will not survive a restart")
        record["cacheVersion"] = CACHE_VERSION
        self._latest[dataset_name] = CacheEntry(
            key=dataset_name, payload=record, timestamp_ms=now_ms, dataset_version=CACHE_VERSION
        )
        self.logger.debug(f"Refreshed {dataset_name}")
        return record

    async def _fallback(self, dataset_name: str, error: Exception) -> Dict[str, Any]:
        if isinstance(error, asyncio.TimeoutError):
            self.logger.error(f"Fetching {dataset_name} timed out after {self.fetch_timeout}s")
        else:
            self.logger.error(f"Error fetching {dataset_name}: {error}")

        prior = await self._load_entry(dataset_name)
        if prior is not None and isinstance(prior.payload, Mapping):
            self.fallback_count += 1
            self.logger.warning(f"Using cached {dataset_name} as fallback after fetch failure")
            stale = dict(prior.payload)
            stale[EXPIRED_CACHE_FLAG] = True
            return stale

        if isinstance(error, UpstreamFetchError):
            raise error
        raise UpstreamFetchError(dataset_name, error) from error
