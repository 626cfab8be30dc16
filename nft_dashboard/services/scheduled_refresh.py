"""
Periodic background refresh of every registered dataset.
"""
import asyncio
from typing import Dict, Optional

from nft_dashboard.cache.errors import UpstreamFetchError
from nft_dashboard.cache.refresh_coordinator import EXPIRED_CACHE_FLAG
from nft_dashboard.cache.unified_cache import UnifiedCacheFacade
from nft_dashboard.services.datasets import DatasetRegistry


class ScheduledRefresher:
    """Force-refreshes all datasets every ``interval`` seconds.

    Refreshes go through the coordinator, so a run that coincides with a user
    request shares its fetch. A run that is still going when the next tick
    arrives causes that tick to be skipped.
    """

    def __init__(self, facade: UnifiedCacheFacade, registry: DatasetRegistry, interval: float, logger,
                 initial_delay: Optional[float] = None):
        self.facade = facade
        self.registry = registry
        self.interval = interval
        self.initial_delay = interval if initial_delay is None else initial_delay
        self.logger = logger
        self.refresh_task: Optional[asyncio.Task] = None
        self.is_running = False
        self._in_progress = False
        self.runs = 0
        self.skipped_runs = 0
        self.last_results: Dict[str, str] = {}

    def start(self) -> None:
        if self.refresh_task is not None and not self.refresh_task.done():
            return
        self.is_running = True
        self.refresh_task = asyncio.create_task(self._refresh_loop(), name="ScheduledDatasetRefresh")
        self.logger.info(f"Started scheduled dataset refresh (interval: {self.interval}s)")

    async def _refresh_loop(self) -> None:
        try:
            await asyncio.sleep(self.initial_delay)
            while self.is_running:
                try:
                    await self.run_once()
                except Exception as e:
                    self.logger.error(f"Error in scheduled dataset refresh: {e}")
                await asyncio.sleep(self.interval)
        except asyncio.CancelledError:
            self.logger.info("Scheduled dataset refresh cancelled")

    async def run_once(self) -> Dict[str, str]:
        """Refresh every dataset once; returns name -> "ok" | "stale" | "failed" | "skipped"."""
        if self._in_progress:
            self.skipped_runs += 1
            self.logger.debug("Previous scheduled refresh still running, skipping this run")
            return {name: "skipped" for name in self.registry.names()}

        self._in_progress = True
        results: Dict[str, str] = {}
        try:
            for spec in self.registry:
                try:
                    payload = await self.facade.refresh(spec.name, spec.fetch_fn)
                    results[spec.name] = "stale" if payload.get(EXPIRED_CACHE_FLAG) else "ok"
                except UpstreamFetchError as e:
                    results[spec.name] = "failed"
                    self.logger.warning(f"Scheduled refresh of {spec.name} failed: {e}")
            self.runs += 1
            self.last_results = results
            self.logger.debug(f"Scheduled refresh finished: {results}")
            return results
        finally:
            self._in_progress = False

    async def stop(self) -> None:
        self.is_running = False
        if self.refresh_task and not self.refresh_task.done():
            self.refresh_task.cancel()
            try:
                await self.refresh_task
            except asyncio.CancelledError:
                pass
        self.refresh_task = None
