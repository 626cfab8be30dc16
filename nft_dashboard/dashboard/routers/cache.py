"""Router for cache inspection and administration."""
from typing import Any, Dict, List, Optional

from fastapi import APIRouter
from fastapi.responses import JSONResponse

from nft_dashboard.cache.errors import InvalidCacheKeyError
from nft_dashboard.cache.memory_store import MemoryStore
from nft_dashboard.cache.unified_cache import UnifiedCacheFacade


class CacheRouter:
    """Handles endpoints for listing, inspecting and clearing caches."""

    def __init__(self, facade: UnifiedCacheFacade, logger, memory_stores: Optional[List[MemoryStore]] = None):
        self.router = APIRouter(prefix="/api/cache", tags=["cache"])
        self.facade = facade
        self.logger = logger
        self.memory_stores = memory_stores or []

        self.router.add_api_route("/status", self.get_status, methods=["GET"])
        self.router.add_api_route("/stats", self.get_stats, methods=["GET"])
        self.router.add_api_route("/clear", self.clear_all, methods=["POST"])
        self.router.add_api_route("/{key}", self.delete_entry, methods=["DELETE"])

    async def get_status(self) -> Dict[str, Any]:
        """Every persisted dataset with size, record count and refresh state."""
        datasets = await self.facade.list_datasets()
        return {
            "datasets": datasets,
            "count": len(datasets),
            "in_flight": self.facade.coordinator.in_flight(),
            "timestamp": self.facade.normalizer.now_iso(),
        }

    async def get_stats(self) -> Dict[str, Any]:
        stats = self.facade.stats(extra_stores=self.memory_stores)
        stats["timestamp"] = self.facade.normalizer.now_iso()
        return stats

    async def delete_entry(self, key: str):
        try:
            deleted = await self.facade.delete_dataset(key)
        except InvalidCacheKeyError as e:
            return JSONResponse(status_code=400, content={"error": str(e)})
        if not deleted:
            return JSONResponse(status_code=404, content={"success": False, "error": f"No cache entry named {key}"})
        return {"success": True, "key": key}

    async def clear_all(self) -> Dict[str, Any]:
        result = await self.facade.clear_all()
        for store in self.memory_stores:
            result[f"{store.name}_cleared"] = store.clear()
        self.logger.info(f"Cleared all caches: {result}")
        return {"success": True, **result}
