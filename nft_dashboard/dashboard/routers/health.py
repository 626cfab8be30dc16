"""Router for the health check."""
import time
from typing import Any, Dict, Optional

from fastapi import APIRouter

from nft_dashboard.cache.unified_cache import UnifiedCacheFacade
from nft_dashboard.platforms.ardor import ArdorAPI
from nft_dashboard.services.datasets import DatasetRegistry


class HealthRouter:
    def __init__(self, facade: UnifiedCacheFacade, registry: DatasetRegistry, logger,
                 ardor: Optional[ArdorAPI] = None):
        self.router = APIRouter(prefix="/api", tags=["health"])
        self.facade = facade
        self.registry = registry
        self.logger = logger
        self.ardor = ardor
        self.started_at = time.monotonic()

        self.router.add_api_route("/health", self.get_health, methods=["GET"])

    async def get_health(self) -> Dict[str, Any]:
        """Node status, per-dataset state and readiness (every required dataset has data)."""
        stored = {entry["key"]: entry for entry in await self.facade.list_datasets()}
        datasets = {}
        for spec in self.registry:
            entry = stored.get(spec.name)
            datasets[spec.name] = {
                "cached": entry is not None,
                "state": self.facade.coordinator.state(spec.name),
                "cached_at": entry.get("timestamp") if entry else None,
                "record_count": entry.get("record_count") if entry else 0,
                "required": spec.required,
            }
        ready = all(info["cached"] for info in datasets.values() if info["required"])
        return {
            "status": "ok" if ready else "degraded",
            "ready": ready,
            "uptime_seconds": round(time.monotonic() - self.started_at, 1),
            "node": self.ardor.node_status() if self.ardor else None,
            "datasets": datasets,
            "timestamp": self.facade.normalizer.now_iso(),
        }
