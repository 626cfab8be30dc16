"""Router for period-filtered dataset views and the activity chart."""
from typing import Any, Dict, Optional

from fastapi import APIRouter
from fastapi.responses import JSONResponse

from nft_dashboard.cache.errors import UpstreamFetchError
from nft_dashboard.cache.refresh_coordinator import EXPIRED_CACHE_FLAG
from nft_dashboard.cache.unified_cache import UnifiedCacheFacade
from nft_dashboard.services.aggregation import build_activity
from nft_dashboard.services.datasets import DatasetRegistry
from nft_dashboard.utils.serialize import serialize_for_json


class DataRouter:
    """Serves datasets through the unified cache."""

    def __init__(self, facade: UnifiedCacheFacade, registry: DatasetRegistry, logger):
        self.router = APIRouter(prefix="/api", tags=["data"])
        self.facade = facade
        self.registry = registry
        self.logger = logger

        self.router.add_api_route("/data/{dataset}", self.get_dataset, methods=["GET"])
        self.router.add_api_route("/activity", self.get_activity, methods=["GET"])

    async def get_dataset(self, dataset: str, period: Optional[str] = None, refresh: bool = False):
        """Dataset filtered to ``period`` (24h, 7d, 30d, all)."""
        if dataset not in self.registry:
            return JSONResponse(status_code=404, content={"error": f"Unknown dataset: {dataset}"})
        spec = self.registry.get(dataset)
        try:
            result = await self.facade.get_cached_data(
                dataset, period, spec.fetch_fn, force_refresh=refresh, filter_options=spec.filter_options
            )
        except UpstreamFetchError as e:
            return JSONResponse(status_code=502, content={"error": str(e)})
        except ValueError as e:
            return JSONResponse(status_code=400, content={"error": str(e)})
        return serialize_for_json(result)

    async def get_activity(self, period: Optional[str] = "30d") -> Any:
        """Per-dataset record counts bucketed by day, or by month for long ``all`` ranges."""
        views: Dict[str, Any] = {}
        errors: Dict[str, str] = {}
        stale = []
        try:
            for spec in self.registry:
                try:
                    view = await self.facade.get_cached_data(
                        spec.name, period, spec.fetch_fn, filter_options=spec.filter_options
                    )
                except UpstreamFetchError as e:
                    errors[spec.name] = str(e)
                    continue
                if view.get(EXPIRED_CACHE_FLAG):
                    stale.append(spec.name)
                records = view.get(spec.filter_options.array_field) or []
                views[spec.name] = (records, spec.filter_options)
            activity = build_activity(views, period, self.facade.period_filter)
        except ValueError as e:
            return JSONResponse(status_code=400, content={"error": str(e)})

        if errors and not views:
            return JSONResponse(status_code=502, content={"error": "No dataset could be loaded", "errors": errors})
        activity["errors"] = errors
        activity["stale"] = stale
        return activity
