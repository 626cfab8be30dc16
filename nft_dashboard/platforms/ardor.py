import asyncio
import json
import time
from typing import Any, Callable, Dict, List, Optional

import aiohttp

from nft_dashboard.cache.memory_store import MemoryStore
from nft_dashboard.logger.logger import Logger
from nft_dashboard.utils.decorators import NETWORK_EXCEPTIONS, is_retryable_status, retry_async


class ArdorAPIError(Exception):
    """The node answered with an errorCode payload."""

    def __init__(self, request_type: str, error_code: Any, description: str):
        self.request_type = request_type
        self.error_code = error_code
        self.description = description
        super().__init__(f"Ardor {request_type} failed with error {error_code}: {description}")


class ArdorAPI:
    """
    Client for an Ardor node's /nxt HTTP API.

    Requests go to the primary node until it fails at the network level or with
    a 5xx; the client then switches to the fallback node and probes the primary
    again every ``check_interval`` seconds. Identical GET requests are answered
    from the ``requests`` MemoryStore for ``request_ttl`` seconds unless the
    caller passes ``use_cache=False``, as dataset rebuilds do.
    """
    PAGE_SIZE = 100

    def __init__(self,
                 logger: Logger,
                 node_url: str,
                 fallback_node_url: Optional[str] = None,
                 chain_id: int = 2,
                 request_cache: Optional[MemoryStore] = None,
                 request_ttl: float = 30,
                 timeout: float = 30,
                 check_interval: float = 60,
                 clock: Callable[[], float] = time.monotonic) -> None:
        self.logger = logger
        self.primary_url = node_url
        self.fallback_url = fallback_node_url if fallback_node_url != node_url else None
        self.current_url = node_url
        self.chain_id = chain_id
        self.request_cache = request_cache
        self.request_ttl = request_ttl
        self.timeout = timeout
        self.check_interval = check_interval
        self._clock = clock
        self.using_fallback = False
        self.last_check = 0.0
        self.session: Optional[aiohttp.ClientSession] = None

    async def __aenter__(self):
        self._ensure_session()
        return self

    async def __aexit__(self, _exc_type, _exc_val, _exc_tb):
        await self.close()

    def _ensure_session(self) -> aiohttp.ClientSession:
        if self.session is None or self.session.closed:
            self.session = aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=self.timeout))
        return self.session

    async def close(self) -> None:
        if self.session:
            try:
                self.logger.debug("Closing ArdorAPI session")
                await self.session.close()
            except Exception as e:
                self.logger.error(f"Error closing ArdorAPI session: {e}")
            finally:
                self.session = None

    # ------------------------------------------------------------------
    # node selection
    # ------------------------------------------------------------------

    def node_status(self) -> Dict[str, Any]:
        return {
            "current_url": self.current_url,
            "primary_url": self.primary_url,
            "fallback_url": self.fallback_url,
            "using_fallback": self.using_fallback,
            "primary_healthy": not self.using_fallback,
        }

    def _switch_to_fallback(self) -> bool:
        if self.using_fallback or not self.fallback_url:
            return False
        self.logger.warning(f"Switching from primary node ({self.primary_url}) to fallback node ({self.fallback_url})")
        self.current_url = self.fallback_url
        self.using_fallback = True
        self.last_check = self._clock()
        return True

    def _switch_to_primary(self) -> None:
        if self.using_fallback:
            self.logger.info("Primary node is healthy again, switching back from fallback")
            self.current_url = self.primary_url
            self.using_fallback = False

    async def _check_primary_health(self) -> None:
        if not self.using_fallback or self._clock() - self.last_check < self.check_interval:
            return
        try:
            data = await self._fetch_json(self.primary_url, {"requestType": "getBlockchainStatus"}, timeout=2)
            if "errorCode" not in data:
                self._switch_to_primary()
                return
        except (aiohttp.ClientError, *NETWORK_EXCEPTIONS) as e:
            self.logger.debug(f"Primary node still unavailable: {e}")
        self.last_check = self._clock()

    # ------------------------------------------------------------------
    # requests
    # ------------------------------------------------------------------

    async def _fetch_json(self, url: str, params: Dict[str, Any], timeout: Optional[float] = None) -> Dict[str, Any]:
        session = self._ensure_session()
        request_timeout = aiohttp.ClientTimeout(total=timeout) if timeout else None
        async with session.get(url, params=params, timeout=request_timeout) as resp:
            resp.raise_for_status()
            return await resp.json(content_type=None)

    @staticmethod
    def _is_node_failure(e: Exception) -> bool:
        return isinstance(e, NETWORK_EXCEPTIONS) or (is_retryable_status(e) and e.status >= 500)

    @retry_async(max_retries=3, initial_delay=1, backoff_factor=2, max_delay=10)
    async def _get(self, params: Dict[str, Any]) -> Dict[str, Any]:
        await self._check_primary_health()
        try:
            return await self._fetch_json(self.current_url, params)
        except (aiohttp.ClientError, *NETWORK_EXCEPTIONS) as e:
            if self._is_node_failure(e) and self._switch_to_fallback():
                return await self._fetch_json(self.current_url, params)
            raise

    @staticmethod
    def _request_key(params: Dict[str, Any]) -> str:
        return json.dumps(params, sort_keys=True, default=str)

    async def request(self, request_type: str, params: Optional[Dict[str, Any]] = None,
                      use_cache: bool = True, with_chain: bool = True) -> Dict[str, Any]:
        """Perform one API call; raises ArdorAPIError when the node reports an error."""
        query = {"requestType": request_type}
        if with_chain:
            query["chain"] = self.chain_id
        query.update({k: v for k, v in (params or {}).items() if v is not None})

        cache_key = self._request_key(query)
        if use_cache and self.request_cache is not None:
            cached = self.request_cache.get(cache_key)
            if cached is not None:
                return cached

        data = await self._get(query)
        if not isinstance(data, dict):
            raise ArdorAPIError(request_type, None, f"unexpected response type {type(data).__name__}")
        if "errorCode" in data:
            raise ArdorAPIError(request_type, data.get("errorCode"), data.get("errorDescription", "unknown error"))

        if use_cache and self.request_cache is not None:
            self.request_cache.set(cache_key, data, self.request_ttl)
        return data

    async def get_paged(self, request_type: str, array_key: str, params: Optional[Dict[str, Any]] = None,
                        page_size: int = PAGE_SIZE, max_pages: int = 50, **kwargs) -> List[Dict[str, Any]]:
        """Walk firstIndex/lastIndex pages until a short page or ``max_pages``."""
        items: List[Dict[str, Any]] = []
        for page in range(max_pages):
            first = page * page_size
            page_params = dict(params or {}, firstIndex=first, lastIndex=first + page_size - 1)
            data = await self.request(request_type, page_params, **kwargs)
            batch = data.get(array_key) or []
            items.extend(batch)
            if len(batch) < page_size:
                break
        else:
            self.logger.warning(f"{request_type} stopped after {max_pages} pages ({len(items)} items)")
        return items

    async def get_blockchain_status(self) -> Dict[str, Any]:
        return await self.request("getBlockchainStatus", use_cache=False, with_chain=False)

    async def get_asset(self, asset_id: str) -> Dict[str, Any]:
        return await self.request("getAsset", {"asset": asset_id}, with_chain=False)

    async def get_trades(self, asset_id: str, max_pages: int = 50, use_cache: bool = True) -> List[Dict[str, Any]]:
        return await self.get_paged("getTrades", "trades", {"asset": asset_id, "includeAssetInfo": "true"},
                                    max_pages=max_pages, use_cache=use_cache)

    async def get_asset_transfers(self, asset_id: Optional[str] = None, recipient: Optional[str] = None,
                                  max_pages: int = 50, use_cache: bool = True) -> List[Dict[str, Any]]:
        if asset_id is None and recipient is None:
            raise ValueError("get_asset_transfers needs an asset or a recipient")
        params = {"asset": asset_id, "account": recipient, "includeAssetInfo": "true"}
        return await self.get_paged("getAssetTransfers", "transfers", params, max_pages=max_pages, use_cache=use_cache)

    async def get_transaction(self, full_hash: str, include_prunable: bool = False,
                              use_cache: bool = True) -> Dict[str, Any]:
        params = {"fullHash": full_hash, "includePrunable": "true" if include_prunable else None}
        return await self.request("getTransaction", params, use_cache=use_cache)

    async def gather_for_assets(self, fetch: Callable[..., Any], asset_ids: List[str],
                                **kwargs) -> List[Dict[str, Any]]:
        """Run ``fetch`` for every asset concurrently; one failing asset fails the batch."""
        results = await asyncio.gather(*(fetch(asset_id, **kwargs) for asset_id in asset_ids))
        merged: List[Dict[str, Any]] = []
        for batch in results:
            merged.extend(batch)
        return merged
