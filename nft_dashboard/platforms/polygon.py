from typing import Any, Dict, List, Optional

import aiohttp

from nft_dashboard.logger.logger import Logger
from nft_dashboard.utils.decorators import retry_api_call, retry_async


class PolygonScanError(Exception):
    """PolygonScan answered with status "0" for a reason other than an empty result."""


class PolygonScanAPI:
    """
    PolygonScan client for ERC-1155 transfers of the game's card contract.
    """
    NO_RESULT_MESSAGES = ("no transactions found", "no records found")

    def __init__(self,
                 logger: Logger,
                 api_url: str,
                 contract_address: str,
                 api_key: Optional[str] = None,
                 timeout: float = 30) -> None:
        self.logger = logger
        self.api_url = api_url
        self.contract_address = contract_address
        self.api_key = api_key
        self.timeout = timeout
        self.session: Optional[aiohttp.ClientSession] = None

    def _ensure_session(self) -> aiohttp.ClientSession:
        if self.session is None or self.session.closed:
            self.session = aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=self.timeout))
        return self.session

    async def close(self) -> None:
        if self.session:
            try:
                await self.session.close()
            except Exception as e:
                self.logger.error(f"Error closing PolygonScanAPI session: {e}")
            finally:
                self.session = None

    @retry_api_call(max_retries=3, initial_delay=1)
    @retry_async(max_retries=3, initial_delay=1, backoff_factor=2, max_delay=10)
    async def _call(self, params: Dict[str, Any]) -> Dict[str, Any]:
        query = dict(params)
        if self.api_key:
            query["apikey"] = self.api_key
        session = self._ensure_session()
        async with session.get(self.api_url, params=query) as resp:
            resp.raise_for_status()
            return await resp.json(content_type=None)

    async def get_token_transfers(self, start_block: int = 0, end_block: int = 99999999,
                                  sort: str = "desc") -> List[Dict[str, Any]]:
        """ERC-1155 transfers of the configured contract, newest first by default."""
        data = await self._call({
            "module": "account",
            "action": "token1155tx",
            "contractaddress": self.contract_address,
            "startblock": start_block,
            "endblock": end_block,
            "sort": sort,
        })
        if str(data.get("status")) == "1":
            return list(data.get("result") or [])

        message = str(data.get("message", ""))
        if message.lower() in self.NO_RESULT_MESSAGES:
            return []
        raise PolygonScanError(f"token1155tx failed: {message} {data.get('result', '')}".strip())
