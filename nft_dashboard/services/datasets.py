"""
Registry of the raw datasets the dashboard serves.

Each dataset pairs a cache key with the zero-argument fetcher that rebuilds the
complete dataset from upstream. Fetchers return envelopes of the form
``{<array>: [...], "count": n}``; the coordinator stamps ``timestamp``.
"""
import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, Iterator, List, Optional

from nft_dashboard.cache.period_filter import FilterOptions
from nft_dashboard.contracts.config import ConfigProtocol
from nft_dashboard.platforms.ardor import ArdorAPI, ArdorAPIError
from nft_dashboard.platforms.polygon import PolygonScanAPI
from nft_dashboard.utils.timestamps import TimestampNormalizer

DatasetFetcher = Callable[[], Awaitable[Dict[str, Any]]]


@dataclass(slots=True)
class DatasetSpec:
    name: str
    fetch_fn: DatasetFetcher
    filter_options: FilterOptions = field(default_factory=FilterOptions)
    warm_on_startup: bool = False
    required: bool = False
    description: str = ""


class DatasetRegistry:
    """Name -> DatasetSpec lookup in registration order."""

    def __init__(self):
        self._datasets: Dict[str, DatasetSpec] = {}

    def register(self, spec: DatasetSpec) -> DatasetSpec:
        if spec.name in self._datasets:
            raise ValueError(f"Dataset {spec.name} is already registered")
        self._datasets[spec.name] = spec
        return spec

    def get(self, name: str) -> DatasetSpec:
        """Raises KeyError for unknown names."""
        try:
            return self._datasets[name]
        except KeyError:
            raise KeyError(f"Unknown dataset: {name}") from None

    def names(self) -> List[str]:
        return list(self._datasets)

    def warmup(self) -> List[DatasetSpec]:
        return [spec for spec in self._datasets.values() if spec.warm_on_startup]

    def __contains__(self, name: object) -> bool:
        return name in self._datasets

    def __iter__(self) -> Iterator[DatasetSpec]:
        return iter(self._datasets.values())

    def __len__(self) -> int:
        return len(self._datasets)


def _stamp_platform_record(record: Dict[str, Any], normalizer: TimestampNormalizer) -> Dict[str, Any]:
    stamped = dict(record)
    instant = normalizer.normalize(record.get("timestamp"))
    if instant is not None:
        stamped["timestampISO"] = normalizer.to_iso_string(instant)
    return stamped


def _stamp_unix_record(record: Dict[str, Any], normalizer: TimestampNormalizer) -> Dict[str, Any]:
    # PolygonScan timeStamp is Unix seconds, which overlaps the platform-seconds range
    stamped = dict(record)
    try:
        seconds = int(record.get("timeStamp"))
    except (TypeError, ValueError):
        return stamped
    stamped["timestampISO"] = normalizer.to_iso_string(seconds * 1000)
    stamped["date"] = datetime.fromtimestamp(seconds, tz=timezone.utc).strftime("%Y-%m-%d")
    return stamped


class DashboardFetchers:
    """Fetchers that assemble whole datasets from the upstream clients.

    Every fetch rebuilds a dataset from scratch and bypasses the Ardor request
    cache, so forced and scheduled refreshes always reach the node.
    """

    def __init__(self, ardor: ArdorAPI, polygon: Optional[PolygonScanAPI],
                 token_ids: List[str], burn_account: str, normalizer: TimestampNormalizer,
                 giftz_token_id: Optional[str] = None, giftz_distributor: Optional[str] = None,
                 giftz_distributor_id: Optional[str] = None, logger: Optional[logging.Logger] = None):
        self.ardor = ardor
        self.polygon = polygon
        self.token_ids = token_ids
        self.burn_account = burn_account
        self.normalizer = normalizer
        self.giftz_token_id = giftz_token_id
        self.giftz_distributor = giftz_distributor
        self.giftz_distributor_id = giftz_distributor_id
        self.logger = logger or logging.getLogger(__name__)

    async def trades(self) -> Dict[str, Any]:
        records = await self.ardor.gather_for_assets(self.ardor.get_trades, self.token_ids, use_cache=False)
        trades = sorted((_stamp_platform_record(r, self.normalizer) for r in records),
                        key=lambda r: r.get("timestamp") or 0, reverse=True)
        return {"trades": trades, "count": len(trades)}

    async def burns(self) -> Dict[str, Any]:
        transfers = await self.ardor.get_asset_transfers(recipient=self.burn_account, use_cache=False)
        burns = [
            _stamp_platform_record(t, self.normalizer)
            for t in transfers
            if t.get("recipientRS") == self.burn_account
        ]
        burns.sort(key=lambda r: r.get("timestamp") or 0, reverse=True)
        total_quantity = sum(int(b.get("quantityQNT") or 0) for b in burns)
        return {"burns": burns, "count": len(burns), "totalQuantityQNT": str(total_quantity)}

    async def polygon_transfers(self) -> Dict[str, Any]:
        transfers = await self.polygon.get_token_transfers()
        stamped = [_stamp_unix_record(t, self.normalizer) for t in transfers]
        return {"transfers": stamped, "count": len(stamped)}

    def _from_distributor(self, transfer: Dict[str, Any]) -> bool:
        return (transfer.get("senderRS") == self.giftz_distributor
                or (self.giftz_distributor_id is not None and transfer.get("sender") == self.giftz_distributor_id))

    async def _giftz_sale(self, transfer: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        full_hash = transfer.get("assetTransferFullHash") or transfer.get("fullHash") or transfer.get("transaction")
        if not full_hash:
            return None
        try:
            transaction = await self.ardor.get_transaction(full_hash, include_prunable=True, use_cache=False)
        except ArdorAPIError as e:
            self.logger.warning(f"Skipping GIFTZ transfer {full_hash}: {e}")
            return None

        message = (transaction.get("attachment") or {}).get("message")
        # distributor payouts for leaderboards carry the end block and are not sales
        if not message or "leaderboardEndBlock" in str(message):
            return None

        sale = _stamp_platform_record(transfer, self.normalizer)
        return {
            "id": full_hash,
            "timestamp": sale.get("timestamp"),
            "timestampISO": sale.get("timestampISO"),
            "quantity": int(transfer.get("quantityQNT") or 0),
            "buyer": transfer.get("recipientRS"),
            "buyerId": transfer.get("recipient"),
            "seller": transfer.get("senderRS"),
            "sellerId": transfer.get("sender"),
            "type": "giftz",
            "message": message,
            "fullHash": full_hash,
        }

    async def giftz_sales(self) -> Dict[str, Any]:
        """GIFTZ transfers from the distributor that carry a purchase message."""
        transfers = await self.ardor.get_asset_transfers(asset_id=self.giftz_token_id, use_cache=False)
        candidates = [t for t in transfers if self._from_distributor(t)]
        processed = await asyncio.gather(*(self._giftz_sale(t) for t in candidates))
        sales = [sale for sale in processed if sale is not None]
        sales.sort(key=lambda s: s.get("timestamp") or 0, reverse=True)
        return {
            "sales": sales,
            "count": len(sales),
            "totalQuantity": sum(sale["quantity"] for sale in sales),
        }

    async def active_users(self) -> Dict[str, Any]:
        """Accounts that traded or moved a tracked card, with first and last activity."""
        trades, transfers = await asyncio.gather(
            self.ardor.gather_for_assets(self.ardor.get_trades, self.token_ids, use_cache=False),
            self.ardor.gather_for_assets(self.ardor.get_asset_transfers, self.token_ids, use_cache=False),
        )
        users: Dict[str, Dict[str, Any]] = {}

        def touch(account: Optional[str], instant: Optional[int], kind: str) -> None:
            if not account or account == self.burn_account:
                return
            user = users.setdefault(account, {"account": account, "first_ms": None, "last_ms": None,
                                              "trades": 0, "transfers": 0})
            user[kind] += 1
            if instant is not None:
                user["first_ms"] = instant if user["first_ms"] is None else min(user["first_ms"], instant)
                user["last_ms"] = instant if user["last_ms"] is None else max(user["last_ms"], instant)

        for trade in trades:
            instant = self.normalizer.normalize(trade.get("timestamp"))
            touch(trade.get("buyerRS"), instant, "trades")
            touch(trade.get("sellerRS"), instant, "trades")
        for transfer in transfers:
            instant = self.normalizer.normalize(transfer.get("timestamp"))
            touch(transfer.get("senderRS"), instant, "transfers")
            touch(transfer.get("recipientRS"), instant, "transfers")

        ardor_users = []
        for user in users.values():
            first_ms, last_ms = user.pop("first_ms"), user.pop("last_ms")
            user["first_seen"] = self.normalizer.to_iso_string(first_ms) if first_ms is not None else None
            user["last_seen"] = self.normalizer.to_iso_string(last_ms) if last_ms is not None else None
            ardor_users.append((last_ms or 0, user))
        ardor_users.sort(key=lambda pair: pair[0], reverse=True)
        return {"ardor_users": [user for _, user in ardor_users], "count": len(ardor_users)}


def build_default_registry(ardor: ArdorAPI, polygon: Optional[PolygonScanAPI], config: ConfigProtocol,
                           normalizer: Optional[TimestampNormalizer] = None) -> DatasetRegistry:
    """Register the Ardor datasets and, when a Polygon client exists, polygon_transfers."""
    normalizer = normalizer or TimestampNormalizer(platform_epoch_ms=config.ARDOR_PLATFORM_EPOCH_MS)
    fetchers = DashboardFetchers(
        ardor, polygon, config.ARDOR_TOKEN_IDS, config.ARDOR_BURN_ACCOUNT, normalizer,
        giftz_token_id=config.GIFTZ_TOKEN_ID, giftz_distributor=config.GIFTZ_DISTRIBUTOR,
        giftz_distributor_id=config.GIFTZ_DISTRIBUTOR_ID,
    )
    warm = set(config.WARMUP_DATASETS)
    required = set(config.REQUIRED_DATASETS)

    def add(name: str, fetch_fn: DatasetFetcher, filter_options: FilterOptions, description: str) -> None:
        registry.register(DatasetSpec(
            name=name,
            fetch_fn=fetch_fn,
            filter_options=filter_options,
            warm_on_startup=name in warm,
            required=name in required,
            description=description,
        ))

    registry = DatasetRegistry()
    add("trades", fetchers.trades, FilterOptions(array_field="trades"),
        "Asset exchange trades of the tracked cards")
    add("burns", fetchers.burns, FilterOptions(array_field="burns"),
        "Card transfers to the burn account")
    if config.GIFTZ_TOKEN_ID and config.GIFTZ_DISTRIBUTOR:
        add("giftz_sales", fetchers.giftz_sales, FilterOptions(array_field="sales"),
            "GIFTZ token sales by the distributor account")
    add("active_users", fetchers.active_users, FilterOptions(array_field="ardor_users", date_field="last_seen"),
        "Accounts active on the tracked cards, filtered by last activity")
    if polygon is not None:
        add("polygon_transfers", fetchers.polygon_transfers, FilterOptions(array_field="transfers"),
            "ERC-1155 transfers of the card contract on Polygon")
    return registry
