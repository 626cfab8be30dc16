"""
Durable JSON store holding one raw dataset per key.

Each key maps to ``<storage_dir>/<key>.json``. Entries are replaced wholesale
on every successful refresh and never expire by themselves; staleness is judged
by the caller. Storage failures degrade to cache misses instead of surfacing
to the request path.
"""
import asyncio
import json
import logging
import os
import re
import tempfile
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

from nft_dashboard.cache.errors import InvalidCacheKeyError, StorageReadError, StorageWriteError
from nft_dashboard.utils.serialize import serialize_for_json
from nft_dashboard.utils.timestamps import TimestampNormalizer

CACHE_VERSION = 2

_KEY_PATTERN = re.compile(r"^[A-Za-z0-9_.-]+$")


@dataclass(slots=True)
class CacheEntry:
    key: str
    payload: Any
    timestamp_ms: int
    dataset_version: int = 1


def extract_record_count(payload: Any) -> int:
    """Best-effort number of records in a persisted payload."""
    if payload is None:
        return 0
    if isinstance(payload, list):
        return len(payload)
    if not isinstance(payload, dict):
        return 0
    count = payload.get("count")
    if isinstance(count, int) and not isinstance(count, bool):
        return count
    for value in payload.values():
        if isinstance(value, list):
            return len(value)
    return 0


class PersistentStore:
    """File-backed key/value store for raw datasets."""

    def __init__(self, storage_dir: str, logger: Optional[logging.Logger] = None,
                 normalizer: Optional[TimestampNormalizer] = None):
        self.storage_dir = Path(storage_dir)
        self.logger = logger or logging.getLogger(__name__)
        self.normalizer = normalizer or TimestampNormalizer()

    def path_for(self, key: str) -> Path:
        if not isinstance(key, str) or not _KEY_PATTERN.match(key) or key.startswith('.'):
            raise InvalidCacheKeyError(f"Invalid cache key: {key!r}")
        return self.storage_dir / f"{key}.json"

    # ------------------------------------------------------------------
    # reads
    # ------------------------------------------------------------------

    def _load_sync(self, key: str) -> Optional[Dict[str, Any]]:
        path = self.path_for(key)
        if not path.exists():
            return None
        try:
            with open(path, 'r', encoding='utf-8') as f:
                payload = json.load(f)
        except (OSError, ValueError) as e:
            raise StorageReadError(key, str(e)) from e
        # every entry is an envelope object; bare arrays and scalars are corrupt
        if not isinstance(payload, dict):
            raise StorageReadError(key, f"expected a JSON object, found {type(payload).__name__}")
        return payload

    def read_entry_sync(self, key: str) -> Optional[CacheEntry]:
        try:
            payload = self._load_sync(key)
        except StorageReadError as e:
            self.logger.error(str(e))
            return None
        if payload is None:
            return None

        embedded = payload.get("timestamp")
        timestamp_ms = self.normalizer.normalize(embedded) if embedded is not None else None
        now_ms = self.normalizer.now_ms()
        if timestamp_ms is not None and timestamp_ms > now_ms:
            self.logger.warning(
                f"Discarding cache entry '{key}': timestamp {embedded} is in the future"
            )
            return None
        if timestamp_ms is None:
            try:
                timestamp_ms = int(self.path_for(key).stat().st_mtime * 1000)
            except OSError:
                timestamp_ms = now_ms

        version = payload.get("cacheVersion", 1)
        return CacheEntry(key=key, payload=payload, timestamp_ms=timestamp_ms, dataset_version=version)

    def read_sync(self, key: str) -> Optional[Any]:
        entry = self.read_entry_sync(key)
        return entry.payload if entry else None

    async def read_entry(self, key: str) -> Optional[CacheEntry]:
        return await asyncio.to_thread(self.read_entry_sync, key)

    async def read(self, key: str) -> Optional[Any]:
        """Payload stored under ``key``, or None on miss, corruption or a future timestamp."""
        return await asyncio.to_thread(self.read_sync, key)

    # ------------------------------------------------------------------
    # writes
    # ------------------------------------------------------------------

    def _prepare(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        record = dict(payload)
        if not record.get("timestamp"):
            record["timestamp"] = self.normalizer.now_iso()
        record["cacheVersion"] = CACHE_VERSION
        return serialize_for_json(record)

    def _dump_sync(self, key: str, payload: Any) -> None:
        path = self.path_for(key)
        temp_path = None
        try:
            self.storage_dir.mkdir(parents=True, exist_ok=True)
            # Atomic write: unique temp file in the same directory, then rename
            fd, temp_path = tempfile.mkstemp(dir=self.storage_dir, prefix=f".{key}.", suffix=".tmp")
            with os.fdopen(fd, 'w', encoding='utf-8') as f:
                json.dump(payload, f, ensure_ascii=False, indent=2)
            os.replace(temp_path, path)
        except (OSError, TypeError, ValueError) as e:
            if temp_path and os.path.exists(temp_path):
                try:
                    os.remove(temp_path)
                except OSError:
                    pass
            raise StorageWriteError(key, str(e)) from e

    def write_sync(self, key: str, payload: Any) -> bool:
        if not isinstance(payload, dict):
            self.logger.error(f"Error writing cache entry '{key}': expected a dict, got {type(payload).__name__}")
            return False
        record = self._prepare(payload)
        try:
            self._dump_sync(key, record)
        except StorageWriteError as e:
            self.logger.error(str(e))
            return False
        self.logger.debug(f"Saved cache entry '{key}' ({extract_record_count(record)} records)")
        return True

    async def write(self, key: str, payload: Any) -> bool:
        """Replace the entry for ``key``; returns False when persisting failed."""
        self.path_for(key)
        return await asyncio.to_thread(self.write_sync, key, payload)

    def delete_sync(self, key: str) -> bool:
        path = self.path_for(key)
        try:
            path.unlink()
        except FileNotFoundError:
            return False
        except OSError as e:
            self.logger.error(f"Error deleting cache entry '{key}': {e}")
            return False
        self.logger.debug(f"Deleted cache entry '{key}'")
        return True

    async def delete(self, key: str) -> bool:
        return await asyncio.to_thread(self.delete_sync, key)

    # ------------------------------------------------------------------
    # administration
    # ------------------------------------------------------------------

    def _json_files(self) -> List[Path]:
        if not self.storage_dir.exists():
            return []
        return sorted(
            path for path in self.storage_dir.iterdir()
            if path.suffix == ".json" and path.is_file() and _KEY_PATTERN.match(path.stem)
        )

    def list_sync(self) -> List[Dict[str, Any]]:
        entries = []
        for path in self._json_files():
            try:
                stat = path.stat()
            except OSError as e:
                self.logger.error(f"Error reading metadata of {path.name}: {e}")
                continue
            info: Dict[str, Any] = {
                "key": path.stem,
                "filename": path.name,
                "size": stat.st_size,
                "modified_at": datetime.fromtimestamp(stat.st_mtime, tz=timezone.utc).isoformat(),
                "record_count": 0,
                "timestamp": None,
                "cache_version": None,
            }
            try:
                data = self._load_sync(path.stem)
            except StorageReadError as e:
                self.logger.error(str(e))
                data = None
            if data is not None:
                info["record_count"] = extract_record_count(data)
                info["timestamp"] = data.get("timestamp")
                info["cache_version"] = data.get("cacheVersion", 1)
            entries.append(info)
        return entries

    async def list(self) -> List[Dict[str, Any]]:
        return await asyncio.to_thread(self.list_sync)

    def clear_sync(self) -> Dict[str, int]:
        deleted = failed = 0
        for path in self._json_files():
            try:
                path.unlink()
                deleted += 1
            except OSError as e:
                failed += 1
                self.logger.error(f"Error deleting {path.name}: {e}")
        self.logger.info(f"Cleared {deleted} persisted cache entries")
        return {"deleted": deleted, "failed": failed}

    async def clear(self) -> Dict[str, int]:
        return await asyncio.to_thread(self.clear_sync)
