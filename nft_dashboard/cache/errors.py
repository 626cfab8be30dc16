"""Exceptions raised inside the cache layer."""
from typing import Optional


class CacheError(Exception):
    """Base class for cache-layer failures."""


class StorageReadError(CacheError):
    """A persisted entry could not be read or parsed."""

    def __init__(self, key: str, reason: str):
        self.key = key
        super().__init__(f"Error reading cache entry '{key}': {reason}")


class StorageWriteError(CacheError):
    """A persisted entry could not be written."""

    def __init__(self, key: str, reason: str):
        self.key = key
        super().__init__(f"Error writing cache entry '{key}': {reason}")


class InvalidCacheKeyError(CacheError, ValueError):
    """Cache keys map to file names and must stay inside the storage directory."""


class UpstreamFetchError(CacheError):
    """The dataset fetch function failed and no cached copy was available."""

    def __init__(self, dataset_name: str, cause: Optional[BaseException] = None, message: Optional[str] = None):
        self.dataset_name = dataset_name
        self.cause = cause
        if message is None:
            detail = f"{type(cause).__name__}: {cause}" if cause is not None else "unknown error"
            message = f"Failed to fetch {dataset_name}: {detail}"
        super().__init__(message)
