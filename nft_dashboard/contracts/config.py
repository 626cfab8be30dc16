"""
Config Protocol - structural contract for configuration access.

Components type their config dependency against this Protocol so tests can
pass a MagicMock or a small stub instead of the file-backed Config.
"""

from typing import Any, Dict, Optional, Protocol


class ConfigProtocol(Protocol):
    """Members every configuration object must provide."""

    # ===== Secrets =====
    @property
    def POLYGONSCAN_API_KEY(self) -> str | None: ...

    # ===== General =====
    @property
    def HOST(self) -> str: ...

    @property
    def PORT(self) -> int: ...

    @property
    def LOGGER_DEBUG(self) -> bool: ...

    @property
    def LOG_DIR(self) -> str: ...

    @property
    def DATA_DIR(self) -> str: ...

    # ===== Ardor =====
    @property
    def ARDOR_NODE_URL(self) -> str: ...

    @property
    def ARDOR_FALLBACK_NODE_URL(self) -> str: ...

    @property
    def ARDOR_CHAIN_ID(self) -> int: ...

    @property
    def ARDOR_BURN_ACCOUNT(self) -> str: ...

    @property
    def ARDOR_TOKEN_IDS(self) -> list[str]: ...

    @property
    def ARDOR_PLATFORM_EPOCH_MS(self) -> int: ...

    @property
    def ARDOR_REQUEST_TIMEOUT(self) -> float: ...

    # ===== GIFTZ =====
    @property
    def GIFTZ_TOKEN_ID(self) -> Optional[str]: ...

    @property
    def GIFTZ_DISTRIBUTOR(self) -> Optional[str]: ...

    @property
    def GIFTZ_DISTRIBUTOR_ID(self) -> Optional[str]: ...

    # ===== Polygon =====
    @property
    def POLYGON_API_URL(self) -> str: ...

    @property
    def POLYGON_CONTRACT_ADDRESS(self) -> str: ...

    # ===== Cache =====
    @property
    def CACHE_STORAGE_DIR(self) -> str: ...

    @property
    def DATASET_MAX_AGE_SECONDS(self) -> float | None: ...

    @property
    def FETCH_TIMEOUT_SECONDS(self) -> float | None: ...

    @property
    def MEMORY_MAX_ITEMS(self) -> int: ...

    @property
    def MEMORY_SWEEP_INTERVAL_SECONDS(self) -> float: ...

    @property
    def REQUEST_CACHE_TTL_SECONDS(self) -> float: ...

    @property
    def VIEW_CACHE_TTL_SECONDS(self) -> float: ...

    # ===== Scheduler / startup =====
    @property
    def SCHEDULER_ENABLED(self) -> bool: ...

    @property
    def REFRESH_INTERVAL_SECONDS(self) -> float: ...

    @property
    def WARMUP_DATASETS(self) -> list[str]: ...

    @property
    def REQUIRED_DATASETS(self) -> list[str]: ...

    # ===== Dashboard =====
    @property
    def ENABLE_CORS(self) -> bool: ...

    @property
    def CORS_ORIGINS(self) -> list[str]: ...

    @property
    def RATE_LIMIT_PER_MINUTE(self) -> int: ...

    # ===== Methods =====
    def get_env(self, key: str, default: Any = None) -> Any: ...

    def get_config(self, section: str, key: str, default: Any = None) -> Any: ...

    def get_section(self, section: str) -> Dict[str, Any]: ...

    def reload(self) -> None: ...
