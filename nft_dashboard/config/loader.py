"""
Configuration loader for the NFT dashboard backend.
Loads optional secrets from keys.env and public configuration from config/config.ini.
"""

import configparser
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

from dotenv import dotenv_values

ROOT_DIR = Path(__file__).parent.parent.parent.resolve()
CONFIG_DIR = ROOT_DIR / "config"
KEYS_ENV_PATH = ROOT_DIR / "keys.env"
CONFIG_INI_PATH = CONFIG_DIR / "config.ini"

ARDOR_EPOCH_MS = 1514764800000


class Config:
    """Configuration class that loads settings from keys.env and config.ini.

    Implements ConfigProtocol.
    """

    def __init__(self):
        self._env_vars: Dict[str, Any] = {}
        self._config_data: Dict[str, Dict[str, Any]] = {}
        self._load_environment()
        self._load_ini_config()

    def _load_environment(self):
        """Load secrets from keys.env; the file is optional since the Ardor node needs no key."""
        if not KEYS_ENV_PATH.exists():
            logging.info(f"No keys file at {KEYS_ENV_PATH}; Polygon data will be requested without an API key")
            return

        try:
            for key, value in dotenv_values(KEYS_ENV_PATH).items():
                if value is not None:
                    self._env_vars[key] = value
        except Exception as e:
            raise RuntimeError(f"Error loading environment file {KEYS_ENV_PATH}: {e}") from e

    def _load_ini_config(self):
        if not CONFIG_INI_PATH.exists():
            raise FileNotFoundError(
                f"Configuration file not found: {CONFIG_INI_PATH}. "
                "Please create config.ini in the config directory."
            )

        try:
            parser = configparser.ConfigParser()
            parser.read(CONFIG_INI_PATH, encoding='utf-8')
            for section_name in parser.sections():
                self._config_data[section_name] = {
                    key: self._convert_value(value) for key, value in parser.items(section_name)
                }
        except Exception as e:
            raise RuntimeError(f"Error loading configuration file {CONFIG_INI_PATH}: {e}") from e

    @staticmethod
    def _convert_value(value: str) -> Any:
        """Convert string values to appropriate Python types."""
        lowered = value.lower()
        if lowered in ('true', 'yes', 'on'):
            return True
        if lowered in ('false', 'no', 'off'):
            return False
        if value.isdigit():
            return int(value)
        if '.' in value:
            try:
                return float(value)
            except ValueError:
                pass
        if ',' in value:
            return [item.strip() for item in value.split(',') if item.strip()]
        return value

    @staticmethod
    def _as_list(value: Any) -> List[str]:
        if value is None or value == '':
            return []
        if isinstance(value, (list, tuple)):
            return [str(item) for item in value]
        return [str(value)]

    @staticmethod
    def _as_optional_str(value: Any) -> Optional[str]:
        # numeric ids come back from _convert_value as int
        if value is None or value == '':
            return None
        return str(value)

    def get_env(self, key: str, default: Any = None) -> Any:
        return self._env_vars.get(key, default)

    def get_config(self, section: str, key: str, default: Any = None) -> Any:
        return self._config_data.get(section, {}).get(key, default)

    def get_section(self, section: str) -> Dict[str, Any]:
        return self._config_data.get(section, {})

    # Secrets
    @property
    def POLYGONSCAN_API_KEY(self):
        return self.get_env('POLYGONSCAN_API_KEY')

    # General
    @property
    def HOST(self):
        return self.get_config('general', 'host', '0.0.0.0')

    @property
    def PORT(self):
        return int(self.get_config('general', 'port', 3000))

    @property
    def LOGGER_DEBUG(self):
        return self.get_config('debug', 'logger_debug', False)

    # Directories
    @property
    def LOG_DIR(self):
        return self.get_config('directories', 'log_dir', 'logs')

    @property
    def DATA_DIR(self):
        return self.get_config('directories', 'data_dir', 'data')

    # Ardor
    @property
    def ARDOR_NODE_URL(self):
        """Primary node; ARDOR_NODE in keys.env overrides config.ini."""
        override = self.get_env('ARDOR_NODE')
        if override:
            return f"{str(override).rstrip('/')}/nxt"
        return self.get_config('ardor', 'node_url', 'http://localhost:27876/nxt')

    @property
    def ARDOR_FALLBACK_NODE_URL(self):
        return self.get_config('ardor', 'fallback_node_url', 'https://ardor.jelurida.com/nxt')

    @property
    def ARDOR_CHAIN_ID(self):
        return int(self.get_config('ardor', 'chain_id', 2))

    @property
    def ARDOR_BURN_ACCOUNT(self):
        return self.get_config('ardor', 'burn_account', 'ARDOR-Q9KZ-74XD-WERK-CV6GB')

    @property
    def ARDOR_TOKEN_IDS(self):
        return self._as_list(self.get_config('ardor', 'token_ids', []))

    @property
    def ARDOR_PLATFORM_EPOCH_MS(self):
        return int(self.get_config('ardor', 'platform_epoch', ARDOR_EPOCH_MS))

    @property
    def ARDOR_REQUEST_TIMEOUT(self):
        return float(self.get_config('ardor', 'request_timeout_seconds', 30))

    @property
    def GIFTZ_TOKEN_ID(self):
        return self._as_optional_str(self.get_config('giftz', 'token_id'))

    @property
    def GIFTZ_DISTRIBUTOR(self):
        return self._as_optional_str(self.get_config('giftz', 'distributor_account'))

    @property
    def GIFTZ_DISTRIBUTOR_ID(self):
        return self._as_optional_str(self.get_config('giftz', 'distributor_account_id'))

    # Polygon
    @property
    def POLYGON_API_URL(self):
        return self.get_config('polygon', 'api_url', 'https://api.polygonscan.com/api')

    @property
    def POLYGON_CONTRACT_ADDRESS(self):
        return self.get_config('polygon', 'contract_address', '0xcf55f528492768330c0750a6527c1dfb50e2a7c3')

    # Cache
    @property
    def CACHE_STORAGE_DIR(self):
        return self.get_config('cache', 'storage_dir', str(Path(self.DATA_DIR) / 'storage'))

    @property
    def DATASET_MAX_AGE_SECONDS(self):
        """Maximum age of a stored dataset before it is refetched; 0 disables staleness."""
        value = self.get_config('cache', 'dataset_max_age_seconds', 300)
        return float(value) if value else None

    @property
    def FETCH_TIMEOUT_SECONDS(self):
        value = self.get_config('cache', 'fetch_timeout_seconds', 120)
        return float(value) if value else None

    @property
    def MEMORY_MAX_ITEMS(self):
        return int(self.get_config('cache', 'memory_max_items', 1000))

    @property
    def MEMORY_SWEEP_INTERVAL_SECONDS(self):
        return float(self.get_config('cache', 'memory_sweep_interval_seconds', 900))

    @property
    def REQUEST_CACHE_TTL_SECONDS(self):
        return float(self.get_config('cache', 'request_cache_ttl_seconds', 30))

    @property
    def VIEW_CACHE_TTL_SECONDS(self):
        return float(self.get_config('cache', 'view_cache_ttl_seconds', 15))

    # Scheduler
    @property
    def SCHEDULER_ENABLED(self):
        return self.get_config('scheduler', 'enabled', True)

    @property
    def REFRESH_INTERVAL_SECONDS(self):
        return float(self.get_config('scheduler', 'refresh_interval_seconds', 180))

    # Startup
    @property
    def WARMUP_DATASETS(self):
        return self._as_list(self.get_config('startup', 'warmup_datasets', ['trades', 'burns']))

    @property
    def REQUIRED_DATASETS(self):
        return self._as_list(self.get_config('startup', 'required_datasets', []))

    # Dashboard
    @property
    def ENABLE_CORS(self):
        return self.get_config('dashboard', 'enable_cors', False)

    @property
    def CORS_ORIGINS(self):
        return self._as_list(self.get_config('dashboard', 'cors_origins', ['*']))

    @property
    def RATE_LIMIT_PER_MINUTE(self):
        return int(self.get_config('dashboard', 'rate_limit_per_minute', 100))

    def reload(self):
        """Reload keys.env and config.ini without restarting the application."""
        logging.info("Reloading configuration files...")
        try:
            self._env_vars = {}
            self._config_data = {}
            self._load_environment()
            self._load_ini_config()
            logging.info("Configuration reloaded successfully")
        except Exception as e:
            logging.error(f"Error reloading configuration: {e}")
            raise


config = Config()
