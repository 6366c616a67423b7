"""
Two-tier configuration system with YAML defaults and environment overrides.

Configuration is loaded from the packaged ``default.yaml``, then from optional
``config.yaml`` / ``<ENVIRONMENT>.yaml`` files in a config directory, and finally
from ``TREASURY_METRICS_*`` environment variables (``.env`` files are honoured).
Nested keys in environment variables are separated by a double underscore,
e.g. ``TREASURY_METRICS_CACHE__TTL=600`` sets ``cache.ttl``.
"""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

import yaml
from dotenv import load_dotenv

logger = logging.getLogger(__name__)

PACKAGE_CONFIG_DIR = Path(__file__).resolve().parent.parent / "config"


class ConfigError(Exception):
    """Configuration-related errors."""
    pass


class ConfigManager:
    """
    Hierarchical configuration manager.

    Supports layered YAML files, environment variable overrides and
    dot-notation access to nested values.
    """

    def __init__(
        self,
        config_dir: Optional[Path] = None,
        env_prefix: str = "TREASURY_METRICS",
        load_env_file: bool = True
    ):
        self.config_dir = Path(config_dir) if config_dir else None
        self.env_prefix = env_prefix
        self.load_env_file = load_env_file

        self._config: Dict[str, Any] = {}
        self._loaded = False

    def initialize(self) -> None:
        """Initialize the configuration manager."""
        logger.debug("Initializing configuration manager")

        if self.load_env_file:
            load_dotenv()

        self.load_config()
        self._loaded = True

    def load_config(self) -> None:
        """Load configuration from all sources."""
        self._config = {}
        self._load_yaml_config()
        self._apply_env_overrides()

        logger.debug(f"Loaded configuration with {len(self._config)} top-level keys")

    def _config_files(self):
        files = [PACKAGE_CONFIG_DIR / "default.yaml"]

        if self.config_dir:
            files.append(self.config_dir / "default.yaml")
            files.append(self.config_dir / "config.yaml")

            # Environment-specific overrides, e.g. production.yaml
            env = os.getenv("ENVIRONMENT", "development")
            files.append(self.config_dir / f"{env}.yaml")

        return files

    def _load_yaml_config(self) -> None:
        """Load configuration from YAML files."""
        for config_file in self._config_files():
            if not config_file.exists():
                continue

            try:
                with open(config_file, 'r') as f:
                    file_config = yaml.safe_load(f) or {}
            except (OSError, yaml.YAMLError) as e:
                raise ConfigError(f"Failed to load config from {config_file}: {e}")

            self._merge_config(self._config, file_config)
            logger.debug(f"Loaded config from {config_file}")

    def _apply_env_overrides(self) -> None:
        """Apply environment variable overrides."""
        prefix = f"{self.env_prefix}_"

        for key, value in os.environ.items():
            if key.startswith(prefix):
                config_key = key[len(prefix):].lower().replace('__', '.')
                self._set_nested_value(self._config, config_key, value)
                logger.debug(f"Applied env override: {config_key}")

    def _merge_config(self, target: Dict[str, Any], source: Dict[str, Any]) -> None:
        """Recursively merge configuration dictionaries."""
        for key, value in source.items():
            if key in target and isinstance(target[key], dict) and isinstance(value, dict):
                self._merge_config(target[key], value)
            else:
                target[key] = value

    def _set_nested_value(self, config: Dict[str, Any], key_path: str, value: Any) -> None:
        """Set a nested configuration value using dot notation."""
        keys = key_path.split('.')
        current = config

        for key in keys[:-1]:
            if not isinstance(current.get(key), dict):
                current[key] = {}
            current = current[key]

        current[keys[-1]] = self._convert_value(value)

    def _convert_value(self, value: Any) -> Any:
        """Convert string value to appropriate type."""
        if not isinstance(value, str):
            return value

        if value.lower() in ('true', 'false'):
            return value.lower() == 'true'

        try:
            return int(value)
        except ValueError:
            pass

        try:
            return float(value)
        except ValueError:
            pass

        return value

    def get(self, key: str, default: Any = None) -> Any:
        """Get a configuration value using dot notation."""
        if not self._loaded:
            raise ConfigError("Configuration not loaded")

        current = self._config
        for k in key.split('.'):
            if isinstance(current, dict) and k in current:
                current = current[k]
            else:
                return default

        return current

    def set(self, key: str, value: Any) -> None:
        """Set a configuration value using dot notation."""
        self._set_nested_value(self._config, key, value)

    def get_all(self) -> Dict[str, Any]:
        """Get a copy of all configuration, without the cache password."""
        config = {k: (v.copy() if isinstance(v, dict) else v) for k, v in self._config.items()}
        if isinstance(config.get('cache'), dict):
            config['cache'].pop('password', None)
        return config

    def has(self, key: str) -> bool:
        """Check if a configuration key exists."""
        if not self._loaded:
            return False

        current = self._config
        for k in key.split('.'):
            if isinstance(current, dict) and k in current:
                current = current[k]
            else:
                return False

        return True


def _lower_keys(values: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    return {str(k).lower(): v for k, v in (values or {}).items()}


@dataclass(frozen=True)
class Settings:
    """Typed, immutable view over the loaded configuration."""

    subgraph_endpoints: Dict[str, str] = field(default_factory=dict)
    subgraph_timeout: int = 30
    subgraph_max_retries: int = 3
    subgraph_retry_delay: float = 1.0
    offset_days: int = 10
    cache_url: str = "redis://localhost:6379/0"
    cache_password: Optional[str] = None
    cache_ttl: int = 3600
    cache_chunk_size: int = 1000
    native_token_addresses: Tuple[str, ...] = ()
    wrapped_token_addresses: Tuple[str, ...] = ()
    reference_chains: Tuple[str, ...] = ("Arbitrum", "Ethereum")
    blv_exclusion_block: Optional[int] = None
    logging: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_config(cls, manager: ConfigManager) -> 'Settings':
        """Build settings from an initialized ConfigManager."""
        from ..data.models import Chain

        raw_endpoints = _lower_keys(manager.get('subgraphs.endpoints', {}))
        endpoints = {}
        for chain in Chain:
            url = raw_endpoints.get(chain.value.lower())
            if url:
                endpoints[chain.value] = url

        return cls(
            subgraph_endpoints=endpoints,
            subgraph_timeout=int(manager.get('subgraphs.timeout', 30)),
            subgraph_max_retries=int(manager.get('subgraphs.max_retries', 3)),
            subgraph_retry_delay=float(manager.get('subgraphs.retry_delay', 1.0)),
            offset_days=int(manager.get('pagination.offset_days', 10)),
            cache_url=manager.get('cache.url', "redis://localhost:6379/0"),
            cache_password=manager.get('cache.password'),
            cache_ttl=int(manager.get('cache.ttl', 3600)),
            cache_chunk_size=int(manager.get('cache.chunk_size', 1000)),
            native_token_addresses=tuple(manager.get('tokens.native', []) or []),
            wrapped_token_addresses=tuple(manager.get('tokens.wrapped', []) or []),
            reference_chains=tuple(manager.get('completeness.reference_chains', ["Arbitrum", "Ethereum"])),
            blv_exclusion_block=manager.get('supply.blv_exclusion_block'),
            logging=manager.get('logging', {}) or {},
        )


def load_settings(config_dir: Optional[Path] = None) -> Settings:
    """Load configuration from disk and the environment into Settings."""
    manager = ConfigManager(config_dir=config_dir)
    manager.initialize()
    return Settings.from_config(manager)
