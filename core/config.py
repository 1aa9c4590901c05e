"""
Core Module - Configuration.

============================================================
CONFIGURABLE INDEXER
============================================================

Per-network entries:
- Chain model, RPC endpoints, confirmation depth
- Maximum reorg depth, fetch-ahead and concurrency limits

Global entries:
- Store connection parameters
- Retry/backoff policy
- Cache sizes
- Query server binding and API keys

Configuration can be loaded from:
- Default values
- YAML config file
- Environment variables (override YAML, .env supported)

============================================================
"""

import os
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional
import logging

import yaml
from dotenv import load_dotenv

from .constants import (
    DEFAULT_BALANCE_CACHE_SIZE,
    DEFAULT_BLOCK_CACHE_SIZE,
    DEFAULT_CONFIRMATION_DEPTH_ACCOUNT,
    DEFAULT_CONFIRMATION_DEPTH_UTXO,
    DEFAULT_FEE_TOLERANCE,
    DEFAULT_FETCH_AHEAD,
    DEFAULT_MAX_CONCURRENT_REQUESTS,
    DEFAULT_MAX_REORG_DEPTH,
    DEFAULT_POLL_INTERVAL_SECONDS,
    DEFAULT_RETRY_ATTEMPTS,
    DEFAULT_RETRY_BASE_SECONDS,
    DEFAULT_RETRY_FACTOR,
    DEFAULT_RETRY_JITTER,
    DEFAULT_RETRY_MAX_SECONDS,
    DEFAULT_RPC_TIMEOUT_SECONDS,
    DEFAULT_STALL_COOLDOWN_SECONDS,
    DEFAULT_STORE_RETRY_ATTEMPTS,
)
from .exceptions import ConfigurationError


logger = logging.getLogger(__name__)


# =============================================================
# CHAIN MODEL
# =============================================================


class ChainModel(Enum):
    """Ledger model of a network."""
    ACCOUNT = "account"
    UTXO = "utxo"

    @classmethod
    def parse(cls, value: str) -> "ChainModel":
        """Accept 'account', 'account-based', 'utxo', 'utxo-based'."""
        normalized = str(value).strip().lower()
        if normalized.endswith("-based"):
            normalized = normalized[: -len("-based")]
        try:
            return cls(normalized)
        except ValueError:
            raise ConfigurationError(
                f"Unknown chain model: {value}",
                config_key="chain_model",
                actual_value=value,
            )


# =============================================================
# NETWORK
# =============================================================


@dataclass
class NetworkConfig:
    """
    Configuration of one indexed network.

    Immutable after creation except for RPC endpoint rotation.
    """
    network_id: str
    chain_model: ChainModel
    rpc_endpoints: List[str]
    name: str = ""
    native_asset: str = ""
    confirmation_depth: Optional[int] = None
    max_reorg_depth: int = DEFAULT_MAX_REORG_DEPTH
    start_height: int = 0
    tolerate_gaps: Optional[bool] = None
    fetch_ahead: int = DEFAULT_FETCH_AHEAD
    max_concurrent_requests: int = DEFAULT_MAX_CONCURRENT_REQUESTS
    rpc_timeout_seconds: float = DEFAULT_RPC_TIMEOUT_SECONDS
    poll_interval_seconds: float = DEFAULT_POLL_INTERVAL_SECONDS
    enabled: bool = True

    def __post_init__(self) -> None:
        """Fill model-dependent defaults and validate."""
        if isinstance(self.chain_model, str):
            self.chain_model = ChainModel.parse(self.chain_model)
        if not self.network_id:
            raise ConfigurationError("network_id is required", config_key="network_id")
        if not self.name:
            self.name = self.network_id
        if not self.native_asset:
            self.native_asset = "BTC" if self.chain_model == ChainModel.UTXO else "ETH"
        if self.confirmation_depth is None:
            self.confirmation_depth = (
                DEFAULT_CONFIRMATION_DEPTH_UTXO
                if self.chain_model == ChainModel.UTXO
                else DEFAULT_CONFIRMATION_DEPTH_ACCOUNT
            )
        if self.tolerate_gaps is None:
            # UTXO inputs spend outputs of earlier blocks, a gap breaks resolution
            self.tolerate_gaps = self.chain_model == ChainModel.ACCOUNT

        if self.confirmation_depth < 0:
            raise ConfigurationError(
                "confirmation_depth must be >= 0",
                config_key=f"{self.network_id}.confirmation_depth",
                actual_value=self.confirmation_depth,
            )
        if self.max_reorg_depth < 1:
            raise ConfigurationError(
                "max_reorg_depth must be >= 1",
                config_key=f"{self.network_id}.max_reorg_depth",
                actual_value=self.max_reorg_depth,
            )
        if self.start_height < 0:
            raise ConfigurationError(
                "start_height must be >= 0",
                config_key=f"{self.network_id}.start_height",
                actual_value=self.start_height,
            )
        if self.fetch_ahead < 1 or self.max_concurrent_requests < 1:
            raise ConfigurationError(
                "fetch_ahead and max_concurrent_requests must be >= 1",
                config_key=f"{self.network_id}.fetch_ahead",
            )

    def rotate_endpoints(self) -> None:
        """Move the first endpoint to the end of the list."""
        if len(self.rpc_endpoints) > 1:
            self.rpc_endpoints = self.rpc_endpoints[1:] + self.rpc_endpoints[:1]

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "NetworkConfig":
        """Create from a config-file entry."""
        endpoints = data.get("rpc_endpoints", data.get("rpc", []))
        if isinstance(endpoints, str):
            endpoints = [endpoints]
        return cls(
            network_id=data.get("id") or data.get("network_id", ""),
            name=data.get("name", ""),
            chain_model=ChainModel.parse(data.get("chain_model", "")),
            rpc_endpoints=list(endpoints),
            native_asset=data.get("native_asset", ""),
            confirmation_depth=data.get("confirmation_depth"),
            max_reorg_depth=data.get("max_reorg_depth", DEFAULT_MAX_REORG_DEPTH),
            start_height=data.get("start_height", 0),
            tolerate_gaps=data.get("tolerate_gaps"),
            fetch_ahead=data.get("fetch_ahead", DEFAULT_FETCH_AHEAD),
            max_concurrent_requests=data.get(
                "max_concurrent_requests", DEFAULT_MAX_CONCURRENT_REQUESTS
            ),
            rpc_timeout_seconds=data.get("rpc_timeout_seconds", DEFAULT_RPC_TIMEOUT_SECONDS),
            poll_interval_seconds=data.get(
                "poll_interval_seconds", DEFAULT_POLL_INTERVAL_SECONDS
            ),
            enabled=data.get("enabled", True),
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "id": self.network_id,
            "name": self.name,
            "chain_model": self.chain_model.value,
            "native_asset": self.native_asset,
            "confirmation_depth": self.confirmation_depth,
            "max_reorg_depth": self.max_reorg_depth,
            "start_height": self.start_height,
            "tolerate_gaps": self.tolerate_gaps,
            "fetch_ahead": self.fetch_ahead,
            "max_concurrent_requests": self.max_concurrent_requests,
            "rpc_endpoint_count": len(self.rpc_endpoints),
            "enabled": self.enabled,
        }


# =============================================================
# GLOBAL SECTIONS
# =============================================================


@dataclass
class ScanConfig:
    """Retry/backoff policy shared by all scan loops."""
    retry_attempts: int = DEFAULT_RETRY_ATTEMPTS
    retry_base_seconds: float = DEFAULT_RETRY_BASE_SECONDS
    retry_factor: float = DEFAULT_RETRY_FACTOR
    retry_max_seconds: float = DEFAULT_RETRY_MAX_SECONDS
    retry_jitter: float = DEFAULT_RETRY_JITTER
    stall_cooldown_seconds: float = DEFAULT_STALL_COOLDOWN_SECONDS
    store_retry_attempts: int = DEFAULT_STORE_RETRY_ATTEMPTS
    fee_tolerance: int = DEFAULT_FEE_TOLERANCE

    def __post_init__(self) -> None:
        if self.retry_attempts < 1 or self.store_retry_attempts < 1:
            raise ConfigurationError("retry attempts must be >= 1", config_key="scan")
        if not 0 <= self.retry_jitter <= 1:
            raise ConfigurationError(
                "retry_jitter must be 0-1",
                config_key="scan.retry_jitter",
                actual_value=self.retry_jitter,
            )


@dataclass
class StoreConfig:
    """Warehouse connection parameters."""
    database_url: str = "sqlite:///chainflow.db"
    pool_size: int = 10
    max_overflow: int = 20
    pool_timeout: int = 30
    pool_recycle: int = 1800
    echo: bool = False


@dataclass
class CacheConfig:
    """Bounded cache sizes."""
    enabled: bool = True
    block_cache_size: int = DEFAULT_BLOCK_CACHE_SIZE
    balance_cache_size: int = DEFAULT_BALANCE_CACHE_SIZE


@dataclass
class ServerConfig:
    """Query server binding."""
    host: str = "127.0.0.1"
    port: int = 2277
    api_keys: List[str] = field(default_factory=list)


# =============================================================
# MAIN CONFIGURATION
# =============================================================


@dataclass
class AppConfig:
    """
    Main configuration.

    Combines all sub-configurations.
    """
    networks: List[NetworkConfig] = field(default_factory=list)
    scan: ScanConfig = field(default_factory=ScanConfig)
    store: StoreConfig = field(default_factory=StoreConfig)
    cache: CacheConfig = field(default_factory=CacheConfig)
    server: ServerConfig = field(default_factory=ServerConfig)
    log_level: str = "INFO"

    def __post_init__(self) -> None:
        seen = set()
        for network in self.networks:
            if network.network_id in seen:
                raise ConfigurationError(
                    f"Duplicate network id: {network.network_id}",
                    config_key="networks",
                )
            seen.add(network.network_id)

    def get_network(self, network_id: str) -> NetworkConfig:
        """Get a network entry by id."""
        for network in self.networks:
            if network.network_id == network_id:
                return network
        raise ConfigurationError(f"Unknown network: {network_id}", config_key="networks")

    @property
    def enabled_networks(self) -> List[NetworkConfig]:
        return [n for n in self.networks if n.enabled]

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AppConfig":
        """Create from a parsed config document."""
        data = data or {}
        try:
            return cls(
                networks=[NetworkConfig.from_dict(n) for n in data.get("networks", [])],
                scan=ScanConfig(**data.get("scan", {})),
                store=StoreConfig(**data.get("store", {})),
                cache=CacheConfig(**data.get("cache", {})),
                server=ServerConfig(**data.get("server", {})),
                log_level=data.get("log_level", "INFO"),
            )
        except TypeError as e:
            raise ConfigurationError(f"Invalid configuration: {e}", cause=e) from e

    @classmethod
    def from_yaml(cls, path: Path) -> "AppConfig":
        """Load configuration from YAML file."""
        try:
            with open(path, "r") as f:
                data = yaml.safe_load(f)
        except (OSError, yaml.YAMLError) as e:
            raise ConfigurationError(
                f"Failed to load YAML config from {path}: {e}",
                config_key="config_path",
                cause=e,
            ) from e
        return cls.from_dict(data)

    def apply_env(self) -> "AppConfig":
        """
        Override settings from environment variables.

        Environment variables:
        - DATABASE_URL
        - LOG_LEVEL
        - SERVER_HOST
        - SERVER_PORT
        - API_KEYS (comma separated)
        """
        if os.getenv("DATABASE_URL"):
            self.store.database_url = os.getenv("DATABASE_URL")
        if os.getenv("LOG_LEVEL"):
            self.log_level = os.getenv("LOG_LEVEL").upper()
        if os.getenv("SERVER_HOST"):
            self.server.host = os.getenv("SERVER_HOST")
        if os.getenv("SERVER_PORT"):
            self.server.port = int(os.getenv("SERVER_PORT"))
        if os.getenv("API_KEYS"):
            self.server.api_keys = [
                key.strip() for key in os.getenv("API_KEYS").split(",") if key.strip()
            ]
        return self

    @classmethod
    def from_env(cls) -> "AppConfig":
        """Load configuration from environment variables only."""
        return cls().apply_env()


def load_config(path: Optional[Path] = None) -> AppConfig:
    """
    Load configuration: YAML file (if any), then environment.

    CONFIG_PATH is used when no path is given.
    """
    load_dotenv()

    if path is None and os.getenv("CONFIG_PATH"):
        path = Path(os.getenv("CONFIG_PATH"))

    if path is not None:
        config = AppConfig.from_yaml(path)
        logger.info(f"Loaded configuration from {path} ({len(config.networks)} networks)")
    else:
        config = AppConfig()

    return config.apply_env()


# =============================================================
# GLOBAL CONFIG SINGLETON
# =============================================================


_default_config: Optional[AppConfig] = None


def get_config() -> AppConfig:
    """Get the global configuration."""
    global _default_config
    if _default_config is None:
        _default_config = load_config()
    return _default_config


def set_config(config: AppConfig) -> None:
    """Set the global configuration."""
    global _default_config
    _default_config = config
