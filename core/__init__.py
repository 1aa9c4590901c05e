"""
Core Module Package.

This package contains the infrastructure shared by every
other package of the indexer.

Components:
- clock: Unified time abstraction
- config: Network and global configuration
- constants: System-wide defaults
- exceptions: Error taxonomy
- state_manager: Per-network scan state machine
"""

from .clock import ClockFactory, ClockProtocol, MockClock, SystemClock, now_utc
from .config import (
    AppConfig,
    CacheConfig,
    ChainModel,
    NetworkConfig,
    ScanConfig,
    ServerConfig,
    StoreConfig,
    get_config,
    load_config,
    set_config,
)
from .exceptions import (
    ConfigurationError,
    IndexerException,
    NotFoundError,
    PermanentError,
    ReorgExceededError,
    ScanError,
    StateTransitionError,
    StoreFailure,
    TraceError,
    TransientError,
)
from .state_manager import NetworkScanState, ScanState, StateTransition


__all__ = [
    # Clock
    "ClockFactory",
    "ClockProtocol",
    "MockClock",
    "SystemClock",
    "now_utc",
    # Config
    "AppConfig",
    "CacheConfig",
    "ChainModel",
    "NetworkConfig",
    "ScanConfig",
    "ServerConfig",
    "StoreConfig",
    "get_config",
    "load_config",
    "set_config",
    # Exceptions
    "ConfigurationError",
    "IndexerException",
    "NotFoundError",
    "PermanentError",
    "ReorgExceededError",
    "ScanError",
    "StateTransitionError",
    "StoreFailure",
    "TraceError",
    "TransientError",
    # State
    "NetworkScanState",
    "ScanState",
    "StateTransition",
]
