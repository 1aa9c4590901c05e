"""
Chain Adapter Models - Raw blocks and adapter health.

Raw blocks keep the node's payload untouched; only the header
fields the scheduler needs for parent-hash checks are lifted out.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from core.clock import now_utc
from core.config import ChainModel


class AdapterStatus(Enum):
    """Health status of a chain adapter."""
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNAVAILABLE = "unavailable"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class RawBlock:
    """
    Network-specific block as returned by the node.

    ``payload`` is the block document (EVM ``eth_getBlockByNumber``
    with full transactions, or bitcoind ``getblock`` verbosity 2/3).
    ``receipts`` carries EVM receipts when the adapter fetched them.
    """
    network_id: str
    chain_model: ChainModel
    height: int
    hash: str
    parent_hash: Optional[str]
    payload: Dict[str, Any]
    receipts: Optional[List[Dict[str, Any]]] = None

    def __repr__(self) -> str:
        return (
            f"<RawBlock(network={self.network_id}, height={self.height}, "
            f"hash={self.hash[:16]})>"
        )


@dataclass
class AdapterHealth:
    """Health status of a chain adapter."""
    status: AdapterStatus
    last_check: datetime
    latency_ms: Optional[float] = None
    error_count: int = 0
    last_error: Optional[str] = None
    last_error_time: Optional[datetime] = None
    consecutive_failures: int = 0
    requests_total: int = 0
    active_endpoint: Optional[str] = None

    def is_healthy(self) -> bool:
        """Check if adapter is operational."""
        return self.status == AdapterStatus.HEALTHY

    def is_usable(self) -> bool:
        """Check if adapter can still be used."""
        return self.status in (AdapterStatus.HEALTHY, AdapterStatus.DEGRADED)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "status": self.status.value,
            "last_check": self.last_check.isoformat(),
            "latency_ms": self.latency_ms,
            "error_count": self.error_count,
            "last_error": self.last_error,
            "last_error_time": self.last_error_time.isoformat() if self.last_error_time else None,
            "consecutive_failures": self.consecutive_failures,
            "requests_total": self.requests_total,
            "active_endpoint": self.active_endpoint,
        }


@dataclass
class AdapterIncident:
    """Record of an adapter incident."""
    network_id: str
    incident_type: str
    error_message: str
    method: Optional[str] = None
    height: Optional[int] = None
    timestamp: datetime = field(default_factory=now_utc)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "network_id": self.network_id,
            "incident_type": self.incident_type,
            "error_message": self.error_message,
            "method": self.method,
            "height": self.height,
            "timestamp": self.timestamp.isoformat(),
        }
