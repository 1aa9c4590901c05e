"""
Tracer - Result Models.
"""

from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from ingestion.types import CanonicalLink
from storage.types import LabelInfo


class TraceDirection(Enum):
    """Which way funds are followed from the source address."""

    OUTGOING = "outgoing"
    """Where did the funds go."""

    INCOMING = "incoming"
    """Where did the funds come from."""

    @classmethod
    def parse(cls, value: Any) -> "TraceDirection":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).lower())
        except ValueError:
            raise ValueError(f"direction must be 'outgoing' or 'incoming', got {value!r}")


@dataclass(frozen=True)
class TracePath:
    """
    Ordered links followed from the source address.

    For incoming traces the first link ends at the source and
    every further link ends where the previous one started.
    """

    links: Tuple[CanonicalLink, ...]
    direction: TraceDirection = TraceDirection.OUTGOING

    @property
    def hops(self) -> int:
        return len(self.links)

    @property
    def amount(self) -> Decimal:
        """Conservative flow: the smallest amount along the path."""
        return min(link.amount for link in self.links)

    @property
    def asset(self) -> str:
        return self.links[0].asset

    @property
    def end_address(self) -> str:
        last = self.links[-1]
        return last.to_address if self.direction == TraceDirection.OUTGOING else last.from_address

    @property
    def addresses(self) -> Tuple[str, ...]:
        """Source first, then every address reached."""
        if self.direction == TraceDirection.OUTGOING:
            return (self.links[0].from_address,) + tuple(l.to_address for l in self.links)
        return (self.links[0].to_address,) + tuple(l.from_address for l in self.links)

    @property
    def tx_hashes(self) -> Tuple[str, ...]:
        return tuple(link.tx_hash for link in self.links)

    def sort_key(self) -> Tuple[Any, ...]:
        """Amount descending, hop count ascending, then link keys."""
        return (-self.amount, self.hops, tuple(link.key for link in self.links))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "hops": self.hops,
            "amount": str(self.amount),
            "asset": self.asset,
            "addresses": list(self.addresses),
            "links": [link.to_dict() for link in self.links],
        }


@dataclass
class TraceResult:
    """Ranked paths of one trace plus traversal statistics."""

    network_id: str
    source_address: str
    direction: TraceDirection
    max_hops: int
    paths: List[TracePath] = field(default_factory=list)
    truncated: bool = False
    truncation_reason: Optional[str] = None
    hops_explored: int = 0
    addresses_visited: int = 0
    links_examined: int = 0
    elapsed_ms: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "network_id": self.network_id,
            "source_address": self.source_address,
            "direction": self.direction.value,
            "max_hops": self.max_hops,
            "path_count": len(self.paths),
            "paths": [p.to_dict() for p in self.paths],
            "truncated": self.truncated,
            "truncation_reason": self.truncation_reason,
            "hops_explored": self.hops_explored,
            "addresses_visited": self.addresses_visited,
            "links_examined": self.links_examined,
            "elapsed_ms": round(self.elapsed_ms, 2),
        }


@dataclass(frozen=True)
class UpstreamSource:
    """A labelled address that sent funds into the traced address."""

    address: str
    label: LabelInfo
    hops: int
    amount: Decimal
    asset: str
    tx_hashes: Tuple[str, ...]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "address": self.address,
            "label": self.label.to_dict(),
            "hops": self.hops,
            "amount": str(self.amount),
            "asset": self.asset,
            "tx_hashes": list(self.tx_hashes),
        }
