"""
Scanner - Cycle Models.

Result values of one scan cycle.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional

from storage.types import RevokeResult


class CycleOutcome(Enum):
    """How a scan cycle ended."""

    COMMITTED = "committed"
    """One or more blocks were committed."""

    AT_TIP = "at_tip"
    """Nothing to do: the next height is not confirmed yet."""

    REORGED = "reorged"
    """A reorganization was repaired; forward scanning resumes next cycle."""

    SKIPPED = "skipped"
    """A height was skipped after a permanent error."""

    STALLED = "stalled"
    """Transient failures exhausted retries; the network cools down."""

    DEGRADED = "degraded"
    """Fatal for this network until rescanned."""

    PAUSED = "paused"
    """Storage failures exhausted retries."""

    @property
    def is_halting(self) -> bool:
        """The network needs an operator before it scans again."""
        return self in (CycleOutcome.DEGRADED, CycleOutcome.PAUSED)


@dataclass
class CycleResult:
    """Summary of one cycle of a network scanner."""

    network_id: str
    outcome: CycleOutcome
    start_height: Optional[int] = None
    tip_height: Optional[int] = None
    safe_height: Optional[int] = None
    committed: int = 0
    skipped: int = 0
    revoked: Optional[RevokeResult] = None
    error: Optional[str] = None
    duration_ms: float = 0.0

    @property
    def made_progress(self) -> bool:
        return self.committed > 0 or self.skipped > 0 or self.revoked is not None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "network_id": self.network_id,
            "outcome": self.outcome.value,
            "start_height": self.start_height,
            "tip_height": self.tip_height,
            "safe_height": self.safe_height,
            "committed": self.committed,
            "skipped": self.skipped,
            "revoked": self.revoked.to_dict() if self.revoked else None,
            "error": self.error,
            "duration_ms": round(self.duration_ms, 2),
        }
