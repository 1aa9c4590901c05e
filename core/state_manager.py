"""
Core Module - Scan State.

============================================================
RESPONSIBILITY
============================================================
Defines the per-network scan state machine.

- Tracks where each network's ingestion loop is in its cycle
- Validates state transitions
- Keeps a bounded transition history for diagnosis

Each network owns exactly one NetworkScanState value. The
value is replaced (never shared) on every transition, so no
mutable scan state is visible across networks.

============================================================
STATE MACHINE
============================================================
Normal cycle:
    IDLE -> FETCHING -> NORMALIZING -> COMMITTING -> IDLE

Reorganization:
    FETCHING -> REVERTING -> IDLE

Holding states:
- STALLED:  transient failures exhausted retries, resumes later
- PAUSED:   storage failures exhausted retries, surfaced
- DEGRADED: reorg too deep or gap-intolerant permanent error
- STOPPED:  shutdown completed

============================================================
"""

from enum import Enum
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Set, Tuple

from .exceptions import StateTransitionError


# ============================================================
# SCAN STATE
# ============================================================

class ScanState(Enum):
    """Scan loop state enumeration."""

    IDLE = "idle"
    """Between cycles."""

    FETCHING = "fetching"
    """Waiting on adapter I/O."""

    NORMALIZING = "normalizing"
    """Converting a raw block into canonical records."""

    COMMITTING = "committing"
    """Writing a normalized block to the warehouse."""

    REVERTING = "reverting"
    """Walking back to a common ancestor and revoking descendants."""

    STALLED = "stalled"
    """Temporarily stalled after exhausting transient retries."""

    PAUSED = "paused"
    """Paused after repeated storage failures."""

    DEGRADED = "degraded"
    """Fatal for this network, manual rescan required."""

    STOPPED = "stopped"
    """Loop exited after shutdown."""

    @property
    def is_active(self) -> bool:
        """Check if the loop is inside a cycle."""
        return self in (
            ScanState.FETCHING,
            ScanState.NORMALIZING,
            ScanState.COMMITTING,
            ScanState.REVERTING,
        )

    @property
    def is_terminal(self) -> bool:
        """Check if the loop cannot continue without intervention."""
        return self in (ScanState.DEGRADED, ScanState.PAUSED, ScanState.STOPPED)


# ============================================================
# STATE TRANSITIONS
# ============================================================

_HALTING = {ScanState.STALLED, ScanState.PAUSED, ScanState.DEGRADED, ScanState.STOPPED}

VALID_TRANSITIONS: Dict[ScanState, Set[ScanState]] = {
    ScanState.IDLE: {ScanState.FETCHING} | _HALTING,
    ScanState.FETCHING: {
        ScanState.NORMALIZING,
        ScanState.REVERTING,
        ScanState.IDLE,
    } | _HALTING,
    ScanState.NORMALIZING: {
        ScanState.COMMITTING,
        ScanState.FETCHING,  # unresolved UTXO inputs
        ScanState.IDLE,      # skipped block
    } | _HALTING,
    ScanState.COMMITTING: {ScanState.IDLE} | _HALTING,
    ScanState.REVERTING: {ScanState.IDLE} | _HALTING,
    ScanState.STALLED: {ScanState.IDLE, ScanState.STOPPED},
    ScanState.PAUSED: {ScanState.IDLE, ScanState.STOPPED},
    ScanState.DEGRADED: {ScanState.STOPPED},
    ScanState.STOPPED: set(),
}


@dataclass(frozen=True)
class StateTransition:
    """Record of a state transition."""

    from_state: ScanState
    to_state: ScanState
    reason: str
    height: Optional[int] = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to dictionary."""
        return {
            "from_state": self.from_state.value,
            "to_state": self.to_state.value,
            "reason": self.reason,
            "height": self.height,
            "timestamp": self.timestamp.isoformat(),
        }


# ============================================================
# PER-NETWORK STATE VALUE
# ============================================================

@dataclass(frozen=True)
class NetworkScanState:
    """
    Immutable scan state of one network.

    The scanner threads this value through its loop and swaps
    it for the value returned by ``transition``.
    """

    network_id: str
    state: ScanState = ScanState.IDLE
    tip_height: Optional[int] = None
    tip_hash: Optional[str] = None
    reason: str = "initialized"
    committed_blocks: int = 0
    skipped_blocks: int = 0
    reorgs: int = 0
    consecutive_failures: int = 0
    last_error: Optional[str] = None
    history: Tuple[StateTransition, ...] = ()

    MAX_HISTORY = 50

    def can_transition_to(self, target: ScanState) -> bool:
        """Check if transition to target state is valid."""
        if target == self.state:
            return True
        return target in VALID_TRANSITIONS.get(self.state, set())

    def transition(
        self,
        target: ScanState,
        reason: str,
        height: Optional[int] = None,
        **changes: Any,
    ) -> "NetworkScanState":
        """
        Return the state value after moving to ``target``.

        Raises:
            StateTransitionError: If the transition is invalid
        """
        if not self.can_transition_to(target):
            raise StateTransitionError(
                message=f"Invalid scan transition: {self.state.value} -> {target.value}",
                from_state=self.state.value,
                to_state=target.value,
                network_id=self.network_id,
            )

        history = self.history
        if target != self.state:
            history = (history + (
                StateTransition(
                    from_state=self.state,
                    to_state=target,
                    reason=reason,
                    height=height,
                ),
            ))[-self.MAX_HISTORY:]

        return replace(
            self,
            state=target,
            reason=reason,
            history=history,
            **changes,
        )

    def with_tip(self, height: Optional[int], block_hash: Optional[str]) -> "NetworkScanState":
        """Return the state value with an updated tip."""
        return replace(self, tip_height=height, tip_hash=block_hash)

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to dictionary."""
        return {
            "network_id": self.network_id,
            "state": self.state.value,
            "tip_height": self.tip_height,
            "tip_hash": self.tip_hash,
            "reason": self.reason,
            "committed_blocks": self.committed_blocks,
            "skipped_blocks": self.skipped_blocks,
            "reorgs": self.reorgs,
            "consecutive_failures": self.consecutive_failures,
            "last_error": self.last_error,
            "recent_transitions": [t.to_dict() for t in self.history[-10:]],
        }


# ============================================================
# EXPORTS
# ============================================================

__all__ = [
    "ScanState",
    "StateTransition",
    "NetworkScanState",
    "VALID_TRANSITIONS",
]
