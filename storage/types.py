"""
Storage - Result Types.

Plain values returned by the warehouse so callers never hold
ORM objects outside a session.
"""

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Optional


@dataclass(frozen=True)
class TipMarker:
    """Last committed height of a network. block_hash is None after a skip."""
    network_id: str
    height: int
    block_hash: Optional[str]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "network_id": self.network_id,
            "height": self.height,
            "block_hash": self.block_hash,
        }


@dataclass(frozen=True)
class RevokeResult:
    """Outcome of revoking everything above a fork height."""
    network_id: str
    fork_height: int
    blocks: int
    transactions: int
    links: int
    old_tip_height: Optional[int] = None
    old_tip_hash: Optional[str] = None
    new_tip_hash: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "network_id": self.network_id,
            "fork_height": self.fork_height,
            "blocks": self.blocks,
            "transactions": self.transactions,
            "links": self.links,
            "old_tip_height": self.old_tip_height,
            "old_tip_hash": self.old_tip_hash,
            "new_tip_hash": self.new_tip_hash,
        }


@dataclass(frozen=True)
class AddressBalance:
    """Received minus spent per asset, as of a height."""
    network_id: str
    address: str
    height: Optional[int]
    balances: Dict[str, Decimal] = field(default_factory=dict)

    def get(self, asset: str) -> Decimal:
        return self.balances.get(asset, Decimal(0))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "network_id": self.network_id,
            "address": self.address,
            "height": self.height,
            "balances": {asset: str(amount) for asset, amount in sorted(self.balances.items())},
        }


@dataclass(frozen=True)
class LabelInfo:
    """Public view of a label."""
    label_id: str
    name: str
    description: str
    is_locked: bool
    created_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.label_id,
            "name": self.name,
            "description": self.description,
            "is_locked": self.is_locked,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


@dataclass(frozen=True)
class LabeledAddress:
    """An address together with its label."""
    network_id: str
    address: str
    label: LabelInfo
    is_locked: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "network_id": self.network_id,
            "address": self.address,
            "label": self.label.to_dict(),
            "is_locked": self.is_locked,
        }
