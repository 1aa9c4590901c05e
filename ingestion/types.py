"""
Ingestion - Canonical Record Types.

============================================================
PURPOSE
============================================================
Network-independent schema produced by the block normalizers
and persisted by the warehouse.

- CanonicalBlock: block header
- CanonicalTransaction: ordered inputs/outputs, fee, minted
- CanonicalLink: derived address-to-address value edge
- NormalizedBlock: one block's complete canonical output

============================================================
DESIGN PRINCIPLES
============================================================
- Immutable (frozen dataclasses, tuples)
- Amounts are integral Decimals in base units
- Timestamps are unix seconds
- Canonical JSON encoding is byte-stable, so normalizing the
  same raw block twice yields the same fingerprint

============================================================
"""

import hashlib
import json
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Dict, NamedTuple, Optional, Tuple


# =============================================================
# UTXO REFERENCES
# =============================================================

class OutputRef(NamedTuple):
    """Reference to a prior transaction output."""
    tx_hash: str
    index: int


@dataclass(frozen=True)
class ResolvedOutput:
    """Address and value of a prior output."""
    address: Optional[str]
    amount: Decimal
    asset: str


# =============================================================
# CANONICAL RECORDS
# =============================================================

@dataclass(frozen=True)
class CanonicalBlock:
    """Normalized block header."""
    network_id: str
    height: int
    hash: str
    parent_hash: Optional[str]
    timestamp: int
    tx_count: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "network_id": self.network_id,
            "height": self.height,
            "hash": self.hash,
            "parent_hash": self.parent_hash,
            "timestamp": self.timestamp,
            "tx_count": self.tx_count,
        }


@dataclass(frozen=True)
class CanonicalInput:
    """
    Value leaving an address.

    For UTXO chains the spent output is referenced by
    (prev_tx_hash, prev_index); account chains leave them None.
    """
    index: int
    address: Optional[str]
    asset: str
    amount: Decimal
    prev_tx_hash: Optional[str] = None
    prev_index: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "index": self.index,
            "address": self.address,
            "asset": self.asset,
            "amount": str(self.amount),
            "prev_tx_hash": self.prev_tx_hash,
            "prev_index": self.prev_index,
        }


@dataclass(frozen=True)
class CanonicalOutput:
    """Value arriving at an address (None for unaddressable scripts)."""
    index: int
    address: Optional[str]
    asset: str
    amount: Decimal

    def to_dict(self) -> Dict[str, Any]:
        return {
            "index": self.index,
            "address": self.address,
            "asset": self.asset,
            "amount": str(self.amount),
        }


@dataclass(frozen=True)
class CanonicalTransaction:
    """Normalized transaction. Belongs to exactly one block."""
    network_id: str
    hash: str
    block_hash: str
    block_height: int
    position: int
    timestamp: int
    inputs: Tuple[CanonicalInput, ...]
    outputs: Tuple[CanonicalOutput, ...]
    fee: Decimal
    minted: Decimal = Decimal(0)

    @property
    def input_total(self) -> Decimal:
        return sum((i.amount for i in self.inputs), Decimal(0))

    @property
    def output_total(self) -> Decimal:
        return sum((o.amount for o in self.outputs), Decimal(0))

    @property
    def is_coinbase(self) -> bool:
        return not self.inputs and self.minted > 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "network_id": self.network_id,
            "hash": self.hash,
            "block_hash": self.block_hash,
            "block_height": self.block_height,
            "position": self.position,
            "timestamp": self.timestamp,
            "inputs": [i.to_dict() for i in self.inputs],
            "outputs": [o.to_dict() for o in self.outputs],
            "fee": str(self.fee),
            "minted": str(self.minted),
        }


@dataclass(frozen=True)
class CanonicalLink:
    """Directed value edge between two addresses within one transaction."""
    network_id: str
    tx_hash: str
    from_address: str
    to_address: str
    asset: str
    amount: Decimal
    block_height: int
    timestamp: int

    @property
    def key(self) -> Tuple[str, str, str, str, str]:
        """Natural key, unique per network."""
        return (self.network_id, self.tx_hash, self.from_address, self.to_address, self.asset)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "network_id": self.network_id,
            "tx_hash": self.tx_hash,
            "from_address": self.from_address,
            "to_address": self.to_address,
            "asset": self.asset,
            "amount": str(self.amount),
            "block_height": self.block_height,
            "timestamp": self.timestamp,
        }


@dataclass(frozen=True)
class NormalizedBlock:
    """Complete canonical output of one raw block."""
    block: CanonicalBlock
    transactions: Tuple[CanonicalTransaction, ...]
    links: Tuple[CanonicalLink, ...]

    @property
    def network_id(self) -> str:
        return self.block.network_id

    @property
    def height(self) -> int:
        return self.block.height

    def touched_addresses(self) -> Tuple[str, ...]:
        """Every address referenced by an input or output, sorted."""
        addresses = set()
        for tx in self.transactions:
            addresses.update(i.address for i in tx.inputs if i.address)
            addresses.update(o.address for o in tx.outputs if o.address)
        return tuple(sorted(addresses))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "block": self.block.to_dict(),
            "transactions": [tx.to_dict() for tx in self.transactions],
            "links": [link.to_dict() for link in self.links],
        }

    def canonical_bytes(self) -> bytes:
        """Byte-stable JSON encoding."""
        return json.dumps(
            self.to_dict(),
            sort_keys=True,
            separators=(",", ":"),
        ).encode("utf-8")

    def fingerprint(self) -> str:
        """SHA-256 of the canonical encoding."""
        return hashlib.sha256(self.canonical_bytes()).hexdigest()
