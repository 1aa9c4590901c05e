"""
Chain Domain ORM Models.

============================================================
PURPOSE
============================================================
Persisted form of the canonical schema plus the bookkeeping
tables of the scan scheduler.

============================================================
DATA LIFECYCLE ROLE
============================================================
- blocks / transactions / tx_inputs / tx_outputs / links:
  written only by Warehouse.upsert_block, one database
  transaction per block together with the tip marker;
  hard-deleted above the fork point on reorg
- tip_markers: last committed (or skipped) height per network
- skipped_blocks: gaps left by permanent normalization errors
- reorg_events: audit trail of every revoke
- addresses / labels: the only externally mutable records

============================================================
MODELS
============================================================
- NetworkRecord, BlockRecord, TransactionRecord
- TxInputRecord, TxOutputRecord, LinkRecord
- AddressRecord, LabelRecord
- TipMarkerRecord, SkippedBlockRecord, ReorgEventRecord

============================================================
"""

from decimal import Decimal
from typing import List, Optional

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from ingestion.types import (
    CanonicalBlock,
    CanonicalInput,
    CanonicalLink,
    CanonicalOutput,
    CanonicalTransaction,
)
from storage.models.base import Amount, Base, TimestampMixin


# =============================================================
# NETWORKS
# =============================================================


class NetworkRecord(Base, TimestampMixin):
    """Registered network. Immutable except for endpoint rotation."""

    __tablename__ = "networks"

    network_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    name: Mapped[str] = mapped_column(String(128), nullable=False)
    chain_model: Mapped[str] = mapped_column(
        String(16),
        nullable=False,
        comment="account | utxo"
    )
    native_asset: Mapped[str] = mapped_column(String(32), nullable=False)
    rpc_endpoints: Mapped[list] = mapped_column(
        JSON,
        nullable=False,
        default=list,
        comment="Endpoint URLs with credentials masked"
    )
    confirmation_depth: Mapped[int] = mapped_column(Integer, nullable=False)
    max_reorg_depth: Mapped[int] = mapped_column(Integer, nullable=False)

    def to_dict(self) -> dict:
        return {
            "id": self.network_id,
            "name": self.name,
            "chain_model": self.chain_model,
            "native_asset": self.native_asset,
            "confirmation_depth": self.confirmation_depth,
            "max_reorg_depth": self.max_reorg_depth,
            "rpc_endpoint_count": len(self.rpc_endpoints or []),
        }


# =============================================================
# BLOCKS & TRANSACTIONS
# =============================================================


class BlockRecord(Base):
    """Committed block header."""

    __tablename__ = "blocks"

    network_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    height: Mapped[int] = mapped_column(BigInteger, primary_key=True)
    block_hash: Mapped[str] = mapped_column(String(128), nullable=False)
    parent_hash: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    timestamp: Mapped[int] = mapped_column(BigInteger, nullable=False, comment="Unix seconds")
    tx_count: Mapped[int] = mapped_column(Integer, nullable=False)
    fingerprint: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
        comment="SHA-256 of the canonical encoding, detects replays"
    )

    __table_args__ = (
        UniqueConstraint("network_id", "block_hash", name="uq_blocks_network_hash"),
    )

    def to_canonical(self) -> CanonicalBlock:
        return CanonicalBlock(
            network_id=self.network_id,
            height=self.height,
            hash=self.block_hash,
            parent_hash=self.parent_hash,
            timestamp=self.timestamp,
            tx_count=self.tx_count,
        )


class TransactionRecord(Base):
    """Committed transaction. Belongs to exactly one block."""

    __tablename__ = "transactions"

    network_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    tx_hash: Mapped[str] = mapped_column(String(128), primary_key=True)
    block_hash: Mapped[str] = mapped_column(String(128), nullable=False)
    block_height: Mapped[int] = mapped_column(BigInteger, nullable=False)
    position: Mapped[int] = mapped_column(Integer, nullable=False)
    timestamp: Mapped[int] = mapped_column(BigInteger, nullable=False)
    fee: Mapped[Decimal] = mapped_column(Amount, nullable=False)
    minted: Mapped[Decimal] = mapped_column(Amount, nullable=False)

    __table_args__ = (
        Index("ix_transactions_network_height", "network_id", "block_height"),
        Index("ix_transactions_hash", "tx_hash"),
    )

    def to_canonical(
        self,
        inputs: List["TxInputRecord"],
        outputs: List["TxOutputRecord"],
    ) -> CanonicalTransaction:
        return CanonicalTransaction(
            network_id=self.network_id,
            hash=self.tx_hash,
            block_hash=self.block_hash,
            block_height=self.block_height,
            position=self.position,
            timestamp=self.timestamp,
            inputs=tuple(i.to_canonical() for i in sorted(inputs, key=lambda r: r.input_index)),
            outputs=tuple(o.to_canonical() for o in sorted(outputs, key=lambda r: r.output_index)),
            fee=self.fee,
            minted=self.minted,
        )


class TxInputRecord(Base):
    """Value leaving an address."""

    __tablename__ = "tx_inputs"

    network_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    tx_hash: Mapped[str] = mapped_column(String(128), primary_key=True)
    input_index: Mapped[int] = mapped_column(Integer, primary_key=True)
    block_height: Mapped[int] = mapped_column(BigInteger, nullable=False)
    address: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    asset: Mapped[str] = mapped_column(String(32), nullable=False)
    amount: Mapped[Decimal] = mapped_column(Amount, nullable=False)
    prev_tx_hash: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    prev_index: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    __table_args__ = (
        Index("ix_tx_inputs_address", "network_id", "address"),
        Index("ix_tx_inputs_height", "network_id", "block_height"),
    )

    def to_canonical(self) -> CanonicalInput:
        return CanonicalInput(
            index=self.input_index,
            address=self.address,
            asset=self.asset,
            amount=self.amount,
            prev_tx_hash=self.prev_tx_hash,
            prev_index=self.prev_index,
        )


class TxOutputRecord(Base):
    """Value arriving at an address; also the UTXO resolution index."""

    __tablename__ = "tx_outputs"

    network_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    tx_hash: Mapped[str] = mapped_column(String(128), primary_key=True)
    output_index: Mapped[int] = mapped_column(Integer, primary_key=True)
    block_height: Mapped[int] = mapped_column(BigInteger, nullable=False)
    address: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    asset: Mapped[str] = mapped_column(String(32), nullable=False)
    amount: Mapped[Decimal] = mapped_column(Amount, nullable=False)

    __table_args__ = (
        Index("ix_tx_outputs_address", "network_id", "address"),
        Index("ix_tx_outputs_height", "network_id", "block_height"),
    )

    def to_canonical(self) -> CanonicalOutput:
        return CanonicalOutput(
            index=self.output_index,
            address=self.address,
            asset=self.asset,
            amount=self.amount,
        )


class LinkRecord(Base):
    """Derived address-to-address edge. Regenerated, never mutated."""

    __tablename__ = "links"

    id: Mapped[int] = mapped_column(
        BigInteger().with_variant(Integer, "sqlite"),
        primary_key=True,
        autoincrement=True,
    )
    network_id: Mapped[str] = mapped_column(String(64), nullable=False)
    tx_hash: Mapped[str] = mapped_column(String(128), nullable=False)
    from_address: Mapped[str] = mapped_column(String(128), nullable=False)
    to_address: Mapped[str] = mapped_column(String(128), nullable=False)
    asset: Mapped[str] = mapped_column(String(32), nullable=False)
    amount: Mapped[Decimal] = mapped_column(Amount, nullable=False)
    block_height: Mapped[int] = mapped_column(BigInteger, nullable=False)
    timestamp: Mapped[int] = mapped_column(BigInteger, nullable=False)

    __table_args__ = (
        UniqueConstraint(
            "network_id", "tx_hash", "from_address", "to_address", "asset",
            name="uq_links_natural_key",
        ),
        Index("ix_links_from", "network_id", "from_address", "timestamp"),
        Index("ix_links_to", "network_id", "to_address", "timestamp"),
        Index("ix_links_height", "network_id", "block_height"),
    )

    @classmethod
    def from_canonical(cls, link: CanonicalLink) -> "LinkRecord":
        return cls(
            network_id=link.network_id,
            tx_hash=link.tx_hash,
            from_address=link.from_address,
            to_address=link.to_address,
            asset=link.asset,
            amount=link.amount,
            block_height=link.block_height,
            timestamp=link.timestamp,
        )

    def to_canonical(self) -> CanonicalLink:
        return CanonicalLink(
            network_id=self.network_id,
            tx_hash=self.tx_hash,
            from_address=self.from_address,
            to_address=self.to_address,
            asset=self.asset,
            amount=self.amount,
            block_height=self.block_height,
            timestamp=self.timestamp,
        )


# =============================================================
# ADDRESSES & LABELS
# =============================================================


class LabelRecord(Base, TimestampMixin):
    """Named label attached to addresses (exchanges, mixers, sanctioned...)."""

    __tablename__ = "labels"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    label_id: Mapped[str] = mapped_column(
        String(32),
        nullable=False,
        unique=True,
        comment="Public identifier"
    )
    name: Mapped[str] = mapped_column(String(128), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    is_locked: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
        comment="Locked labels cannot be changed or deleted"
    )
    is_deleted: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)


class AddressRecord(Base):
    """Network-scoped address. Created on first reference."""

    __tablename__ = "addresses"

    network_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    address: Mapped[str] = mapped_column(String(128), primary_key=True)
    first_seen_height: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True)
    label_pk: Mapped[Optional[int]] = mapped_column(
        ForeignKey("labels.id"),
        nullable=True,
    )
    is_locked: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_deleted: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
        comment="Hidden from the label surface; ingestion ignores it"
    )

    __table_args__ = (
        Index("ix_addresses_label", "label_pk"),
    )


# =============================================================
# SCAN BOOKKEEPING
# =============================================================


class TipMarkerRecord(Base, TimestampMixin):
    """Last committed height per network."""

    __tablename__ = "tip_markers"

    network_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    height: Mapped[int] = mapped_column(BigInteger, nullable=False)
    block_hash: Mapped[Optional[str]] = mapped_column(
        String(128),
        nullable=True,
        comment="NULL when the tip height was skipped"
    )


class SkippedBlockRecord(Base, TimestampMixin):
    """Height skipped after a permanent error (gap-tolerant networks)."""

    __tablename__ = "skipped_blocks"

    network_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    height: Mapped[int] = mapped_column(BigInteger, primary_key=True)
    block_hash: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    reason: Mapped[str] = mapped_column(Text, nullable=False)


class ReorgEventRecord(Base, TimestampMixin):
    """Audit row written by every revoke."""

    __tablename__ = "reorg_events"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    network_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    fork_height: Mapped[int] = mapped_column(BigInteger, nullable=False)
    old_tip_height: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True)
    old_tip_hash: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    new_tip_hash: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    blocks_revoked: Mapped[int] = mapped_column(Integer, nullable=False)
    transactions_revoked: Mapped[int] = mapped_column(Integer, nullable=False)
    links_revoked: Mapped[int] = mapped_column(Integer, nullable=False)
