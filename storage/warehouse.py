"""
Storage - Warehouse.

============================================================
RESPONSIBILITY
============================================================
Durable, queryable store of normalized blocks, transactions,
addresses and derived links, transactional per block.

- upsert_block commits a block and the tip marker together
- revoke_above hard-deletes everything above a fork height
- reads may be served from the cache; writes go to the
  database first, then refresh or invalidate the cache
- snapshot() gives the tracer a read-only view that never
  observes a partially committed block

============================================================
ERRORS
============================================================
Repository exceptions raised by chain data operations are
surfaced as StoreFailure attributed to a network and height.
Label operations raise repository exceptions unchanged so
the query server can map them onto status codes.

============================================================
"""

import logging
from contextlib import contextmanager
from decimal import Decimal
from typing import Any, Dict, Generator, Iterable, List, Optional, Sequence

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from core.config import NetworkConfig
from core.exceptions import StoreFailure
from ingestion.types import (
    CanonicalBlock,
    CanonicalLink,
    CanonicalTransaction,
    NormalizedBlock,
    OutputRef,
    ResolvedOutput,
)
from storage.cache import WarehouseCache
from storage.database import Database
from storage.repositories.chain import ChainRepository, LinkRepository
from storage.repositories.exceptions import RepositoryException
from storage.repositories.labels import LabelRepository
from storage.repositories.networks import NetworkRepository
from storage.types import AddressBalance, LabeledAddress, LabelInfo, RevokeResult, TipMarker


logger = logging.getLogger(__name__)


class WarehouseSnapshot:
    """
    Read-only view over one database transaction.

    Every read sees the same committed state: on PostgreSQL the
    transaction runs at REPEATABLE READ, on SQLite the WAL read
    snapshot is held until the view is closed.
    """

    def __init__(self, session: Session) -> None:
        self._session = session
        self._chain = ChainRepository(session)
        self._links = LinkRepository(session)
        self._labels = LabelRepository(session)

    def get_tip(self, network_id: str) -> Optional[TipMarker]:
        return self._chain.get_tip(network_id)

    def get_links_from(
        self,
        network_id: str,
        address: str,
        since: Optional[int] = None,
        until: Optional[int] = None,
    ) -> List[CanonicalLink]:
        return [r.to_canonical() for r in self._links.links_from(network_id, address, since, until)]

    def get_links_to(
        self,
        network_id: str,
        address: str,
        since: Optional[int] = None,
        until: Optional[int] = None,
    ) -> List[CanonicalLink]:
        return [r.to_canonical() for r in self._links.links_to(network_id, address, since, until)]

    def labels_for(self, network_id: str, addresses: Sequence[str]) -> Dict[str, LabelInfo]:
        return self._labels.labels_for(network_id, addresses)


class Warehouse:
    """Facade over the database, repositories and cache."""

    def __init__(self, database: Database, cache: Optional[WarehouseCache] = None) -> None:
        self._database = database
        self._cache = cache

    @property
    def database(self) -> Database:
        return self._database

    @property
    def cache(self) -> Optional[WarehouseCache]:
        return self._cache

    # =========================================================
    # SESSION HELPERS
    # =========================================================

    @contextmanager
    def _write(
        self,
        operation: str,
        network_id: Optional[str] = None,
        height: Optional[int] = None,
    ) -> Generator[Session, None, None]:
        try:
            with self._database.transaction_scope() as session:
                yield session
        except (RepositoryException, SQLAlchemyError) as e:
            raise StoreFailure(
                f"{operation} failed: {e}",
                operation=operation,
                network_id=network_id,
                height=height,
                cause=e,
            ) from e

    @contextmanager
    def _read(
        self,
        operation: str,
        network_id: Optional[str] = None,
        height: Optional[int] = None,
    ) -> Generator[Session, None, None]:
        try:
            with self._database.read_snapshot() as session:
                yield session
        except (RepositoryException, SQLAlchemyError) as e:
            raise StoreFailure(
                f"{operation} failed: {e}",
                operation=operation,
                network_id=network_id,
                height=height,
                cause=e,
            ) from e

    # =========================================================
    # WRITES
    # =========================================================

    def upsert_block(self, normalized: NormalizedBlock) -> bool:
        """
        Commit a normalized block together with the tip marker.

        Returns:
            True when written, False for an idempotent replay of the
            block already committed at that height

        Raises:
            StoreFailure: different block at an occupied height,
                height not contiguous with the tip, parent mismatch,
                or any database failure
        """
        block = normalized.block
        network_id, height = block.network_id, block.height
        fingerprint = normalized.fingerprint()

        with self._write("upsert_block", network_id, height) as session:
            chain = ChainRepository(session)

            existing = chain.get_block(network_id, height)
            if existing is not None:
                if existing.block_hash == block.hash and existing.fingerprint == fingerprint:
                    logger.debug(f"[{network_id}] Block {height} already committed, replay ignored")
                    return False
                raise StoreFailure(
                    f"Height already holds block {existing.block_hash}, revoke before replacing",
                    operation="upsert_block",
                    network_id=network_id,
                    height=height,
                )

            tip = chain.get_tip(network_id)
            if tip is not None:
                if height != tip.height + 1:
                    raise StoreFailure(
                        f"Block is not contiguous with tip {tip.height}",
                        operation="upsert_block",
                        network_id=network_id,
                        height=height,
                    )
                if tip.block_hash is not None and block.parent_hash != tip.block_hash:
                    raise StoreFailure(
                        f"Parent {block.parent_hash} does not match tip hash {tip.block_hash}",
                        operation="upsert_block",
                        network_id=network_id,
                        height=height,
                    )

            chain.insert_block(normalized)
            chain.set_tip(network_id, height, block.hash)

        if self._cache is not None:
            self._cache.put_block(block)
            self._cache.invalidate_balances(network_id, normalized.touched_addresses())

        logger.info(
            f"[{network_id}] Committed block {height} {block.hash[:16]} "
            f"({len(normalized.transactions)} txs, {len(normalized.links)} links)"
        )
        return True

    def revoke_above(self, network_id: str, height: int) -> RevokeResult:
        """Remove every block, transaction and link above ``height``."""
        with self._write("revoke_above", network_id, height) as session:
            result = ChainRepository(session).revoke_above(network_id, height)

        if self._cache is not None:
            self._cache.invalidate_blocks_above(network_id, height)
            self._cache.invalidate_network_balances(network_id)

        logger.warning(
            f"[{network_id}] Revoked above {height}: {result.blocks} blocks, "
            f"{result.transactions} txs, {result.links} links"
        )
        return result

    def record_skipped(
        self,
        network_id: str,
        height: int,
        reason: str,
        block_hash: Optional[str] = None,
    ) -> None:
        """
        Advance the tip past a height that cannot be ingested.

        A known ``block_hash`` becomes the tip hash, so the next
        block is still parent-checked against it.
        """
        with self._write("record_skipped", network_id, height) as session:
            chain = ChainRepository(session)
            tip = chain.get_tip(network_id)
            if tip is not None and height != tip.height + 1:
                raise StoreFailure(
                    f"Skipped height is not contiguous with tip {tip.height}",
                    operation="record_skipped",
                    network_id=network_id,
                    height=height,
                )
            chain.add_skipped(network_id, height, reason, block_hash)
            chain.set_tip(network_id, height, block_hash)

        if self._cache is not None:
            self._cache.invalidate_balances(network_id, ())

        logger.warning(f"[{network_id}] Skipped height {height}: {reason}")

    def sync_network(self, config: NetworkConfig) -> Dict[str, Any]:
        with self._write("sync_network", config.network_id) as session:
            return NetworkRepository(session).sync(config).to_dict()

    # =========================================================
    # CHAIN READS
    # =========================================================

    def get_tip(self, network_id: str) -> Optional[TipMarker]:
        with self._read("get_tip", network_id) as session:
            return ChainRepository(session).get_tip(network_id)

    def get_block(self, network_id: str, height: int) -> Optional[CanonicalBlock]:
        if self._cache is not None:
            cached = self._cache.get_block(network_id, height)
            if cached is not None:
                return cached
        with self._read("get_block", network_id, height) as session:
            record = ChainRepository(session).get_block(network_id, height)
            return record.to_canonical() if record is not None else None

    def stored_hash(self, network_id: str, height: int) -> Optional[str]:
        """Hash held at ``height``: the committed block's, else the skip record's."""
        block = self.get_block(network_id, height)
        if block is not None:
            return block.hash
        with self._read("stored_hash", network_id, height) as session:
            skipped = ChainRepository(session).get_skipped(network_id, height)
            return skipped.block_hash if skipped is not None else None

    def get_transaction(
        self,
        tx_hash: str,
        network_id: Optional[str] = None,
    ) -> Optional[CanonicalTransaction]:
        with self._read("get_transaction", network_id) as session:
            return ChainRepository(session).get_transaction(tx_hash, network_id)

    def get_links_from(
        self,
        network_id: str,
        address: str,
        since: Optional[int] = None,
        until: Optional[int] = None,
    ) -> List[CanonicalLink]:
        with self.snapshot() as view:
            return view.get_links_from(network_id, address, since, until)

    def get_links_to(
        self,
        network_id: str,
        address: str,
        since: Optional[int] = None,
        until: Optional[int] = None,
    ) -> List[CanonicalLink]:
        with self.snapshot() as view:
            return view.get_links_to(network_id, address, since, until)

    def find_outputs(
        self,
        network_id: str,
        refs: Iterable[OutputRef],
    ) -> Dict[OutputRef, ResolvedOutput]:
        refs = list(refs)
        if not refs:
            return {}
        with self._read("find_outputs", network_id) as session:
            return ChainRepository(session).find_outputs(network_id, refs)

    def balance_at(
        self,
        network_id: str,
        address: str,
        height: Optional[int] = None,
        asset: Optional[str] = None,
    ) -> AddressBalance:
        """
        Sum received minus sum spent per asset.

        Only balances at the current tip (``height=None``) are cached.
        """
        balance = None
        generation = None
        if height is None and self._cache is not None:
            balance = self._cache.get_balance(network_id, address)
            generation = self._cache.generation(network_id)

        if balance is None:
            with self._read("balance_at", network_id, height) as session:
                chain = ChainRepository(session)
                as_of = height
                if as_of is None:
                    tip = chain.get_tip(network_id)
                    as_of = tip.height if tip is not None else None
                balance = AddressBalance(
                    network_id=network_id,
                    address=address,
                    height=as_of,
                    balances=chain.balance(network_id, address, height),
                )
            if generation is not None:
                self._cache.put_balance(balance, generation)

        if asset is not None:
            return AddressBalance(
                network_id=balance.network_id,
                address=balance.address,
                height=balance.height,
                balances={asset: balance.balances.get(asset, Decimal(0))},
            )
        return balance

    @contextmanager
    def snapshot(self) -> Generator[WarehouseSnapshot, None, None]:
        """Read-only consistent view for multi-query readers."""
        with self._read("snapshot") as session:
            yield WarehouseSnapshot(session)

    def list_networks(self) -> List[Dict[str, Any]]:
        with self._read("list_networks") as session:
            networks = []
            chain = ChainRepository(session)
            for record in NetworkRepository(session).list_networks():
                entry = record.to_dict()
                tip = chain.get_tip(record.network_id)
                entry["tip"] = tip.to_dict() if tip is not None else None
                networks.append(entry)
            return networks

    def get_reorg_events(self, network_id: str, limit: int = 100) -> List[Dict[str, Any]]:
        with self._read("get_reorg_events", network_id) as session:
            return [
                {
                    "fork_height": e.fork_height,
                    "old_tip_height": e.old_tip_height,
                    "old_tip_hash": e.old_tip_hash,
                    "new_tip_hash": e.new_tip_hash,
                    "blocks_revoked": e.blocks_revoked,
                    "transactions_revoked": e.transactions_revoked,
                    "links_revoked": e.links_revoked,
                    "created_at": e.created_at.isoformat() if e.created_at else None,
                }
                for e in ChainRepository(session).list_reorg_events(network_id, limit)
            ]

    def get_skipped(self, network_id: str, limit: int = 100) -> List[Dict[str, Any]]:
        with self._read("get_skipped", network_id) as session:
            return [
                {"height": s.height, "block_hash": s.block_hash, "reason": s.reason}
                for s in ChainRepository(session).list_skipped(network_id, limit)
            ]

    # =========================================================
    # LABELS
    # =========================================================

    def create_label(self, name: str, description: str = "", is_locked: bool = False) -> LabelInfo:
        with self._database.transaction_scope() as session:
            return LabelRepository(session).create_label(name, description, is_locked)

    def get_label(self, label_id: str) -> LabelInfo:
        with self._database.read_snapshot() as session:
            return LabelRepository(session).get_label(label_id)

    def list_labels(self, limit: int = 1000, offset: int = 0) -> List[LabelInfo]:
        with self._database.read_snapshot() as session:
            return LabelRepository(session).list_labels(limit, offset)

    def update_label(
        self,
        label_id: str,
        name: Optional[str] = None,
        description: Optional[str] = None,
        is_locked: Optional[bool] = None,
    ) -> LabelInfo:
        with self._database.transaction_scope() as session:
            return LabelRepository(session).update_label(label_id, name, description, is_locked)

    def delete_label(self, label_id: str) -> None:
        with self._database.transaction_scope() as session:
            LabelRepository(session).delete_label(label_id)

    def assign_label(self, network_id: str, address: str, label_id: str) -> LabeledAddress:
        with self._database.transaction_scope() as session:
            return LabelRepository(session).assign_label(network_id, address, label_id)

    def unassign_label(self, network_id: str, address: str) -> None:
        with self._database.transaction_scope() as session:
            LabelRepository(session).unassign_label(network_id, address)

    def delete_addresses(self, network_id: str, addresses: Sequence[str]) -> int:
        with self._database.transaction_scope() as session:
            return LabelRepository(session).delete_addresses(network_id, addresses)

    def set_address_locked(self, network_id: str, address: str, is_locked: bool) -> None:
        with self._database.transaction_scope() as session:
            LabelRepository(session).set_address_locked(network_id, address, is_locked)

    def labels_for(self, network_id: str, addresses: Sequence[str]) -> Dict[str, LabelInfo]:
        with self._database.read_snapshot() as session:
            return LabelRepository(session).labels_for(network_id, addresses)

    def addresses_with_label(self, label_id: str, network_id: Optional[str] = None) -> List[str]:
        with self._database.read_snapshot() as session:
            return LabelRepository(session).addresses_with_label(label_id, network_id)

    # =========================================================
    # STATUS
    # =========================================================

    def get_stats(self) -> Dict[str, Any]:
        return {
            "backend": self._database.engine.dialect.name,
            "cache": self._cache.get_stats() if self._cache is not None else None,
        }
