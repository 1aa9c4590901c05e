"""
Chain Repository.

============================================================
PURPOSE
============================================================
Session-level access to blocks, transactions, inputs, outputs,
links, tip markers and scan bookkeeping of one warehouse.

Transaction boundaries belong to the caller: one block insert,
one revoke or one skip record is one database transaction,
always together with the tip marker update.

============================================================
"""

from collections import defaultdict
from decimal import Decimal
from typing import Dict, Iterable, List, Optional, Sequence, Set

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ingestion.types import CanonicalTransaction, NormalizedBlock, OutputRef, ResolvedOutput
from storage.models.chain import (
    AddressRecord,
    BlockRecord,
    LinkRecord,
    ReorgEventRecord,
    SkippedBlockRecord,
    TipMarkerRecord,
    TransactionRecord,
    TxInputRecord,
    TxOutputRecord,
)
from storage.repositories.base import BaseRepository, chunked
from storage.types import RevokeResult, TipMarker


class ChainRepository(BaseRepository[BlockRecord]):
    """Repository for committed chain data of all networks."""

    def __init__(self, session: Session) -> None:
        super().__init__(session, BlockRecord, "ChainRepository")

    # =========================================================
    # BLOCKS & TIP
    # =========================================================

    def get_block(self, network_id: str, height: int) -> Optional[BlockRecord]:
        return self._get((network_id, height))

    def get_tip(self, network_id: str) -> Optional[TipMarker]:
        try:
            record = self._session.get(TipMarkerRecord, network_id)
        except SQLAlchemyError as e:
            self._handle_db_error(e, "get_tip", {"network_id": network_id})
            raise
        if record is None:
            return None
        return TipMarker(network_id=network_id, height=record.height, block_hash=record.block_hash)

    def set_tip(self, network_id: str, height: int, block_hash: Optional[str]) -> None:
        record = self._session.get(TipMarkerRecord, network_id)
        if record is None:
            record = TipMarkerRecord(network_id=network_id, height=height, block_hash=block_hash)
            self._session.add(record)
        else:
            record.height = height
            record.block_hash = block_hash
        self._session.flush()

    def clear_tip(self, network_id: str) -> None:
        self._delete_where(TipMarkerRecord, TipMarkerRecord.network_id == network_id)

    # =========================================================
    # INSERT
    # =========================================================

    def insert_block(self, normalized: NormalizedBlock) -> None:
        """Insert one normalized block with all of its records."""
        block = normalized.block
        network_id = block.network_id
        records: List[object] = [
            BlockRecord(
                network_id=network_id,
                height=block.height,
                block_hash=block.hash,
                parent_hash=block.parent_hash,
                timestamp=block.timestamp,
                tx_count=block.tx_count,
                fingerprint=normalized.fingerprint(),
            )
        ]

        for tx in normalized.transactions:
            records.append(TransactionRecord(
                network_id=network_id,
                tx_hash=tx.hash,
                block_hash=tx.block_hash,
                block_height=tx.block_height,
                position=tx.position,
                timestamp=tx.timestamp,
                fee=tx.fee,
                minted=tx.minted,
            ))
            records.extend(
                TxInputRecord(
                    network_id=network_id,
                    tx_hash=tx.hash,
                    input_index=i.index,
                    block_height=tx.block_height,
                    address=i.address,
                    asset=i.asset,
                    amount=i.amount,
                    prev_tx_hash=i.prev_tx_hash,
                    prev_index=i.prev_index,
                )
                for i in tx.inputs
            )
            records.extend(
                TxOutputRecord(
                    network_id=network_id,
                    tx_hash=tx.hash,
                    output_index=o.index,
                    block_height=tx.block_height,
                    address=o.address,
                    asset=o.asset,
                    amount=o.amount,
                )
                for o in tx.outputs
            )

        records.extend(LinkRecord.from_canonical(link) for link in normalized.links)

        touched = normalized.touched_addresses()
        known = self._known_addresses(network_id, touched)
        records.extend(
            AddressRecord(network_id=network_id, address=address, first_seen_height=block.height)
            for address in touched
            if address not in known
        )

        self._add_all(records, "insert_block")
        self._logger.debug(
            f"[{network_id}] Inserted block {block.height} "
            f"({len(normalized.transactions)} txs, {len(normalized.links)} links)"
        )

    def _known_addresses(self, network_id: str, addresses: Sequence[str]) -> Set[str]:
        known: Set[str] = set()
        for chunk in chunked(list(addresses)):
            stmt = select(AddressRecord.address).where(
                AddressRecord.network_id == network_id,
                AddressRecord.address.in_(chunk),
            )
            known.update(self._execute_query(stmt, "known_addresses"))
        return known

    # =========================================================
    # REVOKE & SKIP
    # =========================================================

    def revoke_above(self, network_id: str, height: int) -> RevokeResult:
        """
        Hard-delete every record above ``height`` and move the tip.

        The tip becomes the block at ``height``, the skip record at
        ``height`` (with the hash it was recorded with), or
        disappears when nothing at or below ``height`` was ever
        committed.
        """
        old_tip = self.get_tip(network_id)

        links = self._delete_where(
            LinkRecord, LinkRecord.network_id == network_id, LinkRecord.block_height > height
        )
        self._delete_where(
            TxInputRecord, TxInputRecord.network_id == network_id, TxInputRecord.block_height > height
        )
        self._delete_where(
            TxOutputRecord, TxOutputRecord.network_id == network_id, TxOutputRecord.block_height > height
        )
        transactions = self._delete_where(
            TransactionRecord,
            TransactionRecord.network_id == network_id,
            TransactionRecord.block_height > height,
        )
        self._delete_where(
            SkippedBlockRecord,
            SkippedBlockRecord.network_id == network_id,
            SkippedBlockRecord.height > height,
        )
        blocks = self._delete_where(
            BlockRecord, BlockRecord.network_id == network_id, BlockRecord.height > height
        )

        new_tip_hash: Optional[str] = None
        fork_block = self.get_block(network_id, height)
        fork_skip = self.get_skipped(network_id, height) if fork_block is None else None
        if fork_block is not None:
            new_tip_hash = fork_block.block_hash
            self.set_tip(network_id, height, new_tip_hash)
        elif fork_skip is not None:
            new_tip_hash = fork_skip.block_hash
            self.set_tip(network_id, height, new_tip_hash)
        else:
            self.clear_tip(network_id)

        result = RevokeResult(
            network_id=network_id,
            fork_height=height,
            blocks=blocks,
            transactions=transactions,
            links=links,
            old_tip_height=old_tip.height if old_tip else None,
            old_tip_hash=old_tip.block_hash if old_tip else None,
            new_tip_hash=new_tip_hash,
        )
        self._add(ReorgEventRecord(
            network_id=network_id,
            fork_height=height,
            old_tip_height=result.old_tip_height,
            old_tip_hash=result.old_tip_hash,
            new_tip_hash=new_tip_hash,
            blocks_revoked=blocks,
            transactions_revoked=transactions,
            links_revoked=links,
        ))
        return result

    def get_skipped(self, network_id: str, height: int) -> Optional[SkippedBlockRecord]:
        return self._session.get(SkippedBlockRecord, (network_id, height))

    def add_skipped(
        self,
        network_id: str,
        height: int,
        reason: str,
        block_hash: Optional[str] = None,
    ) -> None:
        self._add(SkippedBlockRecord(
            network_id=network_id,
            height=height,
            block_hash=block_hash,
            reason=reason[:2000],
        ))

    def list_skipped(self, network_id: str, limit: int = 100) -> List[SkippedBlockRecord]:
        stmt = (
            select(SkippedBlockRecord)
            .where(SkippedBlockRecord.network_id == network_id)
            .order_by(SkippedBlockRecord.height.desc())
            .limit(limit)
        )
        return self._execute_query(stmt, "list_skipped")

    def list_reorg_events(self, network_id: str, limit: int = 100) -> List[ReorgEventRecord]:
        stmt = (
            select(ReorgEventRecord)
            .where(ReorgEventRecord.network_id == network_id)
            .order_by(ReorgEventRecord.id.desc())
            .limit(limit)
        )
        return self._execute_query(stmt, "list_reorg_events")

    # =========================================================
    # LOOKUPS
    # =========================================================

    def find_outputs(
        self,
        network_id: str,
        refs: Iterable[OutputRef],
    ) -> Dict[OutputRef, ResolvedOutput]:
        """Resolve prior outputs from committed blocks."""
        wanted = set(refs)
        resolved: Dict[OutputRef, ResolvedOutput] = {}
        tx_hashes = sorted({ref.tx_hash for ref in wanted})
        for chunk in chunked(tx_hashes):
            stmt = select(TxOutputRecord).where(
                TxOutputRecord.network_id == network_id,
                TxOutputRecord.tx_hash.in_(chunk),
            )
            for output in self._execute_query(stmt, "find_outputs"):
                ref = OutputRef(output.tx_hash, output.output_index)
                if ref in wanted:
                    resolved[ref] = ResolvedOutput(
                        address=output.address,
                        amount=output.amount,
                        asset=output.asset,
                    )
        return resolved

    def get_transaction(
        self,
        tx_hash: str,
        network_id: Optional[str] = None,
    ) -> Optional[CanonicalTransaction]:
        candidates = {tx_hash, tx_hash.lower()}
        stmt = select(TransactionRecord).where(TransactionRecord.tx_hash.in_(candidates))
        if network_id is not None:
            stmt = stmt.where(TransactionRecord.network_id == network_id)
        stmt = stmt.order_by(TransactionRecord.network_id).limit(1)
        record = self._execute_scalar(stmt, "get_transaction")
        if record is None:
            return None

        inputs = self._execute_query(
            select(TxInputRecord).where(
                TxInputRecord.network_id == record.network_id,
                TxInputRecord.tx_hash == record.tx_hash,
            ),
            "get_transaction_inputs",
        )
        outputs = self._execute_query(
            select(TxOutputRecord).where(
                TxOutputRecord.network_id == record.network_id,
                TxOutputRecord.tx_hash == record.tx_hash,
            ),
            "get_transaction_outputs",
        )
        return record.to_canonical(inputs, outputs)

    def balance(
        self,
        network_id: str,
        address: str,
        height: Optional[int] = None,
    ) -> Dict[str, Decimal]:
        """Sum received minus sum spent per asset, up to ``height``."""
        balances: Dict[str, Decimal] = defaultdict(lambda: Decimal(0))

        received = select(TxOutputRecord).where(
            TxOutputRecord.network_id == network_id,
            TxOutputRecord.address == address,
        )
        spent = select(TxInputRecord).where(
            TxInputRecord.network_id == network_id,
            TxInputRecord.address == address,
        )
        if height is not None:
            received = received.where(TxOutputRecord.block_height <= height)
            spent = spent.where(TxInputRecord.block_height <= height)

        for output in self._execute_query(received, "balance_received"):
            balances[output.asset] += output.amount
        for spent_input in self._execute_query(spent, "balance_spent"):
            balances[spent_input.asset] -= spent_input.amount
        return dict(balances)


class LinkRepository(BaseRepository[LinkRecord]):
    """Read access to derived links, the tracer's edge set."""

    def __init__(self, session: Session) -> None:
        super().__init__(session, LinkRecord, "LinkRepository")

    def links_from(
        self,
        network_id: str,
        address: str,
        since: Optional[int] = None,
        until: Optional[int] = None,
    ) -> List[LinkRecord]:
        return self._links(LinkRecord.from_address, network_id, address, since, until)

    def links_to(
        self,
        network_id: str,
        address: str,
        since: Optional[int] = None,
        until: Optional[int] = None,
    ) -> List[LinkRecord]:
        return self._links(LinkRecord.to_address, network_id, address, since, until)

    def _links(self, column, network_id, address, since, until) -> List[LinkRecord]:
        stmt = select(LinkRecord).where(
            LinkRecord.network_id == network_id,
            column == address,
        )
        if since is not None:
            stmt = stmt.where(LinkRecord.timestamp >= since)
        if until is not None:
            stmt = stmt.where(LinkRecord.timestamp <= until)
        stmt = stmt.order_by(
            LinkRecord.block_height,
            LinkRecord.tx_hash,
            LinkRecord.from_address,
            LinkRecord.to_address,
            LinkRecord.asset,
        )
        return self._execute_query(stmt, "links")
