"""
Ingestion - Account-Model Normalizer.

============================================================
RESPONSIBILITY
============================================================
Normalizes EVM-style blocks (eth_getBlockByNumber with full
transactions, plus optional block receipts).

- One input per transaction: sender, value moved + fee
- One output per transaction: receiver, value moved
- Failed transactions (receipt status 0) move only the fee
- Contract creations use the receipt's contractAddress
- Link: sender -> receiver for the moved value (1:1 mapping)

Addresses are lower-cased; hashes are lower-cased.

============================================================
"""

from decimal import Decimal
from typing import Any, Dict, List, Mapping, Optional

from chain_adapters.models import RawBlock
from core.config import ChainModel, NetworkConfig
from ingestion.normalizers.base import BaseNormalizer
from ingestion.types import (
    CanonicalBlock,
    CanonicalInput,
    CanonicalLink,
    CanonicalOutput,
    CanonicalTransaction,
    NormalizedBlock,
    OutputRef,
    ResolvedOutput,
)


def normalize_account_address(address: Optional[str]) -> Optional[str]:
    """Lower-case hex addresses; None stays None."""
    if address is None:
        return None
    return address.strip().lower()


class AccountNormalizer(BaseNormalizer):
    """Normalizer for account-based chains."""

    chain_model = ChainModel.ACCOUNT

    def normalize(
        self,
        raw: RawBlock,
        network: NetworkConfig,
        prior_outputs: Optional[Mapping[OutputRef, ResolvedOutput]] = None,
    ) -> NormalizedBlock:
        payload = raw.payload
        asset = network.native_asset

        block_hash = str(self._require(raw, payload, "hash")).lower()
        parent_hash = payload.get("parentHash")
        raw_txs = self._require_list(raw, payload, "transactions")

        block = CanonicalBlock(
            network_id=raw.network_id,
            height=self._parse_hex(raw, self._require(raw, payload, "number"), "number"),
            hash=block_hash,
            parent_hash=str(parent_hash).lower() if parent_hash else None,
            timestamp=self._parse_hex(raw, self._require(raw, payload, "timestamp"), "timestamp"),
            tx_count=len(raw_txs),
        )
        self._check_header(raw, block)

        receipts = self._index_receipts(raw)

        transactions: List[CanonicalTransaction] = []
        links: List[CanonicalLink] = []
        seen = set()

        for position, raw_tx in enumerate(raw_txs):
            if not isinstance(raw_tx, dict):
                raise self._fail(raw, "Block was fetched without full transactions", "transactions")

            tx_hash = str(self._require(raw, raw_tx, "hash")).lower()
            if tx_hash in seen:
                raise self._fail(raw, f"Duplicate transaction {tx_hash}", "transactions")
            seen.add(tx_hash)

            sender = normalize_account_address(self._require(raw, raw_tx, "from"))
            value = Decimal(self._parse_hex(raw, self._require(raw, raw_tx, "value"), "value"))

            receipt = receipts.get(tx_hash) if receipts is not None else None
            if receipts is not None and receipt is None:
                raise self._fail(raw, f"Missing receipt for {tx_hash}", "receipts")

            receiver = normalize_account_address(raw_tx.get("to"))
            if receiver is None and receipt is not None:
                receiver = normalize_account_address(receipt.get("contractAddress"))

            fee = self._fee(raw, raw_tx, receipt)
            succeeded = self._succeeded(raw, receipt)
            moved = value if succeeded else Decimal(0)

            outputs = ()
            if receiver is not None:
                outputs = (CanonicalOutput(index=0, address=receiver, asset=asset, amount=moved),)

            tx = CanonicalTransaction(
                network_id=raw.network_id,
                hash=tx_hash,
                block_hash=block.hash,
                block_height=block.height,
                position=position,
                timestamp=block.timestamp,
                inputs=(CanonicalInput(index=0, address=sender, asset=asset, amount=moved + fee),),
                outputs=outputs,
                fee=fee,
            )
            self._check_conservation(raw, tx)
            transactions.append(tx)

            if receiver is not None and moved > 0 and receiver != sender:
                links.append(CanonicalLink(
                    network_id=raw.network_id,
                    tx_hash=tx_hash,
                    from_address=sender,
                    to_address=receiver,
                    asset=asset,
                    amount=moved,
                    block_height=block.height,
                    timestamp=block.timestamp,
                ))

        return self._assemble(block, transactions, links)

    # =========================================================
    # RECEIPTS
    # =========================================================

    def _index_receipts(self, raw: RawBlock) -> Optional[Dict[str, Dict[str, Any]]]:
        if raw.receipts is None:
            return None
        index: Dict[str, Dict[str, Any]] = {}
        for receipt in raw.receipts:
            tx_hash = str(self._require(raw, receipt, "transactionHash")).lower()
            index[tx_hash] = receipt
        return index

    def _fee(
        self,
        raw: RawBlock,
        raw_tx: Mapping[str, Any],
        receipt: Optional[Mapping[str, Any]],
    ) -> Decimal:
        """gasUsed * effective gas price; zero when no receipt is available."""
        if receipt is None:
            return Decimal(0)
        gas_used = self._parse_hex(raw, self._require(raw, receipt, "gasUsed"), "gasUsed")
        price = receipt.get("effectiveGasPrice") or raw_tx.get("gasPrice")
        if price is None:
            raise self._fail(raw, "Receipt without gas price", "effectiveGasPrice")
        return Decimal(gas_used * self._parse_hex(raw, price, "effectiveGasPrice"))

    def _succeeded(self, raw: RawBlock, receipt: Optional[Mapping[str, Any]]) -> bool:
        if receipt is None or receipt.get("status") is None:
            return True
        return self._parse_hex(raw, receipt["status"], "status") == 1
