"""
Ingestion - UTXO-Model Normalizer.

============================================================
RESPONSIBILITY
============================================================
Normalizes bitcoind-style blocks (getblock verbosity 2 or 3).

- Outputs are indexed as they are seen so later transactions in
  the same block can spend them (in-flight batch)
- Inputs resolve from: inline prevout (verbosity 3), the
  in-flight batch, then the supplied prior outputs
- Any input still unresolved makes the whole block a
  PermanentError
- Coinbase transactions mint their outputs and produce no links

============================================================
LINK CONSTRUCTION
============================================================
Inputs and outputs are aggregated per address. For every input
address A and output address B with A != B:

    amount(A -> B) = in[A] * out[B] // sum(in)

Floor division keeps the sum of a transaction's links at or
below its input total. Inputs spending an unaddressable output
count toward sum(in) but produce no links.

============================================================
"""

from collections import OrderedDict
from decimal import Decimal
from typing import Any, Dict, List, Mapping, Optional, Tuple

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
from ingestion.units import SATOSHI_DECIMALS, script_address


class UtxoNormalizer(BaseNormalizer):
    """Normalizer for UTXO-based chains."""

    chain_model = ChainModel.UTXO

    def normalize(
        self,
        raw: RawBlock,
        network: NetworkConfig,
        prior_outputs: Optional[Mapping[OutputRef, ResolvedOutput]] = None,
    ) -> NormalizedBlock:
        payload = raw.payload
        asset = network.native_asset
        prior_outputs = prior_outputs or {}

        raw_txs = self._require_list(raw, payload, "tx")
        block = CanonicalBlock(
            network_id=raw.network_id,
            height=int(self._require(raw, payload, "height")),
            hash=str(self._require(raw, payload, "hash")),
            parent_hash=payload.get("previousblockhash"),
            timestamp=int(self._require(raw, payload, "time")),
            tx_count=len(raw_txs),
        )
        self._check_header(raw, block)

        in_flight: Dict[OutputRef, ResolvedOutput] = {}
        transactions: List[CanonicalTransaction] = []
        links: List[CanonicalLink] = []
        unresolved: List[OutputRef] = []

        for position, raw_tx in enumerate(raw_txs):
            if not isinstance(raw_tx, dict):
                raise self._fail(raw, "Block was fetched without decoded transactions", "tx")
            tx_hash = str(self._require(raw, raw_tx, "txid"))

            outputs = self._outputs(raw, raw_tx, asset)
            for output in outputs:
                in_flight[OutputRef(tx_hash, output.index)] = ResolvedOutput(
                    address=output.address,
                    amount=output.amount,
                    asset=output.asset,
                )

            vin = self._require_list(raw, raw_tx, "vin")
            if any("coinbase" in v for v in vin if isinstance(v, dict)):
                minted = sum((o.amount for o in outputs), Decimal(0))
                tx = CanonicalTransaction(
                    network_id=raw.network_id,
                    hash=tx_hash,
                    block_hash=block.hash,
                    block_height=block.height,
                    position=position,
                    timestamp=block.timestamp,
                    inputs=(),
                    outputs=tuple(outputs),
                    fee=Decimal(0),
                    minted=minted,
                )
                transactions.append(tx)
                continue

            inputs: List[CanonicalInput] = []
            for index, entry in enumerate(vin):
                ref = self._input_ref(raw, entry)
                resolved = (
                    self._inline_prevout(raw, entry, asset)
                    or in_flight.get(ref)
                    or prior_outputs.get(ref)
                )
                if resolved is None:
                    unresolved.append(ref)
                    continue
                inputs.append(CanonicalInput(
                    index=index,
                    address=resolved.address,
                    asset=resolved.asset,
                    amount=resolved.amount,
                    prev_tx_hash=ref.tx_hash,
                    prev_index=ref.index,
                ))

            if unresolved:
                continue

            input_total = sum((i.amount for i in inputs), Decimal(0))
            output_total = sum((o.amount for o in outputs), Decimal(0))
            tx = CanonicalTransaction(
                network_id=raw.network_id,
                hash=tx_hash,
                block_hash=block.hash,
                block_height=block.height,
                position=position,
                timestamp=block.timestamp,
                inputs=tuple(inputs),
                outputs=tuple(outputs),
                fee=max(input_total - output_total, Decimal(0)),
            )
            self._check_conservation(raw, tx)
            transactions.append(tx)
            links.extend(self._links(tx, block))

        if unresolved:
            preview = ", ".join(f"{r.tx_hash}:{r.index}" for r in unresolved[:5])
            raise self._fail(
                raw,
                f"{len(unresolved)} input(s) spend unknown outputs ({preview})",
                "vin",
            )

        return self._assemble(block, transactions, links)

    def unresolved_references(
        self,
        raw: RawBlock,
        network: NetworkConfig,
    ) -> List[OutputRef]:
        """Prior outputs that are neither inline nor created earlier in the block."""
        produced = set()
        refs: List[OutputRef] = []
        for raw_tx in self._require_list(raw, raw.payload, "tx"):
            if not isinstance(raw_tx, dict):
                raise self._fail(raw, "Block was fetched without decoded transactions", "tx")
            tx_hash = str(self._require(raw, raw_tx, "txid"))
            for entry in self._require_list(raw, raw_tx, "vin"):
                if isinstance(entry, dict) and "coinbase" in entry:
                    continue
                if isinstance(entry, dict) and entry.get("prevout") is not None:
                    continue
                ref = self._input_ref(raw, entry)
                if ref not in produced:
                    refs.append(ref)
            for vout in self._require_list(raw, raw_tx, "vout"):
                produced.add(OutputRef(tx_hash, int(self._require(raw, vout, "n"))))
        return list(OrderedDict.fromkeys(refs))

    # =========================================================
    # PARSING
    # =========================================================

    def _outputs(
        self,
        raw: RawBlock,
        raw_tx: Mapping[str, Any],
        asset: str,
    ) -> List[CanonicalOutput]:
        outputs = []
        for vout in self._require_list(raw, raw_tx, "vout"):
            outputs.append(CanonicalOutput(
                index=int(self._require(raw, vout, "n")),
                address=script_address(vout.get("scriptPubKey")),
                asset=asset,
                amount=self._to_base_units(
                    raw, self._require(raw, vout, "value"), SATOSHI_DECIMALS, "vout.value"
                ),
            ))
        return outputs

    def _input_ref(self, raw: RawBlock, entry: Any) -> OutputRef:
        txid = self._require(raw, entry, "txid")
        vout = self._require(raw, entry, "vout")
        try:
            return OutputRef(str(txid), int(vout))
        except (TypeError, ValueError) as e:
            raise self._fail(raw, f"Invalid input reference {txid}:{vout}", "vin", e)

    def _inline_prevout(
        self,
        raw: RawBlock,
        entry: Mapping[str, Any],
        asset: str,
    ) -> Optional[ResolvedOutput]:
        prevout = entry.get("prevout")
        if prevout is None:
            return None
        return ResolvedOutput(
            address=script_address(prevout.get("scriptPubKey")),
            amount=self._to_base_units(
                raw, self._require(raw, prevout, "value"), SATOSHI_DECIMALS, "prevout.value"
            ),
            asset=asset,
        )

    # =========================================================
    # LINKS
    # =========================================================

    @staticmethod
    def _aggregate(entries) -> Tuple[Dict[str, Decimal], Decimal]:
        totals: Dict[str, Decimal] = {}
        grand_total = Decimal(0)
        for entry in entries:
            grand_total += entry.amount
            if entry.address is None:
                continue
            totals[entry.address] = totals.get(entry.address, Decimal(0)) + entry.amount
        return totals, grand_total

    def _links(self, tx: CanonicalTransaction, block: CanonicalBlock) -> List[CanonicalLink]:
        input_map, input_total = self._aggregate(tx.inputs)
        output_map, _ = self._aggregate(tx.outputs)
        if input_total <= 0:
            return []

        links = []
        for from_address in sorted(input_map):
            for to_address in sorted(output_map):
                if from_address == to_address:
                    continue
                amount = (input_map[from_address] * output_map[to_address]) // input_total
                if amount <= 0:
                    continue
                links.append(CanonicalLink(
                    network_id=tx.network_id,
                    tx_hash=tx.hash,
                    from_address=from_address,
                    to_address=to_address,
                    asset=tx.outputs[0].asset,
                    amount=amount,
                    block_height=block.height,
                    timestamp=block.timestamp,
                ))
        return links
