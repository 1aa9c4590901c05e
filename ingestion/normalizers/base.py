"""
Ingestion - Base Normalizer.

============================================================
PURPOSE
============================================================
Abstract base class for block normalizers.

============================================================
DESIGN PRINCIPLES
============================================================
- Pure: no I/O, no clock, no randomness
- Deterministic: same raw block -> byte-identical output
- Malformed payloads raise PermanentError attributed to the
  network and height of the block
- Fee-tolerant value conservation per transaction

============================================================
"""

import logging
from abc import ABC, abstractmethod
from decimal import Decimal
from typing import Any, Dict, List, Mapping, Optional, Sequence

from chain_adapters.models import RawBlock
from core.config import ChainModel, NetworkConfig
from core.constants import DEFAULT_FEE_TOLERANCE
from core.exceptions import PermanentError
from ingestion.types import (
    CanonicalBlock,
    CanonicalLink,
    CanonicalTransaction,
    NormalizedBlock,
    OutputRef,
    ResolvedOutput,
)
from ingestion.units import to_base_units


class BaseNormalizer(ABC):
    """
    Abstract base class for block normalizers.

    ============================================================
    RESPONSIBILITIES
    ============================================================
    - Validate the raw payload shape
    - Build canonical block, transactions and links
    - Enforce sum(outputs) <= sum(inputs) + minted (+ tolerance)

    ============================================================
    """

    chain_model: ChainModel

    def __init__(self, fee_tolerance: int = DEFAULT_FEE_TOLERANCE) -> None:
        self._fee_tolerance = Decimal(fee_tolerance)
        self._logger = logging.getLogger(f"normalizer.{self.chain_model.value}")

    # =========================================================
    # ABSTRACT METHODS
    # =========================================================

    @abstractmethod
    def normalize(
        self,
        raw: RawBlock,
        network: NetworkConfig,
        prior_outputs: Optional[Mapping[OutputRef, ResolvedOutput]] = None,
    ) -> NormalizedBlock:
        """
        Convert a raw block into canonical records.

        Args:
            raw: Block as returned by the adapter
            network: Owning network configuration
            prior_outputs: Outputs of earlier blocks spent by this one
                (UTXO only; account normalizers ignore it)

        Raises:
            PermanentError: If the payload is malformed or an input
                cannot be resolved
        """
        pass

    def unresolved_references(
        self,
        raw: RawBlock,
        network: NetworkConfig,
    ) -> List[OutputRef]:
        """Prior outputs this block spends that it cannot resolve by itself."""
        return []

    # =========================================================
    # HELPERS
    # =========================================================

    def _fail(
        self,
        raw: RawBlock,
        message: str,
        field_name: Optional[str] = None,
        cause: Optional[Exception] = None,
    ) -> PermanentError:
        context: Dict[str, Any] = {"chain_model": self.chain_model.value}
        if field_name:
            context["field"] = field_name
        return PermanentError(
            message,
            network_id=raw.network_id,
            height=raw.height,
            context=context,
            cause=cause,
        )

    def _require(self, raw: RawBlock, data: Mapping[str, Any], key: str) -> Any:
        """Get a required field or raise PermanentError."""
        if not isinstance(data, Mapping):
            raise self._fail(raw, f"Expected an object holding '{key}'", key)
        value = data.get(key)
        if value is None:
            raise self._fail(raw, f"Missing field '{key}'", key)
        return value

    def _require_list(self, raw: RawBlock, data: Mapping[str, Any], key: str) -> Sequence[Any]:
        value = self._require(raw, data, key)
        if not isinstance(value, list):
            raise self._fail(raw, f"Field '{key}' must be a list", key)
        return value

    def _to_base_units(
        self,
        raw: RawBlock,
        value: Any,
        decimals: int,
        field_name: str,
    ) -> Decimal:
        """Convert a decimal coin amount to integral base units."""
        try:
            return to_base_units(value, decimals)
        except ValueError as e:
            raise self._fail(raw, str(e), field_name, e)

    def _parse_hex(self, raw: RawBlock, value: Any, field_name: str) -> int:
        """Parse a 0x-prefixed quantity."""
        if isinstance(value, int) and not isinstance(value, bool):
            return value
        if not isinstance(value, str) or not value.startswith("0x"):
            raise self._fail(raw, f"Invalid hex quantity {value!r}", field_name)
        try:
            return int(value, 16)
        except ValueError as e:
            raise self._fail(raw, f"Invalid hex quantity {value!r}", field_name, e)

    def _check_conservation(self, raw: RawBlock, tx: CanonicalTransaction) -> None:
        """Outputs may not exceed inputs plus minted value."""
        limit = tx.input_total + tx.minted + self._fee_tolerance
        if tx.output_total > limit:
            raise self._fail(
                raw,
                f"Transaction {tx.hash} outputs {tx.output_total} exceed "
                f"inputs {tx.input_total} + minted {tx.minted}",
                "outputs",
            )

    def _check_header(self, raw: RawBlock, block: CanonicalBlock) -> None:
        """The payload must describe the block the adapter claims it is."""
        if block.height != raw.height:
            raise self._fail(
                raw, f"Payload height {block.height} != requested {raw.height}", "height"
            )
        if block.hash != raw.hash:
            raise self._fail(raw, f"Payload hash {block.hash} != {raw.hash}", "hash")

    @staticmethod
    def _assemble(
        block: CanonicalBlock,
        transactions: List[CanonicalTransaction],
        links: List[CanonicalLink],
    ) -> NormalizedBlock:
        position = {tx.hash: tx.position for tx in transactions}
        ordered_links = sorted(
            links,
            key=lambda l: (position[l.tx_hash], l.from_address, l.to_address, l.asset),
        )
        return NormalizedBlock(
            block=block,
            transactions=tuple(transactions),
            links=tuple(ordered_links),
        )
