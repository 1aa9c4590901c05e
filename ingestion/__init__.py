"""
Ingestion Package.

Turns raw, network-specific blocks into the canonical schema.

Components:
- types: Canonical records (blocks, transactions, links)
- normalizers: Pure per-chain-model normalizers
"""

from .normalizers import AccountNormalizer, BaseNormalizer, UtxoNormalizer, get_normalizer
from .types import (
    CanonicalBlock,
    CanonicalInput,
    CanonicalLink,
    CanonicalOutput,
    CanonicalTransaction,
    NormalizedBlock,
    OutputRef,
    ResolvedOutput,
)


__all__ = [
    "AccountNormalizer",
    "BaseNormalizer",
    "UtxoNormalizer",
    "get_normalizer",
    "CanonicalBlock",
    "CanonicalInput",
    "CanonicalLink",
    "CanonicalOutput",
    "CanonicalTransaction",
    "NormalizedBlock",
    "OutputRef",
    "ResolvedOutput",
]
