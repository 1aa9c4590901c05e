"""
Block Normalizers.

One pure normalizer per chain model. ``get_normalizer`` picks
the implementation for a network.
"""

from core.config import ChainModel
from core.constants import DEFAULT_FEE_TOLERANCE
from core.exceptions import ConfigurationError

from .account import AccountNormalizer, normalize_account_address
from .base import BaseNormalizer
from .utxo import UtxoNormalizer


_NORMALIZERS = {
    ChainModel.ACCOUNT: AccountNormalizer,
    ChainModel.UTXO: UtxoNormalizer,
}


def get_normalizer(
    chain_model: ChainModel,
    fee_tolerance: int = DEFAULT_FEE_TOLERANCE,
) -> BaseNormalizer:
    """Create the normalizer for a chain model."""
    normalizer_cls = _NORMALIZERS.get(chain_model)
    if normalizer_cls is None:
        raise ConfigurationError(
            f"No normalizer for chain model: {chain_model}",
            config_key="chain_model",
        )
    return normalizer_cls(fee_tolerance=fee_tolerance)


__all__ = [
    "AccountNormalizer",
    "BaseNormalizer",
    "UtxoNormalizer",
    "get_normalizer",
    "normalize_account_address",
]
