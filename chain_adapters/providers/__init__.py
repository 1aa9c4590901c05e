"""Chain adapter providers, one per chain model."""

from .account import AccountChainAdapter
from .utxo import UtxoChainAdapter


__all__ = ["AccountChainAdapter", "UtxoChainAdapter"]
