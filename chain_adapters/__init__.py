"""
Chain Adapters Package.

Per-network clients abstracting block retrieval over account-based
(EVM JSON-RPC) and UTXO-based (bitcoind JSON-RPC) protocols.

Usage:
    from chain_adapters import create_adapter

    async with create_adapter(network_config) as adapter:
        tip = await adapter.latest_height()
        block = await adapter.block_by_height(tip - 6)

Every adapter exposes the same capability set:
    latest_height(), block_by_height(h), block_by_hash(hash)
"""

from .base import BaseChainAdapter, mask_url
from .models import AdapterHealth, AdapterIncident, AdapterStatus, RawBlock
from .providers import AccountChainAdapter, UtxoChainAdapter
from .registry import AdapterRegistry, create_adapter


__all__ = [
    "BaseChainAdapter",
    "mask_url",
    "AdapterHealth",
    "AdapterIncident",
    "AdapterStatus",
    "RawBlock",
    "AccountChainAdapter",
    "UtxoChainAdapter",
    "AdapterRegistry",
    "create_adapter",
]
