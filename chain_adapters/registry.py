"""
Chain Adapter Registry - One adapter per indexed network.

Features:
- Adapter creation from network configuration (by chain model)
- Registration and lookup by network id
- Health checks across all networks
- Shared lifecycle (close all sessions)
"""

import asyncio
import logging
from typing import Dict, List, Optional, Type

import aiohttp

from chain_adapters.base import BaseChainAdapter
from chain_adapters.models import AdapterHealth, AdapterStatus
from chain_adapters.providers.account import AccountChainAdapter
from chain_adapters.providers.utxo import UtxoChainAdapter
from core.clock import now_utc
from core.config import ChainModel, NetworkConfig
from core.exceptions import ConfigurationError


logger = logging.getLogger(__name__)


ADAPTER_TYPES: Dict[ChainModel, Type[BaseChainAdapter]] = {
    ChainModel.ACCOUNT: AccountChainAdapter,
    ChainModel.UTXO: UtxoChainAdapter,
}


def create_adapter(
    network: NetworkConfig,
    session: Optional[aiohttp.ClientSession] = None,
) -> BaseChainAdapter:
    """Create the adapter matching a network's chain model."""
    adapter_cls = ADAPTER_TYPES.get(network.chain_model)
    if adapter_cls is None:
        raise ConfigurationError(
            f"No adapter for chain model {network.chain_model}",
            config_key=f"{network.network_id}.chain_model",
        )
    return adapter_cls(network, session=session)


class AdapterRegistry:
    """
    Central registry for network adapters.

    Usage:
        registry = AdapterRegistry()
        registry.register(create_adapter(network))

        adapter = registry.get_adapter("bitcoin")
    """

    def __init__(self) -> None:
        self._adapters: Dict[str, BaseChainAdapter] = {}

    def register(self, adapter: BaseChainAdapter) -> None:
        """Register an adapter under its network id."""
        if adapter.network_id in self._adapters:
            logger.warning(f"Adapter for '{adapter.network_id}' already registered, replacing")
        self._adapters[adapter.network_id] = adapter
        logger.info(f"Registered {adapter.chain_model.value} adapter for '{adapter.network_id}'")

    def register_network(self, network: NetworkConfig) -> BaseChainAdapter:
        """Create and register the adapter for a network."""
        adapter = create_adapter(network)
        self.register(adapter)
        return adapter

    def unregister(self, network_id: str) -> Optional[BaseChainAdapter]:
        """Unregister an adapter."""
        adapter = self._adapters.pop(network_id, None)
        if adapter is not None:
            logger.info(f"Unregistered adapter '{network_id}'")
        return adapter

    def get_adapter(self, network_id: str) -> Optional[BaseChainAdapter]:
        return self._adapters.get(network_id)

    def list_networks(self) -> List[str]:
        return sorted(self._adapters)

    def __contains__(self, network_id: str) -> bool:
        return network_id in self._adapters

    def __len__(self) -> int:
        return len(self._adapters)

    async def health_check_all(self) -> Dict[str, AdapterHealth]:
        """Run health check on all adapters."""
        tasks = {
            network_id: asyncio.create_task(adapter.health_check())
            for network_id, adapter in self._adapters.items()
        }

        results = {}
        for network_id, task in tasks.items():
            try:
                results[network_id] = await asyncio.wait_for(task, timeout=30.0)
            except asyncio.TimeoutError as e:
                logger.warning(f"[{network_id}] Health check timed out")
                results[network_id] = AdapterHealth(
                    status=AdapterStatus.UNAVAILABLE,
                    last_check=now_utc(),
                    last_error=str(e) or "timeout",
                )
        return results

    def get_all_health(self) -> Dict[str, AdapterHealth]:
        return {nid: adapter.get_health() for nid, adapter in self._adapters.items()}

    async def close(self) -> None:
        """Close all resources."""
        for adapter in self._adapters.values():
            try:
                await adapter.close()
            except aiohttp.ClientError as e:
                logger.error(f"Error closing adapter {adapter.name}: {e}")
        self._adapters.clear()
        logger.info("Adapter registry closed")

    async def __aenter__(self) -> "AdapterRegistry":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()
