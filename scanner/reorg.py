"""
Scanner - Reorg Repair.

============================================================
PURPOSE
============================================================
Finds the fork point after a parent-hash mismatch and revokes
every committed block above it.

Walk-back compares the stored hash with the adapter's hash at
each height, newest first, for at most ``max_reorg_depth``
heights. A skipped height is compared by the hash of its skip
record, and walked over when that hash is unknown. Reaching
below the first indexed height means the whole indexed range
is replaced.

The caller holds the network's exclusive lock for the whole
repair; other networks are never touched.

============================================================
"""

import asyncio
import logging
from typing import Optional

from chain_adapters.base import BaseChainAdapter
from core.config import NetworkConfig
from core.exceptions import ReorgExceededError, StoreFailure
from scanner.retry import RetryPolicy
from storage.types import RevokeResult
from storage.warehouse import Warehouse


class ReorgHandler:
    """Walk-back and revoke for one network."""

    def __init__(
        self,
        network: NetworkConfig,
        adapter: BaseChainAdapter,
        warehouse: Warehouse,
        retry: RetryPolicy,
        store_retry: RetryPolicy,
    ) -> None:
        self._network = network
        self._adapter = adapter
        self._warehouse = warehouse
        self._retry = retry
        self._store_retry = store_retry
        self._logger = logging.getLogger(f"scanner.{network.network_id}.reorg")

    @property
    def max_depth(self) -> int:
        return self._network.max_reorg_depth

    async def find_fork_height(self, from_height: int) -> int:
        """
        Highest height at or below ``from_height`` whose stored
        block is still on the adapter's canonical chain.

        Raises:
            ReorgExceededError: No match within max_reorg_depth heights
            TransientError: Adapter retries exhausted
            StoreFailure: Warehouse retries exhausted
        """
        network_id = self._network.network_id
        lowest = self._network.start_height

        for depth in range(self.max_depth):
            height = from_height - depth
            if height < lowest:
                self._logger.warning(
                    f"[{network_id}] Walked below first indexed height {lowest}, "
                    f"replacing the whole indexed range"
                )
                return lowest - 1

            stored = await self._store(self._warehouse.stored_hash, network_id, height)
            if stored is None:
                continue

            remote = await self._retry.run(
                lambda h=height: self._adapter.block_by_height(h),
                describe=f"[{network_id}] walk-back block {height}",
            )
            if remote.hash == stored:
                return height

            self._logger.info(
                f"[{network_id}] Height {height} diverged: stored {stored[:16]}, "
                f"canonical {remote.hash[:16]}"
            )

        raise ReorgExceededError(
            f"No common ancestor within {self.max_depth} blocks of {from_height}",
            max_reorg_depth=self.max_depth,
            network_id=network_id,
            height=from_height,
        )

    async def repair(self, from_height: int) -> RevokeResult:
        """Revoke everything above the fork point."""
        fork_height = await self.find_fork_height(from_height)
        result = await self._store(
            self._warehouse.revoke_above, self._network.network_id, fork_height
        )
        self._logger.warning(
            f"[{self._network.network_id}] Reorg repaired at fork height {fork_height} "
            f"(depth {from_height - fork_height})"
        )
        return result

    async def _store(self, operation, *args) -> Optional[object]:
        return await self._store_retry.run(
            lambda: asyncio.to_thread(operation, *args),
            retry_on=(StoreFailure,),
            describe=f"[{self._network.network_id}] {operation.__name__}",
        )
