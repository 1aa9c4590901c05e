"""
Account-Model Adapter - EVM JSON-RPC.

============================================================
RPC METHODS
============================================================
- eth_blockNumber
- eth_getBlockByNumber(height, true)  (full transactions)
- eth_getBlockByHash(hash, true)
- eth_getBlockReceipts(hash)          (gas used, status, fee price)
- eth_getTransactionReceipt(hash)     (fallback when the node lacks
                                       eth_getBlockReceipts)

A null block result means the height/hash is not known yet
and maps to NotFoundError.

============================================================
"""

import asyncio
import logging
from typing import Any, Dict, List, Optional

from chain_adapters.base import BaseChainAdapter
from chain_adapters.models import RawBlock
from core.config import ChainModel
from core.exceptions import NotFoundError, PermanentError, ScanError, TransientError


logger = logging.getLogger(__name__)


# JSON-RPC error codes
METHOD_NOT_FOUND = -32601
INTERNAL_ERROR = -32603
LIMIT_EXCEEDED = -32005
RESOURCE_UNAVAILABLE = -32002


class AccountChainAdapter(BaseChainAdapter):
    """
    Adapter for account-based (EVM) networks.

    Returns blocks with full transactions and their receipts, so
    the normalizer can read sender/receiver, fee and status
    directly.
    """

    chain_model = ChainModel.ACCOUNT

    def __init__(self, *args, fetch_receipts: bool = True, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self._fetch_receipts = fetch_receipts
        self._block_receipts_supported = True

    async def latest_height(self) -> int:
        result = await self._rpc("eth_blockNumber")
        return self._quantity(result, "eth_blockNumber")

    async def block_by_height(self, height: int) -> RawBlock:
        block = await self._rpc("eth_getBlockByNumber", [hex(height), True], height=height)
        if block is None:
            raise self._not_found(f"Block {height}", height)
        return await self._build(block, height)

    async def block_by_hash(self, block_hash: str) -> RawBlock:
        block = await self._rpc("eth_getBlockByHash", [block_hash, True])
        if block is None:
            raise NotFoundError(f"Block {block_hash} not found", network_id=self.network_id)
        return await self._build(block, None)

    # =========================================================
    # HELPERS
    # =========================================================

    async def _build(self, block: Any, requested_height: Optional[int]) -> RawBlock:
        if not isinstance(block, dict) or "hash" not in block or "number" not in block:
            raise self._malformed("Block response without hash/number", requested_height)
        height = self._quantity(block["number"], "number", requested_height)
        if requested_height is not None and height != requested_height:
            raise self._malformed(
                f"Node returned block {height} for height {requested_height}", requested_height
            )
        block_hash = str(block["hash"]).lower()
        parent_hash = block.get("parentHash")

        receipts = None
        if self._fetch_receipts:
            receipts = await self._receipts(block, block_hash, height)

        return RawBlock(
            network_id=self.network_id,
            chain_model=self.chain_model,
            height=height,
            hash=block_hash,
            parent_hash=str(parent_hash).lower() if parent_hash else None,
            payload=block,
            receipts=receipts,
        )

    async def _receipts(
        self,
        block: Dict[str, Any],
        block_hash: str,
        height: int,
    ) -> List[Dict[str, Any]]:
        transactions = block.get("transactions") or []
        if not transactions:
            return []

        if self._block_receipts_supported:
            try:
                receipts = await self._rpc("eth_getBlockReceipts", [block_hash], height=height)
            except PermanentError as e:
                if e.context.get("rpc_code") != METHOD_NOT_FOUND:
                    raise
                logger.info(
                    f"[{self.network_id}] eth_getBlockReceipts unsupported, "
                    f"falling back to per-transaction receipts"
                )
                self._block_receipts_supported = False
            else:
                if receipts is None:
                    # Block was reorged out between the two calls
                    raise self._not_found(f"Receipts of block {block_hash}", height)
                if not isinstance(receipts, list):
                    raise self._malformed("eth_getBlockReceipts did not return a list", height)
                return receipts

        semaphore = asyncio.Semaphore(self._network.max_concurrent_requests)

        async def fetch(tx: Dict[str, Any]) -> Dict[str, Any]:
            tx_hash = tx.get("hash") if isinstance(tx, dict) else tx
            async with semaphore:
                receipt = await self._rpc("eth_getTransactionReceipt", [tx_hash], height=height)
            if receipt is None:
                raise self._not_found(f"Receipt of {tx_hash}", height)
            return receipt

        return list(await asyncio.gather(*(fetch(tx) for tx in transactions)))

    def _quantity(self, value: Any, field_name: str, height: Optional[int] = None) -> int:
        if not isinstance(value, str) or not value.startswith("0x"):
            raise self._malformed(f"Invalid {field_name} quantity: {value!r}", height)
        try:
            return int(value, 16)
        except ValueError:
            raise self._malformed(f"Invalid {field_name} quantity: {value!r}", height)

    def _map_rpc_error(
        self,
        method: str,
        error: Any,
        height: Optional[int],
    ) -> ScanError:
        code = error.get("code") if isinstance(error, dict) else None
        message = error.get("message", str(error)) if isinstance(error, dict) else str(error)
        if code in (INTERNAL_ERROR, LIMIT_EXCEEDED, RESOURCE_UNAVAILABLE):
            return TransientError(f"{method}: RPC error {code}: {message}", context={"rpc_code": code})
        if "header not found" in message.lower() or "unknown block" in message.lower():
            return NotFoundError(f"{method}: {message}", context={"rpc_code": code})
        return super()._map_rpc_error(method, error, height)
