"""
UTXO-Model Adapter - bitcoind JSON-RPC.

============================================================
RPC METHODS
============================================================
- getblockcount
- getblockhash(height)
- getblock(hash, 3)  prevouts inline (Bitcoin Core >= 23);
                     falls back to verbosity 2 on older nodes
- getrawtransaction(txid, true)  prior output resolution,
                                 requires -txindex

============================================================
ERROR CODES
============================================================
-8   height out of range       -> NotFoundError
-5   block / tx not found      -> NotFoundError
-28  node warming up           -> TransientError

============================================================
"""

import asyncio
import logging
from collections import defaultdict
from decimal import Decimal
from typing import Any, Dict, List, Optional, Sequence

from chain_adapters.base import BaseChainAdapter
from chain_adapters.models import RawBlock
from core.config import ChainModel
from core.exceptions import NotFoundError, PermanentError, ScanError, TransientError
from ingestion.types import OutputRef, ResolvedOutput
from ingestion.units import SATOSHI_DECIMALS, script_address, to_base_units


logger = logging.getLogger(__name__)


RPC_INVALID_PARAMETER = -8
RPC_INVALID_ADDRESS_OR_KEY = -5
RPC_IN_WARMUP = -28


class UtxoChainAdapter(BaseChainAdapter):
    """
    Adapter for UTXO-based (bitcoind) networks.

    Besides the capability set it resolves input-to-prior-output
    references the normalizer cannot resolve by itself.
    """

    chain_model = ChainModel.UTXO
    JSONRPC_VERSION = "1.0"

    def __init__(self, *args, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self._verbosity = 3

    async def latest_height(self) -> int:
        result = await self._rpc("getblockcount")
        if not isinstance(result, int):
            raise self._malformed(f"getblockcount returned {result!r}")
        return result

    async def block_by_height(self, height: int) -> RawBlock:
        block_hash = await self._rpc("getblockhash", [height], height=height)
        if not isinstance(block_hash, str):
            raise self._malformed(f"getblockhash returned {block_hash!r}", height)
        return await self._get_block(block_hash, height)

    async def block_by_hash(self, block_hash: str) -> RawBlock:
        return await self._get_block(block_hash, None)

    async def resolve_outputs(
        self,
        refs: Sequence[OutputRef],
    ) -> Dict[OutputRef, ResolvedOutput]:
        """
        Look up prior outputs with getrawtransaction.

        References the node cannot find are left out of the result;
        the normalizer reports them as unresolvable.
        """
        wanted: Dict[str, List[int]] = defaultdict(list)
        for ref in refs:
            wanted[ref.tx_hash].append(ref.index)

        semaphore = asyncio.Semaphore(self._network.max_concurrent_requests)
        resolved: Dict[OutputRef, ResolvedOutput] = {}

        async def fetch(txid: str) -> None:
            async with semaphore:
                try:
                    tx = await self._rpc("getrawtransaction", [txid, True])
                except NotFoundError:
                    logger.warning(f"[{self.network_id}] Prior transaction {txid} not found")
                    return
            vouts = {v.get("n"): v for v in (tx or {}).get("vout", []) if isinstance(v, dict)}
            for index in wanted[txid]:
                vout = vouts.get(index)
                if vout is None:
                    continue
                resolved[OutputRef(txid, index)] = ResolvedOutput(
                    address=script_address(vout.get("scriptPubKey")),
                    amount=self._satoshis(vout.get("value")),
                    asset=self._network.native_asset,
                )

        await asyncio.gather(*(fetch(txid) for txid in wanted))
        return resolved

    # =========================================================
    # HELPERS
    # =========================================================

    async def _get_block(self, block_hash: str, height: Optional[int]) -> RawBlock:
        try:
            block = await self._rpc("getblock", [block_hash, self._verbosity], height=height)
        except PermanentError as e:
            if self._verbosity != 3 or e.context.get("rpc_code") != RPC_INVALID_PARAMETER:
                raise
            logger.info(f"[{self.network_id}] getblock verbosity 3 unsupported, using 2")
            self._verbosity = 2
            block = await self._rpc("getblock", [block_hash, self._verbosity], height=height)

        if not isinstance(block, dict) or "hash" not in block or "height" not in block:
            raise self._malformed("getblock response without hash/height", height)
        if height is not None and block["height"] != height:
            raise self._malformed(
                f"Node returned block {block['height']} for height {height}", height
            )
        return RawBlock(
            network_id=self.network_id,
            chain_model=self.chain_model,
            height=int(block["height"]),
            hash=str(block["hash"]),
            parent_hash=block.get("previousblockhash"),
            payload=block,
        )

    def _satoshis(self, value: Any) -> Decimal:
        try:
            return to_base_units(value, SATOSHI_DECIMALS)
        except ValueError as e:
            raise self._malformed(f"Invalid output value {value!r}") from e

    def _map_rpc_error(
        self,
        method: str,
        error: Any,
        height: Optional[int],
    ) -> ScanError:
        code = error.get("code") if isinstance(error, dict) else None
        message = error.get("message", str(error)) if isinstance(error, dict) else str(error)
        if code == RPC_IN_WARMUP:
            return TransientError(f"{method}: node warming up: {message}", context={"rpc_code": code})
        if code == RPC_INVALID_ADDRESS_OR_KEY or (
            code == RPC_INVALID_PARAMETER and method == "getblockhash"
        ):
            return NotFoundError(f"{method}: {message}", context={"rpc_code": code})
        return super()._map_rpc_error(method, error, height)
