"""
Scanner - Scan Scheduler.

============================================================
RESPONSIBILITY
============================================================
Drives continuous ingestion: one independent loop per network.

Each cycle of a NetworkScanner:
1. Read the committed tip from the warehouse
2. Ask the adapter for the latest height; the safe height is
   latest - confirmation_depth
3. Prefetch up to fetch_ahead heights concurrently
4. Process them strictly in height order:
   parent check -> (reorg repair) -> resolve UTXO inputs ->
   normalize -> commit (block + tip marker, atomically)

============================================================
FAILURE HANDLING
============================================================
- TransientError: retried with backoff; exhausted -> STALLED
  for stall_cooldown_seconds, then scanning resumes
- PermanentError: height skipped and alerted when the network
  tolerates gaps, otherwise DEGRADED
- PermanentError while re-checking the committed tip: alerted,
  the tip is kept and re-checked next cycle
- ReorgExceededError: DEGRADED (fatal for this network only)
- StoreFailure: retried a bounded number of times -> PAUSED

No failure of one network reaches another network's loop.

============================================================
CONCURRENCY
============================================================
Adapter calls of a cycle may run ahead; normalization and
commits are serialized by height. Warehouse calls run in
worker threads. Reorg repair and commits hold the network's
exclusive lock. Shutdown is observed between blocks, never
in the middle of a commit.

============================================================
"""

import asyncio
import logging
from dataclasses import replace
from typing import Any, Dict, Iterable, Mapping, Optional, Sequence, Union

from chain_adapters.base import BaseChainAdapter
from chain_adapters.models import RawBlock
from chain_adapters.registry import AdapterRegistry
from core.clock import ClockFactory, ClockProtocol
from core.config import NetworkConfig, ScanConfig
from core.exceptions import (
    PermanentError,
    ReorgExceededError,
    ScanError,
    StoreFailure,
    TransientError,
)
from core.state_manager import NetworkScanState, ScanState
from ingestion.normalizers import get_normalizer
from ingestion.types import NormalizedBlock, OutputRef, ResolvedOutput
from scanner.alerts import AlertManager, AlertTier
from scanner.models import CycleOutcome, CycleResult
from scanner.reorg import ReorgHandler
from scanner.retry import RetryPolicy, SleepFunc
from storage.types import TipMarker
from storage.warehouse import Warehouse


logger = logging.getLogger(__name__)


# ============================================================
# NETWORK SCANNER
# ============================================================

class NetworkScanner:
    """Scan loop body of one network."""

    def __init__(
        self,
        network: NetworkConfig,
        adapter: BaseChainAdapter,
        warehouse: Warehouse,
        scan_config: Optional[ScanConfig] = None,
        alerts: Optional[AlertManager] = None,
        clock: Optional[ClockProtocol] = None,
        sleep: Optional[SleepFunc] = None,
    ) -> None:
        scan_config = scan_config or ScanConfig()
        self._network = network
        self._adapter = adapter
        self._warehouse = warehouse
        self._alerts = alerts or AlertManager()
        self._clock = clock or ClockFactory.get_clock()
        self._retry = RetryPolicy.for_transient(scan_config, sleep)
        self._store_retry = RetryPolicy.for_store(scan_config, sleep)
        self._stall_cooldown = scan_config.stall_cooldown_seconds
        self._normalizer = get_normalizer(network.chain_model, scan_config.fee_tolerance)
        self._reorg = ReorgHandler(network, adapter, warehouse, self._retry, self._store_retry)

        self._state = NetworkScanState(network_id=network.network_id)
        self._lock = asyncio.Lock()
        self._stalled_until: Optional[float] = None
        self._initialized = False
        self._logger = logging.getLogger(f"scanner.{network.network_id}")

    # =========================================================
    # PROPERTIES
    # =========================================================

    @property
    def network_id(self) -> str:
        return self._network.network_id

    @property
    def network(self) -> NetworkConfig:
        return self._network

    @property
    def adapter(self) -> BaseChainAdapter:
        return self._adapter

    @property
    def state(self) -> NetworkScanState:
        return self._state

    @property
    def lock(self) -> asyncio.Lock:
        """Exclusive section over this network's committed range."""
        return self._lock

    # =========================================================
    # LIFECYCLE
    # =========================================================

    async def initialize(self) -> None:
        """Register the network and load the committed tip."""
        await self._store(self._warehouse.sync_network, self._network)
        tip = await self._store(self._warehouse.get_tip, self.network_id)
        if tip is not None:
            self._state = self._state.with_tip(tip.height, tip.block_hash)
        self._initialized = True
        self._logger.info(
            f"[{self.network_id}] Scanner ready, tip "
            f"{tip.height if tip else 'none'} ({self._network.chain_model.value})"
        )

    def resume(self) -> bool:
        """Leave PAUSED after the storage problem was fixed."""
        if self._state.state != ScanState.PAUSED:
            return False
        self._move(ScanState.IDLE, "resumed by operator", consecutive_failures=0)
        self._alerts.resolve_network(self.network_id, "store_failure")
        return True

    def mark_stopped(self) -> None:
        if self._state.state in (ScanState.IDLE, ScanState.STALLED, ScanState.PAUSED):
            self._move(ScanState.STOPPED, "shutdown")

    # =========================================================
    # CYCLE
    # =========================================================

    async def run_cycle(
        self,
        stop_event: Optional[asyncio.Event] = None,
        max_height: Optional[int] = None,
    ) -> CycleResult:
        """
        Run one scan cycle.

        Args:
            stop_event: Checked between blocks; the in-flight block
                always completes
            max_height: Never fetch above this height (backfill)
        """
        started = self._clock.monotonic()
        result = CycleResult(network_id=self.network_id, outcome=CycleOutcome.COMMITTED)

        state = self._state.state
        if state == ScanState.DEGRADED:
            result.outcome = CycleOutcome.DEGRADED
            result.error = self._state.last_error
            return result
        if state == ScanState.PAUSED:
            result.outcome = CycleOutcome.PAUSED
            result.error = self._state.last_error
            return result
        if state == ScanState.STALLED:
            if self._stalled_until is not None and self._clock.monotonic() < self._stalled_until:
                result.outcome = CycleOutcome.STALLED
                result.error = self._state.last_error
                return result
            self._move(ScanState.IDLE, "stall cooldown elapsed")

        try:
            if not self._initialized:
                await self.initialize()
            await self._advance(result, stop_event, max_height)
        except ReorgExceededError as e:
            await self._degrade(result, e, "reorg_exceeded")
        except PermanentError as e:
            if e.height is None:
                await self._stall(result, e)
            else:
                await self._degrade(result, e, "permanent_error")
        except StoreFailure as e:
            await self._pause(result, e)
        except TransientError as e:
            await self._stall(result, e)

        result.tip_height = self._state.tip_height
        result.duration_ms = (self._clock.monotonic() - started) * 1000
        return result

    async def _advance(
        self,
        result: CycleResult,
        stop_event: Optional[asyncio.Event],
        max_height: Optional[int],
    ) -> None:
        network_id = self.network_id
        self._move(ScanState.FETCHING, "cycle started")

        tip = await self._store(self._warehouse.get_tip, network_id)
        if tip is not None:
            self._state = self._state.with_tip(tip.height, tip.block_hash)
            next_height = tip.height + 1
        else:
            self._state = self._state.with_tip(None, None)
            next_height = self._network.start_height

        latest = await self._retry.run(
            self._adapter.latest_height,
            describe=f"[{network_id}] latest_height",
        )
        safe = latest - self._network.confirmation_depth
        if max_height is not None:
            safe = min(safe, max_height)
        result.start_height = next_height
        result.safe_height = safe

        if next_height > safe:
            if tip is not None and tip.block_hash is not None and tip.height <= latest:
                if await self._tip_replaced(tip):
                    await self._revert(result, tip.height)
                    return
            self._move(ScanState.IDLE, "at tip")
            result.outcome = CycleOutcome.AT_TIP
            return

        last = min(safe, next_height + self._network.fetch_ahead - 1)
        heights = list(range(next_height, last + 1))
        fetched = await self._prefetch(heights)

        for height in heights:
            if stop_event is not None and stop_event.is_set():
                self._logger.info(f"[{network_id}] Stop requested, ending cycle at {height - 1}")
                if self._state.state != ScanState.IDLE:
                    self._move(ScanState.IDLE, "stop requested")
                break
            if self._state.state == ScanState.IDLE:
                self._move(ScanState.FETCHING, "next block", height)

            outcome = fetched[height]
            try:
                if isinstance(outcome, BaseException):
                    raise outcome
                raw = outcome

                expected_parent = self._state.tip_hash
                if (
                    expected_parent is not None
                    and self._state.tip_height == height - 1
                    and raw.parent_hash != expected_parent
                ):
                    self._logger.warning(
                        f"[{network_id}] Parent mismatch at {height}: "
                        f"expected {expected_parent[:16]}, got {str(raw.parent_hash)[:16]}"
                    )
                    await self._revert(result, height - 1)
                    return

                normalized = await self._normalize(raw)
            except PermanentError as e:
                e.attributed(network_id, height)
                if not self._network.tolerate_gaps:
                    raise
                block_hash = None if isinstance(outcome, BaseException) else outcome.hash
                await self._skip(result, height, e, block_hash)
                return
            except ScanError as e:
                raise e.attributed(network_id, height)

            await self._commit(result, normalized)

        result.outcome = CycleOutcome.COMMITTED if result.committed else CycleOutcome.AT_TIP

    # =========================================================
    # STEPS
    # =========================================================

    async def _fetch(self, height: int) -> RawBlock:
        return await self._retry.run(
            lambda: self._adapter.block_by_height(height),
            describe=f"[{self.network_id}] block {height}",
        )

    async def _tip_replaced(self, tip: TipMarker) -> bool:
        """
        Compare the committed tip with the canonical block at its height.

        A permanent error leaves the comparison inconclusive: the
        tip is kept and the check runs again next cycle.
        """
        try:
            canonical = await self._fetch(tip.height)
        except PermanentError as e:
            e.attributed(self.network_id, tip.height)
            self._logger.warning(f"[{self.network_id}] Tip re-check at {tip.height} inconclusive: {e.message}")
            await self._alerts.raise_alert(
                self.network_id,
                AlertTier.WARNING,
                "tip_recheck_failed",
                "Tip re-check inconclusive",
                e.message,
                height=tip.height,
            )
            return False
        self._alerts.resolve_network(self.network_id, "tip_recheck_failed")
        return canonical.hash != tip.block_hash

    async def _prefetch(self, heights: Sequence[int]) -> Dict[int, Union[RawBlock, BaseException]]:
        """Fetch ahead concurrently; failures are kept per height."""
        semaphore = asyncio.Semaphore(self._network.max_concurrent_requests)

        async def fetch(height: int) -> RawBlock:
            async with semaphore:
                return await self._fetch(height)

        outcomes = await asyncio.gather(*(fetch(h) for h in heights), return_exceptions=True)
        return dict(zip(heights, outcomes))

    async def _normalize(self, raw: RawBlock) -> NormalizedBlock:
        self._move(ScanState.NORMALIZING, "normalizing", raw.height)
        prior: Dict[OutputRef, ResolvedOutput] = {}

        refs = self._normalizer.unresolved_references(raw, self._network)
        if refs:
            prior = await self._store(self._warehouse.find_outputs, self.network_id, refs)
            missing = [ref for ref in refs if ref not in prior]
            if missing:
                self._move(ScanState.FETCHING, "resolving prior outputs", raw.height)
                resolved = await self._retry.run(
                    lambda: self._adapter.resolve_outputs(missing),
                    describe=f"[{self.network_id}] resolve {len(missing)} outputs",
                )
                prior = {**prior, **resolved}
                self._move(ScanState.NORMALIZING, "normalizing", raw.height)

        return self._normalizer.normalize(raw, self._network, prior)

    async def _commit(self, result: CycleResult, normalized: NormalizedBlock) -> None:
        height = normalized.height
        self._move(ScanState.COMMITTING, "committing", height)
        async with self._lock:
            written = await self._store(self._warehouse.upsert_block, normalized)

        recovered = self._state.consecutive_failures > 0
        self._move(
            ScanState.IDLE,
            "committed",
            height,
            tip_height=height,
            tip_hash=normalized.block.hash,
            committed_blocks=self._state.committed_blocks + (1 if written else 0),
            consecutive_failures=0,
            last_error=None,
        )
        if written:
            result.committed += 1
        if recovered:
            self._alerts.resolve_network(self.network_id, "stalled")

    async def _revert(self, result: CycleResult, from_height: int) -> None:
        self._move(ScanState.REVERTING, "parent hash mismatch", from_height + 1)
        async with self._lock:
            revoked = await self._reorg.repair(from_height)

        tip = await self._store(self._warehouse.get_tip, self.network_id)
        self._move(
            ScanState.IDLE,
            "reorg repaired",
            revoked.fork_height,
            tip_height=tip.height if tip else None,
            tip_hash=tip.block_hash if tip else None,
            reorgs=self._state.reorgs + 1,
        )
        result.outcome = CycleOutcome.REORGED
        result.revoked = revoked
        await self._alerts.raise_alert(
            self.network_id,
            AlertTier.INFO,
            "reorg",
            "Chain reorganization repaired",
            f"Revoked {revoked.blocks} blocks above {revoked.fork_height}",
            height=revoked.fork_height,
        )

    async def _skip(
        self,
        result: CycleResult,
        height: int,
        error: PermanentError,
        block_hash: Optional[str],
    ) -> None:
        await self._store(self._warehouse.record_skipped, self.network_id, height, error.message, block_hash)
        self._move(
            ScanState.IDLE,
            "skipped after permanent error",
            height,
            tip_height=height,
            tip_hash=block_hash,
            skipped_blocks=self._state.skipped_blocks + 1,
            last_error=str(error),
        )
        result.outcome = CycleOutcome.SKIPPED
        result.skipped += 1
        result.error = str(error)
        await self._alerts.raise_alert(
            self.network_id,
            AlertTier.WARNING,
            "block_skipped",
            "Block skipped",
            error.message,
            height=height,
        )

    # =========================================================
    # HALTING STATES
    # =========================================================

    async def _stall(self, result: CycleResult, error: ScanError) -> None:
        error.attributed(self.network_id, None)
        self._stalled_until = self._clock.monotonic() + self._stall_cooldown
        self._move(
            ScanState.STALLED,
            "transient failures exhausted retries",
            error.height,
            consecutive_failures=self._state.consecutive_failures + 1,
            last_error=str(error),
        )
        result.outcome = CycleOutcome.STALLED
        result.error = str(error)
        await self._alerts.raise_alert(
            self.network_id,
            AlertTier.WARNING,
            "stalled",
            f"Network stalled for {self._stall_cooldown:.0f}s",
            error.message,
            height=error.height,
        )

    async def _pause(self, result: CycleResult, error: StoreFailure) -> None:
        error.attributed(self.network_id, None)
        self._move(
            ScanState.PAUSED,
            "storage failures exhausted retries",
            error.height,
            consecutive_failures=self._state.consecutive_failures + 1,
            last_error=str(error),
        )
        result.outcome = CycleOutcome.PAUSED
        result.error = str(error)
        await self._alerts.raise_alert(
            self.network_id,
            AlertTier.CRITICAL,
            "store_failure",
            "Network paused after storage failures",
            error.message,
            height=error.height,
        )

    async def _degrade(self, result: CycleResult, error: ScanError, category: str) -> None:
        error.attributed(self.network_id, None)
        self._move(
            ScanState.DEGRADED,
            category,
            error.height,
            last_error=str(error),
        )
        result.outcome = CycleOutcome.DEGRADED
        result.error = str(error)
        await self._alerts.raise_alert(
            self.network_id,
            AlertTier.CRITICAL,
            category,
            "Network degraded, manual rescan required",
            error.message,
            height=error.height,
        )

    # =========================================================
    # HELPERS
    # =========================================================

    def _move(self, target: ScanState, reason: str, height: Optional[int] = None, **changes: Any) -> None:
        self._state = self._state.transition(target, reason, height, **changes)

    async def _store(self, operation, *args):
        return await self._store_retry.run(
            lambda: asyncio.to_thread(operation, *args),
            retry_on=(StoreFailure,),
            describe=f"[{self.network_id}] {operation.__name__}",
        )


# ============================================================
# SCAN SCHEDULER
# ============================================================

class ScanScheduler:
    """
    One asyncio task per network.

    Usage:
        scheduler = ScanScheduler(warehouse, registry, config.enabled_networks(), config.scan)
        await scheduler.run_forever(stop_event)
    """

    def __init__(
        self,
        warehouse: Warehouse,
        registry: AdapterRegistry,
        networks: Iterable[NetworkConfig],
        scan_config: Optional[ScanConfig] = None,
        alerts: Optional[AlertManager] = None,
        clock: Optional[ClockProtocol] = None,
        sleep: Optional[SleepFunc] = None,
    ) -> None:
        self._warehouse = warehouse
        self._registry = registry
        self._alerts = alerts or AlertManager()
        self._stop_event = asyncio.Event()
        self._scanners: Dict[str, NetworkScanner] = {}

        for network in networks:
            adapter = registry.get_adapter(network.network_id)
            if adapter is None:
                adapter = registry.register_network(network)
            self._scanners[network.network_id] = NetworkScanner(
                network,
                adapter,
                warehouse,
                scan_config=scan_config,
                alerts=self._alerts,
                clock=clock,
                sleep=sleep,
            )

    @property
    def alerts(self) -> AlertManager:
        return self._alerts

    @property
    def scanners(self) -> Mapping[str, NetworkScanner]:
        return dict(self._scanners)

    def get_scanner(self, network_id: str) -> Optional[NetworkScanner]:
        return self._scanners.get(network_id)

    def stop(self) -> None:
        """Ask every loop to exit after its in-flight block."""
        logger.info("Scan scheduler stop requested")
        self._stop_event.set()

    def get_status(self) -> Dict[str, Any]:
        return {
            network_id: {
                **scanner.state.to_dict(),
                "adapter": scanner.adapter.get_health().to_dict(),
            }
            for network_id, scanner in self._scanners.items()
        }

    # =========================================================
    # CONTINUOUS SCANNING
    # =========================================================

    async def run_forever(self, stop_event: Optional[asyncio.Event] = None) -> None:
        """Scan every network until stopped."""
        stop = stop_event or self._stop_event
        tasks = [
            asyncio.create_task(self._run_network(scanner, stop), name=f"scan-{network_id}")
            for network_id, scanner in self._scanners.items()
        ]
        logger.info(f"Scanning {len(tasks)} networks")
        try:
            await asyncio.gather(*tasks)
        finally:
            for task in tasks:
                if not task.done():
                    task.cancel()
        logger.info("Scan scheduler stopped")

    async def _run_network(self, scanner: NetworkScanner, stop: asyncio.Event) -> None:
        network_id = scanner.network_id
        try:
            while not stop.is_set():
                result = await scanner.run_cycle(stop)
                if result.outcome == CycleOutcome.DEGRADED:
                    logger.error(f"[{network_id}] Scan loop halted: {result.error}")
                    return
                if result.made_progress:
                    continue
                await self._wait(stop, scanner.network.poll_interval_seconds)
        except Exception as e:
            logger.exception(f"[{network_id}] Scan loop crashed: {e}")
            await self._alerts.raise_alert(
                network_id,
                AlertTier.CRITICAL,
                "scanner_crashed",
                "Scan loop crashed",
                str(e),
                height=scanner.state.tip_height,
            )
        finally:
            scanner.mark_stopped()

    @staticmethod
    async def _wait(stop: asyncio.Event, seconds: float) -> None:
        try:
            await asyncio.wait_for(stop.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            pass

    # =========================================================
    # BACKFILL
    # =========================================================

    async def backfill(
        self,
        until_height: Optional[int] = None,
        network_ids: Optional[Sequence[str]] = None,
    ) -> Dict[str, CycleResult]:
        """
        One-shot scan of every (or the given) network up to the
        safe tip, or ``until_height``.

        Returns:
            Totals per network: committed/skipped counts summed over
            cycles, outcome and error of the last cycle
        """
        selected = [
            scanner for network_id, scanner in self._scanners.items()
            if network_ids is None or network_id in network_ids
        ]
        results = await asyncio.gather(
            *(self._backfill_network(s, until_height) for s in selected)
        )
        return {scanner.network_id: result for scanner, result in zip(selected, results)}

    async def _backfill_network(self, scanner: NetworkScanner, until_height: Optional[int]) -> CycleResult:
        total = CycleResult(network_id=scanner.network_id, outcome=CycleOutcome.AT_TIP)
        stop = self._stop_event
        while not stop.is_set():
            result = await scanner.run_cycle(stop, max_height=until_height)
            total = replace(
                result,
                start_height=total.start_height if total.start_height is not None else result.start_height,
                committed=total.committed + result.committed,
                skipped=total.skipped + result.skipped,
                revoked=result.revoked or total.revoked,
                duration_ms=total.duration_ms + result.duration_ms,
            )
            if result.outcome.is_halting or result.outcome in (CycleOutcome.AT_TIP, CycleOutcome.STALLED):
                break
        logger.info(
            f"[{scanner.network_id}] Backfill finished: {total.committed} committed, "
            f"{total.skipped} skipped, tip {scanner.state.tip_height} ({total.outcome.value})"
        )
        return total
