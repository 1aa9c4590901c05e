"""
Tracer - Fund-Flow Tracer.

============================================================
RESPONSIBILITY
============================================================
Reconstructs money movement between addresses by bounded
breadth-first traversal over committed links.

- Every path of 1..max_hops links is reported
- Addresses may be revisited; a path never reuses a link
- The hop budget bounds the traversal, so cycles terminate
- Paths follow a single asset
- Path amount is the minimum link amount (conservative)
- Ranking: amount desc, hops asc, then link keys

============================================================
CONSISTENCY
============================================================
A trace runs inside one Warehouse.snapshot(): it never sees a
partially committed block and never blocks scan commits.

Budgets (max_paths, time budget, cancel event) stop the
traversal early; the paths found so far are returned with
truncated=True. Cutting an address down to its `fanout`
largest links also marks the result truncated ("fanout").

============================================================
"""

import logging
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Optional, Tuple

from core.clock import ClockFactory, ClockProtocol
from core.constants import DEFAULT_TRACE_FANOUT, DEFAULT_TRACE_MAX_PATHS, MAX_TRACE_HOPS
from core.exceptions import TraceError
from ingestion.types import CanonicalLink
from storage.warehouse import Warehouse, WarehouseSnapshot
from tracer.models import TraceDirection, TracePath, TraceResult, UpstreamSource


logger = logging.getLogger(__name__)

TimeWindow = Tuple[Optional[int], Optional[int]]


@dataclass
class _Traversal:
    """Mutable bookkeeping of one traversal."""
    found: List[TracePath]
    truncated: bool = False
    reason: Optional[str] = None
    hops_explored: int = 0
    links_examined: int = 0


class FundFlowTracer:
    """
    Bounded BFS over the link graph.

    Usage:
        tracer = FundFlowTracer(warehouse)
        result = tracer.trace("eth-mainnet", "0xabc...", max_hops=3)
    """

    def __init__(
        self,
        warehouse: Warehouse,
        clock: Optional[ClockProtocol] = None,
        max_paths: int = DEFAULT_TRACE_MAX_PATHS,
        fanout: int = DEFAULT_TRACE_FANOUT,
    ) -> None:
        self._warehouse = warehouse
        self._clock = clock or ClockFactory.get_clock()
        self._max_paths = max_paths
        self._fanout = fanout

    # =========================================================
    # PUBLIC API
    # =========================================================

    def trace(
        self,
        network_id: str,
        source_address: str,
        max_hops: int,
        time_window: Optional[TimeWindow] = None,
        min_amount: Optional[Any] = None,
        direction: Any = TraceDirection.OUTGOING,
        max_paths: Optional[int] = None,
        time_budget_seconds: Optional[float] = None,
        cancel_event: Optional[Any] = None,
        chronological: bool = True,
    ) -> TraceResult:
        """
        Trace funds from (or into) ``source_address``.

        Args:
            network_id: Network to trace in
            source_address: Start of every path
            max_hops: Hop budget, 1..MAX_TRACE_HOPS
            time_window: (since, until) unix seconds, either may be None
            min_amount: Ignore links below this amount (base units)
            direction: "outgoing" or "incoming"
            max_paths: Stop after this many paths
            time_budget_seconds: Stop after this much wall time
            cancel_event: Anything with is_set(); checked between expansions
            chronological: Next hop may not be earlier than the previous one

        Raises:
            TraceError: If an argument is invalid
        """
        started = self._clock.monotonic()
        max_hops = self._validate_hops(max_hops)
        direction = self._validate_direction(direction)
        since, until = self._validate_window(time_window)
        threshold = self._validate_amount(min_amount)
        path_limit = max_paths if max_paths is not None else self._max_paths
        if path_limit < 1:
            raise TraceError("max_paths must be >= 1", context={"max_paths": path_limit})

        result = TraceResult(
            network_id=network_id,
            source_address=source_address,
            direction=direction,
            max_hops=max_hops,
        )

        with self._warehouse.snapshot() as view:
            memo: Dict[str, List[CanonicalLink]] = {}
            traversal = self._traverse(
                view,
                memo,
                network_id,
                source_address,
                max_hops,
                direction,
                since,
                until,
                threshold,
                path_limit,
                started,
                time_budget_seconds,
                cancel_event,
                chronological,
            )

        result.paths = sorted(traversal.found, key=TracePath.sort_key)
        result.truncated = traversal.truncated
        result.truncation_reason = traversal.reason
        result.hops_explored = traversal.hops_explored
        result.addresses_visited = len(memo)
        result.links_examined = traversal.links_examined
        result.elapsed_ms = (self._clock.monotonic() - started) * 1000

        logger.info(
            f"[{network_id}] Trace {direction.value} from {source_address}: "
            f"{len(result.paths)} paths within {max_hops} hops"
            + (f" (truncated: {result.truncation_reason})" if result.truncated else "")
        )
        return result

    def upstream(
        self,
        network_id: str,
        address: str,
        max_hops: int,
        time_window: Optional[TimeWindow] = None,
        min_amount: Optional[Any] = None,
        time_budget_seconds: Optional[float] = None,
    ) -> List[UpstreamSource]:
        """
        Labelled addresses that sent funds into ``address``.

        Each source is reported once, with its best path (largest
        amount, then fewest hops). tx_hashes are in flow order.
        """
        started = self._clock.monotonic()
        max_hops = self._validate_hops(max_hops)
        since, until = self._validate_window(time_window)
        threshold = self._validate_amount(min_amount)

        with self._warehouse.snapshot() as view:
            traversal = self._traverse(
                view,
                {},
                network_id,
                address,
                max_hops,
                TraceDirection.INCOMING,
                since,
                until,
                threshold,
                self._max_paths,
                started,
                time_budget_seconds,
                None,
                True,
            )

            best: Dict[str, TracePath] = {}
            for path in sorted(traversal.found, key=TracePath.sort_key):
                origin = path.end_address
                if origin != address and origin not in best:
                    best[origin] = path

            labels = view.labels_for(network_id, list(best))

        sources = [
            UpstreamSource(
                address=origin,
                label=labels[origin],
                hops=path.hops,
                amount=path.amount,
                asset=path.asset,
                tx_hashes=tuple(reversed(path.tx_hashes)),
            )
            for origin, path in best.items()
            if origin in labels
        ]
        sources.sort(key=lambda s: (-s.amount, s.hops, s.address))
        if traversal.truncated:
            logger.info(f"[{network_id}] Upstream of {address} truncated: {traversal.reason}")
        return sources

    # =========================================================
    # TRAVERSAL
    # =========================================================

    def _traverse(
        self,
        view: WarehouseSnapshot,
        memo: Dict[str, List[CanonicalLink]],
        network_id: str,
        source: str,
        max_hops: int,
        direction: TraceDirection,
        since: Optional[int],
        until: Optional[int],
        threshold: Optional[Decimal],
        path_limit: int,
        started: float,
        time_budget: Optional[float],
        cancel_event: Optional[Any],
        chronological: bool,
    ) -> _Traversal:
        outgoing = direction == TraceDirection.OUTGOING
        traversal = _Traversal(found=[])

        def neighbours(address: str) -> List[CanonicalLink]:
            if address not in memo:
                if outgoing:
                    links = view.get_links_from(network_id, address, since, until)
                else:
                    links = view.get_links_to(network_id, address, since, until)
                if threshold is not None:
                    links = [l for l in links if l.amount >= threshold]
                if len(links) > self._fanout:
                    # Largest flows first when an address has too many edges
                    links = sorted(links, key=lambda l: (-l.amount, l.key))[:self._fanout]
                    traversal.truncated = True
                    traversal.reason = traversal.reason or "fanout"
                memo[address] = links
            return memo[address]

        def stop_reason() -> Optional[str]:
            if cancel_event is not None and cancel_event.is_set():
                return "cancelled"
            if time_budget is not None and self._clock.monotonic() - started >= time_budget:
                return "time_budget"
            return None

        # (end address, links so far)
        frontier: List[Tuple[str, Tuple[CanonicalLink, ...]]] = [(source, ())]

        for hop in range(1, max_hops + 1):
            next_frontier: List[Tuple[str, Tuple[CanonicalLink, ...]]] = []

            for end, links in frontier:
                reason = stop_reason()
                if reason:
                    traversal.truncated, traversal.reason = True, reason
                    return traversal

                used = {l.key for l in links}
                last = links[-1] if links else None

                for link in neighbours(end):
                    traversal.links_examined += 1
                    if link.key in used:
                        continue
                    if last is not None:
                        if link.asset != last.asset:
                            continue
                        if chronological and (
                            (outgoing and link.timestamp < last.timestamp)
                            or (not outgoing and link.timestamp > last.timestamp)
                        ):
                            continue

                    path_links = links + (link,)
                    traversal.found.append(TracePath(path_links, direction))
                    if len(traversal.found) >= path_limit:
                        traversal.truncated, traversal.reason = True, "max_paths"
                        traversal.hops_explored = hop
                        return traversal

                    next_end = link.to_address if outgoing else link.from_address
                    next_frontier.append((next_end, path_links))

            traversal.hops_explored = hop
            frontier = next_frontier
            if not frontier:
                break

        return traversal

    # =========================================================
    # VALIDATION
    # =========================================================

    @staticmethod
    def _validate_hops(max_hops: Any) -> int:
        if isinstance(max_hops, bool) or not isinstance(max_hops, int):
            raise TraceError("max_hops must be an integer", context={"max_hops": repr(max_hops)})
        if not 1 <= max_hops <= MAX_TRACE_HOPS:
            raise TraceError(
                f"max_hops must be between 1 and {MAX_TRACE_HOPS}",
                context={"max_hops": max_hops},
            )
        return max_hops

    @staticmethod
    def _validate_direction(direction: Any) -> TraceDirection:
        try:
            return TraceDirection.parse(direction)
        except ValueError as e:
            raise TraceError(str(e)) from e

    @staticmethod
    def _validate_window(time_window: Optional[TimeWindow]) -> TimeWindow:
        if time_window is None:
            return None, None
        since, until = time_window
        if since is not None and until is not None and since > until:
            raise TraceError(
                "time window start is after its end",
                context={"since": since, "until": until},
            )
        return since, until

    @staticmethod
    def _validate_amount(min_amount: Any) -> Optional[Decimal]:
        if min_amount is None:
            return None
        try:
            threshold = Decimal(str(min_amount))
        except InvalidOperation as e:
            raise TraceError("min_amount must be a number", context={"min_amount": repr(min_amount)}) from e
        if not threshold.is_finite() or threshold < 0:
            raise TraceError("min_amount must be >= 0", context={"min_amount": str(min_amount)})
        return threshold
