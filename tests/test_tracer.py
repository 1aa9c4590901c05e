"""
Tests for the fund-flow tracer.

Graph used throughout (account network, one transfer per link):

    block 1:  A -> B  100   (t1)
    block 2:  B -> C   60   (t2)
              B -> D   30   (t3)
    block 3:  C -> A   50   (t4)
    block 4:  D -> E   30   (t5)
"""

import threading
from decimal import Decimal

import pytest

from core.exceptions import TraceError
from ingestion.normalizers import get_normalizer
from tracer import FundFlowTracer, TraceDirection

from chain_builders import (
    BASE_TIMESTAMP,
    BLOCK_INTERVAL,
    account_chain,
    address,
    coinbase_tx,
    eth_tx,
    spend_tx,
    tx_hash,
    utxo_block,
    vin,
)


A, B, C, D, E = (address(c) for c in "abcde")
T1, T2, T3, T4, T5 = (tx_hash(n) for n in range(1, 6))

GRAPH = {
    1: [eth_tx(T1, A, B, 100)],
    2: [eth_tx(T2, B, C, 60), eth_tx(T3, B, D, 30)],
    3: [eth_tx(T4, C, A, 50)],
    4: [eth_tx(T5, D, E, 30)],
}


def block_time(height):
    return BASE_TIMESTAMP + height * BLOCK_INTERVAL


def summary(result):
    return [(p.amount, p.tx_hashes) for p in result.paths]


@pytest.fixture
def graph(warehouse, account_network):
    normalizer = get_normalizer(account_network.chain_model)
    for raw in account_chain(account_network.network_id, 4, GRAPH):
        warehouse.upsert_block(normalizer.normalize(raw, account_network))
    return warehouse


@pytest.fixture
def tracer(graph, clock):
    return FundFlowTracer(graph, clock=clock)


NET = "eth-test"


# =============================================================
# TEST: Outgoing traces
# =============================================================

class TestOutgoingTrace:
    """Where did the funds go."""

    def test_all_paths_ranked(self, tracer):
        """Amount descending, then fewer hops first."""
        result = tracer.trace(NET, A, max_hops=3)

        assert summary(result) == [
            (Decimal(100), (T1,)),
            (Decimal(60), (T1, T2)),
            (Decimal(50), (T1, T2, T4)),
            (Decimal(30), (T1, T3)),
            (Decimal(30), (T1, T3, T5)),
        ]
        assert not result.truncated
        assert result.paths[2].addresses == (A, B, C, A)

    def test_cycle_terminates(self, tracer):
        """A -> B -> C -> A cannot reuse t1, so extra hops add nothing."""
        assert summary(tracer.trace(NET, A, max_hops=4)) == summary(tracer.trace(NET, A, max_hops=3))

    def test_min_amount(self, tracer):
        result = tracer.trace(NET, A, max_hops=3, min_amount="40")

        assert [p.amount for p in result.paths] == [Decimal(100), Decimal(60), Decimal(50)]

    def test_time_window(self, tracer):
        result = tracer.trace(NET, A, max_hops=3, time_window=(None, block_time(2)))

        assert [p.tx_hashes for p in result.paths] == [(T1,), (T1, T2), (T1, T3)]

    def test_chronological_order(self, tracer):
        """C -> A happens after A -> B, so A's earlier outflow is not followed."""
        assert summary(tracer.trace(NET, C, max_hops=3)) == [(Decimal(50), (T4,))]

        unordered = tracer.trace(NET, C, max_hops=3, chronological=False)
        assert summary(unordered) == [
            (Decimal(50), (T4,)),
            (Decimal(50), (T4, T1)),
            (Decimal(50), (T4, T1, T2)),
            (Decimal(30), (T4, T1, T3)),
        ]

    def test_unknown_address(self, tracer):
        result = tracer.trace(NET, address("f"), max_hops=5)

        assert result.paths == []
        assert not result.truncated
        assert result.hops_explored == 1

    def test_fanout_keeps_largest_links(self, graph, clock):
        """Cutting B's two outflows down to one is reported as truncation."""
        tracer = FundFlowTracer(graph, clock=clock, fanout=1)

        result = tracer.trace(NET, B, max_hops=1)

        assert summary(result) == [(Decimal(60), (T2,))]
        assert result.truncated
        assert result.truncation_reason == "fanout"

    def test_fanout_not_reached(self, graph, clock):
        tracer = FundFlowTracer(graph, clock=clock, fanout=2)

        result = tracer.trace(NET, B, max_hops=1)

        assert len(result.paths) == 2
        assert not result.truncated


# =============================================================
# TEST: Incoming traces and upstream sources
# =============================================================

class TestIncomingTrace:
    """Where did the funds come from."""

    def test_incoming_paths(self, tracer):
        result = tracer.trace(NET, E, max_hops=3, direction="incoming")

        assert result.direction == TraceDirection.INCOMING
        assert [p.tx_hashes for p in result.paths] == [(T5,), (T5, T3), (T5, T3, T1)]
        assert result.paths[-1].addresses == (E, D, B, A)
        assert result.paths[-1].end_address == A

    def test_upstream_labelled_sources(self, tracer, graph):
        """Only labelled origins are reported, with tx hashes in flow order."""
        exchange = graph.create_label("Exchange")
        otc = graph.create_label("OTC desk")
        graph.assign_label(NET, A, exchange.label_id)
        graph.assign_label(NET, D, otc.label_id)

        sources = tracer.upstream(NET, E, max_hops=3)

        assert [(s.address, s.label.name, s.hops) for s in sources] == [
            (D, "OTC desk", 1),
            (A, "Exchange", 3),
        ]
        assert sources[1].tx_hashes == (T1, T3, T5)
        assert sources[1].amount == Decimal(30)
        assert sources[1].asset == "ETH"

    def test_upstream_without_labels(self, tracer):
        assert tracer.upstream(NET, E, max_hops=3) == []


# =============================================================
# TEST: UTXO chains
# =============================================================

class TestUtxoTrace:
    """Links derived from inputs and outputs are traced the same way."""

    @pytest.fixture
    def utxo_graph(self, warehouse, utxo_network):
        network_id = utxo_network.network_id
        s1, s2, s3 = (f"{n:064x}" for n in range(1, 4))
        coinbase = f"c{0:063x}"
        blocks = [
            utxo_block(network_id, 0, [coinbase_tx(coinbase, "bc1a", "50")]),
            utxo_block(network_id, 1, [spend_tx(s1, [vin(coinbase, 0, "bc1a", "50")], [("bc1b", "49")])]),
            utxo_block(network_id, 2, [spend_tx(s2, [vin(s1, 0, "bc1b", "49")], [("bc1c", "48")])]),
            utxo_block(network_id, 3, [spend_tx(s3, [vin(s2, 0, "bc1c", "48")], [("bc1d", "47")])]),
        ]
        normalizer = get_normalizer(utxo_network.chain_model)
        for raw in blocks:
            warehouse.upsert_block(normalizer.normalize(raw, utxo_network))
        return warehouse

    def test_hop_budget_bounds_paths(self, utxo_graph, utxo_network, clock):
        tracer = FundFlowTracer(utxo_graph, clock=clock)

        result = tracer.trace(utxo_network.network_id, "bc1a", max_hops=2)

        assert [p.addresses for p in result.paths] == [
            ("bc1a", "bc1b"),
            ("bc1a", "bc1b", "bc1c"),
        ]
        assert all(p.hops <= 2 for p in result.paths)
        assert result.paths[0].asset == "BTC"

    def test_longer_budget_reaches_d(self, utxo_graph, utxo_network, clock):
        tracer = FundFlowTracer(utxo_graph, clock=clock)

        result = tracer.trace(utxo_network.network_id, "bc1a", max_hops=3)

        assert result.paths[-1].addresses == ("bc1a", "bc1b", "bc1c", "bc1d")


# =============================================================
# TEST: Budgets
# =============================================================

class TestBudgets:
    """Early stops return what was found so far."""

    def test_max_paths(self, tracer):
        result = tracer.trace(NET, A, max_hops=3, max_paths=2)

        assert result.truncated
        assert result.truncation_reason == "max_paths"
        assert summary(result) == [(Decimal(100), (T1,)), (Decimal(60), (T1, T2))]

    def test_cancel_event(self, tracer):
        cancel = threading.Event()
        cancel.set()

        result = tracer.trace(NET, A, max_hops=3, cancel_event=cancel)

        assert result.truncated
        assert result.truncation_reason == "cancelled"
        assert result.paths == []

    def test_time_budget(self, tracer):
        result = tracer.trace(NET, A, max_hops=3, time_budget_seconds=0)

        assert result.truncation_reason == "time_budget"

    def test_deterministic(self, tracer):
        first = tracer.trace(NET, A, max_hops=4).to_dict()
        second = tracer.trace(NET, A, max_hops=4).to_dict()

        first.pop("elapsed_ms")
        second.pop("elapsed_ms")
        assert first == second


# =============================================================
# TEST: Validation
# =============================================================

class TestValidation:
    """Invalid arguments raise TraceError."""

    @pytest.mark.parametrize("hops", [0, 11, -1, True, "3"])
    def test_hop_budget(self, tracer, hops):
        with pytest.raises(TraceError):
            tracer.trace(NET, A, max_hops=hops)

    def test_direction(self, tracer):
        with pytest.raises(TraceError):
            tracer.trace(NET, A, max_hops=2, direction="sideways")

    def test_inverted_window(self, tracer):
        with pytest.raises(TraceError):
            tracer.trace(NET, A, max_hops=2, time_window=(block_time(3), block_time(1)))

    @pytest.mark.parametrize("amount", ["-1", "abc", "NaN"])
    def test_min_amount(self, tracer, amount):
        with pytest.raises(TraceError):
            tracer.trace(NET, A, max_hops=2, min_amount=amount)

    def test_max_paths(self, tracer):
        with pytest.raises(TraceError):
            tracer.trace(NET, A, max_hops=2, max_paths=0)


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
