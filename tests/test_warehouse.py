"""
Warehouse Tests.

============================================================
PURPOSE
============================================================
Tests for the durable warehouse on SQLite.

TEST CATEGORIES:
- Block commit: idempotent replay, contiguity, parent check
- Atomicity of a failed commit
- Revocation above a fork height and skipped heights
- Queries: balances, transactions, links, prior outputs
- Labels and address label assignment

============================================================
"""

import dataclasses
from decimal import Decimal
from unittest.mock import patch

import pytest
from sqlalchemy.exc import OperationalError

from core.config import ChainModel
from core.exceptions import StoreFailure
from ingestion.normalizers import get_normalizer
from ingestion.types import OutputRef
from storage.repositories.chain import ChainRepository
from storage.repositories.exceptions import (
    DuplicateRecordError,
    LockedRecordError,
    RecordNotFoundError,
    ValidationError,
)

from chain_builders import (
    BASE_TIMESTAMP,
    BLOCK_INTERVAL,
    account_block,
    account_chain,
    account_hash,
    address,
    coinbase_tx,
    eth_tx,
    tx_hash,
    utxo_block,
)


A, B, C, D = address("a"), address("b"), address("c"), address("d")

TRANSFERS = {
    1: [eth_tx(tx_hash(1), A, B, 100)],
    2: [eth_tx(tx_hash(2), B, C, 40)],
    3: [eth_tx(tx_hash(3), A, C, 5)],
    4: [eth_tx(tx_hash(4), C, D, 10)],
}


def normalize(network, raw):
    return get_normalizer(network.chain_model).normalize(raw, network)


def commit(warehouse, network, blocks):
    for raw in blocks:
        warehouse.upsert_block(normalize(network, raw))


@pytest.fixture
def committed(warehouse, account_network):
    """Account chain 0..3 with transfers at heights 1-3."""
    commit(warehouse, account_network, account_chain(account_network.network_id, 3, TRANSFERS))
    return warehouse


# =============================================================
# TEST: Block commit
# =============================================================

class TestUpsertBlock:
    """Test block commits and their guards."""

    def test_commit_moves_tip(self, committed, account_network):
        tip = committed.get_tip(account_network.network_id)

        assert tip.height == 3
        assert tip.block_hash == account_hash(3)
        assert committed.get_block(account_network.network_id, 2).hash == account_hash(2)

    def test_replay_is_idempotent(self, committed, account_network):
        """Recommitting the same block changes nothing."""
        raw = account_block(account_network.network_id, 3, TRANSFERS[3])

        assert committed.upsert_block(normalize(account_network, raw)) is False
        assert committed.get_tip(account_network.network_id).height == 3

    def test_different_block_at_occupied_height(self, committed, account_network):
        raw = account_block(account_network.network_id, 3, tag="bb", parent_tag="aa")

        with pytest.raises(StoreFailure) as exc_info:
            committed.upsert_block(normalize(account_network, raw))
        assert exc_info.value.height == 3

    def test_non_contiguous_height(self, committed, account_network):
        raw = account_block(account_network.network_id, 5)

        with pytest.raises(StoreFailure):
            committed.upsert_block(normalize(account_network, raw))

    def test_parent_must_match_tip(self, committed, account_network):
        raw = account_block(account_network.network_id, 4, parent_tag="cc")

        with pytest.raises(StoreFailure):
            committed.upsert_block(normalize(account_network, raw))

    def test_failed_commit_writes_nothing(self, warehouse, account_network):
        """A failure in the same transaction rolls the block back."""
        raw = account_block(account_network.network_id, 0)
        disk_full = OperationalError("UPDATE tip_markers", {}, Exception("disk full"))

        with patch.object(ChainRepository, "set_tip", side_effect=disk_full):
            with pytest.raises(StoreFailure):
                warehouse.upsert_block(normalize(account_network, raw))

        assert warehouse.get_block(account_network.network_id, 0) is None
        assert warehouse.get_tip(account_network.network_id) is None
        assert warehouse.get_links_from(account_network.network_id, A) == []


# =============================================================
# TEST: Revoke & skip
# =============================================================

class TestRevoke:
    """Test revocation above a fork height."""

    def test_revoke_above(self, committed, account_network):
        network_id = account_network.network_id
        commit(committed, account_network, [account_block(network_id, 4, TRANSFERS[4])])

        result = committed.revoke_above(network_id, 2)

        assert (result.blocks, result.transactions, result.links) == (2, 2, 2)
        assert result.old_tip_height == 4
        assert result.new_tip_hash == account_hash(2)
        assert committed.get_tip(network_id).height == 2
        assert committed.get_block(network_id, 3) is None
        assert committed.get_transaction(tx_hash(3)) is None
        assert [l.tx_hash for l in committed.get_links_to(network_id, C)] == [tx_hash(2)]

    def test_revoke_records_event(self, committed, account_network):
        committed.revoke_above(account_network.network_id, 1)
        events = committed.get_reorg_events(account_network.network_id)

        assert len(events) == 1
        assert events[0]["fork_height"] == 1
        assert events[0]["blocks_revoked"] == 2
        assert events[0]["old_tip_hash"] == account_hash(3)

    def test_revoke_below_first_block_clears_tip(self, committed, account_network):
        result = committed.revoke_above(account_network.network_id, -1)

        assert result.blocks == 4
        assert committed.get_tip(account_network.network_id) is None

    def test_revoke_invalidates_cached_balances(self, committed, account_network):
        network_id = account_network.network_id
        assert committed.balance_at(network_id, C).get("ETH") == Decimal(45)

        committed.revoke_above(network_id, 2)

        assert committed.balance_at(network_id, C).get("ETH") == Decimal(40)


class TestSkipped:
    """Test skipped heights."""

    def test_skip_then_continue(self, warehouse, account_network):
        """The block after a skipped height is accepted without a parent check."""
        network_id = account_network.network_id
        commit(warehouse, account_network, account_chain(network_id, 1))

        warehouse.record_skipped(network_id, 2, "malformed block")
        tip = warehouse.get_tip(network_id)
        assert (tip.height, tip.block_hash) == (2, None)

        commit(warehouse, account_network, [account_block(network_id, 3)])
        assert warehouse.get_tip(network_id).height == 3
        assert warehouse.get_skipped(network_id) == [
            {"height": 2, "block_hash": None, "reason": "malformed block"}
        ]

    def test_skip_must_be_contiguous(self, committed, account_network):
        with pytest.raises(StoreFailure):
            committed.record_skipped(account_network.network_id, 7, "bad")

    def test_revoke_to_skipped_height(self, warehouse, account_network):
        network_id = account_network.network_id
        commit(warehouse, account_network, account_chain(network_id, 1))
        warehouse.record_skipped(network_id, 2, "bad")
        commit(warehouse, account_network, [account_block(network_id, 3)])

        result = warehouse.revoke_above(network_id, 2)

        assert result.new_tip_hash is None
        tip = warehouse.get_tip(network_id)
        assert (tip.height, tip.block_hash) == (2, None)

    def test_skip_keeps_known_hash(self, warehouse, account_network):
        """The next block is parent-checked against the skipped block's hash."""
        network_id = account_network.network_id
        commit(warehouse, account_network, account_chain(network_id, 1))

        warehouse.record_skipped(network_id, 2, "malformed block", account_hash(2))
        tip = warehouse.get_tip(network_id)
        assert (tip.height, tip.block_hash) == (2, account_hash(2))

        with pytest.raises(StoreFailure):
            commit(warehouse, account_network, [account_block(network_id, 3, parent_tag="bb")])
        commit(warehouse, account_network, [account_block(network_id, 3)])
        assert warehouse.get_tip(network_id).height == 3

    def test_revoke_to_skipped_height_restores_hash(self, warehouse, account_network):
        network_id = account_network.network_id
        commit(warehouse, account_network, account_chain(network_id, 1))
        warehouse.record_skipped(network_id, 2, "bad", account_hash(2))
        commit(warehouse, account_network, [account_block(network_id, 3)])

        result = warehouse.revoke_above(network_id, 2)

        assert result.new_tip_hash == account_hash(2)
        tip = warehouse.get_tip(network_id)
        assert (tip.height, tip.block_hash) == (2, account_hash(2))
        assert warehouse.stored_hash(network_id, 2) == account_hash(2)
        assert warehouse.stored_hash(network_id, 1) == account_hash(1)
        assert warehouse.stored_hash(network_id, 3) is None


# =============================================================
# TEST: Queries
# =============================================================

class TestQueries:
    """Test warehouse reads."""

    def test_balance_at_tip_and_height(self, committed, account_network):
        network_id = account_network.network_id

        assert committed.balance_at(network_id, B).get("ETH") == Decimal(60)
        at_two = committed.balance_at(network_id, C, height=2)
        assert at_two.height == 2
        assert at_two.get("ETH") == Decimal(40)
        assert committed.balance_at(network_id, C, asset="BTC").balances == {"BTC": Decimal(0)}

    def test_commit_invalidates_cached_balance(self, committed, account_network):
        network_id = account_network.network_id
        before = committed.balance_at(network_id, C)
        assert before.height == 3

        commit(committed, account_network, [account_block(network_id, 4, TRANSFERS[4])])
        after = committed.balance_at(network_id, C)

        assert after.height == 4
        assert after.get("ETH") == Decimal(35)

    def test_cached_balance_follows_tip(self, committed, account_network):
        """A block that does not touch B still moves B's reported height."""
        network_id = account_network.network_id
        assert committed.balance_at(network_id, B).height == 3

        commit(committed, account_network, [account_block(network_id, 4, TRANSFERS[4])])
        after_commit = committed.balance_at(network_id, B)
        assert (after_commit.height, after_commit.get("ETH")) == (4, Decimal(60))

        committed.record_skipped(network_id, 5, "malformed block")
        assert committed.balance_at(network_id, B).height == 5

    def test_get_transaction(self, committed, account_network):
        tx = committed.get_transaction(tx_hash(2))

        assert tx.block_height == 2
        assert tx.network_id == account_network.network_id
        assert tx.outputs[0].address == C
        assert tx.inputs[0].address == B
        assert committed.get_transaction(tx_hash(2), account_network.network_id) == tx
        assert committed.get_transaction(tx_hash(2), "btc-test") is None
        assert committed.get_transaction(tx_hash(99)) is None

    def test_links_by_time(self, committed, account_network):
        network_id = account_network.network_id
        links = committed.get_links_to(network_id, C)

        assert [(l.from_address, l.amount) for l in links] == [(B, Decimal(40)), (A, Decimal(5))]

        since = BASE_TIMESTAMP + 3 * BLOCK_INTERVAL
        assert [l.block_height for l in committed.get_links_to(network_id, C, since=since)] == [3]
        assert committed.get_links_to(network_id, C, until=since - 1)[0].block_height == 2

    def test_find_outputs(self, warehouse, utxo_network):
        network_id = utxo_network.network_id
        commit(warehouse, utxo_network, [
            utxo_block(network_id, 0, [coinbase_tx("cb" * 32, "bc1miner", "50")]),
        ])

        found = warehouse.find_outputs(network_id, [OutputRef("cb" * 32, 0), OutputRef("cb" * 32, 1)])

        assert list(found) == [OutputRef("cb" * 32, 0)]
        assert found[OutputRef("cb" * 32, 0)].amount == Decimal(5_000_000_000)
        assert found[OutputRef("cb" * 32, 0)].address == "bc1miner"

    def test_snapshot_view(self, committed, account_network):
        network_id = account_network.network_id
        with committed.snapshot() as view:
            assert view.get_tip(network_id).height == 3
            assert len(view.get_links_from(network_id, A)) == 2

    def test_list_networks(self, committed, account_network):
        committed.sync_network(account_network)
        networks = committed.list_networks()

        assert [n["id"] for n in networks] == [account_network.network_id]
        assert networks[0]["tip"]["height"] == 3

    def test_chain_model_cannot_change(self, warehouse, account_network):
        warehouse.sync_network(account_network)
        changed = dataclasses.replace(account_network, chain_model=ChainModel.UTXO)

        with pytest.raises(StoreFailure):
            warehouse.sync_network(changed)


# =============================================================
# TEST: Labels
# =============================================================

class TestLabels:
    """Test labels and their assignment to addresses."""

    def test_create_and_get(self, warehouse):
        label = warehouse.create_label("Exchange", "hot wallet")

        assert label.label_id.startswith("lbl_")
        assert warehouse.get_label(label.label_id).description == "hot wallet"
        assert [l.name for l in warehouse.list_labels()] == ["Exchange"]

    def test_duplicate_name_case_insensitive(self, warehouse):
        warehouse.create_label("Exchange")

        with pytest.raises(DuplicateRecordError):
            warehouse.create_label("exchange")

    def test_empty_name_rejected(self, warehouse):
        with pytest.raises(ValidationError):
            warehouse.create_label("   ")

    def test_missing_label(self, warehouse):
        with pytest.raises(RecordNotFoundError):
            warehouse.get_label("lbl_missing")

    def test_locked_label_only_unlocks(self, warehouse):
        """A locked label rejects every change except unlocking."""
        label = warehouse.create_label("Mixer", is_locked=True)

        with pytest.raises(LockedRecordError):
            warehouse.update_label(label.label_id, name="Tumbler")
        with pytest.raises(LockedRecordError):
            warehouse.delete_label(label.label_id)

        assert warehouse.update_label(label.label_id, is_locked=False).is_locked is False
        assert warehouse.update_label(label.label_id, name="Tumbler").name == "Tumbler"

    def test_delete_label_detaches_addresses(self, warehouse, account_network):
        label = warehouse.create_label("Scam")
        warehouse.assign_label(account_network.network_id, A, label.label_id)

        warehouse.delete_label(label.label_id)

        assert warehouse.labels_for(account_network.network_id, [A]) == {}
        with pytest.raises(RecordNotFoundError):
            warehouse.get_label(label.label_id)
        # the name is free again
        warehouse.create_label("Scam")

    def test_assign_and_unassign(self, committed, account_network):
        network_id = account_network.network_id
        label = committed.create_label("Exchange")

        assigned = committed.assign_label(network_id, B, label.label_id)
        assert assigned.label.name == "Exchange"
        assert committed.labels_for(network_id, [A, B]) == {B: committed.get_label(label.label_id)}
        assert committed.addresses_with_label(label.label_id) == [B]

        committed.unassign_label(network_id, B)
        assert committed.labels_for(network_id, [B]) == {}

    def test_delete_addresses_all_or_nothing(self, committed, account_network):
        network_id = account_network.network_id
        label = committed.create_label("Watch")
        for addr in (A, B, C):
            committed.assign_label(network_id, addr, label.label_id)
        committed.set_address_locked(network_id, C, True)

        with pytest.raises(LockedRecordError):
            committed.delete_addresses(network_id, [A, C])
        assert committed.addresses_with_label(label.label_id, network_id) == [A, B, C]

        assert committed.delete_addresses(network_id, [A, B, A]) == 2
        assert committed.addresses_with_label(label.label_id) == [C]

    def test_labels_never_touch_chain_data(self, committed, account_network):
        network_id = account_network.network_id
        label = committed.create_label("Exchange")
        committed.assign_label(network_id, C, label.label_id)
        committed.delete_addresses(network_id, [C])

        assert committed.balance_at(network_id, C).get("ETH") == Decimal(45)
        assert len(committed.get_links_to(network_id, C)) == 2


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
