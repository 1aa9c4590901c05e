"""
Tests for the query server.

Runs the FastAPI app in-process over a SQLite warehouse holding
a small account chain:

    block 1:  A -> B  100   (t1)
    block 2:  B -> C   60   (t2)
    block 3:  C -> D   25   (t3)
"""

from decimal import Decimal

import pytest
from fastapi.testclient import TestClient

from api.server import create_app
from core.config import ServerConfig
from ingestion.normalizers import get_normalizer
from tracer import FundFlowTracer

from chain_builders import account_chain, address, eth_tx, tx_hash


API_KEY = "secret-key"
AUTH = {"Authorization": f"Bearer {API_KEY}"}
NET = "eth-test"

A, B, C, D = (address(c) for c in "abcd")
T1, T2, T3 = (tx_hash(n) for n in range(1, 4))

CHAIN = {
    1: [eth_tx(T1, A, B, 100)],
    2: [eth_tx(T2, B, C, 60)],
    3: [eth_tx(T3, C, D, 25)],
}


@pytest.fixture
def indexed(warehouse, account_network):
    warehouse.sync_network(account_network)
    normalizer = get_normalizer(account_network.chain_model)
    for raw in account_chain(account_network.network_id, 3, CHAIN):
        warehouse.upsert_block(normalizer.normalize(raw, account_network))
    return warehouse


@pytest.fixture
def client(indexed, clock):
    app = create_app(
        indexed,
        tracer=FundFlowTracer(indexed, clock=clock),
        settings=ServerConfig(api_keys=[API_KEY]),
    )
    return TestClient(app)


# =============================================================
# TEST: Authentication
# =============================================================

class TestAuthentication:
    """Bearer key checks."""

    def test_health_is_public(self, client):
        response = client.get("/v1/health")

        assert response.status_code == 200
        assert response.json()["status"] == "ok"

    def test_missing_key(self, client):
        response = client.get("/v1/networks")

        assert response.status_code == 401
        assert response.headers["WWW-Authenticate"] == "Bearer"

    def test_wrong_key(self, client):
        response = client.get("/v1/networks", headers={"Authorization": "Bearer nope"})

        assert response.status_code == 401

    def test_open_without_keys(self, indexed):
        client = TestClient(create_app(indexed))

        assert client.get("/v1/networks").status_code == 200


# =============================================================
# TEST: Chain data
# =============================================================

class TestChainData:
    """Networks, tips, transactions, balances and links."""

    def test_list_networks(self, client):
        networks = client.get("/v1/networks", headers=AUTH).json()

        assert [n["id"] for n in networks] == [NET]
        assert networks[0]["chain_model"] == "account"
        assert networks[0]["tip"]["height"] == 3

    def test_tip(self, client):
        tip = client.get(f"/v1/networks/{NET}/tip", headers=AUTH).json()

        assert tip["height"] == 3
        assert tip["block_hash"]

    def test_tip_unknown_network(self, client):
        assert client.get("/v1/networks/nope/tip", headers=AUTH).status_code == 404

    def test_transaction(self, client):
        body = client.get(f"/v1/transactions/{T2}", params={"network_id": NET}, headers=AUTH).json()

        assert body["hash"] == T2
        assert body["block_height"] == 2

    def test_transaction_not_found(self, client):
        response = client.get(f"/v1/transactions/{tx_hash(99)}", headers=AUTH)

        assert response.status_code == 404

    def test_balance(self, client):
        body = client.get(f"/v1/addresses/{NET}/{C}/balance", headers=AUTH).json()

        assert body["height"] == 3
        assert Decimal(body["balances"]["ETH"]) == Decimal(35)

    def test_balance_at_height(self, client):
        body = client.get(
            f"/v1/addresses/{NET}/{C}/balance",
            params={"height": 2},
            headers=AUTH,
        ).json()

        assert Decimal(body["balances"]["ETH"]) == Decimal(60)

    def test_links(self, client):
        outgoing = client.get(f"/v1/addresses/{NET}/{B}/links", headers=AUTH).json()
        incoming = client.get(
            f"/v1/addresses/{NET}/{B}/links",
            params={"direction": "incoming"},
            headers=AUTH,
        ).json()

        assert [link["tx_hash"] for link in outgoing] == [T2]
        assert [link["tx_hash"] for link in incoming] == [T1]

    def test_links_bad_direction(self, client):
        response = client.get(
            f"/v1/addresses/{NET}/{B}/links",
            params={"direction": "sideways"},
            headers=AUTH,
        )

        assert response.status_code == 400
        assert response.json()["error"] == "validation_error"


# =============================================================
# TEST: Fund flow
# =============================================================

class TestFundFlow:
    """Trace and upstream endpoints."""

    def test_trace(self, client):
        response = client.post(
            "/v1/trace",
            json={"network_id": NET, "address": A, "max_hops": 3},
            headers=AUTH,
        )

        assert response.status_code == 200
        body = response.json()
        assert body["path_count"] == 3
        assert body["paths"][-1]["addresses"] == [A, B, C, D]
        assert body["truncated"] is False

    @pytest.mark.parametrize("max_hops", [0, 11])
    def test_trace_hop_budget(self, client, max_hops):
        response = client.post(
            "/v1/trace",
            json={"network_id": NET, "address": A, "max_hops": max_hops},
            headers=AUTH,
        )

        assert response.status_code == 400

    def test_trace_inverted_window(self, client):
        response = client.post(
            "/v1/trace",
            json={"network_id": NET, "address": A, "since": 200, "until": 100},
            headers=AUTH,
        )

        assert response.status_code == 400
        assert response.json()["error"] == "invalid_trace"

    def test_upstream(self, client, indexed):
        label = indexed.create_label("Exchange")
        indexed.assign_label(NET, A, label.label_id)

        response = client.get(
            "/v1/upstream",
            params={"network_id": NET, "address": D, "max_hops": 3},
            headers=AUTH,
        )

        assert response.status_code == 200
        sources = response.json()
        assert [(s["address"], s["hops"]) for s in sources] == [(A, 3)]
        assert sources[0]["tx_hashes"] == [T1, T2, T3]
        assert sources[0]["label"]["name"] == "Exchange"


# =============================================================
# TEST: Labels
# =============================================================

class TestLabels:
    """Label CRUD and address assignment."""

    def create(self, client, name, **extra):
        return client.post("/v1/labels", json={"name": name, **extra}, headers=AUTH)

    def test_create_and_get(self, client):
        created = self.create(client, "Exchange", description="hot wallet")

        assert created.status_code == 201
        label = created.json()
        fetched = client.get(f"/v1/labels/{label['id']}", headers=AUTH).json()
        assert fetched["name"] == "Exchange"
        assert fetched["description"] == "hot wallet"
        assert [l["name"] for l in client.get("/v1/labels", headers=AUTH).json()] == ["Exchange"]

    def test_duplicate_name(self, client):
        self.create(client, "Exchange")

        response = self.create(client, "exchange")

        assert response.status_code == 409
        assert response.json()["error"] == "conflict"

    def test_unknown_label(self, client):
        assert client.get("/v1/labels/missing", headers=AUTH).status_code == 404

    def test_locked_label(self, client):
        label = self.create(client, "Mixer", is_locked=True).json()

        renamed = client.patch(f"/v1/labels/{label['id']}", json={"name": "Other"}, headers=AUTH)
        deleted = client.delete(f"/v1/labels/{label['id']}", headers=AUTH)
        unlocked = client.patch(f"/v1/labels/{label['id']}", json={"is_locked": False}, headers=AUTH)

        assert renamed.status_code == 409
        assert deleted.status_code == 409
        assert unlocked.status_code == 200
        assert unlocked.json()["is_locked"] is False

    def test_delete_label(self, client):
        label = self.create(client, "Exchange").json()

        assert client.delete(f"/v1/labels/{label['id']}", headers=AUTH).status_code == 204
        assert client.get(f"/v1/labels/{label['id']}", headers=AUTH).status_code == 404

    def test_assign_and_unassign(self, client):
        label = self.create(client, "Exchange").json()

        assigned = client.put(
            f"/v1/addresses/{NET}/{A}/label",
            json={"label_id": label["id"]},
            headers=AUTH,
        )

        assert assigned.status_code == 200
        assert assigned.json()["label"]["name"] == "Exchange"
        assert client.get(f"/v1/labels/{label['id']}/addresses", headers=AUTH).json() == [A]

        assert client.delete(f"/v1/addresses/{NET}/{A}/label", headers=AUTH).status_code == 204
        assert client.get(f"/v1/labels/{label['id']}/addresses", headers=AUTH).json() == []

    def test_delete_addresses(self, client, indexed):
        response = client.post(f"/v1/addresses/{NET}/delete", json={"addresses": [A, B]}, headers=AUTH)

        assert response.status_code == 200
        assert response.json() == {"deleted": 2}

    def test_delete_locked_address(self, client, indexed):
        indexed.set_address_locked(NET, C, True)

        response = client.post(f"/v1/addresses/{NET}/delete", json={"addresses": [C, D]}, headers=AUTH)

        assert response.status_code == 409
        assert client.post(
            f"/v1/addresses/{NET}/delete", json={"addresses": [D]}, headers=AUTH
        ).json() == {"deleted": 1}

    def test_empty_address_list(self, client):
        response = client.post(f"/v1/addresses/{NET}/delete", json={"addresses": []}, headers=AUTH)

        assert response.status_code == 400


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
