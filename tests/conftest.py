"""
Shared fixtures: networks, a SQLite warehouse, scripted nodes.
"""

import pytest

from core.clock import MockClock
from core.config import ChainModel, NetworkConfig, ScanConfig
from scanner.alerts import AlertManager
from storage.cache import WarehouseCache
from storage.database import Database
from storage.warehouse import Warehouse

from chain_builders import ScriptedAdapter


ACCOUNT_NETWORK = "eth-test"
UTXO_NETWORK = "btc-test"


# =============================================================
# CONFIGURATION
# =============================================================

@pytest.fixture
def account_network():
    return NetworkConfig(
        network_id=ACCOUNT_NETWORK,
        chain_model=ChainModel.ACCOUNT,
        rpc_endpoints=["http://scripted"],
        confirmation_depth=0,
        max_reorg_depth=8,
        fetch_ahead=4,
        poll_interval_seconds=0.01,
    )


@pytest.fixture
def utxo_network():
    return NetworkConfig(
        network_id=UTXO_NETWORK,
        chain_model=ChainModel.UTXO,
        rpc_endpoints=["http://scripted"],
        confirmation_depth=0,
        max_reorg_depth=8,
        fetch_ahead=4,
        poll_interval_seconds=0.01,
    )


@pytest.fixture
def scan_config():
    """No backoff delay, three attempts, one-minute stall cooldown."""
    return ScanConfig(
        retry_attempts=3,
        retry_base_seconds=0.0,
        retry_jitter=0.0,
        stall_cooldown_seconds=60.0,
        store_retry_attempts=2,
    )


# =============================================================
# INFRASTRUCTURE
# =============================================================

@pytest.fixture
def database(tmp_path):
    db = Database.from_url(f"sqlite:///{tmp_path / 'warehouse.db'}")
    db.create_all_tables()
    yield db
    db.dispose()


@pytest.fixture
def warehouse(database):
    return Warehouse(database, cache=WarehouseCache(block_capacity=64, balance_capacity=64))


@pytest.fixture
def clock():
    return MockClock()


@pytest.fixture
def alerts():
    return AlertManager()


@pytest.fixture
def sleeps():
    """Records requested backoff delays instead of sleeping."""
    delays = []

    async def sleep(seconds: float) -> None:
        delays.append(seconds)

    sleep.delays = delays
    return sleep


@pytest.fixture
def account_adapter(account_network):
    return ScriptedAdapter(account_network)


@pytest.fixture
def utxo_adapter(utxo_network):
    return ScriptedAdapter(utxo_network)
