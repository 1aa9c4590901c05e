"""
Orchestrator Tests.

============================================================
PURPOSE
============================================================
Tests for the CLI and the wired runtime.

TEST CATEGORIES:
- Argument parsing and validation
- Backfill summary and exit codes
- Runtime wiring, backfill and status
- End-to-end ``status`` command

============================================================
"""

import dataclasses
from unittest.mock import patch

import pytest
import yaml

from chain_adapters.registry import AdapterRegistry
from core.config import AppConfig, StoreConfig
from core.exceptions import ConfigurationError
from ingestion.normalizers import get_normalizer
from orchestrator import Runtime, create_parser, main, summarize_backfill
from orchestrator.cli import validate_args
from scanner import CycleOutcome
from scanner.models import CycleResult
from storage.database import Database
from storage.warehouse import Warehouse

from chain_builders import ScriptedAdapter, account_chain, address, eth_tx, tx_hash


@pytest.fixture
def database_url(tmp_path):
    return f"sqlite:///{tmp_path / 'indexer.db'}"


@pytest.fixture
def app_config(account_network, scan_config, database_url):
    return AppConfig(
        networks=[account_network],
        scan=scan_config,
        store=StoreConfig(database_url=database_url),
    )


@pytest.fixture
def scripted_registry(account_network):
    adapter = ScriptedAdapter(
        account_network,
        account_chain(account_network.network_id, 3, {2: [eth_tx(tx_hash(1), address("a"), address("b"), 7)]}),
    )
    registry = AdapterRegistry()
    registry.register(adapter)
    return registry


# =============================================================
# TEST: Parser
# =============================================================

class TestParser:
    """Test argument parsing."""

    def test_scan_arguments(self):
        args = create_parser().parse_args(
            ["scan", "--network", "eth-mainnet", "-n", "btc-mainnet", "--until", "100"]
        )

        assert args.command == "scan"
        assert args.networks == ["eth-mainnet", "btc-mainnet"]
        assert args.until == 100

    def test_server_arguments(self):
        args = create_parser().parse_args(["--log-level", "DEBUG", "server", "--port", "9000"])

        assert args.command == "server"
        assert args.port == 9000
        assert args.log_level == "DEBUG"

    def test_command_required(self):
        with pytest.raises(SystemExit):
            create_parser().parse_args([])

    def test_validate_args(self, tmp_path):
        parser = create_parser()

        assert validate_args(parser.parse_args(["scan", "--until", "5"])) == []
        assert validate_args(parser.parse_args(["scan", "--until", "-1"])) == ["--until must be >= 0"]
        assert validate_args(parser.parse_args(["server", "--port", "70000"])) == ["--port must be 1-65535"]

        missing = parser.parse_args(["--config", str(tmp_path / "nope.yaml"), "status"])
        assert len(validate_args(missing)) == 1

    def test_invalid_args_exit_code(self):
        assert main(["scan", "--until", "-3"]) == 1


# =============================================================
# TEST: Backfill summary
# =============================================================

class TestSummarizeBackfill:
    """Test exit codes of a one-shot scan."""

    def test_all_at_tip(self, capsys):
        results = {"eth": CycleResult("eth", CycleOutcome.AT_TIP, tip_height=10, committed=11)}

        assert summarize_backfill(results) == 0
        assert "eth: at_tip, tip 10, 11 committed, 0 skipped" in capsys.readouterr().out

    @pytest.mark.parametrize("outcome", [CycleOutcome.DEGRADED, CycleOutcome.PAUSED])
    def test_failed_network(self, capsys, outcome):
        results = {
            "btc": CycleResult("btc", outcome, error="boom"),
            "eth": CycleResult("eth", CycleOutcome.AT_TIP),
        }

        assert summarize_backfill(results) == 1
        assert "(boom)" in capsys.readouterr().out


# =============================================================
# TEST: Runtime
# =============================================================

class TestRuntime:
    """Test runtime wiring."""

    def test_disabled_network_rejected(self, app_config, account_network):
        disabled = dataclasses.replace(account_network, enabled=False)
        config = dataclasses.replace(app_config, networks=[disabled])

        with pytest.raises(ConfigurationError):
            Runtime.build(config, network_ids=[disabled.network_id])

    def test_unknown_network_rejected(self, app_config):
        with pytest.raises(ConfigurationError):
            Runtime.build(app_config, network_ids=["nope"])

    @pytest.mark.asyncio
    async def test_backfill_and_status(self, app_config, scripted_registry, account_network):
        runtime = Runtime.build(app_config, registry=scripted_registry)
        try:
            results = await runtime.backfill()
            status = runtime.status()
        finally:
            await runtime.close()

        result = results[account_network.network_id]
        assert result.outcome == CycleOutcome.AT_TIP
        assert result.committed == 4
        assert [n["id"] for n in status] == [account_network.network_id]
        assert status[0]["tip"]["height"] == 3

    @pytest.mark.asyncio
    async def test_backfill_until_height(self, app_config, scripted_registry, account_network):
        runtime = Runtime.build(app_config, registry=scripted_registry)
        try:
            results = await runtime.backfill(until_height=1)
        finally:
            await runtime.close()

        assert results[account_network.network_id].committed == 2
        assert runtime.warehouse.get_tip(account_network.network_id).height == 1

    @pytest.mark.asyncio
    async def test_request_stop(self, app_config, scripted_registry):
        runtime = Runtime.build(app_config, registry=scripted_registry)
        try:
            runtime.request_stop()
            assert runtime.stop_event.is_set()
        finally:
            await runtime.close()


# =============================================================
# TEST: status command
# =============================================================

class TestStatusCommand:
    """End-to-end run of ``status`` against an existing warehouse."""

    @pytest.fixture
    def populated(self, database_url, account_network):
        database = Database.from_url(database_url)
        database.create_all_tables()
        warehouse = Warehouse(database)
        warehouse.sync_network(account_network)
        normalizer = get_normalizer(account_network.chain_model)
        for raw in account_chain(account_network.network_id, 2):
            warehouse.upsert_block(normalizer.normalize(raw, account_network))
        database.dispose()

    @pytest.fixture
    def config_file(self, tmp_path, account_network):
        path = tmp_path / "networks.yaml"
        path.write_text(yaml.safe_dump({
            "networks": [{
                "id": account_network.network_id,
                "chain_model": "account",
                "rpc_endpoints": ["http://127.0.0.1:8545"],
            }],
        }))
        return path

    def test_status(self, populated, config_file, database_url, account_network, monkeypatch, capsys):
        monkeypatch.setenv("CONFIG_PATH", str(config_file))
        monkeypatch.setenv("DATABASE_URL", database_url)

        with patch("orchestrator.cli.setup_logging"):
            assert main(["status"]) == 0

        out = capsys.readouterr().out
        assert account_network.network_id in out
        assert "tip 2" in out

    def test_bad_config_file(self, tmp_path, monkeypatch):
        path = tmp_path / "broken.yaml"
        path.write_text("networks: [\n")
        monkeypatch.delenv("CONFIG_PATH", raising=False)

        with patch("orchestrator.cli.setup_logging"):
            assert main(["--config", str(path), "status"]) == 2


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
