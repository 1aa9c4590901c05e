"""
Orchestrator - Runtime.

============================================================
RESPONSIBILITY
============================================================
Wires every component of the indexer into one controlled
runtime and owns its lifecycle.

- Builds: Database -> WarehouseCache -> Warehouse ->
  AdapterRegistry -> ScanScheduler -> FundFlowTracer -> API
- Installs SIGINT/SIGTERM handlers that set the stop event
- Runs one-shot backfills or the long-running server
- Closes adapters and disposes the engine on shutdown

============================================================
ARCHITECTURAL POSITION
============================================================
- No indexing logic lives here
- Scan loops observe the stop event between blocks, so a
  signal never interrupts a commit

============================================================
"""

import asyncio
import logging
import signal
import sys
from typing import Any, Dict, List, Optional, Sequence

import uvicorn

from api.server import create_app
from chain_adapters.registry import AdapterRegistry
from core.clock import ClockFactory
from core.config import AppConfig, NetworkConfig
from core.exceptions import ConfigurationError
from scanner.alerts import AlertManager
from scanner.models import CycleOutcome, CycleResult
from scanner.scheduler import ScanScheduler
from storage.cache import WarehouseCache
from storage.database import Database
from storage.warehouse import Warehouse
from tracer.fund_flow import FundFlowTracer


logger = logging.getLogger(__name__)


# ============================================================
# LOGGING SETUP
# ============================================================

LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"


def setup_logging(level: str = "INFO") -> None:
    """Send every record to stdout in one line format."""
    log_level = getattr(logging, level.upper(), logging.INFO)

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    root_logger.handlers = [handler]

    # aiohttp/sqlalchemy are noisy at DEBUG
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger("aiohttp.access").setLevel(logging.WARNING)


# ============================================================
# RUNTIME
# ============================================================

class Runtime:
    """
    The wired indexer.

    Usage:
        runtime = Runtime.build(config)
        try:
            await runtime.backfill()
        finally:
            await runtime.close()
    """

    def __init__(
        self,
        config: AppConfig,
        database: Database,
        warehouse: Warehouse,
        registry: AdapterRegistry,
        scheduler: ScanScheduler,
        tracer: FundFlowTracer,
    ) -> None:
        self.config = config
        self.database = database
        self.warehouse = warehouse
        self.registry = registry
        self.scheduler = scheduler
        self.tracer = tracer
        self.stop_event = asyncio.Event()
        self._signals_installed: List[signal.Signals] = []

    @classmethod
    def build(
        cls,
        config: AppConfig,
        network_ids: Optional[Sequence[str]] = None,
        registry: Optional[AdapterRegistry] = None,
    ) -> "Runtime":
        """
        Wire every component from configuration.

        Args:
            config: Loaded application configuration
            network_ids: Restrict scanning to these networks
            registry: Pre-populated adapters (one is created per
                network otherwise)

        Raises:
            ConfigurationError: Unknown or disabled network requested
        """
        networks = cls._select_networks(config, network_ids)

        database = Database.from_config(config.store)
        database.create_all_tables()

        warehouse = Warehouse(database, cache=WarehouseCache.from_config(config.cache))
        registry = registry or AdapterRegistry()
        clock = ClockFactory.get_clock()

        scheduler = ScanScheduler(
            warehouse,
            registry,
            networks,
            scan_config=config.scan,
            alerts=AlertManager(),
            clock=clock,
        )
        tracer = FundFlowTracer(warehouse, clock=clock)

        logger.info(
            f"Runtime wired: {len(networks)} networks "
            f"({', '.join(n.network_id for n in networks) or 'none'})"
        )
        return cls(config, database, warehouse, registry, scheduler, tracer)

    @staticmethod
    def _select_networks(
        config: AppConfig,
        network_ids: Optional[Sequence[str]],
    ) -> List[NetworkConfig]:
        if not network_ids:
            return config.enabled_networks
        selected = []
        for network_id in network_ids:
            network = config.get_network(network_id)
            if not network.enabled:
                raise ConfigurationError(
                    f"Network {network_id} is disabled",
                    config_key="networks",
                )
            selected.append(network)
        return selected

    def create_app(self):
        return create_app(
            self.warehouse,
            tracer=self.tracer,
            settings=self.config.server,
            scheduler=self.scheduler,
        )

    # --------------------------------------------------------
    # Commands
    # --------------------------------------------------------

    async def backfill(self, until_height: Optional[int] = None) -> Dict[str, CycleResult]:
        """Scan every selected network once, up to its safe tip."""
        self.install_signal_handlers()
        try:
            return await self.scheduler.backfill(until_height=until_height)
        finally:
            self.restore_signal_handlers()

    async def serve(self) -> None:
        """
        Scan continuously and serve the query API until a signal
        arrives or the server exits.
        """
        app = self.create_app()
        server = uvicorn.Server(
            uvicorn.Config(
                app,
                host=self.config.server.host,
                port=self.config.server.port,
                log_level=self.config.log_level.lower(),
            )
        )

        self.install_signal_handlers()
        scan_task = asyncio.create_task(
            self.scheduler.run_forever(self.stop_event), name="scan-scheduler"
        )
        serve_task = asyncio.create_task(server.serve(), name="query-server")
        stop_task = asyncio.create_task(self.stop_event.wait(), name="stop-event")

        try:
            await asyncio.wait(
                {serve_task, stop_task, scan_task},
                return_when=asyncio.FIRST_COMPLETED,
            )
        finally:
            self.stop_event.set()
            server.should_exit = True
            await asyncio.gather(serve_task, scan_task, return_exceptions=True)
            stop_task.cancel()
            self.restore_signal_handlers()
            logger.info("Runtime stopped")

    def status(self) -> List[Dict[str, Any]]:
        """Registered networks with their committed tips."""
        return self.warehouse.list_networks()

    async def close(self) -> None:
        await self.registry.close()
        self.database.dispose()

    # --------------------------------------------------------
    # Signal Handlers
    # --------------------------------------------------------

    def install_signal_handlers(self) -> None:
        """SIGINT/SIGTERM set the stop event."""
        if sys.platform == "win32":
            signal.signal(signal.SIGINT, self._signal_handler)
            return

        loop = asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(sig, self.request_stop, sig)
            self._signals_installed.append(sig)

    def restore_signal_handlers(self) -> None:
        if not self._signals_installed:
            return
        loop = asyncio.get_running_loop()
        for sig in self._signals_installed:
            loop.remove_signal_handler(sig)
        self._signals_installed.clear()

    def _signal_handler(self, signum: int, frame: Any) -> None:
        self.request_stop(signal.Signals(signum))

    def request_stop(self, sig: Optional[signal.Signals] = None) -> None:
        """Ask scan loops to finish their in-flight block and exit."""
        if sig is not None:
            logger.info(f"Received signal {sig.name}, stopping")
        self.stop_event.set()
        self.scheduler.stop()


# ============================================================
# RESULT SUMMARY
# ============================================================

def summarize_backfill(results: Dict[str, CycleResult]) -> int:
    """
    Print one line per network and return the exit code.

    Any network that ended DEGRADED or PAUSED makes the run fail.
    """
    exit_code = 0
    for network_id, result in sorted(results.items()):
        line = (
            f"{network_id}: {result.outcome.value}, tip {result.tip_height}, "
            f"{result.committed} committed, {result.skipped} skipped"
        )
        if result.error:
            line += f" ({result.error})"
        print(line)
        if result.outcome.is_halting:
            exit_code = 1
    return exit_code
