"""
Orchestrator - CLI.

============================================================
RESPONSIBILITY
============================================================
Command-line interface for the indexer.

- Provides argparse-based CLI
- Loads configuration from YAML, .env and environment
- One subcommand per lifecycle command

============================================================
USAGE
============================================================
python app.py scan --config networks.yaml
python app.py scan --network btc-mainnet --until 800000
python app.py server --config networks.yaml
python app.py status

============================================================
"""

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import List, Optional

from core.config import load_config, set_config
from core.constants import SYSTEM_NAME, SYSTEM_VERSION
from core.exceptions import ConfigurationError, IndexerException
from orchestrator.runtime import Runtime, setup_logging, summarize_backfill


logger = logging.getLogger(__name__)


# ============================================================
# CLI ARGUMENT PARSER
# ============================================================

def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser."""
    parser = argparse.ArgumentParser(
        prog=SYSTEM_NAME,
        description="Multi-network blockchain fund-flow indexer",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Commands:
  scan      - One-shot backfill of every enabled network up to its safe tip
  server    - Continuous scanning plus the query API
  status    - Print the committed tip of every registered network

Examples:
  %(prog)s scan --config networks.yaml
  %(prog)s scan --network eth-mainnet --until 19000000
  %(prog)s server --config networks.yaml
        """,
    )

    parser.add_argument(
        "--config", "-c",
        type=Path,
        metavar="PATH",
        help="YAML configuration file (default: $CONFIG_PATH)",
    )
    parser.add_argument(
        "--log-level",
        type=str,
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Logging level (default: $LOG_LEVEL or INFO)",
    )
    parser.add_argument(
        "--version", "-v",
        action="version",
        version=f"%(prog)s {SYSTEM_VERSION}",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    # --------------------------------------------------------
    # scan
    # --------------------------------------------------------
    scan = subparsers.add_parser("scan", help="One-shot backfill")
    scan.add_argument(
        "--network", "-n",
        action="append",
        dest="networks",
        metavar="NETWORK_ID",
        help="Scan only this network (repeatable)",
    )
    scan.add_argument(
        "--until",
        type=int,
        metavar="HEIGHT",
        help="Do not scan above this height",
    )

    # --------------------------------------------------------
    # server
    # --------------------------------------------------------
    server = subparsers.add_parser("server", help="Continuous scanning plus query API")
    server.add_argument(
        "--network", "-n",
        action="append",
        dest="networks",
        metavar="NETWORK_ID",
        help="Scan only this network (repeatable)",
    )
    server.add_argument("--host", type=str, help="Bind address (default: $SERVER_HOST)")
    server.add_argument("--port", type=int, help="Bind port (default: $SERVER_PORT)")

    # --------------------------------------------------------
    # status
    # --------------------------------------------------------
    status = subparsers.add_parser("status", help="Print committed tips")
    status.add_argument(
        "--json",
        action="store_true",
        help="Print machine-readable JSON",
    )

    return parser


def validate_args(args: argparse.Namespace) -> List[str]:
    """Return a list of argument errors (empty when valid)."""
    errors = []
    if args.config is not None and not args.config.exists():
        errors.append(f"Config file not found: {args.config}")
    if getattr(args, "until", None) is not None and args.until < 0:
        errors.append("--until must be >= 0")
    if getattr(args, "port", None) is not None and not 0 < args.port < 65536:
        errors.append("--port must be 1-65535")
    return errors


# ============================================================
# COMMANDS
# ============================================================

async def run_scan(runtime: Runtime, args: argparse.Namespace) -> int:
    results = await runtime.backfill(until_height=args.until)
    return summarize_backfill(results)


async def run_server(runtime: Runtime, args: argparse.Namespace) -> int:
    await runtime.serve()
    return 0


def print_status(runtime: Runtime, as_json: bool = False) -> int:
    networks = runtime.status()
    if as_json:
        print(json.dumps(networks, indent=2, default=str))
        return 0

    if not networks:
        print("No networks registered")
        return 0

    for network in networks:
        tip = network.get("tip")
        if tip is None:
            where = "no blocks committed"
        else:
            where = f"tip {tip['height']} {tip['block_hash'] or '(skipped)'}"
        print(f"{network['id']:<24} {network['chain_model']:<8} {where}")
    return 0


async def async_main(args: argparse.Namespace) -> int:
    """Load config, wire the runtime and dispatch the command."""
    try:
        config = load_config(args.config)
    except ConfigurationError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 2

    if args.log_level:
        config.log_level = args.log_level
    if getattr(args, "host", None):
        config.server.host = args.host
    if getattr(args, "port", None):
        config.server.port = args.port

    set_config(config)
    setup_logging(config.log_level)

    try:
        runtime = Runtime.build(config, network_ids=getattr(args, "networks", None))
    except IndexerException as e:
        logger.error(f"Startup failed: {e}")
        return 2

    try:
        if args.command == "scan":
            return await run_scan(runtime, args)
        if args.command == "server":
            return await run_server(runtime, args)
        return print_status(runtime, as_json=args.json)
    except IndexerException as e:
        logger.error(f"{args.command} failed: {e}")
        return 1
    finally:
        await runtime.close()


def main(argv: Optional[List[str]] = None) -> int:
    """CLI entry point."""
    parser = create_parser()
    args = parser.parse_args(argv)

    errors = validate_args(args)
    if errors:
        for error in errors:
            print(f"Error: {error}", file=sys.stderr)
        return 1

    try:
        return asyncio.run(async_main(args))
    except KeyboardInterrupt:
        return 130


if __name__ == "__main__":
    sys.exit(main())
