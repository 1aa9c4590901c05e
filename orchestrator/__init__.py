"""
Orchestrator Package - Lifecycle Layer.

============================================================
PACKAGE OVERVIEW
============================================================
Wires storage, adapters, scan loops, tracer and query API
into one runtime, and exposes the lifecycle commands:

- scan   : one-shot backfill up to the safe tip
- server : continuous scanning plus the query API
- status : committed tip of every network

============================================================
"""

from .runtime import Runtime, setup_logging, summarize_backfill
from .cli import create_parser, main

__all__ = [
    "Runtime",
    "setup_logging",
    "summarize_backfill",
    "create_parser",
    "main",
]
