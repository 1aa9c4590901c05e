"""
Scanner Package.

The scan scheduler: one independent ingestion loop per network,
reorg repair, retry policy and scan alerts.

Components:
- scheduler: NetworkScanner (one cycle) and ScanScheduler (all loops)
- reorg: walk-back to the fork point and revoke
- retry: exponential backoff with jitter
- alerts: surfaced scan failures
- models: cycle results
"""

from scanner.alerts import AlertManager, AlertTier, ScanAlert
from scanner.models import CycleOutcome, CycleResult
from scanner.reorg import ReorgHandler
from scanner.retry import RetryPolicy
from scanner.scheduler import NetworkScanner, ScanScheduler


__all__ = [
    "AlertManager",
    "AlertTier",
    "ScanAlert",
    "CycleOutcome",
    "CycleResult",
    "ReorgHandler",
    "RetryPolicy",
    "NetworkScanner",
    "ScanScheduler",
]
