"""
Core Module - Exceptions.

============================================================
RESPONSIBILITY
============================================================
Defines the error taxonomy shared by adapters, normalizers,
the warehouse and the scan scheduler.

- Every scan failure is attributed to a network and a height
- Classification drives the scheduler's recovery policy
- Carries context for alerting and diagnosis

============================================================
EXCEPTION HIERARCHY
============================================================
IndexerException (base)
├── ConfigurationError
├── StateTransitionError
├── TraceError
└── ScanError
    ├── TransientError       (retry with backoff)
    │   └── NotFoundError    (height not produced yet)
    ├── PermanentError       (skip height or degrade network)
    ├── ReorgExceededError   (fatal for the network)
    └── StoreFailure         (bounded retry, then pause)

============================================================
"""

from enum import Enum
from datetime import datetime, timezone
from typing import Any, Dict, Optional


# ============================================================
# SEVERITY LEVELS
# ============================================================

class Severity(Enum):
    """Exception severity levels for alerting."""

    LOW = "low"
    """Minor issue, informational."""

    MEDIUM = "medium"
    """Moderate issue, requires attention."""

    HIGH = "high"
    """Serious issue, the network scan is affected."""

    CRITICAL = "critical"
    """Manual intervention required."""


# ============================================================
# ERROR CLASSIFICATION
# ============================================================

class ErrorClassification(Enum):
    """Classification of error recoverability."""

    RECOVERABLE = "recoverable"
    """Error can be recovered from automatically."""

    TRANSIENT = "transient"
    """Temporary error, retry may succeed."""

    NON_RECOVERABLE = "non_recoverable"
    """Permanent error, requires intervention."""


# ============================================================
# BASE EXCEPTION
# ============================================================

class IndexerException(Exception):
    """
    Base exception for all indexer errors.

    All exceptions carry:
    - severity: for alerting
    - context: for debugging
    - classification: for recovery decisions
    - timestamp: when the error occurred
    """

    default_severity: Severity = Severity.MEDIUM
    default_classification: ErrorClassification = ErrorClassification.RECOVERABLE

    def __init__(
        self,
        message: str,
        severity: Optional[Severity] = None,
        context: Optional[Dict[str, Any]] = None,
        classification: Optional[ErrorClassification] = None,
        cause: Optional[Exception] = None,
    ):
        super().__init__(message)

        self.message = message
        self.severity = severity or self.default_severity
        self.context = context or {}
        self.classification = classification or self.default_classification
        self.cause = cause
        self.timestamp = datetime.now(timezone.utc)

        if cause:
            self.context["cause_type"] = type(cause).__name__
            self.context["cause_message"] = str(cause)

    def to_dict(self) -> Dict[str, Any]:
        """Serialize exception for logging/storage."""
        return {
            "type": type(self).__name__,
            "message": self.message,
            "severity": self.severity.value,
            "classification": self.classification.value,
            "context": self.context,
            "timestamp": self.timestamp.isoformat(),
            "cause": str(self.cause) if self.cause else None,
        }


# ============================================================
# CONFIGURATION ERRORS
# ============================================================

class ConfigurationError(IndexerException):
    """Error in configuration."""

    default_severity = Severity.HIGH
    default_classification = ErrorClassification.NON_RECOVERABLE

    def __init__(
        self,
        message: str,
        config_key: Optional[str] = None,
        actual_value: Optional[Any] = None,
        **kwargs,
    ):
        context = kwargs.pop("context", {})

        if config_key:
            context["config_key"] = config_key
        if actual_value is not None:
            context["actual_value"] = str(actual_value)[:100]

        super().__init__(message, context=context, **kwargs)
        self.config_key = config_key


class StateTransitionError(IndexerException):
    """Invalid scan state transition."""

    default_severity = Severity.HIGH
    default_classification = ErrorClassification.NON_RECOVERABLE

    def __init__(
        self,
        message: str,
        from_state: Optional[str] = None,
        to_state: Optional[str] = None,
        network_id: Optional[str] = None,
        **kwargs,
    ):
        context = kwargs.pop("context", {})
        context.update({
            "from_state": from_state,
            "to_state": to_state,
            "network_id": network_id,
        })
        super().__init__(message, context=context, **kwargs)
        self.from_state = from_state
        self.to_state = to_state


class TraceError(IndexerException):
    """Invalid fund-flow trace request."""

    default_severity = Severity.LOW


# ============================================================
# SCAN ERRORS
# ============================================================

class ScanError(IndexerException):
    """
    Base class for failures inside a network's ingestion pipeline.

    Always attributed to a network, and to a height when one is known.
    """

    def __init__(
        self,
        message: str,
        network_id: Optional[str] = None,
        height: Optional[int] = None,
        **kwargs,
    ):
        context = kwargs.pop("context", {})
        if network_id is not None:
            context["network_id"] = network_id
        if height is not None:
            context["height"] = height

        super().__init__(message, context=context, **kwargs)
        self.network_id = network_id
        self.height = height

    def attributed(self, network_id: str, height: Optional[int]) -> "ScanError":
        """Fill in missing attribution and return self."""
        if self.network_id is None:
            self.network_id = network_id
            self.context["network_id"] = network_id
        if self.height is None and height is not None:
            self.height = height
            self.context["height"] = height
        return self

    def __str__(self) -> str:
        where = []
        if self.network_id is not None:
            where.append(f"network={self.network_id}")
        if self.height is not None:
            where.append(f"height={self.height}")
        suffix = f" [{' '.join(where)}]" if where else ""
        return f"{self.message}{suffix}"


class TransientError(ScanError):
    """Network or RPC failure; the caller retries with backoff."""

    default_severity = Severity.MEDIUM
    default_classification = ErrorClassification.TRANSIENT


class NotFoundError(TransientError):
    """Requested block does not exist yet (height above latest, unknown hash)."""

    default_severity = Severity.LOW


class PermanentError(ScanError):
    """Malformed or unsupported data; retrying cannot succeed."""

    default_severity = Severity.HIGH
    default_classification = ErrorClassification.NON_RECOVERABLE


class ReorgExceededError(ScanError):
    """No common ancestor within the configured maximum reorg depth."""

    default_severity = Severity.CRITICAL
    default_classification = ErrorClassification.NON_RECOVERABLE

    def __init__(
        self,
        message: str,
        max_reorg_depth: Optional[int] = None,
        **kwargs,
    ):
        super().__init__(message, **kwargs)
        self.max_reorg_depth = max_reorg_depth
        if max_reorg_depth is not None:
            self.context["max_reorg_depth"] = max_reorg_depth


class StoreFailure(ScanError):
    """Durable storage rejected a read or write."""

    default_severity = Severity.HIGH
    default_classification = ErrorClassification.RECOVERABLE

    def __init__(
        self,
        message: str,
        operation: Optional[str] = None,
        **kwargs,
    ):
        super().__init__(message, **kwargs)
        self.operation = operation
        if operation:
            self.context["operation"] = operation


# ============================================================
# EXPORTS
# ============================================================

__all__ = [
    "Severity",
    "ErrorClassification",
    "IndexerException",
    "ConfigurationError",
    "StateTransitionError",
    "TraceError",
    "ScanError",
    "TransientError",
    "NotFoundError",
    "PermanentError",
    "ReorgExceededError",
    "StoreFailure",
]
