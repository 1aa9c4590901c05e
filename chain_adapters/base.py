"""
Base Chain Adapter - Abstract interface for all network adapters.

All adapters MUST:
- Expose the same capability set: latest_height(), block_by_height(h),
  block_by_hash(hash)
- Map every failure onto the scan error taxonomy
  (TransientError / NotFoundError / PermanentError)
- Carry a timeout on every call (converted to TransientError)
- Never log RPC credentials
"""

import asyncio
import functools
import json
import logging
import time
from abc import ABC, abstractmethod
from datetime import datetime
from decimal import Decimal
from itertools import count
from typing import Any, Dict, List, Optional, Sequence, Tuple
from urllib.parse import urlsplit, urlunsplit

import aiohttp

from chain_adapters.models import AdapterHealth, AdapterIncident, AdapterStatus, RawBlock
from core.clock import now_utc
from core.config import ChainModel, NetworkConfig
from core.exceptions import NotFoundError, PermanentError, ScanError, TransientError
from ingestion.types import OutputRef, ResolvedOutput


logger = logging.getLogger(__name__)


# Node amounts are parsed as Decimal so base-unit conversion is exact
_decimal_loads = functools.partial(json.loads, parse_float=Decimal)


def mask_url(url: str) -> str:
    """Hide the userinfo part of an RPC URL."""
    try:
        parts = urlsplit(url)
    except ValueError:
        return "***"
    if parts.username is None and parts.password is None:
        return url
    host = parts.hostname or ""
    if parts.port:
        host = f"{host}:{parts.port}"
    return urlunsplit((parts.scheme, f"***:***@{host}", parts.path, parts.query, parts.fragment))


def split_auth(url: str) -> Tuple[str, Optional[aiohttp.BasicAuth]]:
    """Strip credentials from a URL and return them as BasicAuth."""
    parts = urlsplit(url)
    if parts.username is None:
        return url, None
    host = parts.hostname or ""
    if parts.port:
        host = f"{host}:{parts.port}"
    bare = urlunsplit((parts.scheme, host, parts.path, parts.query, parts.fragment))
    return bare, aiohttp.BasicAuth(parts.username, parts.password or "")


class BaseChainAdapter(ABC):
    """
    Abstract base class for all network adapters.

    Each adapter must:
    1. Implement latest_height() - Highest block the node knows
    2. Implement block_by_height() - Raw block at a height
    3. Implement block_by_hash() - Raw block by hash

    Features:
    - JSON-RPC over aiohttp with per-call timeout
    - Endpoint rotation on transient failures
    - Health tracking and incident log
    - Credential masking in every log line
    """

    chain_model: ChainModel

    DEGRADED_THRESHOLD = 3
    UNAVAILABLE_THRESHOLD = 5
    JSONRPC_VERSION = "2.0"

    def __init__(
        self,
        network: NetworkConfig,
        session: Optional[aiohttp.ClientSession] = None,
        timeout: Optional[float] = None,
    ) -> None:
        if not network.rpc_endpoints:
            raise ValueError(f"Network {network.network_id} has no RPC endpoints")
        self._network = network
        self._timeout = timeout or network.rpc_timeout_seconds
        self._session = session
        self._owns_session = session is None
        self._request_ids = count(1)

        # Health tracking
        self._health = AdapterHealth(
            status=AdapterStatus.UNKNOWN,
            last_check=now_utc(),
            active_endpoint=mask_url(self.endpoint),
        )
        self._last_successful_request: Optional[datetime] = None

        # Incident log
        self._incidents: List[AdapterIncident] = []
        self._max_incidents = 100

    @property
    def network(self) -> NetworkConfig:
        return self._network

    @property
    def network_id(self) -> str:
        return self._network.network_id

    @property
    def name(self) -> str:
        return f"{self.chain_model.value}:{self.network_id}"

    @property
    def endpoint(self) -> str:
        """Currently active RPC endpoint (unmasked)."""
        return self._network.rpc_endpoints[0]

    # =========================================================
    # CAPABILITY SET
    # =========================================================

    @abstractmethod
    async def latest_height(self) -> int:
        """
        Highest block height the node reports.

        Raises:
            TransientError: On network/RPC failure
            PermanentError: On a malformed response
        """
        pass

    @abstractmethod
    async def block_by_height(self, height: int) -> RawBlock:
        """
        Fetch the block at ``height``.

        Raises:
            NotFoundError: If height exceeds the node's latest block
            TransientError: On network/RPC failure
            PermanentError: On a malformed or unsupported response
        """
        pass

    @abstractmethod
    async def block_by_hash(self, block_hash: str) -> RawBlock:
        """Fetch a block by hash. Same error contract as block_by_height."""
        pass

    async def resolve_outputs(
        self,
        refs: Sequence[OutputRef],
    ) -> Dict[OutputRef, ResolvedOutput]:
        """
        Resolve prior outputs spent by a block.

        Only UTXO adapters implement this; account adapters return
        sender and receiver directly.
        """
        return {}

    async def health_check(self) -> AdapterHealth:
        """Probe the node with latest_height()."""
        try:
            await self.latest_height()
        except ScanError:
            pass
        self._health.last_check = now_utc()
        return self._health

    # =========================================================
    # JSON-RPC
    # =========================================================

    async def _rpc(
        self,
        method: str,
        params: Optional[List[Any]] = None,
        height: Optional[int] = None,
    ) -> Any:
        """
        Call a JSON-RPC method on the active endpoint.

        Transient failures rotate the endpoint before being raised,
        so the caller's retry goes to the next node.
        """
        payload = {
            "jsonrpc": self.JSONRPC_VERSION,
            "id": next(self._request_ids),
            "method": method,
            "params": params or [],
        }
        url = self.endpoint
        try:
            result = await asyncio.wait_for(
                self._post(url, payload, method, height),
                timeout=self._timeout,
            )
        except asyncio.TimeoutError as e:
            error = TransientError(
                f"{method} timed out after {self._timeout:.1f}s",
                network_id=self.network_id,
                height=height,
                cause=e,
            )
            self._on_error(error, method, height)
            raise error from e
        except ScanError as e:
            e.attributed(self.network_id, height)
            self._on_error(e, method, height)
            raise

        self._on_success()
        return result

    async def _post(
        self,
        url: str,
        payload: Dict[str, Any],
        method: str,
        height: Optional[int],
    ) -> Any:
        """Make one HTTP request and unwrap the JSON-RPC envelope."""
        session = await self._get_session()
        bare_url, auth = split_auth(url)

        start_time = time.time()
        try:
            async with session.post(bare_url, json=payload, auth=auth) as response:
                self._health.latency_ms = (time.time() - start_time) * 1000
                self._health.requests_total += 1

                if response.status == 429:
                    raise TransientError(
                        f"{method}: rate limited by {mask_url(url)}",
                        context={"status": 429},
                    )

                try:
                    body = await response.json(loads=_decimal_loads, content_type=None)
                except ValueError as e:
                    if response.status >= 500:
                        raise TransientError(
                            f"{method}: HTTP {response.status} from {mask_url(url)}",
                            context={"status": response.status},
                            cause=e,
                        )
                    raise PermanentError(
                        f"{method}: malformed JSON from {mask_url(url)}",
                        context={"status": response.status},
                        cause=e,
                    )

                # bitcoind reports RPC errors with HTTP 500 and a JSON body
                if isinstance(body, dict) and body.get("error") is not None:
                    raise self._map_rpc_error(method, body["error"], height)

                if response.status in (401, 403) or response.status >= 500:
                    raise TransientError(
                        f"{method}: HTTP {response.status} from {mask_url(url)}",
                        context={"status": response.status},
                    )
                if response.status >= 400:
                    raise PermanentError(
                        f"{method}: HTTP {response.status} from {mask_url(url)}",
                        context={"status": response.status},
                    )
                if not isinstance(body, dict) or "result" not in body:
                    raise PermanentError(f"{method}: response is not a JSON-RPC envelope")
                return body["result"]

        except aiohttp.ClientError as e:
            raise TransientError(
                f"{method}: connection error to {mask_url(url)}: {type(e).__name__}",
                cause=e,
            )

    def _map_rpc_error(
        self,
        method: str,
        error: Any,
        height: Optional[int],
    ) -> ScanError:
        """Map a JSON-RPC error object; providers refine this per node type."""
        message = error.get("message", str(error)) if isinstance(error, dict) else str(error)
        code = error.get("code") if isinstance(error, dict) else None
        return PermanentError(
            f"{method}: RPC error {code}: {message}",
            context={"rpc_code": code},
        )

    def _not_found(self, what: str, height: Optional[int] = None) -> NotFoundError:
        return NotFoundError(f"{what} not found", network_id=self.network_id, height=height)

    def _malformed(self, message: str, height: Optional[int] = None) -> PermanentError:
        return PermanentError(message, network_id=self.network_id, height=height)

    # =========================================================
    # ENDPOINTS & SESSION
    # =========================================================

    def rotate_endpoint(self) -> str:
        """Switch to the next configured RPC endpoint."""
        previous = self.endpoint
        self._network.rotate_endpoints()
        self._health.active_endpoint = mask_url(self.endpoint)
        if self.endpoint != previous:
            logger.warning(
                f"[{self.network_id}] Rotating RPC endpoint "
                f"{mask_url(previous)} -> {mask_url(self.endpoint)}"
            )
        return self.endpoint

    async def _get_session(self) -> aiohttp.ClientSession:
        """Get or create HTTP session."""
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self._timeout),
                headers=self._get_default_headers(),
            )
            self._owns_session = True
        return self._session

    def _get_default_headers(self) -> Dict[str, str]:
        return {
            "Accept": "application/json",
            "Content-Type": "application/json",
            "User-Agent": "chainflow-indexer/0.1",
        }

    # =========================================================
    # HEALTH & INCIDENTS
    # =========================================================

    def _on_success(self) -> None:
        """Handle successful request."""
        self._last_successful_request = now_utc()
        self._health.consecutive_failures = 0

        if self._health.status != AdapterStatus.HEALTHY:
            self._health.status = AdapterStatus.HEALTHY
            logger.info(f"[{self.network_id}] Adapter HEALTHY via {mask_url(self.endpoint)}")

    def _on_error(self, error: ScanError, method: str, height: Optional[int]) -> None:
        """Handle request error."""
        self._health.error_count += 1
        self._health.last_error = str(error)
        self._health.last_error_time = now_utc()

        if isinstance(error, TransientError) and not isinstance(error, NotFoundError):
            self._health.consecutive_failures += 1
            if self._health.consecutive_failures >= self.UNAVAILABLE_THRESHOLD:
                if self._health.status != AdapterStatus.UNAVAILABLE:
                    self._health.status = AdapterStatus.UNAVAILABLE
                    logger.error(f"[{self.network_id}] Adapter marked UNAVAILABLE")
            elif self._health.consecutive_failures >= self.DEGRADED_THRESHOLD:
                if self._health.status != AdapterStatus.DEGRADED:
                    self._health.status = AdapterStatus.DEGRADED
                    logger.warning(f"[{self.network_id}] Adapter marked DEGRADED")
            self.rotate_endpoint()

        if not isinstance(error, NotFoundError):
            self._log_incident(error, method, height)

    def _log_incident(self, error: ScanError, method: str, height: Optional[int]) -> None:
        incident = AdapterIncident(
            network_id=self.network_id,
            incident_type=error.__class__.__name__,
            error_message=str(error),
            method=method,
            height=height,
        )
        self._incidents.append(incident)
        if len(self._incidents) > self._max_incidents:
            self._incidents = self._incidents[-self._max_incidents:]

        logger.warning(f"[{self.network_id}] Incident: {error}")

    def get_health(self) -> AdapterHealth:
        """Get current health status."""
        return self._health

    def get_incidents(self, limit: int = 10) -> List[AdapterIncident]:
        """Get recent incidents."""
        return self._incidents[-limit:]

    def is_healthy(self) -> bool:
        return self._health.is_healthy()

    # =========================================================
    # LIFECYCLE
    # =========================================================

    async def close(self) -> None:
        """Close resources."""
        if self._owns_session and self._session and not self._session.closed:
            await self._session.close()

    async def __aenter__(self) -> "BaseChainAdapter":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__}(name={self.name}, status={self._health.status.value})>"
