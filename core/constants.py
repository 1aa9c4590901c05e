"""
Core Module - Constants.

============================================================
RESPONSIBILITY
============================================================
Defines system-wide defaults.

- Single source of truth for tunables that have a default
- Documents the meaning of each constant
- No business logic here

============================================================
"""

SYSTEM_NAME = "chainflow-indexer"
SYSTEM_VERSION = "0.1.0"

# ============================================================
# SCAN DEFAULTS
# ============================================================

# Blocks behind the reported tip before a block is ingested
DEFAULT_CONFIRMATION_DEPTH_UTXO = 6
DEFAULT_CONFIRMATION_DEPTH_ACCOUNT = 12

# How far back a reorg repair may walk before the network degrades
DEFAULT_MAX_REORG_DEPTH = 64

# Heights fetched concurrently ahead of the commit cursor
DEFAULT_FETCH_AHEAD = 8
DEFAULT_MAX_CONCURRENT_REQUESTS = 4

# Seconds to sleep when the safe tip has been reached
DEFAULT_POLL_INTERVAL_SECONDS = 10.0

# Adapter call timeout, converted to a transient error
DEFAULT_RPC_TIMEOUT_SECONDS = 30.0

# ============================================================
# RETRY DEFAULTS
# ============================================================

DEFAULT_RETRY_ATTEMPTS = 5
DEFAULT_RETRY_BASE_SECONDS = 1.0
DEFAULT_RETRY_FACTOR = 2.0
DEFAULT_RETRY_MAX_SECONDS = 60.0
DEFAULT_RETRY_JITTER = 0.1
DEFAULT_STALL_COOLDOWN_SECONDS = 120.0
DEFAULT_STORE_RETRY_ATTEMPTS = 3

# ============================================================
# NORMALIZATION
# ============================================================

# Allowed excess of outputs over inputs + minted, in base units
DEFAULT_FEE_TOLERANCE = 0

# ============================================================
# CACHE DEFAULTS
# ============================================================

DEFAULT_BLOCK_CACHE_SIZE = 10_000
DEFAULT_BALANCE_CACHE_SIZE = 50_000

# ============================================================
# TRACER LIMITS
# ============================================================

MAX_TRACE_HOPS = 10
DEFAULT_TRACE_MAX_PATHS = 1_000
DEFAULT_TRACE_FANOUT = 500
