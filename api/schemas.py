"""
Pydantic schemas for the query server.

Amounts are integral base units serialized as strings so that
values above 2**53 survive JSON clients.
"""

from datetime import datetime
from typing import Dict, List, Optional

from pydantic import BaseModel, Field, field_validator

from core.constants import MAX_TRACE_HOPS


# =======================
# COMMON
# =======================

class ErrorResponse(BaseModel):
    error: str
    detail: str
    context: Dict[str, object] = Field(default_factory=dict)


class HealthResponse(BaseModel):
    status: str
    version: str
    timestamp: datetime
    networks: Dict[str, str] = Field(default_factory=dict)


# =======================
# CHAIN DATA
# =======================

class TipResponse(BaseModel):
    network_id: str
    height: int
    block_hash: Optional[str] = None


class NetworkResponse(BaseModel):
    id: str
    name: str
    chain_model: str
    native_asset: str
    confirmation_depth: int
    max_reorg_depth: int
    rpc_endpoint_count: int
    tip: Optional[TipResponse] = None
    scan_state: Optional[str] = None


class InputResponse(BaseModel):
    index: int
    address: Optional[str] = None
    asset: str
    amount: str
    prev_tx_hash: Optional[str] = None
    prev_index: Optional[int] = None


class OutputResponse(BaseModel):
    index: int
    address: Optional[str] = None
    asset: str
    amount: str


class TransactionResponse(BaseModel):
    network_id: str
    hash: str
    block_hash: str
    block_height: int
    position: int
    timestamp: int
    inputs: List[InputResponse]
    outputs: List[OutputResponse]
    fee: str
    minted: str


class BalanceResponse(BaseModel):
    network_id: str
    address: str
    height: Optional[int] = None
    balances: Dict[str, str]


class LinkResponse(BaseModel):
    network_id: str
    tx_hash: str
    from_address: str
    to_address: str
    asset: str
    amount: str
    block_height: int
    timestamp: int


class ReorgEventResponse(BaseModel):
    fork_height: int
    old_tip_height: Optional[int] = None
    old_tip_hash: Optional[str] = None
    new_tip_hash: Optional[str] = None
    blocks_revoked: int
    transactions_revoked: int
    links_revoked: int
    created_at: Optional[str] = None


# =======================
# TRACING
# =======================

class TraceRequest(BaseModel):
    network_id: str
    address: str
    max_hops: int = Field(3, ge=1, le=MAX_TRACE_HOPS)
    direction: str = "outgoing"
    since: Optional[int] = None
    until: Optional[int] = None
    min_amount: Optional[str] = None
    max_paths: Optional[int] = Field(None, ge=1)
    time_budget_seconds: Optional[float] = Field(None, gt=0)
    chronological: bool = True

    @field_validator("direction")
    @classmethod
    def _direction(cls, value: str) -> str:
        value = value.lower()
        if value not in ("outgoing", "incoming"):
            raise ValueError("direction must be 'outgoing' or 'incoming'")
        return value


class TracePathResponse(BaseModel):
    hops: int
    amount: str
    asset: str
    addresses: List[str]
    links: List[LinkResponse]


class TraceResponse(BaseModel):
    network_id: str
    source_address: str
    direction: str
    max_hops: int
    path_count: int
    paths: List[TracePathResponse]
    truncated: bool
    truncation_reason: Optional[str] = None
    hops_explored: int
    addresses_visited: int
    links_examined: int
    elapsed_ms: float


# =======================
# LABELS
# =======================

class LabelCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=128)
    description: str = ""
    is_locked: bool = False


class LabelUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=128)
    description: Optional[str] = None
    is_locked: Optional[bool] = None


class LabelResponse(BaseModel):
    id: str
    name: str
    description: str
    is_locked: bool
    created_at: Optional[str] = None


class LabelAssign(BaseModel):
    label_id: str


class LabeledAddressResponse(BaseModel):
    network_id: str
    address: str
    label: LabelResponse
    is_locked: bool


class AddressDelete(BaseModel):
    addresses: List[str] = Field(..., min_length=1)


class AddressDeleteResponse(BaseModel):
    deleted: int


class UpstreamSourceResponse(BaseModel):
    address: str
    label: LabelResponse
    hops: int
    amount: str
    asset: str
    tx_hashes: List[str]
