"""
Fund-flow endpoints.

Handlers are plain functions: FastAPI runs them in its worker
thread pool, so a long trace never blocks the event loop.
"""

from typing import List, Optional

from fastapi import APIRouter, Depends, Query

from api.dependencies import get_tracer, require_api_key
from api.schemas import TraceRequest, TraceResponse, UpstreamSourceResponse
from core.constants import MAX_TRACE_HOPS
from tracer.fund_flow import FundFlowTracer

router = APIRouter(prefix="/v1", tags=["Fund Flow"], dependencies=[Depends(require_api_key)])


@router.post("/trace", response_model=TraceResponse)
def trace(request: TraceRequest, tracer: FundFlowTracer = Depends(get_tracer)):
    result = tracer.trace(
        request.network_id,
        request.address,
        request.max_hops,
        time_window=(request.since, request.until),
        min_amount=request.min_amount,
        direction=request.direction,
        max_paths=request.max_paths,
        time_budget_seconds=request.time_budget_seconds,
        chronological=request.chronological,
    )
    return result.to_dict()


@router.get("/upstream", response_model=List[UpstreamSourceResponse])
def upstream(
    network_id: str = Query(...),
    address: str = Query(...),
    max_hops: int = Query(3, ge=1, le=MAX_TRACE_HOPS),
    since: Optional[int] = Query(None),
    until: Optional[int] = Query(None),
    tracer: FundFlowTracer = Depends(get_tracer),
):
    sources = tracer.upstream(network_id, address, max_hops, time_window=(since, until))
    return [s.to_dict() for s in sources]
