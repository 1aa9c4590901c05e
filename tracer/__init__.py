"""
Tracer Package.

Fund-flow tracing over committed links: bounded path search
("where did these funds go / come from") and labelled upstream
source lookup.
"""

from tracer.fund_flow import FundFlowTracer
from tracer.models import TraceDirection, TracePath, TraceResult, UpstreamSource


__all__ = [
    "FundFlowTracer",
    "TraceDirection",
    "TracePath",
    "TraceResult",
    "UpstreamSource",
]
