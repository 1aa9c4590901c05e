from datetime import datetime, timezone

from fastapi import APIRouter, Depends

from api.dependencies import get_scheduler
from api.schemas import HealthResponse
from core.constants import SYSTEM_VERSION

router = APIRouter(prefix="/v1", tags=["Health"])


@router.get("/health", response_model=HealthResponse)
def health(scheduler=Depends(get_scheduler)):
    """Liveness plus the scan state of every network. Never requires a key."""
    networks = {}
    if scheduler is not None:
        networks = {
            network_id: scanner.state.state.value
            for network_id, scanner in scheduler.scanners.items()
        }
    return HealthResponse(
        status="ok",
        version=SYSTEM_VERSION,
        timestamp=datetime.now(timezone.utc),
        networks=networks,
    )
