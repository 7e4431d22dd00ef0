from __future__ import annotations

from fastapi import APIRouter, Depends

from autopecas.core.metrics import realtime_counters, request_metrics
from autopecas.deps import require_role
from autopecas.models.user import User
from autopecas.services.broadcast import broadcast_hub

router = APIRouter(prefix="/internal/metrics", tags=["internal-metrics"])


@router.get("")
def metrics(_user: User = Depends(require_role(["dev", "administrador"]))):
    return {
        "requests": request_metrics.snapshot(),
        "realtime": {**realtime_counters.snapshot(), "connections": broadcast_hub.connection_count},
    }
