from fastapi import APIRouter, Request

from api.guards import require
from core.metrics import get_all_metrics, reset_metrics
from core.rbac.capabilities import ACTION_VIEW_DEBUG

router = APIRouter(tags=["debug"])


@router.get("/debug/metrics")
@require(ACTION_VIEW_DEBUG)
def debug_metrics(request: Request):
    """Counters and histograms collected since start (or the last reset)."""
    return {"metrics": get_all_metrics()}


@router.post("/debug/metrics/reset")
@require(ACTION_VIEW_DEBUG)
def debug_metrics_reset(request: Request):
    reset_metrics()
    return {"status": "reset"}


@router.get("/debug/grants")
@require(ACTION_VIEW_DEBUG)
def debug_grants(request: Request):
    """The capability table in force, as loaded at startup."""
    grants = request.app.state.grants or {}
    return {"grants": {role: grant.to_dict() for role, grant in grants.items()}}
