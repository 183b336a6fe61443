"""
Coordination API Routes

On-demand intersection coordination views rebuilt from the reading store.

Endpoints:
- GET /api/coordination/intersections - Coordination overview
- GET /api/coordination/intersections/{id}/status - Coordination snapshot
- GET /api/coordination/intersections/{id}/flow/dynamic - Dynamic flow report

Unknown intersections are answered with 404 and a diagnostic body
listing available and similar intersection ids.
"""

from collections import Counter
from datetime import datetime, timedelta
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import JSONResponse

from roadwatch.coordination import LISTING_STATUSES, CoordinationQueryService
from roadwatch.models import CoordinationNotFound

from .dependencies import get_coordination_service

router = APIRouter(prefix="/api/coordination", tags=["coordination"])


def _not_found(result: CoordinationNotFound) -> JSONResponse:
    return JSONResponse(status_code=404, content=result.model_dump(mode="json"))


@router.get("/intersections")
async def list_intersections(
    status: str = Query("all", description="all, full_coordination, partial_coordination or legacy_mode"),
    service: CoordinationQueryService = Depends(get_coordination_service),
):
    """
    Get the coordination overview of every intersection

    Returns totals per coordination status and one summary per intersection,
    most recently updated first.
    """
    if status != "all" and status not in LISTING_STATUSES:
        raise HTTPException(status_code=400, detail=f"Unknown status filter: {status}")

    summaries = service.list_intersections(None if status == "all" else status)
    return {
        "total_intersections": len(summaries),
        "coordination_summary": dict(Counter(s.coordination_status for s in summaries)),
        "intersections": [s.model_dump(mode="json") for s in summaries],
    }


@router.get("/intersections/{intersection_id}/status")
async def get_intersection_status(
    intersection_id: str,
    staleness_minutes: Optional[float] = Query(None, gt=0, description="Drop directions older than this"),
    now: Optional[datetime] = Query(None, description="Reference time for staleness"),
    service: CoordinationQueryService = Depends(get_coordination_service),
):
    """
    Get the coordination snapshot of one intersection

    Includes per-direction sensors, flow metrics, efficiency estimate and
    weather / traffic light synchronization.
    """
    window = timedelta(minutes=staleness_minutes) if staleness_minutes is not None else None
    result = service.get_status(intersection_id, now=now, staleness_window=window)
    if isinstance(result, CoordinationNotFound):
        return _not_found(result)
    return result.model_dump(mode="json")


@router.get("/intersections/{intersection_id}/flow/dynamic")
async def get_dynamic_flow(
    intersection_id: str,
    service: CoordinationQueryService = Depends(get_coordination_service),
):
    """Compare reported flow rates with rates recomputed from live conditions"""
    result = service.get_dynamic_flow(intersection_id)
    if isinstance(result, CoordinationNotFound):
        return _not_found(result)
    return result.model_dump(mode="json")
