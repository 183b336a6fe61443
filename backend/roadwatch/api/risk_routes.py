"""
Risk API Routes

Endpoints:
- POST /api/risk/assess - Risk assessment for one traffic reading
"""

from typing import List, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from roadwatch.models import IntersectionReading, RiskAssessment, SensorReading, TrafficAlert, WeatherState
from roadwatch.risk import RiskAssessmentService

from .dependencies import get_risk_service

router = APIRouter(prefix="/api/risk", tags=["risk"])


class RiskAssessRequest(BaseModel):
    """Reading to assess plus optional context (looked up when omitted)"""
    traffic: SensorReading
    intersection: Optional[IntersectionReading] = None
    weather: Optional[WeatherState] = None
    alerts: Optional[List[TrafficAlert]] = None


@router.post("/assess", response_model=RiskAssessment)
async def assess_risk(
    request: RiskAssessRequest,
    service: RiskAssessmentService = Depends(get_risk_service),
):
    """
    Assess the risk of one traffic reading

    Returns the 0-100 score, its level, every triggered factor and the
    per-category breakdown.
    """
    return service.assess_reading(
        request.traffic,
        intersection=request.intersection,
        weather=request.weather,
        alerts=request.alerts,
    )
