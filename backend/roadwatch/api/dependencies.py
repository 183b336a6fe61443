"""
Route dependencies

Services are created by the application factory and kept on
``app.state``; routes receive them through Depends.
"""

from fastapi import Request

from roadwatch.coordination import CoordinationQueryService
from roadwatch.ingestion import IngestionService
from roadwatch.risk import RiskAssessmentService
from roadwatch.streaming import StreamBroadcaster


def get_ingestion_service(request: Request) -> IngestionService:
    return request.app.state.ingestion_service


def get_coordination_service(request: Request) -> CoordinationQueryService:
    return request.app.state.coordination_service


def get_risk_service(request: Request) -> RiskAssessmentService:
    return request.app.state.risk_service


def get_broadcaster(request: Request) -> StreamBroadcaster:
    return request.app.state.broadcaster
