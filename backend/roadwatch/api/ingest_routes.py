"""
Ingestion API Routes

Receive sensor events from the upstream consumer.

Endpoints:
- POST /api/ingest/traffic - Per-direction traffic reading
- POST /api/ingest/intersection - Intersection-wide reading
- POST /api/ingest/alert - Traffic alert
- POST /api/ingest/vehicle - Vehicle detection (forwarded)
- POST /api/ingest/sensor - Sensor health report (forwarded)

Invalid events are answered with 422 and the validation errors.
"""

from typing import Any

from fastapi import APIRouter, Body, Depends
from fastapi.responses import JSONResponse

from roadwatch.ingestion import IngestionService, IngestResult

from .dependencies import get_ingestion_service

router = APIRouter(prefix="/api/ingest", tags=["ingestion"])


def _respond(result: IngestResult) -> JSONResponse:
    status_code = 200 if result.accepted else 422
    return JSONResponse(status_code=status_code, content=result.to_response())


@router.post("/traffic")
async def ingest_traffic(
    payload: Any = Body(...),
    service: IngestionService = Depends(get_ingestion_service),
):
    """Ingest a traffic reading; responds with its risk assessment"""
    return _respond(service.ingest_traffic(payload))


@router.post("/intersection")
async def ingest_intersection(
    payload: Any = Body(...),
    service: IngestionService = Depends(get_ingestion_service),
):
    """Ingest an intersection-wide reading"""
    return _respond(service.ingest_intersection(payload))


@router.post("/alert")
async def ingest_alert(
    payload: Any = Body(...),
    service: IngestionService = Depends(get_ingestion_service),
):
    """Ingest a traffic alert"""
    return _respond(service.ingest_alert(payload))


@router.post("/vehicle")
async def ingest_vehicle(
    payload: Any = Body(...),
    service: IngestionService = Depends(get_ingestion_service),
):
    """Forward a vehicle detection to stream subscribers"""
    return _respond(service.ingest_vehicle(payload))


@router.post("/sensor")
async def ingest_sensor_health(
    payload: Any = Body(...),
    service: IngestionService = Depends(get_ingestion_service),
):
    """Forward a sensor health report to stream subscribers"""
    return _respond(service.ingest_sensor_health(payload))
