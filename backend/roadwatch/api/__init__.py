"""
API Routes Package

This module exports all FastAPI routers of the roadwatch service.
"""

from .ingest_routes import router as ingest_router
from .coordination_routes import router as coordination_router
from .risk_routes import router as risk_router
from .stream_routes import router as stream_router

__all__ = [
    "ingest_router",
    "coordination_router",
    "risk_router",
    "stream_router",
]
