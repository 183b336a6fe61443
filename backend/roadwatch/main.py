"""
Roadwatch Service
Main FastAPI Application Entry Point

Wires the risk scoring engine, coordination aggregator, stream
broadcaster and reading repository into one FastAPI + Socket.IO app.
"""

import logging
import time
from contextlib import asynccontextmanager
from typing import Optional

import socketio
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from roadwatch import __version__
from roadwatch.api import coordination_router, ingest_router, risk_router, stream_router
from roadwatch.config import ConfigManager, get_config
from roadwatch.coordination import CoordinationAggregator, CoordinationQueryService, DynamicFlowEstimator
from roadwatch.database import ReadingRepository, SqlReadingRepository, init_db
from roadwatch.ingestion import IngestionService
from roadwatch.logging_setup import setup_logging
from roadwatch.risk import RiskAssessmentService, RiskScoringEngine
from roadwatch.streaming import DEFAULT_TOPICS, StreamBroadcaster, StreamSocketHandlers

logger = logging.getLogger(__name__)


def create_sio() -> socketio.AsyncServer:
    """Create the Socket.IO server for the push stream"""
    return socketio.AsyncServer(
        async_mode='asgi',
        cors_allowed_origins='*',
        logger=False,
        engineio_logger=False,
        ping_interval=25,
        ping_timeout=60
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events - startup and shutdown"""
    logger.info("[STARTUP] Roadwatch service %s", __version__)

    if isinstance(app.state.repository, SqlReadingRepository):
        init_db()

    logger.info(
        "[OK] Stream topics: %s", ", ".join(app.state.broadcaster.topics)
    )

    yield

    logger.info("[SHUTDOWN] Complete")


def create_app(
    config: Optional[ConfigManager] = None,
    repository: Optional[ReadingRepository] = None,
    sio: Optional[socketio.AsyncServer] = None,
) -> FastAPI:
    """
    Build the application

    Args:
        config: Configuration (default: process configuration)
        repository: Reading store (default: SQL repository on DATABASE_URL)
        sio: Socket.IO server (default: a new AsyncServer)

    Returns:
        FastAPI app with services on ``app.state``
    """
    config = config or get_config()
    repository = repository if repository is not None else SqlReadingRepository()

    risk_config = config.get_risk_config()
    coordination_config = config.get_coordination_config()
    streaming_config = config.get_streaming_config()

    scoring_engine = RiskScoringEngine.from_config(risk_config)
    broadcaster = StreamBroadcaster(streaming_config.get("topics") or DEFAULT_TOPICS)

    app = FastAPI(
        title="Roadwatch API",
        description="Roadway sensor risk scoring, intersection coordination and live event streams",
        version=__version__,
        lifespan=lifespan,
        docs_url="/docs",
        redoc_url="/redoc"
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.state.config = config
    app.state.repository = repository
    app.state.broadcaster = broadcaster
    app.state.ingestion_service = IngestionService(
        scoring_engine=scoring_engine,
        aggregator=CoordinationAggregator.from_config(coordination_config),
        broadcaster=broadcaster,
        alert_buffer_size=risk_config.get("alertBufferSize", 200),
    )
    app.state.coordination_service = CoordinationQueryService(
        repository,
        CoordinationAggregator.from_config(coordination_config),
        DynamicFlowEstimator.from_config(coordination_config.get("flowEstimator")),
    )
    app.state.risk_service = RiskAssessmentService(scoring_engine, repository)

    app.state.sio = sio or create_sio()
    app.state.stream_handlers = StreamSocketHandlers(
        app.state.sio,
        broadcaster,
        queue_size=streaming_config.get("queueSize", 100),
    )

    # Ingestion: /api/ingest/{traffic|intersection|alert|vehicle|sensor}
    app.include_router(ingest_router)

    # Coordination: /api/coordination/intersections/*
    app.include_router(coordination_router)

    # Risk: /api/risk/assess
    app.include_router(risk_router)

    # Stream statistics: /api/stream/stats
    app.include_router(stream_router)

    @app.get("/", tags=["root"])
    async def root():
        """Root endpoint - API information"""
        return {
            "name": "Roadwatch",
            "version": __version__,
            "status": "operational",
            "documentation": "/docs",
            "endpoints": {
                "ingest": "/api/ingest/*",
                "coordination": "/api/coordination/intersections",
                "risk": "/api/risk/assess",
                "stream": "/api/stream/stats",
            },
        }

    @app.get("/health", tags=["health"])
    async def health_check():
        """Health check endpoint"""
        return {
            "status": "healthy",
            "version": __version__,
            "timestamp": time.time(),
            "websocket": {
                "connected_clients": app.state.stream_handlers.get_client_count(),
                "subscribers": broadcaster.subscriber_count(),
                "status": "ready",
            },
        }

    return app


# ============================================
# Create Socket.IO ASGI app
# ============================================

setup_logging()
app = create_app()
sio_app = socketio.ASGIApp(app.state.sio, other_asgi_app=app)

# ============================================
# Socket.IO Event Documentation
# ============================================
#
# Server → Client Events:
#   - connection:success      : Sent on connect, lists the topics
#   - stream:subscribed       : Subscription accepted {subscriptionId}
#   - stream:unsubscribed     : Subscription removed
#   - stream:error            : Invalid or rejected request
#   - <topic>                 : Stream frame {topic, type, intersection_id, timestamp, data}
#
# Client → Server Events:
#   - stream:subscribe        : {topic, intersectionId?}
#   - stream:unsubscribe      : {subscriptionId}


# ============================================
# Entry Point
# ============================================

if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "roadwatch.main:sio_app",
        host="0.0.0.0",
        port=8000,
        log_level="info"
    )
