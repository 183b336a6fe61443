"""
Stream API Routes

Endpoints:
- GET /api/stream/stats - Broadcaster and ingestion statistics
"""

import time

from fastapi import APIRouter, Depends, Request

from roadwatch.streaming import StreamBroadcaster

from .dependencies import get_broadcaster

router = APIRouter(prefix="/api/stream", tags=["stream"])


@router.get("/stats")
async def get_stream_stats(
    request: Request,
    broadcaster: StreamBroadcaster = Depends(get_broadcaster),
):
    """Get push-stream statistics"""
    handlers = getattr(request.app.state, "stream_handlers", None)
    return {
        "broadcaster": broadcaster.get_stats(),
        "ingestion": request.app.state.ingestion_service.get_stats(),
        "clients": {
            "count": handlers.get_client_count() if handlers else 0,
            "subscriptions": handlers.get_subscription_count() if handlers else 0,
        },
        "topics": list(broadcaster.topics),
        "timestamp": time.time(),
    }
