"""
Streaming Package

Topic and intersection-scoped push events for dashboard clients.

Components:
- events: Topic and event names, frame models
- broadcaster: Subscription registries and fan-out
- handlers: Socket.IO transport

Usage:
    from roadwatch.streaming import StreamBroadcaster, StreamSocketHandlers

    broadcaster = StreamBroadcaster()
    handlers = StreamSocketHandlers(sio, broadcaster)
"""

from .events import DEFAULT_TOPICS, ClientEvent, ServerEvent, Topic
from .broadcaster import QueueHandle, StreamBroadcaster, StreamClient
from .handlers import StreamSocketHandlers

__all__ = [
    "DEFAULT_TOPICS",
    "ClientEvent",
    "ServerEvent",
    "Topic",
    "QueueHandle",
    "StreamBroadcaster",
    "StreamClient",
    "StreamSocketHandlers",
]
