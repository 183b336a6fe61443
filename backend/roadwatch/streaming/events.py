"""
Stream Event Type Definitions

Topic names, Socket.IO event names and the data structures exchanged
with push-stream clients.

Events are categorized as:
- Server → Client: stream frames and subscription responses
- Client → Server: subscribe / unsubscribe commands
"""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field


# ============================================
# Topics
# ============================================

class Topic(str, Enum):
    """Push-stream topics"""

    TRAFFIC = "traffic"
    VEHICLE = "vehicle"
    INTERSECTION = "intersection"
    SENSOR = "sensor"
    ALERT = "alert"
    COORDINATION = "coordination"
    RISK = "risk"


DEFAULT_TOPICS = tuple(t.value for t in Topic)


# ============================================
# Event Name Constants
# ============================================

class ServerEvent(str, Enum):
    """Events emitted from server to client (frames use the topic name)"""

    CONNECTION_SUCCESS = "connection:success"
    STREAM_SUBSCRIBED = "stream:subscribed"
    STREAM_UNSUBSCRIBED = "stream:unsubscribed"
    STREAM_ERROR = "stream:error"


class ClientEvent(str, Enum):
    """Events received from client"""

    CONNECT = "connect"
    DISCONNECT = "disconnect"
    STREAM_SUBSCRIBE = "stream:subscribe"
    STREAM_UNSUBSCRIBE = "stream:unsubscribe"


# ============================================
# Server → Client Data
# ============================================

class StreamFrame(BaseModel):
    """One push-stream frame"""
    topic: str
    type: str
    intersection_id: Optional[str] = None
    timestamp: datetime
    data: Dict[str, Any] = Field(default_factory=dict)


class ConnectionAck(BaseModel):
    """First frame written to every new subscription"""
    topic: str
    type: str = "connection"
    subscription_id: str
    intersection_id: Optional[str] = None
    message: str
    timestamp: datetime


# ============================================
# Client → Server Data
# ============================================

class StreamSubscribeRequest(BaseModel):
    """Request for stream:subscribe event"""
    model_config = ConfigDict(populate_by_name=True)

    topic: str
    intersection_id: Optional[str] = Field(default=None, alias="intersectionId")


class StreamUnsubscribeRequest(BaseModel):
    """Request for stream:unsubscribe event"""
    model_config = ConfigDict(populate_by_name=True)

    subscription_id: str = Field(alias="subscriptionId")
