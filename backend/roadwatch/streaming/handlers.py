"""
Stream Socket.IO Handlers

Client→server stream commands and the per-subscription pump that
forwards broadcaster frames to the Socket.IO client.

All handlers are registered with the Socket.IO server in main.py.
"""

import asyncio
import logging
import time
from typing import Any, Dict, Optional

from pydantic import ValidationError

from roadwatch.exceptions import TransportWriteError, UnknownTopicError

from .broadcaster import DEFAULT_QUEUE_SIZE, QueueHandle, StreamBroadcaster
from .events import ClientEvent, ServerEvent, StreamSubscribeRequest, StreamUnsubscribeRequest

logger = logging.getLogger(__name__)


class StreamSocketHandlers:
    """
    Socket.IO adapter for the stream broadcaster

    Each subscription owns a QueueHandle drained by a background pump
    task. An emit failure or a disconnect closes the handle and removes
    the subscription.
    """

    def __init__(self, sio, broadcaster: StreamBroadcaster, queue_size: int = DEFAULT_QUEUE_SIZE):
        """
        Initialize handlers

        Args:
            sio: Socket.IO AsyncServer instance
            broadcaster: Broadcaster the subscriptions register with
            queue_size: Frames buffered per subscription
        """
        self.sio = sio
        self.broadcaster = broadcaster
        self.queue_size = queue_size

        # sid -> client info
        self._clients: Dict[str, Dict[str, Any]] = {}
        # subscription_id -> (sid, handle, pump task)
        self._subscriptions: Dict[str, Dict[str, Any]] = {}

        self._register_handlers()

    def _register_handlers(self):
        """Register all Socket.IO event handlers"""
        self.sio.on(ClientEvent.CONNECT.value, self.handle_connect)
        self.sio.on(ClientEvent.DISCONNECT.value, self.handle_disconnect)
        self.sio.on(ClientEvent.STREAM_SUBSCRIBE.value, self.handle_subscribe)
        self.sio.on(ClientEvent.STREAM_UNSUBSCRIBE.value, self.handle_unsubscribe)

    # ============================================
    # Connection Handlers
    # ============================================

    async def handle_connect(self, sid: str, environ: Dict, auth: Any = None):
        """
        Handle client connection

        Args:
            sid: Session ID
            environ: Connection environment
        """
        self._clients[sid] = {
            "sid": sid,
            "connected_at": time.time(),
            "remote_addr": environ.get("REMOTE_ADDR", "unknown"),
            "subscriptions": [],
        }
        logger.info("[WS] Client connected: %s from %s", sid, self._clients[sid]["remote_addr"])

        await self.sio.emit(ServerEvent.CONNECTION_SUCCESS.value, {
            "message": "Connected to roadwatch stream server",
            "topics": list(self.broadcaster.topics),
            "timestamp": time.time(),
        }, room=sid)

    async def handle_disconnect(self, sid: str, *args):
        """
        Handle client disconnection

        Args:
            sid: Session ID
        """
        client = self._clients.pop(sid, None)
        for subscription_id in list(client["subscriptions"] if client else []):
            self._close_subscription(subscription_id)

        if client:
            duration = time.time() - client["connected_at"]
            logger.info("[WS] Client disconnected: %s (duration: %.1fs)", sid, duration)

    # ============================================
    # Subscription Handlers
    # ============================================

    async def handle_subscribe(self, sid: str, data: Dict):
        """
        Handle stream subscription

        Args:
            sid: Session ID
            data: {topic, intersectionId?}
        """
        try:
            request = StreamSubscribeRequest.model_validate(data or {})
        except ValidationError as e:
            await self._emit_error(sid, "Invalid subscribe request", e.errors(include_url=False))
            return

        handle = QueueHandle(maxsize=self.queue_size)
        try:
            subscription_id = self.broadcaster.subscribe(request.topic, handle, request.intersection_id)
        except UnknownTopicError as e:
            await self._emit_error(sid, str(e))
            return
        except TransportWriteError as e:
            await self._emit_error(sid, f"Subscription failed: {e}")
            return

        if sid not in self._clients:
            logger.info("[WS] Client %s disconnected before subscription %s started", sid, subscription_id)
            self.broadcaster.unsubscribe(subscription_id)
            handle.close()
            return

        task = asyncio.create_task(self._pump(sid, subscription_id, request.topic, handle))
        self._subscriptions[subscription_id] = {"sid": sid, "handle": handle, "task": task}
        self._clients[sid]["subscriptions"].append(subscription_id)

        await self.sio.emit(ServerEvent.STREAM_SUBSCRIBED.value, {
            "status": "success",
            "subscriptionId": subscription_id,
            "topic": request.topic,
            "intersectionId": request.intersection_id,
            "timestamp": time.time(),
        }, room=sid)

    async def handle_unsubscribe(self, sid: str, data: Dict):
        """
        Handle stream unsubscribe

        Args:
            sid: Session ID
            data: {subscriptionId}
        """
        try:
            request = StreamUnsubscribeRequest.model_validate(data or {})
        except ValidationError as e:
            await self._emit_error(sid, "Invalid unsubscribe request", e.errors(include_url=False))
            return

        owned = self._subscriptions.get(request.subscription_id, {}).get("sid") == sid
        removed = self._close_subscription(request.subscription_id) if owned else False

        await self.sio.emit(ServerEvent.STREAM_UNSUBSCRIBED.value, {
            "status": "success" if removed else "not_found",
            "subscriptionId": request.subscription_id,
            "timestamp": time.time(),
        }, room=sid)

    # ============================================
    # Pump
    # ============================================

    async def _pump(self, sid: str, subscription_id: str, topic: str, handle: QueueHandle):
        """Forward frames from the handle to the client until it closes"""
        while True:
            frame = await handle.get()
            if frame is None:
                break
            try:
                await self.sio.emit(topic, frame, room=sid)
            except Exception as e:
                logger.warning("[WS] Emit to %s failed, closing subscription %s: %s", sid, subscription_id, e)
                break
        self._close_subscription(subscription_id, cancel=False)

    def _close_subscription(self, subscription_id: str, cancel: bool = True) -> bool:
        entry = self._subscriptions.pop(subscription_id, None)
        removed = self.broadcaster.unsubscribe(subscription_id)
        if entry is None:
            return removed

        entry["handle"].close()
        if cancel:
            entry["task"].cancel()
        client = self._clients.get(entry["sid"])
        if client and subscription_id in client["subscriptions"]:
            client["subscriptions"].remove(subscription_id)
        return True

    async def _emit_error(self, sid: str, message: str, errors: Optional[list] = None):
        logger.warning("[WS] Stream request from %s rejected: %s", sid, message)
        await self.sio.emit(ServerEvent.STREAM_ERROR.value, {
            "status": "error",
            "message": message,
            "errors": errors or [],
            "timestamp": time.time(),
        }, room=sid)

    # ============================================
    # Utility Methods
    # ============================================

    def get_client_count(self) -> int:
        """Get number of connected clients"""
        return len(self._clients)

    def get_subscription_count(self, sid: Optional[str] = None) -> int:
        if sid is None:
            return len(self._subscriptions)
        return sum(1 for entry in self._subscriptions.values() if entry["sid"] == sid)
