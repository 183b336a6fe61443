"""
Stream Broadcaster

Topic and intersection-scoped fan-out of push events to subscriber
transport handles.

Features:
- Topic registry plus a (topic, intersection) registry for scoped clients
- Payload serialized once per publish
- Per-handle failure isolation (a failing client is removed, the rest
  still receive the frame)
- Idempotent unsubscribe
- Delivery statistics
"""

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Protocol, Tuple

from pydantic import BaseModel

from roadwatch.exceptions import TransportWriteError, UnknownTopicError

from .events import DEFAULT_TOPICS, ConnectionAck, StreamFrame

logger = logging.getLogger(__name__)

DEFAULT_QUEUE_SIZE = 100


# ============================================
# Transport handles
# ============================================

class TransportHandle(Protocol):
    """Anything a frame can be written to"""

    def write(self, frame: str) -> None: ...

    def close(self) -> None: ...


class QueueHandle:
    """
    Bounded in-process handle

    write() never blocks: a full queue or a closed handle raises
    TransportWriteError. A consumer drains frames with get(), which
    returns None once the handle is closed.
    """

    def __init__(self, maxsize: int = DEFAULT_QUEUE_SIZE):
        self.queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize)
        self.closed = False

    def write(self, frame: str) -> None:
        if self.closed:
            raise TransportWriteError("Handle is closed")
        try:
            self.queue.put_nowait(frame)
        except asyncio.QueueFull:
            raise TransportWriteError(f"Queue full ({self.queue.maxsize} frames)")

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        # Pending frames are dropped so the end marker always fits
        while not self.queue.empty():
            self.queue.get_nowait()
        self.queue.put_nowait(None)

    async def get(self) -> Optional[str]:
        if self.closed and self.queue.empty():
            return None
        return await self.queue.get()


@dataclass
class StreamClient:
    """One registered subscription"""
    subscription_id: str
    topic: str
    handle: TransportHandle
    intersection_scope: Optional[str] = None
    connected_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class StreamBroadcaster:
    """
    Topic-based push-event broadcaster

    Every operation runs to completion on the event loop thread, so the
    registries are mutated without locks. publish() performs one
    non-blocking write per handle and never waits for a consumer.

    Usage:
        broadcaster = StreamBroadcaster()
        sub_id = broadcaster.subscribe("coordination", QueueHandle(), "INT-001")
        broadcaster.publish("coordination", {"intersection_id": "INT-001", ...})
    """

    def __init__(self, topics: Iterable[str] = DEFAULT_TOPICS):
        """
        Initialize the broadcaster

        Args:
            topics: Topic names accepted by subscribe and publish
        """
        self.topics: Tuple[str, ...] = tuple(topics)

        self._clients: Dict[str, StreamClient] = {}
        self._by_topic: Dict[str, Dict[str, StreamClient]] = {t: {} for t in self.topics}
        self._by_scope: Dict[Tuple[str, str], Dict[str, StreamClient]] = {}

        # Statistics
        self._publish_count = 0
        self._delivery_count = 0
        self._failure_count = 0

    # ============================================
    # Subscription Management
    # ============================================

    def subscribe(self, topic: str, handle: TransportHandle, intersection_scope: Optional[str] = None) -> str:
        """
        Register a handle for a topic

        Args:
            topic: Topic name
            handle: Transport handle (write/close)
            intersection_scope: Only receive events for this intersection

        Returns:
            Subscription id

        Raises:
            UnknownTopicError: topic is not configured
            TransportWriteError: the connection acknowledgement could not be
                written; the client has already been removed
        """
        topic = self._check_topic(topic)

        subscription_id = uuid.uuid4().hex
        client = StreamClient(
            subscription_id=subscription_id,
            topic=topic,
            handle=handle,
            intersection_scope=intersection_scope,
        )

        self._clients[subscription_id] = client
        self._by_topic[topic][subscription_id] = client
        if intersection_scope is not None:
            self._by_scope.setdefault((topic, intersection_scope), {})[subscription_id] = client

        ack = ConnectionAck(
            topic=topic,
            subscription_id=subscription_id,
            intersection_id=intersection_scope,
            message=f"Connected to {topic} stream",
            timestamp=client.connected_at,
        )
        try:
            handle.write(ack.model_dump_json())
        except Exception as e:
            logger.warning("[STREAM] Acknowledgement failed for %s: %s", subscription_id, e)
            self._failure_count += 1
            self._drop(client)
            if isinstance(e, TransportWriteError):
                raise
            raise TransportWriteError(f"Acknowledgement failed: {e}") from e

        logger.info(
            "[STREAM] Client subscribed to %s%s. Total clients: %d",
            topic,
            f" ({intersection_scope})" if intersection_scope else "",
            len(self._by_topic[topic]),
        )
        return subscription_id

    def unsubscribe(self, subscription_id: str) -> bool:
        """
        Remove a subscription; safe to call more than once

        Returns:
            True if the subscription was registered
        """
        client = self._clients.get(subscription_id)
        if client is None:
            return False
        self._remove(client)
        logger.info("[STREAM] Client unsubscribed from %s", client.topic)
        return True

    def _drop(self, client: StreamClient):
        """Remove a failed client and close its handle"""
        self._remove(client)
        try:
            client.handle.close()
        except Exception as e:
            logger.debug("[STREAM] Closing handle %s failed: %s", client.subscription_id, e)

    def _remove(self, client: StreamClient):
        self._clients.pop(client.subscription_id, None)
        self._by_topic.get(client.topic, {}).pop(client.subscription_id, None)
        if client.intersection_scope is not None:
            key = (client.topic, client.intersection_scope)
            scoped = self._by_scope.get(key)
            if scoped is not None:
                scoped.pop(client.subscription_id, None)
                if not scoped:
                    del self._by_scope[key]

    # ============================================
    # Publishing
    # ============================================

    def publish(self, topic: str, payload: Any, event_type: str = "update") -> int:
        """
        Deliver one event to the topic's subscribers

        Unscoped subscribers receive every event of the topic. Scoped
        subscribers receive it only when the payload carries their
        intersection_id. Each client receives a publish at most once.

        Args:
            topic: Topic name
            payload: Event data (dict or pydantic model)
            event_type: Frame type label

        Returns:
            Number of successful deliveries

        Raises:
            UnknownTopicError: topic is not configured
        """
        topic = self._check_topic(topic)
        data = payload.model_dump(mode="json") if isinstance(payload, BaseModel) else dict(payload)
        intersection_id = data.get("intersection_id")
        if intersection_id is not None:
            intersection_id = str(intersection_id)

        frame = StreamFrame(
            topic=topic,
            type=event_type,
            intersection_id=intersection_id,
            timestamp=datetime.now(timezone.utc),
            data=data,
        ).model_dump_json()
        self._publish_count += 1

        targets: List[StreamClient] = [
            c for c in self._by_topic[topic].values() if c.intersection_scope is None
        ]
        if intersection_id is not None:
            targets.extend(self._by_scope.get((topic, intersection_id), {}).values())

        delivered = 0
        seen = set()
        for client in targets:
            if client.subscription_id in seen:
                continue
            seen.add(client.subscription_id)
            try:
                client.handle.write(frame)
                delivered += 1
            except Exception as e:
                self._failure_count += 1
                logger.warning(
                    "[STREAM] Write failed for %s on %s, removing client: %s",
                    client.subscription_id, topic, e,
                )
                self._drop(client)

        self._delivery_count += delivered
        return delivered

    # ============================================
    # Queries & Statistics
    # ============================================

    def subscriber_count(self, topic: Optional[str] = None, intersection_id: Optional[str] = None) -> int:
        """Number of subscriptions, optionally narrowed to a topic and/or scope"""
        if topic is None:
            clients = self._clients.values()
        else:
            clients = self._by_topic.get(topic, {}).values()
        if intersection_id is not None:
            return sum(1 for c in clients if c.intersection_scope == intersection_id)
        return len(clients)

    def get_client(self, subscription_id: str) -> Optional[StreamClient]:
        return self._clients.get(subscription_id)

    def get_stats(self) -> Dict[str, Any]:
        """Get broadcaster statistics"""
        return {
            "totalSubscribers": len(self._clients),
            "subscribersByTopic": {t: len(c) for t, c in self._by_topic.items()},
            "scopedSubscriptions": sum(len(c) for c in self._by_scope.values()),
            "totalPublished": self._publish_count,
            "totalDelivered": self._delivery_count,
            "failureCount": self._failure_count,
        }

    def _check_topic(self, topic: Any) -> str:
        name = topic.value if isinstance(topic, Enum) else topic
        if name not in self._by_topic:
            raise UnknownTopicError(f"Stream type {name} not supported")
        return name

