"""
Stream Broadcaster Tests

This module tests the push-stream broadcaster including:
- Event definitions
- Subscribe acknowledgement and unsubscribe
- Topic and intersection-scoped delivery
- Per-subscriber failure isolation
- QueueHandle transport
"""

import json
from datetime import datetime, timezone

import pytest
from unittest.mock import MagicMock

from roadwatch.exceptions import TransportWriteError, UnknownTopicError
from roadwatch.models import CoordinationNotFound
from roadwatch.streaming import (
    DEFAULT_TOPICS,
    ClientEvent,
    QueueHandle,
    ServerEvent,
    StreamBroadcaster,
    Topic,
)


class RecordingHandle:
    """Transport handle that keeps every frame it receives"""

    def __init__(self):
        self.frames = []
        self.closed = False

    def write(self, frame):
        self.frames.append(json.loads(frame))

    def close(self):
        self.closed = True

    @property
    def events(self):
        return [f for f in self.frames if f["type"] != "connection"]


def failing_handle(after_ack=True):
    """MagicMock handle whose writes fail (optionally after the ack)"""
    handle = MagicMock()
    error = TransportWriteError("broken pipe")
    handle.write.side_effect = [None, error] if after_ack else error
    return handle


# ============================================
# Event Tests
# ============================================

class TestStreamEvents:
    """Test event enum values"""

    def test_topics(self):
        assert DEFAULT_TOPICS == (
            "traffic", "vehicle", "intersection", "sensor", "alert", "coordination", "risk",
        )

    def test_server_events(self):
        assert ServerEvent.CONNECTION_SUCCESS.value == "connection:success"
        assert ServerEvent.STREAM_SUBSCRIBED.value == "stream:subscribed"
        assert ServerEvent.STREAM_ERROR.value == "stream:error"

    def test_client_events(self):
        assert ClientEvent.STREAM_SUBSCRIBE.value == "stream:subscribe"
        assert ClientEvent.STREAM_UNSUBSCRIBE.value == "stream:unsubscribe"


# ============================================
# Subscription Tests
# ============================================

class TestSubscription:
    """Test subscribe / unsubscribe"""

    def setup_method(self):
        self.broadcaster = StreamBroadcaster()

    def test_subscribe_writes_acknowledgement(self):
        handle = RecordingHandle()
        sub_id = self.broadcaster.subscribe("coordination", handle, "INT-001")

        assert len(handle.frames) == 1
        ack = handle.frames[0]
        assert ack["type"] == "connection"
        assert ack["topic"] == "coordination"
        assert ack["subscription_id"] == sub_id
        assert ack["intersection_id"] == "INT-001"

        client = self.broadcaster.get_client(sub_id)
        assert client.topic == "coordination"
        assert client.intersection_scope == "INT-001"

    def test_subscribe_accepts_topic_enum(self):
        sub_id = self.broadcaster.subscribe(Topic.RISK, RecordingHandle())
        assert self.broadcaster.get_client(sub_id).topic == "risk"

    def test_unknown_topic(self):
        with pytest.raises(UnknownTopicError, match="weather"):
            self.broadcaster.subscribe("weather", RecordingHandle())
        with pytest.raises(UnknownTopicError):
            self.broadcaster.publish("weather", {})

    def test_failed_acknowledgement_removes_client(self):
        handle = failing_handle(after_ack=False)

        with pytest.raises(TransportWriteError):
            self.broadcaster.subscribe("traffic", handle)

        assert self.broadcaster.subscriber_count() == 0
        handle.close.assert_called_once()
        assert self.broadcaster.get_stats()["failureCount"] == 1

    def test_acknowledgement_error_of_any_type_is_reported_as_write_error(self):
        handle = MagicMock()
        handle.write.side_effect = RuntimeError("socket reset")
        handle.close.side_effect = ValueError("already closed")

        with pytest.raises(TransportWriteError, match="socket reset"):
            self.broadcaster.subscribe("traffic", handle)

        assert self.broadcaster.subscriber_count() == 0

    def test_unsubscribe_is_idempotent(self):
        sub_id = self.broadcaster.subscribe("alert", RecordingHandle(), "INT-001")

        assert self.broadcaster.unsubscribe(sub_id) is True
        assert self.broadcaster.unsubscribe(sub_id) is False
        assert self.broadcaster.subscriber_count() == 0
        assert self.broadcaster.get_stats()["scopedSubscriptions"] == 0

    def test_unsubscribed_client_receives_nothing(self):
        handle = RecordingHandle()
        sub_id = self.broadcaster.subscribe("traffic", handle)
        self.broadcaster.unsubscribe(sub_id)

        assert self.broadcaster.publish("traffic", {"intersection_id": "INT-001"}) == 0
        assert handle.events == []

    def test_subscriber_count(self):
        self.broadcaster.subscribe("traffic", RecordingHandle())
        self.broadcaster.subscribe("traffic", RecordingHandle(), "INT-001")
        self.broadcaster.subscribe("alert", RecordingHandle(), "INT-001")

        assert self.broadcaster.subscriber_count() == 3
        assert self.broadcaster.subscriber_count("traffic") == 2
        assert self.broadcaster.subscriber_count(intersection_id="INT-001") == 2
        assert self.broadcaster.subscriber_count("vehicle") == 0


# ============================================
# Publish Tests
# ============================================

class TestPublish:
    """Test fan-out and scoping"""

    def setup_method(self):
        self.broadcaster = StreamBroadcaster()

    def test_frame_shape(self):
        handle = RecordingHandle()
        self.broadcaster.subscribe("traffic", handle)
        self.broadcaster.publish("traffic", {"intersection_id": "INT-001", "speed": 42}, "traffic_update")

        frame = handle.events[0]
        assert frame["topic"] == "traffic"
        assert frame["type"] == "traffic_update"
        assert frame["intersection_id"] == "INT-001"
        assert frame["data"] == {"intersection_id": "INT-001", "speed": 42}
        assert "timestamp" in frame

    def test_datetime_and_enum_values(self):
        handle = RecordingHandle()
        self.broadcaster.subscribe("alert", handle)
        self.broadcaster.publish("alert", {
            "intersection_id": 7,
            "received_at": datetime(2026, 3, 1, tzinfo=timezone.utc),
            "topic": Topic.ALERT,
        })

        frame = handle.events[0]
        assert frame["intersection_id"] == "7"
        assert frame["data"]["received_at"].startswith("2026-03-01T00:00:00")
        assert frame["data"]["topic"] == "alert"

    def test_pydantic_payload(self):
        handle = RecordingHandle()
        self.broadcaster.subscribe("coordination", handle)
        payload = CoordinationNotFound(intersection_id="INT-001", message="none")
        self.broadcaster.publish("coordination", payload)

        assert handle.events[0]["data"]["status"] == "not_found"
        assert handle.events[0]["intersection_id"] == "INT-001"

    def test_topics_are_isolated(self):
        traffic, alert = RecordingHandle(), RecordingHandle()
        self.broadcaster.subscribe("traffic", traffic)
        self.broadcaster.subscribe("alert", alert)

        self.broadcaster.publish("traffic", {"intersection_id": "INT-001"})

        assert len(traffic.events) == 1
        assert alert.events == []

    def test_scoped_delivery(self):
        unscoped, int1, int2 = RecordingHandle(), RecordingHandle(), RecordingHandle()
        self.broadcaster.subscribe("coordination", unscoped)
        self.broadcaster.subscribe("coordination", int1, "INT-001")
        self.broadcaster.subscribe("coordination", int2, "INT-002")

        delivered = self.broadcaster.publish("coordination", {"intersection_id": "INT-001"})

        assert delivered == 2
        assert len(unscoped.events) == 1
        assert len(int1.events) == 1
        assert int2.events == []

    def test_scoped_client_skips_events_without_intersection(self):
        scoped = RecordingHandle()
        self.broadcaster.subscribe("sensor", scoped, "INT-001")

        assert self.broadcaster.publish("sensor", {"sensor_id": "S-1"}) == 0
        assert scoped.events == []

    def test_failing_subscriber_is_isolated(self):
        """A failing handle is removed; the others still get the frame"""
        first, last = RecordingHandle(), RecordingHandle()
        broken = failing_handle()

        self.broadcaster.subscribe("traffic", first)
        broken_id = self.broadcaster.subscribe("traffic", broken)
        self.broadcaster.subscribe("traffic", last)

        delivered = self.broadcaster.publish("traffic", {"intersection_id": "INT-001"})

        assert delivered == 2
        assert len(first.events) == 1
        assert len(last.events) == 1
        assert self.broadcaster.get_client(broken_id) is None
        broken.close.assert_called_once()

        assert self.broadcaster.publish("traffic", {"intersection_id": "INT-001"}) == 2
        assert broken.write.call_count == 2

    def test_unexpected_handle_error_is_isolated(self):
        """Any exception from one handle stays with that handle"""
        first, last = RecordingHandle(), RecordingHandle()
        broken = MagicMock()
        broken.write.side_effect = [None, RuntimeError("socket reset")]
        broken.close.side_effect = RuntimeError("socket reset")

        self.broadcaster.subscribe("traffic", first)
        broken_id = self.broadcaster.subscribe("traffic", broken)
        self.broadcaster.subscribe("traffic", last)

        delivered = self.broadcaster.publish("traffic", {"intersection_id": "INT-001"})

        assert delivered == 2
        assert len(first.events) == 1
        assert len(last.events) == 1
        assert self.broadcaster.get_client(broken_id) is None
        assert self.broadcaster.subscriber_count("traffic") == 2
        assert self.broadcaster.get_stats()["failureCount"] == 1

    def test_stats(self):
        self.broadcaster.subscribe("traffic", RecordingHandle())
        self.broadcaster.subscribe("traffic", failing_handle())
        self.broadcaster.publish("traffic", {})

        stats = self.broadcaster.get_stats()
        assert stats["totalSubscribers"] == 1
        assert stats["subscribersByTopic"]["traffic"] == 1
        assert stats["totalPublished"] == 1
        assert stats["totalDelivered"] == 1
        assert stats["failureCount"] == 1


# ============================================
# Transport Tests
# ============================================

class TestQueueHandle:
    """Test the bounded queue transport"""

    def test_write_and_get(self):
        handle = QueueHandle(maxsize=2)
        handle.write("a")
        assert handle.queue.get_nowait() == "a"

    def test_full_queue_raises(self):
        handle = QueueHandle(maxsize=1)
        handle.write("a")
        with pytest.raises(TransportWriteError, match="full"):
            handle.write("b")

    def test_closed_handle_raises(self):
        handle = QueueHandle()
        handle.close()
        with pytest.raises(TransportWriteError):
            handle.write("a")

    def test_close_leaves_end_marker(self):
        handle = QueueHandle(maxsize=1)
        handle.write("a")
        handle.close()
        handle.close()

        assert handle.queue.get_nowait() is None
        assert handle.queue.empty()

    @pytest.mark.asyncio
    async def test_get_after_close(self):
        handle = QueueHandle()
        handle.write("a")
        handle.close()

        assert await handle.get() is None
        assert await handle.get() is None

    def test_full_queue_drops_subscriber(self):
        broadcaster = StreamBroadcaster()
        handle = QueueHandle(maxsize=2)
        sub_id = broadcaster.subscribe("risk", handle)

        assert broadcaster.publish("risk", {"score": 1}) == 1
        assert broadcaster.publish("risk", {"score": 2}) == 0
        assert broadcaster.get_client(sub_id) is None
        assert handle.closed is True

