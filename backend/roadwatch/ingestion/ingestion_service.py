"""
Ingestion Service

Entry point for inbound sensor events. Each event is validated once at
the boundary, then drives the risk scoring engine, the coordination
aggregator and the stream broadcaster.

Flow per traffic event:
    validate → assess risk → update coordination view → publish

Invalid events are rejected individually; later events are unaffected.
"""

import logging
from collections import defaultdict, deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Deque, Dict, List, Optional, Type, TypeVar

from pydantic import BaseModel, ValidationError

from roadwatch.coordination import CoordinationAggregator
from roadwatch.exceptions import ReadingValidationError
from roadwatch.models import (
    CoordinationSnapshot,
    IntersectionReading,
    RiskAssessment,
    SensorReading,
    TrafficAlert,
)
from roadwatch.risk import RiskScoringEngine
from roadwatch.streaming import StreamBroadcaster, Topic

logger = logging.getLogger(__name__)

M = TypeVar("M", bound=BaseModel)

DEFAULT_ALERT_BUFFER_SIZE = 200


@dataclass
class IngestResult:
    """Outcome of one ingested event"""
    kind: str
    accepted: bool
    coordinated: bool = False
    deliveries: int = 0
    risk: Optional[RiskAssessment] = None
    snapshot: Optional[CoordinationSnapshot] = None
    errors: List[Any] = field(default_factory=list)

    def to_response(self) -> Dict[str, Any]:
        response: Dict[str, Any] = {
            "success": self.accepted,
            "kind": self.kind,
            "coordinated": self.coordinated,
            "deliveries": self.deliveries,
        }
        if self.risk is not None:
            response["risk"] = self.risk.model_dump(mode="json")
        if self.errors:
            response["errors"] = self.errors
        return response


class IngestionService:
    """
    Validate inbound events and fan them out

    Keeps a bounded buffer of recent alerts per intersection so traffic
    readings can be scored against them.
    """

    def __init__(
        self,
        scoring_engine: RiskScoringEngine,
        aggregator: CoordinationAggregator,
        broadcaster: StreamBroadcaster,
        alert_buffer_size: int = DEFAULT_ALERT_BUFFER_SIZE,
    ):
        """
        Initialize the service

        Args:
            scoring_engine: Risk scoring engine
            aggregator: Incremental coordination aggregator
            broadcaster: Push-event broadcaster
            alert_buffer_size: Recent alerts kept per intersection
        """
        self.scoring_engine = scoring_engine
        self.aggregator = aggregator
        self.broadcaster = broadcaster

        self._alerts: Dict[Optional[str], Deque[TrafficAlert]] = defaultdict(
            lambda: deque(maxlen=alert_buffer_size)
        )

        # Statistics
        self._accepted: Dict[str, int] = defaultdict(int)
        self._rejected: Dict[str, int] = defaultdict(int)

    # ============================================
    # Reading feeds
    # ============================================

    def ingest_traffic(self, payload: Any) -> IngestResult:
        """Per-direction traffic reading"""
        try:
            reading = self._validate(SensorReading, "traffic", payload)
        except ReadingValidationError as e:
            return self._reject(e)

        intersection = None
        if reading.intersection_id:
            intersection = self.aggregator.latest_intersection_reading(reading.intersection_id)
        risk = self.scoring_engine.assess(
            reading,
            intersection=intersection,
            alerts=list(self._alerts.get(reading.intersection_id, ())),
        )

        coordinated = reading.is_coordinated
        if coordinated:
            self.aggregator.update(reading)

        deliveries = self.broadcaster.publish(Topic.TRAFFIC, {
            **reading.model_dump(mode="json"),
            "coordinated": coordinated,
            "received_at": datetime.now(timezone.utc),
        })
        deliveries += self.broadcaster.publish(Topic.RISK, {
            "sensor_id": reading.sensor_id,
            "intersection_id": reading.intersection_id,
            "sensor_direction": reading.sensor_direction,
            **risk.model_dump(mode="json"),
        }, event_type="risk_assessment")

        snapshot = None
        if coordinated and reading.sensor_direction is not None:
            snapshot, published = self._publish_snapshot(reading.intersection_id)
            deliveries += published

        if risk.level in ("high", "critical"):
            logger.info("[INGEST] %s risk %.2f (%s)", reading.sensor_id, risk.score, risk.level)

        self._accepted["traffic"] += 1
        return IngestResult(
            kind="traffic",
            accepted=True,
            coordinated=coordinated,
            deliveries=deliveries,
            risk=risk,
            snapshot=snapshot,
        )

    def ingest_intersection(self, payload: Any) -> IngestResult:
        """Intersection-wide reading"""
        try:
            reading = self._validate(IntersectionReading, "intersection", payload)
        except ReadingValidationError as e:
            return self._reject(e)

        coordinated = reading.is_coordinated
        self.aggregator.update_intersection(reading)

        deliveries = self.broadcaster.publish(Topic.INTERSECTION, {
            **reading.model_dump(mode="json"),
            "coordinated": coordinated,
            "received_at": datetime.now(timezone.utc),
        })

        snapshot = None
        if coordinated:
            snapshot, published = self._publish_snapshot(reading.intersection_id)
            deliveries += published

        self._accepted["intersection"] += 1
        return IngestResult(
            kind="intersection",
            accepted=True,
            coordinated=coordinated,
            deliveries=deliveries,
            snapshot=snapshot,
        )

    def ingest_alert(self, payload: Any) -> IngestResult:
        """Traffic alert; kept for risk scoring and published"""
        try:
            alert = self._validate(TrafficAlert, "alert", payload)
        except ReadingValidationError as e:
            return self._reject(e)

        self._alerts[alert.intersection_id].append(alert)
        deliveries = self.broadcaster.publish(Topic.ALERT, alert, event_type="alert")

        if alert.severity in ("high", "critical"):
            logger.warning(
                "[INGEST] %s alert at %s: %s",
                alert.severity, alert.intersection_id or alert.sensor_id, alert.message or alert.type,
            )

        self._accepted["alert"] += 1
        return IngestResult(kind="alert", accepted=True, deliveries=deliveries)

    def ingest_vehicle(self, payload: Any) -> IngestResult:
        """Vehicle detection; forwarded as-is"""
        return self._forward("vehicle", Topic.VEHICLE, payload)

    def ingest_sensor_health(self, payload: Any) -> IngestResult:
        """Sensor health report; forwarded as-is"""
        return self._forward("sensor", Topic.SENSOR, payload)

    # ============================================
    # Queries & Statistics
    # ============================================

    def recent_alerts(self, intersection_id: Optional[str]) -> List[TrafficAlert]:
        return list(self._alerts.get(intersection_id, ()))

    def get_stats(self) -> Dict[str, Any]:
        """Get ingestion statistics"""
        return {
            "accepted": dict(self._accepted),
            "rejected": dict(self._rejected),
            "trackedIntersections": len(self.aggregator.intersections()),
        }

    # ============================================
    # Internal Methods
    # ============================================

    @staticmethod
    def _validate(model: Type[M], kind: str, payload: Any) -> M:
        if not isinstance(payload, dict):
            raise ReadingValidationError(kind, [{"msg": "Event must be a JSON object"}])
        try:
            return model.model_validate(payload)
        except ValidationError as e:
            raise ReadingValidationError(kind, e.errors(include_url=False)) from e

    def _reject(self, error: ReadingValidationError) -> IngestResult:
        self._rejected[error.kind] += 1
        logger.warning("[INGEST] Rejected %s", error)
        return IngestResult(kind=error.kind, accepted=False, errors=_jsonable_errors(error.errors))

    def _forward(self, kind: str, topic: Topic, payload: Any) -> IngestResult:
        if not isinstance(payload, dict):
            return self._reject(ReadingValidationError(kind, [{"msg": "Event must be a JSON object"}]))
        deliveries = self.broadcaster.publish(topic, payload)
        self._accepted[kind] += 1
        return IngestResult(kind=kind, accepted=True, deliveries=deliveries)

    def _publish_snapshot(self, intersection_id: str):
        snapshot = self.aggregator.current(intersection_id)
        if not isinstance(snapshot, CoordinationSnapshot):
            return None, 0
        deliveries = self.broadcaster.publish(
            Topic.COORDINATION, snapshot, event_type="coordination_update"
        )
        return snapshot, deliveries


def _jsonable_errors(errors: List[Any]) -> List[Any]:
    """Drop exception objects pydantic puts in the error context"""
    cleaned = []
    for error in errors:
        if isinstance(error, dict) and "ctx" in error:
            error = {**error, "ctx": {k: str(v) for k, v in error["ctx"].items()}}
        cleaned.append(error)
    return cleaned
