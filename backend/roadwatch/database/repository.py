"""
Reading Repository

Read access to the external reading store, expressed as the three
queries the services need: find, aggregate and distinct.

Implementations:
- InMemoryReadingRepository: process-local lists (tests, local runs)
- SqlReadingRepository: read-only SQLAlchemy adapter over the store tables
"""

import logging
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Callable, Dict, Iterable, List, Optional, Type, TypeVar

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from sqlalchemy import select
from sqlalchemy.orm import Session

from roadwatch.models import IntersectionReading, SensorReading, TrafficAlert
from roadwatch.models.readings import to_utc

from .database import SessionLocal
from .models import IntersectionReadingRecord, SensorReadingRecord, TrafficAlertRecord

logger = logging.getLogger(__name__)

GROUP_KEYS = ("intersection_id", "sensor_direction", "sensor_id")

T = TypeVar("T", bound=BaseModel)


class ReadingFilter(BaseModel):
    """Selection criteria shared by every find query"""
    model_config = ConfigDict(frozen=True)

    intersection_id: Optional[str] = None
    sensor_direction: Optional[str] = None
    start: Optional[datetime] = None
    end: Optional[datetime] = None
    limit: Optional[int] = Field(default=None, gt=0)

    @field_validator("start", "end")
    @classmethod
    def _utc(cls, v: Optional[datetime]) -> Optional[datetime]:
        return to_utc(v) if v is not None else None

    def matches(self, reading: Any) -> bool:
        if self.intersection_id is not None and reading.intersection_id != self.intersection_id:
            return False
        if self.sensor_direction is not None and getattr(reading, "sensor_direction", None) != self.sensor_direction:
            return False
        if self.start is not None and reading.timestamp < self.start:
            return False
        if self.end is not None and reading.timestamp > self.end:
            return False
        return True


class GroupSummary(BaseModel):
    """Aggregate of the sensor readings sharing one group key"""
    model_config = ConfigDict(frozen=True)

    key: Optional[str] = None
    count: int = 0
    coordinated_count: int = 0
    avg_flow_rate: Optional[float] = None
    avg_density: Optional[float] = None
    avg_speed: Optional[float] = None
    directions: List[str] = Field(default_factory=list)
    sensor_ids: List[str] = Field(default_factory=list)
    weather_reports: int = 0
    latest_timestamp: Optional[datetime] = None


def _mean(values: List[float]) -> Optional[float]:
    return round(sum(values) / len(values), 2) if values else None


def _has_coordination_fields(reading: SensorReading) -> bool:
    return (
        reading.coordinated_weather is not None
        or reading.vehicle_flow_rate is not None
        or reading.sensor_direction is not None
    )


def summarize(readings: Iterable[SensorReading], group_key: str) -> List[GroupSummary]:
    """Group sensor readings by ``group_key`` and summarize each group"""
    if group_key not in GROUP_KEYS:
        raise ValueError(f"Unsupported group key: {group_key} (expected one of {GROUP_KEYS})")

    groups: Dict[Optional[str], List[SensorReading]] = {}
    for reading in readings:
        groups.setdefault(getattr(reading, group_key), []).append(reading)

    summaries = []
    for key in sorted(groups, key=lambda k: (k is None, k or "")):
        members = groups[key]
        summaries.append(GroupSummary(
            key=key,
            count=len(members),
            coordinated_count=sum(1 for r in members if _has_coordination_fields(r)),
            avg_flow_rate=_mean([r.vehicle_flow_rate for r in members if r.vehicle_flow_rate is not None]),
            avg_density=_mean([r.density for r in members if r.density is not None]),
            avg_speed=_mean([r.speed for r in members if r.speed is not None]),
            directions=sorted({r.sensor_direction for r in members if r.sensor_direction}),
            sensor_ids=sorted({r.sensor_id for r in members}),
            weather_reports=sum(1 for r in members if r.coordinated_weather is not None),
            latest_timestamp=max(r.timestamp for r in members),
        ))
    return summaries


def _select(items: Iterable[T], reading_filter: ReadingFilter) -> List[T]:
    """Apply a filter in memory; newest first"""
    selected = [item for item in items if reading_filter.matches(item)]
    selected.sort(key=lambda item: (item.timestamp, getattr(item, "sensor_id", None) or ""), reverse=True)
    if reading_filter.limit is not None:
        selected = selected[:reading_filter.limit]
    return selected


class ReadingRepository(ABC):
    """Read interface of the reading store"""

    @abstractmethod
    def find(self, reading_filter: Optional[ReadingFilter] = None) -> List[SensorReading]:
        """Per-direction readings matching the filter, newest first"""

    @abstractmethod
    def find_intersection_readings(self, reading_filter: Optional[ReadingFilter] = None) -> List[IntersectionReading]:
        """Intersection-wide readings matching the filter, newest first"""

    @abstractmethod
    def find_alerts(self, reading_filter: Optional[ReadingFilter] = None) -> List[TrafficAlert]:
        """Alerts matching the filter, newest first"""

    @abstractmethod
    def distinct_intersections(self) -> List[str]:
        """Every intersection id seen in the store, sorted"""

    def aggregate(self, group_key: str, reading_filter: Optional[ReadingFilter] = None) -> List[GroupSummary]:
        """Group the matching sensor readings by ``group_key``"""
        return summarize(self.find(reading_filter), group_key)


# ============================================
# In-memory implementation
# ============================================

class InMemoryReadingRepository(ReadingRepository):
    """Process-local repository"""

    def __init__(self):
        self.readings: List[SensorReading] = []
        self.intersection_readings: List[IntersectionReading] = []
        self.alerts: List[TrafficAlert] = []

    def add(self, item: Any):
        """Store a reading or alert by type"""
        if isinstance(item, SensorReading):
            self.readings.append(item)
        elif isinstance(item, IntersectionReading):
            self.intersection_readings.append(item)
        elif isinstance(item, TrafficAlert):
            self.alerts.append(item)
        else:
            raise TypeError(f"Cannot store {type(item).__name__}")

    def add_all(self, items: Iterable[Any]):
        for item in items:
            self.add(item)

    def find(self, reading_filter: Optional[ReadingFilter] = None) -> List[SensorReading]:
        return _select(self.readings, reading_filter or ReadingFilter())

    def find_intersection_readings(self, reading_filter: Optional[ReadingFilter] = None) -> List[IntersectionReading]:
        return _select(self.intersection_readings, reading_filter or ReadingFilter())

    def find_alerts(self, reading_filter: Optional[ReadingFilter] = None) -> List[TrafficAlert]:
        return _select(self.alerts, reading_filter or ReadingFilter())

    def distinct_intersections(self) -> List[str]:
        ids = {r.intersection_id for r in self.readings}
        ids.update(r.intersection_id for r in self.intersection_readings)
        return sorted(i for i in ids if i)


# ============================================
# SQLAlchemy implementation
# ============================================

class SqlReadingRepository(ReadingRepository):
    """
    Read-only repository over the store tables

    Rows whose payload no longer validates are skipped with a warning.
    """

    def __init__(self, session_factory: Callable[[], Session] = SessionLocal):
        self.session_factory = session_factory

    def find(self, reading_filter: Optional[ReadingFilter] = None) -> List[SensorReading]:
        return self._query(SensorReadingRecord, SensorReading, reading_filter)

    def find_intersection_readings(self, reading_filter: Optional[ReadingFilter] = None) -> List[IntersectionReading]:
        return self._query(IntersectionReadingRecord, IntersectionReading, reading_filter)

    def find_alerts(self, reading_filter: Optional[ReadingFilter] = None) -> List[TrafficAlert]:
        return self._query(TrafficAlertRecord, TrafficAlert, reading_filter)

    def distinct_intersections(self) -> List[str]:
        with self.session_factory() as session:
            ids = set(session.scalars(
                select(SensorReadingRecord.intersection_id).distinct()
            ))
            ids.update(session.scalars(
                select(IntersectionReadingRecord.intersection_id).distinct()
            ))
        return sorted(i for i in ids if i)

    def _query(self, record_class, model_class: Type[T], reading_filter: Optional[ReadingFilter]) -> List[T]:
        reading_filter = reading_filter or ReadingFilter()
        stmt = select(record_class)

        if reading_filter.intersection_id is not None:
            stmt = stmt.where(record_class.intersection_id == reading_filter.intersection_id)
        if reading_filter.sensor_direction is not None and hasattr(record_class, "sensor_direction"):
            stmt = stmt.where(record_class.sensor_direction == reading_filter.sensor_direction)
        if reading_filter.start is not None:
            stmt = stmt.where(record_class.timestamp >= reading_filter.start)
        if reading_filter.end is not None:
            stmt = stmt.where(record_class.timestamp <= reading_filter.end)

        stmt = stmt.order_by(record_class.timestamp.desc(), record_class.id.desc())
        if reading_filter.limit is not None:
            stmt = stmt.limit(reading_filter.limit)

        with self.session_factory() as session:
            records = list(session.scalars(stmt))

        results: List[T] = []
        for record in records:
            try:
                results.append(model_class.model_validate(self._document(record)))
            except ValidationError as e:
                logger.warning(
                    "[DB] Skipping invalid %s row %s: %d error(s)",
                    record_class.__tablename__, record.id, e.error_count(),
                )
        return results

    @staticmethod
    def _document(record) -> Dict[str, Any]:
        """Payload overlaid with the indexed columns"""
        document = dict(record.payload or {})
        document["timestamp"] = record.timestamp
        for column in ("sensor_id", "intersection_id", "sensor_direction", "alert_id", "severity"):
            value = getattr(record, column, None)
            if value is not None:
                document[column] = value
        return document
