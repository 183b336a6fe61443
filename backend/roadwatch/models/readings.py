"""
Sensor Reading Models

Inbound entities produced by the ingestion collaborator. Readings are
validated once at the boundary and are immutable afterwards.
"""

from datetime import datetime, timezone
from typing import Literal, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

Direction = Literal["north", "south", "east", "west"]
CongestionLevel = Literal["low", "medium", "high", "critical"]
AlertSeverity = Literal["low", "medium", "high", "critical"]

# Canonical direction order used wherever output order matters
DIRECTIONS = ("north", "south", "east", "west")

_DIRECTION_ALIASES = {
    "n": "north",
    "s": "south",
    "e": "east",
    "w": "west",
}


def to_utc(value: datetime) -> datetime:
    """Interpret naive datetimes as UTC"""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _normalize_direction(value):
    if value is None or not isinstance(value, str):
        return value
    lowered = value.strip().lower()
    return _DIRECTION_ALIASES.get(lowered, lowered)


def _normalize_level(value):
    if isinstance(value, str):
        return value.strip().lower()
    return value


class WeatherState(BaseModel):
    """
    Weather observed by a sensor

    Compared by field equality when checking synchronization
    across the sensors of one intersection.
    """
    model_config = ConfigDict(frozen=True, extra="ignore")

    conditions: Optional[str] = None      # clear, rain, snow, fog, ...
    temperature: Optional[float] = None   # °C
    humidity: Optional[float] = None      # %
    wind_speed: Optional[float] = None    # km/h
    visibility: Optional[str] = None      # good, fair, poor
    road_condition: Optional[str] = None  # dry, wet, icy, snowy

    @field_validator("conditions", "visibility", "road_condition", mode="before")
    @classmethod
    def _lowercase(cls, v):
        return _normalize_level(v)


class SensorReading(BaseModel):
    """
    Per-direction traffic reading

    Superseded by a later reading for the same
    (intersection_id, sensor_direction) slot.
    """
    model_config = ConfigDict(frozen=True, extra="ignore", populate_by_name=True)

    sensor_id: str = Field(min_length=1)
    timestamp: datetime

    intersection_id: Optional[str] = None
    sensor_direction: Optional[Direction] = None

    density: Optional[float] = Field(default=None, ge=0)          # % occupancy
    speed: Optional[float] = Field(default=None, ge=0)            # km/h
    congestion_level: Optional[CongestionLevel] = None
    incident_detected: Optional[bool] = None
    near_miss_events: Optional[int] = Field(default=None, ge=0)
    vehicle_flow_rate: Optional[float] = Field(default=None, ge=0)  # vehicles/min
    vehicle_count: Optional[int] = Field(
        default=None,
        ge=0,
        validation_alias=AliasChoices("vehicle_count", "vehicle_number"),
    )
    traffic_light_phase: Optional[str] = None
    queue_propagation_factor: Optional[float] = None
    visibility: Optional[str] = None

    coordinated_weather: Optional[WeatherState] = None

    @field_validator("timestamp")
    @classmethod
    def _utc_timestamp(cls, v: datetime) -> datetime:
        return to_utc(v)

    @field_validator("sensor_direction", mode="before")
    @classmethod
    def _direction(cls, v):
        return _normalize_direction(v)

    @field_validator("congestion_level", "visibility", "traffic_light_phase", mode="before")
    @classmethod
    def _lowercase(cls, v):
        return _normalize_level(v)

    @classmethod
    def from_intersection_reading(cls, reading: "IntersectionReading") -> "SensorReading":
        """Project an intersection-feed reading onto the per-direction shape"""
        return cls(
            sensor_id=reading.sensor_id,
            timestamp=reading.timestamp,
            intersection_id=reading.intersection_id,
            sensor_direction=reading.sensor_direction,
            traffic_light_phase=reading.coordinated_light_status,
        )

    @property
    def is_coordinated(self) -> bool:
        """True when the reading carries intersection coordination fields"""
        return bool(self.intersection_id and (
            self.sensor_direction
            or self.coordinated_weather is not None
            or self.vehicle_flow_rate is not None
            or self.traffic_light_phase
        ))


class IntersectionReading(BaseModel):
    """
    Intersection-wide reading (queueing, behaviour, light coordination)

    Feeds the intersection category of the risk score and the
    external efficiency fallback of the coordination aggregator.
    """
    model_config = ConfigDict(frozen=True, extra="ignore", populate_by_name=True)

    sensor_id: str = Field(min_length=1)
    timestamp: datetime

    intersection_id: Optional[str] = None
    sensor_direction: Optional[Direction] = None

    stopped_vehicles_count: Optional[int] = Field(default=None, ge=0)
    average_wait_time: Optional[float] = Field(default=None, ge=0)   # seconds
    risky_behavior_detected: Optional[bool] = None
    sudden_braking_events: Optional[int] = Field(default=None, ge=0)
    collision_count: Optional[int] = Field(default=None, ge=0)
    wrong_way_vehicles: Optional[int] = Field(default=None, ge=0)
    traffic_light_compliance_rate: Optional[float] = Field(default=None, ge=0, le=100)
    near_miss_incidents: Optional[int] = Field(default=None, ge=0)

    coordinated_light_status: Optional[str] = None
    intersection_efficiency: Optional[float] = Field(default=None, ge=0, le=1)
    total_intersection_vehicles: Optional[int] = Field(default=None, ge=0)
    phase_time_remaining: Optional[float] = Field(default=None, ge=0)

    @field_validator("timestamp")
    @classmethod
    def _utc_timestamp(cls, v: datetime) -> datetime:
        return to_utc(v)

    @field_validator("sensor_direction", mode="before")
    @classmethod
    def _direction(cls, v):
        return _normalize_direction(v)

    @field_validator("coordinated_light_status", mode="before")
    @classmethod
    def _lowercase(cls, v):
        return _normalize_level(v)

    @property
    def is_coordinated(self) -> bool:
        """True when the reading carries light/efficiency coordination fields"""
        return bool(self.intersection_id and (
            self.coordinated_light_status
            or self.intersection_efficiency is not None
            or self.total_intersection_vehicles is not None
            or self.phase_time_remaining is not None
        ))


class TrafficAlert(BaseModel):
    """Alert raised by the sensor network (incident, congestion, ...)"""
    model_config = ConfigDict(frozen=True, extra="ignore")

    timestamp: datetime
    alert_id: Optional[str] = None
    type: Optional[str] = None
    severity: AlertSeverity = "low"
    sensor_id: Optional[str] = None
    intersection_id: Optional[str] = None
    message: Optional[str] = None

    @field_validator("timestamp")
    @classmethod
    def _utc_timestamp(cls, v: datetime) -> datetime:
        return to_utc(v)

    @field_validator("severity", mode="before")
    @classmethod
    def _lowercase(cls, v):
        return _normalize_level(v)
