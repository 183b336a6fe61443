"""
Intersection Coordination Models

Snapshot of an intersection's merged sensor view, plus the diagnostic
results of the dynamic flow-rate estimator and the not-found result
returned for unknown intersections.
"""

from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

from .readings import WeatherState


class DirectionSummary(BaseModel):
    """Latest reading summary for one approach of an intersection"""
    model_config = ConfigDict(frozen=True)

    sensor_id: str
    density: Optional[float] = None
    speed: Optional[float] = None
    vehicle_flow_rate: Optional[float] = None
    vehicle_count: Optional[int] = None
    traffic_light_phase: Optional[str] = None
    queue_propagation_factor: Optional[float] = None
    timestamp: datetime


class FlowMetrics(BaseModel):
    """Intersection-wide flow aggregates"""
    model_config = ConfigDict(frozen=True)

    total_flow_rate: float = 0.0    # vehicles/min
    avg_density: float = 0.0
    avg_speed: float = 0.0
    utilization: float = 0.0        # 0-1


class LightCoordination(BaseModel):
    """Traffic light phase agreement across directions"""
    model_config = ConfigDict(frozen=True)

    unique_phases: List[str] = Field(default_factory=list)
    phase_count: int = 0
    all_reporting: bool = False
    synchronized: bool = True
    status: Literal["synchronized", "unsynchronized"] = "synchronized"


class WeatherDeviation(BaseModel):
    """How one direction's weather differs from the intersection reference"""
    model_config = ConfigDict(frozen=True)

    direction: str
    sensor_id: str
    differences: Dict[str, Dict[str, Any]] = Field(default_factory=dict)


class WeatherSync(BaseModel):
    """Weather agreement across the reporting sensors of an intersection"""
    model_config = ConfigDict(frozen=True)

    synchronized: bool = True
    reporting_sensors: int = 0
    reference: Optional[WeatherState] = None
    per_sensor_deviation: List[WeatherDeviation] = Field(default_factory=list)


class CoordinationSnapshot(BaseModel):
    """
    Merged, derived view of an intersection's current status

    Built from the latest reading per direction. Carries no wall-clock
    value, so rebuilding it from the same readings gives the same result.
    """
    model_config = ConfigDict(frozen=True)

    intersection_id: str
    coordination_status: Literal["complete", "partial"]
    partial_data: bool
    active_sensors: int
    expected_sensors: int = 4
    missing_directions: List[str] = Field(default_factory=list)
    stale_directions: List[str] = Field(default_factory=list)

    sensors_by_direction: Dict[str, DirectionSummary] = Field(default_factory=dict)
    shared_weather: Optional[WeatherState] = None

    flow_metrics: FlowMetrics = Field(default_factory=FlowMetrics)
    efficiency_estimate: float
    efficiency_source: Literal["flow_balance", "external", "default"]
    light_coordination: LightCoordination = Field(default_factory=LightCoordination)
    weather_sync: WeatherSync = Field(default_factory=WeatherSync)

    last_update: Optional[datetime] = None


class CoordinationNotFound(BaseModel):
    """Structured "no data" result with self-correction hints"""
    model_config = ConfigDict(frozen=True)

    intersection_id: str
    status: Literal["not_found"] = "not_found"
    message: str
    available_intersections: List[str] = Field(default_factory=list)
    similar_intersections: List[str] = Field(default_factory=list)
    suggestion: str = ""


class FlowMethodValues(BaseModel):
    """Raw outputs of the four flow-rate estimation methods"""
    model_config = ConfigDict(frozen=True)

    count_based: float
    density_speed: float
    engineering: float
    congestion: float

    def as_list(self) -> List[float]:
        return [self.count_based, self.density_speed, self.engineering, self.congestion]


class FlowEstimate(BaseModel):
    """Static vs dynamic flow rate for one direction"""
    model_config = ConfigDict(frozen=True)

    direction: str
    sensor_id: str
    vehicle_count: int
    density: float
    speed: float
    static_flow_rate: float
    dynamic_flow_rate: float
    methods: FlowMethodValues
    difference_percent: int
    is_placeholder: bool
    congestion_level: Literal["low", "medium", "high"]
    speed_category: Literal["slow", "medium", "fast"]
    efficiency_score: int
    timestamp: datetime


class DynamicFlowReport(BaseModel):
    """Diagnostic comparison of reported and recomputed flow rates"""
    model_config = ConfigDict(frozen=True)

    intersection_id: str
    directions: List[FlowEstimate] = Field(default_factory=list)
    static_flow_total: float = 0.0
    dynamic_flow_total: float = 0.0
    total_vehicles: int = 0
    flow_variance: float = 0.0
    placeholder_detected: bool = False
    recommendations: List[str] = Field(default_factory=list)


class IntersectionSummary(BaseModel):
    """One row of the intersection coordination listing"""
    model_config = ConfigDict(frozen=True)

    intersection_id: str
    coordination_status: Literal["full_coordination", "partial_coordination", "legacy_mode"]
    health_status: Literal["optimal", "degraded", "legacy"]
    sensor_count: int
    coordinated_sensors: int = 0
    sensor_coverage_percent: int = 0
    unique_directions: List[str] = Field(default_factory=list)
    avg_flow_rate: Optional[float] = None
    weather_synchronized: bool = False
    last_update: Optional[datetime] = None
