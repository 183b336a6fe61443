"""
Data Models Package

Pydantic models for readings, risk assessments and coordination
snapshots.

Usage:
    from roadwatch.models import SensorReading, RiskAssessment
"""

from .readings import (
    DIRECTIONS,
    AlertSeverity,
    CongestionLevel,
    Direction,
    IntersectionReading,
    SensorReading,
    TrafficAlert,
    WeatherState,
)
from .risk import (
    RiskAssessment,
    RiskBreakdown,
    RiskCategory,
    RiskFactor,
    RiskLevel,
)
from .coordination import (
    CoordinationNotFound,
    CoordinationSnapshot,
    DirectionSummary,
    DynamicFlowReport,
    FlowEstimate,
    FlowMethodValues,
    FlowMetrics,
    IntersectionSummary,
    LightCoordination,
    WeatherDeviation,
    WeatherSync,
)

__all__ = [
    # Readings
    "DIRECTIONS",
    "AlertSeverity",
    "CongestionLevel",
    "Direction",
    "IntersectionReading",
    "SensorReading",
    "TrafficAlert",
    "WeatherState",

    # Risk
    "RiskAssessment",
    "RiskBreakdown",
    "RiskCategory",
    "RiskFactor",
    "RiskLevel",

    # Coordination
    "CoordinationNotFound",
    "CoordinationSnapshot",
    "DirectionSummary",
    "DynamicFlowReport",
    "FlowEstimate",
    "FlowMethodValues",
    "FlowMetrics",
    "IntersectionSummary",
    "LightCoordination",
    "WeatherDeviation",
    "WeatherSync",
]
