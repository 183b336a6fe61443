"""
Risk Assessment Models

Output of the risk scoring engine. A fresh assessment is built on every
call and never mutated afterwards.
"""

from datetime import datetime
from typing import List, Literal, Union

from pydantic import BaseModel, ConfigDict, Field

RiskCategory = Literal["traffic", "intersection", "environment", "incidents"]
RiskLevel = Literal["low", "medium", "high", "critical"]
FactorSeverity = Literal["low", "medium", "high", "critical"]


class RiskFactor(BaseModel):
    """A single triggered scoring rule (audit trail entry)"""
    model_config = ConfigDict(frozen=True)

    category: RiskCategory
    factor: str                          # Stable rule identifier
    severity: FactorSeverity
    value: Union[bool, int, float, str]  # Triggering value
    points: float                        # Raw points added to the category
    description: str


class RiskBreakdown(BaseModel):
    """Raw (unweighted) category scores"""
    model_config = ConfigDict(frozen=True)

    traffic: float = 0.0
    intersection: float = 0.0
    environment: float = 0.0
    incidents: float = 0.0


class RiskAssessment(BaseModel):
    """
    Multi-factor risk assessment for one traffic reading

    score is the weighted sum of the breakdown, clamped to [0, 100].
    """
    model_config = ConfigDict(
        frozen=True,
        json_schema_extra={
            "example": {
                "score": 31.5,
                "level": "medium",
                "factors": [
                    {
                        "category": "traffic",
                        "factor": "active_incident",
                        "severity": "critical",
                        "value": True,
                        "points": 30,
                        "description": "Incident detected on the approach",
                    }
                ],
                "breakdown": {"traffic": 90, "intersection": 0, "environment": 0, "incidents": 0},
                "timestamp": "2026-01-01T08:00:00Z",
            }
        },
    )

    score: float = Field(ge=0, le=100)
    level: RiskLevel
    factors: List[RiskFactor] = Field(default_factory=list)
    breakdown: RiskBreakdown = Field(default_factory=RiskBreakdown)
    timestamp: datetime
