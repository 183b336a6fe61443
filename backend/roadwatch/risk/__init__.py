"""
Risk Package

Weighted multi-factor risk scoring for traffic readings.
"""

from .scoring_engine import DEFAULT_WEIGHTS, RiskScoringEngine, classify_level
from .risk_service import RiskAssessmentService

__all__ = [
    "DEFAULT_WEIGHTS",
    "RiskScoringEngine",
    "classify_level",
    "RiskAssessmentService",
]
