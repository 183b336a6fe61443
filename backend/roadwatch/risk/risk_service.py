"""
Risk Assessment Service

Scores a traffic reading against the alerts and intersection readings
held in the reading store.
"""

import logging
from typing import Iterable, Optional

from roadwatch.database.repository import ReadingFilter, ReadingRepository
from roadwatch.models import IntersectionReading, RiskAssessment, SensorReading, TrafficAlert, WeatherState

from .scoring_engine import RiskScoringEngine

logger = logging.getLogger(__name__)


class RiskAssessmentService:
    """
    Risk assessment backed by the reading store

    Missing context is looked up in the repository: recent alerts for
    the reading's intersection and the latest intersection-wide reading.
    """

    def __init__(self, engine: RiskScoringEngine, repository: ReadingRepository):
        self.engine = engine
        self.repository = repository

    def assess_reading(
        self,
        traffic: SensorReading,
        intersection: Optional[IntersectionReading] = None,
        weather: Optional[WeatherState] = None,
        alerts: Optional[Iterable[TrafficAlert]] = None,
    ) -> RiskAssessment:
        """
        Assess one traffic reading

        Args:
            traffic: Reading to assess
            intersection: Intersection reading (default: latest stored one)
            weather: Weather (default: the reading's coordinated weather)
            alerts: Alerts (default: stored alerts inside the alert window)

        Returns:
            RiskAssessment
        """
        if traffic.intersection_id:
            if intersection is None:
                latest = self.repository.find_intersection_readings(ReadingFilter(
                    intersection_id=traffic.intersection_id,
                    end=traffic.timestamp,
                    limit=1,
                ))
                intersection = latest[0] if latest else None

            if alerts is None:
                alerts = self.repository.find_alerts(ReadingFilter(
                    intersection_id=traffic.intersection_id,
                    start=traffic.timestamp - self.engine.alert_window,
                    end=traffic.timestamp,
                ))

        assessment = self.engine.assess(traffic, intersection, weather, alerts or ())
        logger.debug(
            "[RISK] %s scored %.2f (%s)", traffic.sensor_id, assessment.score, assessment.level
        )
        return assessment
