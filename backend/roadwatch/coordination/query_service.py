"""
Coordination Query Service

Rebuilds coordination views on demand from the reading store. Nothing
here touches the in-memory incremental state or the broadcaster.
"""

import logging
from datetime import datetime, timedelta
from typing import List, Optional, Union

from roadwatch.database.repository import ReadingFilter, ReadingRepository
from roadwatch.models import (
    DIRECTIONS,
    CoordinationNotFound,
    DynamicFlowReport,
    IntersectionSummary,
)

from .aggregator import CoordinationAggregator, IntersectionView, SnapshotResult
from .flow_estimator import DynamicFlowEstimator

logger = logging.getLogger(__name__)

LISTING_STATUSES = ("full_coordination", "partial_coordination", "legacy_mode")


class CoordinationQueryService:
    """
    On-demand coordination queries

    Usage:
        service = CoordinationQueryService(repository, aggregator)
        snapshot = service.get_status("INT-001")
    """

    def __init__(
        self,
        repository: ReadingRepository,
        aggregator: Optional[CoordinationAggregator] = None,
        flow_estimator: Optional[DynamicFlowEstimator] = None,
    ):
        self.repository = repository
        self.aggregator = aggregator or CoordinationAggregator()
        self.flow_estimator = flow_estimator or DynamicFlowEstimator()

    def get_status(
        self,
        intersection_id: str,
        now: Optional[datetime] = None,
        staleness_window: Optional[timedelta] = None,
    ) -> SnapshotResult:
        """
        Coordination snapshot rebuilt from stored readings

        Args:
            intersection_id: Intersection to summarize
            now: Reference time for staleness (default: newest reading)
            staleness_window: Drop directions older than now - window

        Returns:
            CoordinationSnapshot, or CoordinationNotFound with hints
        """
        reading_filter = ReadingFilter(intersection_id=intersection_id)
        readings = list(self.repository.find(reading_filter))
        readings.extend(self.repository.find_intersection_readings(reading_filter))

        if not readings:
            return self.aggregator.not_found(intersection_id, self.repository.distinct_intersections())
        return self.aggregator.snapshot(intersection_id, readings, now=now, staleness_window=staleness_window)

    def get_dynamic_flow(self, intersection_id: str) -> Union[DynamicFlowReport, CoordinationNotFound]:
        """Dynamic flow-rate report over the latest reading per direction"""
        readings = self.repository.find(ReadingFilter(intersection_id=intersection_id))
        if not readings:
            return self.aggregator.not_found(intersection_id, self.repository.distinct_intersections())

        view = IntersectionView()
        for reading in readings:
            view.merge(reading)

        report = self.flow_estimator.report(intersection_id, view.slots)
        if report.placeholder_detected:
            logger.info("[COORD] Placeholder flow rates detected at %s", intersection_id)
        return report

    def list_intersections(self, status: Optional[str] = None) -> List[IntersectionSummary]:
        """
        Coordination overview of every intersection in the store

        Args:
            status: Only return intersections in this coordination status

        Returns:
            Summaries, most recently updated first
        """
        summaries = []
        for group in self.repository.aggregate("intersection_id"):
            if group.key is None:
                continue

            coordinated = group.coordinated_count
            if coordinated >= len(DIRECTIONS):
                coordination_status, health = "full_coordination", "optimal"
            elif coordinated > 0:
                coordination_status, health = "partial_coordination", "degraded"
            else:
                coordination_status, health = "legacy_mode", "legacy"

            if status is not None and coordination_status != status:
                continue

            summaries.append(IntersectionSummary(
                intersection_id=group.key,
                coordination_status=coordination_status,
                health_status=health,
                sensor_count=group.count,
                coordinated_sensors=coordinated,
                sensor_coverage_percent=int(round(coordinated / group.count * 100)) if group.count else 0,
                unique_directions=group.directions,
                avg_flow_rate=group.avg_flow_rate,
                weather_synchronized=group.weather_reports > 0,
                last_update=group.latest_timestamp,
            ))

        summaries.sort(key=lambda s: s.last_update, reverse=True)
        return summaries
