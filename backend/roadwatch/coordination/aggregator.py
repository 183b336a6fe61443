"""
Intersection Coordination Aggregator

Merge per-direction sensor readings into one coordination view per
intersection and derive its status.

Features:
- One slot per (intersection, direction), newest reading wins
- Incremental path (update) and batch path (snapshot) share one merge rule
- Flow, utilization and efficiency metrics
- Weather and traffic light synchronization checks
- Staleness filtering with an explicit, caller-supplied window
- Not-found results with available and similar intersection ids
"""

import difflib
import logging
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Dict, Iterable, List, Optional, Union

import numpy as np

from roadwatch.models import (
    DIRECTIONS,
    CoordinationNotFound,
    CoordinationSnapshot,
    DirectionSummary,
    FlowMetrics,
    IntersectionReading,
    LightCoordination,
    SensorReading,
    WeatherDeviation,
    WeatherState,
    WeatherSync,
)
from roadwatch.models.readings import to_utc

logger = logging.getLogger(__name__)

DEFAULT_CAPACITY_PER_DIRECTION = 120.0
DEFAULT_EFFICIENCY = 0.8
MIN_EFFICIENCY = 0.6
MAX_LIGHT_PHASES = 2

SnapshotResult = Union[CoordinationSnapshot, CoordinationNotFound]
Reading = Union[SensorReading, IntersectionReading]


def _supersedes(new: Any, old: Any) -> bool:
    """
    True when ``new`` replaces ``old`` in a slot

    Ordered by (timestamp, sensor_id). Identical keys fall back to the
    serialized content so the winner never depends on arrival order.
    """
    if old is None:
        return True
    new_key = (new.timestamp, new.sensor_id)
    old_key = (old.timestamp, old.sensor_id)
    if new_key != old_key:
        return new_key > old_key
    return new.model_dump_json() > old.model_dump_json()


def find_similar_ids(
    target: str,
    candidates: Iterable[str],
    cutoff: float = 0.6,
    limit: int = 3,
) -> List[str]:
    """
    Intersection ids that look like ``target``

    Case-insensitive matches come first, then difflib close matches,
    then substring matches.
    """
    pool = sorted(set(candidates))
    lowered = target.lower()

    matches = [c for c in pool if c.lower() == lowered and c != target]
    matches += difflib.get_close_matches(target, pool, n=limit, cutoff=cutoff)
    matches += [c for c in pool if lowered and (lowered in c.lower() or c.lower() in lowered)]

    similar: List[str] = []
    for candidate in matches:
        if candidate != target and candidate not in similar:
            similar.append(candidate)
    return similar[:limit]


@dataclass
class IntersectionView:
    """Latest reading per direction plus the latest intersection-wide readings"""
    slots: Dict[str, SensorReading] = field(default_factory=dict)
    lights: Dict[str, IntersectionReading] = field(default_factory=dict)
    intersection_reading: Optional[IntersectionReading] = None
    efficiency_reading: Optional[IntersectionReading] = None
    readings_seen: int = 0

    def merge(self, reading: SensorReading) -> bool:
        """Merge a directional reading; returns True when a slot changed"""
        self.readings_seen += 1
        direction = reading.sensor_direction
        if direction is None:
            return False
        if _supersedes(reading, self.slots.get(direction)):
            self.slots[direction] = reading
            return True
        return False

    def merge_intersection(self, reading: IntersectionReading) -> bool:
        """Merge an intersection-wide reading; returns True when the view changed"""
        self.readings_seen += 1
        changed = False
        if _supersedes(reading, self.intersection_reading):
            self.intersection_reading = reading
            changed = True
        if reading.intersection_efficiency is not None and _supersedes(reading, self.efficiency_reading):
            self.efficiency_reading = reading
            changed = True
        direction = reading.sensor_direction
        if direction is not None and _supersedes(reading, self.lights.get(direction)):
            self.lights[direction] = reading
            changed = True
        return changed

    def slot(self, direction: str) -> Optional[SensorReading]:
        """
        Effective reading for one direction

        The traffic slot keeps its measurements; a newer intersection-feed
        reading for the same direction only refreshes the light phase and
        timestamp. A direction heard only through the intersection feed is
        projected onto the per-direction shape.
        """
        traffic = self.slots.get(direction)
        light = self.lights.get(direction)
        if light is None:
            return traffic
        if traffic is None:
            return SensorReading.from_intersection_reading(light)
        if light.timestamp <= traffic.timestamp:
            return traffic
        update: Dict[str, Any] = {"timestamp": light.timestamp}
        if light.coordinated_light_status is not None:
            update["traffic_light_phase"] = light.coordinated_light_status
        return traffic.model_copy(update=update)

    def effective_slots(self) -> Dict[str, SensorReading]:
        slots = {d: self.slot(d) for d in DIRECTIONS}
        return {d: r for d, r in slots.items() if r is not None}


class CoordinationAggregator:
    """
    Per-intersection coordination aggregator

    Holds the incrementally maintained views and derives snapshots from
    either those views or a batch of stored readings. Derivation is pure
    over the view, so both paths agree for the same set of readings.

    Usage:
        aggregator = CoordinationAggregator()
        aggregator.update(reading)
        snapshot = aggregator.current("INT-001")
    """

    def __init__(
        self,
        capacity_per_direction: float = DEFAULT_CAPACITY_PER_DIRECTION,
        capacity_overrides: Optional[Dict[str, float]] = None,
        default_efficiency: float = DEFAULT_EFFICIENCY,
        min_efficiency: float = MIN_EFFICIENCY,
        fuzzy_cutoff: float = 0.6,
        fuzzy_max_results: int = 3,
    ):
        """
        Initialize the aggregator

        Args:
            capacity_per_direction: Vehicles/min one approach can carry
            capacity_overrides: Total capacity per intersection id
            default_efficiency: Efficiency when nothing better is known
            min_efficiency: Floor of the flow-balance efficiency
            fuzzy_cutoff: difflib ratio cutoff for similar ids
            fuzzy_max_results: Maximum similar ids reported
        """
        self.capacity_per_direction = capacity_per_direction
        self.capacity_overrides = dict(capacity_overrides or {})
        self.default_efficiency = default_efficiency
        self.min_efficiency = min_efficiency
        self.fuzzy_cutoff = fuzzy_cutoff
        self.fuzzy_max_results = fuzzy_max_results

        self._views: Dict[str, IntersectionView] = {}

    @classmethod
    def from_config(cls, coordination_config: Optional[Dict[str, Any]]) -> "CoordinationAggregator":
        """Build an aggregator from the ``coordination`` configuration section"""
        cfg = coordination_config or {}
        capacity = cfg.get("capacity", {}) or {}
        efficiency = cfg.get("efficiency", {}) or {}
        fuzzy = cfg.get("fuzzyMatch", {}) or {}
        return cls(
            capacity_per_direction=capacity.get("perDirection", DEFAULT_CAPACITY_PER_DIRECTION),
            capacity_overrides=capacity.get("overrides"),
            default_efficiency=efficiency.get("default", DEFAULT_EFFICIENCY),
            min_efficiency=efficiency.get("minimum", MIN_EFFICIENCY),
            fuzzy_cutoff=fuzzy.get("cutoff", 0.6),
            fuzzy_max_results=fuzzy.get("maxResults", 3),
        )

    # ============================================
    # Incremental path
    # ============================================

    def update(self, reading: SensorReading) -> None:
        """Merge one sensor reading into the held view"""
        if not reading.intersection_id:
            logger.debug("[COORD] Ignoring reading without intersection: %s", reading.sensor_id)
            return
        self._view(reading.intersection_id).merge(reading)

    def update_intersection(self, reading: IntersectionReading) -> None:
        """Merge one intersection-wide reading into the held view"""
        if not reading.intersection_id:
            logger.debug("[COORD] Ignoring intersection reading without id: %s", reading.sensor_id)
            return
        self._view(reading.intersection_id).merge_intersection(reading)

    def current(
        self,
        intersection_id: str,
        now: Optional[datetime] = None,
        staleness_window: Optional[timedelta] = None,
    ) -> SnapshotResult:
        """Snapshot of the incrementally maintained view"""
        view = self._views.get(intersection_id)
        if view is None:
            return self.not_found(intersection_id, self._views.keys())
        return self._derive(intersection_id, view, now, staleness_window)

    def intersections(self) -> List[str]:
        """Intersection ids currently held"""
        return sorted(self._views)

    def latest_intersection_reading(self, intersection_id: str) -> Optional[IntersectionReading]:
        view = self._views.get(intersection_id)
        return view.intersection_reading if view else None

    def _view(self, intersection_id: str) -> IntersectionView:
        view = self._views.get(intersection_id)
        if view is None:
            view = IntersectionView()
            self._views[intersection_id] = view
            logger.info("[COORD] Tracking new intersection: %s", intersection_id)
        return view

    # ============================================
    # Batch path
    # ============================================

    def snapshot(
        self,
        intersection_id: str,
        readings: Iterable[Reading],
        now: Optional[datetime] = None,
        staleness_window: Optional[timedelta] = None,
    ) -> SnapshotResult:
        """
        Build a snapshot from a batch of stored readings

        Args:
            intersection_id: Intersection to summarize
            readings: Sensor and/or intersection readings (any order)
            now: Reference time for staleness (default: newest reading)
            staleness_window: Drop directions older than now - window

        Returns:
            CoordinationSnapshot, or CoordinationNotFound when no reading matches
        """
        view = IntersectionView()
        seen_ids = set()
        for reading in readings:
            if reading.intersection_id:
                seen_ids.add(reading.intersection_id)
            if reading.intersection_id != intersection_id:
                continue
            if isinstance(reading, IntersectionReading):
                view.merge_intersection(reading)
            else:
                view.merge(reading)

        if view.readings_seen == 0:
            return self.not_found(intersection_id, seen_ids)
        return self._derive(intersection_id, view, now, staleness_window)

    def not_found(self, intersection_id: str, available: Iterable[str]) -> CoordinationNotFound:
        """Diagnostic result for an intersection with no readings"""
        available_ids = sorted(set(available))
        similar = find_similar_ids(
            intersection_id, available_ids, self.fuzzy_cutoff, self.fuzzy_max_results
        )

        if similar:
            suggestion = f"Did you mean '{similar[0]}'?"
        elif available_ids:
            suggestion = "Use one of the available intersection ids"
        else:
            suggestion = "No intersection data has been received yet"

        logger.info("[COORD] No data for intersection %s (similar: %s)", intersection_id, similar)
        return CoordinationNotFound(
            intersection_id=intersection_id,
            message=f"No coordination data found for intersection '{intersection_id}'",
            available_intersections=available_ids,
            similar_intersections=similar,
            suggestion=suggestion,
        )

    # ============================================
    # Derivation
    # ============================================

    def capacity_for(self, intersection_id: str) -> float:
        """Total intersection capacity (vehicles/min)"""
        override = self.capacity_overrides.get(intersection_id)
        if override is not None:
            return float(override)
        return self.capacity_per_direction * len(DIRECTIONS)

    def _derive(
        self,
        intersection_id: str,
        view: IntersectionView,
        now: Optional[datetime],
        staleness_window: Optional[timedelta],
    ) -> CoordinationSnapshot:
        live: Dict[str, SensorReading] = {}
        stale: List[str] = []

        cutoff = None
        if now is not None:
            now = to_utc(now)
        slots = view.effective_slots()
        if staleness_window is not None and slots:
            reference = now or max(r.timestamp for r in slots.values())
            cutoff = reference - staleness_window

        for direction in DIRECTIONS:
            reading = slots.get(direction)
            if reading is None:
                continue
            if cutoff is not None and reading.timestamp < cutoff:
                stale.append(direction)
            else:
                live[direction] = reading

        missing = [d for d in DIRECTIONS if d not in live and d not in stale]
        partial = len(live) < len(DIRECTIONS)
        if stale:
            logger.debug("[COORD] %s stale directions: %s", intersection_id, stale)

        flow_metrics = self._flow_metrics(intersection_id, live)
        efficiency, source = self._efficiency(live, view.efficiency_reading)
        weather_sync = self._weather_sync(live)

        return CoordinationSnapshot(
            intersection_id=intersection_id,
            coordination_status="partial" if partial else "complete",
            partial_data=partial,
            active_sensors=len(live),
            expected_sensors=len(DIRECTIONS),
            missing_directions=missing,
            stale_directions=stale,
            sensors_by_direction={
                d: DirectionSummary(
                    sensor_id=r.sensor_id,
                    density=r.density,
                    speed=r.speed,
                    vehicle_flow_rate=r.vehicle_flow_rate,
                    vehicle_count=r.vehicle_count,
                    traffic_light_phase=r.traffic_light_phase,
                    queue_propagation_factor=r.queue_propagation_factor,
                    timestamp=r.timestamp,
                )
                for d, r in live.items()
            },
            shared_weather=weather_sync.reference,
            flow_metrics=flow_metrics,
            efficiency_estimate=efficiency,
            efficiency_source=source,
            light_coordination=self._light_coordination(live),
            weather_sync=weather_sync,
            last_update=max((r.timestamp for r in live.values()), default=None),
        )

    def _flow_metrics(self, intersection_id: str, live: Dict[str, SensorReading]) -> FlowMetrics:
        if not live:
            return FlowMetrics()

        readings = list(live.values())
        total_flow = sum(r.vehicle_flow_rate or 0.0 for r in readings)
        avg_density = sum(r.density or 0.0 for r in readings) / len(readings)
        avg_speed = sum(r.speed or 0.0 for r in readings) / len(readings)

        capacity = self.capacity_for(intersection_id)
        utilization = min(total_flow / capacity, 1.0) if capacity > 0 else 0.0

        return FlowMetrics(
            total_flow_rate=round(total_flow, 2),
            avg_density=round(avg_density, 2),
            avg_speed=round(avg_speed, 2),
            utilization=round(utilization, 2),
        )

    def _efficiency(self, live: Dict[str, SensorReading], efficiency_reading: Optional[IntersectionReading]):
        if len(live) == len(DIRECTIONS):
            flows = np.array([live[d].vehicle_flow_rate or 0.0 for d in DIRECTIONS])
            balance = 1 - float(np.std(flows)) / 100
            return round(max(self.min_efficiency, balance), 2), "flow_balance"
        if efficiency_reading is not None:
            return round(efficiency_reading.intersection_efficiency, 2), "external"
        return self.default_efficiency, "default"

    @staticmethod
    def _weather_sync(live: Dict[str, SensorReading]) -> WeatherSync:
        reports = [
            (direction, reading)
            for direction, reading in live.items()
            if reading.coordinated_weather is not None
        ]
        if not reports:
            return WeatherSync()

        # Counter keeps first-seen order, so ties go to the earliest direction
        counts = Counter(reading.coordinated_weather for _, reading in reports)
        reference: WeatherState = max(counts, key=counts.get)

        deviations = []
        for direction, reading in reports:
            state = reading.coordinated_weather
            if state == reference:
                continue
            differences = {
                name: {"expected": getattr(reference, name), "actual": getattr(state, name)}
                for name in WeatherState.model_fields
                if getattr(reference, name) != getattr(state, name)
            }
            deviations.append(WeatherDeviation(
                direction=direction,
                sensor_id=reading.sensor_id,
                differences=differences,
            ))

        return WeatherSync(
            synchronized=not deviations,
            reporting_sensors=len(reports),
            reference=reference,
            per_sensor_deviation=deviations,
        )

    @staticmethod
    def _light_coordination(live: Dict[str, SensorReading]) -> LightCoordination:
        phases = [r.traffic_light_phase for r in live.values() if r.traffic_light_phase]
        unique = sorted(set(phases))
        synchronized = len(unique) <= MAX_LIGHT_PHASES
        return LightCoordination(
            unique_phases=unique,
            phase_count=len(unique),
            all_reporting=bool(live) and len(phases) == len(live),
            synchronized=synchronized,
            status="synchronized" if synchronized else "unsynchronized",
        )
