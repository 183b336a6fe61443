"""
Risk Scoring Engine

Multi-factor weighted risk assessment for a single traffic reading.

Four category scores are accumulated independently from additive
threshold rules, then combined with fixed weights:

    traffic       0.35   speed, density, congestion, incidents, near misses
    intersection  0.25   queueing, waiting, behaviour, collisions, compliance
    environment   0.20   weather conditions, visibility, temperature, road
    incidents     0.20   alerts raised in the last hour

score = clamp(sum(raw * weight), 0, 100), rounded to 2 decimals.

Every triggered rule is recorded as a RiskFactor so the score can be
audited and reproduced. Missing or malformed inputs add nothing; the
engine never raises on bad data.
"""

import logging
import math
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Iterable, List, Optional

from pydantic import ValidationError

from roadwatch.exceptions import ConfigurationError
from roadwatch.models import (
    IntersectionReading,
    RiskAssessment,
    RiskBreakdown,
    RiskFactor,
    SensorReading,
    TrafficAlert,
    WeatherState,
)

logger = logging.getLogger(__name__)

DEFAULT_WEIGHTS: Dict[str, float] = {
    "traffic": 0.35,
    "intersection": 0.25,
    "environment": 0.20,
    "incidents": 0.20,
}

DEFAULT_ALERT_WINDOW_MINUTES = 60

LEVEL_THRESHOLDS = (
    (80.0, "critical"),
    (60.0, "high"),
    (30.0, "medium"),
)

SEVERE_ALERT_LEVELS = ("high", "critical")
WINTER_CONDITIONS = ("snow", "ice", "sleet")
ICY_ROAD_CONDITIONS = ("icy", "snowy")


def _value(source: Any, name: str) -> Any:
    """Read a field from a model or a mapping, None when absent"""
    if source is None:
        return None
    if isinstance(source, dict):
        return source.get(name)
    return getattr(source, name, None)


def _number(source: Any, name: str) -> Optional[float]:
    """Numeric field or None (booleans and unparseable values are ignored)"""
    raw = _value(source, name)
    if raw is None or isinstance(raw, bool):
        return None
    try:
        value = float(raw)
    except (TypeError, ValueError):
        return None
    if math.isnan(value):
        return None
    return value


def _text(source: Any, name: str) -> Optional[str]:
    raw = _value(source, name)
    if isinstance(raw, str):
        return raw.strip().lower()
    return None


def _flag(source: Any, name: str) -> bool:
    return _value(source, name) is True


def classify_level(score: float) -> str:
    """Map a 0-100 score to its risk level"""
    for threshold, level in LEVEL_THRESHOLDS:
        if score >= threshold:
            return level
    return "low"


class _CategoryScore:
    """Accumulates rule hits for one category"""

    def __init__(self, category: str):
        self.category = category
        self.points = 0.0
        self.factors: List[RiskFactor] = []

    def add(self, factor: str, points: float, severity: str, value: Any, description: str):
        self.points += points
        self.factors.append(RiskFactor(
            category=self.category,
            factor=factor,
            severity=severity,
            value=value,
            points=points,
            description=description,
        ))


class RiskScoringEngine:
    """
    Weighted multi-category risk scorer

    Pure and deterministic: identical inputs give identical
    assessments, including the order of the factor list.

    Usage:
        engine = RiskScoringEngine()
        assessment = engine.assess(traffic, intersection, weather, alerts)
    """

    def __init__(
        self,
        weights: Optional[Dict[str, float]] = None,
        alert_window_minutes: int = DEFAULT_ALERT_WINDOW_MINUTES,
    ):
        """
        Initialize the engine

        Args:
            weights: Category weights (must cover all four categories and sum to 1.0)
            alert_window_minutes: Look-back window for the incidents category
        """
        self.weights = dict(weights) if weights else dict(DEFAULT_WEIGHTS)
        self._validate_weights(self.weights)
        self.alert_window = timedelta(minutes=alert_window_minutes)

    @classmethod
    def from_config(cls, risk_config: Optional[Dict[str, Any]]) -> "RiskScoringEngine":
        """Build an engine from the ``risk`` configuration section"""
        risk_config = risk_config or {}
        return cls(
            weights=risk_config.get("weights"),
            alert_window_minutes=risk_config.get("alertWindowMinutes", DEFAULT_ALERT_WINDOW_MINUTES),
        )

    @staticmethod
    def _validate_weights(weights: Dict[str, float]):
        missing = set(DEFAULT_WEIGHTS) - set(weights)
        if missing:
            raise ConfigurationError(f"Missing risk weights: {sorted(missing)}")
        total = sum(weights[k] for k in DEFAULT_WEIGHTS)
        if not math.isclose(total, 1.0, abs_tol=1e-9):
            raise ConfigurationError(f"Risk weights must sum to 1.0 (got {total})")

    # ============================================
    # Public API
    # ============================================

    def assess(
        self,
        traffic: SensorReading,
        intersection: Optional[IntersectionReading] = None,
        weather: Optional[WeatherState] = None,
        alerts: Iterable[Any] = (),
        now: Optional[datetime] = None,
    ) -> RiskAssessment:
        """
        Assess risk for one traffic reading

        Args:
            traffic: Per-direction traffic reading
            intersection: Intersection-wide reading, if any
            weather: Weather state (default: the reading's coordinated weather)
            alerts: Recent alerts (TrafficAlert or dicts of the same shape)
            now: Reference time (default: the reading's timestamp)

        Returns:
            RiskAssessment with score, level, factors and breakdown
        """
        if weather is None:
            weather = _value(traffic, "coordinated_weather")
        reference = self._reference_time(traffic, now)

        traffic_score = self._score_traffic(traffic)
        intersection_score = self._score_intersection(intersection)
        environment_score = self._score_environment(weather, traffic)
        incident_score = self._score_incidents(alerts, reference)

        categories = (traffic_score, intersection_score, environment_score, incident_score)
        weighted = sum(c.points * self.weights[c.category] for c in categories)
        score = round(min(max(weighted, 0.0), 100.0), 2)

        factors: List[RiskFactor] = []
        for c in categories:
            factors.extend(c.factors)

        return RiskAssessment(
            score=score,
            level=classify_level(score),
            factors=factors,
            breakdown=RiskBreakdown(
                traffic=traffic_score.points,
                intersection=intersection_score.points,
                environment=environment_score.points,
                incidents=incident_score.points,
            ),
            timestamp=reference,
        )

    # ============================================
    # Category Rules
    # ============================================

    def _score_traffic(self, traffic: Any) -> _CategoryScore:
        result = _CategoryScore("traffic")

        speed = _number(traffic, "speed")
        if speed is not None:
            if speed < 10:
                result.add("low_speed", 25, "high", speed,
                           f"Very low speed ({speed:g} km/h) indicates stop-and-go traffic")
            elif speed < 20:
                result.add("reduced_speed", 15, "medium", speed,
                           f"Reduced speed ({speed:g} km/h)")
            elif speed > 80:
                result.add("excessive_speed", 20, "high", speed,
                           f"Excessive speed ({speed:g} km/h)")

        density = _number(traffic, "density")
        if density is not None:
            if density > 80:
                result.add("high_density", 20, "high", density,
                           f"High traffic density ({density:g}%)")
            elif density > 60:
                result.add("elevated_density", 10, "medium", density,
                           f"Elevated traffic density ({density:g}%)")

        congestion = _text(traffic, "congestion_level")
        if congestion in ("high", "critical"):
            result.add("high_congestion", 15, "high", congestion,
                       f"Congestion level is {congestion}")
        elif congestion == "medium":
            result.add("moderate_congestion", 8, "medium", congestion,
                       "Congestion level is medium")

        if _flag(traffic, "incident_detected"):
            result.add("active_incident", 30, "critical", True,
                       "Incident detected on the approach")

        near_misses = _number(traffic, "near_miss_events")
        if near_misses is not None and near_misses > 0:
            points = min(near_misses * 8, 25)
            severity = "high" if near_misses >= 3 else "medium"
            result.add("near_miss_events", points, severity, int(near_misses),
                       f"{int(near_misses)} near-miss event(s) reported")

        return result

    def _score_intersection(self, intersection: Any) -> _CategoryScore:
        result = _CategoryScore("intersection")
        if intersection is None:
            return result

        stopped = _number(intersection, "stopped_vehicles_count")
        if stopped is not None:
            if stopped > 40:
                result.add("stopped_vehicles", 20, "high", int(stopped),
                           f"{int(stopped)} vehicles stopped at the intersection")
            elif stopped > 25:
                result.add("stopped_vehicles", 10, "medium", int(stopped),
                           f"{int(stopped)} vehicles stopped at the intersection")

        wait = _number(intersection, "average_wait_time")
        if wait is not None:
            if wait > 90:
                result.add("long_wait_time", 15, "high", wait,
                           f"Average wait time {wait:g}s")
            elif wait > 60:
                result.add("long_wait_time", 8, "medium", wait,
                           f"Average wait time {wait:g}s")

        if _flag(intersection, "risky_behavior_detected"):
            result.add("risky_behavior", 25, "critical", True,
                       "Risky driver behaviour detected")

        braking = _number(intersection, "sudden_braking_events")
        if braking is not None:
            if braking > 5:
                result.add("sudden_braking", 15, "high", int(braking),
                           f"{int(braking)} sudden braking events")
            elif braking > 2:
                result.add("sudden_braking", 8, "medium", int(braking),
                           f"{int(braking)} sudden braking events")

        collisions = _number(intersection, "collision_count")
        if collisions is not None and collisions > 0:
            result.add("recent_collisions", 40, "critical", int(collisions),
                       f"{int(collisions)} collision(s) recorded")

        wrong_way = _number(intersection, "wrong_way_vehicles")
        if wrong_way is not None and wrong_way > 0:
            result.add("wrong_way_vehicles", 30, "critical", int(wrong_way),
                       f"{int(wrong_way)} wrong-way vehicle(s)")

        compliance = _number(intersection, "traffic_light_compliance_rate")
        if compliance is not None:
            if compliance < 80:
                result.add("low_signal_compliance", 20, "high", compliance,
                           f"Signal compliance at {compliance:g}%")
            elif compliance < 90:
                result.add("low_signal_compliance", 10, "medium", compliance,
                           f"Signal compliance at {compliance:g}%")

        return result

    def _score_environment(self, weather: Any, traffic: Any) -> _CategoryScore:
        result = _CategoryScore("environment")

        conditions = _text(weather, "conditions")
        if conditions == "rain":
            result.add("rain", 20, "medium", conditions, "Rain reduces traction")
        elif conditions in WINTER_CONDITIONS:
            result.add("winter_precipitation", 30, "critical", conditions,
                       f"Winter precipitation ({conditions})")
        elif conditions == "fog":
            result.add("fog", 25, "high", conditions, "Fog reduces sight distance")

        visibility = _text(weather, "visibility") or _text(traffic, "visibility")
        if visibility == "poor":
            result.add("poor_visibility", 20, "high", visibility, "Poor visibility reported")

        temperature = _number(weather, "temperature")
        if temperature is not None:
            if temperature < 0:
                result.add("freezing_temperature", 15, "medium", temperature,
                           f"Freezing temperature ({temperature:g}°C)")
            elif temperature > 35:
                result.add("extreme_heat", 10, "low", temperature,
                           f"Extreme heat ({temperature:g}°C)")

        road = _text(weather, "road_condition")
        if road == "wet":
            result.add("wet_road", 10, "low", road, "Wet road surface")
        elif road in ICY_ROAD_CONDITIONS:
            result.add("icy_road", 25, "critical", road, f"Road surface is {road}")

        return result

    def _score_incidents(self, alerts: Iterable[Any], reference: datetime) -> _CategoryScore:
        result = _CategoryScore("incidents")

        window_start = reference - self.alert_window
        recent = [a for a in self._coerce_alerts(alerts)
                  if window_start <= a.timestamp <= reference]

        count = len(recent)
        if count > 5:
            result.add("recent_alerts", 25, "high", count,
                       f"{count} alerts in the last {self._window_minutes()} minutes")
        elif count > 2:
            result.add("recent_alerts", 15, "medium", count,
                       f"{count} alerts in the last {self._window_minutes()} minutes")

        severe = [a for a in recent if a.severity in SEVERE_ALERT_LEVELS]
        if severe:
            result.add("severe_alert", 20, "high", len(severe),
                       f"{len(severe)} high-severity alert(s) in the window")

        return result

    # ============================================
    # Helpers
    # ============================================

    def _window_minutes(self) -> int:
        return int(self.alert_window.total_seconds() // 60)

    @staticmethod
    def _reference_time(traffic: Any, now: Optional[datetime]) -> datetime:
        reference = now or _value(traffic, "timestamp")
        if not isinstance(reference, datetime):
            reference = datetime.now(timezone.utc)
        if reference.tzinfo is None:
            reference = reference.replace(tzinfo=timezone.utc)
        return reference

    @staticmethod
    def _coerce_alerts(alerts: Iterable[Any]) -> List[TrafficAlert]:
        coerced: List[TrafficAlert] = []
        for alert in alerts or ():
            if isinstance(alert, TrafficAlert):
                coerced.append(alert)
                continue
            try:
                coerced.append(TrafficAlert.model_validate(alert))
            except ValidationError:
                logger.debug("[RISK] Ignoring malformed alert: %r", alert)
        return coerced

