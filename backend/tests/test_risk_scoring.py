"""
Risk Scoring Tests

Tests for the weighted multi-factor risk scoring engine:
- Category rules and factor audit trail
- Weighting, clamping and level classification
- Alert window handling
- Tolerance of missing and malformed inputs
- Store-backed risk assessment service
"""

import pytest
from datetime import datetime, timedelta, timezone

from roadwatch.database import InMemoryReadingRepository
from roadwatch.exceptions import ConfigurationError
from roadwatch.models import IntersectionReading, SensorReading, TrafficAlert, WeatherState
from roadwatch.risk import DEFAULT_WEIGHTS, RiskAssessmentService, RiskScoringEngine, classify_level


T0 = datetime(2026, 3, 1, 8, 0, tzinfo=timezone.utc)


def make_reading(**fields) -> SensorReading:
    data = {"sensor_id": "S-1", "timestamp": T0, "intersection_id": "INT-001"}
    data.update(fields)
    return SensorReading(**data)


def factor_ids(assessment):
    return [f.factor for f in assessment.factors]


# ============================================
# Weights & Levels
# ============================================

class TestWeights:
    """Test category weights and level thresholds"""

    def test_default_weights_sum_to_one(self):
        assert sum(DEFAULT_WEIGHTS.values()) == pytest.approx(1.0)
        assert DEFAULT_WEIGHTS == {
            "traffic": 0.35,
            "intersection": 0.25,
            "environment": 0.20,
            "incidents": 0.20,
        }

    def test_weights_must_sum_to_one(self):
        with pytest.raises(ConfigurationError):
            RiskScoringEngine(weights={"traffic": 0.5, "intersection": 0.5,
                                       "environment": 0.5, "incidents": 0.5})

    def test_weights_must_cover_all_categories(self):
        with pytest.raises(ConfigurationError):
            RiskScoringEngine(weights={"traffic": 1.0})

    def test_from_config(self):
        engine = RiskScoringEngine.from_config({
            "weights": {"traffic": 0.4, "intersection": 0.2, "environment": 0.2, "incidents": 0.2},
            "alertWindowMinutes": 30,
        })
        assert engine.weights["traffic"] == 0.4
        assert engine.alert_window == timedelta(minutes=30)

    def test_from_empty_config_uses_defaults(self):
        engine = RiskScoringEngine.from_config(None)
        assert engine.weights == DEFAULT_WEIGHTS
        assert engine.alert_window == timedelta(minutes=60)

    @pytest.mark.parametrize("score,level", [
        (0, "low"),
        (29.99, "low"),
        (30, "medium"),
        (31.5, "medium"),
        (59.99, "medium"),
        (60, "high"),
        (79.99, "high"),
        (80, "critical"),
        (100, "critical"),
    ])
    def test_classify_level(self, score, level):
        assert classify_level(score) == level


# ============================================
# Engine
# ============================================

class TestRiskScoringEngine:
    """Test RiskScoringEngine.assess"""

    def setup_method(self):
        self.engine = RiskScoringEngine()

    def test_reading_without_triggers_scores_zero(self):
        """A reading that triggers no rule is low risk with no factors"""
        reading = make_reading(speed=50, density=20, congestion_level="low")
        assessment = self.engine.assess(reading)

        assert assessment.score == 0
        assert assessment.level == "low"
        assert assessment.factors == []

    def test_literal_traffic_fixture(self):
        """speed 5, density 90, congestion high, incident → 31.5 / medium"""
        reading = make_reading(speed=5, density=90, congestion_level="high", incident_detected=True)
        assessment = self.engine.assess(reading)

        assert assessment.breakdown.traffic == 90
        assert assessment.breakdown.intersection == 0
        assert assessment.breakdown.environment == 0
        assert assessment.breakdown.incidents == 0
        assert assessment.score == 31.5
        assert assessment.level == "medium"
        assert factor_ids(assessment) == [
            "low_speed", "high_density", "high_congestion", "active_incident",
        ]

    def test_factor_audit_trail(self):
        reading = make_reading(speed=5)
        factor = self.engine.assess(reading).factors[0]

        assert factor.category == "traffic"
        assert factor.factor == "low_speed"
        assert factor.severity == "high"
        assert factor.value == 5
        assert factor.points == 25
        assert "5" in factor.description

    def test_speed_bands(self):
        assert factor_ids(self.engine.assess(make_reading(speed=15))) == ["reduced_speed"]
        assert factor_ids(self.engine.assess(make_reading(speed=95))) == ["excessive_speed"]
        assert factor_ids(self.engine.assess(make_reading(speed=50))) == []

    def test_near_miss_points_are_capped(self):
        assessment = self.engine.assess(make_reading(near_miss_events=10))
        factor = assessment.factors[0]

        assert factor.factor == "near_miss_events"
        assert factor.points == 25
        assert factor.severity == "high"

    def test_intersection_category(self):
        intersection = IntersectionReading(
            sensor_id="I-1",
            timestamp=T0,
            intersection_id="INT-001",
            stopped_vehicles_count=45,
            collision_count=1,
            traffic_light_compliance_rate=85,
        )
        assessment = self.engine.assess(make_reading(), intersection=intersection)

        assert assessment.breakdown.intersection == 20 + 40 + 10
        assert assessment.score == pytest.approx(70 * 0.25)
        assert "recent_collisions" in factor_ids(assessment)

    def test_environment_from_coordinated_weather(self):
        weather = WeatherState(conditions="Snow", temperature=-5, road_condition="icy", visibility="poor")
        assessment = self.engine.assess(make_reading(coordinated_weather=weather))

        assert factor_ids(assessment) == [
            "winter_precipitation", "poor_visibility", "freezing_temperature", "icy_road",
        ]
        assert assessment.breakdown.environment == 30 + 20 + 15 + 25

    def test_explicit_weather_overrides_reading_weather(self):
        reading = make_reading(coordinated_weather=WeatherState(conditions="fog"))
        assessment = self.engine.assess(reading, weather=WeatherState(conditions="clear"))
        assert assessment.breakdown.environment == 0

    def test_reading_visibility_used_without_weather(self):
        assessment = self.engine.assess(make_reading(visibility="POOR"))
        assert factor_ids(assessment) == ["poor_visibility"]

    def test_score_is_clamped(self):
        """Every category saturated still yields at most 100"""
        engine = RiskScoringEngine(weights={
            "traffic": 1.0, "intersection": 0.0, "environment": 0.0, "incidents": 0.0,
        })
        reading = make_reading(speed=5, density=95, congestion_level="critical",
                               incident_detected=True, near_miss_events=5)
        assessment = engine.assess(reading)

        assert assessment.breakdown.traffic > 100
        assert assessment.score == 100
        assert assessment.level == "critical"

    def test_assessment_is_deterministic(self):
        reading = make_reading(speed=8, density=70, near_miss_events=2,
                               coordinated_weather=WeatherState(conditions="rain"))
        first = self.engine.assess(reading)
        second = self.engine.assess(reading)
        assert first == second


# ============================================
# Alerts
# ============================================

class TestAlertWindow:
    """Test the incidents category and its time window"""

    def setup_method(self):
        self.engine = RiskScoringEngine()

    def _alerts(self, count, minutes_ago=10, severity="low"):
        return [
            TrafficAlert(timestamp=T0 - timedelta(minutes=minutes_ago), alert_id=f"A-{i}",
                         severity=severity, intersection_id="INT-001")
            for i in range(count)
        ]

    def test_recent_alert_counts(self):
        assert self.engine.assess(make_reading(), alerts=self._alerts(2)).breakdown.incidents == 0
        assert self.engine.assess(make_reading(), alerts=self._alerts(3)).breakdown.incidents == 15
        assert self.engine.assess(make_reading(), alerts=self._alerts(6)).breakdown.incidents == 25

    def test_old_alerts_are_ignored(self):
        assessment = self.engine.assess(make_reading(), alerts=self._alerts(6, minutes_ago=90))
        assert assessment.breakdown.incidents == 0

    def test_future_alerts_are_ignored(self):
        assessment = self.engine.assess(make_reading(), alerts=self._alerts(6, minutes_ago=-5))
        assert assessment.breakdown.incidents == 0

    def test_severe_alert(self):
        assessment = self.engine.assess(make_reading(), alerts=self._alerts(1, severity="critical"))
        assert factor_ids(assessment) == ["severe_alert"]
        assert assessment.breakdown.incidents == 20

    def test_window_reference_is_now_when_given(self):
        alerts = self._alerts(3)
        later = T0 + timedelta(hours=2)
        assert self.engine.assess(make_reading(), alerts=alerts, now=later).breakdown.incidents == 0

    def test_alert_dicts_are_accepted_and_malformed_skipped(self):
        alerts = [
            {"timestamp": (T0 - timedelta(minutes=1)).isoformat(), "severity": "high"},
            {"severity": "high"},
            "not-an-alert",
        ]
        assessment = self.engine.assess(make_reading(), alerts=alerts)
        assert factor_ids(assessment) == ["severe_alert"]


# ============================================
# Malformed Inputs
# ============================================

class TestMalformedInputs:
    """The engine adds nothing for missing or malformed fields"""

    def setup_method(self):
        self.engine = RiskScoringEngine()

    def test_dict_inputs_with_bad_values(self):
        traffic = {
            "sensor_id": "S-1",
            "timestamp": T0,
            "speed": "fast",
            "density": None,
            "incident_detected": "yes",
            "near_miss_events": True,
        }
        assessment = self.engine.assess(traffic, intersection={"collision_count": "many"})
        assert assessment.score == 0
        assert assessment.factors == []

    def test_missing_timestamp_still_assesses(self):
        assessment = self.engine.assess({"speed": 5})
        assert assessment.breakdown.traffic == 25
        assert assessment.timestamp.tzinfo is not None


# ============================================
# Risk Assessment Service
# ============================================

class TestRiskAssessmentService:
    """Test store-backed context lookup"""

    def setup_method(self):
        self.repository = InMemoryReadingRepository()
        self.service = RiskAssessmentService(RiskScoringEngine(), self.repository)

    def test_loads_alerts_and_intersection_reading_from_store(self):
        self.repository.add_all([
            TrafficAlert(timestamp=T0 - timedelta(minutes=5), severity="high", intersection_id="INT-001"),
            TrafficAlert(timestamp=T0 - timedelta(minutes=5), severity="high", intersection_id="INT-999"),
            IntersectionReading(sensor_id="I-1", timestamp=T0 - timedelta(minutes=1),
                                intersection_id="INT-001", risky_behavior_detected=True),
        ])
        assessment = self.service.assess_reading(make_reading())

        assert "severe_alert" in factor_ids(assessment)
        assert "risky_behavior" in factor_ids(assessment)
        assert assessment.breakdown.incidents == 20

    def test_explicit_context_is_not_replaced(self):
        self.repository.add(
            TrafficAlert(timestamp=T0 - timedelta(minutes=5), severity="high", intersection_id="INT-001")
        )
        assessment = self.service.assess_reading(make_reading(), alerts=[])
        assert assessment.breakdown.incidents == 0

    def test_reading_without_intersection(self):
        reading = SensorReading(sensor_id="S-9", timestamp=T0, speed=5)
        assessment = self.service.assess_reading(reading)
        assert assessment.breakdown.traffic == 25
