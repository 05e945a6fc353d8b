"""
Unit tests for the heuristic prediction models and predictive warnings
"""

from datetime import timedelta

import pytest

from services.prediction import (
    CongestionModel,
    IncidentModel,
    PredictiveWarningSystem,
    SpeedModel,
    calculate_average_speed,
    calculate_overall_congestion,
    calculate_overall_risk,
    is_rush_hour,
)
from services.warning_system import WarningSystem


class FakeClock:
    def __init__(self, now):
        self.now = now

    def __call__(self):
        return self.now


@pytest.fixture
def clock(fixed_now):
    return FakeClock(fixed_now)


@pytest.fixture
def warnings(clock):
    return WarningSystem(clock=clock)


@pytest.fixture
def predictor(warnings, clock):
    return PredictiveWarningSystem(warnings, clock=clock)


def _snapshot(level, speed, count=4):
    return {"segments": [{"trafficLevel": level, "currentSpeed": speed} for _ in range(count)]}


def _point(hour=8, day=0, level="high", speed=20, incidents=1):
    return {"hour": hour, "dayOfWeek": day, "congestionLevel": level, "averageSpeed": speed, "incidentCount": incidents}


def _conditions(**overrides):
    conditions = {
        "hour": 8, "dayOfWeek": 0, "averageSpeed": 35, "congestionLevel": "medium",
        "incidentCount": 0, "recentTrend": "stable",
    }
    conditions.update(overrides)
    return conditions


class TestHelpers:
    def test_rush_hours(self):
        assert [h for h in range(24) if is_rush_hour(h)] == [7, 8, 9, 17, 18, 19]

    def test_average_speed(self):
        assert calculate_average_speed([]) == 0
        assert calculate_average_speed([{"currentSpeed": 10}, {"currentSpeed": 25}]) == 18

    @pytest.mark.parametrize("levels,expected", [
        (["severe", "severe", "low", "low", "low"], "severe"),
        (["high", "high", "high", "low", "low"], "high"),
        (["medium", "medium", "medium", "low", "low"], "medium"),
        (["medium", "medium", "low", "low", "low"], "low"),
        ([], "low"),
    ])
    def test_overall_congestion(self, levels, expected):
        assert calculate_overall_congestion([{"trafficLevel": level} for level in levels]) == expected

    @pytest.mark.parametrize("level,probability,expected", [
        ("severe", 0.9, "CRITICAL"),
        ("severe", 0.5, "HIGH"),
        ("high", 0.1, "MEDIUM"),
        ("low", 0.3, "LOW"),
    ])
    def test_overall_risk(self, level, probability, expected):
        assert calculate_overall_risk({"level": level}, {"probability": probability}) == expected


class TestModels:
    def test_defaults_without_similar_history(self):
        history = [_point(hour=14), _point(day=3)]

        assert CongestionModel().predict(_conditions(), 8, history) == {"level": "medium", "confidence": 0.3}
        assert SpeedModel().predict(_conditions(), 8, history) == {"speed": 35, "confidence": 0.3}
        assert IncidentModel().predict(_conditions(), 8, history) == {"probability": 0.1, "confidence": 0.3}

    def test_congestion_takes_most_common_level(self):
        history = [_point(level="high"), _point(hour=9, level="high"), _point(hour=7, level="severe")]

        assert CongestionModel().predict(_conditions(), 8, history) == {"level": "high", "confidence": 0.15}

    def test_congestion_tie_goes_to_lower_level(self):
        history = [_point(level="severe"), _point(level="medium")]

        assert CongestionModel().predict(_conditions(), 8, history)["level"] == "medium"

    @pytest.mark.parametrize("trend,expected", [("stable", 30), ("deteriorating", 27), ("improving", 33)])
    def test_speed_trend_adjustment(self, trend, expected):
        history = [_point(speed=20), _point(speed=40)]

        assert SpeedModel().predict(_conditions(recentTrend=trend), 8, history)["speed"] == expected

    def test_incident_probability_in_rush_hour(self):
        history = [_point(incidents=2), _point(incidents=4)]

        result = IncidentModel().predict(_conditions(incidentCount=3), 8, history)

        # 0.3 * 1.5 rush hour * 1.2 active incidents
        assert result["probability"] == pytest.approx(0.54)

    def test_confidence_is_capped(self):
        history = [_point() for _ in range(40)]

        assert CongestionModel().predict(_conditions(), 8, history)["confidence"] == 0.9


class TestPredictiveWarningSystem:
    def test_history_point_uses_nairobi_time(self, predictor):
        point = predictor.store_historical_data(_snapshot("high", 20), [{"id": 1}])

        assert point["hour"] == 8
        assert point["dayOfWeek"] == 0
        assert point["congestionLevel"] == "high"
        assert point["averageSpeed"] == 20
        assert point["incidentCount"] == 1

    def test_history_older_than_a_week_is_dropped(self, predictor, clock):
        predictor.store_historical_data(_snapshot("low", 50), [])
        clock.now += timedelta(days=7, minutes=1)

        predictor.store_historical_data(_snapshot("low", 50), [])

        assert len(predictor.historical_data) == 1

    def test_recent_trend(self, predictor):
        assert predictor.calculate_recent_trend() == "stable"

        for speed in (60, 60, 60, 30, 30, 30):
            predictor.store_historical_data(_snapshot("medium", speed), [])
        assert predictor.calculate_recent_trend() == "deteriorating"

        for speed in (60, 60, 60):
            predictor.store_historical_data(_snapshot("medium", speed), [])
        assert predictor.calculate_recent_trend() == "improving"

    def test_update_is_a_noop_with_little_history(self, predictor):
        for _ in range(9):
            predictor.store_historical_data(_snapshot("severe", 10), [])

        assert predictor.update_predictions() == []
        assert predictor.get_prediction_dashboard()["status"] == "Insufficient data for predictions"
        assert predictor.get_prediction_dashboard()["dataPoints"] == 9

    def test_predictions_for_each_horizon(self, predictor):
        for _ in range(10):
            predictor.store_historical_data(_snapshot("severe", 10), [{}, {}, {}])

        predictions = predictor.update_predictions()

        assert [p["minutesAhead"] for p in predictions] == [15, 30, 45, 60]
        first = predictions[0]
        assert first["congestionLevel"] == "severe"
        assert first["confidence"] == 0.5
        assert first["predictedSpeed"] == 10
        assert first["riskLevel"] == "HIGH"
        assert first["timestamp"] == "2024-01-15T05:15:00Z"
        assert "Morning rush hour" in first["factors"]
        assert "High traffic day" in first["factors"]
        assert "Multiple active incidents" in first["factors"]
        assert "Low prediction confidence" in first["factors"]

    def test_high_risk_raises_one_predictive_warning(self, predictor, warnings):
        for _ in range(10):
            predictor.store_historical_data(_snapshot("severe", 10), [{}] * 8)

        predictor.update_predictions()

        active = warnings.get_active_warnings()
        assert len(active) == 1
        assert active[0]["title"] == "Predictive Traffic Alert"
        assert active[0]["level"] == "HIGH"
        assert active[0]["type"] == "predictive"
        assert active[0]["confidence"] == 50
        assert active[0]["message"] == "CRITICAL traffic conditions expected in 15 minutes"
        assert predictor.latest_warnings == active

    def test_low_risk_raises_nothing(self, predictor, warnings):
        for _ in range(10):
            predictor.store_historical_data(_snapshot("low", 60), [])

        predictor.update_predictions()

        assert warnings.get_active_warnings() == []
        assert predictor.latest_warnings == []

    def test_dashboard(self, predictor):
        for _ in range(10):
            predictor.store_historical_data(_snapshot("severe", 10), [{}, {}, {}])
        predictor.update_predictions()

        dashboard = predictor.get_prediction_dashboard()

        assert dashboard["status"] == "Predictive system active"
        assert dashboard["nextPrediction"]["minutesAhead"] == 15
        assert len(dashboard["allPredictions"]) == 4
        assert dashboard["riskTrend"] == "stable"
        assert dashboard["dataPoints"] == 10
