"""
Heuristic short-term traffic predictions.

History is a list of snapshots collected every few minutes and kept for
seven days in memory. Each model looks for history points within an hour
of the target hour on the same weekday and derives its estimate from
those, falling back to a low-confidence default when there are none.
Predictions are produced for 15, 30, 45 and 60 minutes ahead.
"""

from collections import Counter
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional
from zoneinfo import ZoneInfo

import logging

from core.config import settings
from services.warning_system import WarningLevel, WarningSystem, make_warning, warning_system

logger = logging.getLogger(__name__)

HISTORY_RETENTION = timedelta(days=7)
MIN_HISTORY_POINTS = 10
HORIZONS_MINUTES = (15, 30, 45, 60)
CONGESTION_LEVELS = ("low", "medium", "high", "severe")
CONGESTION_RISK = {"low": 0.2, "medium": 0.4, "high": 0.7, "severe": 0.9}
RISK_SCORE = {"LOW": 1, "MEDIUM": 2, "HIGH": 3, "CRITICAL": 4}
MONDAY, FRIDAY = 0, 4


def is_rush_hour(hour: int) -> bool:
    return 7 <= hour <= 9 or 17 <= hour <= 19


def _similar(history: List[Dict[str, Any]], target_hour: int, day_of_week: int) -> List[Dict[str, Any]]:
    return [
        point for point in history
        if abs(point["hour"] - target_hour) <= 1 and point["dayOfWeek"] == day_of_week
    ]


def _confidence(sample_size: int) -> float:
    return min(0.9, sample_size / 20)


class CongestionModel:
    """Most frequent congestion level among similar history points."""

    def predict(self, conditions: Dict[str, Any], target_hour: int, history: List[Dict[str, Any]]) -> Dict[str, Any]:
        similar = _similar(history, target_hour, conditions["dayOfWeek"])
        if not similar:
            return {"level": "medium", "confidence": 0.3}

        counts = Counter(p["congestionLevel"] for p in similar if p["congestionLevel"] in CONGESTION_LEVELS)
        max_count = max(counts.values(), default=0)
        # ties go to the lowest level
        level = next(level for level in CONGESTION_LEVELS if counts.get(level, 0) == max_count)
        return {"level": level, "confidence": _confidence(len(similar))}


class SpeedModel:
    """Mean speed of similar history points, nudged by the recent trend."""

    def predict(self, conditions: Dict[str, Any], target_hour: int, history: List[Dict[str, Any]]) -> Dict[str, Any]:
        similar = _similar(history, target_hour, conditions["dayOfWeek"])
        if not similar:
            return {"speed": conditions["averageSpeed"], "confidence": 0.3}

        speed = sum(p["averageSpeed"] for p in similar) / len(similar)
        if conditions["recentTrend"] == "deteriorating":
            speed *= 0.9
        elif conditions["recentTrend"] == "improving":
            speed *= 1.1

        return {"speed": round(speed), "confidence": _confidence(len(similar))}


class IncidentModel:
    """Incident probability from the historical incident count."""

    def predict(self, conditions: Dict[str, Any], target_hour: int, history: List[Dict[str, Any]]) -> Dict[str, Any]:
        similar = _similar(history, target_hour, conditions["dayOfWeek"])
        if not similar:
            return {"probability": 0.1, "confidence": 0.3}

        avg_incidents = sum(p["incidentCount"] for p in similar) / len(similar)
        probability = min(0.8, avg_incidents * 0.1)
        if is_rush_hour(target_hour):
            probability *= 1.5
        if conditions["incidentCount"] > 2:
            probability *= 1.2

        return {"probability": min(0.9, probability), "confidence": _confidence(len(similar))}


def calculate_average_speed(segments: List[Dict[str, Any]]) -> int:
    if not segments:
        return 0
    return round(sum(s.get("currentSpeed") or 0 for s in segments) / len(segments))


def calculate_overall_congestion(segments: List[Dict[str, Any]]) -> str:
    if not segments:
        return "low"
    counts = Counter(s.get("trafficLevel") for s in segments)
    total = len(segments)
    if counts["severe"] / total > 0.3:
        return "severe"
    if counts["high"] / total > 0.4:
        return "high"
    if counts["medium"] / total > 0.5:
        return "medium"
    return "low"


def calculate_overall_risk(congestion: Dict[str, Any], incident: Dict[str, Any]) -> str:
    combined = CONGESTION_RISK.get(congestion["level"], 0.3) * 0.7 + incident["probability"] * 0.3
    if combined > 0.8:
        return "CRITICAL"
    if combined > 0.6:
        return "HIGH"
    if combined > 0.4:
        return "MEDIUM"
    return "LOW"


def _half_averages(values: List[float]):
    middle = len(values) // 2
    first, second = values[:middle], values[middle:]
    return sum(first) / len(first), sum(second) / len(second)


class PredictiveWarningSystem:
    """
    Collects history snapshots and turns them into predictions.

    Args:
        warning_system: Receives "Predictive Traffic Alert" warnings for
            HIGH and CRITICAL risk predictions
        clock: Returns the current UTC time; injectable for tests
    """

    def __init__(
        self,
        warning_system: Optional[WarningSystem] = None,
        clock: Callable[[], datetime] = datetime.utcnow
    ):
        self.warning_system = warning_system
        self._clock = clock
        self.tz = ZoneInfo(settings.TIMEZONE)
        self.historical_data: List[Dict[str, Any]] = []
        self.predictions: List[Dict[str, Any]] = []
        # Warnings raised by the most recent update, for the caller to deliver
        self.latest_warnings: List[Dict[str, Any]] = []
        self.models = {
            "congestion": CongestionModel(),
            "speed": SpeedModel(),
            "incident": IncidentModel(),
        }

    def _local(self, moment: datetime) -> datetime:
        return moment.replace(tzinfo=timezone.utc).astimezone(self.tz)

    def store_historical_data(self, traffic_data: Dict[str, Any], incidents: List[Dict[str, Any]]) -> Dict[str, Any]:
        now = self._clock()
        local = self._local(now)
        segments = (traffic_data or {}).get("segments") or []
        incidents = incidents or []

        point = {
            "timestamp": now,
            "trafficSegments": segments,
            "incidentCount": len(incidents),
            "averageSpeed": calculate_average_speed(segments),
            "congestionLevel": calculate_overall_congestion(segments),
            "hour": local.hour,
            "dayOfWeek": local.weekday(),
            "weather": "clear",
        }
        self.historical_data.append(point)

        cutoff = now - HISTORY_RETENTION
        self.historical_data = [p for p in self.historical_data if p["timestamp"] > cutoff]
        return point

    def calculate_recent_trend(self) -> str:
        recent = self.historical_data[-6:]
        if len(recent) < 3:
            return "stable"

        first_avg, second_avg = _half_averages([p["averageSpeed"] for p in recent])
        if first_avg == 0:
            return "stable"

        change = (second_avg - first_avg) / first_avg
        if change < -0.2:
            return "deteriorating"
        if change > 0.2:
            return "improving"
        return "stable"

    def get_current_conditions(self) -> Dict[str, Any]:
        latest = self.historical_data[-1]
        local = self._local(self._clock())
        return {
            "timestamp": latest["timestamp"],
            "averageSpeed": latest["averageSpeed"],
            "congestionLevel": latest["congestionLevel"],
            "incidentCount": latest["incidentCount"],
            "hour": local.hour,
            "dayOfWeek": local.weekday(),
            "recentTrend": self.calculate_recent_trend(),
        }

    def identify_risk_factors(self, conditions: Dict[str, Any], congestion: Dict[str, Any]) -> List[str]:
        factors = []
        if 7 <= conditions["hour"] <= 9:
            factors.append("Morning rush hour")
        if 17 <= conditions["hour"] <= 19:
            factors.append("Evening rush hour")
        if conditions["recentTrend"] == "deteriorating":
            factors.append("Deteriorating traffic conditions")
        if conditions["incidentCount"] > 2:
            factors.append("Multiple active incidents")
        if congestion["confidence"] < 0.6:
            factors.append("Low prediction confidence")
        if conditions["dayOfWeek"] in (MONDAY, FRIDAY):
            factors.append("High traffic day")
        return factors

    def generate_predictions(self, conditions: Dict[str, Any]) -> List[Dict[str, Any]]:
        now = self._clock()
        predictions = []
        for minutes_ahead in HORIZONS_MINUTES:
            target = now + timedelta(minutes=minutes_ahead)
            hour = self._local(target).hour

            congestion = self.models["congestion"].predict(conditions, hour, self.historical_data)
            speed = self.models["speed"].predict(conditions, hour, self.historical_data)
            incident = self.models["incident"].predict(conditions, hour, self.historical_data)

            predictions.append({
                "timestamp": target.isoformat() + "Z",
                "minutesAhead": minutes_ahead,
                "congestionLevel": congestion["level"],
                "confidence": congestion["confidence"],
                "predictedSpeed": speed["speed"],
                "incidentProbability": incident["probability"],
                "riskLevel": calculate_overall_risk(congestion, incident),
                "factors": self.identify_risk_factors(conditions, congestion),
            })
        return predictions

    def update_predictions(self) -> List[Dict[str, Any]]:
        """Regenerate predictions. No-op until enough history exists."""
        self.latest_warnings = []
        if len(self.historical_data) < MIN_HISTORY_POINTS:
            return self.predictions

        self.predictions = self.generate_predictions(self.get_current_conditions())
        self.latest_warnings = self.process_predictive_warnings(self.predictions)
        return self.predictions

    def process_predictive_warnings(self, predictions: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        if self.warning_system is None:
            return []

        added = []
        for prediction in predictions:
            if prediction["riskLevel"] not in ("CRITICAL", "HIGH"):
                continue
            level = WarningLevel.HIGH if prediction["riskLevel"] == "CRITICAL" else WarningLevel.MEDIUM
            warning = make_warning(
                level,
                "Predictive Traffic Alert",
                f"{prediction['riskLevel']} traffic conditions expected in {prediction['minutesAhead']} minutes",
                "City-wide forecast",
                "predictive",
                prediction["riskLevel"],
                self._clock(),
            )
            warning["predictionTime"] = prediction["timestamp"]
            warning["factors"] = prediction["factors"]
            warning["confidence"] = round(prediction["confidence"] * 100)
            added.extend(self.warning_system.process_warnings([warning]))
        return added

    def calculate_risk_trend(self) -> str:
        if len(self.predictions) < 2:
            return "stable"
        first_avg, second_avg = _half_averages([RISK_SCORE.get(p["riskLevel"], 2) for p in self.predictions])
        if second_avg > first_avg + 0.5:
            return "increasing"
        if second_avg < first_avg - 0.5:
            return "decreasing"
        return "stable"

    def get_prediction_dashboard(self) -> Dict[str, Any]:
        if not self.predictions:
            return {
                "status": "Insufficient data for predictions",
                "message": "Collecting historical data...",
                "predictions": [],
                "dataPoints": len(self.historical_data),
            }
        return {
            "status": "Predictive system active",
            "nextPrediction": self.predictions[0],
            "riskTrend": self.calculate_risk_trend(),
            "allPredictions": self.predictions,
            "dataPoints": len(self.historical_data),
            "lastUpdate": self._clock().isoformat() + "Z",
        }


# Process-wide instance shared by the API and the scheduler
predictive_system = PredictiveWarningSystem(warning_system)
