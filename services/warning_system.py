"""
Rule-based traffic warnings.

Warnings live in process memory only. Each analyzer turns one kind of
input (flow segments, incidents, data age) into warning dicts of the form::

    {"level", "title", "message", "location", "timestamp", "type", "severity"}

``process_warnings`` keeps a warning only if no active warning has the
same title and location, and warnings expire 30 minutes after creation.
"""

import enum
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Iterable, List, Optional

import httpx
import logging
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from models.subscription import WarningSubscription

logger = logging.getLogger(__name__)

WARNING_TTL = timedelta(minutes=30)


class WarningLevel(str, enum.Enum):
    CRITICAL = "CRITICAL"
    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"
    INFO = "INFO"

    @property
    def priority(self) -> int:
        return LEVEL_PRIORITY[self]


LEVEL_PRIORITY = {
    WarningLevel.CRITICAL: 1,
    WarningLevel.HIGH: 2,
    WarningLevel.MEDIUM: 3,
    WarningLevel.LOW: 4,
    WarningLevel.INFO: 5,
}

# warning type -> subscription alert type
ALERT_TYPE_FOR_WARNING = {
    "congestion": "congestion",
    "speed": "congestion",
    "predictive": "congestion",
    "gridlock": "severe",
    "incident": "incident",
    "delay": "incident",
}

CONGESTION_FOR_LEVEL = {
    WarningLevel.CRITICAL: "severe",
    WarningLevel.HIGH: "high",
    WarningLevel.MEDIUM: "medium",
    WarningLevel.LOW: "low",
    WarningLevel.INFO: "low",
}


def make_warning(
    level: WarningLevel,
    title: str,
    message: str,
    location: str,
    warning_type: str,
    severity: Any,
    now: Optional[datetime] = None
) -> Dict[str, Any]:
    return {
        "level": level.value,
        "title": title,
        "message": message,
        "location": location,
        "timestamp": (now or datetime.utcnow()).isoformat() + "Z",
        "type": warning_type,
        "severity": severity,
    }


def _warning_time(warning: Dict[str, Any]) -> datetime:
    return datetime.fromisoformat(warning["timestamp"].rstrip("Z"))


class WarningSystem:
    """In-memory warning store plus the analyzers that feed it."""

    def __init__(self, clock: Callable[[], datetime] = datetime.utcnow):
        self._clock = clock
        self.alerts: List[Dict[str, Any]] = []

    # ------------------------------------------------------------------
    # Analyzers
    # ------------------------------------------------------------------

    def analyze_traffic_data(
        self,
        traffic_data: Optional[Dict[str, Any]],
        incidents: Optional[List[Dict[str, Any]]],
        data_age_minutes: float = 0
    ) -> List[Dict[str, Any]]:
        warnings = []
        if traffic_data and traffic_data.get("segments"):
            warnings.extend(self.analyze_traffic_flow(traffic_data["segments"]))
        if incidents:
            warnings.extend(self.analyze_incidents(incidents))
        warnings.extend(self.analyze_system_health(data_age_minutes))
        return warnings

    def analyze_traffic_flow(self, segments: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        if not segments:
            return []

        now = self._clock()
        warnings = []
        levels = [s.get("trafficLevel") for s in segments]
        speeds = [s.get("currentSpeed") or 0 for s in segments]

        severe_count = levels.count("severe")
        high_count = levels.count("high")
        avg_speed = sum(speeds) / len(speeds)

        if severe_count > 3:
            warnings.append(make_warning(
                WarningLevel.CRITICAL, "Severe Traffic Congestion",
                f"{severe_count} road segments experiencing severe congestion",
                "Multiple locations", "congestion", severe_count, now,
            ))

        if high_count > 5:
            warnings.append(make_warning(
                WarningLevel.HIGH, "High Traffic Volume",
                f"{high_count} road segments with heavy traffic",
                "City-wide", "congestion", high_count, now,
            ))

        if avg_speed < 15:
            warnings.append(make_warning(
                WarningLevel.HIGH, "Very Low Average Speed",
                f"City-wide average speed: {avg_speed:.1f} km/h",
                "Nairobi metropolitan", "speed", avg_speed, now,
            ))

        gridlock_segments = sum(1 for speed in speeds if speed < 5)
        if gridlock_segments > 0:
            warnings.append(make_warning(
                WarningLevel.CRITICAL, "Gridlock Risk Detected",
                f"{gridlock_segments} segments at near-standstill speeds",
                "Critical intersections", "gridlock", gridlock_segments, now,
            ))

        return warnings

    def analyze_incidents(self, incidents: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        if not incidents:
            return []

        now = self._clock()
        warnings = []
        severe_incidents = [i for i in incidents if i.get("severity") in ("high", "severe")]
        total_delay = sum(
            (i.get("delayInSeconds") or i.get("delaySeconds") or 0) for i in incidents
        )

        if severe_incidents:
            warnings.append(make_warning(
                WarningLevel.HIGH, "Severe Traffic Incidents",
                f"{len(severe_incidents)} serious incidents reported",
                ", ".join(str(i.get("description") or i.get("location") or "Unknown") for i in severe_incidents),
                "incident", len(severe_incidents), now,
            ))

        if len(incidents) > 5:
            warnings.append(make_warning(
                WarningLevel.MEDIUM, "Multiple Traffic Incidents",
                f"{len(incidents)} total incidents affecting traffic flow",
                "City-wide", "incident", len(incidents), now,
            ))

        if total_delay > 1800:
            warnings.append(make_warning(
                WarningLevel.MEDIUM, "Significant Traffic Delays",
                f"Total delay time: {int(total_delay // 60)} minutes",
                "Affected routes", "delay", total_delay, now,
            ))

        return warnings

    def analyze_system_health(self, data_age_minutes: float) -> List[Dict[str, Any]]:
        now = self._clock()
        warnings = []
        age = int(data_age_minutes or 0)

        if age > 10:
            warnings.append(make_warning(
                WarningLevel.MEDIUM, "Stale Traffic Data",
                f"Traffic data is {age} minutes old",
                "System-wide", "system", age, now,
            ))

        if age > 30:
            warnings.append(make_warning(
                WarningLevel.HIGH, "Data Connection Issues",
                f"No fresh data for {age} minutes",
                "System-wide", "system", age, now,
            ))

        return warnings

    # ------------------------------------------------------------------
    # Store
    # ------------------------------------------------------------------

    def process_warnings(self, warnings: Iterable[Dict[str, Any]]) -> List[Dict[str, Any]]:
        """Add warnings not already active. Returns the ones that were added."""
        self.cleanup_old_warnings()
        new_warnings = []
        for warning in warnings:
            duplicate = any(
                existing["title"] == warning["title"] and existing["location"] == warning["location"]
                for existing in self.alerts
            )
            if duplicate:
                continue
            self.alerts.append(warning)
            new_warnings.append(warning)
            logger.info(f"Traffic warning [{warning['level']}] {warning['title']}: {warning['message']}")

        return new_warnings

    def cleanup_old_warnings(self):
        cutoff = self._clock() - WARNING_TTL
        self.alerts = [alert for alert in self.alerts if _warning_time(alert) > cutoff]

    def get_active_warnings(self) -> List[Dict[str, Any]]:
        return sorted(self.alerts, key=lambda alert: WarningLevel(alert["level"]).priority)

    def get_counts(self) -> Dict[str, int]:
        counts = {level.value: 0 for level in (WarningLevel.CRITICAL, WarningLevel.HIGH, WarningLevel.MEDIUM, WarningLevel.LOW)}
        for alert in self.alerts:
            if alert["level"] in counts:
                counts[alert["level"]] += 1
        return counts

    def clear_all_warnings(self):
        self.alerts = []

    def test_warning(self) -> Dict[str, Any]:
        warning = make_warning(
            WarningLevel.HIGH, "Test Warning",
            "This is a test of the warning system",
            "Test Location", "test", 1, self._clock(),
        )
        self.alerts.append(warning)
        return warning

    # ------------------------------------------------------------------
    # Subscriber notification
    # ------------------------------------------------------------------

    async def notify_subscribers(
        self,
        session: AsyncSession,
        warnings: List[Dict[str, Any]],
        timeout: float = 10.0
    ) -> int:
        """
        POST each warning to every active subscription whose webhook and
        preferences accept it.

        Returns:
            Number of notifications delivered
        """
        if not warnings:
            return 0

        result = await session.execute(
            select(WarningSubscription).where(
                WarningSubscription.active.is_(True),
                WarningSubscription.webhook_url.isnot(None),
            )
        )
        subscriptions = list(result.scalars().all())
        if not subscriptions:
            return 0

        delivered = 0
        async with httpx.AsyncClient(timeout=timeout) as client:
            for warning in warnings:
                alert_type = ALERT_TYPE_FOR_WARNING.get(warning["type"])
                if alert_type is None:
                    continue
                alert_data = self._alert_data(warning)

                for subscription in subscriptions:
                    if not subscription.should_notify(alert_type, alert_data):
                        continue
                    try:
                        response = await client.post(
                            subscription.webhook_url,
                            json={"event": "traffic-warning", "subscriptionId": str(subscription.id), "data": warning},
                        )
                        response.raise_for_status()
                    except httpx.HTTPError as e:
                        logger.warning(f"Webhook delivery failed for subscription {subscription.id}: {e}")
                        continue
                    subscription.record_notification()
                    delivered += 1

        await session.commit()
        return delivered

    @staticmethod
    def _alert_data(warning: Dict[str, Any]) -> Dict[str, Any]:
        level = WarningLevel(warning["level"])
        data = {
            "level": CONGESTION_FOR_LEVEL[level],
            "severity": "severe" if level == WarningLevel.CRITICAL else CONGESTION_FOR_LEVEL[level],
        }
        if warning["type"] == "speed":
            data["currentSpeed"] = warning["severity"]
        return data


# Process-wide instance shared by the API and the scheduler
warning_system = WarningSystem()
