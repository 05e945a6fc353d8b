from sqlalchemy import Column, String, Integer, Float, Boolean, DateTime, Enum, ForeignKey, Index
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import relationship
from datetime import datetime, timedelta
from typing import Any, Dict, Optional
import uuid

from models.base import Base, AlertType, NotificationFrequency, enum_value, enum_values

DEFAULT_ALERT_TYPES = [AlertType.CONGESTION.value, AlertType.INCIDENT.value, AlertType.SEVERE.value]

MIN_NOTIFICATION_INTERVAL = {
    NotificationFrequency.HOURLY: timedelta(hours=1),
    NotificationFrequency.DAILY: timedelta(days=1),
}


class WarningSubscription(Base):
    """
    A client's request to be notified about warnings near a location.

    ``api_key_id`` is empty for subscriptions created with a statically
    configured key, which has no database row.
    """
    __tablename__ = "warning_subscriptions"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    api_key_id = Column(UUID(as_uuid=True), ForeignKey("api_keys.id"), nullable=True, index=True)

    location = Column(String(200), nullable=False)
    latitude = Column(Float, nullable=False)
    longitude = Column(Float, nullable=False)
    radius = Column(Integer, nullable=False, default=5000)  # meters

    alert_types = Column(JSONB, nullable=False, default=lambda: list(DEFAULT_ALERT_TYPES))
    threshold = Column(JSONB, nullable=True)

    webhook_url = Column(String(2048), nullable=True)
    email_notifications = Column(Boolean, nullable=False, default=False)
    sms_notifications = Column(Boolean, nullable=False, default=False)
    notification_frequency = Column(
        Enum(NotificationFrequency, name="notification_frequency", values_callable=enum_values),
        nullable=False,
        default=NotificationFrequency.IMMEDIATE,
    )

    active = Column(Boolean, nullable=False, default=True, index=True)
    last_notification_at = Column(DateTime, nullable=True)
    notification_count = Column(Integer, nullable=False, default=0)

    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    api_key = relationship("ApiKey")

    __table_args__ = (
        Index("idx_subscription_location", "latitude", "longitude"),
    )

    def __init__(self, **kwargs):
        if not isinstance(kwargs.get("alert_types"), list):
            kwargs["alert_types"] = list(DEFAULT_ALERT_TYPES)
        kwargs.setdefault("active", True)
        kwargs.setdefault("notification_count", 0)
        kwargs.setdefault("notification_frequency", NotificationFrequency.IMMEDIATE)
        super().__init__(**kwargs)

    def should_notify(self, alert_type: str, alert_data: Dict[str, Any], now: Optional[datetime] = None) -> bool:
        """Decide whether an alert of ``alert_type`` should reach this subscriber"""
        if not self.active:
            return False

        if enum_value(alert_type) not in (self.alert_types or []):
            return False

        frequency = NotificationFrequency(enum_value(self.notification_frequency))
        if frequency != NotificationFrequency.IMMEDIATE and self.last_notification_at:
            now = now or datetime.utcnow()
            if now - self.last_notification_at < MIN_NOTIFICATION_INTERVAL[frequency]:
                return False

        threshold = self.threshold or {}
        alert_type = enum_value(alert_type)

        if alert_type == AlertType.CONGESTION.value and threshold.get("congestionLevel"):
            wanted = threshold["congestionLevel"]
            level = alert_data.get("level")
            return level == wanted or (level == "severe" and wanted == "high")

        if alert_type == AlertType.INCIDENT.value and threshold.get("incidentSeverity"):
            wanted = threshold["incidentSeverity"]
            severity = alert_data.get("severity")
            return severity == wanted or (severity == "severe" and wanted == "high")

        if threshold.get("speed") and alert_data.get("currentSpeed"):
            return alert_data["currentSpeed"] <= threshold["speed"]

        return True

    def record_notification(self):
        self.notification_count = (self.notification_count or 0) + 1
        self.last_notification_at = datetime.utcnow()

    def activate(self):
        if not self.active:
            self.notification_count = 0
            self.last_notification_at = None
        self.active = True

    def deactivate(self):
        self.active = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": str(self.id) if self.id else None,
            "location": self.location,
            "coordinates": {"lat": self.latitude, "lng": self.longitude},
            "radius": self.radius,
            "alertTypes": list(self.alert_types or []),
            "threshold": self.threshold,
            "webhookUrl": self.webhook_url,
            "emailNotifications": self.email_notifications,
            "smsNotifications": self.sms_notifications,
            "notificationFrequency": enum_value(self.notification_frequency),
            "active": self.active,
            "notificationCount": self.notification_count,
            "lastNotificationAt": self.last_notification_at.isoformat() if self.last_notification_at else None,
        }
