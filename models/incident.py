from sqlalchemy import Column, String, Integer, Float, Boolean, DateTime, Enum, Text, ForeignKey, Index
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship
from datetime import datetime
from typing import Any, Dict, Optional
import uuid

from models.base import (
    Base, IncidentType, IncidentSeverity, IncidentStatus, enum_value, enum_values
)

DEFAULT_DURATION_BY_SEVERITY = {
    IncidentSeverity.LOW: 30,
    IncidentSeverity.MEDIUM: 60,
    IncidentSeverity.HIGH: 120,
    IncidentSeverity.SEVERE: 240,
}


class TrafficIncident(Base):
    """
    Traffic incident reported by a user or imported from the TomTom
    incident feed.

    Feed incidents are deduplicated on (source, external_id).
    """
    __tablename__ = "traffic_incidents"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)

    location = Column(String(200), nullable=False)
    latitude = Column(Float, nullable=False)
    longitude = Column(Float, nullable=False)

    type = Column(
        Enum(IncidentType, name="incident_type", values_callable=enum_values),
        nullable=False,
        default=IncidentType.OTHER,
    )
    severity = Column(
        Enum(IncidentSeverity, name="incident_severity", values_callable=enum_values),
        nullable=False,
        default=IncidentSeverity.MEDIUM,
    )
    description = Column(Text, nullable=True)
    estimated_duration = Column(Integer, nullable=True)  # minutes
    lanes_affected = Column(Integer, nullable=True)
    delay_seconds = Column(Integer, nullable=True, default=0)

    reported_by = Column(String(100), nullable=True)
    contact_info = Column(String(200), nullable=True)
    status = Column(
        Enum(IncidentStatus, name="incident_status", values_callable=enum_values),
        nullable=False,
        default=IncidentStatus.ACTIVE,
    )
    verified = Column(Boolean, nullable=False, default=False)

    traffic_data_id = Column(UUID(as_uuid=True), ForeignKey("traffic_data.id"), nullable=True)
    source = Column(String(50), nullable=False, default="user_report")
    external_id = Column(String(255), nullable=True)

    started_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    resolved_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    traffic_data = relationship("TrafficData")

    __table_args__ = (
        Index("idx_incident_location", "latitude", "longitude"),
        Index("idx_incident_status_severity", "status", "severity"),
        Index("idx_incident_started", "started_at"),
        Index("idx_incident_source_external", "source", "external_id", unique=True),
    )

    def __init__(self, **kwargs):
        if kwargs.get("estimated_duration") is None:
            severity = kwargs.get("severity") or IncidentSeverity.MEDIUM
            kwargs["estimated_duration"] = DEFAULT_DURATION_BY_SEVERITY[IncidentSeverity(severity)]
        super().__init__(**kwargs)

    @property
    def is_active(self) -> bool:
        return self.status == IncidentStatus.ACTIVE

    def duration_minutes(self, now: Optional[datetime] = None) -> Optional[int]:
        if not self.started_at:
            return None
        end = self.resolved_at or now or datetime.utcnow()
        return int((end - self.started_at).total_seconds() // 60)

    def resolve(self):
        self.status = IncidentStatus.RESOLVED
        self.resolved_at = datetime.utcnow()

    def verify(self):
        self.verified = True

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": str(self.id) if self.id else None,
            "location": self.location,
            "coordinates": {"lat": self.latitude, "lng": self.longitude},
            "type": enum_value(self.type),
            "severity": enum_value(self.severity),
            "description": self.description,
            "estimatedDuration": self.estimated_duration,
            "lanesAffected": self.lanes_affected,
            "delaySeconds": self.delay_seconds,
            "reportedBy": self.reported_by,
            "status": enum_value(self.status),
            "verified": self.verified,
            "source": self.source,
            "startedAt": self.started_at.isoformat() if self.started_at else None,
            "resolvedAt": self.resolved_at.isoformat() if self.resolved_at else None,
            "durationMinutes": self.duration_minutes(),
        }
