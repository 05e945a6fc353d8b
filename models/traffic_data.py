from sqlalchemy import Column, String, Integer, Float, DateTime, Enum, Index
from sqlalchemy.dialects.postgresql import UUID
from datetime import datetime
from typing import Any, Dict, Optional
import uuid

from models.base import (
    Base, CongestionLevel, WeatherCondition, RoadType, enum_value, enum_values
)


def congestion_from_speeds(current_speed: Optional[float], free_flow_speed: Optional[float]) -> CongestionLevel:
    """Bucket the current/free-flow speed ratio"""
    if current_speed is None or not free_flow_speed or free_flow_speed <= 0:
        return CongestionLevel.MEDIUM
    ratio = current_speed / free_flow_speed
    if ratio > 0.8:
        return CongestionLevel.LOW
    if ratio > 0.5:
        return CongestionLevel.MEDIUM
    if ratio > 0.3:
        return CongestionLevel.HIGH
    return CongestionLevel.SEVERE


class TrafficData(Base):
    """
    A single traffic sample, either from the TomTom flow feed or reported
    by a client. Feed samples carry no vehicle count.
    """
    __tablename__ = "traffic_data"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)

    location = Column(String(200), nullable=False)
    latitude = Column(Float, nullable=False)
    longitude = Column(Float, nullable=False)

    vehicle_count = Column(Integer, nullable=True)
    current_speed = Column(Float, nullable=True)
    free_flow_speed = Column(Float, nullable=True)
    travel_time = Column(Integer, nullable=True)
    free_flow_travel_time = Column(Integer, nullable=True)

    congestion_level = Column(
        Enum(CongestionLevel, name="congestion_level", values_callable=enum_values),
        nullable=False,
        default=CongestionLevel.MEDIUM,
    )
    weather_condition = Column(
        Enum(WeatherCondition, name="weather_condition", values_callable=enum_values),
        nullable=False,
        default=WeatherCondition.CLEAR,
    )
    road_type = Column(
        Enum(RoadType, name="road_type", values_callable=enum_values),
        nullable=True,
    )
    lanes = Column(Integer, nullable=True)
    confidence = Column(Float, nullable=True, default=0.8)
    data_source = Column(String(50), nullable=False, default="tomtom")

    recorded_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        Index("idx_traffic_data_location", "latitude", "longitude"),
        Index("idx_traffic_data_recorded", "recorded_at"),
        Index("idx_traffic_data_congestion", "congestion_level"),
        Index("idx_traffic_data_source", "data_source"),
    )

    def __init__(self, **kwargs):
        if kwargs.get("congestion_level") is None:
            kwargs["congestion_level"] = congestion_from_speeds(
                kwargs.get("current_speed"), kwargs.get("free_flow_speed")
            )
        super().__init__(**kwargs)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": str(self.id) if self.id else None,
            "location": self.location,
            "coordinates": {"lat": self.latitude, "lng": self.longitude},
            "vehicleCount": self.vehicle_count,
            "currentSpeed": self.current_speed,
            "freeFlowSpeed": self.free_flow_speed,
            "travelTime": self.travel_time,
            "freeFlowTravelTime": self.free_flow_travel_time,
            "congestionLevel": enum_value(self.congestion_level),
            "weatherCondition": enum_value(self.weather_condition),
            "roadType": enum_value(self.road_type),
            "lanes": self.lanes,
            "confidence": self.confidence,
            "dataSource": self.data_source,
            "recordedAt": self.recorded_at.isoformat() if self.recorded_at else None,
        }
