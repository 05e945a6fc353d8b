"""
SQLAlchemy ORM models for database tables.

Models:
    base: Base declarative class and shared enums
    traffic_data: Traffic samples from the TomTom feed and user reports
    incident: Traffic incidents with severity and lifecycle status
    api_key: Hashed client API keys with usage accounting
    subscription: Warning subscriptions with notification throttling
    system_metrics: Application metrics time series

Coordinates are stored as plain latitude/longitude columns and exposed
as ``{"lat": ..., "lng": ...}`` by each model's ``to_dict()``.

Usage:
    from models import TrafficData, TrafficIncident
    from models.base import CongestionLevel, IncidentSeverity

Example:
    sample = TrafficData(
        location="Uhuru Highway",
        latitude=-1.2921,
        longitude=36.8219,
        current_speed=22.0,
        free_flow_speed=60.0,
    )
    session.add(sample)
    await session.commit()
"""

from models.base import Base
from models.traffic_data import TrafficData
from models.incident import TrafficIncident
from models.api_key import ApiKey
from models.subscription import WarningSubscription
from models.system_metrics import SystemMetric

__all__ = [
    "Base",
    "TrafficData",
    "TrafficIncident",
    "ApiKey",
    "WarningSubscription",
    "SystemMetric",
]
