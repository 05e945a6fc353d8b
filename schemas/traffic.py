"""
Pydantic schemas for traffic, incident, subscription and API key requests
"""

import re
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, validator

from models.base import (
    AlertType, CongestionLevel, IncidentSeverity, IncidentType,
    NotificationFrequency, UsageType, WeatherCondition,
)

NAIROBI_CENTER = {"lat": -1.2921, "lng": 36.8219}

_SCRIPT_TAG = re.compile(r"<script\b[^<]*(?:(?!</script>)<[^<]*)*</script>", re.IGNORECASE)
_JS_PROTOCOL = re.compile(r"javascript:", re.IGNORECASE)
_INLINE_HANDLER = re.compile(r"on\w+\s*=", re.IGNORECASE)


def sanitize_text(value):
    """Strip script tags, javascript: URLs and inline event handlers"""
    if isinstance(value, str):
        value = _SCRIPT_TAG.sub("", value)
        value = _JS_PROTOCOL.sub("", value)
        value = _INLINE_HANDLER.sub("", value)
        return value.strip()
    if isinstance(value, list):
        return [sanitize_text(v) for v in value]
    if isinstance(value, dict):
        return {k: sanitize_text(v) for k, v in value.items()}
    return value


class Coordinates(BaseModel):
    """A WGS84 point. Accepts ``{"lat", "lng"}`` or a ``[lng, lat]`` pair."""
    lat: float = Field(..., ge=-90, le=90)
    lng: float = Field(..., ge=-180, le=180)

    @classmethod
    def parse(cls, value: Any) -> Any:
        if isinstance(value, (list, tuple)):
            if len(value) != 2:
                raise ValueError("coordinates must contain exactly two numbers [lng, lat]")
            return {"lat": value[1], "lng": value[0]}
        return value


class RequestModel(BaseModel):
    """Base for request bodies: camelCase aliases and sanitized strings"""

    @validator("*", pre=True)
    def sanitize_strings(cls, v):
        return sanitize_text(v)

    class Config:
        populate_by_name = True
        use_enum_values = True
        extra = "ignore"


# ============================================================================
# Traffic data
# ============================================================================

class TrafficDataCreate(RequestModel):
    """User-reported traffic sample"""
    location: str = Field(..., min_length=1, max_length=200)
    coordinates: Coordinates = Field(default_factory=lambda: Coordinates(**NAIROBI_CENTER))
    vehicle_count: int = Field(..., ge=0, le=10000, alias="vehicleCount")
    timestamp: datetime
    weather_condition: Optional[WeatherCondition] = Field(None, alias="weatherCondition")
    speed: Optional[float] = Field(None, ge=0, le=200)
    congestion_level: Optional[CongestionLevel] = Field(None, alias="congestionLevel")

    @validator("coordinates", pre=True)
    def parse_coordinates(cls, v):
        return Coordinates.parse(v)

    class Config:
        json_schema_extra = {
            "example": {
                "location": "Uhuru Highway",
                "coordinates": {"lat": -1.2921, "lng": 36.8219},
                "vehicleCount": 120,
                "timestamp": "2024-01-15T07:45:00Z",
                "speed": 18.5,
                "congestionLevel": "high"
            }
        }


# ============================================================================
# Incidents
# ============================================================================

class IncidentCreate(RequestModel):
    """User-reported incident"""
    location: str = Field(..., min_length=1, max_length=200)
    coordinates: Coordinates
    type: IncidentType
    severity: IncidentSeverity
    description: str = Field(..., min_length=5, max_length=500)
    estimated_duration: Optional[int] = Field(None, ge=0, le=1440, alias="estimatedDuration")
    lanes_affected: Optional[int] = Field(None, ge=1, le=10, alias="lanesAffected")
    reported_by: Optional[str] = Field(None, min_length=1, max_length=100, alias="reportedBy")
    contact_info: Optional[str] = Field(None, min_length=5, max_length=200, alias="contactInfo")

    @validator("coordinates", pre=True)
    def parse_coordinates(cls, v):
        return Coordinates.parse(v)

    class Config:
        json_schema_extra = {
            "example": {
                "location": "Mombasa Road near Nyayo Stadium",
                "coordinates": [36.8250, -1.3050],
                "type": "accident",
                "severity": "high",
                "description": "Two vehicles blocking the right lane",
                "lanesAffected": 1
            }
        }


# ============================================================================
# Warning subscriptions
# ============================================================================

class SubscriptionThreshold(BaseModel):
    speed: Optional[float] = Field(None, ge=0, le=200)
    congestion_level: Optional[str] = Field(None, alias="congestionLevel")
    incident_severity: Optional[str] = Field(None, alias="incidentSeverity")

    @validator("congestion_level")
    def validate_congestion_level(cls, v):
        if v is not None and v not in ("medium", "high", "severe"):
            raise ValueError("congestionLevel must be one of: medium, high, severe")
        return v

    @validator("incident_severity")
    def validate_incident_severity(cls, v):
        if v is not None and v not in ("high", "severe"):
            raise ValueError("incidentSeverity must be one of: high, severe")
        return v

    def to_storage(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)

    class Config:
        populate_by_name = True


class SubscriptionCreate(RequestModel):
    location: str = Field(..., min_length=1, max_length=200)
    coordinates: Coordinates = Field(default_factory=lambda: Coordinates(**NAIROBI_CENTER))
    radius: int = Field(5000, ge=100, le=50000)
    alert_types: List[AlertType] = Field(
        default_factory=lambda: [AlertType.CONGESTION, AlertType.INCIDENT, AlertType.SEVERE],
        alias="alertTypes",
    )
    threshold: Optional[SubscriptionThreshold] = None
    webhook_url: Optional[str] = Field(None, max_length=2048, alias="webhookUrl")
    email_notifications: bool = Field(False, alias="emailNotifications")
    sms_notifications: bool = Field(False, alias="smsNotifications")
    notification_frequency: NotificationFrequency = Field(
        NotificationFrequency.IMMEDIATE, alias="notificationFrequency"
    )

    @validator("coordinates", pre=True)
    def parse_coordinates(cls, v):
        return Coordinates.parse(v)

    @validator("webhook_url")
    def validate_webhook_url(cls, v):
        if v and not v.startswith(("http://", "https://")):
            raise ValueError("webhookUrl must be an http(s) URL")
        return v


# ============================================================================
# API keys
# ============================================================================

class ApiKeyCreate(RequestModel):
    application_name: str = Field(..., min_length=3, max_length=100, alias="applicationName")
    contact_email: str = Field(..., max_length=255, alias="contactEmail")
    usage_type: UsageType = Field(..., alias="usageType")
    expected_requests: int = Field(..., ge=100, le=1000000, alias="expectedRequests")
    description: Optional[str] = Field(None, min_length=10, max_length=500)

    @validator("contact_email")
    def validate_email(cls, v):
        if not re.match(r"^[^@\s]+@[^@\s]+\.[^@\s]+$", v):
            raise ValueError("contactEmail must be a valid email address")
        return v.lower()

    @validator("usage_type")
    def reject_internal(cls, v):
        if v in (UsageType.INTERNAL, UsageType.INTERNAL.value):
            raise ValueError("usageType must be one of: commercial, non-commercial, research")
        return v
