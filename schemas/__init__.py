"""
Pydantic schemas for request validation and response serialization.

Schemas:
    traffic: Request bodies for traffic samples, incidents, warning
             subscriptions and API key registration
    api: Response envelope, error and health models

Request bodies accept camelCase field names and have every string
sanitized of script tags, ``javascript:`` URLs and inline handlers.

Usage:
    from schemas.traffic import IncidentCreate
    from schemas.api import APIResponse, ErrorResponse

Example:
    incident = IncidentCreate(
        location="Thika Road",
        coordinates=[36.8880, -1.2190],
        type="accident",
        severity="high",
        description="Lorry overturned near Roysambu",
    )
    assert incident.coordinates.lat == -1.2190
"""

__all__ = [
    "Coordinates",
    "TrafficDataCreate",
    "IncidentCreate",
    "SubscriptionCreate",
    "ApiKeyCreate",
    "APIResponse",
    "ErrorResponse",
    "HealthResponse",
]
