"""
Pydantic schemas for API response envelopes
"""

from pydantic import BaseModel, Field
from typing import Optional, List, Dict, Any, Generic, TypeVar
from datetime import datetime

T = TypeVar("T")


def utc_timestamp() -> str:
    return datetime.utcnow().isoformat() + "Z"


class APIResponse(BaseModel, Generic[T]):
    """Success envelope shared by every JSON endpoint"""
    success: bool = True
    data: T
    timestamp: str = Field(default_factory=utc_timestamp)

    class Config:
        json_schema_extra = {
            "example": {
                "success": True,
                "data": {},
                "timestamp": "2024-01-15T10:30:00Z"
            }
        }


class FieldError(BaseModel):
    field: str
    message: str
    value: Optional[Any] = None


class ErrorResponse(BaseModel):
    """Standard error response"""
    success: bool = False
    error: str
    details: Optional[List[FieldError]] = None
    timestamp: str = Field(default_factory=utc_timestamp)

    class Config:
        json_schema_extra = {
            "example": {
                "success": False,
                "error": "Failed to fetch live traffic data",
                "timestamp": "2024-01-15T10:30:00Z"
            }
        }


class HealthResponse(BaseModel):
    """Health check response model"""
    status: str = Field(..., description="healthy or unhealthy")
    timestamp: str = Field(default_factory=utc_timestamp)
    version: str
    environment: str
    services: Dict[str, Any]
    security: Dict[str, Any]
    system: Dict[str, Any]
    cache: Dict[str, Any] = Field(default_factory=dict)


class ApiKeyIssued(BaseModel):
    """Returned once when a key is registered"""
    api_key: str = Field(..., alias="apiKey")
    key_id: str = Field(..., alias="keyId")
    expires_at: Optional[str] = Field(None, alias="expiresAt")
    permissions: List[str]
    rate_limit: int = Field(..., alias="rateLimit")
    message: str = "Store this key securely. It will not be shown again."

    class Config:
        populate_by_name = True
