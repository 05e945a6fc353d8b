"""
Health check endpoint with provider, database and map data status
"""

from datetime import datetime

from fastapi import APIRouter, Depends, Response, status

from api.dependencies import get_map_service, get_traffic_service
from core.config import settings
from schemas.api import HealthResponse
from services.nairobi_map_service import NairobiMapService
from services.traffic_service import TrafficDataService
import logging

logger = logging.getLogger(__name__)
router = APIRouter(tags=["Health"])

STARTED_AT = datetime.utcnow()


@router.get("/api/health", response_model=HealthResponse)
async def health_check(
    response: Response,
    traffic_service: TrafficDataService = Depends(get_traffic_service),
    map_service: NairobiMapService = Depends(get_map_service)
):
    """
    Health check endpoint.

    Returns 200 when both the traffic service (provider key configured and
    database reachable) and the map data are healthy, 503 otherwise.
    """
    traffic_healthy = await traffic_service.is_healthy()
    nairobi_healthy = map_service.is_healthy()
    healthy = traffic_healthy and nairobi_healthy

    if not healthy:
        logger.warning(f"Health check degraded: traffic={traffic_healthy}, nairobi={nairobi_healthy}")

    health = HealthResponse(
        status="healthy" if healthy else "unhealthy",
        version=settings.APP_VERSION,
        environment=settings.ENVIRONMENT,
        services={
            "traffic": traffic_healthy,
            "nairobi": nairobi_healthy,
            "dataIntegrity": map_service.validate_data_integrity(),
        },
        security={
            "corsEnabled": True,
            "rateLimiting": True,
            "validationEnabled": True,
        },
        system={
            "uptime": (datetime.utcnow() - STARTED_AT).total_seconds(),
        },
        cache=traffic_service.cache.get_stats(),
    )

    if not healthy:
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    return health
