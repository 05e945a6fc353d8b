"""
Historical traffic analytics and system metrics
"""

from datetime import datetime
from typing import Optional
import logging

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status

from api.dependencies import Caller, get_metrics_service, get_traffic_service, require_api_key
from api.rate_limit import expensive_limiter
from schemas.api import APIResponse
from services.metrics import MetricsService
from services.traffic_service import TrafficDataService

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/analytics", tags=["Analytics"])


@router.get("/traffic", response_model=APIResponse, dependencies=[Depends(expensive_limiter)])
async def get_traffic_analytics(
    request: Request,
    start_date: Optional[datetime] = Query(None, alias="startDate"),
    end_date: Optional[datetime] = Query(None, alias="endDate"),
    location: Optional[str] = Query(None, max_length=100),
    granularity: str = Query("hour", pattern=r"^(hour|day|week)$"),
    limit: int = Query(100, ge=1, le=1000),
    offset: int = Query(0, ge=0),
    caller: Caller = Depends(require_api_key),
    service: TrafficDataService = Depends(get_traffic_service)
):
    """
    Average speed and vehicle count per period, newest period first.

    The date range applies only when both startDate and endDate are given.
    """
    if start_date and end_date and end_date < start_date:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="endDate must not be before startDate")

    try:
        analytics = await service.get_traffic_analytics(
            start_date=start_date,
            end_date=end_date,
            location=location,
            granularity=granularity,
            limit=limit,
            offset=offset,
        )
    except Exception as e:
        logger.error(f"GET /api/analytics/traffic failed: {e}")
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Failed to fetch analytics")

    return APIResponse(data=analytics)


@router.get("/system", response_model=APIResponse)
async def get_system_metrics(
    caller: Caller = Depends(require_api_key),
    metrics: MetricsService = Depends(get_metrics_service)
):
    try:
        health = await metrics.get_system_health()
    except Exception as e:
        logger.error(f"GET /api/analytics/system failed: {e}")
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Failed to fetch system metrics")

    return APIResponse(data=health)
