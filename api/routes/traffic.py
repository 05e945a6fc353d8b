"""
Protected traffic endpoints: live flow, incidents, routing and user reports
"""

import logging
import uuid
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status

from api.dependencies import Caller, get_traffic_service, require_api_key
from api.rate_limit import expensive_limiter, report_limiter, traffic_limiter
from core.exceptions import InvalidBoundsError
from ingestion.transformers.normalizer import parse_bounds
from schemas.api import APIResponse
from schemas.traffic import IncidentCreate, TrafficDataCreate
from services.traffic_service import TrafficDataService

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/traffic", tags=["Traffic"])

LAT_LNG_PATTERN = r"^-?\d+\.?\d*,-?\d+\.?\d*$"
VEHICLE_TYPE_PATTERN = r"^(car|truck|motorcycle|bicycle)$"


def _request_id(request: Request) -> str:
    return getattr(request.state, "request_id", f"req_{uuid.uuid4().hex[:12]}")


def _server_error(message: str) -> HTTPException:
    return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=message)


@router.get("/live", response_model=APIResponse, dependencies=[Depends(traffic_limiter)])
async def get_live_traffic(
    request: Request,
    bounds: Optional[str] = Query(None, description="minLat,minLon,maxLat,maxLon"),
    caller: Caller = Depends(require_api_key),
    service: TrafficDataService = Depends(get_traffic_service)
):
    if bounds is not None:
        try:
            bounds = str(parse_bounds(bounds))
        except InvalidBoundsError as e:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=e.message)

    try:
        data = await service.get_live_traffic_data(bounds)
    except Exception as e:
        logger.error(f"[{_request_id(request)}] GET /api/traffic/live failed: {e}")
        raise _server_error("Failed to fetch live traffic data")

    return APIResponse(data=data)


@router.get("/incidents", response_model=APIResponse, dependencies=[Depends(traffic_limiter)])
async def get_incidents(
    request: Request,
    caller: Caller = Depends(require_api_key),
    service: TrafficDataService = Depends(get_traffic_service)
):
    try:
        incidents = await service.get_traffic_incidents()
    except Exception as e:
        logger.error(f"[{_request_id(request)}] GET /api/traffic/incidents failed: {e}")
        raise _server_error("Failed to fetch traffic incidents")

    return APIResponse(data=incidents)


@router.get("/route", response_model=APIResponse, dependencies=[Depends(expensive_limiter)])
async def get_route(
    request: Request,
    start: str = Query(..., pattern=LAT_LNG_PATTERN, description='Start point as "lat,lng"'),
    end: str = Query(..., pattern=LAT_LNG_PATTERN, description='End point as "lat,lng"'),
    alternatives: bool = Query(False),
    avoid_tolls: bool = Query(False, alias="avoidTolls"),
    avoid_highways: bool = Query(False, alias="avoidHighways"),
    vehicle_type: str = Query("car", alias="vehicleType", pattern=VEHICLE_TYPE_PATTERN),
    caller: Caller = Depends(require_api_key),
    service: TrafficDataService = Depends(get_traffic_service)
):
    options = {
        "avoidTolls": avoid_tolls,
        "avoidHighways": avoid_highways,
        "vehicleType": vehicle_type,
    }
    try:
        route = await service.get_route_info(start, end, alternatives, options)
    except Exception as e:
        logger.error(f"[{_request_id(request)}] GET /api/traffic/route failed: {e}")
        raise _server_error("Failed to calculate route")

    return APIResponse(data=route)


@router.post(
    "/data",
    response_model=APIResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(report_limiter)]
)
async def record_traffic_data(
    request: Request,
    payload: TrafficDataCreate,
    caller: Caller = Depends(require_api_key),
    service: TrafficDataService = Depends(get_traffic_service)
):
    try:
        record = await service.record_traffic_data(payload)
    except Exception as e:
        logger.error(f"[{_request_id(request)}] POST /api/traffic/data failed: {e}")
        raise _server_error("Failed to record traffic data")

    return APIResponse(data=record)


@router.post(
    "/incidents",
    response_model=APIResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(report_limiter)]
)
async def report_incident(
    request: Request,
    payload: IncidentCreate,
    caller: Caller = Depends(require_api_key),
    service: TrafficDataService = Depends(get_traffic_service)
):
    try:
        incident = await service.report_incident(payload)
    except Exception as e:
        logger.error(f"[{_request_id(request)}] POST /api/traffic/incidents failed: {e}")
        raise _server_error("Failed to report incident")

    return APIResponse(data=incident)


@router.post("/incidents/{incident_id}/resolve", response_model=APIResponse)
async def resolve_incident(
    request: Request,
    incident_id: uuid.UUID,
    caller: Caller = Depends(require_api_key),
    service: TrafficDataService = Depends(get_traffic_service)
):
    try:
        incident = await service.resolve_incident(incident_id)
    except Exception as e:
        logger.error(f"[{_request_id(request)}] resolve incident {incident_id} failed: {e}")
        raise _server_error("Failed to resolve incident")

    if incident is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Incident not found")
    return APIResponse(data=incident)


@router.post("/incidents/{incident_id}/verify", response_model=APIResponse)
async def verify_incident(
    request: Request,
    incident_id: uuid.UUID,
    caller: Caller = Depends(require_api_key),
    service: TrafficDataService = Depends(get_traffic_service)
):
    try:
        incident = await service.verify_incident(incident_id)
    except Exception as e:
        logger.error(f"[{_request_id(request)}] verify incident {incident_id} failed: {e}")
        raise _server_error("Failed to verify incident")

    if incident is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Incident not found")
    return APIResponse(data=incident)
