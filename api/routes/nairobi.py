"""
Public Nairobi map layers. Responses are the raw GeoJSON documents.
"""

from fastapi import APIRouter, Depends

from api.dependencies import get_map_service
from services.nairobi_map_service import NairobiMapService

router = APIRouter(prefix="/api/nairobi", tags=["Nairobi"])


@router.get("/boundaries")
async def get_boundaries(map_service: NairobiMapService = Depends(get_map_service)):
    return map_service.get_metropolitan_boundaries()


@router.get("/landmarks")
async def get_landmarks(map_service: NairobiMapService = Depends(get_map_service)):
    return map_service.get_major_landmarks()


@router.get("/roads")
async def get_roads(map_service: NairobiMapService = Depends(get_map_service)):
    return map_service.get_major_roads()


@router.get("/hotspots")
async def get_hotspots(map_service: NairobiMapService = Depends(get_map_service)):
    return map_service.get_traffic_hotspots()


@router.get("/suburbs")
async def get_suburbs(map_service: NairobiMapService = Depends(get_map_service)):
    return map_service.get_suburbs()


@router.get("/metadata")
async def get_metadata(map_service: NairobiMapService = Depends(get_map_service)):
    return map_service.get_data_metadata()
