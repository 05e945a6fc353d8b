"""
Warning subscriptions, active warnings and predictions
"""

import logging

from fastapi import APIRouter, Depends, HTTPException, status

from api.dependencies import Caller, get_traffic_service, require_api_key
from schemas.api import APIResponse
from schemas.traffic import SubscriptionCreate
from services.prediction import PredictiveWarningSystem, predictive_system
from services.traffic_service import TrafficDataService
from services.warning_system import WarningSystem, warning_system

logger = logging.getLogger(__name__)
router = APIRouter(tags=["Warnings"])


def get_warning_system() -> WarningSystem:
    return warning_system


def get_predictive_system() -> PredictiveWarningSystem:
    return predictive_system


@router.post("/api/warnings/subscribe", response_model=APIResponse, status_code=status.HTTP_201_CREATED)
async def subscribe(
    payload: SubscriptionCreate,
    caller: Caller = Depends(require_api_key),
    service: TrafficDataService = Depends(get_traffic_service)
):
    try:
        subscription = await service.subscribe_to_warnings(payload, api_key_id=caller.api_key_id)
    except Exception as e:
        logger.error(f"POST /api/warnings/subscribe failed: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to create warning subscription"
        )

    return APIResponse(data=subscription)


@router.get("/api/warnings", response_model=APIResponse)
async def list_warnings(
    caller: Caller = Depends(require_api_key),
    warnings: WarningSystem = Depends(get_warning_system)
):
    warnings.cleanup_old_warnings()
    return APIResponse(data={
        "warnings": warnings.get_active_warnings(),
        "counts": warnings.get_counts(),
    })


@router.delete("/api/warnings", response_model=APIResponse)
async def clear_warnings(
    caller: Caller = Depends(require_api_key),
    warnings: WarningSystem = Depends(get_warning_system)
):
    warnings.clear_all_warnings()
    logger.info(f"Warnings cleared by key {caller.key_prefix}")
    return APIResponse(data={"cleared": True})


@router.post("/api/warnings/test", response_model=APIResponse)
async def trigger_test_warning(
    caller: Caller = Depends(require_api_key),
    warnings: WarningSystem = Depends(get_warning_system)
):
    return APIResponse(data=warnings.test_warning())


@router.get("/api/predictions", response_model=APIResponse)
async def get_predictions(
    caller: Caller = Depends(require_api_key),
    predictions: PredictiveWarningSystem = Depends(get_predictive_system)
):
    return APIResponse(data=predictions.get_prediction_dashboard())
