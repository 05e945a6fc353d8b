"""
API key registration
"""

import uuid
import logging

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from api.dependencies import get_db
from api.rate_limit import auth_limiter
from models.api_key import ApiKey
from models.base import UsageType
from schemas.api import APIResponse, ApiKeyIssued
from schemas.traffic import ApiKeyCreate

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/keys", tags=["API Keys"])

# requests per hour by usage type
RATE_LIMIT_BY_USAGE = {
    UsageType.COMMERCIAL.value: 5000,
    UsageType.RESEARCH.value: 2000,
    UsageType.NON_COMMERCIAL.value: 1000,
}


@router.post(
    "",
    response_model=APIResponse[ApiKeyIssued],
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(auth_limiter)]
)
async def register_api_key(payload: ApiKeyCreate, db: AsyncSession = Depends(get_db)):
    """
    Issue a new read-only key. The raw key appears only in this response.
    """
    raw_key, prefix, key_hash = ApiKey.generate_key()
    api_key = ApiKey(
        id=uuid.uuid4(),
        key_hash=key_hash,
        key_prefix=prefix,
        name=payload.application_name,
        application_name=payload.application_name,
        contact_email=payload.contact_email,
        usage_type=UsageType(payload.usage_type),
        expected_requests=payload.expected_requests,
        description=payload.description,
        rate_limit=RATE_LIMIT_BY_USAGE.get(payload.usage_type, 1000),
        created_by=payload.contact_email,
    )

    try:
        db.add(api_key)
        await db.commit()
    except Exception as e:
        await db.rollback()
        logger.error(f"POST /api/keys failed: {e}")
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Failed to create API key")

    logger.info(f"API key {prefix} issued to {payload.contact_email} ({payload.usage_type})")
    return APIResponse[ApiKeyIssued](data=ApiKeyIssued(
        api_key=raw_key,
        key_id=prefix,
        expires_at=api_key.expires_at.isoformat() if api_key.expires_at else None,
        permissions=list(api_key.permissions),
        rate_limit=api_key.rate_limit,
    ))
