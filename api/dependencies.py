"""
FastAPI dependencies: database session, services and API key checks
"""

from dataclasses import dataclass
from typing import AsyncGenerator, Optional
import uuid

from fastapi import Depends, Request
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from api.rate_limit import get_client_ip
from core.config import settings
from core.database import get_session
from core.exceptions import InvalidAPIKeyError, MissingAPIKeyError
from core.logging import log_authentication_attempt
from models.api_key import ApiKey, hash_api_key
from services.metrics import MetricsService
from services.nairobi_map_service import NairobiMapService
from services.traffic_service import TrafficDataService


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    async for session in get_session():
        yield session


def get_traffic_service(db: AsyncSession = Depends(get_db)) -> TrafficDataService:
    return TrafficDataService(db)


def get_metrics_service(db: AsyncSession = Depends(get_db)) -> MetricsService:
    return MetricsService(db)


_map_service = NairobiMapService()


def get_map_service() -> NairobiMapService:
    return _map_service


@dataclass
class Caller:
    """Authenticated client. ``api_key_id`` is None for keys from VALID_API_KEYS."""
    key_prefix: str
    api_key_id: Optional[uuid.UUID] = None


async def require_api_key(request: Request, db: AsyncSession = Depends(get_db)) -> Caller:
    """
    Accept the key from the X-API-Key header or the apiKey query parameter.

    Raises:
        MissingAPIKeyError: No key supplied (401)
        InvalidAPIKeyError: Unknown, inactive, expired or over its daily limit (403)
    """
    client_ip = get_client_ip(request)
    raw_key = request.headers.get("x-api-key") or request.query_params.get("apiKey")

    if not raw_key:
        log_authentication_attempt(False, client_ip, reason="missing")
        raise MissingAPIKeyError("API key required for this endpoint")

    prefix = raw_key[:8]
    if raw_key in settings.api_keys:
        log_authentication_attempt(True, client_ip, key_prefix=prefix)
        return Caller(key_prefix=prefix)

    result = await db.execute(select(ApiKey).where(ApiKey.key_hash == hash_api_key(raw_key)))
    api_key = result.scalars().first()

    if api_key is None or not api_key.can_make_request():
        log_authentication_attempt(False, client_ip, key_prefix=prefix, reason="invalid")
        raise InvalidAPIKeyError("Invalid API key", context={"key_prefix": prefix})

    api_key.record_usage()
    await db.commit()

    log_authentication_attempt(True, client_ip, key_prefix=prefix)
    return Caller(key_prefix=api_key.key_prefix, api_key_id=api_key.id)
