"""
Cache-aside access to live TomTom data and the traffic tables.

Reads check the shared TTL cache first, fall through to TomTom (or the
database for incidents) on a miss, and write the result back. Upstream
failures degrade to fallbacks instead of raising, except for routing,
where there is nothing sensible to fall back to.
"""

import time
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from core.config import settings
from core.database import check_connection
from core.exceptions import StorageError
from core.logging import (
    log_cache_operation,
    log_external_api_call,
    log_incident_reported,
    log_traffic_data_recorded,
)
from ingestion.extractors.tomtom_client import TomTomClient
from ingestion.loaders.postgres_loader import TrafficLoader
from ingestion.transformers.normalizer import (
    fallback_snapshot,
    incident_to_record,
    process_flow_response,
)
from models.base import IncidentStatus, enum_value
from models.incident import TrafficIncident
from models.subscription import WarningSubscription
from models.traffic_data import TrafficData
from schemas.traffic import IncidentCreate, SubscriptionCreate, TrafficDataCreate
from services.cache import TTLCache, traffic_cache
import logging

logger = logging.getLogger(__name__)

INCIDENTS_CACHE_KEY = "traffic-incidents"
GRANULARITIES = ("hour", "day", "week")


def _elapsed_ms(start: float) -> float:
    return (time.perf_counter() - start) * 1000


class TrafficDataService:
    """
    Traffic data access for one request (or one scheduled job).

    Args:
        db: Async session used for persistence and incident lookups
        cache: Cache shared across requests (defaults to the process cache)
        client: TomTom client (defaults to one built from settings)
    """

    def __init__(
        self,
        db: AsyncSession,
        cache: Optional[TTLCache] = None,
        client: Optional[TomTomClient] = None
    ):
        self.db = db
        self.cache = cache if cache is not None else traffic_cache
        self.client = client or TomTomClient()
        self.loader = TrafficLoader(db)

    # ------------------------------------------------------------------
    # Live data
    # ------------------------------------------------------------------

    async def get_live_traffic_data(self, bounds: Optional[str] = None) -> Dict[str, Any]:
        """
        Current flow snapshot for ``bounds`` (Nairobi when omitted).

        Never raises for upstream failures: the fallback snapshot is
        returned instead.
        """
        start = time.perf_counter()
        cache_key = f"live-traffic-{bounds or 'nairobi'}"

        cached = self.cache.get(cache_key)
        if cached is not None:
            log_cache_operation("get", cache_key, True, _elapsed_ms(start))
            return cached

        try:
            raw = await self.client.fetch_traffic_flow(bounds)
            snapshot = process_flow_response(raw)
        except Exception as e:
            log_external_api_call("tomtom", "traffic", _elapsed_ms(start), False)
            logger.error(f"Error fetching live traffic data: {e} (bounds={bounds})")
            return fallback_snapshot()

        self.cache.set(cache_key, snapshot)
        log_external_api_call("tomtom", "traffic", _elapsed_ms(start), True)

        await self.loader.store_traffic_data(snapshot)
        return snapshot

    async def get_traffic_incidents(self) -> List[Dict[str, Any]]:
        """
        Active incidents. The database wins when it has any; TomTom is
        asked only when it is empty.
        """
        start = time.perf_counter()

        cached = self.cache.get(INCIDENTS_CACHE_KEY)
        if cached is not None:
            log_cache_operation("get", INCIDENTS_CACHE_KEY, True, _elapsed_ms(start))
            return cached

        try:
            db_incidents = await self._active_incidents(
                limit=50,
                order_by=(TrafficIncident.severity.desc(), TrafficIncident.started_at.desc()),
            )
            if db_incidents:
                incidents = [incident.to_dict() for incident in db_incidents]
                self.cache.set(INCIDENTS_CACHE_KEY, incidents)
                return incidents

            raw_incidents = await self.client.fetch_incidents()
            await self.loader.store_incident_data(raw_incidents)

            incidents = [self._feed_incident_to_dict(raw) for raw in raw_incidents]
            self.cache.set(INCIDENTS_CACHE_KEY, incidents)
            log_external_api_call("tomtom", "incidents", _elapsed_ms(start), True)
            return incidents

        except Exception as e:
            log_external_api_call("tomtom", "incidents", _elapsed_ms(start), False)
            logger.error(f"Error fetching traffic incidents: {e}")

            try:
                fallback = await self._active_incidents(
                    limit=20, order_by=(TrafficIncident.started_at.desc(),)
                )
                return [incident.to_dict() for incident in fallback]
            except Exception as db_error:
                logger.error(f"Error loading fallback incidents: {db_error}")
                return []

    async def get_route_info(
        self,
        start: str,
        end: str,
        alternatives: bool = False,
        options: Optional[Dict[str, Any]] = None
    ) -> Dict[str, Any]:
        """Route with live traffic between two "lat,lng" points. Errors propagate."""
        timer = time.perf_counter()
        cache_key = f"route-{start}-{end}-{str(alternatives).lower()}"

        cached = self.cache.get(cache_key)
        if cached is not None:
            log_cache_operation("get", cache_key, True, _elapsed_ms(timer))
            return cached

        try:
            route = await self.client.fetch_route(start, end, alternatives, options)
        except Exception as e:
            log_external_api_call("tomtom", "route", _elapsed_ms(timer), False)
            logger.error(f"Error calculating route: {e} (start={start}, end={end})")
            raise

        self.cache.set(cache_key, route)
        log_external_api_call("tomtom", "route", _elapsed_ms(timer), True)
        return route

    # ------------------------------------------------------------------
    # User reports
    # ------------------------------------------------------------------

    async def record_traffic_data(self, payload: TrafficDataCreate) -> Dict[str, Any]:
        record = TrafficData(
            id=uuid.uuid4(),
            location=payload.location,
            latitude=payload.coordinates.lat,
            longitude=payload.coordinates.lng,
            vehicle_count=payload.vehicle_count,
            current_speed=payload.speed,
            congestion_level=payload.congestion_level,
            weather_condition=payload.weather_condition or "clear",
            data_source="user_report",
            recorded_at=_naive_utc(payload.timestamp),
        )
        await self._save(record, "traffic_data")

        log_traffic_data_recorded(record.location, record.data_source, enum_value(record.congestion_level))
        return record.to_dict()

    async def report_incident(self, payload: IncidentCreate) -> Dict[str, Any]:
        incident = TrafficIncident(
            id=uuid.uuid4(),
            location=payload.location,
            latitude=payload.coordinates.lat,
            longitude=payload.coordinates.lng,
            type=payload.type,
            severity=payload.severity,
            description=payload.description,
            estimated_duration=payload.estimated_duration,
            lanes_affected=payload.lanes_affected,
            reported_by=payload.reported_by,
            contact_info=payload.contact_info,
            source="user_report",
            started_at=datetime.utcnow(),
        )
        await self._save(incident, "traffic_incidents")
        self.cache.delete(INCIDENTS_CACHE_KEY)

        log_incident_reported(str(incident.id), enum_value(incident.type), enum_value(incident.severity), incident.location)
        return incident.to_dict()

    async def resolve_incident(self, incident_id) -> Optional[Dict[str, Any]]:
        incident = await self.db.get(TrafficIncident, incident_id)
        if incident is None:
            return None
        incident.resolve()
        await self.db.commit()
        self.cache.delete(INCIDENTS_CACHE_KEY)
        return incident.to_dict()

    async def verify_incident(self, incident_id) -> Optional[Dict[str, Any]]:
        incident = await self.db.get(TrafficIncident, incident_id)
        if incident is None:
            return None
        incident.verify()
        await self.db.commit()
        self.cache.delete(INCIDENTS_CACHE_KEY)
        return incident.to_dict()

    # ------------------------------------------------------------------
    # Analytics and subscriptions
    # ------------------------------------------------------------------

    async def get_traffic_analytics(
        self,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
        location: Optional[str] = None,
        granularity: str = "hour",
        limit: int = 100,
        offset: int = 0
    ) -> List[Dict[str, Any]]:
        """Average speed and vehicle count per ``granularity`` bucket, newest first"""
        if granularity not in GRANULARITIES:
            raise ValueError(f"granularity must be one of: {', '.join(GRANULARITIES)}")

        period = func.date_trunc(granularity, TrafficData.recorded_at).label("period")
        query = select(
            period,
            func.avg(TrafficData.current_speed).label("avg_speed"),
            func.avg(TrafficData.vehicle_count).label("avg_vehicle_count"),
            func.count(TrafficData.id).label("sample_count"),
        )

        if start_date and end_date:
            query = query.where(TrafficData.recorded_at.between(_naive_utc(start_date), _naive_utc(end_date)))
        if location:
            query = query.where(TrafficData.location == location)

        query = query.group_by(period).order_by(period.desc()).limit(limit).offset(offset)

        result = await self.db.execute(query)
        return [
            {
                "period": row.period.isoformat() if row.period else None,
                "avgSpeed": float(row.avg_speed) if row.avg_speed is not None else None,
                "avgVehicleCount": float(row.avg_vehicle_count) if row.avg_vehicle_count is not None else None,
                "sampleCount": int(row.sample_count),
            }
            for row in result.all()
        ]

    async def subscribe_to_warnings(self, payload: SubscriptionCreate, api_key_id=None) -> Dict[str, Any]:
        subscription = WarningSubscription(
            id=uuid.uuid4(),
            api_key_id=api_key_id,
            location=payload.location,
            latitude=payload.coordinates.lat,
            longitude=payload.coordinates.lng,
            radius=payload.radius,
            alert_types=[enum_value(t) for t in payload.alert_types],
            threshold=payload.threshold.to_storage() if payload.threshold else None,
            webhook_url=payload.webhook_url,
            email_notifications=payload.email_notifications,
            sms_notifications=payload.sms_notifications,
            notification_frequency=payload.notification_frequency,
        )
        await self._save(subscription, "warning_subscriptions")

        logger.info(f"Warning subscription created: {subscription.id} ({payload.location})")
        return subscription.to_dict()

    # ------------------------------------------------------------------
    # Health
    # ------------------------------------------------------------------

    @property
    def has_provider_keys(self) -> bool:
        return bool(settings.TOMTOM_API_KEY or settings.GOOGLE_MAPS_API_KEY)

    async def is_healthy(self) -> bool:
        return self.has_provider_keys and await check_connection(self.db)

    async def get_health_status(self) -> Dict[str, Any]:
        database_connected = await check_connection(self.db)
        return {
            "status": "healthy" if self.has_provider_keys and database_connected else "unhealthy",
            "database": {"connected": database_connected},
            "cache": self.cache.get_stats(),
            "apiKeys": {
                "tomtom": bool(settings.TOMTOM_API_KEY),
                "google": bool(settings.GOOGLE_MAPS_API_KEY),
                "mapbox": bool(settings.MAPBOX_ACCESS_TOKEN),
            },
            "timestamp": datetime.utcnow().isoformat() + "Z",
        }

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _active_incidents(self, limit: int, order_by) -> List[TrafficIncident]:
        query = (
            select(TrafficIncident)
            .where(TrafficIncident.status == IncidentStatus.ACTIVE)
            .order_by(*order_by)
            .limit(limit)
        )
        result = await self.db.execute(query)
        return list(result.scalars().all())

    async def _save(self, instance, table_name: str):
        try:
            self.db.add(instance)
            await self.db.commit()
            await self.db.refresh(instance)
        except Exception as e:
            await self.db.rollback()
            logger.error(f"Error writing to {table_name}: {e}")
            raise StorageError(
                f"Failed to write {table_name}",
                context={"operation": "INSERT", "table_name": table_name},
                original_exception=e
            )

    @staticmethod
    def _feed_incident_to_dict(raw: Dict[str, Any]) -> Dict[str, Any]:
        record = incident_to_record(raw)
        return {
            "id": record["external_id"],
            "location": record["location"],
            "coordinates": {"lat": record["latitude"], "lng": record["longitude"]},
            "type": record["type"].value,
            "severity": record["severity"].value,
            "description": record["description"],
            "estimatedDuration": record["estimated_duration"],
            "delaySeconds": record["delay_seconds"],
            "status": record["status"].value,
            "verified": False,
            "source": "tomtom",
            "startedAt": record["started_at"].isoformat(),
        }


def _naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)
