"""
SystemMetric recording and aggregation, plus the daily housekeeping
queries for keys, subscriptions and old metrics.
"""

import uuid
from datetime import datetime, timedelta
from typing import Any, Dict, Optional

from sqlalchemy import and_, delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from core.config import settings
from core.exceptions import StorageError
from models.api_key import ApiKey
from models.base import ApiKeyStatus, MetricType
from models.subscription import WarningSubscription
from models.system_metrics import SystemMetric
import logging

logger = logging.getLogger(__name__)

# metric type -> (response key, value key)
HEALTH_METRICS = {
    MetricType.PERFORMANCE: ("performance", "responseTime"),
    MetricType.DATABASE: ("database", "queryTime"),
    MetricType.API: ("api", "requestsPerMinute"),
}

AGGREGATIONS = {
    "avg": func.avg,
    "sum": func.sum,
    "min": func.min,
    "max": func.max,
}


class MetricsService:
    """SystemMetric access bound to one session."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def record_metric(
        self,
        metric_type: MetricType,
        name: str,
        value: float,
        unit: Optional[str] = None,
        tags: Optional[Dict[str, Any]] = None
    ) -> SystemMetric:
        metric = SystemMetric(
            id=uuid.uuid4(),
            metric_type=MetricType(metric_type),
            metric_name=name,
            metric_value=float(value),
            metric_unit=unit,
            tags=tags or {},
            timestamp=datetime.utcnow(),
        )
        try:
            self.db.add(metric)
            await self.db.commit()
        except Exception as e:
            await self.db.rollback()
            logger.error(f"Error recording metric {name}: {e}")
            raise StorageError(
                "Failed to record metric",
                context={"operation": "INSERT", "table_name": "system_metrics", "metric": name},
                original_exception=e
            )
        return metric

    async def get_latest(self, metric_type: MetricType, name: Optional[str] = None) -> Optional[SystemMetric]:
        query = select(SystemMetric).where(SystemMetric.metric_type == MetricType(metric_type))
        if name:
            query = query.where(SystemMetric.metric_name == name)
        query = query.order_by(SystemMetric.timestamp.desc()).limit(1)

        result = await self.db.execute(query)
        return result.scalars().first()

    async def get_aggregated(
        self,
        metric_type: MetricType,
        name: str,
        window_seconds: int = 3600,
        aggregation: str = "avg"
    ) -> Dict[str, Any]:
        """
        Aggregate ``name`` over the last ``window_seconds``.

        Returns:
            {"value", "count", "min", "max"}; values are None when there
            are no samples in the window.
        """
        if aggregation not in AGGREGATIONS:
            raise ValueError(f"aggregation must be one of: {', '.join(AGGREGATIONS)}")

        since = datetime.utcnow() - timedelta(seconds=window_seconds)
        query = select(
            AGGREGATIONS[aggregation](SystemMetric.metric_value).label("value"),
            func.count(SystemMetric.id).label("count"),
            func.min(SystemMetric.metric_value).label("min_value"),
            func.max(SystemMetric.metric_value).label("max_value"),
        ).where(
            SystemMetric.metric_type == MetricType(metric_type),
            SystemMetric.metric_name == name,
            SystemMetric.timestamp >= since,
        )

        row = (await self.db.execute(query)).one()
        return {
            "value": float(row.value) if row.value is not None else None,
            "count": int(row.count or 0),
            "min": row.min_value,
            "max": row.max_value,
        }

    async def get_system_health(self) -> Dict[str, Any]:
        """Latest performance, database and API metric, keyed by area"""
        health = {}
        for metric_type, (area, value_key) in HEALTH_METRICS.items():
            metric = await self.get_latest(metric_type)
            if metric is None:
                continue
            health[area] = {
                value_key: metric.metric_value,
                "unit": metric.metric_unit,
                "timestamp": metric.timestamp.isoformat() if metric.timestamp else None,
            }
        return health

    # ------------------------------------------------------------------
    # Housekeeping
    # ------------------------------------------------------------------

    async def cleanup_old_metrics(self, days: int = settings.METRICS_RETENTION_DAYS) -> int:
        cutoff = datetime.utcnow() - timedelta(days=days)
        result = await self.db.execute(delete(SystemMetric).where(SystemMetric.timestamp < cutoff))
        await self.db.commit()
        return result.rowcount or 0

    async def reset_daily_usage(self) -> int:
        """Zero today_usage for keys last reset before today; quota days are UTC days"""
        now = datetime.utcnow()
        midnight = now.replace(hour=0, minute=0, second=0, microsecond=0)
        result = await self.db.execute(
            update(ApiKey)
            .where(ApiKey.today_reset_at < midnight)
            .values(today_usage=0, today_reset_at=now)
        )
        await self.db.commit()
        return result.rowcount or 0

    async def expire_api_keys(self) -> int:
        result = await self.db.execute(
            update(ApiKey)
            .where(ApiKey.status == ApiKeyStatus.ACTIVE, ApiKey.expires_at < datetime.utcnow())
            .values(status=ApiKeyStatus.EXPIRED)
        )
        await self.db.commit()
        return result.rowcount or 0

    async def deactivate_idle_subscriptions(self, days: int = 30) -> int:
        """Deactivate subscriptions that have notified before but not in ``days``"""
        cutoff = datetime.utcnow() - timedelta(days=days)
        result = await self.db.execute(
            update(WarningSubscription)
            .where(and_(
                WarningSubscription.last_notification_at < cutoff,
                WarningSubscription.notification_count > 0,
            ))
            .values(active=False)
        )
        await self.db.commit()
        return result.rowcount or 0
