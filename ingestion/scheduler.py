import logging
from datetime import datetime
from typing import Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker

from core.config import settings
from services.metrics import MetricsService
from services.prediction import PredictiveWarningSystem, predictive_system
from services.realtime import ConnectionManager, manager
from services.traffic_service import TrafficDataService
from services.warning_system import WarningSystem, warning_system

logger = logging.getLogger(__name__)


class TrafficScheduler:
    """
    Background jobs: live traffic broadcast, warning checks, prediction
    history and updates, and daily housekeeping. Each job opens its own
    session and logs rather than raises on failure.
    """

    def __init__(
        self,
        connections: Optional[ConnectionManager] = None,
        warnings: Optional[WarningSystem] = None,
        predictions: Optional[PredictiveWarningSystem] = None
    ):
        self.scheduler = AsyncIOScheduler(timezone=settings.TIMEZONE)
        self.engine = create_async_engine(settings.DATABASE_URL, echo=False)
        self.SessionLocal = async_sessionmaker(
            self.engine, class_=AsyncSession, expire_on_commit=False
        )
        self.connections = connections or manager
        self.warnings = warnings or warning_system
        self.predictions = predictions or predictive_system
        self.started_at = datetime.utcnow()
        self.last_live_update: Optional[datetime] = None

    def data_age_minutes(self, now: Optional[datetime] = None) -> float:
        now = now or datetime.utcnow()
        reference = self.last_live_update or self.started_at
        return (now - reference).total_seconds() / 60

    async def _fetch_live(self, service: TrafficDataService):
        traffic_data = await service.get_live_traffic_data()
        if traffic_data.get("source") != "fallback":
            self.last_live_update = datetime.utcnow()
        return traffic_data

    async def broadcast_traffic_job(self):
        """Push the current Nairobi snapshot to every WebSocket client"""
        if not self.connections.connection_count:
            return
        async with self.SessionLocal() as session:
            try:
                service = TrafficDataService(session)
                traffic_data = await self._fetch_live(service)
                sent = await self.connections.broadcast("traffic-update", traffic_data)
                logger.debug(f"Scheduler: traffic update sent to {sent} clients")
            except Exception as e:
                logger.error(f"Scheduler: traffic broadcast failed - {e}")

    async def warning_check_job(self):
        async with self.SessionLocal() as session:
            try:
                service = TrafficDataService(session)
                traffic_data = await self._fetch_live(service)
                incidents = await service.get_traffic_incidents()

                candidates = self.warnings.analyze_traffic_data(
                    traffic_data, incidents, self.data_age_minutes()
                )
                new_warnings = self.warnings.process_warnings(candidates)
                for warning in new_warnings:
                    await self.connections.broadcast("traffic-warning", warning)

                if new_warnings:
                    delivered = await self.warnings.notify_subscribers(session, new_warnings)
                    logger.info(
                        f"Scheduler: {len(new_warnings)} new warnings, "
                        f"{delivered} webhook notifications"
                    )
            except Exception as e:
                logger.error(f"Scheduler: warning check failed - {e}")

    async def collect_history_job(self):
        async with self.SessionLocal() as session:
            try:
                service = TrafficDataService(session)
                traffic_data = await self._fetch_live(service)
                incidents = await service.get_traffic_incidents()
                self.predictions.store_historical_data(traffic_data, incidents)
            except Exception as e:
                logger.error(f"Scheduler: prediction history collection failed - {e}")

    async def update_predictions_job(self):
        async with self.SessionLocal() as session:
            try:
                predictions = self.predictions.update_predictions()
                logger.info(f"Scheduler: {len(predictions)} predictions available")

                new_warnings = self.predictions.latest_warnings
                for warning in new_warnings:
                    await self.connections.broadcast("traffic-warning", warning)

                if new_warnings:
                    delivered = await self.warnings.notify_subscribers(session, new_warnings)
                    logger.info(
                        f"Scheduler: {len(new_warnings)} predictive warnings, "
                        f"{delivered} webhook notifications"
                    )
            except Exception as e:
                logger.error(f"Scheduler: prediction update failed - {e}")

    async def housekeeping_job(self):
        async with self.SessionLocal() as session:
            try:
                metrics = MetricsService(session)
                reset = await metrics.reset_daily_usage()
                expired = await metrics.expire_api_keys()
                idle = await metrics.deactivate_idle_subscriptions()
                purged = await metrics.cleanup_old_metrics()
                logger.info(
                    f"Scheduler: housekeeping done - {reset} keys reset, {expired} expired, "
                    f"{idle} subscriptions deactivated, {purged} metrics purged"
                )
            except Exception as e:
                logger.error(f"Scheduler: housekeeping failed - {e}")

    def start(self):
        """Register every job and start the scheduler"""
        jobs = [
            (self.broadcast_traffic_job, IntervalTrigger(seconds=settings.BROADCAST_INTERVAL_SECONDS), "traffic_broadcast"),
            (self.warning_check_job, IntervalTrigger(seconds=settings.WARNING_CHECK_INTERVAL_SECONDS), "warning_check"),
            (self.collect_history_job, IntervalTrigger(seconds=settings.PREDICTION_COLLECT_INTERVAL_SECONDS), "prediction_history"),
            (self.update_predictions_job, IntervalTrigger(seconds=settings.PREDICTION_UPDATE_INTERVAL_SECONDS), "prediction_update"),
            (self.housekeeping_job, CronTrigger(hour=0, minute=5, timezone="UTC"), "housekeeping"),
        ]
        for func, trigger, job_id in jobs:
            self.scheduler.add_job(func, trigger=trigger, id=job_id, replace_existing=True)

        self.scheduler.start()
        logger.info("Traffic scheduler started")

    def stop(self):
        self.scheduler.shutdown()
        logger.info("Traffic scheduler stopped")
