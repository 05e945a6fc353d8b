import pytest
from datetime import datetime
from unittest.mock import AsyncMock, MagicMock, patch

from ingestion.scheduler import TrafficScheduler
from services.prediction import PredictiveWarningSystem
from services.warning_system import WarningSystem


@pytest.fixture
def connections():
    manager = MagicMock()
    manager.connection_count = 1
    manager.broadcast = AsyncMock(return_value=1)
    return manager


@pytest.fixture
def scheduler(connections):
    predictions = MagicMock()
    predictions.update_predictions.return_value = []
    predictions.latest_warnings = []
    scheduler = TrafficScheduler(connections=connections, warnings=WarningSystem(), predictions=predictions)

    session = AsyncMock()
    session_maker = MagicMock()
    session_maker.return_value.__aenter__.return_value = session
    scheduler.SessionLocal = session_maker
    return scheduler


@pytest.fixture
def traffic_service():
    with patch("ingestion.scheduler.TrafficDataService") as service_cls:
        service = MagicMock()
        service.get_live_traffic_data = AsyncMock(return_value={
            "source": "tomtom",
            "segments": [{"trafficLevel": "severe", "currentSpeed": 2}],
        })
        service.get_traffic_incidents = AsyncMock(return_value=[])
        service_cls.return_value = service
        yield service


def test_scheduler_initialization():
    scheduler = TrafficScheduler()
    assert scheduler.scheduler is not None
    assert scheduler.engine is not None
    assert scheduler.last_live_update is None


def test_data_age_counts_from_start_until_first_live_fetch():
    scheduler = TrafficScheduler()
    scheduler.started_at = datetime(2024, 1, 15, 5, 0)

    assert scheduler.data_age_minutes(now=datetime(2024, 1, 15, 5, 12)) == 12

    scheduler.last_live_update = datetime(2024, 1, 15, 5, 10)
    assert scheduler.data_age_minutes(now=datetime(2024, 1, 15, 5, 12)) == 2


@pytest.mark.asyncio
async def test_broadcast_job(scheduler, connections, traffic_service):
    await scheduler.broadcast_traffic_job()

    event, data = connections.broadcast.call_args.args
    assert event == "traffic-update"
    assert data["source"] == "tomtom"
    assert scheduler.last_live_update is not None


@pytest.mark.asyncio
async def test_broadcast_skipped_without_clients(scheduler, connections, traffic_service):
    connections.connection_count = 0

    await scheduler.broadcast_traffic_job()

    traffic_service.get_live_traffic_data.assert_not_called()


@pytest.mark.asyncio
async def test_fallback_does_not_refresh_data_age(scheduler, traffic_service):
    traffic_service.get_live_traffic_data.return_value = {"source": "fallback", "segments": []}

    await scheduler.broadcast_traffic_job()

    assert scheduler.last_live_update is None


@pytest.mark.asyncio
async def test_warning_check_broadcasts_and_notifies(scheduler, connections, traffic_service):
    with patch.object(scheduler.warnings, "notify_subscribers", AsyncMock(return_value=0)) as notify:
        await scheduler.warning_check_job()

    events = [c.args[0] for c in connections.broadcast.call_args_list]
    assert events and set(events) == {"traffic-warning"}
    titles = [w["title"] for w in notify.call_args.args[1]]
    assert "Gridlock Risk Detected" in titles


@pytest.mark.asyncio
async def test_collect_history_job(scheduler, traffic_service):
    await scheduler.collect_history_job()

    scheduler.predictions.store_historical_data.assert_called_once()


@pytest.mark.asyncio
async def test_job_errors_are_logged_not_raised(scheduler, traffic_service):
    traffic_service.get_live_traffic_data.side_effect = RuntimeError("boom")
    scheduler.predictions.update_predictions.side_effect = RuntimeError("boom")

    await scheduler.warning_check_job()
    await scheduler.collect_history_job()
    await scheduler.update_predictions_job()


@pytest.mark.asyncio
async def test_housekeeping_job(scheduler):
    with patch("ingestion.scheduler.MetricsService") as metrics_cls:
        metrics = AsyncMock()
        metrics_cls.return_value = metrics

        await scheduler.housekeeping_job()

    metrics.reset_daily_usage.assert_awaited_once()
    metrics.expire_api_keys.assert_awaited_once()
    metrics.deactivate_idle_subscriptions.assert_awaited_once()
    metrics.cleanup_old_metrics.assert_awaited_once()


@pytest.mark.asyncio
async def test_predictive_warnings_are_broadcast_and_notified(scheduler, connections, fixed_now):
    warnings = WarningSystem(clock=lambda: fixed_now)
    predictor = PredictiveWarningSystem(warnings, clock=lambda: fixed_now)
    for _ in range(10):
        predictor.store_historical_data(
            {"segments": [{"trafficLevel": "severe", "currentSpeed": 10}] * 4}, [{}] * 8
        )
    scheduler.warnings = warnings
    scheduler.predictions = predictor

    with patch.object(warnings, "notify_subscribers", AsyncMock(return_value=2)) as notify:
        await scheduler.update_predictions_job()

    connections.broadcast.assert_awaited_once()
    event, payload = connections.broadcast.call_args.args
    assert event == "traffic-warning"
    assert payload["title"] == "Predictive Traffic Alert"
    assert notify.call_args.args[1] == [payload]


@pytest.mark.asyncio
async def test_quiet_prediction_update_broadcasts_nothing(scheduler, connections):
    await scheduler.update_predictions_job()

    connections.broadcast.assert_not_awaited()


def test_housekeeping_runs_at_utc_midnight(scheduler):
    scheduler.scheduler = MagicMock()

    scheduler.start()

    triggers = {c.kwargs["id"]: c.kwargs["trigger"] for c in scheduler.scheduler.add_job.call_args_list}
    housekeeping = triggers["housekeeping"]
    assert str(housekeeping.timezone) == "UTC"
    assert str(housekeeping.fields[housekeeping.FIELD_NAMES.index("hour")]) == "0"
