"""
API endpoint tests
"""

import uuid
from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi.testclient import TestClient

from api.dependencies import get_db, get_traffic_service
from api.main import app
from api.rate_limit import ALL_LIMITERS
from core.exceptions import NetworkError
from models.api_key import ApiKey, hash_api_key
from models.base import ApiKeyStatus
from services.prediction import predictive_system
from services.warning_system import warning_system

AUTH = {"X-API-Key": "test-api-key"}

SNAPSHOT = {
    "timestamp": "2024-01-15T05:00:00Z",
    "source": "tomtom",
    "segments": [{"location": "Uhuru Highway", "currentSpeed": 18, "freeFlowSpeed": 60, "trafficLevel": "high"}],
}

INCIDENT = {
    "location": "Mombasa Road near Nyayo Stadium",
    "coordinates": [36.8250, -1.3050],
    "type": "accident",
    "severity": "high",
    "description": "Two vehicles blocking the right lane",
}


@pytest.fixture
def client(mock_session):
    """Create test client with database override"""

    async def override_get_db():
        yield mock_session

    app.dependency_overrides[get_db] = override_get_db
    for limiter in ALL_LIMITERS:
        limiter.reset()
    warning_system.clear_all_warnings()

    with TestClient(app) as test_client:
        yield test_client

    app.dependency_overrides.clear()


@pytest.fixture
def traffic_service():
    service = MagicMock()
    service.get_live_traffic_data = AsyncMock(return_value=SNAPSHOT)
    service.get_traffic_incidents = AsyncMock(return_value=[])
    service.get_route_info = AsyncMock(return_value={"routes": []})
    service.record_traffic_data = AsyncMock(return_value={"id": "sample"})
    service.report_incident = AsyncMock(return_value={"id": "incident", **INCIDENT})
    service.resolve_incident = AsyncMock(return_value=None)
    service.verify_incident = AsyncMock(return_value=None)
    service.get_traffic_analytics = AsyncMock(return_value=[])
    service.subscribe_to_warnings = AsyncMock(return_value={"id": "subscription"})
    app.dependency_overrides[get_traffic_service] = lambda: service
    return service


# ============================================================================
# Public endpoints
# ============================================================================

def test_root(client):
    response = client.get("/")

    assert response.status_code == 200
    assert response.json()["health"] == "/api/health"


def test_unknown_endpoint_lists_available_ones(client):
    response = client.get("/api/does-not-exist")

    assert response.status_code == 404
    body = response.json()
    assert body["success"] is False
    assert body["error"] == "Endpoint not found"
    assert "GET /api/traffic/live" in body["availableEndpoints"]


def test_request_id_is_echoed(client):
    response = client.get("/", headers={"X-Request-ID": "req-123"})

    assert response.headers["X-Request-ID"] == "req-123"
    assert "X-API-Latency-ms" in response.headers


def test_nairobi_layers_are_raw_geojson(client):
    response = client.get("/api/nairobi/roads")

    assert response.status_code == 200
    assert response.json()["type"] == "FeatureCollection"


def test_nairobi_metadata(client):
    response = client.get("/api/nairobi/metadata")

    assert response.status_code == 200
    assert response.json()["center"] == {"lat": -1.2921, "lng": 36.8219}


@pytest.mark.parametrize("path", ["/api/nairobi/roads", "/api/health", "/api/nairobi/metadata"])
def test_general_rate_limit_covers_every_api_route(client, path):
    response = client.get(path)

    assert response.headers["X-RateLimit-Limit"] == "1000"
    assert response.headers["X-RateLimit-Remaining"] == "999"


def test_health_endpoint(client):
    response = client.get("/api/health")

    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "healthy"
    assert data["services"] == {"traffic": True, "nairobi": True, "dataIntegrity": True}
    assert "hitRate" in data["cache"]
    assert data["system"]["uptime"] >= 0


def test_health_endpoint_database_down(client, mock_session):
    mock_session.execute.side_effect = OSError("connection refused")

    response = client.get("/api/health")

    assert response.status_code == 503
    assert response.json()["services"]["traffic"] is False


# ============================================================================
# Authentication
# ============================================================================

def test_missing_api_key(client, traffic_service):
    response = client.get("/api/traffic/live")

    assert response.status_code == 401
    assert response.json()["error"] == "API key required for this endpoint"


def test_unknown_api_key(client, traffic_service, mock_session, scalars_result):
    mock_session.execute.return_value = scalars_result([])

    response = client.get("/api/traffic/live", headers={"X-API-Key": "nbo_unknown"})

    assert response.status_code == 403
    assert response.json()["error"] == "Invalid API key"


def test_registered_api_key_records_usage(client, traffic_service, mock_session, scalars_result):
    api_key = ApiKey(
        id=uuid.uuid4(), key_hash=hash_api_key("nbo_registered"), key_prefix="nbo_regi",
        name="matatu-app", contact_email="dev@example.com",
    )
    mock_session.execute.return_value = scalars_result([api_key])

    response = client.get("/api/traffic/live", params={"apiKey": "nbo_registered"})

    assert response.status_code == 200
    assert api_key.usage_count == 1
    mock_session.commit.assert_awaited()


def test_suspended_api_key(client, traffic_service, mock_session, scalars_result):
    api_key = ApiKey(
        key_hash=hash_api_key("nbo_suspended"), key_prefix="nbo_susp",
        name="matatu-app", contact_email="dev@example.com", status=ApiKeyStatus.SUSPENDED,
    )
    mock_session.execute.return_value = scalars_result([api_key])

    response = client.get("/api/traffic/live", headers={"X-API-Key": "nbo_suspended"})

    assert response.status_code == 403


# ============================================================================
# Traffic
# ============================================================================

def test_live_traffic(client, traffic_service):
    response = client.get("/api/traffic/live", headers=AUTH)

    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["data"]["segments"][0]["location"] == "Uhuru Highway"
    assert response.headers["X-RateLimit-Limit"] == "30"
    traffic_service.get_live_traffic_data.assert_awaited_once_with(None)


def test_live_traffic_normalizes_bounds(client, traffic_service):
    response = client.get("/api/traffic/live", params={"bounds": "-1.30,36.80,-1.25,36.85"}, headers=AUTH)

    assert response.status_code == 200
    traffic_service.get_live_traffic_data.assert_awaited_once_with("-1.3000,36.8000,-1.2500,36.8500")


def test_live_traffic_invalid_bounds(client, traffic_service):
    response = client.get("/api/traffic/live", params={"bounds": "-1.25,36.80,-1.30,36.85"}, headers=AUTH)

    assert response.status_code == 400
    assert response.json()["error"] == "Invalid bounds: min values must be less than max values"


def test_live_traffic_rate_limit(client, traffic_service):
    for _ in range(30):
        assert client.get("/api/traffic/live", headers=AUTH).status_code == 200

    response = client.get("/api/traffic/live", headers=AUTH)

    assert response.status_code == 429
    body = response.json()
    assert body["error"] == "Traffic data rate limit exceeded"
    assert body["retryAfter"] == "1 minute"
    assert body["limit"] == "30 requests per 1 minute"
    assert "Retry-After" in response.headers


def test_incidents(client, traffic_service):
    response = client.get("/api/traffic/incidents", headers=AUTH)

    assert response.status_code == 200
    assert response.json()["data"] == []


def test_route(client, traffic_service):
    response = client.get(
        "/api/traffic/route",
        params={"start": "-1.2921,36.8219", "end": "-1.3192,36.9278", "avoidTolls": "true"},
        headers=AUTH,
    )

    assert response.status_code == 200
    args = traffic_service.get_route_info.call_args.args
    assert args[:3] == ("-1.2921,36.8219", "-1.3192,36.9278", False)
    assert args[3] == {"avoidTolls": True, "avoidHighways": False, "vehicleType": "car"}


def test_route_rejects_malformed_points(client, traffic_service):
    response = client.get("/api/traffic/route", params={"start": "cbd", "end": "-1.3,36.9"}, headers=AUTH)

    assert response.status_code == 400
    assert response.json()["error"] == "Validation failed"
    assert response.json()["details"][0]["field"] == "start"


def test_route_upstream_failure(client, traffic_service):
    traffic_service.get_route_info.side_effect = NetworkError("TomTom unreachable")

    response = client.get("/api/traffic/route", params={"start": "-1.29,36.82", "end": "-1.31,36.92"}, headers=AUTH)

    assert response.status_code == 500
    assert response.json()["error"] == "Failed to calculate route"


def test_report_incident(client, traffic_service):
    response = client.post("/api/traffic/incidents", json=INCIDENT, headers=AUTH)

    assert response.status_code == 201
    payload = traffic_service.report_incident.call_args.args[0]
    assert payload.coordinates.lat == -1.3050
    assert payload.coordinates.lng == 36.8250


def test_report_incident_validation(client, traffic_service):
    body = dict(INCIDENT, description="bad")
    body.pop("type")

    response = client.post("/api/traffic/incidents", json=body, headers=AUTH)

    assert response.status_code == 400
    fields = {d["field"] for d in response.json()["details"]}
    assert {"type", "description"} <= fields


def test_record_traffic_data(client, traffic_service):
    response = client.post(
        "/api/traffic/data",
        json={"location": "Uhuru Highway", "vehicleCount": 120, "timestamp": "2024-01-15T07:45:00Z"},
        headers=AUTH,
    )

    assert response.status_code == 201
    assert response.json()["data"] == {"id": "sample"}


def test_resolve_unknown_incident(client, traffic_service):
    response = client.post(f"/api/traffic/incidents/{uuid.uuid4()}/resolve", headers=AUTH)

    assert response.status_code == 404
    assert response.json()["error"] == "Incident not found"


def test_suspicious_input_is_rejected(client, traffic_service):
    response = client.get("/api/traffic/live", params={"bounds": "<script>alert(1)</script>"}, headers=AUTH)

    assert response.status_code == 400
    assert response.json()["error"] == "Invalid input detected"
    traffic_service.get_live_traffic_data.assert_not_called()


def test_suspicious_json_body_is_rejected(client, traffic_service):
    body = dict(INCIDENT, description="x'; DROP TABLE traffic_incidents; --")

    response = client.post("/api/traffic/incidents", json=body, headers=AUTH)

    assert response.status_code == 400
    traffic_service.report_incident.assert_not_called()


# ============================================================================
# Analytics
# ============================================================================

def test_analytics_date_order(client, traffic_service):
    response = client.get(
        "/api/analytics/traffic",
        params={"startDate": "2024-01-15T00:00:00", "endDate": "2024-01-14T00:00:00"},
        headers=AUTH,
    )

    assert response.status_code == 400


def test_analytics_granularity(client, traffic_service):
    assert client.get("/api/analytics/traffic", params={"granularity": "month"}, headers=AUTH).status_code == 400

    response = client.get("/api/analytics/traffic", params={"granularity": "day", "limit": 10}, headers=AUTH)

    assert response.status_code == 200
    assert traffic_service.get_traffic_analytics.call_args.kwargs["granularity"] == "day"


def test_system_metrics(client, mock_session, scalars_result):
    mock_session.execute.return_value = scalars_result([])

    response = client.get("/api/analytics/system", headers=AUTH)

    assert response.status_code == 200
    assert response.json()["data"] == {}


# ============================================================================
# Warnings, predictions and keys
# ============================================================================

def test_warning_lifecycle(client):
    assert client.get("/api/warnings", headers=AUTH).json()["data"]["warnings"] == []

    test_warning = client.post("/api/warnings/test", headers=AUTH).json()["data"]
    listed = client.get("/api/warnings", headers=AUTH).json()["data"]

    assert test_warning["title"] == "Test Warning"
    assert listed["warnings"][0]["title"] == "Test Warning"
    assert listed["counts"]["HIGH"] == 1

    assert client.delete("/api/warnings", headers=AUTH).json()["data"] == {"cleared": True}
    assert client.get("/api/warnings", headers=AUTH).json()["data"]["warnings"] == []


def test_subscribe(client, traffic_service):
    response = client.post(
        "/api/warnings/subscribe",
        json={"location": "Westlands", "coordinates": {"lat": -1.264, "lng": 36.806}, "webhookUrl": "https://hooks.example.com/t"},
        headers=AUTH,
    )

    assert response.status_code == 201
    assert traffic_service.subscribe_to_warnings.call_args.kwargs["api_key_id"] is None


def test_subscribe_rejects_non_http_webhook(client, traffic_service):
    response = client.post(
        "/api/warnings/subscribe",
        json={"location": "Westlands", "webhookUrl": "ftp://hooks.example.com"},
        headers=AUTH,
    )

    assert response.status_code == 400


def test_predictions_need_history(client):
    predictive_system.historical_data = []
    predictive_system.predictions = []

    response = client.get("/api/predictions", headers=AUTH)

    assert response.status_code == 200
    assert response.json()["data"]["status"] == "Insufficient data for predictions"


def test_register_api_key(client, mock_session):
    response = client.post("/api/keys", json={
        "applicationName": "Matatu Tracker",
        "contactEmail": "Dev@Example.com",
        "usageType": "research",
        "expectedRequests": 5000,
    })

    assert response.status_code == 201
    data = response.json()["data"]
    assert data["apiKey"].startswith("nbo_")
    assert data["keyId"] == data["apiKey"][:8]
    assert data["rateLimit"] == 2000
    assert data["permissions"] == ["read"]
    stored = mock_session.add.call_args.args[0]
    assert stored.key_hash == hash_api_key(data["apiKey"])
    assert stored.contact_email == "dev@example.com"


def test_register_api_key_rejects_internal_usage(client):
    response = client.post("/api/keys", json={
        "applicationName": "Matatu Tracker",
        "contactEmail": "dev@example.com",
        "usageType": "internal",
        "expectedRequests": 5000,
    })

    assert response.status_code == 400
