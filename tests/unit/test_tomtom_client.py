"""
Unit tests for the TomTom client
"""

import httpx
import pytest
from unittest.mock import AsyncMock, patch

from core.exceptions import (
    AuthenticationError,
    ExternalAPIError,
    NetworkError,
    ProviderNotConfiguredError,
    RateLimitError,
    ResourceNotFoundError,
)
from ingestion.extractors.tomtom_client import TomTomClient


def _response(status_code, json=None, headers=None):
    return httpx.Response(
        status_code,
        json=json,
        headers=headers,
        request=httpx.Request("GET", "https://api.tomtom.com/test"),
    )


@pytest.fixture
def http_get():
    """Patch httpx.AsyncClient and expose its awaited ``get``"""
    with patch("httpx.AsyncClient") as mock_client:
        get = AsyncMock()
        mock_client.return_value.__aenter__.return_value.get = get
        yield get


@pytest.fixture
def no_sleep():
    with patch("ingestion.extractors.tomtom_client.asyncio.sleep", new_callable=AsyncMock) as sleep:
        yield sleep


@pytest.fixture
def client():
    return TomTomClient(api_key="tt-key", base_url="https://api.tomtom.com", max_retries=3, retry_delay=0.5)


class TestTomTomRequests:
    """Endpoint paths and query parameters"""

    @pytest.mark.asyncio
    async def test_fetch_traffic_flow(self, client, http_get, flow_response):
        http_get.return_value = _response(200, json=flow_response)

        data = await client.fetch_traffic_flow()

        assert data == flow_response
        url = http_get.call_args.args[0]
        params = http_get.call_args.kwargs["params"]
        assert url == (
            "https://api.tomtom.com/traffic/services/4/flowSegmentAbsolute/relative/json/10/"
            "-1.4449,36.6786/-1.1629,37.099"
        )
        assert params["key"] == "tt-key"
        assert params["thickness"] == 10
        assert params["openStreetMap"] == "true"

    @pytest.mark.asyncio
    async def test_fetch_incidents_uses_lon_lat_bbox(self, client, http_get, tomtom_incident):
        http_get.return_value = _response(200, json={"incidents": [tomtom_incident]})

        incidents = await client.fetch_incidents("-1.30,36.80,-1.25,36.85")

        assert incidents == [tomtom_incident]
        assert http_get.call_args.args[0].endswith("/traffic/services/5/incidentDetails/json")
        assert http_get.call_args.kwargs["params"]["bbox"] == "36.8,-1.3,36.85,-1.25"

    @pytest.mark.asyncio
    async def test_fetch_incidents_non_dict_response(self, client, http_get):
        http_get.return_value = _response(200, json=["unexpected"])

        assert await client.fetch_incidents() == []

    @pytest.mark.asyncio
    async def test_fetch_route_options(self, client, http_get):
        http_get.return_value = _response(200, json={"routes": []})

        await client.fetch_route(
            "-1.2921,36.8219", "-1.3192,36.9278", alternatives=True,
            options={"avoidTolls": True, "avoidHighways": True, "vehicleType": "truck"},
        )

        url = http_get.call_args.args[0]
        params = http_get.call_args.kwargs["params"]
        assert url.endswith("/routing/1/calculateRoute/-1.2921,36.8219:-1.3192,36.9278/json")
        assert params["traffic"] == "true"
        assert params["travelMode"] == "truck"
        assert params["maxAlternatives"] == 2
        assert params["avoid"] == ["tollRoads", "motorways"]

    @pytest.mark.asyncio
    async def test_missing_key_raises_before_request(self, http_get):
        client = TomTomClient(api_key="")

        with pytest.raises(ProviderNotConfiguredError):
            await client.fetch_traffic_flow()
        http_get.assert_not_called()


class TestRetryBehaviour:
    """Retry, backoff and error mapping"""

    @pytest.mark.asyncio
    async def test_server_error_is_retried(self, client, http_get, no_sleep):
        http_get.side_effect = [_response(503), _response(200, json={"ok": True})]

        assert await client.fetch_traffic_flow() == {"ok": True}
        assert http_get.call_count == 2
        no_sleep.assert_awaited_once_with(0.5)

    @pytest.mark.asyncio
    async def test_server_error_exhausts_retries(self, client, http_get, no_sleep):
        http_get.return_value = _response(500)

        with pytest.raises(NetworkError):
            await client.fetch_traffic_flow()
        assert http_get.call_count == 3
        assert [c.args[0] for c in no_sleep.await_args_list] == [0.5, 1.0]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status_code", [401, 403])
    async def test_auth_failure_is_not_retried(self, client, http_get, no_sleep, status_code):
        http_get.return_value = _response(status_code)

        with pytest.raises(AuthenticationError):
            await client.fetch_traffic_flow()
        assert http_get.call_count == 1

    @pytest.mark.asyncio
    async def test_not_found_is_not_retried(self, client, http_get, no_sleep):
        http_get.return_value = _response(404)

        with pytest.raises(ResourceNotFoundError):
            await client.fetch_incidents()
        assert http_get.call_count == 1

    @pytest.mark.asyncio
    async def test_rate_limit_honours_retry_after(self, client, http_get, no_sleep):
        http_get.return_value = _response(429, headers={"Retry-After": "7"})

        with pytest.raises(RateLimitError) as exc_info:
            await client.fetch_traffic_flow()

        assert exc_info.value.retry_after == 7
        assert [c.args[0] for c in no_sleep.await_args_list] == [7, 7]

    @pytest.mark.asyncio
    async def test_timeouts_become_network_error(self, client, http_get, no_sleep):
        http_get.side_effect = httpx.ReadTimeout("timed out")

        with pytest.raises(NetworkError):
            await client.fetch_traffic_flow()
        assert http_get.call_count == 3

    @pytest.mark.asyncio
    async def test_invalid_json_raises(self, client, http_get):
        http_get.return_value = httpx.Response(
            200, content=b"<html>", request=httpx.Request("GET", "https://api.tomtom.com/test")
        )

        with pytest.raises(ExternalAPIError):
            await client.fetch_traffic_flow()

    @pytest.mark.asyncio
    async def test_circuit_breaker_opens_after_repeated_failures(self, client, http_get):
        for _ in range(5):
            client._record_failure()

        with pytest.raises(ExternalAPIError, match="Circuit breaker"):
            await client.fetch_traffic_flow()
        http_get.assert_not_called()

    @pytest.mark.asyncio
    async def test_success_resets_failure_count(self, client, http_get):
        client._record_failure()
        client._record_failure()
        http_get.return_value = _response(200, json={})

        await client.fetch_traffic_flow()

        assert client._circuit_breaker_failures == 0
