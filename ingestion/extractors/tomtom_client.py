"""
TomTom traffic API client with retry logic and a circuit breaker.

Three endpoints are used:
- Traffic flow (flowSegmentAbsolute) for a bounding box
- Incident details for a bounding box
- Routing (calculateRoute) between two "lat,lng" points

Every request goes through ``_make_request_with_retry``:
- Exponential backoff on timeouts, network errors and HTTP 5xx
- ``Retry-After`` honored on HTTP 429
- HTTP 401/403/404 raised immediately
- Circuit breaker opens after 5 consecutive failures for 60 seconds
"""

import httpx
import asyncio
from typing import Dict, Any, List, Optional
from datetime import datetime, timedelta
from core.config import settings
from core.exceptions import (
    ExternalAPIError,
    NetworkError,
    RateLimitError,
    AuthenticationError,
    ResourceNotFoundError,
    ProviderNotConfiguredError,
)
from ingestion.transformers.normalizer import Bounds, NAIROBI_BOUNDS, parse_bounds
import logging

logger = logging.getLogger(__name__)

INCIDENT_FIELDS = (
    "{incidents{type{description},geometry{type,coordinates},severity,"
    "delayInSeconds,startTime,endTime,description}}"
)


class TomTomClient:
    """
    Thin async wrapper around the TomTom REST API.

    Attributes:
        api_key: TomTom API key (defaults to settings.TOMTOM_API_KEY)
        base_url: API root (defaults to settings.TOMTOM_BASE_URL)
        max_retries: Maximum number of attempts per request
        retry_delay: Initial retry delay in seconds
        timeout: Request timeout in seconds
    """

    provider = "tomtom"

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        max_retries: Optional[int] = None,
        retry_delay: float = 1.0,
        timeout: Optional[float] = None
    ):
        self.api_key = api_key if api_key is not None else settings.TOMTOM_API_KEY
        self.base_url = (base_url or settings.TOMTOM_BASE_URL).rstrip("/")
        self.max_retries = max_retries or settings.MAX_RETRIES
        self.retry_delay = retry_delay
        self.timeout = timeout or settings.TOMTOM_TIMEOUT

        # Circuit breaker state
        self._circuit_breaker_failures = 0
        self._circuit_breaker_threshold = 5
        self._circuit_breaker_open_until: Optional[datetime] = None
        self._circuit_breaker_timeout = 60  # seconds

    @property
    def is_configured(self) -> bool:
        return bool(self.api_key)

    def _require_key(self):
        if not self.api_key:
            raise ProviderNotConfiguredError("TomTom API key not configured")

    def _is_circuit_open(self) -> bool:
        """Check if circuit breaker is open."""
        if self._circuit_breaker_open_until is None:
            return False

        if datetime.utcnow() >= self._circuit_breaker_open_until:
            logger.info("Circuit breaker reset for TomTom")
            self._circuit_breaker_failures = 0
            self._circuit_breaker_open_until = None
            return False

        return True

    def _record_failure(self):
        """Record a failure and potentially open circuit breaker."""
        self._circuit_breaker_failures += 1

        if self._circuit_breaker_failures >= self._circuit_breaker_threshold:
            self._circuit_breaker_open_until = datetime.utcnow() + timedelta(
                seconds=self._circuit_breaker_timeout
            )
            logger.warning(
                f"Circuit breaker opened for TomTom. "
                f"Will retry after {self._circuit_breaker_timeout} seconds."
            )

    def _record_success(self):
        """Record a successful request."""
        self._circuit_breaker_failures = 0
        self._circuit_breaker_open_until = None

    async def _make_request_with_retry(
        self,
        client: httpx.AsyncClient,
        url: str,
        params: Dict[str, Any]
    ) -> httpx.Response:
        """
        Make HTTP GET request with retry logic and exponential backoff.

        Raises:
            ExternalAPIError: Circuit open or unexpected failure
            AuthenticationError: HTTP 401/403
            ResourceNotFoundError: HTTP 404
            RateLimitError: HTTP 429 on the last attempt
            NetworkError: Timeouts, transport errors or 5xx after max retries
        """
        if self._is_circuit_open():
            raise ExternalAPIError(
                "Circuit breaker is open for TomTom",
                context={
                    "api_url": url,
                    "open_until": self._circuit_breaker_open_until.isoformat()
                }
            )

        last_exception = None

        for attempt in range(self.max_retries):
            try:
                logger.debug(f"Request attempt {attempt + 1}/{self.max_retries} to {url}")

                response = await client.get(url, params=params, timeout=self.timeout)

                if response.status_code in (401, 403):
                    self._record_failure()
                    raise AuthenticationError(
                        f"TomTom rejected the API key for {url}",
                        context={"status_code": response.status_code, "api_url": url}
                    )

                if response.status_code == 404:
                    self._record_failure()
                    raise ResourceNotFoundError(
                        f"Resource not found: {url}",
                        context={"status_code": 404, "api_url": url}
                    )

                if response.status_code == 429:
                    retry_after = int(response.headers.get("Retry-After", self.retry_delay * (2 ** attempt)))
                    logger.warning(f"Rate limited by TomTom. Retrying after {retry_after} seconds")

                    if attempt < self.max_retries - 1:
                        await asyncio.sleep(retry_after)
                        continue
                    self._record_failure()
                    raise RateLimitError(
                        f"Rate limit exceeded for {url}",
                        context={"status_code": 429, "api_url": url, "retry_count": attempt + 1},
                        retry_after=retry_after
                    )

                if response.status_code >= 500:
                    if attempt < self.max_retries - 1:
                        delay = self.retry_delay * (2 ** attempt)
                        logger.warning(
                            f"Server error {response.status_code}. "
                            f"Retrying in {delay} seconds (attempt {attempt + 1}/{self.max_retries})"
                        )
                        await asyncio.sleep(delay)
                        continue
                    self._record_failure()
                    raise NetworkError(
                        f"Server error after {self.max_retries} retries",
                        context={
                            "status_code": response.status_code,
                            "api_url": url,
                            "retry_count": attempt + 1,
                            "response_body": response.text[:500]
                        }
                    )

                response.raise_for_status()
                self._record_success()
                return response

            except httpx.TimeoutException as e:
                last_exception = e
                if attempt < self.max_retries - 1:
                    delay = self.retry_delay * (2 ** attempt)
                    logger.warning(f"Request timeout. Retrying in {delay} seconds")
                    await asyncio.sleep(delay)
                else:
                    self._record_failure()
                    raise NetworkError(
                        f"Request timeout after {self.max_retries} retries",
                        context={"api_url": url, "timeout": self.timeout, "retry_count": attempt + 1},
                        original_exception=e
                    )

            except httpx.NetworkError as e:
                last_exception = e
                if attempt < self.max_retries - 1:
                    delay = self.retry_delay * (2 ** attempt)
                    logger.warning(f"Network error. Retrying in {delay} seconds")
                    await asyncio.sleep(delay)
                else:
                    self._record_failure()
                    raise NetworkError(
                        f"Network error after {self.max_retries} retries",
                        context={"api_url": url, "retry_count": attempt + 1},
                        original_exception=e
                    )

            except ExternalAPIError:
                raise

            except httpx.HTTPStatusError as e:
                self._record_failure()
                raise ExternalAPIError(
                    f"Unexpected HTTP status {e.response.status_code} from TomTom",
                    context={"api_url": url, "status_code": e.response.status_code},
                    original_exception=e
                )

        raise ExternalAPIError(
            "Max retries exceeded",
            context={"api_url": url},
            original_exception=last_exception
        )

    async def _get_json(self, path: str, params: Dict[str, Any]) -> Any:
        self._require_key()
        url = f"{self.base_url}{path}"
        query = {"key": self.api_key, **params}

        async with httpx.AsyncClient(timeout=self.timeout) as client:
            response = await self._make_request_with_retry(client, url, query)

        try:
            return response.json()
        except ValueError as e:
            raise ExternalAPIError(
                "Failed to parse JSON response",
                context={"api_url": url, "response_body": response.text[:500]},
                original_exception=e
            )

    async def fetch_traffic_flow(self, bounds: Optional[str] = None) -> Dict[str, Any]:
        """Raw flowSegmentAbsolute response for ``bounds`` (defaults to Nairobi)"""
        box: Bounds = parse_bounds(bounds or NAIROBI_BOUNDS)
        path = (
            "/traffic/services/4/flowSegmentAbsolute/relative/json/10/"
            f"{box.min_lat},{box.min_lon}/{box.max_lat},{box.max_lon}"
        )
        return await self._get_json(path, {"thickness": 10, "openStreetMap": "true"})

    async def fetch_incidents(self, bounds: Optional[str] = None) -> List[Dict[str, Any]]:
        """Raw incident list for ``bounds`` (defaults to Nairobi)"""
        box: Bounds = parse_bounds(bounds or NAIROBI_BOUNDS)
        data = await self._get_json(
            "/traffic/services/5/incidentDetails/json",
            {
                "bbox": f"{box.min_lon},{box.min_lat},{box.max_lon},{box.max_lat}",
                "fields": INCIDENT_FIELDS,
            },
        )
        if not isinstance(data, dict):
            return []
        return data.get("incidents") or []

    async def fetch_route(
        self,
        start: str,
        end: str,
        alternatives: bool = False,
        options: Optional[Dict[str, Any]] = None
    ) -> Dict[str, Any]:
        """
        Route between two "lat,lng" points with live traffic.

        Args:
            start: Origin as "lat,lng"
            end: Destination as "lat,lng"
            alternatives: Request alternative routes
            options: avoidTolls, avoidHighways, vehicleType
        """
        options = options or {}
        params: Dict[str, Any] = {
            "traffic": "true",
            "travelMode": options.get("vehicleType") or "car",
            "instructionsType": "text",
        }
        if alternatives:
            params["maxAlternatives"] = 2

        avoid = []
        if options.get("avoidTolls"):
            avoid.append("tollRoads")
        if options.get("avoidHighways"):
            avoid.append("motorways")
        if avoid:
            params["avoid"] = avoid

        return await self._get_json(f"/routing/1/calculateRoute/{start}:{end}/json", params)
