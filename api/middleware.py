# ============================================================================
# File: api/middleware.py
# ============================================================================

import json
import logging
import re
import time
import uuid
from typing import Any

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import JSONResponse, Response

from api.rate_limit import get_client_ip
from core.logging import log_suspicious_activity
from schemas.api import utc_timestamp

logger = logging.getLogger("traffic.requests")

SLOW_REQUEST_MS = 1000

SUSPICIOUS_PATTERNS = [
    re.compile(r"\.\."),
    re.compile(r"<script", re.IGNORECASE),
    re.compile(r"javascript:", re.IGNORECASE),
    re.compile(r"on\w+\s*=", re.IGNORECASE),
    re.compile(r"union\s+select", re.IGNORECASE),
    re.compile(r"select\s+.*\s+from", re.IGNORECASE),
    re.compile(r"drop\s+table", re.IGNORECASE),
    re.compile(r"insert\s+into", re.IGNORECASE),
    re.compile(r"delete\s+from", re.IGNORECASE),
    re.compile(r"update\s+.*\s+set", re.IGNORECASE),
]


def is_suspicious(value: Any) -> bool:
    if isinstance(value, str):
        return any(pattern.search(value) for pattern in SUSPICIOUS_PATTERNS)
    if isinstance(value, dict):
        return any(is_suspicious(v) for v in value.values())
    if isinstance(value, list):
        return any(is_suspicious(v) for v in value)
    return False


class RequestContextMiddleware(BaseHTTPMiddleware):
    """
    Injects:
    - request_id
    - api_latency_ms

    Logs every response and warns on requests slower than one second.
    """

    async def dispatch(self, request: Request, call_next):
        request_id = request.headers.get("x-request-id") or str(uuid.uuid4())
        start_time = time.perf_counter()

        request.state.request_id = request_id

        response: Response = await call_next(request)

        latency_ms = int((time.perf_counter() - start_time) * 1000)

        response.headers["X-Request-ID"] = request_id
        response.headers["X-API-Latency-ms"] = str(latency_ms)

        summary = f"[{request_id}] {request.method} {request.url.path} -> {response.status_code} in {latency_ms}ms"
        if latency_ms > SLOW_REQUEST_MS:
            logger.warning(f"Slow API request: {summary}")
        else:
            logger.info(summary)

        return response


class SecurityMonitoringMiddleware(BaseHTTPMiddleware):
    """Reject requests whose query, path or JSON body looks like an injection attempt"""

    async def dispatch(self, request: Request, call_next):
        data = {"path": request.url.path}
        data.update(request.query_params)

        if request.headers.get("content-type", "").startswith("application/json"):
            body = await request.body()
            if body:
                try:
                    data["body"] = json.loads(body)
                except ValueError:
                    # malformed JSON is left to request validation
                    pass

        if is_suspicious(data):
            log_suspicious_activity(
                "suspicious input",
                get_client_ip(request),
                {
                    "method": request.method,
                    "url": str(request.url),
                    "user_agent": request.headers.get("user-agent"),
                },
            )
            return JSONResponse(
                status_code=400,
                content={
                    "success": False,
                    "error": "Invalid input detected",
                    "timestamp": utc_timestamp(),
                },
            )

        return await call_next(request)
