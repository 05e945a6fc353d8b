"""
FastAPI application initialization
"""

from typing import Any, Dict, Optional

from fastapi import Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from api.middleware import RequestContextMiddleware, SecurityMonitoringMiddleware
from api.rate_limit import api_limiter
from api.routes import analytics, health, keys, nairobi, realtime, traffic, warnings
from core.config import settings
from core.exceptions import APIKeyError, InvalidBoundsError, TrafficSystemError
from core.logging import setup_logging
from ingestion.scheduler import TrafficScheduler
from schemas.api import utc_timestamp
import logging

setup_logging()

logger = logging.getLogger(__name__)

AVAILABLE_ENDPOINTS = [
    "GET /api/health",
    "GET /api/nairobi/boundaries",
    "GET /api/nairobi/landmarks",
    "GET /api/nairobi/roads",
    "GET /api/nairobi/hotspots",
    "GET /api/nairobi/suburbs",
    "GET /api/nairobi/metadata",
    "POST /api/keys",
    "GET /api/traffic/live",
    "GET /api/traffic/incidents",
    "GET /api/traffic/route",
    "POST /api/traffic/data",
    "POST /api/traffic/incidents",
    "POST /api/traffic/incidents/{id}/resolve",
    "POST /api/traffic/incidents/{id}/verify",
    "GET /api/analytics/traffic",
    "GET /api/analytics/system",
    "POST /api/warnings/subscribe",
    "GET /api/warnings",
    "DELETE /api/warnings",
    "POST /api/warnings/test",
    "GET /api/predictions",
    "WS /ws/traffic",
]

# Create FastAPI app
app = FastAPI(
    title="Nairobi Traffic API",
    description="Live traffic, incidents, routing, warnings and predictions for Nairobi",
    version=settings.APP_VERSION,
    docs_url="/docs",
    redoc_url="/redoc"
)

app.add_middleware(SecurityMonitoringMiddleware)
app.add_middleware(RequestContextMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    allow_headers=[
        "Origin", "X-Requested-With", "Content-Type", "Accept",
        "Authorization", "X-API-Key", "Cache-Control", "Pragma",
    ],
    expose_headers=["X-Request-ID", "X-RateLimit-Limit", "X-RateLimit-Remaining", "X-RateLimit-Reset"],
    max_age=86400,
)

scheduler: Optional[TrafficScheduler] = None


# Include routers; every /api route shares the general limiter
for api_router in (health.router, nairobi.router, keys.router, traffic.router, analytics.router, warnings.router):
    app.include_router(api_router, dependencies=[Depends(api_limiter)])
app.include_router(realtime.router)


def error_body(error: str, **extra: Any) -> Dict[str, Any]:
    body = {"success": False, "error": error}
    body.update(extra)
    body["timestamp"] = utc_timestamp()
    return body


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    if exc.status_code == 404 and exc.detail == "Not Found":
        return JSONResponse(
            status_code=404,
            content=error_body("Endpoint not found", availableEndpoints=AVAILABLE_ENDPOINTS),
        )

    if isinstance(exc.detail, dict):
        detail = dict(exc.detail)
        content = error_body(str(detail.pop("error", "Request failed")), **detail)
    else:
        content = error_body(str(exc.detail))

    return JSONResponse(status_code=exc.status_code, content=content, headers=getattr(exc, "headers", None))


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    details = []
    for error in exc.errors():
        location = [str(part) for part in error.get("loc", ()) if part not in ("body", "query", "path")]
        value = error.get("input")
        details.append({
            "field": ".".join(location),
            "message": error.get("msg", "Invalid value"),
            "value": value if isinstance(value, (str, int, float, bool)) or value is None else str(value),
        })
    return JSONResponse(status_code=400, content=error_body("Validation failed", details=details))


@app.exception_handler(TrafficSystemError)
async def traffic_error_handler(request: Request, exc: TrafficSystemError):
    if isinstance(exc, APIKeyError):
        return JSONResponse(status_code=exc.status_code, content=error_body(exc.message))
    if isinstance(exc, InvalidBoundsError):
        return JSONResponse(status_code=400, content=error_body(exc.message))

    logger.error(f"Unhandled application error on {request.method} {request.url.path}: {exc}")
    message = "Internal server error" if settings.ENVIRONMENT == "production" else exc.message
    return JSONResponse(status_code=500, content=error_body(message))


@app.on_event("startup")
async def startup_event():
    """Application startup event"""
    global scheduler

    logger.info("Starting Nairobi Traffic API")
    logger.info(f"Environment: {settings.ENVIRONMENT}")
    logger.info(f"Database: {settings.DATABASE_URL.split('@')[1] if '@' in settings.DATABASE_URL else 'configured'}")
    if not settings.TOMTOM_API_KEY:
        logger.warning("TOMTOM_API_KEY is not set; live traffic will use the fallback snapshot")

    if settings.SCHEDULER_ENABLED:
        scheduler = TrafficScheduler()
        scheduler.start()


@app.on_event("shutdown")
async def shutdown_event():
    """Application shutdown event"""
    logger.info("Shutting down Nairobi Traffic API")
    if scheduler is not None:
        scheduler.stop()


@app.get("/")
async def root():
    """Root endpoint"""
    return {
        "message": "Nairobi Traffic API",
        "version": settings.APP_VERSION,
        "docs": "/docs",
        "health": "/api/health",
        "endpoints": {
            "nairobi": "/api/nairobi",
            "traffic": "/api/traffic",
            "analytics": "/api/analytics",
            "warnings": "/api/warnings",
            "predictions": "/api/predictions",
            "keys": "/api/keys",
            "websocket": "/ws/traffic",
        }
    }
