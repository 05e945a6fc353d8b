"""
Logging configuration and structured event helpers
"""

import logging
import sys
from typing import Any, Dict, Optional

from core.config import settings

performance_logger = logging.getLogger("traffic.performance")
business_logger = logging.getLogger("traffic.business")
security_logger = logging.getLogger("traffic.security")


def setup_logging():
    """Configure application logging"""
    
    # Get log level from settings
    log_level = getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO)
    
    # Configure root logger
    logging.basicConfig(
        level=log_level,
        format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        handlers=[
            logging.StreamHandler(sys.stdout)
        ]
    )
    
    # Set SQLAlchemy and HTTP client logging to WARNING to reduce noise
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.pool").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("apscheduler").setLevel(logging.WARNING)
    
    logger = logging.getLogger(__name__)
    logger.info(f"Logging configured at {settings.LOG_LEVEL} level")


def _format_fields(fields: Dict[str, Any]) -> str:
    return " ".join(f"{k}={v}" for k, v in fields.items() if v is not None)


# Performance

def log_cache_operation(operation: str, key: str, hit: bool, duration_ms: float):
    performance_logger.debug(
        f"cache {operation} | {_format_fields({'key': key, 'hit': hit, 'duration_ms': round(duration_ms, 2)})}"
    )


def log_external_api_call(provider: str, endpoint: str, duration_ms: float, success: bool):
    fields = _format_fields({
        "provider": provider,
        "endpoint": endpoint,
        "duration_ms": round(duration_ms, 2),
        "success": success,
    })
    if success:
        performance_logger.info(f"external api call | {fields}")
    else:
        performance_logger.warning(f"external api call failed | {fields}")


def log_slow_query(query: str, duration_ms: float, threshold_ms: float = 1000):
    if duration_ms > threshold_ms:
        performance_logger.warning(
            f"slow query | {_format_fields({'query': query[:200], 'duration_ms': round(duration_ms, 2)})}"
        )


# Business events

def log_traffic_data_recorded(location: str, data_source: str, congestion_level: Optional[str]):
    business_logger.info(
        f"traffic data recorded | {_format_fields({'location': location, 'source': data_source, 'congestion': congestion_level})}"
    )


def log_incident_reported(incident_id: str, incident_type: str, severity: str, location: str):
    business_logger.info(
        f"incident reported | {_format_fields({'id': incident_id, 'type': incident_type, 'severity': severity, 'location': location})}"
    )


# Security events

def log_suspicious_activity(activity: str, ip: Optional[str], details: Optional[Dict[str, Any]] = None):
    security_logger.warning(
        f"suspicious activity: {activity} | {_format_fields({'ip': ip, **(details or {})})}"
    )


def log_authentication_attempt(success: bool, ip: Optional[str], key_prefix: Optional[str] = None, reason: Optional[str] = None):
    fields = _format_fields({"ip": ip, "key": key_prefix, "reason": reason})
    if success:
        security_logger.debug(f"authentication succeeded | {fields}")
    else:
        security_logger.warning(f"authentication failed | {fields}")


def log_rate_limit_exceeded(limiter: str, ip: Optional[str], path: str):
    security_logger.warning(
        f"rate limit exceeded | {_format_fields({'limiter': limiter, 'ip': ip, 'path': path})}"
    )
