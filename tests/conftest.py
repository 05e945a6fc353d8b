"""
Pytest configuration and fixtures
"""

import os

# Settings are read at import time
os.environ.setdefault("SCHEDULER_ENABLED", "false")
os.environ.setdefault("TOMTOM_API_KEY", "test-tomtom-key")
os.environ.setdefault("VALID_API_KEYS", "test-api-key,second-key")
os.environ.setdefault("ENVIRONMENT", "test")

from datetime import datetime
from unittest.mock import AsyncMock, MagicMock, Mock

import pytest

from services.cache import TTLCache


@pytest.fixture
def mock_session():
    """AsyncSession stand-in: awaitable execute/commit, synchronous add"""
    session = AsyncMock()
    session.add = Mock()
    session.execute = AsyncMock()
    session.commit = AsyncMock()
    session.rollback = AsyncMock()
    session.refresh = AsyncMock()
    session.get = AsyncMock(return_value=None)
    return session


@pytest.fixture
def scalars_result():
    """Build a mock for ``(await session.execute(...)).scalars().all()``"""
    def build(items):
        result = MagicMock()
        result.scalars.return_value.all.return_value = list(items)
        result.scalars.return_value.first.return_value = items[0] if items else None
        return result
    return build


@pytest.fixture
def cache():
    return TTLCache(default_ttl=300)


@pytest.fixture
def mock_tomtom():
    client = Mock()
    client.fetch_traffic_flow = AsyncMock()
    client.fetch_incidents = AsyncMock(return_value=[])
    client.fetch_route = AsyncMock()
    return client


@pytest.fixture
def flow_response():
    """flowSegmentAbsolute payload with two segments"""
    return {
        "flowSegmentData": [
            {
                "frc": "FRC1",
                "currentSpeed": 54,
                "freeFlowSpeed": 60,
                "currentTravelTime": 120,
                "freeFlowTravelTime": 100,
                "confidence": 0.95,
                "coordinates": {"coordinate": [{"latitude": -1.2864, "longitude": 36.8172}]},
            },
            {
                "frc": "FRC3",
                "currentSpeed": 12,
                "freeFlowSpeed": 50,
                "currentTravelTime": 400,
                "freeFlowTravelTime": 90,
                "confidence": 0.7,
                "coordinates": [[36.8250, -1.3050], [36.8260, -1.3060]],
            },
        ]
    }


@pytest.fixture
def tomtom_incident():
    return {
        "type": "Feature",
        "id": "tt-incident-1",
        "geometry": {"type": "LineString", "coordinates": [[36.8219, -1.2921], [36.8230, -1.2930]]},
        "properties": {
            "iconCategory": 1,
            "magnitudeOfDelay": 3,
            "description": "Accident on Mombasa Road",
            "delay": 900,
            "startTime": "2024-01-15T07:30:00Z",
        },
    }


@pytest.fixture
def fixed_now():
    # Monday 15 Jan 2024, 05:00 UTC = 08:00 in Nairobi
    return datetime(2024, 1, 15, 5, 0, 0)
