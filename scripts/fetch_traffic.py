"""
Run one TomTom fetch and store cycle for Nairobi (or the given bounds)
"""

import asyncio
import sys
import os
import logging

# Add current directory to path to allow imports from core, models, etc.
sys.path.append(os.getcwd())

from core.config import settings
from core.database import async_session_maker, engine
from core.logging import setup_logging
from services.traffic_service import TrafficDataService

setup_logging()
logger = logging.getLogger(__name__)


async def fetch_once(bounds=None):
    if not settings.TOMTOM_API_KEY:
        logger.error("TOMTOM_API_KEY is not set")
        return 1

    async with async_session_maker() as session:
        service = TrafficDataService(session)
        snapshot = await service.get_live_traffic_data(bounds)
        incidents = await service.get_traffic_incidents()

    await engine.dispose()

    if snapshot.get("source") == "fallback":
        logger.error("TomTom flow request failed; nothing stored")
        return 1

    logger.info(f"Fetched {len(snapshot['segments'])} segments and {len(incidents)} incidents")
    return 0


if __name__ == "__main__":
    sys.exit(asyncio.run(fetch_once(sys.argv[1] if len(sys.argv) > 1 else None)))
