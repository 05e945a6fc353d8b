"""
Bulk-load TomTom samples and incidents into PostgreSQL
"""

from typing import Any, Dict, List
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.dialects.postgresql import insert
from models.traffic_data import TrafficData
from models.incident import TrafficIncident
from ingestion.transformers.normalizer import segment_to_record, incident_to_record
import logging

logger = logging.getLogger(__name__)


class TrafficLoader:
    """
    Persist feed data with INSERT ... ON CONFLICT DO NOTHING.

    Persistence is best-effort: a failed batch is rolled back and logged,
    and the caller receives 0 instead of an exception.
    """

    def __init__(self, db_session: AsyncSession):
        self.db = db_session

    async def store_traffic_data(self, snapshot: Dict[str, Any]) -> int:
        """
        Store every segment of a flow snapshot as a TrafficData row.

        Returns:
            Number of rows submitted
        """
        segments = snapshot.get("segments") if isinstance(snapshot, dict) else None
        if not segments or not isinstance(segments, list):
            return 0

        records = [segment_to_record(segment) for segment in segments]
        return await self._bulk_insert(TrafficData, records, label="traffic samples")

    async def store_incident_data(self, incidents: List[Dict[str, Any]]) -> int:
        """
        Store TomTom incidents, skipping ones already stored for the same
        (source, external_id).
        """
        if not incidents or not isinstance(incidents, list):
            return 0

        records = [incident_to_record(incident) for incident in incidents]
        return await self._bulk_insert(TrafficIncident, records, label="incidents")

    async def _bulk_insert(self, model, records: List[Dict[str, Any]], label: str) -> int:
        try:
            stmt = insert(model).values(records).on_conflict_do_nothing()
            await self.db.execute(stmt)
            await self.db.commit()
        except Exception as e:
            await self.db.rollback()
            logger.error(f"Error storing {label}: {e} (count={len(records)})")
            return 0

        logger.debug(f"Stored {len(records)} {label} from tomtom")
        return len(records)
