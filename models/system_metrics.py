from sqlalchemy import Column, String, Float, DateTime, Enum, Index
from sqlalchemy.dialects.postgresql import JSONB, UUID
from datetime import datetime
from typing import Any, Dict
import uuid

from models.base import Base, MetricType, enum_value, enum_values


class SystemMetric(Base):
    """Point-in-time measurement recorded by the application"""
    __tablename__ = "system_metrics"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    metric_type = Column(
        Enum(MetricType, name="metric_type", values_callable=enum_values),
        nullable=False,
    )
    metric_name = Column(String(100), nullable=False)
    metric_value = Column(Float, nullable=False)
    metric_unit = Column(String(20), nullable=True)
    tags = Column(JSONB, nullable=True)
    timestamp = Column(DateTime, nullable=False, default=datetime.utcnow)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    __table_args__ = (
        Index("idx_metrics_type_name", "metric_type", "metric_name"),
        Index("idx_metrics_timestamp", "timestamp"),
        Index("idx_metrics_type_timestamp", "metric_type", "timestamp"),
    )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": enum_value(self.metric_type),
            "name": self.metric_name,
            "value": self.metric_value,
            "unit": self.metric_unit,
            "tags": self.tags or {},
            "timestamp": self.timestamp.isoformat() if self.timestamp else None,
        }
