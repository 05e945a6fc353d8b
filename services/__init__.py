"""
Application services used by the API layer and the scheduler.

Modules:
    cache: In-process TTL cache with hit/miss statistics
    traffic_service: Cache-aside access to TomTom and the traffic tables
    nairobi_map_service: Static GeoJSON overlays for the Nairobi map
    warning_system: Rule-based traffic warnings
    prediction: Heuristic short-term traffic predictions
    metrics: SystemMetric recording and aggregation
    realtime: WebSocket connection registry and broadcast
"""

__all__ = [
    "TTLCache",
    "traffic_cache",
    "TrafficDataService",
    "NairobiMapService",
    "WarningSystem",
    "PredictiveWarningSystem",
    "MetricsService",
    "ConnectionManager",
]
