"""
TomTom ingestion for the Nairobi traffic backend.

Subpackages:
    extractors: TomTomClient with retries and a circuit breaker
    transformers: Conversion of TomTom responses into snapshots and rows
    loaders: Best-effort bulk inserts of feed data

Modules:
    scheduler: APScheduler jobs for broadcasts, warnings, predictions and
        daily housekeeping

Usage:
    from ingestion.extractors.tomtom_client import TomTomClient
    from ingestion.transformers.normalizer import process_flow_response
    from ingestion.loaders.postgres_loader import TrafficLoader

    client = TomTomClient()
    snapshot = process_flow_response(await client.fetch_traffic_flow())
    await TrafficLoader(session).store_traffic_data(snapshot)

Upstream failures are raised as core.exceptions.ExternalAPIError
subclasses; callers decide whether to fall back.
"""

__all__ = [
    "TomTomClient",
    "TrafficLoader",
    "TrafficScheduler",
]
