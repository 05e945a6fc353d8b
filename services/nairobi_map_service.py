"""Static GeoJSON overlays for the Nairobi map."""

import json
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, Iterator, List, Tuple

import logging

from ingestion.transformers.normalizer import Bounds, NAIROBI_BOUNDS, NAIROBI_CENTER, parse_bounds

logger = logging.getLogger(__name__)

DATA_DIR = Path(__file__).parent / "data"

DATASETS = {
    "boundaries": "nairobi-boundaries.json",
    "landmarks": "nairobi-landmarks.json",
    "roads": "nairobi-roads.json",
    "hotspots": "nairobi-hotspots.json",
    "suburbs": "nairobi-suburbs.json",
}


@lru_cache(maxsize=None)
def load_dataset(name: str) -> Dict[str, Any]:
    with open(DATA_DIR / DATASETS[name], encoding="utf-8") as fh:
        return json.load(fh)


def _positions(coordinates: Any) -> Iterator[Tuple[float, float]]:
    """Yield every (lng, lat) position of a GeoJSON coordinates array"""
    if coordinates and isinstance(coordinates[0], (int, float)):
        yield coordinates[0], coordinates[1]
        return
    for item in coordinates or []:
        yield from _positions(item)


class NairobiMapService:
    """Read-only access to the bundled map layers."""

    def __init__(self):
        self.center = {"lat": NAIROBI_CENTER[0], "lng": NAIROBI_CENTER[1]}
        self.zoom = 11
        self.bounds: Bounds = parse_bounds(NAIROBI_BOUNDS)

    def get_metropolitan_boundaries(self) -> Dict[str, Any]:
        return load_dataset("boundaries")

    def get_major_landmarks(self) -> Dict[str, Any]:
        return load_dataset("landmarks")

    def get_major_roads(self) -> Dict[str, Any]:
        return load_dataset("roads")

    def get_traffic_hotspots(self) -> Dict[str, Any]:
        return load_dataset("hotspots")

    def get_suburbs(self) -> Dict[str, Any]:
        return load_dataset("suburbs")

    def get_data_metadata(self) -> Dict[str, Any]:
        return {
            "center": self.center,
            "zoom": self.zoom,
            "bounds": {
                "southwest": {"lat": self.bounds.min_lat, "lng": self.bounds.min_lon},
                "northeast": {"lat": self.bounds.max_lat, "lng": self.bounds.max_lon},
            },
            "layers": {
                name: {"features": len(load_dataset(name).get("features", []))}
                for name in DATASETS
            },
            "coordinateSystem": "WGS84",
        }

    def find_integrity_problems(self) -> List[str]:
        """
        Every layer must be a FeatureCollection whose geometries lie within
        the metropolitan bounds. Roads must be LineStrings.
        """
        problems = []
        for name in DATASETS:
            try:
                collection = load_dataset(name)
            except (OSError, ValueError) as e:
                problems.append(f"{name}: unreadable ({e})")
                continue

            if collection.get("type") != "FeatureCollection":
                problems.append(f"{name}: not a FeatureCollection")
                continue

            features = collection.get("features") or []
            if name != "suburbs" and not features:
                problems.append(f"{name}: no features")

            for index, feature in enumerate(features):
                geometry = feature.get("geometry") or {}
                if name == "roads" and geometry.get("type") != "LineString":
                    problems.append(f"{name}[{index}]: expected LineString")
                for lng, lat in _positions(geometry.get("coordinates")):
                    if not self.bounds.contains(lat, lng):
                        problems.append(f"{name}[{index}]: ({lat}, {lng}) outside Nairobi bounds")
                        break
        return problems

    def validate_data_integrity(self) -> bool:
        problems = self.find_integrity_problems()
        for problem in problems:
            logger.warning(f"Map data integrity: {problem}")
        return not problems

    def is_healthy(self) -> bool:
        try:
            for name in DATASETS:
                load_dataset(name)
        except (OSError, ValueError) as e:
            logger.error(f"Map data unavailable: {e}")
            return False
        return True
