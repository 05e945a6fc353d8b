"""
Transform raw TomTom responses into snapshots and database records
"""

from typing import Dict, Any, Optional, List, NamedTuple, Tuple
from datetime import datetime, timezone
from core.exceptions import InvalidBoundsError
from models.base import (
    CongestionLevel, IncidentSeverity, IncidentStatus, IncidentType, RoadType, WeatherCondition
)
from models.traffic_data import congestion_from_speeds
import logging

logger = logging.getLogger(__name__)

NAIROBI_BOUNDS = "-1.4449,36.6786,-1.1629,37.0990"
NAIROBI_CENTER = (-1.2921, 36.8219)  # (lat, lng)

FALLBACK_MESSAGE = "Live traffic data unavailable. Using cached data."

ROAD_CATEGORY_MAP = {
    "FRC0": RoadType.HIGHWAY,
    "FRC1": RoadType.HIGHWAY,
    "FRC2": RoadType.ARTERIAL,
    "FRC3": RoadType.ARTERIAL,
}

INCIDENT_TYPE_MAP = {
    "accident": IncidentType.ACCIDENT,
    "construction": IncidentType.CONSTRUCTION,
    "weather": IncidentType.WEATHER,
    "roadblock": IncidentType.ROADBLOCK,
    "breakdown": IncidentType.BREAKDOWN,
}

INCIDENT_SEVERITY_MAP = {
    "minor": IncidentSeverity.LOW,
    "moderate": IncidentSeverity.MEDIUM,
    "major": IncidentSeverity.HIGH,
    "severe": IncidentSeverity.SEVERE,
}

# TomTom magnitudeOfDelay: 0 unknown, 1 minor, 2 moderate, 3 major, 4 undefined/closure
MAGNITUDE_SEVERITY_MAP = {
    0: IncidentSeverity.MEDIUM,
    1: IncidentSeverity.LOW,
    2: IncidentSeverity.MEDIUM,
    3: IncidentSeverity.HIGH,
    4: IncidentSeverity.SEVERE,
}


class Bounds(NamedTuple):
    min_lat: float
    min_lon: float
    max_lat: float
    max_lon: float

    def __str__(self) -> str:
        return f"{self.min_lat:.4f},{self.min_lon:.4f},{self.max_lat:.4f},{self.max_lon:.4f}"

    def contains(self, lat: float, lon: float) -> bool:
        return self.min_lat <= lat <= self.max_lat and self.min_lon <= lon <= self.max_lon


def parse_bounds(value: str) -> Bounds:
    """
    Parse "minLat,minLon,maxLat,maxLon".

    Raises:
        InvalidBoundsError: Wrong arity, non-numeric parts or min >= max
    """
    parts = str(value).split(",")
    if len(parts) != 4:
        raise InvalidBoundsError(
            'Bounds must be in format "minLat,minLon,maxLat,maxLon"',
            context={"bounds": value}
        )
    try:
        min_lat, min_lon, max_lat, max_lon = (float(p) for p in parts)
    except ValueError as e:
        raise InvalidBoundsError(
            'Bounds must be in format "minLat,minLon,maxLat,maxLon"',
            context={"bounds": value},
            original_exception=e
        )
    if min_lat >= max_lat or min_lon >= max_lon:
        raise InvalidBoundsError(
            "Invalid bounds: min values must be less than max values",
            context={"bounds": value}
        )
    return Bounds(min_lat, min_lon, max_lat, max_lon)


def calculate_traffic_level(current_speed: Optional[float], free_flow_speed: Optional[float]) -> str:
    """low/medium/high/severe from the current to free-flow speed ratio"""
    return congestion_from_speeds(current_speed, free_flow_speed).value


def fallback_snapshot() -> Dict[str, Any]:
    return {
        "timestamp": datetime.utcnow().isoformat() + "Z",
        "source": "fallback",
        "message": FALLBACK_MESSAGE,
        "segments": [],
    }


def process_flow_response(data: Any) -> Dict[str, Any]:
    """
    Convert a flowSegmentAbsolute response into a snapshot.

    Returns:
        {"timestamp", "source": "tomtom", "segments": [...]}; segments is
        empty when the response has no flowSegmentData.
    """
    raw_segments = data.get("flowSegmentData") if isinstance(data, dict) else None
    if isinstance(raw_segments, dict):
        raw_segments = [raw_segments]

    segments = []
    for segment in raw_segments or []:
        current = segment.get("currentSpeed")
        free_flow = segment.get("freeFlowSpeed")
        segments.append({
            "coordinates": segment.get("coordinates"),
            "currentSpeed": current,
            "freeFlowSpeed": free_flow,
            "currentTravelTime": segment.get("currentTravelTime"),
            "freeFlowTravelTime": segment.get("freeFlowTravelTime"),
            "confidence": segment.get("confidence"),
            "roadCategory": segment.get("frc", segment.get("roadCategory")),
            "trafficLevel": calculate_traffic_level(current, free_flow),
        })

    return {
        "timestamp": datetime.utcnow().isoformat() + "Z",
        "source": "tomtom",
        "segments": segments,
    }


def first_point(coordinates: Any) -> Optional[Tuple[float, float]]:
    """
    First (lat, lng) from TomTom geometry.

    Accepts GeoJSON-style ``[lng, lat]`` pairs, lists of pairs and TomTom's
    ``{"coordinate": [{"latitude", "longitude"}]}`` shape.
    """
    if not coordinates:
        return None
    if isinstance(coordinates, dict):
        points = coordinates.get("coordinate") or []
        if points and isinstance(points[0], dict):
            return _parse_float(points[0].get("latitude")), _parse_float(points[0].get("longitude"))
        return None
    if isinstance(coordinates, (list, tuple)):
        head = coordinates[0]
        if isinstance(head, (list, tuple)):
            return first_point(head)
        if isinstance(head, dict):
            return _parse_float(head.get("latitude")), _parse_float(head.get("longitude"))
        if len(coordinates) >= 2:
            return _parse_float(coordinates[1]), _parse_float(coordinates[0])
    return None


def segment_to_record(segment: Dict[str, Any], recorded_at: Optional[datetime] = None) -> Dict[str, Any]:
    """Column values for a TrafficData row built from a snapshot segment"""
    point = first_point(segment.get("coordinates"))
    lat, lng = point if point and None not in point else NAIROBI_CENTER

    return {
        "location": segment.get("location") or "Unknown",
        "latitude": lat,
        "longitude": lng,
        "vehicle_count": _parse_int(segment.get("vehicleCount")),
        "current_speed": _parse_float(segment.get("currentSpeed")) or 0.0,
        "free_flow_speed": _parse_float(segment.get("freeFlowSpeed")) or 60.0,
        "travel_time": _parse_int(segment.get("currentTravelTime")) or 0,
        "free_flow_travel_time": _parse_int(segment.get("freeFlowTravelTime")) or 0,
        "congestion_level": CongestionLevel(segment.get("trafficLevel") or "medium"),
        "weather_condition": WeatherCondition(segment.get("weatherCondition") or "clear"),
        "road_type": ROAD_CATEGORY_MAP.get(segment.get("roadCategory"), RoadType.LOCAL),
        "confidence": _parse_float(segment.get("confidence")) or 0.8,
        "data_source": "tomtom",
        "recorded_at": recorded_at or datetime.utcnow(),
    }


def map_incident_type(value: Any) -> IncidentType:
    if isinstance(value, dict):
        value = value.get("description")
    if isinstance(value, str):
        return INCIDENT_TYPE_MAP.get(value.strip().lower(), IncidentType.OTHER)
    return IncidentType.OTHER


def map_incident_severity(value: Any) -> IncidentSeverity:
    if isinstance(value, bool):
        return IncidentSeverity.MEDIUM
    if isinstance(value, (int, float)):
        return MAGNITUDE_SEVERITY_MAP.get(int(value), IncidentSeverity.MEDIUM)
    if isinstance(value, str):
        return INCIDENT_SEVERITY_MAP.get(value.strip().lower(), IncidentSeverity.MEDIUM)
    return IncidentSeverity.MEDIUM


def incident_to_record(incident: Dict[str, Any]) -> Dict[str, Any]:
    """Column values for a TrafficIncident row built from a TomTom incident"""
    props = incident.get("properties") or incident
    geometry = incident.get("geometry") or {}
    point = first_point(geometry.get("coordinates"))
    lat, lng = point if point and None not in point else NAIROBI_CENTER

    description = props.get("description")
    if not isinstance(description, str) or not description:
        description = None

    external_id = incident.get("id") or props.get("id")

    return {
        "location": (description or "Unknown location")[:200],
        "latitude": lat,
        "longitude": lng,
        "type": map_incident_type(props.get("type", props.get("iconCategory"))),
        "severity": map_incident_severity(props.get("severity", props.get("magnitudeOfDelay"))),
        "description": description or "Traffic incident",
        "estimated_duration": _parse_int(props.get("estimatedDuration")) or 60,
        "delay_seconds": _parse_int(props.get("delayInSeconds", props.get("delay"))) or 0,
        "status": IncidentStatus.ACTIVE,
        "verified": False,
        "source": "tomtom",
        "external_id": str(external_id) if external_id is not None else None,
        "started_at": _parse_datetime(props.get("startTime")) or datetime.utcnow(),
    }


def _parse_float(value: Any) -> Optional[float]:
    """Safely parse float value"""
    if value is None or value == "":
        return None
    try:
        return float(value)
    except (ValueError, TypeError):
        return None


def _parse_int(value: Any) -> Optional[int]:
    """Safely parse int value"""
    if value is None or value == "":
        return None
    try:
        return int(float(value))
    except (ValueError, TypeError):
        return None


def _parse_datetime(value: Any) -> Optional[datetime]:
    """Parse ISO timestamps into naive UTC datetimes"""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        try:
            parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
        except ValueError:
            return None
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed
