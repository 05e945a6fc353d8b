from sqlalchemy.ext.declarative import declarative_base
import enum

Base = declarative_base()


def enum_values(enum_cls):
    """Persist enum members by their value rather than their name"""
    return [member.value for member in enum_cls]


# ============================================================================
# ENUMS
# ============================================================================

class CongestionLevel(str, enum.Enum):
    """Coarse congestion bucket derived from current/free-flow speed"""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    SEVERE = "severe"


class WeatherCondition(str, enum.Enum):
    CLEAR = "clear"
    RAIN = "rain"
    SNOW = "snow"
    FOG = "fog"
    WIND = "wind"


class RoadType(str, enum.Enum):
    HIGHWAY = "highway"
    ARTERIAL = "arterial"
    LOCAL = "local"
    BYPASS = "bypass"


class IncidentType(str, enum.Enum):
    ACCIDENT = "accident"
    CONSTRUCTION = "construction"
    WEATHER = "weather"
    ROADBLOCK = "roadblock"
    BREAKDOWN = "breakdown"
    OTHER = "other"


class IncidentSeverity(str, enum.Enum):
    """Declared in ascending order so ORDER BY severity DESC puts severe first"""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    SEVERE = "severe"


class IncidentStatus(str, enum.Enum):
    ACTIVE = "active"
    RESOLVED = "resolved"
    MONITORING = "monitoring"


class UsageType(str, enum.Enum):
    COMMERCIAL = "commercial"
    NON_COMMERCIAL = "non-commercial"
    RESEARCH = "research"
    INTERNAL = "internal"


class ApiKeyStatus(str, enum.Enum):
    ACTIVE = "active"
    SUSPENDED = "suspended"
    REVOKED = "revoked"
    EXPIRED = "expired"


class Permission(str, enum.Enum):
    READ = "read"
    WRITE = "write"
    ADMIN = "admin"
    ANALYTICS = "analytics"
    EXPORT = "export"


class AlertType(str, enum.Enum):
    CONGESTION = "congestion"
    INCIDENT = "incident"
    WEATHER = "weather"
    CONSTRUCTION = "construction"
    SEVERE = "severe"


class NotificationFrequency(str, enum.Enum):
    IMMEDIATE = "immediate"
    HOURLY = "hourly"
    DAILY = "daily"


class MetricType(str, enum.Enum):
    PERFORMANCE = "performance"
    TRAFFIC = "traffic"
    API = "api"
    DATABASE = "database"
    CACHE = "cache"
    SYSTEM = "system"


def enum_value(member):
    """Plain value of an enum member, passing through raw strings and None"""
    return member.value if isinstance(member, enum.Enum) else member
