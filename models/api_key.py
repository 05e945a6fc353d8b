from sqlalchemy import Column, String, Integer, DateTime, Enum, Text, Index
from sqlalchemy.dialects.postgresql import JSONB, UUID
from datetime import datetime, timedelta
from typing import Any, Dict, Optional, Tuple
import hashlib
import secrets
import uuid

from models.base import Base, UsageType, ApiKeyStatus, Permission, enum_value, enum_values

KEY_PREFIX_LENGTH = 8
DEFAULT_VALIDITY = timedelta(days=365)


def hash_api_key(raw_key: str) -> str:
    return hashlib.sha256(raw_key.encode("utf-8")).hexdigest()


class ApiKey(Base):
    """
    Client API key. Only the sha256 hash is stored; the raw key is shown
    once at registration.
    """
    __tablename__ = "api_keys"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)

    key_hash = Column(String(64), unique=True, nullable=False, index=True)
    key_prefix = Column(String(KEY_PREFIX_LENGTH), nullable=False)

    name = Column(String(100), nullable=False)
    application_name = Column(String(100), nullable=True)
    contact_email = Column(String(255), nullable=False)
    usage_type = Column(
        Enum(UsageType, name="api_key_usage_type", values_callable=enum_values),
        nullable=False,
        default=UsageType.NON_COMMERCIAL,
    )
    expected_requests = Column(Integer, nullable=True)
    description = Column(Text, nullable=True)

    status = Column(
        Enum(ApiKeyStatus, name="api_key_status", values_callable=enum_values),
        nullable=False,
        default=ApiKeyStatus.ACTIVE,
        index=True,
    )
    permissions = Column(JSONB, nullable=False, default=lambda: [Permission.READ.value])
    rate_limit = Column(Integer, nullable=False, default=1000)  # requests per hour
    daily_limit = Column(Integer, nullable=True)

    expires_at = Column(DateTime, nullable=True)
    last_used_at = Column(DateTime, nullable=True)
    usage_count = Column(Integer, nullable=False, default=0)
    today_usage = Column(Integer, nullable=False, default=0)
    today_reset_at = Column(DateTime, nullable=True)

    created_by = Column(String(100), nullable=True)
    notes = Column(Text, nullable=True)

    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        Index("idx_api_key_email", "contact_email"),
        Index("idx_api_key_expires", "expires_at"),
    )

    def __init__(self, **kwargs):
        kwargs.setdefault("expires_at", datetime.utcnow() + DEFAULT_VALIDITY)
        kwargs.setdefault("status", ApiKeyStatus.ACTIVE)
        kwargs.setdefault("permissions", [Permission.READ.value])
        kwargs.setdefault("usage_count", 0)
        kwargs.setdefault("today_usage", 0)
        super().__init__(**kwargs)

    @staticmethod
    def generate_key() -> Tuple[str, str, str]:
        """Return (raw_key, prefix, sha256 hash) for a fresh key"""
        raw_key = "nbo_" + secrets.token_hex(24)
        return raw_key, raw_key[:KEY_PREFIX_LENGTH], hash_api_key(raw_key)

    def has_permission(self, permission) -> bool:
        granted = self.permissions or []
        return enum_value(permission) in granted or Permission.ADMIN.value in granted

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        now = now or datetime.utcnow()
        return self.expires_at is not None and self.expires_at <= now

    def _roll_over_day(self, now: datetime):
        """Daily usage counts from UTC midnight"""
        if self.today_reset_at is None or self.today_reset_at.date() != now.date():
            self.today_usage = 0
            self.today_reset_at = now

    def can_make_request(self, now: Optional[datetime] = None) -> bool:
        now = now or datetime.utcnow()
        self._roll_over_day(now)
        if self.status != ApiKeyStatus.ACTIVE:
            return False
        if self.is_expired(now):
            return False
        if self.daily_limit is not None and (self.today_usage or 0) >= self.daily_limit:
            return False
        return True

    def record_usage(self, now: Optional[datetime] = None):
        now = now or datetime.utcnow()
        self._roll_over_day(now)
        self.today_usage = (self.today_usage or 0) + 1
        self.usage_count = (self.usage_count or 0) + 1
        self.last_used_at = now

    def _append_note(self, note: str):
        stamp = datetime.utcnow().isoformat()
        entry = f"[{stamp}] {note}"
        self.notes = f"{self.notes}\n{entry}" if self.notes else entry

    def suspend(self, reason: str):
        self.status = ApiKeyStatus.SUSPENDED
        self._append_note(f"Suspended: {reason}")

    def revoke(self, reason: str):
        self.status = ApiKeyStatus.REVOKED
        self._append_note(f"Revoked: {reason}")

    def reactivate(self):
        self.status = ApiKeyStatus.ACTIVE
        self._append_note("Reactivated")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": str(self.id) if self.id else None,
            "keyId": self.key_prefix,
            "name": self.name,
            "applicationName": self.application_name,
            "contactEmail": self.contact_email,
            "usageType": enum_value(self.usage_type),
            "status": enum_value(self.status),
            "permissions": list(self.permissions or []),
            "rateLimit": self.rate_limit,
            "dailyLimit": self.daily_limit,
            "expiresAt": self.expires_at.isoformat() if self.expires_at else None,
            "lastUsedAt": self.last_used_at.isoformat() if self.last_used_at else None,
            "usageCount": self.usage_count,
            "todayUsage": self.today_usage,
        }
