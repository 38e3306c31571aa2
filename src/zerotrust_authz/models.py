"""
Security Models and Data Structures

This module contains the data models, enums, and data classes shared by the
access control, anomaly detection, threat response and consent components.
"""

import builtins
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def to_utc(value: datetime) -> datetime:
    """Normalize a datetime to aware UTC; naive values are taken as local time."""
    return value.astimezone(timezone.utc)


def local_hour(value: datetime) -> int:
    """Hour of day (0-23) of a timestamp in the local timezone."""
    return value.astimezone().hour


class SecurityEventType(Enum):
    """Types of security events recorded by the engine."""

    ACCESS_GRANTED = "access_granted"
    UNAUTHORIZED_ACCESS = "unauthorized_access"
    SUSPICIOUS_BEHAVIOR = "suspicious_behavior"
    DATA_BREACH_ATTEMPT = "data_breach_attempt"
    MALICIOUS_PLUGIN = "malicious_plugin"
    CONSENT_VIOLATION = "consent_violation"
    ANOMALOUS_PATTERN = "anomalous_pattern"


class SecuritySeverity(Enum):
    """Security event severity, ordered LOW < MEDIUM < HIGH < CRITICAL."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def level(self) -> int:
        return _SEVERITY_LEVELS[self]

    def __lt__(self, other: "SecuritySeverity") -> bool:
        if not isinstance(other, SecuritySeverity):
            return NotImplemented
        return self.level < other.level

    def __le__(self, other: "SecuritySeverity") -> bool:
        if not isinstance(other, SecuritySeverity):
            return NotImplemented
        return self.level <= other.level

    def __gt__(self, other: "SecuritySeverity") -> bool:
        if not isinstance(other, SecuritySeverity):
            return NotImplemented
        return self.level > other.level

    def __ge__(self, other: "SecuritySeverity") -> bool:
        if not isinstance(other, SecuritySeverity):
            return NotImplemented
        return self.level >= other.level


_SEVERITY_LEVELS = {
    SecuritySeverity.LOW: 1,
    SecuritySeverity.MEDIUM: 2,
    SecuritySeverity.HIGH: 3,
    SecuritySeverity.CRITICAL: 4,
}


class ThreatAction(Enum):
    """Remediation actions the threat response manager can take."""

    BLOCK = "block"
    QUARANTINE = "quarantine"
    ALERT_USER = "alert_user"
    REVOKE_PERMISSIONS = "revoke_permissions"
    DISABLE_PLUGIN = "disable_plugin"
    FORCE_LOGOUT = "force_logout"


class NetworkType(Enum):
    WIFI = "wifi"
    CELLULAR = "cellular"
    ETHERNET = "ethernet"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class GeoLocation:
    """Geographic coordinates in decimal degrees."""

    latitude: float
    longitude: float


@dataclass(frozen=True)
class NetworkInfo:
    """Network the request originated from."""

    type: NetworkType = NetworkType.UNKNOWN
    is_secure: bool = False
    ip_address: str = ""
    ssid: str | None = None


@dataclass(frozen=True)
class SecurityContext:
    """Immutable snapshot of who/where/when attached to every request and event."""

    user_id: str
    session_id: str = ""
    device_id: str = ""
    timestamp: datetime = field(default_factory=utc_now)
    location: GeoLocation | None = None
    network_info: NetworkInfo | None = None

    @property
    def ip_address(self) -> str | None:
        if self.network_info is None:
            return None
        return self.network_info.ip_address or None

    def to_dict(self) -> builtins.dict[str, Any]:
        data = asdict(self)
        data["timestamp"] = self.timestamp.isoformat()
        if self.network_info is not None:
            data["network_info"]["type"] = self.network_info.type.value
        return data


@dataclass
class AccessCondition:
    """Condition attached to a granted access decision."""

    type: str  # time, location, network, user_confirmation
    value: Any
    description: str


@dataclass
class AccessRequest:
    """Request to perform an action on a resource."""

    id: str
    resource: str
    action: str
    context: SecurityContext | None
    metadata: builtins.dict[str, Any] = field(default_factory=dict)


@dataclass
class AccessDecision:
    """Result of access policy evaluation."""

    allowed: bool
    reason: str
    conditions: builtins.list[AccessCondition] = field(default_factory=list)
    expires_at: datetime | None = None


@dataclass
class SecurityEvent:
    """Security event recorded for analysis and audit."""

    id: str
    type: SecurityEventType
    severity: SecuritySeverity
    timestamp: datetime
    context: SecurityContext | None
    details: builtins.dict[str, Any] = field(default_factory=dict)
    resolved: bool = False

    @property
    def user_id(self) -> str | None:
        return self.context.user_id if self.context else None

    def to_dict(self) -> builtins.dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type.value,
            "severity": self.severity.value,
            "timestamp": self.timestamp.isoformat(),
            "context": self.context.to_dict() if self.context else None,
            "details": self.details,
            "resolved": self.resolved,
        }


@dataclass
class UserBehaviorProfile:
    """Behavioral baseline for a single user."""

    user_id: str
    typical_active_hours: builtins.list[int] = field(default_factory=list)
    hourly_activity: builtins.dict[int, int] = field(default_factory=dict)
    known_locations: builtins.list[GeoLocation] = field(default_factory=list)
    known_devices: builtins.list[str] = field(default_factory=list)
    last_updated: datetime = field(default_factory=utc_now)

    @property
    def total_activity(self) -> int:
        return sum(self.hourly_activity.values())


@dataclass
class AnomalyPattern:
    """Known pattern checked against high-severity events."""

    id: str
    type: str
    description: str
    threshold: int
    time_window: float  # seconds
    severity: SecuritySeverity


@dataclass
class ThreatResponse:
    """Remediation produced for a security event."""

    action: ThreatAction
    reason: str
    automatic: bool
    timestamp: datetime = field(default_factory=utc_now)
    executed: bool = False


class ConditionType(Enum):
    """Custom response-rule condition kinds."""

    USER_ID = "user_id"
    IP_ADDRESS = "ip_address"
    DEVICE_ID = "device_id"
    TIME_WINDOW = "time_window"


@dataclass
class ResponseCondition:
    """Custom response-rule condition; `time_window` values are seconds."""

    type: ConditionType
    value: Any


@dataclass
class ResponseRule:
    """Rule mapping matching security events to a remediation action."""

    id: str
    name: str
    description: str
    action: ThreatAction
    automatic: bool = True
    event_types: builtins.list[SecurityEventType] | None = None
    min_severity: SecuritySeverity | None = None
    conditions: builtins.list[ResponseCondition] | None = None


@dataclass
class ResponseRecord:
    """Audit row for an issued threat response."""

    event: SecurityEvent
    response: ThreatResponse
    timestamp: datetime = field(default_factory=utc_now)
