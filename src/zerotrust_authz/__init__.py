"""
Zero-Trust Authorization Engine

Decides allow/deny for resource access by combining declarative policy, live
behavioral anomaly scoring and consent state, and triggers automated
remediation when a request or its surrounding activity looks hostile.
"""

__version__ = "1.0.0"

from .config import ConsentSettings, ZeroTrustSettings, load_policies
from .encryption import EncryptionService
from .exceptions import (
    ConfigurationError,
    ConsentError,
    FrameworkNotInitializedError,
    InvalidContextError,
    PolicyEvaluationError,
    ResponseExecutionError,
    SecurityError,
)
from .framework import ZeroTrustFramework
from .models import (
    AccessCondition,
    AccessDecision,
    AccessRequest,
    GeoLocation,
    NetworkInfo,
    NetworkType,
    ResponseCondition,
    ResponseRule,
    SecurityContext,
    SecurityEvent,
    SecurityEventType,
    SecuritySeverity,
    ThreatAction,
    ThreatResponse,
)

__all__ = [
    "__version__",
    "AccessCondition",
    "AccessDecision",
    "AccessRequest",
    "ConfigurationError",
    "ConsentError",
    "ConsentSettings",
    "EncryptionService",
    "FrameworkNotInitializedError",
    "GeoLocation",
    "InvalidContextError",
    "NetworkInfo",
    "NetworkType",
    "PolicyEvaluationError",
    "ResponseCondition",
    "ResponseExecutionError",
    "ResponseRule",
    "SecurityContext",
    "SecurityError",
    "SecurityEvent",
    "SecurityEventType",
    "SecuritySeverity",
    "ThreatAction",
    "ThreatResponse",
    "ZeroTrustFramework",
    "load_policies",
]
