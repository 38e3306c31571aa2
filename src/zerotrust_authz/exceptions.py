"""
Zero-Trust Security Exceptions

Exception classes for the authorization engine with detailed error context and
audit logging hooks. Authorization decisions never surface these to callers:
the pipeline converts them into denials. The one exception that does escape is
FrameworkNotInitializedError, which signals a programming error.
"""

import logging
from datetime import datetime, timezone
from enum import Enum
from typing import Any

logger = logging.getLogger(__name__)


class SecurityErrorType(Enum):
    """Types of security errors for categorization and handling."""
    FRAMEWORK_NOT_INITIALIZED = "framework_not_initialized"
    CONFIGURATION_ERROR = "configuration_error"
    POLICY_EVALUATION_FAILED = "policy_evaluation_failed"
    INVALID_CONTEXT = "invalid_context"
    RESPONSE_EXECUTION_FAILED = "response_execution_failed"
    CONSENT_ERROR = "consent_error"
    AUDIT_LOG_FAILED = "audit_log_failed"


class SecurityError(Exception):
    """Base security exception with audit logging and detailed context."""

    def __init__(
        self,
        message: str,
        error_type: SecurityErrorType,
        context: dict[str, Any] | None = None,
        audit_log: bool = True,
        severity: str = "medium"
    ):
        super().__init__(message)
        self.message = message
        self.error_type = error_type
        self.context = context or {}
        self.timestamp = datetime.now(timezone.utc)
        self.severity = severity

        self.context.update({
            "error_type": error_type.value,
            "timestamp": self.timestamp.isoformat(),
            "severity": severity
        })

        if audit_log:
            self._audit_security_error()

    def _audit_security_error(self):
        """Log security error for audit purposes."""
        audit_data = {
            "event_type": "security_error",
            "error_type": self.error_type.value,
            "security_context": self.context,
        }

        if self.severity == "critical":
            logger.critical("Security Error: %s", self.message, extra=audit_data)
        elif self.severity == "high":
            logger.error("Security Error: %s", self.message, extra=audit_data)
        elif self.severity == "medium":
            logger.warning("Security Error: %s", self.message, extra=audit_data)
        else:
            logger.info("Security Error: %s", self.message, extra=audit_data)

    def to_dict(self) -> dict[str, Any]:
        """Convert exception to dictionary for API responses."""
        return {
            "error": self.error_type.value,
            "message": self.message,
            "timestamp": self.timestamp.isoformat(),
            "context": self.context
        }


class FrameworkNotInitializedError(SecurityError):
    """The framework was used before initialize() or after shutdown()."""

    def __init__(self, message: str = "Zero-trust framework not initialized", **kwargs):
        kwargs.setdefault("error_type", SecurityErrorType.FRAMEWORK_NOT_INITIALIZED)
        kwargs.setdefault("severity", "high")
        super().__init__(message, **kwargs)


class ConfigurationError(SecurityError):
    """Settings or a policy document could not be loaded."""

    def __init__(self, message: str, source: str | None = None, **kwargs):
        context = kwargs.get("context", {})
        if source:
            context["source"] = source

        kwargs["context"] = context
        kwargs.setdefault("error_type", SecurityErrorType.CONFIGURATION_ERROR)
        kwargs.setdefault("severity", "medium")
        super().__init__(message, **kwargs)


class PolicyEvaluationError(SecurityError):
    """Policy evaluation failed due to a rule or configuration issue."""

    def __init__(
        self,
        message: str,
        policy_id: str | None = None,
        rule_type: str | None = None,
        **kwargs
    ):
        context = kwargs.get("context", {})
        if policy_id:
            context["policy_id"] = policy_id
        if rule_type:
            context["rule_type"] = rule_type

        kwargs["context"] = context
        kwargs.setdefault("error_type", SecurityErrorType.POLICY_EVALUATION_FAILED)
        kwargs.setdefault("severity", "high")
        super().__init__(message, **kwargs)


class InvalidContextError(SecurityError):
    """A request carried a missing or malformed security context."""

    def __init__(self, message: str = "Security context missing or malformed", **kwargs):
        kwargs.setdefault("error_type", SecurityErrorType.INVALID_CONTEXT)
        kwargs.setdefault("severity", "high")
        super().__init__(message, **kwargs)


class ResponseExecutionError(SecurityError):
    """A remediation action could not be carried out."""

    def __init__(self, message: str, action: str | None = None, event_id: str | None = None, **kwargs):
        context = kwargs.get("context", {})
        if action:
            context["action"] = action
        if event_id:
            context["event_id"] = event_id

        kwargs["context"] = context
        kwargs.setdefault("error_type", SecurityErrorType.RESPONSE_EXECUTION_FAILED)
        kwargs.setdefault("severity", "high")
        super().__init__(message, **kwargs)


class ConsentError(SecurityError):
    """Consent request was invalid or already processed."""

    def __init__(self, message: str, request_id: str | None = None, **kwargs):
        context = kwargs.get("context", {})
        if request_id:
            context["request_id"] = request_id

        kwargs["context"] = context
        kwargs.setdefault("error_type", SecurityErrorType.CONSENT_ERROR)
        kwargs.setdefault("severity", "medium")
        super().__init__(message, **kwargs)


__all__ = [
    "SecurityError",
    "SecurityErrorType",
    "FrameworkNotInitializedError",
    "ConfigurationError",
    "PolicyEvaluationError",
    "InvalidContextError",
    "ResponseExecutionError",
    "ConsentError",
]
