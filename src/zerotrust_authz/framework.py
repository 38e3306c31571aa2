"""
Zero-Trust Framework

Single entry point that sequences anomaly detection, threat response, policy
evaluation and consent checks for every access request. Every authorization
outcome is recorded as exactly one security event, and any failure along the
way results in a denial.
"""

import builtins
import logging
from collections.abc import Callable
from datetime import datetime
from typing import Any
from uuid import uuid4

from opentelemetry import trace

from . import metrics
from .audit import AuditEventType, FileAuditSink, LoggingAuditSink, MemoryAuditSink, SecurityAuditor
from .authorization import AccessControlManager, AccessPolicy
from .config import ZeroTrustSettings, default_policies, load_policies
from .consent import CaregiverConsentManager, ConsentManager, ConsentRequest
from .exceptions import FrameworkNotInitializedError, InvalidContextError
from .logging_config import configure_logging
from .models import (
    AccessRequest,
    ResponseRule,
    SecurityContext,
    SecurityEvent,
    SecurityEventType,
    SecuritySeverity,
    utc_now,
)
from .threat_detection import AnomalyDetector, DefaultActionExecutor, ThreatResponseManager

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

_BLOCKING_SEVERITIES = (SecuritySeverity.HIGH, SecuritySeverity.CRITICAL)


def _valid_context(context: Any) -> SecurityContext | None:
    return context if isinstance(context, SecurityContext) else None


class ZeroTrustFramework:
    """
    Orchestrates the zero-trust authorization pipeline

    Per request:
    1. Check the user's behavior against their baseline and feed anomalies to threat response
    2. Deny on any HIGH or CRITICAL anomaly
    3. Evaluate the registered access policy (default deny)
    4. Require valid consent for consent-sensitive resources
    5. Record the grant
    """

    def __init__(
        self,
        settings: ZeroTrustSettings | None = None,
        access_control: AccessControlManager | None = None,
        consent_manager: ConsentManager | None = None,
        anomaly_detector: AnomalyDetector | None = None,
        threat_response: ThreatResponseManager | None = None,
        auditor: SecurityAuditor | None = None,
        caregiver_consent: CaregiverConsentManager | None = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.settings = settings or ZeroTrustSettings()
        self._clock = clock

        self.access_control = access_control or AccessControlManager(clock=clock)
        self.consent_manager = consent_manager or ConsentManager(
            max_consent_duration=self.settings.consent.max_consent_duration,
            clock=clock,
        )
        self.anomaly_detector = anomaly_detector or AnomalyDetector(
            retention=self.settings.event_retention,
            analysis_window=self.settings.analysis_window,
            monitoring_interval=self.settings.monitoring_interval_seconds,
            clock=clock,
        )
        self.threat_response = threat_response or ThreatResponseManager(
            executor=DefaultActionExecutor(permission_revoker=self._revoke_user_access),
            history_retention=self.settings.response_history_retention,
            clock=clock,
        )
        self.auditor = auditor or self._create_auditor()
        self.caregiver_consent = caregiver_consent or CaregiverConsentManager(
            settings=self.settings.consent,
            auditor=self.auditor,
            clock=clock,
        )

        self.anomaly_detector.add_listener(self._handle_sweep_anomaly)
        self._initialized = False

    @property
    def is_initialized(self) -> bool:
        return self._initialized

    async def initialize(self):
        """Start background work and install policies; safe to call twice."""
        if self._initialized:
            return

        self._configure_logging()

        try:
            await self.auditor.start()
            await self.anomaly_detector.start_monitoring()
            await self.caregiver_consent.start_reconfirmation()
            self._setup_policies()
        except Exception as e:
            logger.error(f"Failed to initialize zero-trust framework: {e}")
            await self._stop_components()
            raise

        self._initialized = True
        logger.info("Zero-trust security framework initialized for %s", self.settings.service_name)

    async def shutdown(self):
        if not self._initialized:
            return

        self._initialized = False
        await self._stop_components()
        logger.info("Zero-trust security framework shut down")

    async def authorize_access(self, request: AccessRequest) -> bool:
        """Decide a request; any failure along the way is a denial."""
        self._ensure_initialized()

        with tracer.start_as_current_span("zerotrust.authorize_access") as span, metrics.authorization_latency.time():
            span.set_attribute("zerotrust.request_id", request.id)
            span.set_attribute("zerotrust.resource", request.resource)
            span.set_attribute("zerotrust.action", request.action)
            try:
                allowed, outcome = await self._authorize(request)
            except Exception as e:
                logger.error(f"Error during access authorization for {request.id}: {e}")
                span.record_exception(e)
                self._record_security_event(
                    "access_error",
                    SecurityEventType.UNAUTHORIZED_ACCESS,
                    SecuritySeverity.HIGH,
                    _valid_context(request.context),
                    {
                        "reason": f"Authorization error: {e}",
                        "resource": request.resource,
                        "action": request.action,
                    },
                )
                allowed, outcome = False, "error"
            span.set_attribute("zerotrust.outcome", outcome)

        metrics.authorization_decisions.labels(outcome=outcome).inc()
        return allowed

    async def _authorize(self, request: AccessRequest) -> builtins.tuple[bool, str]:
        context = request.context
        if context is not None and not isinstance(context, SecurityContext):
            raise InvalidContextError(
                f"Expected SecurityContext, got {type(context).__name__}",
                context={"request_id": request.id},
            )
        user_id = context.user_id if context is not None else ""

        anomalies = self.anomaly_detector.detect_behavior_anomalies(user_id, context)
        for anomaly in anomalies:
            self.auditor.audit_security_event(anomaly)
            await self.threat_response.process_security_event(anomaly)

        blocking = [a for a in anomalies if a.severity in _BLOCKING_SEVERITIES]
        if blocking:
            self._record_security_event(
                "access_blocked",
                SecurityEventType.UNAUTHORIZED_ACCESS,
                SecuritySeverity.HIGH,
                context,
                {
                    "reason": "Access blocked due to behavioral anomalies",
                    "anomalies": [a.id for a in blocking],
                    "resource": request.resource,
                    "action": request.action,
                },
            )
            return False, "blocked"

        decision = self.access_control.evaluate_access(request)
        if not decision.allowed:
            self._record_security_event(
                "access_denied",
                SecurityEventType.UNAUTHORIZED_ACCESS,
                SecuritySeverity.MEDIUM,
                context,
                {"reason": decision.reason, "resource": request.resource, "action": request.action},
            )
            return False, "denied"

        if self.requires_consent(request):
            has_consent = self.consent_manager.has_valid_consent(
                request.resource,
                self._extract_data_types(request),
                user_id,
            )
            if not has_consent:
                self._record_security_event(
                    "consent_required",
                    SecurityEventType.CONSENT_VIOLATION,
                    SecuritySeverity.MEDIUM,
                    context,
                    {
                        "reason": "Access requires user consent",
                        "resource": request.resource,
                        "action": request.action,
                    },
                )
                return False, "consent_missing"

        self._record_security_event(
            "access_granted",
            SecurityEventType.ACCESS_GRANTED,
            SecuritySeverity.LOW,
            context,
            {"reason": "Access granted", "resource": request.resource, "action": request.action},
            resolved=True,
        )
        return True, "granted"

    async def request_consent(self, request: ConsentRequest) -> bool:
        self._ensure_initialized()

        details: builtins.dict[str, Any] = {
            "consent_id": request.id,
            "purpose": request.purpose,
            "data_types": list(request.data_types),
            "requester": request.requester,
        }
        try:
            decision = await self.consent_manager.request_consent(request)
            granted = decision.granted
        except Exception as e:
            logger.error(f"Error during consent request {request.id}: {e}")
            granted = False
            details["error"] = str(e)

        details["granted"] = granted
        self._record_security_event(
            "consent_granted" if granted else "consent_denied",
            SecurityEventType.CONSENT_VIOLATION,
            SecuritySeverity.LOW,
            request.context,
            details,
            resolved=True,
        )
        return granted

    async def revoke_consent(self, consent_id: str, user_id: str) -> bool:
        self._ensure_initialized()

        revoked = self.consent_manager.revoke_consent(consent_id, user_id)
        self._record_security_event(
            "consent_revoked" if revoked else "consent_revoke_failed",
            SecurityEventType.CONSENT_VIOLATION,
            SecuritySeverity.LOW,
            SecurityContext(user_id=user_id, timestamp=self._clock()),
            {"consent_id": consent_id, "action": "revoked", "success": revoked},
            resolved=True,
        )
        return revoked

    def register_policy(self, resource: str, action: str, policy: AccessPolicy):
        self.access_control.register_policy(resource, action, policy)
        self.auditor.audit(
            AuditEventType.POLICY_REGISTERED,
            resource=resource,
            action=action,
            result="registered",
            policy_id=policy.id,
            rules=[rule.type_name for rule in policy.rules],
        )

    def add_response_rule(self, rule: ResponseRule):
        self.threat_response.add_response_rule(rule)
        self._audit_admin_action("add_response_rule", "added", rule_id=rule.id, response_action=rule.action.value)

    def remove_response_rule(self, rule_id: str) -> bool:
        removed = self.threat_response.remove_response_rule(rule_id)
        self._audit_admin_action("remove_response_rule", "removed" if removed else "not_found", rule_id=rule_id)
        return removed

    async def confirm_response(self, event_id: str) -> bool:
        """Execute a threat response that was held for confirmation."""
        self._ensure_initialized()
        confirmed = await self.threat_response.confirm_response(event_id)
        self._audit_admin_action("confirm_response", "executed" if confirmed else "not_pending", event_id=event_id)
        return confirmed

    def resolve_threat(self, event_id: str) -> bool:
        """Close the active response for an event and mark the event resolved."""
        resolved = self.threat_response.resolve_response(event_id)
        if resolved:
            for event in self.anomaly_detector.get_recent_events():
                if event.id == event_id:
                    event.resolved = True
                    break
        self._audit_admin_action("resolve_threat", "resolved" if resolved else "not_found", event_id=event_id)
        return resolved

    def requires_consent(self, request: AccessRequest) -> bool:
        resource = request.resource.lower()
        return any(fragment in resource for fragment in self.settings.sensitive_resources)

    def get_security_status(self) -> builtins.dict[str, Any]:
        return {
            "framework_initialized": self._initialized,
            "active_threats": len(self.threat_response.get_active_responses()),
            "recent_events": len(self.get_recent_security_events()),
            "monitoring_active": self.anomaly_detector.is_monitoring,
            "last_updated": self._clock(),
        }

    def get_recent_security_events(self) -> builtins.list[SecurityEvent]:
        return self.anomaly_detector.get_recent_events()

    def _ensure_initialized(self):
        if not self._initialized:
            raise FrameworkNotInitializedError()

    def _configure_logging(self):
        if self.settings.structured_logging:
            configure_logging(self.settings.service_name, self.settings.log_level)
        else:
            logging.getLogger(__package__).setLevel(self.settings.log_level)

    def _setup_policies(self):
        for (resource, action), policy in default_policies().items():
            self.access_control.register_policy(resource, action, policy)

        if self.settings.policy_file is not None:
            for (resource, action), policy in load_policies(self.settings.policy_file).items():
                self.access_control.register_policy(resource, action, policy)

    async def _stop_components(self):
        await self.anomaly_detector.stop_monitoring()
        await self.caregiver_consent.stop_reconfirmation()
        await self.auditor.stop()

    def _create_auditor(self) -> SecurityAuditor:
        sinks = [MemoryAuditSink(), LoggingAuditSink()]
        if self.settings.audit_log_path is not None:
            sinks.append(FileAuditSink("file", str(self.settings.audit_log_path)))
        return SecurityAuditor(
            self.settings.service_name,
            max_queue_size=self.settings.audit_queue_size,
            sinks=sinks,
        )

    def _record_security_event(
        self,
        prefix: str,
        event_type: SecurityEventType,
        severity: SecuritySeverity,
        context: SecurityContext | None,
        details: builtins.dict[str, Any],
        resolved: bool = False,
    ) -> SecurityEvent:
        event = SecurityEvent(
            id=f"{prefix}_{uuid4().hex}",
            type=event_type,
            severity=severity,
            timestamp=self._clock(),
            context=_valid_context(context),
            details=details,
            resolved=resolved,
        )
        self.anomaly_detector.record_event(event)
        self.auditor.audit_security_event(event)
        return event

    async def _handle_sweep_anomaly(self, event: SecurityEvent):
        self.auditor.audit_security_event(event)
        await self.threat_response.process_security_event(event)

    def _audit_admin_action(self, operation: str, result: str, **details):
        self.auditor.audit(AuditEventType.ADMIN_ACTION, action=operation, result=result, **details)

    def _revoke_user_access(self, user_id: str) -> int:
        return self.access_control.revoke_access(user_id=user_id)

    @staticmethod
    def _extract_data_types(request: AccessRequest) -> builtins.list[str]:
        return [request.resource]
