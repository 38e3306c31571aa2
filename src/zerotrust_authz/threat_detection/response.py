"""
Automated threat response.

Security events are matched against an ordered set of response rules. The
first rule whose filters all match decides the remediation. Automatic
responses execute immediately; the others are recorded and wait for
confirm_response() before any side effect happens.
"""

import builtins
import logging
import threading
from collections.abc import Callable
from datetime import datetime, timedelta

from .. import metrics
from ..models import (
    ConditionType,
    ResponseCondition,
    ResponseRecord,
    ResponseRule,
    SecurityEvent,
    SecurityEventType,
    SecuritySeverity,
    ThreatAction,
    ThreatResponse,
    to_utc,
    utc_now,
)
from .actions import ActionExecutor, DefaultActionExecutor

logger = logging.getLogger(__name__)


def default_response_rules() -> builtins.list[ResponseRule]:
    """Rules installed on every new ThreatResponseManager, in match order."""
    return [
        ResponseRule(
            id="block_unauthorized_access",
            name="Block Unauthorized Access",
            description="Block IP addresses with repeated unauthorized access attempts",
            event_types=[SecurityEventType.UNAUTHORIZED_ACCESS],
            min_severity=SecuritySeverity.MEDIUM,
            action=ThreatAction.BLOCK,
            automatic=True,
            conditions=[ResponseCondition(type=ConditionType.TIME_WINDOW, value=300)],
        ),
        ResponseRule(
            id="alert_suspicious_behavior",
            name="Alert on Suspicious Behavior",
            description="Alert user when suspicious behavior is detected",
            event_types=[SecurityEventType.SUSPICIOUS_BEHAVIOR, SecurityEventType.ANOMALOUS_PATTERN],
            min_severity=SecuritySeverity.MEDIUM,
            action=ThreatAction.ALERT_USER,
            automatic=True,
        ),
        ResponseRule(
            id="disable_malicious_plugin",
            name="Disable Malicious Plugin",
            description="Automatically disable plugins detected as malicious",
            event_types=[SecurityEventType.MALICIOUS_PLUGIN],
            min_severity=SecuritySeverity.HIGH,
            action=ThreatAction.DISABLE_PLUGIN,
            automatic=True,
        ),
        ResponseRule(
            id="force_logout_critical",
            name="Force Logout on Critical Events",
            description="Force user logout for critical security events",
            min_severity=SecuritySeverity.CRITICAL,
            action=ThreatAction.FORCE_LOGOUT,
            automatic=False,
        ),
    ]


class ThreatResponseManager:
    """Rule registry, response execution and response bookkeeping."""

    def __init__(
        self,
        executor: ActionExecutor | None = None,
        history_retention: timedelta = timedelta(days=30),
        clock: Callable[[], datetime] = utc_now,
        install_default_rules: bool = True,
    ):
        self.executor = executor or DefaultActionExecutor()
        self.history_retention = history_retention
        self._clock = clock

        self._rules: dict[str, ResponseRule] = {}
        self._active: dict[str, ThreatResponse] = {}
        self._pending: dict[str, builtins.tuple[SecurityEvent, ResponseRule]] = {}
        self._history: list[ResponseRecord] = []
        self._lock = threading.RLock()

        if install_default_rules:
            for rule in default_response_rules():
                self.add_response_rule(rule)

    def add_response_rule(self, rule: ResponseRule):
        """Add or replace a rule; a new id is appended to the match order."""
        with self._lock:
            self._rules[rule.id] = rule
        logger.debug("Registered response rule %s (%s)", rule.id, rule.action.value)

    def remove_response_rule(self, rule_id: str) -> bool:
        with self._lock:
            return self._rules.pop(rule_id, None) is not None

    def get_response_rules(self) -> builtins.list[ResponseRule]:
        with self._lock:
            return list(self._rules.values())

    async def process_security_event(self, event: SecurityEvent) -> ThreatResponse | None:
        """Match an event to a rule and carry out the remediation."""
        rule = self._find_matching_rule(event)
        if rule is None:
            return None

        response = ThreatResponse(
            action=rule.action,
            reason=rule.description,
            automatic=rule.automatic,
            timestamp=self._clock(),
        )

        if rule.automatic:
            await self._execute(response, event, rule)
        else:
            with self._lock:
                self._pending[event.id] = (event, rule)
            logger.warning(
                "Response %s for event %s requires confirmation before execution",
                rule.action.value, event.id,
            )

        with self._lock:
            self._active[event.id] = response
            self._record_response(event, response)

        metrics.threat_responses.labels(action=rule.action.value, automatic=str(rule.automatic).lower()).inc()
        return response

    async def confirm_response(self, event_id: str) -> bool:
        """Execute a response that was held for confirmation."""
        with self._lock:
            pending = self._pending.pop(event_id, None)
            response = self._active.get(event_id)
        if pending is None or response is None:
            return False

        event, rule = pending
        await self._execute(response, event, rule)
        return True

    def resolve_response(self, event_id: str) -> bool:
        """Close an active response; False when there is none."""
        with self._lock:
            self._pending.pop(event_id, None)
            return self._active.pop(event_id, None) is not None

    def get_active_responses(self) -> builtins.list[ThreatResponse]:
        with self._lock:
            return list(self._active.values())

    def get_pending_confirmations(self) -> builtins.list[str]:
        with self._lock:
            return list(self._pending)

    def get_response_history(self) -> builtins.list[ResponseRecord]:
        with self._lock:
            return list(self._history)

    async def _execute(self, response: ThreatResponse, event: SecurityEvent, rule: ResponseRule):
        try:
            await self.executor.execute(rule.action, event, rule)
            response.executed = True
        except Exception as e:
            logger.error(f"Failed to execute threat response: {e}")
            response.reason = f"Response execution failed: {e}"

    def _find_matching_rule(self, event: SecurityEvent) -> ResponseRule | None:
        with self._lock:
            rules = list(self._rules.values())
        for rule in rules:
            if self._rule_matches(rule, event):
                return rule
        return None

    def _rule_matches(self, rule: ResponseRule, event: SecurityEvent) -> bool:
        if rule.event_types and event.type not in rule.event_types:
            return False

        if rule.min_severity is not None and event.severity < rule.min_severity:
            return False

        return all(self._evaluate_condition(condition, event) for condition in rule.conditions or [])

    def _evaluate_condition(self, condition: ResponseCondition, event: SecurityEvent) -> bool:
        context = event.context
        if condition.type == ConditionType.TIME_WINDOW:
            age = to_utc(self._clock()) - to_utc(event.timestamp)
            return age.total_seconds() < float(condition.value)

        if context is None:
            return False
        if condition.type == ConditionType.USER_ID:
            return context.user_id == condition.value
        if condition.type == ConditionType.IP_ADDRESS:
            return context.ip_address == condition.value
        if condition.type == ConditionType.DEVICE_ID:
            return context.device_id == condition.value
        return False

    def _record_response(self, event: SecurityEvent, response: ThreatResponse):
        now = to_utc(self._clock())
        self._history.append(ResponseRecord(event=event, response=response, timestamp=now))
        cutoff = now - self.history_retention
        self._history = [record for record in self._history if to_utc(record.timestamp) > cutoff]
