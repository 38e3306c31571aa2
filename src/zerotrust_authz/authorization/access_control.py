"""
Default-deny access control for the zero-trust engine.

Every resource/action pair must be covered by an explicitly registered
AccessPolicy. Rules in a policy are evaluated in order and the first failing
rule decides the outcome; only a policy whose every rule passes grants access.
"""

import builtins
import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime

from ..exceptions import PolicyEvaluationError
from ..models import AccessCondition, AccessDecision, AccessRequest, SecurityContext, local_hour, to_utc, utc_now
from ..storage import DecisionStore, InMemoryDecisionStore
from .policies import (
    AccessPolicy,
    DeviceTrustRule,
    LocationBasedRule,
    NetworkBasedRule,
    PolicyRule,
    TimeBasedRule,
    UnknownRule,
    UserIdentityRule,
)

logger = logging.getLogger(__name__)

DEFAULT_DENY_REASON = "Default deny policy - no explicit permission found"

DeviceVerifier = Callable[[SecurityContext], bool]


@dataclass
class RuleResult:
    allowed: bool
    reason: str
    conditions: builtins.list[AccessCondition] = field(default_factory=list)
    expires_at: datetime | None = None


class AccessControlManager:
    """Registry of access policies plus a cache of granted decisions."""

    def __init__(
        self,
        decision_store: DecisionStore | None = None,
        device_verifier: DeviceVerifier | None = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self._policies: dict[str, AccessPolicy] = {}
        self._lock = threading.RLock()
        self.decisions = decision_store or InMemoryDecisionStore()
        self.device_verifier = device_verifier
        self._clock = clock

    @staticmethod
    def _policy_key(resource: str, action: str) -> str:
        return f"{resource}:{action}"

    def register_policy(self, resource: str, action: str, policy: AccessPolicy) -> None:
        """Register (or replace) the policy for a resource/action pair."""
        key = self._policy_key(resource, action)
        with self._lock:
            replaced = key in self._policies
            self._policies[key] = policy
        logger.info("%s access policy %s for %s", "Replaced" if replaced else "Registered", policy.id, key)

    def get_policy(self, resource: str, action: str) -> AccessPolicy | None:
        with self._lock:
            return self._policies.get(self._policy_key(resource, action))

    def list_policies(self) -> builtins.dict[str, AccessPolicy]:
        with self._lock:
            return dict(self._policies)

    def evaluate_access(self, request: AccessRequest) -> AccessDecision:
        """Evaluate a request; anything short of an explicit grant is a denial."""
        decision = AccessDecision(allowed=False, reason=DEFAULT_DENY_REASON)

        try:
            policy = self.get_policy(request.resource, request.action)
            if policy is None:
                logger.debug("No policy for %s:%s, denying", request.resource, request.action)
                return decision

            evaluation = self._evaluate_policy(policy, request)
            if evaluation.allowed:
                decision = AccessDecision(
                    allowed=True,
                    reason="Access granted by policy",
                    conditions=evaluation.conditions,
                    expires_at=evaluation.expires_at,
                )
                user_id = request.context.user_id if request.context else None
                self.decisions.put(request.id, decision, user_id=user_id)
            else:
                decision.reason = evaluation.reason

        except Exception as e:
            logger.error(f"Access evaluation failed for request {request.id}: {e}")
            decision.reason = f"Access evaluation failed: {e}"

        return decision

    def revoke_access(self, request_id: str | None = None, user_id: str | None = None) -> int:
        """Revoke one cached decision, or every cached decision for a user."""
        if request_id:
            removed = 1 if self.decisions.delete(request_id) else 0
        elif user_id:
            removed = self.decisions.delete_for_user(user_id)
        else:
            return 0

        if removed:
            logger.info("Revoked %d cached access decision(s) (request=%s, user=%s)", removed, request_id, user_id)
        return removed

    def is_access_valid(self, request_id: str) -> bool:
        """True only for a cached, granted and unexpired decision."""
        decision = self.decisions.get(request_id)
        if decision is None or not decision.allowed:
            return False

        if decision.expires_at and to_utc(self._clock()) > to_utc(decision.expires_at):
            self.decisions.delete(request_id)
            return False

        return True

    def _evaluate_policy(self, policy: AccessPolicy, request: AccessRequest) -> RuleResult:
        conditions: list[AccessCondition] = []
        expires_at: datetime | None = None

        for rule in policy.rules:
            try:
                result = self._evaluate_rule(rule, request)
            except Exception as e:
                raise PolicyEvaluationError(str(e), policy_id=policy.id, rule_type=rule.type_name) from e
            if not result.allowed:
                logger.debug("Policy %s rule %s failed: %s", policy.id, rule.type_name, result.reason)
                return RuleResult(allowed=False, reason=result.reason)

            conditions.extend(result.conditions)
            if result.expires_at is not None:
                expires_at = result.expires_at if expires_at is None else min(expires_at, result.expires_at)

        return RuleResult(allowed=True, reason="All policy rules satisfied", conditions=conditions, expires_at=expires_at)

    def _evaluate_rule(self, rule: PolicyRule, request: AccessRequest) -> RuleResult:
        if isinstance(rule, UnknownRule):
            return RuleResult(allowed=False, reason=f"Unknown rule type: {rule.type_name}")

        context = request.context
        if context is None:
            return RuleResult(allowed=False, reason="Security context missing")

        if isinstance(rule, UserIdentityRule):
            result = self._evaluate_user_identity(context)
        elif isinstance(rule, TimeBasedRule):
            result = self._evaluate_time_based(rule, context)
        elif isinstance(rule, LocationBasedRule):
            result = self._evaluate_location_based(rule, context)
        elif isinstance(rule, NetworkBasedRule):
            result = self._evaluate_network_based(rule, context)
        elif isinstance(rule, DeviceTrustRule):
            result = self._evaluate_device_trust(context)
        else:
            return RuleResult(allowed=False, reason=f"Unknown rule type: {rule.type_name}")

        if result.allowed:
            result.conditions = list(rule.conditions)
            if rule.valid_for is not None:
                result.expires_at = to_utc(self._clock()) + rule.valid_for
        return result

    def _evaluate_user_identity(self, context: SecurityContext) -> RuleResult:
        if not context.user_id:
            return RuleResult(allowed=False, reason="User not authenticated")
        return RuleResult(allowed=True, reason="User identity verified")

    def _evaluate_time_based(self, rule: TimeBasedRule, context: SecurityContext) -> RuleResult:
        hour = local_hour(context.timestamp)
        if rule.allowed_hours is not None and hour not in rule.allowed_hours:
            return RuleResult(allowed=False, reason=f"Access not allowed at hour {hour}")
        return RuleResult(allowed=True, reason="Time-based conditions satisfied")

    def _evaluate_location_based(self, rule: LocationBasedRule, context: SecurityContext) -> RuleResult:
        if rule.require_location and context.location is None:
            return RuleResult(allowed=False, reason="Location required but not provided")
        return RuleResult(allowed=True, reason="Location-based conditions satisfied")

    def _evaluate_network_based(self, rule: NetworkBasedRule, context: SecurityContext) -> RuleResult:
        if rule.require_secure_network and (context.network_info is None or not context.network_info.is_secure):
            return RuleResult(allowed=False, reason="Secure network required")
        return RuleResult(allowed=True, reason="Network-based conditions satisfied")

    def _evaluate_device_trust(self, context: SecurityContext) -> RuleResult:
        # Certificate and integrity checks plug in through device_verifier
        if self.device_verifier is not None and not self.device_verifier(context):
            return RuleResult(allowed=False, reason=f"Device {context.device_id} is not trusted")
        return RuleResult(allowed=True, reason="Device trust verified")
