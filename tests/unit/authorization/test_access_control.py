"""
Tests for default-deny access control and decision caching.
"""

from dataclasses import replace
from datetime import datetime, timedelta
from unittest.mock import patch

import pytest

from zerotrust_authz.authorization import (
    DEFAULT_DENY_REASON,
    AccessControlManager,
    AccessPolicy,
    DeviceTrustRule,
    LocationBasedRule,
    NetworkBasedRule,
    TimeBasedRule,
    UnknownRule,
    UserIdentityRule,
)
from zerotrust_authz.models import AccessCondition, AccessRequest, NetworkInfo, NetworkType


def _policy(*rules, policy_id="test_policy"):
    return AccessPolicy(id=policy_id, name="Test Policy", description="", rules=list(rules))


@pytest.mark.unit
class TestDefaultDeny:
    def test_unregistered_pair_is_denied(self, make_request):
        """A resource/action pair without a policy is always denied."""
        manager = AccessControlManager()

        decision = manager.evaluate_access(make_request("reports", "delete"))

        assert decision.allowed is False
        assert decision.reason == DEFAULT_DENY_REASON

    def test_policy_for_other_action_does_not_apply(self, make_request):
        manager = AccessControlManager()
        manager.register_policy("reports", "read", _policy(UserIdentityRule()))

        assert manager.evaluate_access(make_request("reports", "write")).allowed is False

    def test_empty_policy_grants(self, make_request):
        """A registered policy with no rules has nothing to fail."""
        manager = AccessControlManager()
        manager.register_policy("public", "read", _policy())

        assert manager.evaluate_access(make_request("public", "read")).allowed is True

    def test_last_registration_wins(self, make_request):
        manager = AccessControlManager()
        manager.register_policy("reports", "read", _policy(UserIdentityRule(), policy_id="first"))
        manager.register_policy("reports", "read", _policy(UnknownRule(declared_type="x"), policy_id="second"))

        assert manager.get_policy("reports", "read").id == "second"
        assert manager.evaluate_access(make_request("reports", "read")).allowed is False
        assert list(manager.list_policies()) == ["reports:read"]


@pytest.mark.unit
class TestRuleEvaluation:
    def test_insecure_network_denied(self, make_request, security_context):
        """Write access from an insecure network is refused."""
        manager = AccessControlManager()
        manager.register_policy(
            "user_data", "write",
            _policy(UserIdentityRule(), DeviceTrustRule(), NetworkBasedRule(require_secure_network=True)),
        )
        context = replace(
            security_context,
            network_info=NetworkInfo(type=NetworkType.WIFI, is_secure=False, ip_address="192.168.1.9"),
        )

        decision = manager.evaluate_access(make_request("user_data", "write", context=context))

        assert decision.allowed is False
        assert decision.reason == "Secure network required"

    def test_missing_network_info_denied_when_secure_network_required(self, make_request, security_context):
        manager = AccessControlManager()
        manager.register_policy("user_data", "write", _policy(NetworkBasedRule(require_secure_network=True)))
        context = replace(security_context, network_info=None)

        decision = manager.evaluate_access(make_request("user_data", "write", context=context))

        assert decision.reason == "Secure network required"

    @pytest.mark.parametrize(
        ("hour", "allowed", "reason"),
        [
            (14, True, None),
            (22, False, "Access not allowed at hour 22"),
        ],
    )
    def test_time_based_rule(self, make_request, security_context, hour, allowed, reason):
        """Business-hours policy checks the local hour of the request."""
        manager = AccessControlManager()
        manager.register_policy("reports", "read", _policy(TimeBasedRule(allowed_hours=list(range(9, 18)))))
        context = replace(security_context, timestamp=datetime(2024, 3, 12, hour, 30))

        decision = manager.evaluate_access(make_request("reports", "read", context=context))

        assert decision.allowed is allowed
        if reason:
            assert decision.reason == reason

    def test_time_rule_without_hours_passes(self, make_request):
        manager = AccessControlManager()
        manager.register_policy("reports", "read", _policy(TimeBasedRule()))

        assert manager.evaluate_access(make_request("reports", "read")).allowed is True

    def test_location_required(self, make_request, security_context):
        manager = AccessControlManager()
        manager.register_policy("map", "read", _policy(LocationBasedRule(require_location=True)))
        context = replace(security_context, location=None)

        decision = manager.evaluate_access(make_request("map", "read", context=context))

        assert decision.reason == "Location required but not provided"

    def test_unauthenticated_user_denied(self, make_request, security_context):
        manager = AccessControlManager()
        manager.register_policy("user_data", "read", _policy(UserIdentityRule()))
        context = replace(security_context, user_id="")

        decision = manager.evaluate_access(make_request(context=context))

        assert decision.reason == "User not authenticated"

    def test_unknown_rule_type_denies(self, make_request):
        manager = AccessControlManager()
        manager.register_policy("user_data", "read", _policy(UnknownRule(declared_type="retina_scan")))

        decision = manager.evaluate_access(make_request())

        assert decision.allowed is False
        assert "retina_scan" in decision.reason

    def test_missing_context_denies(self):
        manager = AccessControlManager()
        manager.register_policy("user_data", "read", _policy(UserIdentityRule()))
        request = AccessRequest(id="req-none", resource="user_data", action="read", context=None)

        decision = manager.evaluate_access(request)

        assert decision.allowed is False
        assert decision.reason == "Security context missing"

    def test_first_failing_rule_decides(self, make_request, security_context):
        """Evaluation stops at the first failing rule."""
        verifier_calls = []

        def verifier(context):
            verifier_calls.append(context)
            return True

        manager = AccessControlManager(device_verifier=verifier)
        manager.register_policy(
            "user_data", "read",
            _policy(NetworkBasedRule(require_secure_network=True), DeviceTrustRule()),
        )
        context = replace(security_context, network_info=None)

        decision = manager.evaluate_access(make_request(context=context))

        assert decision.reason == "Secure network required"
        assert verifier_calls == []

    def test_untrusted_device_denied(self, make_request):
        manager = AccessControlManager(device_verifier=lambda context: False)
        manager.register_policy("user_data", "read", _policy(DeviceTrustRule()))

        decision = manager.evaluate_access(make_request())

        assert decision.allowed is False
        assert decision.reason == "Device device-1 is not trusted"

    def test_rule_error_becomes_denial(self, make_request):
        def broken_verifier(context):
            raise RuntimeError("attestation service down")

        manager = AccessControlManager(device_verifier=broken_verifier)
        manager.register_policy("user_data", "read", _policy(DeviceTrustRule()))

        decision = manager.evaluate_access(make_request())

        assert decision.allowed is False
        assert decision.reason == "Access evaluation failed: attestation service down"

    def test_rule_error_is_reported_with_policy_and_rule(self, make_request):
        def broken_verifier(context):
            raise RuntimeError("attestation service down")

        manager = AccessControlManager(device_verifier=broken_verifier)
        manager.register_policy("user_data", "read", _policy(DeviceTrustRule(), policy_id="device_policy"))

        with patch("zerotrust_authz.exceptions.logger") as security_logger:
            manager.evaluate_access(make_request())

        security_logger.error.assert_called_once()
        audit_data = security_logger.error.call_args.kwargs["extra"]
        assert audit_data["error_type"] == "policy_evaluation_failed"
        assert audit_data["security_context"]["policy_id"] == "device_policy"
        assert audit_data["security_context"]["rule_type"] == "device_trust"

    def test_conditions_and_expiry_attached_to_grant(self, make_request, clock):
        condition = AccessCondition(type="user_confirmation", value=True, description="Confirm on device")
        manager = AccessControlManager(clock=clock)
        manager.register_policy(
            "user_data", "read",
            _policy(
                UserIdentityRule(conditions=[condition], valid_for=timedelta(minutes=30)),
                DeviceTrustRule(valid_for=timedelta(minutes=10)),
            ),
        )

        decision = manager.evaluate_access(make_request())

        assert decision.allowed is True
        assert decision.conditions == [condition]
        assert decision.expires_at == clock.now + timedelta(minutes=10)


@pytest.mark.unit
class TestDecisionCache:
    def test_granted_decision_is_valid_until_revoked(self, make_request):
        manager = AccessControlManager()
        manager.register_policy("user_data", "read", _policy(UserIdentityRule()))
        request = make_request(request_id="req-42")

        assert manager.evaluate_access(request).allowed is True
        assert manager.is_access_valid("req-42") is True

        assert manager.revoke_access("req-42") == 1
        assert manager.is_access_valid("req-42") is False

    def test_unknown_request_is_not_valid(self):
        manager = AccessControlManager()

        assert manager.is_access_valid("never-seen") is False
        assert manager.revoke_access("never-seen") == 0

    def test_denied_decision_is_not_cached(self, make_request):
        manager = AccessControlManager()
        manager.evaluate_access(make_request(request_id="req-denied"))

        assert manager.is_access_valid("req-denied") is False

    def test_expired_decision_is_evicted(self, make_request, clock):
        manager = AccessControlManager(clock=clock)
        manager.register_policy("user_data", "read", _policy(UserIdentityRule(valid_for=timedelta(minutes=5))))
        manager.evaluate_access(make_request(request_id="req-exp"))

        clock.advance(minutes=6)

        assert manager.is_access_valid("req-exp") is False
        assert manager.decisions.get("req-exp") is None

    def test_revoke_all_decisions_for_user(self, make_request, security_context):
        manager = AccessControlManager()
        manager.register_policy("user_data", "read", _policy(UserIdentityRule()))
        other = replace(security_context, user_id="someone-else")
        manager.evaluate_access(make_request(request_id="a"))
        manager.evaluate_access(make_request(request_id="b"))
        manager.evaluate_access(make_request(request_id="c", context=other))

        assert manager.revoke_access(user_id=security_context.user_id) == 2
        assert manager.is_access_valid("a") is False
        assert manager.is_access_valid("b") is False
        assert manager.is_access_valid("c") is True
