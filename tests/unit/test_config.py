"""
Tests for settings loading and policy documents.
"""

from datetime import timedelta

import pytest
from pydantic import ValidationError

from zerotrust_authz.authorization import (
    AccessPolicy,
    NetworkBasedRule,
    TimeBasedRule,
    UnknownRule,
    UserIdentityRule,
    rule_from_dict,
)
from zerotrust_authz.config import ConsentSettings, ZeroTrustSettings, default_policies, load_policies
from zerotrust_authz.exceptions import ConfigurationError


@pytest.mark.unit
class TestZeroTrustSettings:
    def test_defaults(self, monkeypatch):
        monkeypatch.delenv("ZERO_TRUST_LOG_LEVEL", raising=False)
        settings = ZeroTrustSettings(_env_file=None)

        assert settings.log_level == "INFO"
        assert settings.event_retention == timedelta(hours=24)
        assert settings.analysis_window == timedelta(hours=1)
        assert settings.response_history_retention == timedelta(days=30)
        assert settings.monitoring_interval_seconds == 60.0
        assert settings.sensitive_resources == ["contacts", "location", "health", "financial", "biometric"]
        assert settings.consent.max_consent_duration == timedelta(days=7)

    def test_environment_overrides(self, monkeypatch):
        monkeypatch.setenv("ZERO_TRUST_SERVICE_NAME", "assistant-authz")
        monkeypatch.setenv("ZERO_TRUST_LOG_LEVEL", "debug")
        monkeypatch.setenv("ZERO_TRUST_MONITORING_INTERVAL_SECONDS", "15")
        monkeypatch.setenv("ZERO_TRUST_CONSENT__REQUIRE_EXPLICIT_CONSENT", "false")

        settings = ZeroTrustSettings(_env_file=None)

        assert settings.service_name == "assistant-authz"
        assert settings.log_level == "DEBUG"
        assert settings.monitoring_interval_seconds == 15.0
        assert settings.consent.require_explicit_consent is False

    def test_invalid_log_level(self):
        with pytest.raises(ValidationError):
            ZeroTrustSettings(_env_file=None, log_level="LOUD")

    def test_sensitive_resources_are_lowercased(self):
        settings = ZeroTrustSettings(_env_file=None, sensitive_resources=["Photos", "CONTACTS"])
        assert settings.sensitive_resources == ["photos", "contacts"]

    def test_consent_durations_must_be_positive(self):
        with pytest.raises(ValidationError):
            ConsentSettings(default_permission_duration_days=0)


@pytest.mark.unit
class TestPolicyDocuments:
    def test_rule_from_dict_accepts_camel_case(self):
        rule = rule_from_dict({"type": "network_based", "conditions": {"requireSecureNetwork": True}})

        assert isinstance(rule, NetworkBasedRule)
        assert rule.require_secure_network is True
        assert rule.required is True

    def test_rule_from_dict_unknown_type(self):
        rule = rule_from_dict({"type": "voice_print", "required": False})

        assert isinstance(rule, UnknownRule)
        assert rule.type_name == "voice_print"

    def test_rule_from_dict_validity(self):
        rule = rule_from_dict({"type": "user_identity", "valid_for_seconds": 900})
        assert rule.valid_for == timedelta(minutes=15)

    def test_load_policies(self, temp_dir):
        path = temp_dir / "policies.yaml"
        path.write_text(
            """
policies:
  - id: reports_read
    name: Reports Read
    resource: reports
    action: read
    rules:
      - type: user_identity
      - type: time_based
        conditions:
          allowedHours: [9, 10, 11]
""",
            encoding="utf-8",
        )

        policies = load_policies(path)

        policy = policies[("reports", "read")]
        assert isinstance(policy, AccessPolicy)
        assert policy.id == "reports_read"
        assert isinstance(policy.rules[0], UserIdentityRule)
        assert isinstance(policy.rules[1], TimeBasedRule)
        assert policy.rules[1].allowed_hours == [9, 10, 11]

    @pytest.mark.parametrize(
        "content",
        [
            "policies: [\n  - id: broken\n",
            "policies: not-a-list\n",
            "policies:\n  - id: no_resource\n    action: read\n",
            "policies:\n  - id: bad_rule\n    resource: x\n    action: read\n    rules:\n      - type: time_based\n        conditions: {bogus: 1}\n",
        ],
    )
    def test_malformed_document_raises(self, temp_dir, content):
        path = temp_dir / "policies.yaml"
        path.write_text(content, encoding="utf-8")

        with pytest.raises(ConfigurationError):
            load_policies(path)

    def test_missing_file_raises(self, temp_dir):
        with pytest.raises(ConfigurationError):
            load_policies(temp_dir / "missing.yaml")

    def test_default_policies(self):
        policies = default_policies()

        assert set(policies) == {("user_data", "read"), ("user_data", "write"), ("sensitive_data", "read")}
        write_rules = policies[("user_data", "write")].rules
        assert any(isinstance(r, NetworkBasedRule) and r.require_secure_network for r in write_rules)
        time_rule = policies[("sensitive_data", "read")].rules[-1]
        assert time_rule.allowed_hours == list(range(6, 23))
