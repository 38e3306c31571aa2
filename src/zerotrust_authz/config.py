"""Strongly typed engine configuration and policy document loading."""

from __future__ import annotations

from datetime import timedelta
from pathlib import Path

import yaml
from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .authorization.policies import (
    AccessPolicy,
    DeviceTrustRule,
    NetworkBasedRule,
    TimeBasedRule,
    UserIdentityRule,
)
from .exceptions import ConfigurationError


class ConsentSettings(BaseModel):
    """Consent durations and approval modes."""

    require_explicit_consent: bool = Field(
        default=True, description="Require user approval for every caregiver request"
    )
    default_permission_duration_days: int = Field(default=30, ge=1)
    max_permission_duration_days: int = Field(default=365, ge=1)
    max_consent_duration_hours: int = Field(
        default=168, ge=1, description="Upper bound on any user consent grant"
    )
    require_periodic_reconfirmation: bool = Field(default=False)
    reconfirmation_interval_days: int = Field(default=90, ge=1)

    @property
    def max_consent_duration(self) -> timedelta:
        return timedelta(hours=self.max_consent_duration_hours)


class ZeroTrustSettings(BaseSettings):
    """Runtime configuration loaded from environment variables and `.env` files."""

    model_config = SettingsConfigDict(
        env_prefix="ZERO_TRUST_", env_file=".env", env_nested_delimiter="__"
    )

    service_name: str = Field(default="zerotrust-authz", description="Service identifier")
    log_level: str = Field(default="INFO", description="Log level")
    structured_logging: bool = Field(
        default=False, description="Install JSON logging on the root logger at initialize"
    )
    monitoring_interval_seconds: float = Field(
        default=60.0, gt=0, description="Seconds between anomaly sweeps"
    )
    event_retention_hours: int = Field(default=24, ge=1)
    analysis_window_minutes: int = Field(default=60, ge=1)
    response_history_days: int = Field(default=30, ge=1)
    sensitive_resources: list[str] = Field(
        default_factory=lambda: ["contacts", "location", "health", "financial", "biometric"],
        description="Resource name fragments that require consent",
    )
    policy_file: Path | None = Field(default=None, description="YAML policy document")
    audit_log_path: Path | None = Field(default=None, description="JSON-lines audit file")
    audit_queue_size: int = Field(default=10000, ge=1)
    consent: ConsentSettings = Field(default_factory=ConsentSettings)

    @field_validator("log_level")
    @classmethod
    def _validate_log_level(cls, value: str) -> str:
        allowed = {"CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG"}
        upper_value = value.upper()
        if upper_value not in allowed:
            msg = f"Invalid log level '{value}'. Choose one of: {', '.join(sorted(allowed))}."
            raise ValueError(msg)
        return upper_value

    @field_validator("sensitive_resources")
    @classmethod
    def _lowercase_resources(cls, value: list[str]) -> list[str]:
        return [item.lower() for item in value]

    @property
    def event_retention(self) -> timedelta:
        return timedelta(hours=self.event_retention_hours)

    @property
    def analysis_window(self) -> timedelta:
        return timedelta(minutes=self.analysis_window_minutes)

    @property
    def response_history_retention(self) -> timedelta:
        return timedelta(days=self.response_history_days)


def default_policies() -> dict[tuple[str, str], AccessPolicy]:
    """Policies installed on every initialized framework, keyed by (resource, action)."""
    return {
        ("user_data", "read"): AccessPolicy(
            id="user_data_read",
            name="User Data Read Access",
            description="Policy for reading user data",
            rules=[UserIdentityRule(), DeviceTrustRule()],
        ),
        ("user_data", "write"): AccessPolicy(
            id="user_data_write",
            name="User Data Write Access",
            description="Policy for writing user data",
            rules=[UserIdentityRule(), DeviceTrustRule(), NetworkBasedRule(require_secure_network=True)],
        ),
        ("sensitive_data", "read"): AccessPolicy(
            id="sensitive_data_read",
            name="Sensitive Data Read Access",
            description="Policy for reading sensitive data",
            rules=[
                UserIdentityRule(),
                DeviceTrustRule(),
                TimeBasedRule(allowed_hours=list(range(6, 23))),
            ],
        ),
    }


def load_policies(path: str | Path) -> dict[tuple[str, str], AccessPolicy]:
    """Load a YAML policy document.

    The document holds a top-level ``policies`` list; each entry names the
    ``resource`` and ``action`` it guards plus the usual policy fields::

        policies:
          - id: reports_read
            resource: reports
            action: read
            rules:
              - type: user_identity
              - type: time_based
                conditions: {allowed_hours: [9, 10, 11]}
    """
    source = str(path)
    try:
        with open(path, encoding="utf-8") as f:
            document = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as e:
        raise ConfigurationError(f"Cannot read policy file: {e}", source=source) from e

    if not isinstance(document, dict) or not isinstance(document.get("policies", []), list):
        raise ConfigurationError("Policy file must contain a 'policies' list", source=source)

    policies: dict[tuple[str, str], AccessPolicy] = {}
    for index, entry in enumerate(document.get("policies", [])):
        try:
            key = (str(entry["resource"]), str(entry["action"]))
            policies[key] = AccessPolicy.from_dict(entry)
        except (KeyError, TypeError, ValueError) as e:
            raise ConfigurationError(f"Invalid policy entry #{index}: {e}", source=source) from e

    return policies
