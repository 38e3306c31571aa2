"""
Access policy definitions.

Policy rules are a closed set of variants, one dataclass per rule kind. A
policy document that names a kind outside that set produces an UnknownRule,
which the access control manager always denies.
"""

import builtins
from dataclasses import dataclass, field
from datetime import timedelta
from enum import Enum
from typing import Any, ClassVar

from ..models import AccessCondition


class RuleType(Enum):
    USER_IDENTITY = "user_identity"
    TIME_BASED = "time_based"
    LOCATION_BASED = "location_based"
    NETWORK_BASED = "network_based"
    DEVICE_TRUST = "device_trust"


@dataclass
class PolicyRule:
    """Common rule attributes.

    ``conditions`` are attached to the decision when the rule passes and
    ``valid_for`` bounds how long the resulting grant stays valid.
    """

    rule_type: ClassVar[RuleType | None] = None

    required: bool = True
    conditions: builtins.list[AccessCondition] = field(default_factory=list)
    valid_for: timedelta | None = None

    @property
    def type_name(self) -> str:
        return self.rule_type.value if self.rule_type else "unknown"


@dataclass
class UserIdentityRule(PolicyRule):
    rule_type: ClassVar[RuleType] = RuleType.USER_IDENTITY


@dataclass
class TimeBasedRule(PolicyRule):
    rule_type: ClassVar[RuleType] = RuleType.TIME_BASED

    allowed_hours: builtins.list[int] | None = None


@dataclass
class LocationBasedRule(PolicyRule):
    rule_type: ClassVar[RuleType] = RuleType.LOCATION_BASED

    require_location: bool = False


@dataclass
class NetworkBasedRule(PolicyRule):
    rule_type: ClassVar[RuleType] = RuleType.NETWORK_BASED

    require_secure_network: bool = False


@dataclass
class DeviceTrustRule(PolicyRule):
    rule_type: ClassVar[RuleType] = RuleType.DEVICE_TRUST


@dataclass
class UnknownRule(PolicyRule):
    """Rule whose kind is not recognized; evaluates to deny."""

    declared_type: str = ""

    @property
    def type_name(self) -> str:
        return self.declared_type


@dataclass
class AccessPolicy:
    """Ordered rule stack guarding one resource/action pair."""

    id: str
    name: str
    description: str = ""
    rules: builtins.list[PolicyRule] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: builtins.dict[str, Any]) -> "AccessPolicy":
        return cls(
            id=str(data["id"]),
            name=str(data.get("name", data["id"])),
            description=str(data.get("description", "")),
            rules=[rule_from_dict(rule) for rule in data.get("rules", [])],
        )


# Condition keys accepted in policy documents, snake_case or camelCase
_CONDITION_ALIASES = {
    "allowedHours": "allowed_hours",
    "requireLocation": "require_location",
    "requireSecureNetwork": "require_secure_network",
}

_RULE_CLASSES: builtins.dict[str, type[PolicyRule]] = {
    RuleType.USER_IDENTITY.value: UserIdentityRule,
    RuleType.TIME_BASED.value: TimeBasedRule,
    RuleType.LOCATION_BASED.value: LocationBasedRule,
    RuleType.NETWORK_BASED.value: NetworkBasedRule,
    RuleType.DEVICE_TRUST.value: DeviceTrustRule,
}


def rule_from_dict(data: builtins.dict[str, Any]) -> PolicyRule:
    """Build a rule from a policy document entry.

    Raises KeyError/TypeError/ValueError for structurally invalid entries.
    """
    rule_type = str(data["type"])
    required = bool(data.get("required", True))
    valid_for = data.get("valid_for_seconds")
    common: builtins.dict[str, Any] = {
        "required": required,
        "valid_for": timedelta(seconds=float(valid_for)) if valid_for is not None else None,
    }

    rule_class = _RULE_CLASSES.get(rule_type)
    if rule_class is None:
        return UnknownRule(declared_type=rule_type, **common)

    conditions = {
        _CONDITION_ALIASES.get(key, key): value
        for key, value in (data.get("conditions") or {}).items()
    }
    if rule_class is TimeBasedRule and conditions.get("allowed_hours") is not None:
        conditions["allowed_hours"] = [int(hour) for hour in conditions["allowed_hours"]]

    return rule_class(**common, **conditions)
