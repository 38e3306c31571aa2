"""
Policy-based authorization: default-deny policy registry, rule evaluation and
decision caching.
"""

from .access_control import DEFAULT_DENY_REASON, AccessControlManager, RuleResult
from .policies import (
    AccessPolicy,
    DeviceTrustRule,
    LocationBasedRule,
    NetworkBasedRule,
    PolicyRule,
    RuleType,
    TimeBasedRule,
    UnknownRule,
    UserIdentityRule,
    rule_from_dict,
)

__all__ = [
    "AccessControlManager",
    "AccessPolicy",
    "DEFAULT_DENY_REASON",
    "DeviceTrustRule",
    "LocationBasedRule",
    "NetworkBasedRule",
    "PolicyRule",
    "RuleResult",
    "RuleType",
    "TimeBasedRule",
    "UnknownRule",
    "UserIdentityRule",
    "rule_from_dict",
]
