"""
Consent management

- ConsentManager: purpose- and data-type-scoped, time-boxed user consent
- CaregiverConsentManager: role-based caregiver permissions with explicit approval
"""

from .caregiver import (
    CaregiverConsentManager,
    CaregiverConsentRequest,
    CaregiverPermission,
    CaregiverRole,
    ConditionOperator,
    ConsentStatus,
    PermissionCondition,
    PermissionConditionType,
    PermissionScope,
    PermissionType,
)
from .manager import (
    ConsentAction,
    ConsentCondition,
    ConsentConditionType,
    ConsentDecision,
    ConsentManager,
    ConsentPrompt,
    ConsentRecord,
    ConsentRequest,
    DefaultConsentPrompt,
    StoredConsent,
)

__all__ = [
    "CaregiverConsentManager",
    "CaregiverConsentRequest",
    "CaregiverPermission",
    "CaregiverRole",
    "ConditionOperator",
    "ConsentAction",
    "ConsentCondition",
    "ConsentConditionType",
    "ConsentDecision",
    "ConsentManager",
    "ConsentPrompt",
    "ConsentRecord",
    "ConsentRequest",
    "ConsentStatus",
    "DefaultConsentPrompt",
    "PermissionCondition",
    "PermissionConditionType",
    "PermissionScope",
    "PermissionType",
    "StoredConsent",
]
