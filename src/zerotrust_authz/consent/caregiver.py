"""
Caregiver consent: explicit approval of what a caregiver may see or do.

A caregiver asks for a role and a list of permissions; the user approves,
narrows or denies the request. Emergency contacts can be auto-approved for
emergency-only permissions when explicit consent is not required.
"""

import asyncio
import builtins
import logging
import threading
import uuid
from collections.abc import Callable
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta
from enum import Enum
from typing import Any

from ..audit import AuditEventType, SecurityAuditor
from ..config import ConsentSettings
from ..exceptions import ConsentError
from ..models import local_hour, to_utc, utc_now

logger = logging.getLogger(__name__)


class CaregiverRole(Enum):
    EMERGENCY_CONTACT = "emergency_contact"
    DAILY_MONITOR = "daily_monitor"
    REMOTE_ASSISTANT = "remote_assistant"
    FULL_ACCESS = "full_access"


class ConsentStatus(Enum):
    PENDING = "pending"
    APPROVED = "approved"
    DENIED = "denied"
    EXPIRED = "expired"
    REVOKED = "revoked"


class PermissionType(Enum):
    VIEW_ACTIVITY_SUMMARY = "view_activity_summary"
    VIEW_HEALTH_DATA = "view_health_data"
    VIEW_LOCATION = "view_location"
    RECEIVE_EMERGENCY_ALERTS = "receive_emergency_alerts"
    REMOTE_ASSISTANCE = "remote_assistance"
    MODIFY_SETTINGS = "modify_settings"
    VIEW_CONTACTS = "view_contacts"
    VIEW_CALENDAR = "view_calendar"


class PermissionScope(Enum):
    EMERGENCY_ONLY = "emergency_only"
    DAILY_SUMMARY = "daily_summary"
    REAL_TIME = "real_time"
    FULL_ACCESS = "full_access"


class PermissionConditionType(Enum):
    TIME_OF_DAY = "time_of_day"
    DAY_OF_WEEK = "day_of_week"
    LOCATION = "location"
    EMERGENCY_STATUS = "emergency_status"


class ConditionOperator(Enum):
    EQUALS = "equals"
    NOT_EQUALS = "not_equals"
    GREATER_THAN = "greater_than"
    LESS_THAN = "less_than"
    CONTAINS = "contains"


@dataclass
class PermissionCondition:
    type: PermissionConditionType
    value: str
    operator: ConditionOperator


@dataclass
class CaregiverPermission:
    type: PermissionType
    scope: PermissionScope
    granted_at: datetime | None = None
    expires_at: datetime | None = None
    conditions: builtins.list[PermissionCondition] = field(default_factory=list)


@dataclass
class CaregiverConsentRequest:
    id: str
    caregiver_id: str
    requested_role: CaregiverRole
    requested_permissions: builtins.list[CaregiverPermission]
    created_at: datetime
    status: ConsentStatus = ConsentStatus.PENDING
    message: str | None = None
    expires_at: datetime | None = None

    @property
    def granted(self) -> bool:
        return self.status == ConsentStatus.APPROVED


ConsentListener = Callable[[str, builtins.dict[str, Any]], None]


class CaregiverConsentManager:
    """Consent requests and active permissions per caregiver."""

    REQUEST_TTL = timedelta(days=7)

    def __init__(
        self,
        settings: ConsentSettings | None = None,
        auditor: SecurityAuditor | None = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.settings = settings or ConsentSettings()
        self.auditor = auditor
        self._clock = clock

        self._requests: dict[str, CaregiverConsentRequest] = {}
        self._active: dict[str, list[CaregiverPermission]] = {}
        self._listeners: list[ConsentListener] = []
        self._lock = threading.RLock()
        self._reconfirmation_task: asyncio.Task | None = None

    def add_listener(self, listener: ConsentListener):
        """Register a callback receiving (event_name, payload)."""
        self._listeners.append(listener)

    async def create_consent_request(
        self,
        caregiver_id: str,
        requested_permissions: builtins.list[CaregiverPermission],
        requested_role: CaregiverRole,
        message: str | None = None,
        expires_at: datetime | None = None,
    ) -> CaregiverConsentRequest:
        if not self.settings.require_explicit_consent and requested_role == CaregiverRole.EMERGENCY_CONTACT:
            return self._auto_approve_emergency(caregiver_id, requested_permissions, requested_role)

        now = to_utc(self._clock())
        request = CaregiverConsentRequest(
            id=self._generate_request_id(),
            caregiver_id=caregiver_id,
            requested_role=requested_role,
            requested_permissions=self._apply_default_duration(requested_permissions),
            created_at=now,
            message=message,
            expires_at=expires_at or now + self.REQUEST_TTL,
        )

        with self._lock:
            self._requests[request.id] = request

        self._emit("consent_request_created", {"request": request})
        self._audit(
            AuditEventType.CONSENT_REQUESTED,
            caregiver_id,
            "consent_request",
            request_id=request.id,
            requested_role=requested_role.value,
            permission_count=len(requested_permissions),
        )
        return request

    async def approve_consent_request(
        self,
        request_id: str,
        user_id: str,
        custom_permissions: builtins.list[CaregiverPermission] | None = None,
    ) -> bool:
        """Approve a pending request, optionally narrowing its permissions."""
        with self._lock:
            request = self._pending_request(request_id)

            if request.expires_at is not None and to_utc(request.expires_at) < to_utc(self._clock()):
                request.status = ConsentStatus.EXPIRED
                return False

            permissions = self._limit_permissions(
                custom_permissions if custom_permissions is not None else request.requested_permissions
            )
            self._active[request.caregiver_id] = permissions
            request.status = ConsentStatus.APPROVED

        self._emit(
            "consent_approved",
            {"caregiver_id": request.caregiver_id, "permissions": permissions, "approved_by": user_id},
        )
        self._audit(
            AuditEventType.PERMISSION_GRANTED,
            request.caregiver_id,
            "consent_approval",
            request_id=request_id,
            approved_by=user_id,
            permission_count=len(permissions),
        )
        return True

    async def deny_consent_request(self, request_id: str, user_id: str, reason: str | None = None) -> bool:
        with self._lock:
            request = self._pending_request(request_id)
            request.status = ConsentStatus.DENIED

        self._emit("consent_denied", {"caregiver_id": request.caregiver_id, "denied_by": user_id, "reason": reason})
        self._audit(
            AuditEventType.CONSENT_DENIED,
            request.caregiver_id,
            "consent_denial",
            request_id=request_id,
            denied_by=user_id,
            reason=reason,
        )
        return True

    async def revoke_consent(self, caregiver_id: str, user_id: str, reason: str | None = None) -> bool:
        """Drop every permission of a caregiver and cancel their pending requests."""
        with self._lock:
            permissions = self._active.pop(caregiver_id, None)
            if permissions is None:
                return False

            for request in self._requests.values():
                if request.caregiver_id == caregiver_id and request.status == ConsentStatus.PENDING:
                    request.status = ConsentStatus.REVOKED

        self._emit(
            "consent_revoked",
            {
                "caregiver_id": caregiver_id,
                "revoked_by": user_id,
                "reason": reason,
                "revoked_permissions": permissions,
            },
        )
        self._audit(
            AuditEventType.PERMISSION_REVOKED,
            caregiver_id,
            "consent_revocation",
            revoked_by=user_id,
            reason=reason,
            permission_count=len(permissions),
        )
        return True

    def has_permission(
        self,
        caregiver_id: str,
        permission_type: PermissionType,
        scope: PermissionScope | None = None,
    ) -> bool:
        now = to_utc(self._clock())
        with self._lock:
            permissions = list(self._active.get(caregiver_id, []))

        for permission in permissions:
            if permission.expires_at is not None and to_utc(permission.expires_at) < now:
                continue
            if permission.type != permission_type:
                continue
            if scope is not None and permission.scope != scope:
                continue
            if not all(self._evaluate_condition(c, now) for c in permission.conditions):
                continue
            return True
        return False

    def get_caregiver_permissions(self, caregiver_id: str) -> builtins.list[CaregiverPermission]:
        """Unexpired permissions of a caregiver; expired ones are pruned."""
        now = to_utc(self._clock())
        with self._lock:
            permissions = self._active.get(caregiver_id)
            if not permissions:
                return []

            active = [p for p in permissions if p.expires_at is None or to_utc(p.expires_at) > now]
            if len(active) != len(permissions):
                self._active[caregiver_id] = active
            return list(active)

    def get_pending_consent_requests(self) -> builtins.list[CaregiverConsentRequest]:
        now = to_utc(self._clock())
        with self._lock:
            return [
                r for r in self._requests.values()
                if r.status == ConsentStatus.PENDING and (r.expires_at is None or to_utc(r.expires_at) > now)
            ]

    def get_consent_request(self, request_id: str) -> CaregiverConsentRequest | None:
        with self._lock:
            return self._requests.get(request_id)

    def check_for_reconfirmation(self) -> builtins.list[str]:
        """Emit reconfirmation_required for caregivers holding stale grants."""
        threshold = to_utc(self._clock()) - timedelta(days=self.settings.reconfirmation_interval_days)
        with self._lock:
            snapshot = {cid: list(perms) for cid, perms in self._active.items()}

        stale = []
        for caregiver_id, permissions in snapshot.items():
            if any(p.granted_at is not None and to_utc(p.granted_at) < threshold for p in permissions):
                stale.append(caregiver_id)
                self._emit("reconfirmation_required", {"caregiver_id": caregiver_id, "permissions": permissions})
        return stale

    async def start_reconfirmation(self):
        if not self.settings.require_periodic_reconfirmation or self._reconfirmation_task is not None:
            return
        self._reconfirmation_task = asyncio.create_task(self._reconfirmation_loop())

    async def stop_reconfirmation(self):
        if self._reconfirmation_task is None:
            return
        self._reconfirmation_task.cancel()
        try:
            await self._reconfirmation_task
        except asyncio.CancelledError:
            pass
        self._reconfirmation_task = None

    async def _reconfirmation_loop(self):
        interval = timedelta(days=self.settings.reconfirmation_interval_days).total_seconds()
        while True:
            await asyncio.sleep(interval)
            try:
                self.check_for_reconfirmation()
            except Exception as e:
                logger.error("Reconfirmation check failed: %s", e)

    def _auto_approve_emergency(
        self,
        caregiver_id: str,
        requested_permissions: builtins.list[CaregiverPermission],
        requested_role: CaregiverRole,
    ) -> CaregiverConsentRequest:
        emergency = [
            p for p in requested_permissions
            if p.type == PermissionType.RECEIVE_EMERGENCY_ALERTS or p.scope == PermissionScope.EMERGENCY_ONLY
        ]
        permissions = self._apply_default_duration(emergency)

        request = CaregiverConsentRequest(
            id=self._generate_request_id(),
            caregiver_id=caregiver_id,
            requested_role=requested_role,
            requested_permissions=permissions,
            created_at=to_utc(self._clock()),
            status=ConsentStatus.APPROVED,
        )

        with self._lock:
            self._active[caregiver_id] = permissions
            self._requests[request.id] = request

        logger.info(
            "Auto-approved emergency consent for caregiver %s (%d of %d permissions kept)",
            caregiver_id, len(permissions), len(requested_permissions),
        )
        self._emit(
            "consent_auto_approved",
            {"caregiver_id": caregiver_id, "permissions": permissions, "role": requested_role},
        )
        self._audit(
            AuditEventType.PERMISSION_GRANTED,
            caregiver_id,
            "consent_auto_approval",
            request_id=request.id,
            permission_count=len(permissions),
        )
        return request

    def _pending_request(self, request_id: str) -> CaregiverConsentRequest:
        request = self._requests.get(request_id)
        if request is None or request.status != ConsentStatus.PENDING:
            raise ConsentError("Invalid or already processed consent request", request_id=request_id)
        return request

    def _apply_default_duration(self, permissions: builtins.list[CaregiverPermission]) -> builtins.list[CaregiverPermission]:
        now = to_utc(self._clock())
        default = timedelta(days=self.settings.default_permission_duration_days)
        return [
            replace(p, granted_at=now, expires_at=p.expires_at or now + default)
            for p in permissions
        ]

    def _limit_permissions(self, permissions: builtins.list[CaregiverPermission]) -> builtins.list[CaregiverPermission]:
        now = to_utc(self._clock())
        latest = now + timedelta(days=self.settings.max_permission_duration_days)
        limited = []
        for permission in self._apply_default_duration(permissions):
            expires_at = min(to_utc(permission.expires_at), latest)
            limited.append(replace(permission, expires_at=expires_at))
        return limited

    def _evaluate_condition(self, condition: PermissionCondition, now: datetime) -> bool:
        if condition.type != PermissionConditionType.TIME_OF_DAY:
            # Other condition kinds depend on state this manager does not hold.
            return True

        hour = local_hour(now)
        target = int(condition.value)
        if condition.operator == ConditionOperator.GREATER_THAN:
            return hour > target
        if condition.operator == ConditionOperator.LESS_THAN:
            return hour < target
        if condition.operator == ConditionOperator.EQUALS:
            return hour == target
        return True

    def _emit(self, event_name: str, payload: builtins.dict[str, Any]):
        for listener in list(self._listeners):
            try:
                listener(event_name, payload)
            except Exception as e:
                logger.error("Consent listener failed for %s: %s", event_name, e)

    def _audit(self, event_type: AuditEventType, caregiver_id: str, resource: str, **details):
        if self.auditor is not None:
            self.auditor.audit(event_type, principal_id=caregiver_id, resource=resource, result="success", **details)

    @staticmethod
    def _generate_request_id() -> str:
        return f"consent_{uuid.uuid4().hex[:12]}"
