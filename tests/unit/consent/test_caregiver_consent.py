"""
Tests for caregiver consent requests, approvals and permission checks.
"""

from datetime import timedelta
from unittest.mock import MagicMock

import pytest

from zerotrust_authz.audit import AuditEventType, SecurityAuditor
from zerotrust_authz.config import ConsentSettings
from zerotrust_authz.consent import (
    CaregiverConsentManager,
    CaregiverPermission,
    CaregiverRole,
    ConditionOperator,
    ConsentStatus,
    PermissionCondition,
    PermissionConditionType,
    PermissionScope,
    PermissionType,
)
from zerotrust_authz.exceptions import ConsentError


def _permissions():
    return [
        CaregiverPermission(type=PermissionType.RECEIVE_EMERGENCY_ALERTS, scope=PermissionScope.REAL_TIME),
        CaregiverPermission(type=PermissionType.VIEW_LOCATION, scope=PermissionScope.EMERGENCY_ONLY),
        CaregiverPermission(type=PermissionType.VIEW_HEALTH_DATA, scope=PermissionScope.DAILY_SUMMARY),
        CaregiverPermission(type=PermissionType.MODIFY_SETTINGS, scope=PermissionScope.FULL_ACCESS),
    ]


@pytest.fixture
def manager(clock):
    return CaregiverConsentManager(settings=ConsentSettings(), clock=clock)


@pytest.mark.unit
class TestEmergencyAutoApproval:
    @pytest.mark.asyncio
    async def test_emergency_contact_auto_approved(self, clock):
        """Without explicit consent only emergency permissions survive auto-approval."""
        manager = CaregiverConsentManager(settings=ConsentSettings(require_explicit_consent=False), clock=clock)
        listener = MagicMock()
        manager.add_listener(listener)

        request = await manager.create_consent_request("carer-1", _permissions(), CaregiverRole.EMERGENCY_CONTACT)

        assert request.granted is True
        assert request.status == ConsentStatus.APPROVED
        kept = [(p.type, p.scope) for p in manager.get_caregiver_permissions("carer-1")]
        assert kept == [
            (PermissionType.RECEIVE_EMERGENCY_ALERTS, PermissionScope.REAL_TIME),
            (PermissionType.VIEW_LOCATION, PermissionScope.EMERGENCY_ONLY),
        ]
        assert manager.has_permission("carer-1", PermissionType.VIEW_HEALTH_DATA) is False
        assert listener.call_args.args[0] == "consent_auto_approved"

    @pytest.mark.asyncio
    async def test_other_roles_still_need_approval(self, clock):
        manager = CaregiverConsentManager(settings=ConsentSettings(require_explicit_consent=False), clock=clock)

        request = await manager.create_consent_request("carer-1", _permissions(), CaregiverRole.DAILY_MONITOR)

        assert request.status == ConsentStatus.PENDING
        assert manager.get_caregiver_permissions("carer-1") == []

    @pytest.mark.asyncio
    async def test_explicit_consent_mode_keeps_emergency_contacts_pending(self, manager):
        request = await manager.create_consent_request("carer-1", _permissions(), CaregiverRole.EMERGENCY_CONTACT)

        assert request.status == ConsentStatus.PENDING
        assert manager.get_pending_consent_requests() == [request]


@pytest.mark.unit
class TestApprovalFlow:
    @pytest.mark.asyncio
    async def test_request_gets_default_duration(self, manager, clock):
        request = await manager.create_consent_request("carer-1", _permissions(), CaregiverRole.DAILY_MONITOR)

        assert all(p.expires_at == clock.now + timedelta(days=30) for p in request.requested_permissions)
        assert request.expires_at == clock.now + timedelta(days=7)

    @pytest.mark.asyncio
    async def test_approve_grants_permissions(self, manager):
        request = await manager.create_consent_request("carer-1", _permissions(), CaregiverRole.DAILY_MONITOR)

        assert await manager.approve_consent_request(request.id, "user-1") is True

        assert manager.get_consent_request(request.id).status == ConsentStatus.APPROVED
        assert manager.has_permission("carer-1", PermissionType.VIEW_HEALTH_DATA, PermissionScope.DAILY_SUMMARY)
        assert not manager.has_permission("carer-1", PermissionType.VIEW_HEALTH_DATA, PermissionScope.REAL_TIME)
        assert not manager.has_permission("carer-1", PermissionType.VIEW_CALENDAR)

    @pytest.mark.asyncio
    async def test_approval_clamps_to_maximum_duration(self, clock):
        manager = CaregiverConsentManager(settings=ConsentSettings(max_permission_duration_days=10), clock=clock)
        long_lived = CaregiverPermission(
            type=PermissionType.VIEW_CALENDAR,
            scope=PermissionScope.FULL_ACCESS,
            expires_at=clock.now + timedelta(days=400),
        )
        request = await manager.create_consent_request("carer-1", [long_lived], CaregiverRole.FULL_ACCESS)

        await manager.approve_consent_request(request.id, "user-1")

        [permission] = manager.get_caregiver_permissions("carer-1")
        assert permission.expires_at == clock.now + timedelta(days=10)

    @pytest.mark.asyncio
    async def test_custom_permissions_replace_requested(self, manager):
        request = await manager.create_consent_request("carer-1", _permissions(), CaregiverRole.DAILY_MONITOR)
        narrowed = [CaregiverPermission(type=PermissionType.VIEW_ACTIVITY_SUMMARY, scope=PermissionScope.DAILY_SUMMARY)]

        await manager.approve_consent_request(request.id, "user-1", custom_permissions=narrowed)

        assert [p.type for p in manager.get_caregiver_permissions("carer-1")] == [PermissionType.VIEW_ACTIVITY_SUMMARY]

    @pytest.mark.asyncio
    async def test_processed_request_cannot_be_approved_again(self, manager):
        request = await manager.create_consent_request("carer-1", _permissions(), CaregiverRole.DAILY_MONITOR)
        await manager.deny_consent_request(request.id, "user-1", reason="not now")

        with pytest.raises(ConsentError):
            await manager.approve_consent_request(request.id, "user-1")
        with pytest.raises(ConsentError):
            await manager.deny_consent_request(request.id, "user-1")
        with pytest.raises(ConsentError):
            await manager.approve_consent_request("missing", "user-1")

    @pytest.mark.asyncio
    async def test_expired_request_cannot_be_approved(self, manager, clock):
        request = await manager.create_consent_request("carer-1", _permissions(), CaregiverRole.DAILY_MONITOR)
        clock.advance(days=8)

        assert await manager.approve_consent_request(request.id, "user-1") is False
        assert manager.get_consent_request(request.id).status == ConsentStatus.EXPIRED
        assert manager.get_pending_consent_requests() == []

    @pytest.mark.asyncio
    async def test_permissions_expire(self, manager, clock):
        request = await manager.create_consent_request("carer-1", _permissions(), CaregiverRole.DAILY_MONITOR)
        await manager.approve_consent_request(request.id, "user-1")
        clock.advance(days=31)

        assert manager.has_permission("carer-1", PermissionType.VIEW_HEALTH_DATA) is False
        assert manager.get_caregiver_permissions("carer-1") == []


@pytest.mark.unit
class TestRevocation:
    @pytest.mark.asyncio
    async def test_revoke_cancels_pending_requests(self, manager):
        first = await manager.create_consent_request("carer-1", _permissions(), CaregiverRole.DAILY_MONITOR)
        await manager.approve_consent_request(first.id, "user-1")
        pending = await manager.create_consent_request("carer-1", _permissions(), CaregiverRole.FULL_ACCESS)

        assert await manager.revoke_consent("carer-1", "user-1", reason="moved away") is True

        assert manager.get_caregiver_permissions("carer-1") == []
        assert manager.get_consent_request(pending.id).status == ConsentStatus.REVOKED

    @pytest.mark.asyncio
    async def test_revoke_unknown_caregiver(self, manager):
        assert await manager.revoke_consent("nobody", "user-1") is False


@pytest.mark.unit
class TestConditionsAndReconfirmation:
    @pytest.mark.asyncio
    async def test_time_of_day_condition(self, manager, clock):
        local_hour = clock.now.astimezone().hour
        permission = CaregiverPermission(
            type=PermissionType.REMOTE_ASSISTANCE,
            scope=PermissionScope.REAL_TIME,
            conditions=[PermissionCondition(
                type=PermissionConditionType.TIME_OF_DAY,
                value=str(local_hour),
                operator=ConditionOperator.EQUALS,
            )],
        )
        request = await manager.create_consent_request("carer-1", [permission], CaregiverRole.REMOTE_ASSISTANT)
        await manager.approve_consent_request(request.id, "user-1")

        assert manager.has_permission("carer-1", PermissionType.REMOTE_ASSISTANCE) is True

        clock.advance(hours=1)
        assert manager.has_permission("carer-1", PermissionType.REMOTE_ASSISTANCE) is False

    @pytest.mark.asyncio
    async def test_reconfirmation_required_for_old_grants(self, clock):
        manager = CaregiverConsentManager(
            settings=ConsentSettings(reconfirmation_interval_days=14, default_permission_duration_days=60),
            clock=clock,
        )
        listener = MagicMock()
        manager.add_listener(listener)
        request = await manager.create_consent_request("carer-1", _permissions(), CaregiverRole.DAILY_MONITOR)
        await manager.approve_consent_request(request.id, "user-1")

        assert manager.check_for_reconfirmation() == []

        clock.advance(days=15)
        assert manager.check_for_reconfirmation() == ["carer-1"]
        assert listener.call_args.args[0] == "reconfirmation_required"

    @pytest.mark.asyncio
    async def test_actions_are_audited(self, clock):
        auditor = SecurityAuditor("test-service")
        manager = CaregiverConsentManager(auditor=auditor, clock=clock)

        request = await manager.create_consent_request("carer-1", _permissions(), CaregiverRole.DAILY_MONITOR)
        await manager.approve_consent_request(request.id, "user-1")
        await auditor.flush()

        entries = auditor.sinks["memory"].entries
        assert [e.event_type for e in entries] == [
            AuditEventType.CONSENT_REQUESTED,
            AuditEventType.PERMISSION_GRANTED,
        ]
        assert entries[1].details["approved_by"] == "user-1"
