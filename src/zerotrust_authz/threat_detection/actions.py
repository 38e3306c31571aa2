"""
Remediation action executors and the external collaborators they drive.

The executor turns a ThreatResponse into side effects: blocklisting, device
quarantine, user alerts, permission revocation, plugin unload and session
invalidation. Collaborators are injected; each has a logging default so the
engine runs standalone.
"""

import builtins
import logging
import threading
from abc import ABC, abstractmethod
from collections.abc import Callable

from ..exceptions import ResponseExecutionError
from ..models import ResponseRule, SecurityEvent, SecurityEventType, SecuritySeverity, ThreatAction

logger = logging.getLogger(__name__)


class NotificationService(ABC):
    """Best-effort alert delivery (push, SMS, email, in-app)."""

    @abstractmethod
    async def send_alert(self, user_id: str | None, message: str, severity: SecuritySeverity) -> bool:
        pass


class SessionManager(ABC):
    @abstractmethod
    async def invalidate_sessions(self, user_id: str) -> int:
        """Invalidate every session of a user; returns how many were closed."""


class PluginManager(ABC):
    @abstractmethod
    async def disable_plugin(self, plugin_id: str) -> bool:
        pass


class DeviceController(ABC):
    @abstractmethod
    async def quarantine(self, device_id: str) -> bool:
        pass


class LoggingNotificationService(NotificationService):
    async def send_alert(self, user_id: str | None, message: str, severity: SecuritySeverity) -> bool:
        logger.warning("User alert [%s] for %s: %s", severity.value, user_id, message)
        return True


class LoggingSessionManager(SessionManager):
    async def invalidate_sessions(self, user_id: str) -> int:
        logger.warning("Would invalidate all sessions for user %s", user_id)
        return 0


class LoggingPluginManager(PluginManager):
    async def disable_plugin(self, plugin_id: str) -> bool:
        logger.warning("Would disable plugin %s", plugin_id)
        return True


class LoggingDeviceController(DeviceController):
    async def quarantine(self, device_id: str) -> bool:
        logger.warning("Would quarantine device %s", device_id)
        return True


class ActionExecutor(ABC):
    """Carries out the side effects of a threat response."""

    @abstractmethod
    async def execute(self, action: ThreatAction, event: SecurityEvent, rule: ResponseRule) -> None:
        """Raise on failure; the caller records the failure on the response."""


def generate_alert_message(event: SecurityEvent) -> str:
    if event.type == SecurityEventType.UNAUTHORIZED_ACCESS:
        ip = event.context.ip_address if event.context else None
        return f"Unauthorized access attempt detected from {ip or 'an unknown address'}"
    if event.type == SecurityEventType.SUSPICIOUS_BEHAVIOR:
        return "Suspicious activity detected on your account"
    if event.type == SecurityEventType.DATA_BREACH_ATTEMPT:
        return "Potential data breach attempt blocked"
    if event.type == SecurityEventType.MALICIOUS_PLUGIN:
        return "Malicious plugin detected and disabled"
    if event.type == SecurityEventType.CONSENT_VIOLATION:
        return "App attempted to access data without proper consent"
    if event.type == SecurityEventType.ANOMALOUS_PATTERN:
        return "Unusual activity pattern detected on your account"
    return f"Security event detected: {event.type.value}"


class DefaultActionExecutor(ActionExecutor):
    """Dispatches each action to its collaborator."""

    def __init__(
        self,
        notification_service: NotificationService | None = None,
        session_manager: SessionManager | None = None,
        plugin_manager: PluginManager | None = None,
        device_controller: DeviceController | None = None,
        permission_revoker: Callable[[str], int] | None = None,
    ):
        self.notification_service = notification_service or LoggingNotificationService()
        self.session_manager = session_manager or LoggingSessionManager()
        self.plugin_manager = plugin_manager or LoggingPluginManager()
        self.device_controller = device_controller or LoggingDeviceController()
        self.permission_revoker = permission_revoker

        self.blocked_ips: builtins.set[str] = set()
        self.blocked_sessions: builtins.set[str] = set()
        self.quarantined_devices: builtins.set[str] = set()
        self._lock = threading.Lock()

        self._handlers = {
            ThreatAction.BLOCK: self._block,
            ThreatAction.QUARANTINE: self._quarantine,
            ThreatAction.ALERT_USER: self._alert_user,
            ThreatAction.REVOKE_PERMISSIONS: self._revoke_permissions,
            ThreatAction.DISABLE_PLUGIN: self._disable_plugin,
            ThreatAction.FORCE_LOGOUT: self._force_logout,
        }

    def is_blocked(self, ip_address: str | None = None, session_id: str | None = None) -> bool:
        with self._lock:
            return bool(
                (ip_address and ip_address in self.blocked_ips)
                or (session_id and session_id in self.blocked_sessions)
            )

    async def execute(self, action: ThreatAction, event: SecurityEvent, rule: ResponseRule) -> None:
        handler = self._handlers.get(action)
        if handler is None:
            raise ResponseExecutionError(f"No executor for action {action}", action=str(action), event_id=event.id)
        await handler(event)

    async def _block(self, event: SecurityEvent):
        logger.info("Blocking access for event: %s", event.id)
        if event.context is None:
            return
        with self._lock:
            if event.context.ip_address:
                self.blocked_ips.add(event.context.ip_address)
            if event.context.session_id:
                self.blocked_sessions.add(event.context.session_id)

    async def _quarantine(self, event: SecurityEvent):
        logger.info("Quarantining activity for event: %s", event.id)
        device_id = event.context.device_id if event.context else None
        if not device_id:
            raise ResponseExecutionError("No device to quarantine", action="quarantine", event_id=event.id)
        await self.device_controller.quarantine(device_id)
        with self._lock:
            self.quarantined_devices.add(device_id)

    async def _alert_user(self, event: SecurityEvent):
        logger.info("Sending alert for event: %s", event.id)
        await self.notification_service.send_alert(event.user_id, generate_alert_message(event), event.severity)

    async def _revoke_permissions(self, event: SecurityEvent):
        logger.info("Revoking permissions for event: %s", event.id)
        if not event.user_id:
            raise ResponseExecutionError("No user to revoke permissions for", action="revoke_permissions", event_id=event.id)
        if self.permission_revoker is not None:
            self.permission_revoker(event.user_id)

    async def _disable_plugin(self, event: SecurityEvent):
        logger.info("Disabling plugin for event: %s", event.id)
        plugin_id = event.details.get("plugin_id")
        if not plugin_id:
            raise ResponseExecutionError("Event does not identify a plugin", action="disable_plugin", event_id=event.id)
        await self.plugin_manager.disable_plugin(plugin_id)

    async def _force_logout(self, event: SecurityEvent):
        logger.info("Forcing logout for event: %s", event.id)
        if not event.user_id:
            raise ResponseExecutionError("No user to log out", action="force_logout", event_id=event.id)
        await self.session_manager.invalidate_sessions(event.user_id)
