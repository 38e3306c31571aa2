"""
Unit test specific fixtures and utilities.

Collaborators with side effects are replaced by mocks so each component can be
tested in isolation.
"""

from unittest.mock import AsyncMock, MagicMock

import pytest

from zerotrust_authz.threat_detection import (
    DefaultActionExecutor,
    DeviceController,
    NotificationService,
    PluginManager,
    SessionManager,
)


@pytest.fixture
def mock_notification_service():
    service = MagicMock(spec=NotificationService)
    service.send_alert = AsyncMock(return_value=True)
    return service


@pytest.fixture
def mock_session_manager():
    manager = MagicMock(spec=SessionManager)
    manager.invalidate_sessions = AsyncMock(return_value=1)
    return manager


@pytest.fixture
def mock_plugin_manager():
    manager = MagicMock(spec=PluginManager)
    manager.disable_plugin = AsyncMock(return_value=True)
    return manager


@pytest.fixture
def mock_device_controller():
    controller = MagicMock(spec=DeviceController)
    controller.quarantine = AsyncMock(return_value=True)
    return controller


@pytest.fixture
def permission_revoker():
    return MagicMock(return_value=2)


@pytest.fixture
def action_executor(
    mock_notification_service,
    mock_session_manager,
    mock_plugin_manager,
    mock_device_controller,
    permission_revoker,
):
    """Default executor wired to mocked collaborators."""
    return DefaultActionExecutor(
        notification_service=mock_notification_service,
        session_manager=mock_session_manager,
        plugin_manager=mock_plugin_manager,
        device_controller=mock_device_controller,
        permission_revoker=permission_revoker,
    )
