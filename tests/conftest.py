"""
Global pytest configuration and fixtures for the zero-trust engine tests.

Provides deterministic clocks and ready-made security contexts so that time
and behavior dependent logic can be tested without sleeping.
"""

import logging
import tempfile
import uuid
from collections.abc import Generator
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from zerotrust_authz.models import (
    AccessRequest,
    GeoLocation,
    NetworkInfo,
    NetworkType,
    SecurityContext,
)


class FixedClock:
    """Manually advanced clock usable wherever a ``clock`` callable is accepted."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


@pytest.fixture
def clock() -> FixedClock:
    """Clock fixed at 2024-03-12 14:00 UTC."""
    return FixedClock(datetime(2024, 3, 12, 14, 0, tzinfo=timezone.utc))


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Provide a temporary directory for tests."""
    with tempfile.TemporaryDirectory() as tmp_dir:
        yield Path(tmp_dir)


@pytest.fixture
def test_user_id() -> str:
    """Generate a unique test user ID."""
    return f"user-{uuid.uuid4().hex[:8]}"


@pytest.fixture
def secure_network() -> NetworkInfo:
    return NetworkInfo(type=NetworkType.WIFI, is_secure=True, ip_address="10.0.0.5", ssid="home")


@pytest.fixture
def home_location() -> GeoLocation:
    return GeoLocation(latitude=52.5200, longitude=13.4050)


@pytest.fixture
def security_context(test_user_id, secure_network, home_location) -> SecurityContext:
    """Context at 14:00 local time from a known device on a secure network."""
    return SecurityContext(
        user_id=test_user_id,
        session_id="session-1",
        device_id="device-1",
        timestamp=datetime(2024, 3, 12, 14, 0),
        location=home_location,
        network_info=secure_network,
    )


@pytest.fixture
def make_request(security_context):
    """Factory for access requests sharing the default security context."""

    def factory(resource: str = "user_data", action: str = "read", context=security_context, request_id=None):
        return AccessRequest(
            id=request_id or f"req-{uuid.uuid4().hex[:8]}",
            resource=resource,
            action=action,
            context=context,
        )

    return factory


@pytest.fixture(autouse=True)
def _restore_package_logger_level():
    """Undo package logger level changes made by framework initialization."""
    package_logger = logging.getLogger("zerotrust_authz")
    previous = package_logger.level
    yield
    package_logger.setLevel(previous)
