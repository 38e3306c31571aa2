"""
Threat Detection and Response for the zero-trust engine

Provides:
- Behavioral baselining and per-request anomaly detection
- Periodic sweeps for rapid failures, volume spikes and coordinated attacks
- Rule-driven automated remediation with confirmation for manual actions
"""

from .actions import (
    ActionExecutor,
    DefaultActionExecutor,
    DeviceController,
    LoggingDeviceController,
    LoggingNotificationService,
    LoggingPluginManager,
    LoggingSessionManager,
    NotificationService,
    PluginManager,
    SessionManager,
    generate_alert_message,
)
from .anomaly import AnomalyDetector, haversine_distance
from .response import ThreatResponseManager, default_response_rules

__all__ = [
    "ActionExecutor",
    "AnomalyDetector",
    "DefaultActionExecutor",
    "DeviceController",
    "LoggingDeviceController",
    "LoggingNotificationService",
    "LoggingPluginManager",
    "LoggingSessionManager",
    "NotificationService",
    "PluginManager",
    "SessionManager",
    "ThreatResponseManager",
    "default_response_rules",
    "generate_alert_message",
    "haversine_distance",
]
