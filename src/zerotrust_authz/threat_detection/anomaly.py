"""
Continuous behavioral anomaly detection.

Keeps a rolling 24 hour security event history and a behavioral baseline per
user. Each authorization request is checked against the requesting user's
baseline (time of day, location, device) and then folded into it. While
monitoring is active a background task sweeps the last hour of events for
volume and coordination patterns.
"""

import asyncio
import builtins
import logging
import math
from collections import defaultdict
from collections.abc import Awaitable, Callable
from datetime import datetime, timedelta
from uuid import uuid4

from .. import metrics
from ..exceptions import InvalidContextError
from ..models import (
    AnomalyPattern,
    GeoLocation,
    SecurityContext,
    SecurityEvent,
    SecurityEventType,
    SecuritySeverity,
    UserBehaviorProfile,
    local_hour,
    to_utc,
    utc_now,
)
from ..storage import EventStore, InMemoryEventStore, InMemoryProfileStore, ProfileStore

logger = logging.getLogger(__name__)

EARTH_RADIUS_METERS = 6371e3

EventListener = Callable[[SecurityEvent], Awaitable[None]]


def haversine_distance(a: GeoLocation, b: GeoLocation) -> float:
    """Great-circle distance between two coordinates, in meters."""
    phi1 = math.radians(a.latitude)
    phi2 = math.radians(b.latitude)
    delta_phi = math.radians(b.latitude - a.latitude)
    delta_lambda = math.radians(b.longitude - a.longitude)

    h = (
        math.sin(delta_phi / 2) ** 2
        + math.cos(phi1) * math.cos(phi2) * math.sin(delta_lambda / 2) ** 2
    )
    return EARTH_RADIUS_METERS * 2 * math.atan2(math.sqrt(h), math.sqrt(1 - h))


class AnomalyDetector:
    """
    Behavioral baseline and pattern-based anomaly detection

    Features:
    - Per-user baselines of active hours, devices and locations
    - Rolling event history with 24 hour retention
    - Periodic sweep for rapid failures, volume spikes and coordinated attacks
    - Known-pattern matching for high severity events
    """

    # Baseline thresholds
    TYPICAL_HOUR_SHARE = 0.05
    UNUSUAL_HOUR_SHARE = 0.10
    KNOWN_LOCATION_RADIUS_METERS = 1000.0
    SAME_LOCATION_RADIUS_METERS = 100.0

    # Sweep thresholds
    RAPID_FAILURE_THRESHOLD = 5
    VOLUME_SPIKE_FACTOR = 3
    COORDINATED_IP_EVENT_THRESHOLD = 3
    COORDINATED_IP_COUNT_THRESHOLD = 2

    def __init__(
        self,
        event_store: EventStore | None = None,
        profile_store: ProfileStore | None = None,
        retention: timedelta = timedelta(hours=24),
        analysis_window: timedelta = timedelta(hours=1),
        monitoring_interval: float = 60.0,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.events = event_store or InMemoryEventStore()
        self.profiles = profile_store or InMemoryProfileStore()
        self.retention = retention
        self.analysis_window = analysis_window
        self.monitoring_interval = monitoring_interval
        self._clock = clock

        self.patterns: builtins.dict[str, AnomalyPattern] = {}
        self._listeners: builtins.list[EventListener] = []
        self._monitor_task: asyncio.Task | None = None

        self._initialize_default_patterns()

    @property
    def is_monitoring(self) -> bool:
        return self._monitor_task is not None and not self._monitor_task.done()

    async def start_monitoring(self):
        """Start the periodic sweep; calling it again while running does nothing."""
        if self.is_monitoring:
            return

        self._monitor_task = asyncio.create_task(self._monitoring_loop())
        logger.info("Started anomaly monitoring (interval %.0fs)", self.monitoring_interval)

    async def stop_monitoring(self):
        """Stop the periodic sweep."""
        task, self._monitor_task = self._monitor_task, None
        if task is None:
            return

        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.info("Stopped anomaly monitoring")

    def add_listener(self, listener: EventListener):
        """Subscribe to anomalies synthesized by the periodic sweep."""
        self._listeners.append(listener)

    def add_pattern(self, pattern: AnomalyPattern):
        self.patterns[pattern.id] = pattern

    def record_event(self, event: SecurityEvent):
        """Append an event to history, prune old entries, analyze severe events."""
        if event.context is not None and not isinstance(event.context, SecurityContext):
            raise InvalidContextError(
                f"Event {event.id} carries a malformed security context",
                context={"event_id": event.id},
            )

        cutoff = to_utc(self._clock()) - self.retention
        self.events.append(event, cutoff)

        if event.severity in (SecuritySeverity.HIGH, SecuritySeverity.CRITICAL):
            self._analyze_event(event)

    def get_recent_events(self, window: timedelta | None = None) -> builtins.list[SecurityEvent]:
        """Events newer than now - window (defaults to the retention period)."""
        cutoff = to_utc(self._clock()) - (window if window is not None else self.retention)
        return self.events.since(cutoff)

    def get_user_profile(self, user_id: str) -> UserBehaviorProfile | None:
        return self.profiles.get(user_id)

    def detect_behavior_anomalies(self, user_id: str, context: SecurityContext) -> builtins.list[SecurityEvent]:
        """Check a request against the user's baseline, then learn from it."""
        if context is None or not user_id:
            raise InvalidContextError(
                "Cannot evaluate behavior without a user and security context",
                context={"user_id": user_id},
            )

        with self.profiles.lock(user_id):
            profile = self.profiles.get_or_create(user_id)
            anomalies = [
                anomaly
                for anomaly in (
                    self._detect_time_anomaly(profile, context),
                    self._detect_location_anomaly(profile, context),
                    self._detect_device_anomaly(profile, context),
                )
                if anomaly is not None
            ]
            self._update_user_profile(profile, context)

        for anomaly in anomalies:
            anomaly_type = anomaly.details.get("anomaly_type", "unknown")
            metrics.anomaly_detections.labels(anomaly_type=anomaly_type, severity=anomaly.severity.value).inc()
            logger.info("Behavior anomaly for user %s: %s (%s)", user_id, anomaly_type, anomaly.severity.value)

        return anomalies

    def analyze_recent_activity(self) -> builtins.list[SecurityEvent]:
        """Sweep the analysis window for suspicious patterns.

        Every synthesized anomaly is recorded and returned.
        """
        recent_events = self.get_recent_events(self.analysis_window)

        synthesized = [
            anomaly
            for anomaly in (
                self._detect_rapid_failures(recent_events),
                self._detect_volume_spike(recent_events),
                self._detect_coordinated_attack(recent_events),
            )
            if anomaly is not None
        ]

        for anomaly in synthesized:
            metrics.anomaly_detections.labels(
                anomaly_type=anomaly.details["anomaly_type"], severity=anomaly.severity.value
            ).inc()
            logger.warning("Activity sweep detected %s", anomaly.details["anomaly_type"])
            self.record_event(anomaly)

        return synthesized

    async def _monitoring_loop(self):
        while True:
            await asyncio.sleep(self.monitoring_interval)
            try:
                anomalies = self.analyze_recent_activity()
                for anomaly in anomalies:
                    await self._notify(anomaly)
            except Exception as e:
                logger.error(f"Error during activity sweep: {e}")

    async def _notify(self, event: SecurityEvent):
        for listener in list(self._listeners):
            try:
                await listener(event)
            except Exception as e:
                logger.error(f"Anomaly listener failed for event {event.id}: {e}")

    def _analyze_event(self, event: SecurityEvent):
        for pattern in self.patterns.values():
            if pattern.type in event.type.value:
                self._handle_pattern_match(event, pattern)

    def _handle_pattern_match(self, event: SecurityEvent, pattern: AnomalyPattern):
        if pattern.severity == SecuritySeverity.CRITICAL:
            logger.warning("Critical pattern detected: %s (event %s)", pattern.description, event.id)
        else:
            logger.info("Pattern %s matched event %s", pattern.id, event.id)

    def _detect_time_anomaly(self, profile: UserBehaviorProfile, context: SecurityContext) -> SecurityEvent | None:
        if not profile.typical_active_hours:
            return None

        hour = local_hour(context.timestamp)
        total = profile.total_activity
        share = profile.hourly_activity.get(hour, 0) / total if total else 0.0

        if hour in profile.typical_active_hours or share >= self.UNUSUAL_HOUR_SHARE:
            return None

        return self._anomaly_event(
            "time_anomaly",
            SecuritySeverity.MEDIUM,
            context,
            {
                "anomaly_type": "unusual_time",
                "hour": hour,
                "typical_hours": sorted(profile.typical_active_hours),
            },
        )

    def _detect_location_anomaly(self, profile: UserBehaviorProfile, context: SecurityContext) -> SecurityEvent | None:
        if context.location is None or not profile.known_locations:
            return None

        if any(
            haversine_distance(context.location, known) < self.KNOWN_LOCATION_RADIUS_METERS
            for known in profile.known_locations
        ):
            return None

        return self._anomaly_event(
            "location_anomaly",
            SecuritySeverity.MEDIUM,
            context,
            {
                "anomaly_type": "unusual_location",
                "location": {"latitude": context.location.latitude, "longitude": context.location.longitude},
                "known_locations": len(profile.known_locations),
            },
        )

    def _detect_device_anomaly(self, profile: UserBehaviorProfile, context: SecurityContext) -> SecurityEvent | None:
        if context.device_id in profile.known_devices:
            return None

        return self._anomaly_event(
            "device_anomaly",
            SecuritySeverity.HIGH,
            context,
            {
                "anomaly_type": "unknown_device",
                "device_id": context.device_id,
                "known_devices": len(profile.known_devices),
            },
        )

    def _update_user_profile(self, profile: UserBehaviorProfile, context: SecurityContext):
        hour = local_hour(context.timestamp)
        profile.hourly_activity[hour] = profile.hourly_activity.get(hour, 0) + 1

        if hour not in profile.typical_active_hours:
            if profile.hourly_activity[hour] / profile.total_activity >= self.TYPICAL_HOUR_SHARE:
                profile.typical_active_hours.append(hour)

        if context.device_id not in profile.known_devices:
            profile.known_devices.append(context.device_id)

        if context.location is not None and not any(
            haversine_distance(context.location, known) < self.SAME_LOCATION_RADIUS_METERS
            for known in profile.known_locations
        ):
            profile.known_locations.append(context.location)

        profile.last_updated = self._clock()

    def _detect_rapid_failures(self, events: builtins.list[SecurityEvent]) -> SecurityEvent | None:
        failures = [
            e for e in events
            if e.type in (SecurityEventType.UNAUTHORIZED_ACCESS, SecurityEventType.DATA_BREACH_ATTEMPT)
        ]
        if len(failures) <= self.RAPID_FAILURE_THRESHOLD:
            return None

        return self._sweep_event(
            "rapid_failures",
            SecuritySeverity.HIGH,
            failures[0].context,
            {
                "anomaly_type": "rapid_failures",
                "failure_count": len(failures),
                "time_window": str(self.analysis_window),
            },
        )

    def _detect_volume_spike(self, events: builtins.list[SecurityEvent]) -> SecurityEvent | None:
        current_volume = len(events)
        average_volume = self._average_hourly_events()

        if not events or current_volume <= average_volume * self.VOLUME_SPIKE_FACTOR:
            return None

        return self._sweep_event(
            "volume_spike",
            SecuritySeverity.MEDIUM,
            events[0].context,
            {
                "anomaly_type": "volume_spike",
                "current_volume": current_volume,
                "average_volume": average_volume,
            },
        )

    def _detect_coordinated_attack(self, events: builtins.list[SecurityEvent]) -> SecurityEvent | None:
        by_ip: dict[str, int] = defaultdict(int)
        for event in events:
            ip = event.context.ip_address if event.context else None
            if ip:
                by_ip[ip] += 1

        suspicious_ips = sorted(ip for ip, count in by_ip.items() if count > self.COORDINATED_IP_EVENT_THRESHOLD)
        if len(suspicious_ips) <= self.COORDINATED_IP_COUNT_THRESHOLD:
            return None

        return self._sweep_event(
            "coordinated_attack",
            SecuritySeverity.CRITICAL,
            events[0].context,
            {
                "anomaly_type": "coordinated_attack",
                "suspicious_ips": suspicious_ips,
                "event_count": len(events),
            },
        )

    def _average_hourly_events(self) -> float:
        # Rough estimate: assume ten events per hour of history, capped at the retention period
        total = len(self.events)
        hours_of_data = min(self.retention.total_seconds() / 3600, total / 10)
        return total / hours_of_data if hours_of_data > 0 else 0.0

    def _anomaly_event(self, prefix: str, severity: SecuritySeverity, context: SecurityContext, details: dict) -> SecurityEvent:
        return SecurityEvent(
            id=f"{prefix}_{uuid4().hex[:12]}",
            type=SecurityEventType.ANOMALOUS_PATTERN,
            severity=severity,
            timestamp=context.timestamp,
            context=context,
            details=details,
        )

    def _sweep_event(self, prefix: str, severity: SecuritySeverity, context: SecurityContext | None, details: dict) -> SecurityEvent:
        return SecurityEvent(
            id=f"{prefix}_{uuid4().hex[:12]}",
            type=SecurityEventType.SUSPICIOUS_BEHAVIOR,
            severity=severity,
            timestamp=self._clock(),
            context=context,
            details=details,
        )

    def _initialize_default_patterns(self):
        self.add_pattern(AnomalyPattern(
            id="rapid_login_failures",
            type=SecurityEventType.UNAUTHORIZED_ACCESS.value,
            description="Multiple failed login attempts in short time",
            threshold=5,
            time_window=300,
            severity=SecuritySeverity.HIGH,
        ))
        self.add_pattern(AnomalyPattern(
            id="unusual_data_access",
            type=SecurityEventType.DATA_BREACH_ATTEMPT.value,
            description="Unusual patterns in data access",
            threshold=10,
            time_window=3600,
            severity=SecuritySeverity.MEDIUM,
        ))
