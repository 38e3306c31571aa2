"""
Security Audit Logging System

Append-only audit trail for authorization decisions, consent lifecycle events
and threat responses. Events are queued and written to sinks by a background
worker so a slow or failing sink never holds up an authorization decision.
"""

import asyncio
import json
import logging
import threading
from collections.abc import Callable
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any

from ..models import SecurityEvent, SecuritySeverity

logger = logging.getLogger(__name__)


class AuditEventType(Enum):
    """Types of entries in the audit trail."""
    SECURITY_EVENT = "security_event"
    CONSENT_REQUESTED = "consent_requested"
    CONSENT_GRANTED = "consent_granted"
    CONSENT_DENIED = "consent_denied"
    CONSENT_REVOKED = "consent_revoked"
    PERMISSION_GRANTED = "permission_granted"
    PERMISSION_REVOKED = "permission_revoked"
    POLICY_REGISTERED = "policy_registered"
    ADMIN_ACTION = "admin_action"


class AuditLevel(Enum):
    """Audit logging levels."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


_SEVERITY_TO_LEVEL = {
    SecuritySeverity.LOW: AuditLevel.INFO,
    SecuritySeverity.MEDIUM: AuditLevel.WARNING,
    SecuritySeverity.HIGH: AuditLevel.ERROR,
    SecuritySeverity.CRITICAL: AuditLevel.CRITICAL,
}


@dataclass
class SecurityAuditEvent:
    """Represents a security audit entry."""

    event_type: AuditEventType
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    principal_id: str | None = None
    resource: str | None = None
    action: str | None = None
    result: str | None = None
    details: dict[str, Any] = field(default_factory=dict)
    session_id: str | None = None
    ip_address: str | None = None
    service_name: str | None = None
    level: AuditLevel = AuditLevel.INFO

    @classmethod
    def from_security_event(cls, event: SecurityEvent, service_name: str | None = None) -> "SecurityAuditEvent":
        context = event.context
        return cls(
            event_type=AuditEventType.SECURITY_EVENT,
            timestamp=event.timestamp,
            principal_id=context.user_id if context else None,
            resource=event.details.get("resource"),
            action=event.details.get("action"),
            result=event.type.value,
            details={"event_id": event.id, "severity": event.severity.value, "resolved": event.resolved, **event.details},
            session_id=context.session_id if context else None,
            ip_address=context.ip_address if context else None,
            service_name=service_name,
            level=_SEVERITY_TO_LEVEL[event.severity],
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert event to dictionary for serialization."""
        data = asdict(self)
        data['event_type'] = self.event_type.value
        data['level'] = self.level.value
        data['timestamp'] = self.timestamp.isoformat()
        return data

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), default=str)


class AuditSink:
    """Base class for audit log sinks."""

    def __init__(self, name: str):
        self.name = name
        self.is_active = True

    async def write_event(self, event: SecurityAuditEvent) -> bool:
        """Write audit event to sink; return False on failure."""
        raise NotImplementedError

    async def close(self):
        """Close sink and cleanup resources."""
        pass


class MemoryAuditSink(AuditSink):
    """Keeps entries in memory; useful for tests and dashboards."""

    def __init__(self, name: str = "memory", max_entries: int = 10000):
        super().__init__(name)
        self.max_entries = max_entries
        self.entries: list[SecurityAuditEvent] = []

    async def write_event(self, event: SecurityAuditEvent) -> bool:
        self.entries.append(event)
        if len(self.entries) > self.max_entries:
            del self.entries[: len(self.entries) - self.max_entries]
        return True


class LoggingAuditSink(AuditSink):
    """Writes entries as JSON through the standard logger."""

    def __init__(self, name: str = "log", logger_name: str = "zerotrust_authz.audit.trail"):
        super().__init__(name)
        self._logger = logging.getLogger(logger_name)

    async def write_event(self, event: SecurityAuditEvent) -> bool:
        self._logger.info(event.to_json())
        return True


class FileAuditSink(AuditSink):
    """File-based JSON-lines audit sink with size-based rotation."""

    def __init__(self, name: str, file_path: str, rotate_size_mb: int = 100):
        super().__init__(name)
        self.file_path = Path(file_path)
        self.rotate_size_mb = rotate_size_mb
        self.lock = threading.Lock()

        self.file_path.parent.mkdir(parents=True, exist_ok=True)

    async def write_event(self, event: SecurityAuditEvent) -> bool:
        try:
            with self.lock:
                if self._should_rotate():
                    self._rotate_file()

                with open(self.file_path, 'a', encoding='utf-8') as f:
                    f.write(event.to_json() + '\n')

                return True

        except OSError as e:
            logger.error("Failed to write audit event to file %s: %s", self.file_path, e)
            return False

    def _should_rotate(self) -> bool:
        if not self.file_path.exists():
            return False

        size_mb = self.file_path.stat().st_size / (1024 * 1024)
        return size_mb > self.rotate_size_mb

    def _rotate_file(self):
        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        rotated_path = self.file_path.with_suffix(f".{timestamp}.log")
        self.file_path.rename(rotated_path)


class SecurityAuditor:
    """Queues audit entries and fans them out to sinks."""

    def __init__(self, service_name: str, max_queue_size: int = 10000, sinks: list[AuditSink] | None = None):
        self.service_name = service_name
        self.sinks: dict[str, AuditSink] = {}
        self.event_queue: asyncio.Queue[SecurityAuditEvent] = asyncio.Queue(maxsize=max_queue_size)
        self.is_running = False
        self.worker_task: asyncio.Task | None = None
        self.event_filters: list[Callable[[SecurityAuditEvent], bool]] = []

        # Statistics
        self.events_processed = 0
        self.events_failed = 0
        self.events_filtered = 0
        self.events_dropped = 0

        for sink in sinks or [MemoryAuditSink()]:
            self.add_sink(sink)

    def add_sink(self, sink: AuditSink):
        self.sinks[sink.name] = sink
        logger.info("Added audit sink: %s", sink.name)

    def remove_sink(self, sink_name: str) -> bool:
        if sink_name in self.sinks:
            del self.sinks[sink_name]
            logger.info("Removed audit sink: %s", sink_name)
            return True
        return False

    def add_event_filter(self, filter_func: Callable[[SecurityAuditEvent], bool]):
        """Keep only entries for which every filter returns True."""
        self.event_filters.append(filter_func)

    async def start(self):
        """Start audit processing."""
        if self.is_running:
            return

        self.is_running = True
        self.worker_task = asyncio.create_task(self._process_events())
        logger.info("Started security auditor")

    async def stop(self):
        """Drain queued entries, stop the worker and close sinks."""
        if not self.is_running:
            return

        await self.flush()
        self.is_running = False

        if self.worker_task:
            self.worker_task.cancel()
            try:
                await self.worker_task
            except asyncio.CancelledError:
                pass
            self.worker_task = None

        for sink in self.sinks.values():
            await sink.close()

        logger.info("Stopped security auditor")

    async def flush(self):
        """Wait until every queued entry has been written."""
        if self.is_running:
            await self.event_queue.join()
        else:
            while not self.event_queue.empty():
                await self._write(self.event_queue.get_nowait())
                self.event_queue.task_done()

    def log(self, event: SecurityAuditEvent) -> bool:
        """Queue an entry without blocking; returns whether it was accepted."""
        try:
            self.event_queue.put_nowait(event)
            return True
        except asyncio.QueueFull:
            self.events_dropped += 1
            logger.error("Audit queue full, dropped %s entry", event.event_type.value)
            return False

    def audit(
        self,
        event_type: AuditEventType,
        principal_id: str | None = None,
        resource: str | None = None,
        action: str | None = None,
        result: str | None = None,
        level: AuditLevel = AuditLevel.INFO,
        **details
    ) -> bool:
        """Build and queue an audit entry."""
        return self.log(SecurityAuditEvent(
            event_type=event_type,
            principal_id=principal_id,
            resource=resource,
            action=action,
            result=result,
            level=level,
            service_name=self.service_name,
            details=details,
        ))

    def audit_security_event(self, event: SecurityEvent) -> bool:
        return self.log(SecurityAuditEvent.from_security_event(event, self.service_name))

    async def _process_events(self):
        while True:
            event = await self.event_queue.get()
            try:
                await self._write(event)
            except Exception as e:
                logger.error("Error processing audit event: %s", e)
            finally:
                self.event_queue.task_done()

    async def _write(self, event: SecurityAuditEvent):
        if self._should_filter_event(event):
            self.events_filtered += 1
            return

        success = True
        for sink in self.sinks.values():
            if sink.is_active:
                try:
                    if not await sink.write_event(event):
                        success = False
                except Exception as e:
                    logger.error("Sink %s failed to write event: %s", sink.name, e)
                    success = False

        if success:
            self.events_processed += 1
        else:
            self.events_failed += 1

    def _should_filter_event(self, event: SecurityAuditEvent) -> bool:
        for filter_func in self.event_filters:
            try:
                if not filter_func(event):
                    return True
            except Exception as e:
                logger.error("Event filter error: %s", e)

        return False

    def get_statistics(self) -> dict[str, Any]:
        return {
            "service_name": self.service_name,
            "is_running": self.is_running,
            "events_processed": self.events_processed,
            "events_failed": self.events_failed,
            "events_filtered": self.events_filtered,
            "events_dropped": self.events_dropped,
            "queue_size": self.event_queue.qsize(),
            "active_sinks": len([s for s in self.sinks.values() if s.is_active]),
            "total_sinks": len(self.sinks)
        }


__all__ = [
    "AuditEventType",
    "AuditLevel",
    "AuditSink",
    "FileAuditSink",
    "LoggingAuditSink",
    "MemoryAuditSink",
    "SecurityAuditEvent",
    "SecurityAuditor",
]
