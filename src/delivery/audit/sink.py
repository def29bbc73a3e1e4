"""Audit sinks — where order and provider-configuration events are reported."""

from abc import ABC, abstractmethod

import structlog

logger = structlog.get_logger(__name__)


class AuditSink(ABC):
    """Abstract interface of the audit and automation layer."""

    @abstractmethod
    def record_event(self, event: dict) -> None:
        """Record one state-transition event: ``{"type": ..., "payload": {...}}``."""
        ...


class LoggingAuditSink(AuditSink):
    """Writes each event as a structured log line."""

    def record_event(self, event: dict) -> None:
        logger.info("audit_event", event_type=event["type"], payload=event["payload"])


class RecordingAuditSink(AuditSink):
    """Keeps events in memory, in arrival order."""

    def __init__(self):
        self.events: list[dict] = []

    def record_event(self, event: dict) -> None:
        self.events.append(event)

    def of_type(self, event_type: str) -> list[dict]:
        return [event for event in self.events if event["type"] == event_type]

    def clear(self) -> None:
        self.events.clear()
