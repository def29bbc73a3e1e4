"""Audit sink factory.

Provides get_audit_sink() / set_audit_sink() to swap implementations:
- LoggingAuditSink by default
- RecordingAuditSink for tests
"""

from delivery.audit.sink import AuditSink, LoggingAuditSink

_current_sink: AuditSink | None = None


def get_audit_sink() -> AuditSink:
    """Return the current audit sink. Defaults to LoggingAuditSink."""
    global _current_sink
    if _current_sink is None:
        _current_sink = LoggingAuditSink()
    return _current_sink


def set_audit_sink(sink: AuditSink) -> None:
    """Override the active audit sink (useful for tests)."""
    global _current_sink
    _current_sink = sink


def reset_audit_sink() -> None:
    """Reset to the default sink."""
    global _current_sink
    _current_sink = None
