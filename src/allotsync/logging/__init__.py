"""Structured event logging for allotsync.

Provides a unified event schema, filesystem NDJSON sink, and safe
emit helpers that never raise uncaught exceptions.
"""

from allotsync.logging.events import (
    AllotSyncEvent,
    EventLevel,
    EventType,
    emit,
    emit_error,
    emit_info,
    emit_warning,
    make_allotment_event,
    redact_context,
    set_log_dir,
)
from allotsync.logging.sink import EventSink

__all__ = [
    "AllotSyncEvent",
    "EventLevel",
    "EventSink",
    "EventType",
    "emit",
    "emit_error",
    "emit_info",
    "emit_warning",
    "make_allotment_event",
    "redact_context",
    "set_log_dir",
]
