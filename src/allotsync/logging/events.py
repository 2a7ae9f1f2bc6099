"""Unified event schema and module-level emit helpers.

All timestamps use UTC ISO-8601 with ``Z`` suffix.  The ``emit()``
family never raises: a failing sink is reported on stderr and the
event is dropped.
"""

from __future__ import annotations

import re
import sys
import time
import traceback
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, Any
from urllib.parse import urlparse, urlunparse

from pydantic import BaseModel, Field

if TYPE_CHECKING:
    from allotsync.logging.sink import EventSink


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class EventLevel(str, Enum):
    info = "info"
    warning = "warning"
    error = "error"


class EventType(str, Enum):
    # Local update lifecycle
    update_received = "update_received"
    update_rejected = "update_rejected"
    update_saved = "update_saved"
    update_failed = "update_failed"

    # Write-back lifecycle
    writeback_planned = "writeback_planned"
    writeback_column_missing = "writeback_column_missing"
    writeback_skipped = "writeback_skipped"
    writeback_succeeded = "writeback_succeeded"
    writeback_failed = "writeback_failed"


# ---------------------------------------------------------------------------
# Error codes
# ---------------------------------------------------------------------------

UNAUTHORIZED = "unauthorized"
MISSING_ID = "missing_id"
INVALID_BODY = "invalid_body"
ALLOTMENT_NOT_FOUND = "allotment_not_found"
PERSISTENCE_FAILED = "persistence_failed"
SHEET_METADATA_MISSING = "sheet_metadata_missing"
COLUMN_INDEX_INVALID = "column_index_invalid"
NO_VALID_COLUMNS = "no_valid_columns"
SHEETS_WRITE_FAILED = "sheets_write_failed"


# ---------------------------------------------------------------------------
# Secret redaction
# ---------------------------------------------------------------------------

_SENSITIVE_KEY_RE = re.compile(
    r"(password|secret|token|api_key|authorization|cookie|session|private_key|credentials)",
    re.IGNORECASE,
)

_MAX_VALUE_LEN = 256


def redact_context(context: dict[str, Any]) -> dict[str, Any]:
    """Return a copy of *context* with sensitive values redacted.

    Rules:
    - Keys matching sensitive patterns have their values replaced with
      ``"[REDACTED]"``.
    - String values that look like URLs have query params stripped.
    - String values longer than 256 chars are truncated.
    """
    return _redact_dict(context)


def _redact_dict(d: dict[str, Any]) -> dict[str, Any]:
    out: dict[str, Any] = {}
    for k, v in d.items():
        if _SENSITIVE_KEY_RE.search(k):
            out[k] = "[REDACTED]"
        elif isinstance(v, dict):
            out[k] = _redact_dict(v)
        elif isinstance(v, list):
            out[k] = [_redact_value(item) for item in v]
        else:
            out[k] = _redact_value(v)
    return out


def _redact_value(v: Any) -> Any:
    if isinstance(v, dict):
        return _redact_dict(v)
    if isinstance(v, str):
        if "://" in v:
            try:
                parsed = urlparse(v)
            except ValueError:
                parsed = None
            if parsed is not None and parsed.scheme in ("http", "https"):
                # Strip query, fragment, and userinfo
                clean = urlunparse((
                    parsed.scheme,
                    parsed.hostname or "",
                    parsed.path,
                    "",
                    "",
                    "",
                ))
                return clean + "?[REDACTED]" if parsed.query else clean
        if len(v) > _MAX_VALUE_LEN:
            return v[:_MAX_VALUE_LEN] + "...[truncated]"
    return v


# ---------------------------------------------------------------------------
# Attribution invariants
# ---------------------------------------------------------------------------

_ALLOTMENT_REQUIRED = {"allotment_id"}

_EVENT_REQUIRED_KEYS: dict[str, set[str]] = {
    EventType.update_received.value: set(),  # id may be missing
    EventType.update_rejected.value: set(),
    EventType.update_saved.value: _ALLOTMENT_REQUIRED,
    EventType.update_failed.value: _ALLOTMENT_REQUIRED,
    EventType.writeback_planned.value: _ALLOTMENT_REQUIRED,
    EventType.writeback_column_missing.value: _ALLOTMENT_REQUIRED,
    EventType.writeback_skipped.value: _ALLOTMENT_REQUIRED,
    EventType.writeback_succeeded.value: _ALLOTMENT_REQUIRED,
    EventType.writeback_failed.value: _ALLOTMENT_REQUIRED,
}


def _validate_attribution(event: AllotSyncEvent) -> AllotSyncEvent:
    """Check required context keys; downgrade to warning if missing."""
    raw_type = event.event_type.value if isinstance(event.event_type, EventType) else event.event_type
    required = _EVENT_REQUIRED_KEYS.get(raw_type, set())
    if not required:
        return event
    missing = required - set(event.context.keys())
    if missing:
        ctx = dict(event.context)
        ctx["_missing_attribution"] = sorted(missing)
        return event.model_copy(update={"level": EventLevel.warning, "context": ctx})
    return event


def make_allotment_event(
    event_type: EventType,
    level: EventLevel,
    message: str,
    *,
    allotment_id: str | None,
    teacher_email: str | None = None,
    sheet_title: str | None = None,
    sheet_row_id: int | None = None,
    error_code: str | None = None,
    extra: dict[str, Any] | None = None,
) -> AllotSyncEvent:
    """Build an event with guaranteed allotment attribution context."""
    ctx: dict[str, Any] = {}
    if allotment_id is not None:
        ctx["allotment_id"] = allotment_id
    if teacher_email is not None:
        ctx["teacher_email"] = teacher_email
    if sheet_title is not None:
        ctx["sheet_title"] = sheet_title
    if sheet_row_id is not None:
        ctx["sheet_row_id"] = sheet_row_id
    if extra:
        ctx.update(extra)
    return AllotSyncEvent(
        level=level,
        event_type=event_type,
        message=message,
        context=ctx,
        error_code=error_code,
    )


# ---------------------------------------------------------------------------
# Event model
# ---------------------------------------------------------------------------


def _utc_now() -> str:
    """Return current UTC timestamp in ISO-8601 with Z suffix."""
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%fZ")


class AllotSyncEvent(BaseModel):
    """A single structured log event."""

    schema_version: int = 1
    ts: str = Field(default_factory=_utc_now)
    level: EventLevel
    event_type: EventType
    context: dict[str, Any] = Field(default_factory=dict)
    message: str = ""
    error_code: str | None = None


# ---------------------------------------------------------------------------
# Module-level sink reference
# ---------------------------------------------------------------------------

# Set by ``set_log_dir``; until then ``emit()`` discards events.
_sink: EventSink | None = None


def set_log_dir(
    log_dir: str | Path | None,
    *,
    fsync: bool = False,
    tail_bytes: int | None = None,
) -> None:
    """Configure the module-level event sink.

    Call early in a CLI command or at server startup.  Passing ``None``
    detaches the sink.
    """
    global _sink
    from allotsync.logging.sink import EventSink

    if log_dir is None:
        _sink = None
        return
    _sink = EventSink(Path(log_dir), fsync=fsync, tail_bytes=tail_bytes)


def get_sink() -> EventSink | None:
    """Return the module-level sink, or None."""
    return _sink


# ---------------------------------------------------------------------------
# Safe emit helpers
# ---------------------------------------------------------------------------

_last_stderr_ts: float = 0.0
_STDERR_INTERVAL_SECS = 60.0


def _report_logging_failure() -> None:
    """Print the current traceback to stderr, at most once a minute."""
    global _last_stderr_ts
    now = time.monotonic()
    if now - _last_stderr_ts < _STDERR_INTERVAL_SECS:
        return
    _last_stderr_ts = now
    try:
        print(f"[allotsync] logging failed: {traceback.format_exc()}", file=sys.stderr)
    except OSError:
        pass


def emit(event: AllotSyncEvent) -> None:
    """Write an event to the global log and, if attributed, the allotment log.

    **Never raises.**  Context is redacted and attribution checked before
    the write; a failing sink is reported on stderr.
    """
    sink = _sink
    if sink is None:
        return
    try:
        event = event.model_copy(update={"context": redact_context(event.context)})
        event = _validate_attribution(event)
        sink.write(event, allotment_id=event.context.get("allotment_id"))
    except Exception:
        _report_logging_failure()


def _emit_at(
    level: EventLevel,
    event_type: EventType,
    message: str,
    context: dict[str, Any] | None,
    error_code: str | None,
) -> None:
    emit(AllotSyncEvent(
        level=level,
        event_type=event_type,
        message=message,
        context=context or {},
        error_code=error_code,
    ))


def emit_info(event_type: EventType, message: str, context: dict[str, Any] | None = None) -> None:
    _emit_at(EventLevel.info, event_type, message, context, None)


def emit_warning(
    event_type: EventType,
    message: str,
    context: dict[str, Any] | None = None,
    *,
    error_code: str | None = None,
) -> None:
    _emit_at(EventLevel.warning, event_type, message, context, error_code)


def emit_error(
    event_type: EventType,
    message: str,
    context: dict[str, Any] | None = None,
    *,
    error_code: str | None = None,
) -> None:
    _emit_at(EventLevel.error, event_type, message, context, error_code)
