"""Tests for the allotsync structured event logging system."""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from allotsync.logging.events import (
    AllotSyncEvent,
    EventLevel,
    EventType,
    emit,
    emit_error,
    get_sink,
    make_allotment_event,
    redact_context,
    set_log_dir,
)
from allotsync.logging.sink import EventSink
from allotsync.models import FieldChanges
from allotsync.reconcile import AllotmentService
from allotsync.store import InMemoryAllotmentStore
from conftest import FIXED_NOW, FakeSheetsWriter, make_allotment


@pytest.fixture
def sink(tmp_path: Path) -> EventSink:
    return EventSink(tmp_path)


def _read(path: Path) -> list[dict]:
    return [json.loads(line) for line in path.read_text().splitlines() if line.strip()]


# ---------------------------------------------------------------------------
# A) Event schema
# ---------------------------------------------------------------------------


class TestAllotSyncEvent:
    def test_event_defaults(self) -> None:
        evt = AllotSyncEvent(
            level=EventLevel.info,
            event_type=EventType.update_saved,
            message="hello",
        )
        assert evt.schema_version == 1
        assert evt.ts.endswith("Z")
        assert evt.level == "info"
        assert evt.context == {}
        assert evt.error_code is None

    def test_make_allotment_event_context(self) -> None:
        evt = make_allotment_event(
            EventType.writeback_failed,
            EventLevel.error,
            "boom",
            allotment_id="a-17",
            sheet_row_id=12,
            error_code="sheets_write_failed",
        )
        assert evt.context == {"allotment_id": "a-17", "sheet_row_id": 12}
        assert evt.error_code == "sheets_write_failed"


# ---------------------------------------------------------------------------
# B) Filesystem NDJSON sink
# ---------------------------------------------------------------------------


class TestEventSink:
    def test_write_global_and_allotment_logs(self, sink, tmp_path) -> None:
        evt = make_allotment_event(
            EventType.update_saved, EventLevel.info, "saved", allotment_id="a-17"
        )
        sink.write(evt, allotment_id="a-17")

        assert len(_read(tmp_path / "logs" / "events.ndjson")) == 1
        assert len(_read(tmp_path / "logs" / "allotments" / "a-17.ndjson")) == 1

    def test_unsafe_allotment_id_not_used_as_path(self, sink, tmp_path) -> None:
        evt = make_allotment_event(
            EventType.update_saved, EventLevel.info, "saved", allotment_id="../escape"
        )
        sink.write(evt, allotment_id="../escape")
        assert list((tmp_path / "logs" / "allotments").iterdir()) == []

    def test_json_sort_keys(self, sink, tmp_path) -> None:
        sink.write(AllotSyncEvent(level=EventLevel.info, event_type=EventType.update_received))
        line = (tmp_path / "logs" / "events.ndjson").read_text().strip()
        keys = list(json.loads(line).keys())
        assert keys == sorted(keys)

    def test_read_global_most_recent_first_with_filters(self, sink) -> None:
        for i in range(3):
            sink.write(AllotSyncEvent(
                level=EventLevel.info, event_type=EventType.update_saved, message=f"save {i}",
                context={"allotment_id": f"a-{i}"},
            ), allotment_id=f"a-{i}")
        sink.write(AllotSyncEvent(
            level=EventLevel.error, event_type=EventType.writeback_failed, message="failed",
            context={"allotment_id": "a-1"},
        ), allotment_id="a-1")

        events = sink.read_global()
        assert [e["message"] for e in events] == ["failed", "save 2", "save 1", "save 0"]
        assert [e["message"] for e in sink.read_global(level="error")] == ["failed"]
        assert len(sink.read_global(event_type="update_saved")) == 3
        assert len(sink.read_global(allotment_id="a-1")) == 2
        assert len(sink.read_global(limit=2)) == 2

    def test_allotment_query_reads_per_allotment_log(self, tmp_path) -> None:
        small = EventSink(tmp_path, tail_bytes=400)
        small.write(AllotSyncEvent(
            level=EventLevel.info, event_type=EventType.update_saved, message="early",
            context={"allotment_id": "a-9"},
        ), allotment_id="a-9")
        for i in range(20):
            small.write(AllotSyncEvent(
                level=EventLevel.info, event_type=EventType.update_saved, message=f"m{i}",
            ))

        assert small.read_global(allotment_id="a-9")[0]["message"] == "early"

    def test_read_allotment_log(self, sink) -> None:
        sink.write(AllotSyncEvent(level=EventLevel.info, event_type=EventType.update_saved), allotment_id="a-1")
        assert len(sink.read_allotment_log("a-1")) == 1
        assert sink.read_allotment_log("missing") == []
        assert sink.read_allotment_log("../x") == []

    def test_tail_bounded_read(self, tmp_path) -> None:
        small = EventSink(tmp_path, tail_bytes=400)
        for i in range(20):
            small.write(AllotSyncEvent(
                level=EventLevel.info, event_type=EventType.update_saved, message=f"m{i}",
            ))
        events = small.read_global()
        assert 0 < len(events) < 20
        assert events[0]["message"] == "m19"


# ---------------------------------------------------------------------------
# C) Redaction and emit safety
# ---------------------------------------------------------------------------


class TestRedaction:
    def test_sensitive_keys(self) -> None:
        out = redact_context({"api_key": "k", "session_cookie": "c", "allotment_id": "a-1"})
        assert out["api_key"] == "[REDACTED]"
        assert out["session_cookie"] == "[REDACTED]"
        assert out["allotment_id"] == "a-1"

    def test_url_query_stripped(self) -> None:
        out = redact_context({"value": "https://www.youtube.com/watch?v=abc123"})
        assert out["value"] == "https://www.youtube.com/watch?[REDACTED]"

    def test_nested_lists_redacted(self) -> None:
        out = redact_context({"updates": [{"range": "'T'!D1", "value": "http://x.io/a?t=1"}]})
        assert out["updates"][0]["value"] == "http://x.io/a?[REDACTED]"

    def test_long_values_truncated(self) -> None:
        out = redact_context({"note": "x" * 1000})
        assert out["note"].endswith("...[truncated]")


class TestEmit:
    def test_emit_without_sink_is_noop(self) -> None:
        assert get_sink() is None
        emit_error(EventType.update_failed, "nothing configured")

    def test_missing_attribution_downgraded(self, tmp_path) -> None:
        set_log_dir(tmp_path)
        emit_error(EventType.writeback_failed, "no id here")

        evt = _read(tmp_path / "logs" / "events.ndjson")[0]
        assert evt["level"] == "warning"
        assert evt["context"]["_missing_attribution"] == ["allotment_id"]

    def test_emit_swallows_sink_errors(self) -> None:
        import allotsync.logging.events as mod

        class _Broken:
            def write(self, *args, **kwargs):
                raise OSError("disk gone")

        mod._sink = _Broken()
        emit(AllotSyncEvent(level=EventLevel.info, event_type=EventType.update_saved))


# ---------------------------------------------------------------------------
# D) Reconciliation emits a trace
# ---------------------------------------------------------------------------


class TestReconcileEvents:
    def test_successful_update_trace(self, tmp_path) -> None:
        set_log_dir(tmp_path)
        store = InMemoryAllotmentStore([make_allotment()])
        svc = AllotmentService(store, FakeSheetsWriter(), "sheet-1", clock=lambda: FIXED_NOW)
        svc.apply_update("teacher@example.com", "a-17", FieldChanges(video_link="https://youtu.be/xyz"))

        types = [e["event_type"] for e in _read(tmp_path / "logs" / "allotments" / "a-17.ndjson")]
        assert types == [
            "update_received",
            "update_saved",
            "writeback_planned",
            "writeback_succeeded",
        ]

    def test_failed_write_back_logged_as_error(self, tmp_path) -> None:
        set_log_dir(tmp_path)
        store = InMemoryAllotmentStore([make_allotment()])
        writer = FakeSheetsWriter(error=RuntimeError("rate limited"))
        svc = AllotmentService(store, writer, "sheet-1", clock=lambda: FIXED_NOW)
        svc.apply_update("teacher@example.com", "a-17", FieldChanges(video_link="abc"))

        errors = get_sink().read_global(level="error")
        assert len(errors) == 1
        assert errors[0]["event_type"] == "writeback_failed"
        assert errors[0]["error_code"] == "sheets_write_failed"
        assert errors[0]["message"] == "rate limited"

    def test_missing_column_warning(self, tmp_path) -> None:
        set_log_dir(tmp_path)
        store = InMemoryAllotmentStore([make_allotment(error_col=None)])
        svc = AllotmentService(store, FakeSheetsWriter(), "sheet-1", clock=lambda: FIXED_NOW)
        svc.apply_update(
            "teacher@example.com", "a-17",
            FieldChanges(video_link="abc", question_error_identified="typo"),
        )

        warnings = get_sink().read_global(event_type="writeback_column_missing")
        assert len(warnings) == 1
        assert warnings[0]["error_code"] == "column_index_invalid"

    def test_rejected_update_logged(self, tmp_path) -> None:
        set_log_dir(tmp_path)
        svc = AllotmentService(InMemoryAllotmentStore(), FakeSheetsWriter(), "sheet-1")
        svc.apply_update(None, "a-17", FieldChanges(video_link="abc"))

        rejected = get_sink().read_global(event_type="update_rejected")
        assert rejected[0]["error_code"] == "unauthorized"

    def test_persistence_failure_logged_as_error(self, tmp_path) -> None:
        from allotsync.errors import PersistenceError

        class _LockedStore(InMemoryAllotmentStore):
            def save(self, allotment) -> None:
                raise PersistenceError("database is locked", allotment.id)

        set_log_dir(tmp_path)
        svc = AllotmentService(_LockedStore([make_allotment()]), FakeSheetsWriter(), "sheet-1")
        svc.apply_update("teacher@example.com", "a-17", FieldChanges(video_link="abc"))

        failed = get_sink().read_global(event_type="update_failed", allotment_id="a-17")
        assert len(failed) == 1
        assert failed[0]["level"] == "error"
        assert failed[0]["error_code"] == "persistence_failed"
        assert failed[0]["message"] == "database is locked"
