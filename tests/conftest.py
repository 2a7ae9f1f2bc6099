"""Shared fixtures: sample allotments, a recording sheet writer, clean event sink."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

import pytest

from allotsync.models import Allotment

FIXED_NOW = datetime(2026, 3, 7, 10, 30, tzinfo=timezone.utc)


class FakeSheetsWriter:
    """Records batch writes; optionally raises to simulate transport errors."""

    def __init__(self, error: Exception | None = None) -> None:
        self.error = error
        self.calls: list[tuple[str, list[tuple[str, str]]]] = []

    def batch_write(self, spreadsheet_id: str, updates: list[tuple[str, str]]) -> dict[str, Any]:
        self.calls.append((spreadsheet_id, list(updates)))
        if self.error is not None:
            raise self.error
        return {"spreadsheetId": spreadsheet_id, "totalUpdatedCells": len(updates)}


def make_allotment(**overrides: Any) -> Allotment:
    data: dict[str, Any] = {
        "id": "a-17",
        "teacher_email": "teacher@example.com",
        "sheet_title": "JEE Modules",
        "sheet_row_id": 12,
        "video_link_col": 3,
        "error_col": 4,
        "link_date_col": 5,
        "video_link": None,
        "question_error_identified": None,
        "status": None,
    }
    data.update(overrides)
    return Allotment(**data)


@pytest.fixture
def writer() -> FakeSheetsWriter:
    return FakeSheetsWriter()


@pytest.fixture(autouse=True)
def _detach_event_sink():
    """Keep events from leaking between tests."""
    import allotsync.logging.events as mod

    old_sink = mod._sink
    mod._sink = None
    yield
    mod._sink = old_sink
