"""Allotment record and update payload models.

Python code uses snake_case field names; the JSON wire format (request
bodies, stored documents, API responses) uses the camelCase aliases.
Both spellings are accepted on input.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class AllotmentStatus(str, Enum):
    """Known status values.  The stored field is open-ended."""

    pending = "Pending"
    completed = "Completed"


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class Allotment(_CamelModel):
    """One teacher's task, linked to a single spreadsheet row.

    The ``sheet_*`` and ``*_col`` fields are populated by the ingestion sync
    and are only read here.  Each column index is independently optional;
    a missing or negative index means that field is not written back.
    """

    id: str
    teacher_email: str
    sheet_title: str | None = None
    sheet_row_id: int | None = None
    video_link_col: int | None = None
    error_col: int | None = None
    link_date_col: int | None = None
    video_link: str | None = None
    question_error_identified: str | None = None
    status: str | None = None
    last_synced_at: datetime | None = None

    def to_wire(self) -> dict:
        """Serialise with camelCase keys and ISO timestamps."""
        return self.model_dump(mode="json", by_alias=True)


class FieldChanges(_CamelModel):
    """A partial update.  ``None`` means "not part of this update"."""

    video_link: str | None = None
    question_error_identified: str | None = None
    status: str | None = None

    def is_empty(self) -> bool:
        return (
            self.video_link is None
            and self.question_error_identified is None
            and self.status is None
        )
