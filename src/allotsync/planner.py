"""Derive spreadsheet cell writes from an allotment update.

Planning is pure: given the stored sheet coordinates of an allotment, the
incoming field changes and today's date, it returns the cell updates to
send plus any diagnostics about fields that could not be written.  No
network or store access happens here, so the same inputs always yield the
same plan.
"""

from __future__ import annotations

from datetime import date

from pydantic import BaseModel, ConfigDict

from allotsync.columns import a1_range
from allotsync.models import Allotment, FieldChanges

# A new video link longer than this is treated as a real link and stamps
# the "link added" date column.
DEFAULT_LINK_DATE_MIN_LENGTH = 5

NO_VALID_COLUMNS = "No valid column indices found. Sheet may not be updated."


class CellUpdate(BaseModel):
    """A single-cell write instruction."""

    model_config = ConfigDict(frozen=True)

    sheet_title: str
    column: int
    row: int
    value: str

    @property
    def range(self) -> str:
        return a1_range(self.sheet_title, self.column, self.row)


class WriteBackPlan(BaseModel):
    """Ordered cell updates plus human-readable diagnostics."""

    model_config = ConfigDict(frozen=True)

    updates: list[CellUpdate] = []
    diagnostics: list[str] = []

    @property
    def is_empty(self) -> bool:
        return not self.updates

    def as_pairs(self) -> list[tuple[str, str]]:
        """Return ``(range, value)`` pairs in plan order."""
        return [(u.range, u.value) for u in self.updates]


def format_sheet_date(d: date) -> str:
    """Format as en-US ``M/D/YYYY`` without zero padding (e.g. ``3/7/2026``)."""
    return f"{d.month}/{d.day}/{d.year}"


def _usable_col(col: int | None) -> bool:
    return col is not None and col >= 0


def plan_cell_updates(
    allotment: Allotment,
    changes: FieldChanges,
    *,
    today: date,
    link_date_min_length: int = DEFAULT_LINK_DATE_MIN_LENGTH,
) -> WriteBackPlan:
    """Build the write-back plan for one allotment update.

    Rules, in output order:

    1. A new ``video_link`` is written to ``video_link_col``.  When the new
       link is longer than *link_date_min_length* and ``link_date_col`` is
       usable, today's date is also written to ``link_date_col``.
    2. A new ``question_error_identified`` is written to ``error_col``.

    A changed field whose column is missing or negative produces a
    diagnostic instead of an update.  An empty plan always carries the
    ``NO_VALID_COLUMNS`` diagnostic.

    The caller must have checked ``sheet_title`` and ``sheet_row_id``.

    Args:
        allotment: Record holding the sheet coordinates.
        changes: Incoming field changes.
        today: Date stamped into the link date column.
        link_date_min_length: Minimum link length (exclusive) for the date stamp.

    Returns:
        A :class:`WriteBackPlan`.
    """
    if not allotment.sheet_title or not allotment.sheet_row_id or allotment.sheet_row_id < 1:
        raise ValueError("Allotment has no sheet location")

    title = allotment.sheet_title
    row = allotment.sheet_row_id
    updates: list[CellUpdate] = []
    diagnostics: list[str] = []

    if changes.video_link is not None:
        if _usable_col(allotment.video_link_col):
            updates.append(CellUpdate(
                sheet_title=title,
                column=allotment.video_link_col,
                row=row,
                value=changes.video_link,
            ))
            if len(changes.video_link) > link_date_min_length and _usable_col(allotment.link_date_col):
                updates.append(CellUpdate(
                    sheet_title=title,
                    column=allotment.link_date_col,
                    row=row,
                    value=format_sheet_date(today),
                ))
        else:
            diagnostics.append(
                "Video link provided but column index missing or invalid "
                f"({allotment.video_link_col})"
            )

    if changes.question_error_identified is not None:
        if _usable_col(allotment.error_col):
            updates.append(CellUpdate(
                sheet_title=title,
                column=allotment.error_col,
                row=row,
                value=changes.question_error_identified,
            ))
        else:
            diagnostics.append(
                "Error provided but column index missing or invalid "
                f"({allotment.error_col})"
            )

    if not updates:
        diagnostics.append(NO_VALID_COLUMNS)

    return WriteBackPlan(updates=updates, diagnostics=diagnostics)
