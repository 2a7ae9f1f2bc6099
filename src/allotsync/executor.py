"""Submit a write-back plan as one batched spreadsheet write."""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel

from allotsync.planner import NO_VALID_COLUMNS, WriteBackPlan
from allotsync.sheets import SheetsWriter


class WriteBackStatus(str, Enum):
    success = "success"
    failed = "failed"
    skipped = "skipped"


class WriteBackOutcome(BaseModel):
    """Result of one write-back attempt.

    ``ok`` is true only for ``success``.  ``error`` holds the planner
    diagnostic for ``skipped`` and the transport message for ``failed``.
    """

    status: WriteBackStatus
    ok: bool
    error: str | None = None
    update_count: int = 0
    response: dict | None = None


def execute_write_back(
    spreadsheet_id: str | None,
    plan: WriteBackPlan,
    writer: SheetsWriter,
) -> WriteBackOutcome:
    """Send *plan* through *writer* and classify the outcome.

    An empty plan is skipped without touching the writer.  Failures are
    reported once and never retried.  **Never raises.**
    """
    if plan.is_empty:
        message = plan.diagnostics[-1] if plan.diagnostics else NO_VALID_COLUMNS
        return WriteBackOutcome(status=WriteBackStatus.skipped, ok=False, error=message)

    if not spreadsheet_id:
        return WriteBackOutcome(
            status=WriteBackStatus.failed,
            ok=False,
            error="Spreadsheet ID is not configured",
            update_count=len(plan.updates),
        )

    try:
        response = writer.batch_write(spreadsheet_id, plan.as_pairs())
    except Exception as exc:
        return WriteBackOutcome(
            status=WriteBackStatus.failed,
            ok=False,
            error=str(exc) or exc.__class__.__name__,
            update_count=len(plan.updates),
        )

    return WriteBackOutcome(
        status=WriteBackStatus.success,
        ok=True,
        update_count=len(plan.updates),
        response=response if isinstance(response, dict) else None,
    )
