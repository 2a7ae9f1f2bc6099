"""Apply a teacher's allotment update and mirror it into the spreadsheet.

The local save is authoritative.  Spreadsheet write-back happens after the
save and is best-effort: when it is skipped or fails, the caller receives
an :class:`UpdatePartialSuccess` carrying the diagnostic, never a failure,
and the saved record is not rolled back.
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import date, datetime, timezone
from typing import Annotated, Literal, Union
from zoneinfo import ZoneInfo

from pydantic import BaseModel, Field

from allotsync.errors import (
    AllotSyncError,
    BadRequestError,
    NotFoundError,
    PersistenceError,
    UnauthorizedError,
)
from allotsync.executor import WriteBackOutcome, WriteBackStatus, execute_write_back
from allotsync.logging.events import (
    ALLOTMENT_NOT_FOUND,
    COLUMN_INDEX_INVALID,
    MISSING_ID,
    NO_VALID_COLUMNS,
    PERSISTENCE_FAILED,
    SHEET_METADATA_MISSING,
    SHEETS_WRITE_FAILED,
    UNAUTHORIZED,
    EventLevel,
    EventType,
    emit,
    emit_error,
    emit_info,
    emit_warning,
    make_allotment_event,
)
from allotsync.models import Allotment, AllotmentStatus, FieldChanges
from allotsync.planner import DEFAULT_LINK_DATE_MIN_LENGTH, plan_cell_updates
from allotsync.sheets import SheetsWriter
from allotsync.store import AllotmentStore

PARTIAL_WARNING = (
    "Your changes are saved, but the Google Sheet may not reflect them. "
    "Please contact admin or run sync."
)

MISSING_SHEET_TITLE = "Missing sheet title metadata. Please run sync again."
MISSING_SHEET_ROW = "Missing sheet row ID. Please run sync again."

_REJECTION_CODES = {
    UnauthorizedError.code: UNAUTHORIZED,
    BadRequestError.code: MISSING_ID,
    NotFoundError.code: ALLOTMENT_NOT_FOUND,
}


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------


class UpdateSuccess(BaseModel):
    """Saved locally and mirrored to the spreadsheet."""

    kind: Literal["success"] = "success"
    allotment: Allotment
    write_back_success: bool = True


class UpdatePartialSuccess(BaseModel):
    """Saved locally; the spreadsheet may be stale."""

    kind: Literal["partial_success"] = "partial_success"
    allotment: Allotment
    write_back_error: str
    warning: str = PARTIAL_WARNING


class UpdateFailure(BaseModel):
    """Nothing was saved, or the save itself failed.

    ``error_code`` is one of ``unauthorized``, ``bad_request``,
    ``not_found``, ``persistence_error`` or ``internal_error``.
    """

    kind: Literal["failure"] = "failure"
    error_code: str
    message: str


UpdateResult = Annotated[
    Union[UpdateSuccess, UpdatePartialSuccess, UpdateFailure],
    Field(discriminator="kind"),
]


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def apply_field_changes(allotment: Allotment, changes: FieldChanges, now: datetime) -> None:
    """Copy provided fields onto *allotment* and apply the status policy.

    An explicit non-empty ``status`` wins.  Otherwise a non-empty new
    video link on a record that has no status yet marks it ``Completed``.
    ``last_synced_at`` is always set to *now*.
    """
    if changes.video_link is not None:
        allotment.video_link = changes.video_link
    if changes.question_error_identified is not None:
        allotment.question_error_identified = changes.question_error_identified

    if changes.status:
        allotment.status = changes.status
    elif changes.video_link and not allotment.status:
        allotment.status = AllotmentStatus.completed.value

    allotment.last_synced_at = now


def missing_sheet_metadata(allotment: Allotment) -> str | None:
    """Return the remediation message if the record has no usable sheet location."""
    if not allotment.sheet_title:
        return MISSING_SHEET_TITLE
    if not allotment.sheet_row_id or allotment.sheet_row_id < 1:
        return MISSING_SHEET_ROW
    return None


class AllotmentService:
    """Reconciles allotment updates against the store and the spreadsheet.

    Parameters
    ----------
    store : AllotmentStore
        Record store.
    writer : SheetsWriter
        Spreadsheet write capability.
    spreadsheet_id : str | None
        Target spreadsheet.  When unset, every write-back fails with a
        diagnostic but local saves still succeed.
    clock : callable, optional
        Returns the current timezone-aware datetime.  Defaults to UTC now.
    sheet_timezone : str | None
        IANA zone used for the "link added" date stamp.  Defaults to UTC.
    link_date_min_length : int
        Links longer than this stamp the link date column.
    """

    def __init__(
        self,
        store: AllotmentStore,
        writer: SheetsWriter,
        spreadsheet_id: str | None,
        *,
        clock: Callable[[], datetime] | None = None,
        sheet_timezone: str | None = None,
        link_date_min_length: int = DEFAULT_LINK_DATE_MIN_LENGTH,
    ) -> None:
        self.store = store
        self.writer = writer
        self.spreadsheet_id = spreadsheet_id
        self._clock = clock or _utc_now
        self._tz = ZoneInfo(sheet_timezone) if sheet_timezone else timezone.utc
        self.link_date_min_length = link_date_min_length

    # ------------------------------------------------------------------
    # Public entry point
    # ------------------------------------------------------------------

    def apply_update(
        self,
        caller: str | None,
        allotment_id: str | None,
        changes: FieldChanges,
    ) -> UpdateResult:
        """Apply *changes* to the caller's allotment and write them back.

        Never raises; every outcome is returned as one of the three result
        models.
        """
        emit_info(
            EventType.update_received,
            "Allotment update received",
            {
                "allotment_id": allotment_id,
                "teacher_email": caller,
                "fields": sorted(changes.model_dump(exclude_none=True)),
            },
        )

        try:
            allotment = self._load_owned(caller, allotment_id)
        except (UnauthorizedError, BadRequestError, NotFoundError) as exc:
            emit_warning(
                EventType.update_rejected,
                str(exc),
                {"allotment_id": allotment_id, "teacher_email": caller},
                error_code=_REJECTION_CODES[exc.code],
            )
            return UpdateFailure(error_code=exc.code, message=str(exc))
        except AllotSyncError as exc:
            return self._failure(allotment_id, exc)

        try:
            now = self._clock()
            apply_field_changes(allotment, changes, now)
            self._save(allotment)
        except AllotSyncError as exc:
            return self._failure(allotment_id, exc)
        except Exception as exc:
            return self._failure(allotment_id, exc, code="internal_error")

        emit(make_allotment_event(
            EventType.update_saved,
            EventLevel.info,
            "Allotment saved",
            allotment_id=allotment.id,
            teacher_email=allotment.teacher_email,
            extra={"status": allotment.status},
        ))

        outcome = self._write_back(allotment, changes, now.astimezone(self._tz).date())

        if outcome.ok:
            return UpdateSuccess(allotment=allotment, write_back_success=True)
        return UpdatePartialSuccess(
            allotment=allotment,
            write_back_error=outcome.error or "Unknown write-back error",
        )

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------

    def _load_owned(self, caller: str | None, allotment_id: str | None) -> Allotment:
        if not caller:
            raise UnauthorizedError()
        if not allotment_id:
            raise BadRequestError("Missing ID")
        try:
            allotment = self.store.find_by_id_and_owner(allotment_id, caller)
        except PersistenceError:
            raise
        except Exception as exc:
            raise PersistenceError(f"Allotment lookup failed: {exc}", allotment_id) from exc
        if allotment is None:
            raise NotFoundError(allotment_id)
        return allotment

    def _save(self, allotment: Allotment) -> None:
        try:
            self.store.save(allotment)
        except PersistenceError:
            raise
        except Exception as exc:
            raise PersistenceError(f"Saving allotment failed: {exc}", allotment.id) from exc

    def _write_back(self, allotment: Allotment, changes: FieldChanges, today: date) -> WriteBackOutcome:
        attribution = {
            "allotment_id": allotment.id,
            "teacher_email": allotment.teacher_email,
            "sheet_title": allotment.sheet_title,
            "sheet_row_id": allotment.sheet_row_id,
        }

        missing = missing_sheet_metadata(allotment)
        if missing:
            emit(make_allotment_event(
                EventType.writeback_skipped,
                EventLevel.warning,
                missing,
                error_code=SHEET_METADATA_MISSING,
                **attribution,
            ))
            return WriteBackOutcome(status=WriteBackStatus.skipped, ok=False, error=missing)

        plan = plan_cell_updates(
            allotment,
            changes,
            today=today,
            link_date_min_length=self.link_date_min_length,
        )

        for diagnostic in plan.diagnostics:
            event_type = EventType.writeback_skipped if plan.is_empty else EventType.writeback_column_missing
            code = NO_VALID_COLUMNS if plan.is_empty else COLUMN_INDEX_INVALID
            emit(make_allotment_event(
                event_type,
                EventLevel.warning,
                diagnostic,
                error_code=code,
                extra={
                    "video_link_col": allotment.video_link_col,
                    "error_col": allotment.error_col,
                    "link_date_col": allotment.link_date_col,
                },
                **attribution,
            ))

        if not plan.is_empty:
            emit(make_allotment_event(
                EventType.writeback_planned,
                EventLevel.info,
                f"Sending batch update with {len(plan.updates)} cell(s)",
                extra={"updates": [{"range": r, "value": v} for r, v in plan.as_pairs()]},
                **attribution,
            ))

        outcome = execute_write_back(self.spreadsheet_id, plan, self.writer)

        if outcome.status is WriteBackStatus.success:
            emit(make_allotment_event(
                EventType.writeback_succeeded,
                EventLevel.info,
                f"Write-back successful for row {allotment.sheet_row_id}",
                extra={"update_count": outcome.update_count},
                **attribution,
            ))
        elif outcome.status is WriteBackStatus.failed:
            emit(make_allotment_event(
                EventType.writeback_failed,
                EventLevel.error,
                outcome.error or "Write-back failed",
                error_code=SHEETS_WRITE_FAILED,
                **attribution,
            ))
        return outcome

    def _failure(
        self,
        allotment_id: str | None,
        exc: Exception,
        *,
        code: str | None = None,
    ) -> UpdateFailure:
        error_code = code or getattr(exc, "code", "internal_error")
        emit_error(
            EventType.update_failed,
            str(exc),
            {"allotment_id": allotment_id} if allotment_id else None,
            error_code=PERSISTENCE_FAILED if error_code == PersistenceError.code else error_code,
        )
        return UpdateFailure(error_code=error_code, message=str(exc))
