"""FastAPI server exposing allotment updates.

Routes are thin wrappers over the shared :class:`AllotmentService`.
Caller identity comes from an injectable provider; by default a trusted
header set by the upstream session layer.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Any

from fastapi import FastAPI, HTTPException, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, ValidationError, field_validator
from pydantic.alias_generators import to_camel

from allotsync.logging.events import INVALID_BODY, EventType, emit_warning
from allotsync.models import FieldChanges
from allotsync.reconcile import (
    AllotmentService,
    UpdatePartialSuccess,
    UpdateResult,
    UpdateSuccess,
)

IdentityProvider = Callable[[Request], str | None]

# The singleton service is set at startup by ``create_app()``.
_service: AllotmentService | None = None

_FAILURE_STATUS = {
    "unauthorized": 401,
    "bad_request": 400,
    "not_found": 404,
}


def header_identity(header_name: str = "X-User-Email") -> IdentityProvider:
    """Identity provider reading the caller's email from a request header."""

    def _provider(request: Request) -> str | None:
        value = request.headers.get(header_name, "").strip()
        return value or None

    return _provider


def create_app(
    service: AllotmentService,
    *,
    identity_provider: IdentityProvider | None = None,
) -> FastAPI:
    """Create the FastAPI application around *service*.

    Args:
        service: Configured reconciliation service.
        identity_provider: Resolves the caller from a request.  Defaults
            to :func:`header_identity`.

    Returns:
        Configured FastAPI instance.
    """
    global _service
    _service = service

    from allotsync import __version__

    app = FastAPI(title="allotsync", version=__version__)
    app.state.identity_provider = identity_provider or header_identity()
    app.include_router(_api_router())
    return app


def _svc() -> AllotmentService:
    """Get the singleton service, raising if not initialised."""
    if _service is None:
        raise HTTPException(500, "Service not initialised")
    return _service


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class UpdateAllotmentRequest(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    id: str | int | None = None
    video_link: str | None = None
    question_error_identified: str | None = None
    status: str | None = None

    @field_validator("id")
    @classmethod
    def id_as_str(cls, v: str | int | None) -> str | None:
        return None if v is None else str(v)

    def to_changes(self) -> FieldChanges:
        return FieldChanges(
            video_link=self.video_link,
            question_error_identified=self.question_error_identified,
            status=self.status,
        )


async def _parse_update(request: Request) -> UpdateAllotmentRequest:
    """Parse the JSON body, raising ``ValueError`` when it is unusable."""
    try:
        payload = await request.json()
    except ValueError as exc:
        raise ValueError("Request body is not valid JSON") from exc
    try:
        return UpdateAllotmentRequest.model_validate(payload)
    except ValidationError as exc:
        fields = sorted({".".join(str(p) for p in err["loc"]) or "body" for err in exc.errors()})
        raise ValueError(f"Invalid request body: {', '.join(fields)}") from exc


def _result_response(result: UpdateResult) -> JSONResponse:
    if isinstance(result, UpdateSuccess):
        return JSONResponse({
            "message": "Updated successfully",
            "data": result.allotment.to_wire(),
            "writeBackSuccess": result.write_back_success,
        })
    if isinstance(result, UpdatePartialSuccess):
        return JSONResponse({
            "message": "Data saved to database but sheet update failed",
            "data": result.allotment.to_wire(),
            "writeBackError": result.write_back_error,
            "warning": result.warning,
        }, status_code=207)

    status_code = _FAILURE_STATUS.get(result.error_code)
    if status_code is None:
        return JSONResponse({"error": result.message}, status_code=500)
    return JSONResponse({"message": result.message}, status_code=status_code)


# ---------------------------------------------------------------------------
# Router
# ---------------------------------------------------------------------------


def _api_router():
    from fastapi import APIRouter

    router = APIRouter(prefix="/api")

    @router.get("/health")
    def health() -> dict[str, Any]:
        from allotsync import __version__

        return {"ok": _service is not None, "version": __version__}

    @router.post("/update-allotment")
    async def update_allotment(request: Request) -> JSONResponse:
        svc = _svc()
        caller = request.app.state.identity_provider(request)
        if caller is None:
            # Rejected before the body is read.
            result = await run_in_threadpool(svc.apply_update, None, None, FieldChanges())
            return _result_response(result)

        try:
            req = await _parse_update(request)
        except ValueError as exc:
            emit_warning(
                EventType.update_rejected,
                str(exc),
                {"teacher_email": caller},
                error_code=INVALID_BODY,
            )
            return JSONResponse({"message": str(exc)}, status_code=400)

        result = await run_in_threadpool(svc.apply_update, caller, req.id, req.to_changes())
        return _result_response(result)

    return router
