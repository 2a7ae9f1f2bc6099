"""Error types raised while reconciling an allotment update."""

from __future__ import annotations


class AllotSyncError(Exception):
    """Base class for all reconciliation errors.

    Attributes:
        code: Stable machine-readable error code.
    """

    code = "error"


class UnauthorizedError(AllotSyncError):
    """No caller identity was supplied."""

    code = "unauthorized"

    def __init__(self, message: str = "Unauthorized") -> None:
        super().__init__(message)


class BadRequestError(AllotSyncError):
    """A required input is missing or malformed."""

    code = "bad_request"


class NotFoundError(AllotSyncError):
    """The allotment does not exist or is not owned by the caller.

    Both cases deliberately produce the same error so non-owners cannot
    probe for existence.
    """

    code = "not_found"

    def __init__(self, allotment_id: str) -> None:
        self.allotment_id = allotment_id
        super().__init__("Allotment not found or unauthorized")


class PersistenceError(AllotSyncError):
    """The record store rejected a save or could not be read.

    Attributes:
        allotment_id: The record involved, when known.
    """

    code = "persistence_error"

    def __init__(self, message: str, allotment_id: str | None = None) -> None:
        self.allotment_id = allotment_id
        super().__init__(message)
