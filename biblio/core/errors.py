"""Error taxonomy shared by services, dependencies and the HTTP layer.

Services raise these instead of ``HTTPException`` so the same code paths can be
driven from scripts and tests.  ``biblio.main`` registers a single handler that
renders every :class:`LibraryError` as ``{"detail": ..., "code": ...}`` with the
class's status code.
"""


class LibraryError(Exception):
    status_code: int = 500
    code: str = "error"
    default_detail: str = "Library error"

    def __init__(self, detail: str | None = None) -> None:
        self.detail = detail or self.default_detail
        super().__init__(self.detail)


class NotFound(LibraryError):
    status_code = 404
    code = "not_found"
    default_detail = "Not found"


class InvalidState(LibraryError):
    status_code = 400
    code = "invalid_state"
    default_detail = "Operation is not allowed in the current state"


class Unauthorized(LibraryError):
    status_code = 401
    code = "unauthorized"
    default_detail = "Not authenticated"


class Forbidden(Unauthorized):
    """Authenticated, but the role does not grant the operation."""

    status_code = 403
    code = "forbidden"
    default_detail = "Insufficient permissions"


class ValidationFailure(LibraryError):
    status_code = 422
    code = "validation_failure"
    default_detail = "Invalid input"


class StoreFailure(LibraryError):
    # Never carries storage internals; the cause is logged where it is raised.
    status_code = 500
    code = "store_failure"
    default_detail = "The operation could not be completed"
