from __future__ import annotations

from fastapi import HTTPException, status


class ReturnsError(HTTPException):
    """Base for the return-request error taxonomy.

    Every error carries an HTTP status and a stable ``code`` so API responses
    and the client both agree on what went wrong.
    """

    status_code_default: int = status.HTTP_400_BAD_REQUEST
    code: str = "error"

    def __init__(self, detail: str) -> None:
        super().__init__(status_code=self.status_code_default, detail=detail)

    @property
    def message(self) -> str:
        return str(self.detail)


class InvalidInput(ReturnsError):
    status_code_default = status.HTTP_400_BAD_REQUEST
    code = "invalid_input"


class Unauthorized(ReturnsError):
    status_code_default = status.HTTP_403_FORBIDDEN
    code = "unauthorized"


class NotFound(ReturnsError):
    status_code_default = status.HTTP_404_NOT_FOUND
    code = "not_found"


class Conflict(ReturnsError):
    status_code_default = status.HTTP_409_CONFLICT
    code = "conflict"


class PreconditionFailed(ReturnsError):
    status_code_default = status.HTTP_412_PRECONDITION_FAILED
    code = "precondition_failed"


ERRORS_BY_CODE: dict[str, type[ReturnsError]] = {
    cls.code: cls for cls in (InvalidInput, Unauthorized, NotFound, Conflict, PreconditionFailed)
}
ERRORS_BY_STATUS: dict[int, type[ReturnsError]] = {
    cls.status_code_default: cls for cls in (InvalidInput, Unauthorized, NotFound, Conflict, PreconditionFailed)
}
