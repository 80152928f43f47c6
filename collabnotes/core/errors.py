"""
Domain error taxonomy.

Every error is an HTTPException so services can raise them directly, the way
the rest of the code base raises HTTPException. ``code`` is a stable machine
name rendered next to ``detail`` by the handlers registered in main.py.
"""
from fastapi import HTTPException, status


class DomainError(HTTPException):
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    code = "InternalError"

    def __init__(self, detail: str | None = None, errors: list | None = None):
        super().__init__(status_code=self.status_code, detail=detail or self.code)
        self.errors = errors or []


class ValidationError(DomainError):
    status_code = status.HTTP_400_BAD_REQUEST
    code = "ValidationError"


class NotFound(DomainError):
    # also raised for resources outside the caller's tenant or access scope
    status_code = status.HTTP_404_NOT_FOUND
    code = "NotFound"


class Forbidden(DomainError):
    status_code = status.HTTP_403_FORBIDDEN
    code = "Forbidden"


class EditWindowExpired(Forbidden):
    code = "EditWindowExpired"


class ConflictOrNoOp(DomainError):
    """Repeated transition (e.g. re-marking read). Reported, never raised to clients."""
    status_code = status.HTTP_200_OK
    code = "NoOp"


def field_errors(errors) -> list[dict]:
    """pydantic error list -> [{"field", "message"}], without the request-part prefix."""
    out = []
    for err in errors:
        loc = [str(p) for p in err.get("loc", ()) if p not in ("body", "query", "path", "form")]
        out.append({"field": ".".join(loc) or None, "message": err.get("msg", "Invalid value")})
    return out
