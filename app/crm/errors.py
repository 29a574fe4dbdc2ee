from __future__ import annotations


class CrmError(Exception):
    """
    Base for errors raised by service functions.
    Carries the HTTP status the JSON layer answers with.
    """

    status_code = 500
    kind = "error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict:
        return {"error": self.kind, "message": self.message}


class NotAuthenticated(CrmError):
    status_code = 401
    kind = "not_authenticated"


class PermissionDenied(CrmError):
    status_code = 403
    kind = "permission_denied"


class NotFound(CrmError):
    status_code = 404
    kind = "not_found"


class Conflict(CrmError):
    status_code = 409
    kind = "conflict"


class ValidationFailed(CrmError):
    status_code = 400
    kind = "validation"
