"""
Outcome taxonomy for the handler layer.

Every failure a handler can report is one of these exceptions. ``kind`` is
stable and machine readable; ``message`` is the human readable summary.
"""
from typing import Any, Dict, Iterable, List, Optional


class AppError(Exception):
    """Base class for every handler outcome other than success."""

    kind = "error"
    status_code = 500

    def __init__(self, message: str):
        self.message = message
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        return {"error": self.kind, "message": self.message}


class Unauthenticated(AppError):
    """Raised when the caller carries no valid identity."""

    kind = "unauthenticated"
    status_code = 401

    def __init__(self, message: str = "Not authenticated"):
        super().__init__(message)


class Unauthorized(AppError):
    """Raised when the caller's identity is known but policy denies the action."""

    kind = "unauthorized"
    status_code = 403

    def __init__(self, message: str = "Not authorized", user_id: Optional[str] = None, action: Optional[str] = None):
        self.user_id = user_id
        self.action = action
        super().__init__(message)


class InvalidInput(AppError):
    """Raised when the payload fails validation. Always names the fields."""

    kind = "invalid_input"
    status_code = 400

    def __init__(self, message: str, fields: Iterable[str] = ()):
        self.fields: List[str] = list(fields)
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data["fields"] = self.fields
        return data


class NotFound(AppError):
    """Raised when the target is absent or outside the caller's visible scope."""

    kind = "not_found"
    status_code = 404

    def __init__(self, resource: str, resource_id: Optional[str] = None):
        self.resource = resource
        self.resource_id = resource_id
        super().__init__(f"{resource} not found")


class Conflict(AppError):
    """Raised on uniqueness or idempotency violations."""

    kind = "conflict"
    status_code = 409

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(reason)


class InternalError(AppError):
    """
    Raised on unexpected store or procedure failures.

    ``detail`` keeps the underlying message for diagnostics; it is never the
    only text shown to the user.
    """

    kind = "internal_error"
    status_code = 500

    def __init__(self, message: str, detail: Optional[str] = None):
        self.detail = detail
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        if self.detail:
            data["detail"] = self.detail
        return data
