"""Domain-level errors, translated to JSON responses at the request boundary."""
from typing import Optional


class AppError(Exception):
    """Base class for errors the API reports to the caller."""

    kind: str = "error"
    status_code: int = 400
    message: str = "Request failed"

    def __init__(self, message: Optional[str] = None) -> None:
        super().__init__(message or self.message)
        if message:
            self.message = message

    def to_dict(self) -> dict:
        return {"error": {"kind": self.kind, "message": self.message}}


class ValidationError(AppError):
    kind = "validation_error"
    status_code = 400
    message = "Invalid request"


class ForbiddenError(AppError):
    kind = "forbidden"
    status_code = 403
    message = "Not allowed"


class NotFoundError(AppError):
    kind = "not_found"
    status_code = 404
    message = "Not found"


class ConflictError(AppError):
    kind = "conflict"
    status_code = 409
    message = "Already exists"
