"""Error taxonomy shared by the family, badge and content services."""
from __future__ import annotations

from typing import Any, Dict, Optional

from fastapi import HTTPException


class EngineError(Exception):
    kind = "EngineError"
    status_code = 400

    def __init__(self, message: str, *, field: Optional[str] = None) -> None:
        super().__init__(message)
        self.message = message
        self.field = field

    def to_detail(self) -> Dict[str, Any]:
        detail: Dict[str, Any] = {"error": self.kind, "message": self.message}
        if self.field:
            detail["field"] = self.field
        return detail


class ValidationError(EngineError):
    """Field-level input problem; the caller can fix the input and retry."""

    kind = "ValidationError"
    status_code = 422


class PermissionDenied(EngineError):
    kind = "PermissionDenied"
    status_code = 403


class InvariantViolation(EngineError):
    kind = "InvariantViolation"
    status_code = 409


class LastPrimaryCaregiver(InvariantViolation):
    def __init__(self) -> None:
        super().__init__("would leave zero primary caregivers", field="isPrimary")


class RateLimitExceeded(EngineError):
    kind = "RateLimitExceeded"
    status_code = 429


class AlreadyFinalized(EngineError):
    kind = "AlreadyFinalized"
    status_code = 409


class NotFound(EngineError):
    kind = "NotFound"
    status_code = 404


def to_http_exception(exc: EngineError) -> HTTPException:
    return HTTPException(status_code=exc.status_code, detail=exc.to_detail())
