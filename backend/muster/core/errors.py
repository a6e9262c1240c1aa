"""Domain error taxonomy.

Every error is an ``HTTPException`` so services can raise it directly and
FastAPI renders ``{"detail": {"code": ..., "message": ..., **context}}``
without a custom handler.
"""

from __future__ import annotations

from typing import Any

from fastapi import HTTPException, status


class MusterError(HTTPException):
    status_code: int = status.HTTP_400_BAD_REQUEST
    code: str = "error"

    def __init__(self, message: str, **context: Any) -> None:
        self.message = message
        self.context = context
        super().__init__(
            status_code=self.status_code,
            detail={"code": self.code, "message": message, **context},
        )

    def __str__(self) -> str:
        return self.message


class IdentityNotFound(MusterError):
    status_code = status.HTTP_404_NOT_FOUND
    code = "identity_not_found"


class ScheduleNotFound(MusterError):
    status_code = status.HTTP_404_NOT_FOUND
    code = "schedule_not_found"


class NotFound(MusterError):
    status_code = status.HTTP_404_NOT_FOUND
    code = "not_found"


class InvalidState(MusterError):
    status_code = status.HTTP_409_CONFLICT
    code = "invalid_state"


class ValidationError(MusterError):
    status_code = status.HTTP_422_UNPROCESSABLE_CONTENT
    code = "validation_error"


class DependencyFailure(MusterError):
    status_code = status.HTTP_502_BAD_GATEWAY
    code = "dependency_failure"
