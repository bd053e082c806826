"""
shared/utils/exceptions.py
Application error taxonomy. Every error maps to one HTTP status and a stable code,
rendered by the handler registered in main.py as {"detail", "code", **extra}.
"""

from typing import Any, Iterable, Optional

from fastapi import HTTPException, status


def _status_value(value: Any) -> str:
    return str(getattr(value, "value", value))


class AppException(HTTPException):
    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    code: str = "INTERNAL_ERROR"
    default_detail: str = "An internal server error occurred"

    def __init__(
        self,
        detail: Optional[str] = None,
        extra: Optional[dict[str, Any]] = None,
        headers: Optional[dict[str, str]] = None,
    ):
        super().__init__(
            status_code=self.status_code,
            detail=detail or self.default_detail,
            headers=headers,
        )
        self.extra = extra or {}

    def to_dict(self) -> dict[str, Any]:
        return {"detail": self.detail, "code": self.code, **self.extra}


class ValidationError(AppException):
    status_code = status.HTTP_400_BAD_REQUEST
    code = "VALIDATION_ERROR"
    default_detail = "Invalid input"


class Unauthorized(AppException):
    status_code = status.HTTP_401_UNAUTHORIZED
    code = "UNAUTHORIZED"
    default_detail = "Authentication required"

    def __init__(self, detail: Optional[str] = None, extra: Optional[dict[str, Any]] = None):
        super().__init__(detail, extra, headers={"WWW-Authenticate": "Bearer"})


class Forbidden(AppException):
    status_code = status.HTTP_403_FORBIDDEN
    code = "FORBIDDEN"
    default_detail = "You do not have permission to perform this action"


class NotFound(AppException):
    status_code = status.HTTP_404_NOT_FOUND
    code = "NOT_FOUND"
    default_detail = "Resource not found"


class ConflictError(AppException):
    status_code = status.HTTP_409_CONFLICT
    code = "CONFLICT"
    default_detail = "Resource conflict"


class InvalidStateTransition(AppException):
    """Raised when a status precondition is not met. Reports where the record is and where it may move from."""

    status_code = status.HTTP_400_BAD_REQUEST
    code = "INVALID_STATE_TRANSITION"

    def __init__(self, entity: str, action: str, current_status: Any, allowed_from: Iterable[Any]):
        current = _status_value(current_status)
        allowed = [_status_value(s) for s in allowed_from]
        super().__init__(
            f"Cannot {action} {entity} in '{current}' status",
            extra={"current_status": current, "allowed_from": allowed},
        )
        self.current_status = current
        self.allowed_from = allowed


class InternalError(AppException):
    pass


class GatewayError(AppException):
    """Upstream payment gateway failure."""

    status_code = status.HTTP_502_BAD_GATEWAY
    code = "GATEWAY_ERROR"
    default_detail = "Payment gateway error"
