"""Domain errors raised by the service layer and their HTTP rendering."""

from typing import Any, Dict, Optional

from fastapi import Request, status
from fastapi.responses import JSONResponse


class CarblyError(Exception):
    """Base error for business-rule violations. Rendered as ``{"error": message}``."""

    status_code = status.HTTP_400_BAD_REQUEST

    def __init__(self, message: str, status_code: Optional[int] = None, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        self.details = details

    def to_payload(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"error": self.message}
        if self.details:
            payload.update(self.details)
        return payload


class NotFoundError(CarblyError):
    status_code = status.HTTP_404_NOT_FOUND


class InvalidStateError(CarblyError):
    status_code = status.HTTP_400_BAD_REQUEST


class ConflictError(CarblyError):
    status_code = status.HTTP_409_CONFLICT


class PlanLimitError(CarblyError):
    status_code = status.HTTP_403_FORBIDDEN

    def __init__(self, message: str, limit_type: str, current_plan: str, suggested_plan: Optional[str] = None):
        super().__init__(
            message,
            details={
                "limit_type": limit_type,
                "current_plan": current_plan,
                "suggested_plan": suggested_plan,
            },
        )
        self.limit_type = limit_type
        self.current_plan = current_plan
        self.suggested_plan = suggested_plan


class ExternalServiceError(CarblyError):
    """A vendor call (Stripe, Yousign, Resend, R2) failed."""

    status_code = status.HTTP_502_BAD_GATEWAY


async def carbly_error_handler(_: Request, exc: CarblyError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content=exc.to_payload())
