"""Domain errors and their HTTP mapping."""
from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException


logger = logging.getLogger(__name__)


class AppError(Exception):
    """Base class for errors surfaced to API callers."""

    status_code: int = status.HTTP_400_BAD_REQUEST
    code: str = "app_error"

    def __init__(self, message: str, **extra: Any) -> None:
        super().__init__(message)
        self.message = message
        self.extra = extra

    def to_dict(self) -> Dict[str, Any]:
        return {"message": self.message, "error": self.code, **self.extra}


class InvalidPlanTier(AppError):
    code = "invalid_plan_tier"


class UnsupportedCurrency(AppError):
    code = "unsupported_currency"


class PermissionDenied(AppError):
    status_code = status.HTTP_403_FORBIDDEN
    code = "permission_denied"


class NotFound(AppError):
    status_code = status.HTTP_404_NOT_FOUND
    code = "not_found"


class UserNotInOrganization(AppError):
    status_code = status.HTTP_404_NOT_FOUND
    code = "user_not_in_organization"


class AlreadyOnPlan(AppError):
    status_code = status.HTTP_409_CONFLICT
    code = "already_on_plan"


class InvalidTransition(AppError):
    status_code = status.HTTP_409_CONFLICT
    code = "invalid_transition"


class AlreadyMember(AppError):
    status_code = status.HTTP_409_CONFLICT
    code = "already_member"


class UsageUnderflow(AppError):
    status_code = status.HTTP_409_CONFLICT
    code = "usage_underflow"


class LimitReached(AppError):
    """Registration refused because the shared pool is exhausted."""

    status_code = status.HTTP_402_PAYMENT_REQUIRED
    code = "limit_reached"


class PromoCodeInvalid(AppError):
    code = "promo_code_invalid"


class PaymentError(AppError):
    status_code = status.HTTP_402_PAYMENT_REQUIRED
    code = "payment_error"


class VerificationError(PaymentError):
    code = "verification_error"

    def __init__(
        self, message: str, gateway_response: Optional[Dict[str, Any]] = None
    ) -> None:
        super().__init__(message)
        self.gateway_response = gateway_response


class AmountMismatch(PaymentError):
    code = "amount_mismatch"


class WebhookSignatureInvalid(AppError):
    status_code = status.HTTP_401_UNAUTHORIZED
    code = "invalid_signature"


class InvalidWebhook(AppError):
    code = "invalid_webhook"


async def app_error_handler(_request: Request, exc: AppError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error(f"Unhandled application error: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


async def http_exception_handler(_request: Request, exc: HTTPException) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content={"message": exc.detail},
        headers=getattr(exc, "headers", None),
    )


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(AppError, app_error_handler)
    app.add_exception_handler(HTTPException, http_exception_handler)
