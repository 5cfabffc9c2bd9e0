"""Global exception handlers for FastAPI.

Handlers run inside the middleware stack, so cookie mutations made before
the exception (a definitive refresh failure clearing the session) still
reach the client on the error response.
"""

import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from starlette.responses import JSONResponse, Response

from api.base import error_response, ErrorCodes
from auth.exceptions import (
    EmailNotConfirmedError,
    ForbiddenError,
    InvalidCredentialsError,
    PartialAuthError,
    RateLimitedError,
    RegistrationError,
    UnauthorizedError,
)
from auth.types import ResolutionReason
from clients.backend_client import BackendError
from clients.identity_client import IdentityProviderError
from clients.payment_client import PaymentProcessorError, WebhookSignatureError
from core.services.order_service import OrderInsertionError

logger = logging.getLogger(__name__)

_SESSION_EXPIRED_REASONS = {
    ResolutionReason.TRANSIENT_REFRESH_FAILURE,
    ResolutionReason.DEFINITIVE_REFRESH_FAILURE,
}


def _error(status_code: int, code: str, message: str, headers: dict | None = None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        headers=headers,
        content=error_response(code, message).model_dump(mode="json"),
    )


def register_error_handlers(app: FastAPI) -> None:
    """Register global exception handlers on the app."""

    @app.exception_handler(PartialAuthError)
    async def partial_auth_handler(request: Request, exc: PartialAuthError):
        # 204 carries no body; the status header tells the client what happened
        return Response(status_code=204, headers={"X-Auth-Status": ResolutionReason.PARTIAL_AUTH.value})

    @app.exception_handler(UnauthorizedError)
    async def unauthorized_handler(request: Request, exc: UnauthorizedError):
        if exc.reason in _SESSION_EXPIRED_REASONS:
            return _error(401, ErrorCodes.SESSION_EXPIRED, str(exc))
        return _error(401, ErrorCodes.NOT_AUTHENTICATED, str(exc))

    @app.exception_handler(ForbiddenError)
    async def forbidden_handler(request: Request, exc: ForbiddenError):
        return _error(403, ErrorCodes.FORBIDDEN, str(exc))

    @app.exception_handler(InvalidCredentialsError)
    async def invalid_credentials_handler(request: Request, exc: InvalidCredentialsError):
        return _error(401, ErrorCodes.INVALID_CREDENTIALS, str(exc))

    @app.exception_handler(EmailNotConfirmedError)
    async def email_not_confirmed_handler(request: Request, exc: EmailNotConfirmedError):
        return _error(401, ErrorCodes.EMAIL_NOT_CONFIRMED, str(exc))

    @app.exception_handler(RateLimitedError)
    async def rate_limited_handler(request: Request, exc: RateLimitedError):
        return _error(
            429,
            ErrorCodes.RATE_LIMITED,
            f"Too many requests. Please wait {exc.retry_after_seconds} seconds.",
            headers={"Retry-After": str(exc.retry_after_seconds)},
        )

    @app.exception_handler(RegistrationError)
    async def registration_error_handler(request: Request, exc: RegistrationError):
        return _error(400, ErrorCodes.REGISTRATION_FAILED, str(exc))

    @app.exception_handler(OrderInsertionError)
    async def order_insertion_handler(request: Request, exc: OrderInsertionError):
        return _error(500, ErrorCodes.ORDER_INSERTION_FAILED, str(exc))

    @app.exception_handler(WebhookSignatureError)
    async def webhook_signature_handler(request: Request, exc: WebhookSignatureError):
        return _error(400, ErrorCodes.INVALID_SIGNATURE, f"Webhook signature verification failed: {exc}")

    @app.exception_handler(PaymentProcessorError)
    async def payment_error_handler(request: Request, exc: PaymentProcessorError):
        return _error(502, ErrorCodes.PAYMENT_FAILED, exc.message)

    @app.exception_handler(IdentityProviderError)
    async def identity_provider_handler(request: Request, exc: IdentityProviderError):
        logger.error(f"Identity provider failure: {exc.status_code} {exc.message}")
        return _error(503, ErrorCodes.SERVICE_UNAVAILABLE, "Authentication service unavailable")

    @app.exception_handler(BackendError)
    async def backend_error_handler(request: Request, exc: BackendError):
        logger.error(f"Backend failure: {exc.status_code} {exc.message}")
        return _error(503, ErrorCodes.SERVICE_UNAVAILABLE, "Data service unavailable")

    @app.exception_handler(ValueError)
    async def value_error_handler(request: Request, exc: ValueError):
        message = str(exc)
        if "not found" in message.lower():
            return _error(404, ErrorCodes.NOT_FOUND, message)
        return _error(400, ErrorCodes.INVALID_REQUEST, message)

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        return _error(422, ErrorCodes.VALIDATION_ERROR, str(exc.errors()))

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception):
        logger.exception("Unhandled exception")
        return _error(500, ErrorCodes.INTERNAL_ERROR, "An internal error occurred")
