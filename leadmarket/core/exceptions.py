from typing import Any

from fastapi import Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import ORJSONResponse


class AppError(Exception):
    """Base application error with consistent schema."""

    def __init__(
        self,
        message: str,
        code: str = "ERROR",
        status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR,
        details: dict[str, Any] | None = None,
    ):
        self.message = message
        self.code = code
        self.status_code = status_code
        self.details = details or {}
        super().__init__(message)


class UnauthorizedError(AppError):
    def __init__(self, message: str = "Unauthorized"):
        super().__init__(message, code="UNAUTHORIZED", status_code=status.HTTP_401_UNAUTHORIZED)


class ForbiddenError(AppError):
    def __init__(self, message: str = "Forbidden"):
        super().__init__(message, code="FORBIDDEN", status_code=status.HTTP_403_FORBIDDEN)


class NotFoundError(AppError):
    def __init__(self, message: str = "Not found"):
        super().__init__(message, code="NOT_FOUND", status_code=status.HTTP_404_NOT_FOUND)


class ConflictError(AppError):
    def __init__(self, message: str = "Conflict", code: str = "CONFLICT", details: dict[str, Any] | None = None):
        super().__init__(message, code=code, status_code=status.HTTP_409_CONFLICT, details=details)


class BadRequestError(AppError):
    def __init__(
        self,
        message: str = "Bad request",
        code: str = "BAD_REQUEST",
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message, code=code, status_code=status.HTTP_400_BAD_REQUEST, details=details)


# Ledger / payment errors


class InvalidAmountError(BadRequestError):
    def __init__(self, message: str = "Invalid amount", details: dict[str, Any] | None = None):
        super().__init__(message, code="INVALID_AMOUNT", details=details)


class InsufficientCreditsError(BadRequestError):
    def __init__(self, required: Any = None, available: Any = None):
        details = {}
        message = "Insufficient credits"
        if required is not None and available is not None:
            message = f"Insufficient credits. Required: {required}, Available: {available}"
            details = {"required": str(required), "available": str(available)}
        super().__init__(message, code="INSUFFICIENT_CREDITS", details=details)


class LeadNotPurchasableError(BadRequestError):
    def __init__(self, message: str = "This lead is not available for purchase (price not set)"):
        super().__init__(message, code="LEAD_NOT_PURCHASABLE")


class InvalidTransitionError(ConflictError):
    """A terminal transaction was asked to move to the other terminal state."""

    def __init__(self, transaction_id: str, current_status: str, requested_status: str):
        self.transaction_id = transaction_id
        self.current_status = current_status
        self.requested_status = requested_status
        super().__init__(
            f"Transaction {transaction_id} is {current_status}; cannot mark {requested_status}",
            code="INVALID_TRANSITION",
            details={
                "transaction_id": transaction_id,
                "current_status": current_status,
                "requested_status": requested_status,
            },
        )


class AlreadyPurchasedError(ConflictError):
    def __init__(self, lead_id: str):
        self.lead_id = lead_id
        super().__init__("Lead already purchased by this contractor", code="ALREADY_PURCHASED", details={"lead_id": lead_id})


class ProviderUnavailableError(AppError):
    def __init__(self, message: str = "Failed to create payment session", details: dict[str, Any] | None = None):
        super().__init__(message, code="PROVIDER_UNAVAILABLE", status_code=status.HTTP_502_BAD_GATEWAY, details=details)


class SignatureInvalidError(BadRequestError):
    def __init__(self, message: str = "Invalid webhook signature"):
        super().__init__(message, code="SIGNATURE_INVALID")


def error_response(request: Request, exc: AppError) -> ORJSONResponse:
    body = {
        "error": {
            "message": exc.message,
            "code": exc.code,
            "details": exc.details,
        }
    }
    if hasattr(request.state, "request_id"):
        body["request_id"] = request.state.request_id
    return ORJSONResponse(status_code=exc.status_code, content=body)


async def app_exception_handler(request: Request, exc: AppError) -> ORJSONResponse:
    return error_response(request, exc)


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> ORJSONResponse:
    body = {
        "error": {
            "message": "Validation error",
            "code": "VALIDATION_ERROR",
            "details": {"errors": jsonable_encoder(exc.errors())},
        }
    }
    if hasattr(request.state, "request_id"):
        body["request_id"] = request.state.request_id
    return ORJSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content=body,
    )


async def generic_exception_handler(request: Request, exc: Exception) -> ORJSONResponse:
    from leadmarket.core.logging import get_logger
    get_logger(__name__).exception("unhandled_exception", exc_info=exc)
    body = {
        "error": {
            "message": "Internal server error",
            "code": "INTERNAL_ERROR",
            "details": {},
        }
    }
    if hasattr(request.state, "request_id"):
        body["request_id"] = request.state.request_id
    return ORJSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=body,
    )
