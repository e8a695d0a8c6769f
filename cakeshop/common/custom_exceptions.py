from typing import Any, Optional
from fastapi import FastAPI, HTTPException, Request,status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from cakeshop.common.logging_setup import get_logger
from cakeshop.common.utils import build_error, json_error
from cakeshop.common.constants import request_id_ctx

logger = get_logger("cakeshop.errors")


class AppError(HTTPException):
    """Domain error carrying a fixed status code and a machine readable code."""
    status_code: int = status.HTTP_400_BAD_REQUEST
    code: str = "BAD_REQUEST"

    def __init__(self, detail: Any = None, *, code: Optional[str] = None):
        super().__init__(status_code=type(self).status_code, detail=detail)
        if code:
            self.code = code


class ValidationFailed(AppError):
    status_code = status.HTTP_400_BAD_REQUEST
    code = "VALIDATION_FAILED"


class NotFound(AppError):
    status_code = status.HTTP_404_NOT_FOUND
    code = "NOT_FOUND"


class Forbidden(AppError):
    status_code = status.HTTP_403_FORBIDDEN
    code = "FORBIDDEN"


class InvalidTransition(AppError):
    status_code = status.HTTP_409_CONFLICT
    code = "INVALID_TRANSITION"


class InvariantViolation(AppError):
    status_code = status.HTTP_409_CONFLICT
    code = "INVARIANT_VIOLATION"


class PaymentVerificationFailed(AppError):
    status_code = status.HTTP_400_BAD_REQUEST
    code = "PAYMENT_VERIFICATION_FAILED"


class GatewayUnavailable(AppError):
    status_code = status.HTTP_502_BAD_GATEWAY
    code = "GATEWAY_UNAVAILABLE"


class DatabaseUnavailable(AppError):
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    code = "DATABASE_UNAVAILABLE"


async def fallback_handler(request: Request, exc: Exception):

    rid = request_id_ctx.get(None)
    body = {"message": "Internal Server Error"}

    logger.error(
        "unexpected.exception",
        extra={
            "path": request.url.path,
            "method": request.method,
            "request_id": rid,
        },
        exc_info=exc,
    )

    payload = build_error(code="SERVER_ERROR", details=body, request_id=rid)
    return json_error(payload, status_code=status.HTTP_500_INTERNAL_SERVER_ERROR)


async def validation_exception_handler(request: Request, exc: RequestValidationError):
    rid = request_id_ctx.get(None)
    errors = jsonable_encoder(exc.errors())
    logger.warning(
        "request.validation_failed",
        extra={
            "errors": errors,
            "path": request.url.path,
        },
    )

    fields = [{"field": ".".join(str(p) for p in e.get("loc", ())), "message": e.get("msg")} for e in errors]
    payload = build_error(code="UNPROCESSABLE_ENTITY", details={"message":"invalid request","fields":fields}, request_id=rid)
    return json_error(payload, status_code=status.HTTP_422_UNPROCESSABLE_ENTITY)


async def http_exception_handler(request: Request, exc: HTTPException):

    rid = request_id_ctx.get(None)

    error_code = getattr(exc, "code", None) or f"HTTP_{exc.status_code}"
    message = exc.detail

    payload = build_error(code=error_code, details={"message":message}, request_id=rid)
    return json_error(payload, status_code=exc.status_code, headers=getattr(exc, "headers", None))


def register_all_exceptions(app: FastAPI):

    app.add_exception_handler(
        Exception, # catch all unidentified/unhandled exceptions
        fallback_handler
    )

    app.add_exception_handler(
        RequestValidationError,
        validation_exception_handler
    )

    app.add_exception_handler(
        HTTPException,
        http_exception_handler
    )
