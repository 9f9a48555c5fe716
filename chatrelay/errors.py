import uuid
from typing import Any, Optional

from fastapi import FastAPI, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from .logging_config import logger


class ErrorResponse(BaseModel):
    """
    Error payload returned by every non-streaming failure:
    {
        "error": "Chat not found or unauthorized",
        "details": {...}
    }
    """

    error: str = Field(..., description="Human-readable error message")
    details: Optional[Any] = Field(default=None, description="Optional structured details")


class RelayError(Exception):
    """
    Base class for failures detected before the response stream opens.

    Subclasses pin the HTTP status; the message is shown to the caller as-is.
    """

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, message: str, *, details: Optional[Any] = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details

    def to_response(self) -> JSONResponse:
        payload = ErrorResponse(error=self.message, details=self.details)
        return JSONResponse(
            status_code=self.status_code,
            content=payload.model_dump(exclude_none=True),
        )


class ValidationError(RelayError):
    status_code = status.HTTP_400_BAD_REQUEST


class AuthorizationError(RelayError):
    """Chat or message missing, or not owned by the caller."""

    status_code = status.HTTP_404_NOT_FOUND


class ProviderNotFound(RelayError):
    status_code = status.HTTP_400_BAD_REQUEST


class CredentialUnavailable(RelayError):
    status_code = status.HTTP_400_BAD_REQUEST


class QuotaExceeded(RelayError):
    status_code = status.HTTP_429_TOO_MANY_REQUESTS

    def __init__(
        self,
        message: str,
        *,
        request_count: int,
        max_requests: int,
        details: Optional[Any] = None,
    ) -> None:
        super().__init__(message, details=details)
        self.request_count = request_count
        self.max_requests = max_requests


class UpstreamError(RelayError):
    """
    Provider returned a non-2xx status or the transport failed.

    Once streaming has begun this never reaches the caller; it is logged
    and reflected in the persisted message status only.
    """

    status_code = status.HTTP_502_BAD_GATEWAY

    def __init__(
        self,
        message: str,
        *,
        provider: str,
        upstream_status: Optional[int] = None,
        details: Optional[Any] = None,
    ) -> None:
        super().__init__(message, details=details)
        self.provider = provider
        self.upstream_status = upstream_status


class PersistenceError(RelayError):
    """Store write failed while checkpointing a live transcript."""

    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR


async def handle_relay_error(request: Request, exc: RelayError) -> JSONResponse:
    logger.info(
        "%s %s rejected with %s: %s",
        request.method,
        request.url.path,
        exc.status_code,
        exc.message,
    )
    return exc.to_response()


async def handle_request_validation_error(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    payload = ErrorResponse(error="Invalid request body", details=jsonable_encoder(exc.errors()))
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content=payload.model_dump(exclude_none=True),
    )


async def handle_unexpected_error(request: Request, exc: Exception) -> JSONResponse:
    """
    Last-resort handler: log with an error id and return a structured 500.
    """
    error_id = uuid.uuid4().hex
    logger.exception(
        "Unhandled error %s %s (error_id=%s)",
        request.method,
        request.url.path,
        error_id,
    )
    payload = ErrorResponse(
        error="Failed to process chat request",
        details={"error_id": error_id},
    )
    return JSONResponse(status_code=500, content=payload.model_dump())


def install_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(RelayError, handle_relay_error)
    app.add_exception_handler(RequestValidationError, handle_request_validation_error)
    app.add_exception_handler(Exception, handle_unexpected_error)


__all__ = [
    "AuthorizationError",
    "CredentialUnavailable",
    "ErrorResponse",
    "PersistenceError",
    "ProviderNotFound",
    "QuotaExceeded",
    "RelayError",
    "UpstreamError",
    "ValidationError",
    "install_error_handlers",
]
