"""
Exception handlers that map domain exceptions to HTTP responses.

Register these handlers in main.py so services can raise domain exceptions
without knowing about HTTP.
"""
import logging
from fastapi import Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette import status

from shipyard.core.exceptions import (
    DomainException,
    NotFoundError,
    AlreadyExistsError,
    ValidationError,
    OperationError,
    ServiceUnavailableError,
)

logger = logging.getLogger(__name__)


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Log request validation errors and report them with the InvalidRequestError kind."""
    logger.warning(f"Validation error on {request.method} {request.url.path}: {exc.errors()}")
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={"detail": jsonable_encoder(exc.errors()), "error_type": "InvalidRequestError"},
    )


def status_code_for(exc: DomainException) -> int:
    """Pick the HTTP status code for a domain exception."""
    if isinstance(exc, NotFoundError):
        return status.HTTP_404_NOT_FOUND
    if isinstance(exc, AlreadyExistsError):
        return status.HTTP_409_CONFLICT
    if isinstance(exc, ValidationError):
        return status.HTTP_400_BAD_REQUEST
    if isinstance(exc, ServiceUnavailableError):
        return status.HTTP_503_SERVICE_UNAVAILABLE
    return status.HTTP_500_INTERNAL_SERVER_ERROR


async def domain_exception_handler(request: Request, exc: DomainException) -> JSONResponse:
    """
    Handle all domain exceptions and map to appropriate HTTP status codes.

    The response body always carries the human message in ``detail`` and the
    exception class name in ``error_type``.
    """
    status_code = status_code_for(exc)

    if isinstance(exc, (OperationError, ServiceUnavailableError)):
        logger.error(f"{exc.__class__.__name__} on {request.method} {request.url.path}: {exc.message}")
    elif not isinstance(exc, (NotFoundError, AlreadyExistsError, ValidationError)):
        logger.error(f"Unhandled domain exception: {exc.message}", extra={"details": exc.details})

    return JSONResponse(
        status_code=status_code,
        content={
            "detail": exc.message,
            "error_type": exc.__class__.__name__,
            **exc.details,
        },
    )


def register_exception_handlers(app):
    """
    Register all exception handlers with the FastAPI app.

    Call this function in main.py after creating the app instance.
    """
    # Base DomainException catches all subclasses
    app.add_exception_handler(DomainException, domain_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
