"""
Custom exception handlers for consistent API error responses.

This module provides the exception bases shared by feature modules and the
handlers that turn them into a consistent JSON error body:

    {"detail": ..., "error_code": ..., "context": {...}, "path": ...}
"""

from fastapi import Request, status
from fastapi.responses import JSONResponse
from typing import Any, Dict, Optional
import logging

logger = logging.getLogger(__name__)


class DomainError(Exception):
    """
    Base for service-layer errors.

    Services raise these without knowing about HTTP; ``status_code`` and
    ``error_code`` are only used when the error crosses the API boundary.
    ``context`` carries the identifiers a caller needs to explain the failure.
    """

    status_code: int = status.HTTP_400_BAD_REQUEST
    error_code: str = "DOMAIN_ERROR"

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        error_code: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        if error_code is not None:
            self.error_code = error_code
        self.context = context or {}
        super().__init__(self.message)


async def handle_value_error(request: Request, exc: ValueError) -> JSONResponse:
    """Convert ValueError to consistent API response"""
    logger.warning(f"ValueError at {request.url.path}: {str(exc)}")
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={
            "detail": str(exc),
            "error_code": "VALIDATION_ERROR",
            "path": str(request.url.path),
        },
    )


async def handle_domain_error(request: Request, exc: DomainError) -> JSONResponse:
    """Convert service-layer errors to consistent API response"""
    logger.warning(
        f"{exc.__class__.__name__} at {request.url.path}: {exc.message} {exc.context}"
    )
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "detail": exc.message,
            "error_code": exc.error_code,
            "context": jsonable_context(exc.context),
            "path": str(request.url.path),
        },
    )


def jsonable_context(context: Dict[str, Any]) -> Dict[str, Any]:
    """Dates and enums in error context are rendered as strings"""
    rendered = {}
    for key, value in context.items():
        if value is None or isinstance(value, (bool, int, float, str)):
            rendered[key] = value
        elif isinstance(value, (list, tuple, set)):
            rendered[key] = [str(v) if not isinstance(v, (int, float)) else v for v in value]
        elif hasattr(value, "value"):
            rendered[key] = value.value
        elif hasattr(value, "isoformat"):
            rendered[key] = value.isoformat()
        else:
            rendered[key] = str(value)
    return rendered


def register_exception_handlers(app):
    """Register all exception handlers with the FastAPI app"""
    app.add_exception_handler(ValueError, handle_value_error)
    app.add_exception_handler(DomainError, handle_domain_error)
