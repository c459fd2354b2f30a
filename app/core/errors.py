"""
Standardized error response system.

Provides consistent error responses across all API endpoints.
"""
import uuid
from typing import Any, Dict, Optional

from fastapi import HTTPException, Request, status
from fastapi.responses import JSONResponse

from app.core.exceptions import LAPIConnectionError, LAPIError, LAPIResponseError


class ErrorCode:
    """Standard error codes."""

    # Validation errors
    VALIDATION_ERROR = "VALIDATION_ERROR"

    # Authentication
    UNAUTHORIZED = "UNAUTHORIZED"

    # Resource errors
    NOT_FOUND = "NOT_FOUND"

    # External service errors
    EXTERNAL_SERVICE_ERROR = "EXTERNAL_SERVICE_ERROR"
    EXTERNAL_SERVICE_UNAVAILABLE = "EXTERNAL_SERVICE_UNAVAILABLE"

    # System errors
    INTERNAL_ERROR = "INTERNAL_ERROR"


class ErrorResponse:
    """Standard error response format."""

    @staticmethod
    def create(
        code: str,
        message: str,
        status_code: int = 500,
        details: Optional[Dict[str, Any]] = None,
        request_id: Optional[str] = None,
    ) -> JSONResponse:
        """
        Create a standardized error response.

        Args:
            code: Machine-readable error code
            message: Human-readable error message
            status_code: HTTP status code
            details: Additional error details (optional)
            request_id: Request correlation ID (optional)

        Returns:
            JSONResponse with standard error format
        """
        error_data: Dict[str, Any] = {
            "error": {
                "code": code,
                "message": message,
            }
        }

        if details:
            error_data["error"]["details"] = details

        if request_id:
            error_data["error"]["request_id"] = request_id

        return JSONResponse(status_code=status_code, content=error_data)


class HTTPError(HTTPException):
    """
    Enhanced HTTPException with standard error response format.

    Usage:
        raise HTTPError(
            status_code=404,
            code=ErrorCode.NOT_FOUND,
            message="Alert not found",
            details={"alert_id": 123}
        )
    """

    def __init__(
        self,
        status_code: int,
        code: str,
        message: str,
        details: Optional[Dict[str, Any]] = None,
    ):
        self.code = code
        self.message = message
        self.details = details
        super().__init__(status_code=status_code, detail=message)


async def http_error_handler(request: Request, exc: HTTPError) -> JSONResponse:
    """
    Handle HTTPError exceptions and return standardized error response.

    This should be added to FastAPI exception handlers.
    """
    request_id = getattr(request.state, "request_id", str(uuid.uuid4()))

    return ErrorResponse.create(
        code=exc.code,
        message=exc.message,
        status_code=exc.status_code,
        details=exc.details,
        request_id=request_id,
    )


# Convenience functions for common errors

def not_found(resource: str, details: Optional[Dict[str, Any]] = None) -> HTTPError:
    """Create a 404 NOT_FOUND error."""
    return HTTPError(
        status_code=status.HTTP_404_NOT_FOUND,
        code=ErrorCode.NOT_FOUND,
        message=f"{resource} not found",
        details=details,
    )


def unauthorized(message: str = "Unauthorized", details: Optional[Dict[str, Any]] = None) -> HTTPError:
    """Create a 401 UNAUTHORIZED error."""
    return HTTPError(
        status_code=status.HTTP_401_UNAUTHORIZED,
        code=ErrorCode.UNAUTHORIZED,
        message=message,
        details=details,
    )


def validation_error(message: str, details: Optional[Dict[str, Any]] = None) -> HTTPError:
    """Create a 400 VALIDATION_ERROR error."""
    return HTTPError(
        status_code=status.HTTP_400_BAD_REQUEST,
        code=ErrorCode.VALIDATION_ERROR,
        message=message,
        details=details,
    )


def upstream_error(resource: str, exc: LAPIError) -> HTTPError:
    """
    Translate a failed LAPI action into an API error.

    Upstream error statuses are passed through so callers see what the LAPI
    answered; a missing response becomes 502.
    """
    if isinstance(exc, LAPIResponseError):
        if exc.status_code == status.HTTP_404_NOT_FOUND:
            return not_found(resource)
        return HTTPError(
            status_code=exc.status_code,
            code=ErrorCode.EXTERNAL_SERVICE_ERROR,
            message=exc.message,
            details={"action": exc.action},
        )

    if isinstance(exc, LAPIConnectionError):
        return HTTPError(
            status_code=status.HTTP_502_BAD_GATEWAY,
            code=ErrorCode.EXTERNAL_SERVICE_UNAVAILABLE,
            message="CrowdSec LAPI did not respond",
            details={"action": exc.action},
        )

    return HTTPError(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        code=ErrorCode.INTERNAL_ERROR,
        message=exc.message,
        details={"action": exc.action},
    )
