"""Custom exceptions for the CrowdSec monitor."""

from typing import Any


class ConfigurationError(RuntimeError):
    """Raised at startup when required configuration is missing."""


class LAPIError(Exception):
    """Base class for failures talking to the CrowdSec Local API."""

    def __init__(self, action: str, message: str):
        self.action = action
        self.message = message
        super().__init__(f"Error {action}: {message}")


class LAPIResponseError(LAPIError):
    """The LAPI answered with an error status."""

    def __init__(self, action: str, status_code: int, body: Any = None):
        self.status_code = status_code
        self.body = body
        super().__init__(action, f"{status_code} - {body}")


class LAPIConnectionError(LAPIError):
    """No response was received (connection refused, timeout, ...)."""


class LAPIRequestError(LAPIError):
    """The request could not be built or authenticated."""
