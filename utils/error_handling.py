"""
Error taxonomy for the Atlas game core and the generic error payload used at
the service boundary.
"""

import logging
import random
import time
from enum import Enum
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)

GENERIC_RETRY_MESSAGE = "Something went wrong. Please try again in a moment."


class ErrorType(Enum):
    """Types of errors raised inside the core."""
    UPSTREAM_UNAVAILABLE = "upstream_unavailable"
    INVALID_GENERATED_CONTENT = "invalid_generated_content"
    INVALID_INPUT = "invalid_input"
    PROFILE_STORE = "profile_store"


class AtlasError(Exception):
    """Base exception for all Atlas core errors."""

    status_code = 500

    def __init__(self, message: str, error_type: ErrorType, details: Optional[Dict[str, Any]] = None):
        self.message = message
        self.error_type = error_type
        self.details = details or {}
        super().__init__(self.message)


class UpstreamUnavailableError(AtlasError):
    """The generator or the profile store cannot be reached."""

    status_code = 503

    def __init__(self, service: str, details: Optional[Dict[str, Any]] = None, message: Optional[str] = None):
        self.service = service
        super().__init__(
            message or f"{service} is currently unavailable",
            ErrorType.UPSTREAM_UNAVAILABLE,
            details,
        )


class ProfileStoreError(UpstreamUnavailableError):
    """A profile store read or write failed."""

    def __init__(self, operation: str, place_key: Optional[str] = None, cause: Optional[BaseException] = None):
        self.operation = operation
        self.place_key = place_key
        details = {"operation": operation, "place_key": place_key}
        if cause is not None:
            details["cause"] = f"{type(cause).__name__}: {cause}"
        super().__init__("profile store", details, message=f"Profile store {operation} failed")
        self.error_type = ErrorType.PROFILE_STORE


class InvalidGeneratedContentError(AtlasError):
    """Model output did not match the expected scenario shape. Retryable; never reaches callers."""

    status_code = 502

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, ErrorType.INVALID_GENERATED_CONTENT, details)


class InvalidInputError(AtlasError):
    """Missing or malformed input at the service boundary."""

    status_code = 400

    def __init__(self, message: str, field: Optional[str] = None):
        self.field = field
        super().__init__(message, ErrorType.INVALID_INPUT, {"field": field} if field else None)


def generate_error_id() -> str:
    """
    Generate a unique error ID for tracking errors.

    Returns:
        str: A unique error ID in format 'err_timestamp_random'
    """
    timestamp = int(time.time())
    random_suffix = random.randint(1000, 9999)
    return f"err_{timestamp}_{random_suffix}"


def create_error_payload(error: BaseException, message: Optional[str] = None) -> Dict[str, Any]:
    """
    Create a standardized error payload.

    The internal detail is logged under the error id and never copied into the
    payload. Input errors keep their own message since it is safe to show.

    Args:
        error: The exception being reported
        message: Optional user-friendly message (defaults to a generic retry prompt)

    Returns:
        dict: success flag, error id, user message and status code
    """
    error_id = generate_error_id()
    status_code = getattr(error, "status_code", 500)

    logger.error(f"Error ID {error_id}: {type(error).__name__}: {error}")

    if isinstance(error, InvalidInputError) and message is None:
        user_message = error.message
    else:
        user_message = message or GENERIC_RETRY_MESSAGE

    return {
        "success": False,
        "error_id": error_id,
        "message": user_message,
        "status_code": status_code,
    }
