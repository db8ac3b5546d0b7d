"""
Custom exception classes for the review notification backend.

This module defines the exception hierarchy used by the real-time layer:
- ValidationError for malformed notification candidates, ids and payloads
- TransportError for pushes that could not reach a live connection
- StoreError for MongoDB failures behind the notification and token stores
- LookupFailure for channel opens with a malformed or unknown user id
- ConfigurationError for invalid settings

Every exception carries an error code and an HTTP status so the REST layer
can turn it into the standard JSON error envelope.
"""

import traceback
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional


class ErrorCode(str, Enum):
    """
    Standardized error codes for the notification backend.

    Codes are grouped by concern so clients can branch on the prefix.
    """

    # Configuration Errors (1xxx)
    CONFIG_VALIDATION_FAILED = "1001"
    CONFIG_INVALID_VALUE = "1004"

    # Store Errors (2xxx)
    STORE_UNAVAILABLE = "2001"
    STORE_OPERATION_FAILED = "2002"
    STORE_RECORD_NOT_FOUND = "2003"

    # Validation Errors (3xxx)
    VALIDATION_FAILED = "3001"
    NOTIFICATION_FIELDS_MISSING = "3002"
    INVALID_IDENTIFIER = "3003"
    UNSUPPORTED_PLATFORM = "3004"
    INVALID_PAGINATION = "3005"

    # Transport Errors (7xxx)
    TRANSPORT_SEND_FAILED = "7001"
    TRANSPORT_TIMEOUT = "7002"
    REGISTRY_CLOSED = "7003"

    # Lookup Errors (8xxx)
    LOOKUP_MALFORMED_USER_ID = "8001"
    LOOKUP_UNKNOWN_USER = "8002"
    LOOKUP_MISSING_IDENTITY = "8003"

    # Feature Errors (9xxx)
    FEATURE_DISABLED = "9001"


class BaseCustomException(Exception):
    """
    Base exception class for all custom exceptions in the notification backend.

    Provides common functionality for error tracking, context preservation,
    and structured error information.
    """

    def __init__(
        self,
        message: str,
        error_code: ErrorCode,
        details: Optional[Dict[str, Any]] = None,
        http_status_code: int = 500,
        correlation_id: Optional[str] = None,
        user_message: Optional[str] = None
    ):
        """
        Initialize base exception with structured error information.

        Args:
            message: Technical error message for developers
            error_code: Standardized error code for identification
            details: Additional context and debugging information
            http_status_code: HTTP status code for API responses
            correlation_id: Request correlation ID for tracking
            user_message: User-friendly error message for display
        """
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.details = details or {}
        self.http_status_code = http_status_code
        self.correlation_id = correlation_id
        self.user_message = user_message or self._generate_user_message()
        self.traceback_info = traceback.format_exc()

    def _generate_user_message(self) -> str:
        """Generate a user-friendly error message based on the error code."""
        user_messages = {
            ErrorCode.STORE_UNAVAILABLE: "Notifications are temporarily unavailable. Please try again later.",
            ErrorCode.STORE_RECORD_NOT_FOUND: "The requested notification could not be found.",
            ErrorCode.NOTIFICATION_FIELDS_MISSING: "The notification is missing required fields.",
            ErrorCode.UNSUPPORTED_PLATFORM: "Device platform must be 'ios' or 'android'.",
            ErrorCode.FEATURE_DISABLED: "This feature is disabled in the current environment.",
        }
        return user_messages.get(self.error_code, self.message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for JSON serialization."""
        return {
            "error_code": self.error_code,
            "message": self.message,
            "user_message": self.user_message,
            "details": self.details,
            "http_status_code": self.http_status_code,
            "correlation_id": self.correlation_id,
        }

    def __str__(self) -> str:
        """String representation of the exception."""
        return f"[{self.error_code.value}] {self.message}"


class ConfigurationError(BaseCustomException):
    """Exception raised for configuration-related errors."""

    def __init__(
        self,
        message: str,
        error_code: ErrorCode = ErrorCode.CONFIG_VALIDATION_FAILED,
        config_section: Optional[str] = None,
        config_key: Optional[str] = None,
        config_value: Optional[Any] = None,
        **kwargs
    ):
        details = {
            "config_section": config_section,
            "config_key": config_key,
            "config_value": str(config_value) if config_value is not None else None,
        }
        super().__init__(
            message=message,
            error_code=error_code,
            details=details,
            http_status_code=400,
            **kwargs
        )


class ValidationError(BaseCustomException):
    """Exception raised for data validation errors."""

    def __init__(
        self,
        message: str,
        field_errors: Optional[List[Dict[str, Any]]] = None,
        error_code: ErrorCode = ErrorCode.VALIDATION_FAILED,
        **kwargs
    ):
        details = {
            "field_errors": field_errors or [],
        }
        super().__init__(
            message=message,
            error_code=error_code,
            details=details,
            http_status_code=422,
            **kwargs
        )


class StoreError(BaseCustomException):
    """Exception raised when the notification or token store cannot complete an operation."""

    def __init__(
        self,
        message: str,
        error_code: ErrorCode = ErrorCode.STORE_OPERATION_FAILED,
        collection_name: Optional[str] = None,
        operation: Optional[str] = None,
        **kwargs
    ):
        details = {
            "database_type": "mongodb",
            "collection_name": collection_name,
            "operation": operation,
        }

        status_map = {
            ErrorCode.STORE_UNAVAILABLE: 503,
            ErrorCode.STORE_RECORD_NOT_FOUND: 404,
        }

        super().__init__(
            message=message,
            error_code=error_code,
            details=details,
            http_status_code=status_map.get(error_code, 503),
            **kwargs
        )


class TransportError(BaseCustomException):
    """Exception raised when a push cannot be written to a live connection."""

    def __init__(
        self,
        message: str,
        error_code: ErrorCode = ErrorCode.TRANSPORT_SEND_FAILED,
        connection_id: Optional[str] = None,
        user_id: Optional[str] = None,
        **kwargs
    ):
        details = {
            "connection_id": connection_id,
            "user_id": user_id,
        }
        super().__init__(
            message=message,
            error_code=error_code,
            details=details,
            http_status_code=502,
            **kwargs
        )


class LookupFailure(BaseCustomException):
    """Exception raised when a channel open names a malformed or unknown user."""

    def __init__(
        self,
        message: str,
        error_code: ErrorCode = ErrorCode.LOOKUP_MALFORMED_USER_ID,
        user_id: Optional[str] = None,
        **kwargs
    ):
        details = {
            "user_id": user_id,
        }

        status_map = {
            ErrorCode.LOOKUP_MISSING_IDENTITY: 401,
        }

        super().__init__(
            message=message,
            error_code=error_code,
            details=details,
            http_status_code=status_map.get(error_code, 400),
            **kwargs
        )


class FeatureDisabledError(BaseCustomException):
    """Exception raised when a route is switched off for the current environment."""

    def __init__(self, message: str, feature: Optional[str] = None, **kwargs):
        super().__init__(
            message=message,
            error_code=ErrorCode.FEATURE_DISABLED,
            details={"feature": feature},
            http_status_code=403,
            **kwargs
        )


def get_exception_response_data(exception: BaseCustomException) -> Dict[str, Any]:
    """
    Extract response data from a custom exception for API responses.

    Args:
        exception: Custom exception instance

    Returns:
        Dictionary containing structured error data
    """
    return {
        "success": False,
        "error": {
            "code": exception.error_code.value,
            "message": exception.user_message,
            "details": exception.details,
        },
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "correlation_id": exception.correlation_id,
    }


# Convenience functions for common exception patterns

def raise_validation_error(
    message: str,
    field_errors: Optional[List[Dict[str, Any]]] = None,
    **kwargs
) -> None:
    """Raise a validation error with field-specific details."""
    raise ValidationError(
        message=message,
        field_errors=field_errors,
        **kwargs
    )


def raise_store_error(
    message: str,
    collection_name: Optional[str] = None,
    operation: Optional[str] = None,
    error_code: ErrorCode = ErrorCode.STORE_OPERATION_FAILED
) -> None:
    """Raise a store error with context."""
    raise StoreError(
        message=message,
        collection_name=collection_name,
        operation=operation,
        error_code=error_code
    )


def raise_invalid_identifier(field: str, value: Any) -> None:
    """Raise a validation error for an id that does not parse."""
    raise ValidationError(
        message=f"Invalid {field}: {value!r}",
        field_errors=[{"field": field, "value": str(value), "error": "malformed identifier"}],
        error_code=ErrorCode.INVALID_IDENTIFIER
    )
