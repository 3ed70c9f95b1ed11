"""
OEE Monitor - Custom Exception Classes

This module defines custom exception classes for the OEE Monitor API.
These exceptions provide structured error handling with proper HTTP status codes
and detailed error information for better API responses.
"""

from typing import Any, Dict, Optional
from fastapi import status


class OEEMonitorException(Exception):
    """Base exception class for OEE Monitor."""

    def __init__(
        self,
        message: str,
        error_code: str = "OEE_MONITOR_ERROR",
        status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR,
        details: Optional[Dict[str, Any]] = None
    ):
        self.message = message
        self.error_code = error_code
        self.status_code = status_code
        self.details = details or {}
        super().__init__(self.message)


class AuthenticationError(OEEMonitorException):
    """Exception raised for authentication failures."""

    def __init__(self, message: str = "Authentication failed", details: Optional[Dict[str, Any]] = None):
        super().__init__(
            message=message,
            error_code="AUTHENTICATION_ERROR",
            status_code=status.HTTP_401_UNAUTHORIZED,
            details=details
        )


class AuthorizationError(OEEMonitorException):
    """Exception raised for authorization failures."""

    def __init__(self, message: str = "Insufficient permissions", details: Optional[Dict[str, Any]] = None):
        super().__init__(
            message=message,
            error_code="AUTHORIZATION_ERROR",
            status_code=status.HTTP_403_FORBIDDEN,
            details=details
        )


class ValidationError(OEEMonitorException):
    """
    Exception raised for malformed production input.

    Field-level reasons are carried in ``details["fields"]`` so that entry
    forms can point the operator at the offending input.
    """

    def __init__(
        self,
        message: str = "Validation failed",
        fields: Optional[Dict[str, str]] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        merged = dict(details or {})
        if fields:
            merged["fields"] = fields
        self.fields = fields or {}
        super().__init__(
            message=message,
            error_code="VALIDATION_ERROR",
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            details=merged
        )


class NotFoundError(OEEMonitorException):
    """Exception raised when a resource is not found."""

    def __init__(self, resource: str = "Resource", resource_id: Optional[str] = None):
        message = f"{resource} not found"
        if resource_id:
            message += f" with ID: {resource_id}"

        super().__init__(
            message=message,
            error_code="NOT_FOUND",
            status_code=status.HTTP_404_NOT_FOUND,
            details={"resource": resource, "resource_id": resource_id}
        )


class DatabaseError(OEEMonitorException):
    """Exception raised for database operation failures."""

    def __init__(self, message: str = "Database operation failed", details: Optional[Dict[str, Any]] = None):
        super().__init__(
            message=message,
            error_code="DATABASE_ERROR",
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            details=details
        )


class ExternalServiceError(OEEMonitorException):
    """Exception raised for external service failures."""

    def __init__(self, service: str, message: str = "External service error", details: Optional[Dict[str, Any]] = None):
        super().__init__(
            message=f"{service}: {message}",
            error_code="EXTERNAL_SERVICE_ERROR",
            status_code=status.HTTP_502_BAD_GATEWAY,
            details={"service": service, **(details or {})}
        )


# OEE engine exceptions
class HistoryWriteError(OEEMonitorException):
    """Exception raised when a history entry could not be persisted."""

    def __init__(self, machine_id: str, message: str = "History write failed", details: Optional[Dict[str, Any]] = None):
        super().__init__(
            message=f"Machine {machine_id}: {message}",
            error_code="HISTORY_WRITE_ERROR",
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            details={"machine_id": machine_id, **(details or {})}
        )


class UndefinedShiftError(OEEMonitorException):
    """Exception raised when a timestamp falls outside every shift window."""

    def __init__(self, minute_of_day: int, details: Optional[Dict[str, Any]] = None):
        super().__init__(
            message=f"No shift covers minute {minute_of_day} of the day",
            error_code="UNDEFINED_SHIFT",
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            details={"minute_of_day": minute_of_day, **(details or {})}
        )


class ConfigurationError(OEEMonitorException):
    """Exception raised for missing or malformed thresholds and material rates."""

    def __init__(self, message: str = "Configuration error", details: Optional[Dict[str, Any]] = None):
        super().__init__(
            message=message,
            error_code="CONFIGURATION_ERROR",
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            details=details
        )


# Utility functions for exception handling
def handle_database_exception(e: Exception) -> OEEMonitorException:
    """Convert database exceptions to OEEMonitorException."""
    if "unique" in str(e).lower() or "duplicate key" in str(e).lower():
        return DatabaseError("Resource already exists", {"original_error": str(e)})
    elif "not null" in str(e).lower():
        return ValidationError("Required field is missing", details={"original_error": str(e)})
    else:
        return DatabaseError("Database operation failed", {"original_error": str(e)})
