"""
Custom exceptions for the Community Events API.
"""

from typing import Any, Dict, Optional, List
from enum import Enum


class ErrorCode(str, Enum):
    """Standard error codes for the platform."""

    # General errors
    INTERNAL_ERROR = "INTERNAL_ERROR"
    VALIDATION_ERROR = "VALIDATION_ERROR"
    NOT_FOUND = "NOT_FOUND"
    UNAUTHORIZED = "UNAUTHORIZED"
    FORBIDDEN = "FORBIDDEN"
    CONFLICT = "CONFLICT"

    # Registration errors
    ALREADY_REGISTERED = "ALREADY_REGISTERED"
    EVENT_AT_CAPACITY = "EVENT_AT_CAPACITY"
    EVENT_IN_PAST = "EVENT_IN_PAST"
    EVENT_NOT_OPEN = "EVENT_NOT_OPEN"
    ATTENDEE_NOT_CONFIRMED = "ATTENDEE_NOT_CONFIRMED"

    # Concurrency errors
    CONCURRENCY_CONFLICT = "CONCURRENCY_CONFLICT"
    TRANSACTION_TIMEOUT = "TRANSACTION_TIMEOUT"

    # Rate limiting
    RATE_LIMIT_EXCEEDED = "RATE_LIMIT_EXCEEDED"

    # External service errors
    EXTERNAL_SERVICE_ERROR = "EXTERNAL_SERVICE_ERROR"


class CommunityEventsError(Exception):
    """Base exception class for the Community Events API."""

    def __init__(
        self,
        message: str,
        error_code: ErrorCode = ErrorCode.INTERNAL_ERROR,
        details: Optional[Dict[str, Any]] = None,
        suggestions: Optional[List[str]] = None,
        retry_after: Optional[int] = None
    ):
        """Initialize the exception with comprehensive error information."""
        self.message = message
        self.error_code = error_code
        self.details = details or {}
        self.suggestions = suggestions or []
        self.retry_after = retry_after
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for API responses."""
        result = {
            "code": self.error_code.value,
            "message": self.message,
        }

        if self.details:
            result["details"] = self.details

        if self.suggestions:
            result["suggestions"] = self.suggestions

        if self.retry_after:
            result["retry_after"] = self.retry_after

        return result


class ValidationError(CommunityEventsError):
    """Exception raised for validation errors."""

    def __init__(
        self,
        message: str,
        field_errors: Optional[Dict[str, List[str]]] = None,
        error_code: ErrorCode = ErrorCode.VALIDATION_ERROR,
        details: Optional[Dict[str, Any]] = None,
        **kwargs
    ):
        merged = dict(details or {})
        if field_errors:
            merged["field_errors"] = field_errors
        super().__init__(message, error_code=error_code, details=merged or None, **kwargs)
        self.field_errors = field_errors or {}


class NotFoundError(CommunityEventsError):
    """Base exception for resource not found errors."""

    def __init__(self, message: str, resource_type: Optional[str] = None, resource_id: Optional[str] = None, **kwargs):
        super().__init__(
            message,
            error_code=ErrorCode.NOT_FOUND,
            details={"resource_type": resource_type, "resource_id": resource_id} if resource_type else None,
            **kwargs
        )


class EventNotFoundError(NotFoundError):
    """Exception raised when an event is not found."""

    def __init__(self, event_id: str, **kwargs):
        super().__init__(
            f"Event {event_id} not found",
            resource_type="event",
            resource_id=str(event_id),
            suggestions=["Check the event ID", "Browse available events"],
            **kwargs
        )


class UserNotFoundError(NotFoundError):
    """Exception raised when a user is not found."""

    def __init__(self, user_id: str, **kwargs):
        super().__init__(
            f"User {user_id} not found",
            resource_type="user",
            resource_id=str(user_id),
            **kwargs
        )


class AttendeeNotFoundError(NotFoundError):
    """Exception raised when an attendance record is not found."""

    def __init__(self, attendee_id: str, **kwargs):
        super().__init__(
            f"Attendance record {attendee_id} not found",
            resource_type="attendee",
            resource_id=str(attendee_id),
            **kwargs
        )


class RegistrationNotFoundError(NotFoundError):
    """Exception raised when a user is not registered for an event."""

    def __init__(self, event_id: str, user_id: str, **kwargs):
        super().__init__(
            "not registered",
            resource_type="registration",
            resource_id=f"{event_id}:{user_id}",
            suggestions=["Register for the event first"],
            **kwargs
        )


class AuthenticationError(CommunityEventsError):
    """Exception raised for authentication failures."""

    def __init__(self, message: str = "Authentication failed", **kwargs):
        super().__init__(
            message,
            error_code=ErrorCode.UNAUTHORIZED,
            suggestions=["Check your credentials", "Login again"],
            **kwargs
        )


class AuthorizationError(CommunityEventsError):
    """Exception raised for authorization failures."""

    def __init__(self, message: str = "Access denied", required_permission: Optional[str] = None, **kwargs):
        super().__init__(
            message,
            error_code=ErrorCode.FORBIDDEN,
            details={"required_permission": required_permission} if required_permission else None,
            suggestions=["Contact an administrator for access"],
            **kwargs
        )


class ConflictError(CommunityEventsError):
    """Exception raised when a resource already exists."""

    def __init__(self, message: str, **kwargs):
        super().__init__(message, error_code=ErrorCode.CONFLICT, **kwargs)


class AlreadyRegisteredError(ValidationError):
    """Exception raised when a user registers twice for the same event."""

    def __init__(self, event_id: str, user_id: str, **kwargs):
        super().__init__(
            "already registered",
            error_code=ErrorCode.ALREADY_REGISTERED,
            details={"event_id": str(event_id), "user_id": str(user_id)},
            **kwargs
        )


class EventAtCapacityError(ValidationError):
    """Exception raised when an event has no seats left."""

    def __init__(self, event_id: str, capacity: int, **kwargs):
        super().__init__(
            "event at capacity",
            error_code=ErrorCode.EVENT_AT_CAPACITY,
            details={"event_id": str(event_id), "capacity": capacity},
            suggestions=["Check similar events", "Try again later in case a seat frees up"],
            **kwargs
        )


class EventInPastError(ValidationError):
    """Exception raised when registering for an event that already started."""

    def __init__(self, event_id: str, **kwargs):
        super().__init__(
            "event in past",
            error_code=ErrorCode.EVENT_IN_PAST,
            details={"event_id": str(event_id)},
            **kwargs
        )


class EventNotOpenError(ValidationError):
    """Exception raised when an event is cancelled or unpublished."""

    def __init__(self, event_id: str, reason: str, **kwargs):
        super().__init__(
            reason,
            error_code=ErrorCode.EVENT_NOT_OPEN,
            details={"event_id": str(event_id)},
            **kwargs
        )


class AttendeeNotConfirmedError(ValidationError):
    """Exception raised when checking in an attendee that is not confirmed."""

    def __init__(self, attendee_id: str, current_status: str, **kwargs):
        super().__init__(
            "attendee not confirmed",
            error_code=ErrorCode.ATTENDEE_NOT_CONFIRMED,
            details={"attendee_id": str(attendee_id), "current_status": current_status},
            suggestions=["Confirm the attendee before checking them in"],
            **kwargs
        )


class ConcurrencyError(CommunityEventsError):
    """Exception raised for concurrency-related issues."""

    def __init__(self, message: str, retry_after: int = 1, **kwargs):
        kwargs.setdefault("error_code", ErrorCode.CONCURRENCY_CONFLICT)
        super().__init__(
            message,
            retry_after=retry_after,
            suggestions=["Check whether the operation took effect before retrying"],
            **kwargs
        )


class TransactionTimeoutError(ConcurrencyError):
    """Exception raised when a transaction exceeds its time budget."""

    def __init__(self, operation: str, timeout: float, **kwargs):
        super().__init__(
            f"{operation} did not complete within {timeout:g}s",
            error_code=ErrorCode.TRANSACTION_TIMEOUT,
            details={"operation": operation, "timeout": timeout},
            **kwargs
        )


class RateLimitError(CommunityEventsError):
    """Exception raised when a client exceeds a request rate limit."""

    def __init__(self, limit: int, window: int, retry_after: int, **kwargs):
        super().__init__(
            f"Rate limit exceeded: {limit} requests per {window} seconds",
            error_code=ErrorCode.RATE_LIMIT_EXCEEDED,
            details={"limit": limit, "window": window},
            retry_after=retry_after,
            suggestions=[f"Wait {retry_after} seconds before retrying"],
            **kwargs
        )


class ExternalServiceError(CommunityEventsError):
    """Exception raised for external service failures."""

    def __init__(self, service_name: str, message: str, status_code: Optional[int] = None, **kwargs):
        kwargs.setdefault("error_code", ErrorCode.EXTERNAL_SERVICE_ERROR)
        kwargs.setdefault("details", {"service_name": service_name, "status_code": status_code})
        super().__init__(
            f"{service_name} service error: {message}",
            suggestions=["Try again later", "Contact support if problem persists"],
            **kwargs
        )

