# backend/app/core/exceptions.py
"""
Domain-specific exceptions for the ClassBook backend.

These exceptions provide clear, business-focused error messages
that can be caught and handled appropriately at the API layer.
"""

from typing import Any, Dict, Optional

from fastapi import HTTPException, status

HTTP_422_UNPROCESSABLE: int = getattr(status, "HTTP_422_UNPROCESSABLE_CONTENT", 422)


class DomainException(Exception):
    """Base exception for all domain-specific errors."""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.message = message
        self.code = code or self.__class__.__name__
        self.details = details or {}
        super().__init__(self.message)

    def to_http_exception(self) -> HTTPException:
        """Convert to HTTPException using the class status code."""
        return HTTPException(
            status_code=self.status_code,
            detail={
                "message": self.message,
                "code": self.code,
                "details": self.details,
            },
        )


class ValidationException(DomainException):
    """Raised when business validation fails."""

    status_code = status.HTTP_400_BAD_REQUEST


class NotFoundException(DomainException):
    """Raised when a requested resource is not found."""

    status_code = status.HTTP_404_NOT_FOUND


class ConflictException(DomainException):
    """Raised when there's a conflict with existing data."""

    status_code = status.HTTP_409_CONFLICT


class BusinessRuleException(DomainException):
    """Raised when a business rule is violated."""

    status_code = HTTP_422_UNPROCESSABLE


class UnauthorizedException(DomainException):
    """Raised when user is not authenticated."""

    status_code = status.HTTP_401_UNAUTHORIZED


class ForbiddenException(DomainException):
    """Raised when user lacks permission for an action."""

    status_code = status.HTTP_403_FORBIDDEN


class ServiceException(DomainException):
    """Raised when a service operation fails."""

    def to_http_exception(self) -> HTTPException:
        return HTTPException(
            status_code=self.status_code,
            detail={
                "message": self.message or "An error occurred processing your request",
                "code": self.code,
                "details": self.details if self.details else {},
            },
        )


# Specific business exceptions


class UnauthorizedActionException(ForbiddenException):
    """Raised when the caller may not act on a course or booking."""

    def __init__(
        self,
        message: str = "You are not allowed to perform this action",
        *,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, code="UNAUTHORIZED", details=details)


class InvalidPolicyException(ValidationException):
    """Raised when booking policy values are out of range."""

    def __init__(self, message: str, *, field: Optional[str] = None, value: Any = None):
        details: Dict[str, Any] = {}
        if field is not None:
            details = {"field": field, "value": value}
        super().__init__(message=message, code="INVALID_POLICY", details=details)


class SlotNoLongerAvailableException(ConflictException):
    """Raised when a requested slot was taken or is no longer offered."""

    def __init__(
        self,
        message: Optional[str] = None,
        *,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(
            message=message or "This time slot is no longer available",
            code="SLOT_NO_LONGER_AVAILABLE",
            details=details or {},
        )


class InsufficientCreditsException(BusinessRuleException):
    """Raised when a student's balance does not cover the booking cost."""

    def __init__(self, required: Any, available: Any):
        super().__init__(
            message=f"Insufficient credits: {required} required, {available} available",
            code="INSUFFICIENT_CREDITS",
            details={"required": str(required), "available": str(available)},
        )


class TransientFailureException(ServiceException):
    """Raised when storage or a lock backend is temporarily unavailable."""

    status_code = status.HTTP_503_SERVICE_UNAVAILABLE

    def __init__(
        self,
        message: str = "Service temporarily unavailable. Please retry.",
        *,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, code="TRANSIENT_FAILURE", details=details)

    def to_http_exception(self) -> HTTPException:
        exc = super().to_http_exception()
        exc.headers = {"Retry-After": "2"}
        return exc


class InvalidTransitionException(ValidationException):
    """Raised when a booking workflow step is not legal in the current state."""

    def __init__(self, state: str, action: str, reason: Optional[str] = None):
        message = f"Cannot {action} while {state}"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(
            message=message,
            code="INVALID_TRANSITION",
            details={"state": state, "action": action},
        )


class RepositoryException(Exception):
    """
    Exception raised for repository layer errors.

    This exception is used when data access operations fail,
    such as database connection issues, query failures, or
    constraint violations.
    """


class IntegrityConflictException(RepositoryException):
    """Raised by repositories when a uniqueness constraint rejects a write."""
