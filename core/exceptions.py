"""
Custom exceptions for the deliverability engine
Provides structured error handling across all components
"""
from typing import Any, Dict, Optional


class DeliverabilityError(Exception):
    """Base exception for all deliverability errors"""

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        status_code: int = 500,
    ):
        super().__init__(message)
        self.message = message
        self.error_code = error_code or self.__class__.__name__
        self.details = details or {}
        self.status_code = status_code

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for API responses"""
        return {
            "error": self.error_code,
            "message": self.message,
            "details": self.details,
        }


class ValidationError(DeliverabilityError):
    """Raised when input validation fails"""

    def __init__(self, message: str, field: Optional[str] = None, **details):
        super().__init__(
            message=message,
            error_code="VALIDATION_ERROR",
            details={"field": field, **details} if field else details,
            status_code=400,
        )


class NotFoundError(DeliverabilityError):
    """Raised when a resource is not found"""

    def __init__(self, resource: str, identifier: Any):
        super().__init__(
            message=f"{resource} not found: {identifier}",
            error_code="NOT_FOUND",
            details={"resource": resource, "identifier": str(identifier)},
            status_code=404,
        )


class ConfigurationError(DeliverabilityError):
    """Raised when configuration is invalid or missing"""

    def __init__(self, message: str, setting: Optional[str] = None):
        super().__init__(
            message=message,
            error_code="CONFIGURATION_ERROR",
            details={"setting": setting} if setting else {},
            status_code=500,
        )


class DatabaseError(DeliverabilityError):
    """Raised when database operations fail

    ``retryable`` marks failures the caller may safely retry, e.g. a webhook
    handler returning a 5xx so the provider redelivers the event.
    """

    def __init__(
        self,
        message: str,
        operation: Optional[str] = None,
        retryable: bool = False,
        **details,
    ):
        super().__init__(
            message=message,
            error_code="DATABASE_ERROR",
            details={"operation": operation, "retryable": retryable, **details}
            if operation
            else {"retryable": retryable, **details},
            status_code=503 if retryable else 500,
        )
        self.retryable = retryable
