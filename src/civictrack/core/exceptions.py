"""
Core Exceptions
================

Custom exceptions for the application following clean architecture principles.

These exceptions define domain-specific errors that can be caught and handled
appropriately at the application boundaries.
"""

from typing import Optional


class ApplicationException(Exception):
    """Base exception for all application errors."""

    def __init__(self, message: str, details: Optional[dict] = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)


class DomainException(ApplicationException):
    """Base exception for domain logic violations."""


class RepositoryException(ApplicationException):
    """Base exception for repository/data access errors."""


class ValidationException(ApplicationException):
    """Exception for validation errors (bad or missing field, bad date)."""


class InvalidReferenceException(ValidationException):
    """A foreign key points at a missing or inactive reference record."""

    def __init__(
        self,
        kind: str,
        reference_id: object,
        details: Optional[dict] = None
    ):
        self.kind = kind
        self.reference_id = reference_id
        super().__init__(
            f"Invalid {kind.replace('_', ' ')} reference: {reference_id}",
            details or {"kind": kind, "reference_id": reference_id}
        )


class ResourceLimitException(DomainException):
    """Exception when an operation would exceed a configured ceiling."""

    def __init__(self, resource: str, limit: int, details: Optional[dict] = None):
        self.resource = resource
        self.limit = limit
        super().__init__(
            f"{resource} limit of {limit} would be exceeded",
            details or {"resource": resource, "limit": limit}
        )


class ResourceNotFoundException(ApplicationException):
    """Exception when a requested resource is not found."""

    def __init__(
        self,
        resource_type: str,
        resource_id: Optional[str] = None,
        details: Optional[dict] = None
    ):
        self.resource_type = resource_type
        self.resource_id = resource_id
        message = f"{resource_type}"
        if resource_id:
            message += f" with id '{resource_id}'"
        message += " not found"
        super().__init__(message, details)


class StateConflictException(DomainException):
    """Exception when an operation is not allowed in the current workflow state."""

    def __init__(
        self,
        message: str,
        current_state: Optional[str] = None,
        details: Optional[dict] = None
    ):
        self.current_state = current_state
        super().__init__(message, details or {"current_state": current_state})


class ConfigurationException(ApplicationException):
    """Exception for configuration errors."""


class ExternalServiceException(ApplicationException):
    """Base exception for external service failures."""

    def __init__(
        self,
        service_name: str,
        message: str,
        details: Optional[dict] = None
    ):
        self.service_name = service_name
        super().__init__(f"{service_name}: {message}", details)


class NotificationDeliveryException(ExternalServiceException):
    """Exception for e-mail delivery failures."""

    def __init__(self, message: str, details: Optional[dict] = None):
        super().__init__("Mail Service", message, details)
