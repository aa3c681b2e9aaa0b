"""
Core Module
============

Shared core utilities and abstractions used across the application.

This module contains framework-agnostic code that defines the fundamental
building blocks of the system.
"""

from civictrack.core.exceptions import (
    ApplicationException,
    DomainException,
    RepositoryException,
    ValidationException,
    InvalidReferenceException,
    ResourceLimitException,
    ResourceNotFoundException,
    StateConflictException,
    ConfigurationException,
    ExternalServiceException,
    NotificationDeliveryException,
)

__all__ = [
    "ApplicationException",
    "DomainException",
    "RepositoryException",
    "ValidationException",
    "InvalidReferenceException",
    "ResourceLimitException",
    "ResourceNotFoundException",
    "StateConflictException",
    "ConfigurationException",
    "ExternalServiceException",
    "NotificationDeliveryException",
]
