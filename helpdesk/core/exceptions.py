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
    """Exception for validation errors."""


class LLMOutputValidationException(ValidationException):
    """
    Model output did not match the expected JSON shape or enumerations.

    Never coerced to a default: the step that produced it fails.
    """

    def __init__(
        self,
        operation: str,
        message: str,
        raw_output: Optional[str] = None,
        details: Optional[dict] = None
    ):
        self.operation = operation
        self.raw_output = raw_output
        super().__init__(f"{operation}: {message}", details or {"operation": operation})


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


class ConfigurationException(ApplicationException):
    """Exception for configuration errors."""


class ExternalServiceException(ApplicationException):
    """Base exception for external service failures."""

    def __init__(
        self,
        service_name: str,
        message: str,
        details: Optional[dict] = None,
        retryable: bool = True
    ):
        self.service_name = service_name
        self.retryable = retryable
        super().__init__(f"{service_name}: {message}", details)


class LLMException(ExternalServiceException):
    """Exception for LLM API failures."""

    def __init__(self, message: str, details: Optional[dict] = None, retryable: bool = True):
        super().__init__("LLM Service", message, details, retryable)


class EmbeddingException(ExternalServiceException):
    """Exception for embedding provider failures."""

    def __init__(self, message: str, details: Optional[dict] = None, retryable: bool = True):
        super().__init__("Embedding Service", message, details, retryable)


class ModerationException(ExternalServiceException):
    """Exception for moderation provider failures."""

    def __init__(self, message: str, details: Optional[dict] = None, retryable: bool = True):
        super().__init__("Moderation Service", message, details, retryable)


class VectorStoreException(ExternalServiceException):
    """Exception for vector store failures."""

    def __init__(self, message: str, details: Optional[dict] = None, retryable: bool = True):
        super().__init__("Vector Store", message, details, retryable)
