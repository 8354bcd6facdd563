"""
Core Module
============

Framework-agnostic building blocks shared by every module.
"""

from helpdesk.core.exceptions import (
    ApplicationException,
    NonRetriableError,
    RepositoryException,
    StorageError,
    ValidationException,
    UnknownEventError,
    NotFoundError,
    ConfigurationException,
    ExternalServiceException,
    LLMException,
    ClassificationError,
    NotificationError,
)

__all__ = [
    "ApplicationException",
    "NonRetriableError",
    "RepositoryException",
    "StorageError",
    "ValidationException",
    "UnknownEventError",
    "NotFoundError",
    "ConfigurationException",
    "ExternalServiceException",
    "LLMException",
    "ClassificationError",
    "NotificationError",
]
