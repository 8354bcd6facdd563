"""
Core Exceptions
================

Error taxonomy shared by every layer.

Each class carries a ``retriable`` flag read by the workflow engine: a
retriable error spends the step's retry budget, anything else aborts the run
at once.
"""

from typing import List, Optional


class ApplicationException(Exception):
    """Root of all helpdesk errors; ``details`` holds structured log context."""

    retriable: bool = True

    def __init__(self, message: str, details: Optional[dict] = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)


class NonRetriableError(ApplicationException):
    """Permanent failure; the workflow run is aborted without further attempts."""

    retriable = False


class RepositoryException(ApplicationException):
    """Data access failed."""


class StorageError(RepositoryException):
    """Transient failure reading or writing the ticket or user collections."""


class ValidationException(ApplicationException):
    """Input rejected before any work started."""

    retriable = False


class UnknownEventError(ValidationException):
    """No workflow function is registered for an event name."""

    def __init__(self, event_name: str):
        self.event_name = event_name
        super().__init__(f"No workflow registered for event '{event_name}'")


class NotFoundError(ApplicationException):
    """A ticket or user referenced by a workflow does not exist."""

    retriable = False

    def __init__(
        self,
        resource_type: str,
        resource_id: Optional[str] = None,
        details: Optional[dict] = None
    ):
        self.resource_type = resource_type
        self.resource_id = resource_id
        label = f"{resource_type} with id '{resource_id}'" if resource_id else resource_type
        super().__init__(f"{label} not found", details)


class ConfigurationException(ApplicationException):
    """Missing credentials or an invalid settings/rules file."""

    retriable = False


class ExternalServiceException(ApplicationException):
    """A call to a third-party service failed; the message is prefixed with its name."""

    def __init__(
        self,
        service_name: str,
        message: str,
        details: Optional[dict] = None
    ):
        self.service_name = service_name
        super().__init__(f"{service_name}: {message}", details)


class LLMException(ExternalServiceException):
    """The chat completion request itself failed."""

    def __init__(self, message: str, details: Optional[dict] = None):
        super().__init__("LLM", message, details)


class ClassificationError(ExternalServiceException):
    """
    Classification could not produce a valid verdict.

    Raised when the LLM call fails or times out, or when its answer is not
    parseable, schema-valid JSON even after the local repair pass.
    """

    def __init__(
        self,
        message: str,
        raw_excerpt: Optional[str] = None,
        issues: Optional[List[str]] = None,
        details: Optional[dict] = None
    ):
        self.raw_excerpt = raw_excerpt
        self.issues = issues or []
        super().__init__("Classification", message, details)


class NotificationError(ExternalServiceException):
    """The mail transport could not send a message."""

    def __init__(self, message: str, details: Optional[dict] = None):
        super().__init__("Mail", message, details)
