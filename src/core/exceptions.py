"""
Core Exceptions
================

Error hierarchy shared by every layer of the grouping service.

Services raise these; the HTTP layer maps them to status codes
(not found -> 404, validation/domain -> 400, anything else -> 500).
"""

from typing import Optional


class ApplicationException(Exception):
    """Root of all errors raised on purpose by this service."""

    def __init__(self, message: str, details: Optional[dict] = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)


class DomainException(ApplicationException):
    """A grouping rule was violated."""


class RepositoryException(ApplicationException):
    """Ticket or message storage failed."""


class DuplicateMessageException(RepositoryException):
    """The (channel_id, source_ts) pair is already stored."""

    def __init__(self, channel_id: str, source_ts: str):
        self.channel_id = channel_id
        self.source_ts = source_ts
        super().__init__(
            f"Message {source_ts} in channel {channel_id} already stored",
            {"channel_id": channel_id, "source_ts": source_ts}
        )


class ValidationException(ApplicationException):
    """Caller supplied an invalid update or payload."""


class ResourceNotFoundException(ApplicationException):
    """A ticket (or other resource) does not exist."""

    def __init__(self, resource_type: str, resource_id: Optional[str] = None):
        self.resource_type = resource_type
        self.resource_id = resource_id
        label = f"{resource_type} {resource_id}" if resource_id else resource_type
        super().__init__(
            f"{label} not found",
            {"resource_type": resource_type, "resource_id": resource_id}
        )


class ConfigurationException(ApplicationException):
    """Required settings are missing or invalid."""


class ExternalServiceException(ApplicationException):
    """A call to a third-party service failed."""

    def __init__(self, service_name: str, message: str, details: Optional[dict] = None):
        self.service_name = service_name
        super().__init__(f"{service_name}: {message}", details)


class LLMException(ExternalServiceException):
    """Chat completion failed or timed out."""

    def __init__(self, message: str, details: Optional[dict] = None):
        super().__init__("LLM", message, details)
