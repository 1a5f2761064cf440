"""
Core Module
============

Framework-agnostic error types used by every module.
"""

from src.core.exceptions import (
    ApplicationException,
    DomainException,
    RepositoryException,
    DuplicateMessageException,
    ValidationException,
    ResourceNotFoundException,
    ConfigurationException,
    ExternalServiceException,
    LLMException,
)

__all__ = [
    "ApplicationException",
    "DomainException",
    "RepositoryException",
    "DuplicateMessageException",
    "ValidationException",
    "ResourceNotFoundException",
    "ConfigurationException",
    "ExternalServiceException",
    "LLMException",
]
