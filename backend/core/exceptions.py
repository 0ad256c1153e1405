"""
Exception Classes for the GrantMatch matching core.

Every error raised by the embedding, vector index and analysis clients is a
GrantMatchingError, so callers can tell AI-pipeline failures apart from
infrastructure errors (which propagate unchanged). Each class carries the HTTP
status the API layer answers with.
"""
from typing import Optional


class GrantMatchingError(Exception):
    """Base class for matching-pipeline errors."""

    status_code: int = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(GrantMatchingError):
    """Caller supplied malformed input (empty text, wrong dimension, empty batch)."""

    status_code = 400


class ProviderError(GrantMatchingError):
    """An embedding, chat or vector-store call failed or returned an unexpected shape."""

    status_code = 502


class ParseError(GrantMatchingError):
    """A provider answered but its payload could not be interpreted."""

    status_code = 502


class NotFoundError(GrantMatchingError):
    """Exception raised when a requested resource is not found."""

    status_code = 404

    def __init__(self, resource: str, id: Optional[str] = None):
        message = f"{resource} not found" + (f": {id}" if id else "")
        super().__init__(message)
        self.resource = resource
        self.id = id


class ConfigurationError(GrantMatchingError):
    """Required configuration (API keys, index name) is missing."""

    status_code = 500
