"""
Error types for the Salesforce deals service.

Every service function raises one of these; only the deals route turns
them into the JSON error envelope.
"""
from typing import Optional


class SalesforceError(Exception):
    """Base class for all Salesforce deals errors."""
    pass


class AuthError(SalesforceError):
    """Raised when the OAuth token exchange is rejected."""

    def __init__(self, message: str, status_code: Optional[int] = None, body: Optional[str] = None):
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class ConfigurationError(AuthError):
    """Raised when a required credential is missing. Never retryable."""

    def __init__(self, message: str, missing: Optional[list] = None):
        super().__init__(message)
        self.missing = missing or []


class QueryError(SalesforceError):
    """Raised when a SOQL query is rejected by Salesforce."""

    def __init__(self, message: str, status_code: Optional[int] = None, body: Optional[str] = None):
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class DecodeError(QueryError):
    """Raised when a Salesforce response does not have the expected shape."""
    pass


class NotFoundError(SalesforceError):
    """Raised when a lookup that must match a record matched none."""
    pass


class ValidationError(SalesforceError):
    """Raised for an unknown action or a missing required parameter."""
    pass
