"""Error taxonomy for an audit run.

ConfigError and AuthError are fatal and abort the whole run. The transient
errors are retried by the fetcher and, once retries run out, recorded against
the single repository they happened on.
"""
from typing import Optional


class AuditError(Exception):
    """Base class for all audit errors."""
    pass


class ConfigError(AuditError):
    """Invalid options, repository list or environment. Fatal."""
    pass


class AuthError(AuditError):
    """The API rejected the access token. Fatal."""
    pass


class RateLimitError(AuditError):
    """Primary or secondary rate limit hit (HTTP 403/429)."""

    def __init__(self, message: str, retry_after: Optional[float] = None):
        super().__init__(message)
        self.retry_after = retry_after


class NetworkError(AuditError):
    """Connection failure or timeout."""
    pass


class ServerError(AuditError):
    """HTTP 5xx from the API."""

    def __init__(self, message: str, status: int):
        super().__init__(message)
        self.status = status


class ParseError(AuditError):
    """Fetched content could not be parsed as the expected lockfile."""
    pass
