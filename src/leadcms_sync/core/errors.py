"""Exception taxonomy for LeadCMS remote calls.

Transport failures are never retried in-loop; the next scheduled run
re-fetches from the last committed cursor.  Authentication failures are
a separate subclass so callers can ask for a new credential instead of
retrying.
"""

from __future__ import annotations


class LeadCMSError(Exception):
    """Base class for every error raised by leadcms_sync."""


class ConfigurationError(LeadCMSError):
    """Configuration is unusable for the requested operation."""


class TransportError(LeadCMSError):
    """A request failed: timeout, connection error, or unexpected status.

    Attributes:
        url: Request URL (without credentials).
        status_code: HTTP status, or ``None`` when no response arrived.
    """

    def __init__(
        self,
        message: str,
        url: str | None = None,
        status_code: int | None = None,
    ) -> None:
        super().__init__(message)
        self.url = url
        self.status_code = status_code


class AuthenticationError(TransportError):
    """Credential missing, invalid, or lacking permission (401/403)."""
