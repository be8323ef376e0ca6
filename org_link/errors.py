"""
Exception hierarchy for org-link.

Every error carries the process exit code the command line reports for it,
so the command layer can map failures without knowing each type.
"""

from typing import Optional


class OrgLinkError(Exception):
    """Base exception for org-link errors."""
    exit_code = 1


class InputError(OrgLinkError):
    """Raised when required identifiers are missing, conflicting or invalid."""
    exit_code = 2


class NotFound(OrgLinkError):
    """Raised when a directory identity or the credential file does not exist."""
    exit_code = 3


class UnresolvedIdentity(OrgLinkError):
    """Raised when the linkage attribute is empty but resolution is required."""
    exit_code = 4


class TransportError(OrgLinkError):
    """
    Raised when a remote call fails.

    Attributes:
        status: HTTP status code, or None when no response was received
        message: Message reported by the remote service or transport layer
    """
    exit_code = 5

    def __init__(self, message: str, status: Optional[int] = None):
        self.status = status
        self.message = message
        if status is not None:
            super().__init__(f"HTTP {status}: {message}")
        else:
            super().__init__(message)


class Timeout(TransportError):
    """Raised when a remote call exceeds its configured timeout."""
    pass


class AuthenticationError(TransportError):
    """Raised when the organisation service rejects the API credential."""
    pass


class Aborted(OrgLinkError):
    """Raised when a destructive change was not confirmed."""
    exit_code = 6


class ConfigurationError(OrgLinkError):
    """Raised when configuration is invalid or missing required fields."""
    exit_code = 7
