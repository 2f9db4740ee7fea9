"""Error taxonomy for dns-syncer.

Every failure that can happen during a cycle is one of these classes. Errors are
collected into the cycle report rather than raised out of the engine, and the
``fatal`` flag decides whether they affect the process exit status.
"""

from __future__ import annotations


class DNSSyncError(Exception):
    """Base class for all dns-syncer errors."""

    fatal = False


class ConfigError(DNSSyncError):
    """The configuration file cannot be loaded or is structurally invalid."""

    fatal = True


class ValidationError(DNSSyncError):
    """A record references something that does not exist or is inconsistent."""

    fatal = True

    def __init__(self, message: str, record: str = ""):
        super().__init__(message)
        self.record = record

    def __str__(self) -> str:
        message = super().__str__()
        return f"{self.record}: {message}" if self.record else message


class ResolutionError(DNSSyncError):
    """Dynamic content (public IP) could not be resolved and nothing is cached."""


class ProviderError(DNSSyncError):
    """Base class for failures reported by a provider adapter."""


class AuthError(ProviderError):
    """Credentials were rejected by the provider API."""

    fatal = True


class TransientError(ProviderError):
    """Network failure, timeout, rate limit or 5xx. Expected to heal next cycle."""


class CycleCancelledError(TransientError):
    """The cycle was cancelled before this target could be written."""


class PermanentError(ProviderError):
    """The request was rejected and will keep failing without a config change."""

    fatal = True


class NotFoundError(PermanentError):
    """The zone does not exist at the provider."""
