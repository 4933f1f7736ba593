"""
Error taxonomy for the Tally service.

Provider faults (:class:`TransientProviderError`, :class:`AuthorizationError`)
never escape the aggregator; they only trigger the fallback path.
:class:`PreconditionError` is the one class that reaches callers, since it
signals caller misuse rather than an external-system fault.
"""

from __future__ import annotations

from typing import Any, Optional


class TallyError(Exception):
    """Base exception for all Tally errors."""

    def __init__(
        self,
        message: str,
        code: str = "internal_error",
        status_code: int = 500,
        details: Optional[dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.code = code
        self.status_code = status_code
        self.details = details or {}


class ProviderError(TallyError):
    """A provider backend call failed."""

    def __init__(
        self,
        message: str,
        provider: str = "unknown",
        code: str = "provider_error",
        details: Optional[dict[str, Any]] = None,
    ):
        super().__init__(message, code=code, status_code=502, details=details)
        self.provider = provider


class TransientProviderError(ProviderError):
    """Network, timeout or 5xx failure from a provider backend."""

    def __init__(
        self,
        message: str,
        provider: str = "unknown",
        details: Optional[dict[str, Any]] = None,
    ):
        super().__init__(message, provider=provider, code="provider_unavailable", details=details)


class AuthorizationError(ProviderError):
    """Credentials were rejected or have expired."""

    def __init__(
        self,
        message: str,
        provider: str = "unknown",
        details: Optional[dict[str, Any]] = None,
    ):
        super().__init__(message, provider=provider, code="provider_unauthorized", details=details)


class MalformedDataError(TallyError):
    """A backend returned a record that cannot be parsed."""

    def __init__(self, message: str, details: Optional[dict[str, Any]] = None):
        super().__init__(message, code="malformed_data", status_code=502, details=details)


class PreconditionError(TallyError):
    """The caller passed invalid arguments (e.g. an inverted date range)."""

    def __init__(self, message: str, details: Optional[dict[str, Any]] = None):
        super().__init__(message, code="precondition_failed", status_code=400, details=details)


class ConnectionNotFoundError(TallyError):
    """No active connection exists for the requested provider."""

    def __init__(self, message: str, details: Optional[dict[str, Any]] = None):
        super().__init__(message, code="not_found", status_code=404, details=details)
