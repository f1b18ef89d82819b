"""Centralized exception hierarchy for the content-engine package.

All domain-specific exceptions inherit from ``ContentEngineError`` so
callers can catch the entire family with a single ``except`` clause.
Provider SDK errors never cross the adapter boundary; they are translated
into ``ProviderCallError`` there.
"""

from __future__ import annotations

import asyncio
from enum import StrEnum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Iterator

# HTTP statuses that mean the request itself is wrong (bad payload, bad
# credentials); repeating it cannot succeed.
NON_RETRYABLE_STATUS_CODES = frozenset({400, 401, 403})


class ContentEngineError(Exception):
    """Base exception for all content-engine errors."""


# ---------------------------------------------------------------------------
# Provider errors
# ---------------------------------------------------------------------------


class ProviderError(ContentEngineError):
    """Base exception for upstream AI provider failures."""


class ProviderUnavailableError(ProviderError):
    """Raised when no enabled, credentialed provider supports a capability."""


class ProviderCallError(ProviderError):
    """Uniform error raised by provider adapters for a failed call.

    Attributes:
        provider: Key of the provider that failed.
        status_code: HTTP status reported by the upstream service, if any.
    """

    def __init__(
        self,
        provider: str,
        message: str,
        status_code: int | None = None,
    ) -> None:
        super().__init__(message)
        self.provider = provider
        self.status_code = status_code


class ProviderTimeoutError(ProviderCallError):
    """Raised when a provider call loses the race against its timeout."""

    def __init__(self, provider: str, timeout: float) -> None:
        super().__init__(provider, f"{provider} timed out after {timeout:g}s")
        self.timeout = timeout


class AllProvidersExhaustedError(ProviderError):
    """Raised when every usable provider failed or was skipped.

    The last underlying provider error (if any) is chained as
    ``__cause__`` and exposed as ``last_error``.
    """

    def __init__(
        self,
        attempted: list[str],
        last_error: BaseException | None = None,
    ) -> None:
        tried = ", ".join(attempted) if attempted else "none"
        message = f"All AI providers failed (attempted: {tried})"
        if last_error is not None:
            message = f"{message}: {last_error}"
        super().__init__(message)
        self.attempted = list(attempted)
        self.last_error = last_error


# ---------------------------------------------------------------------------
# Generation errors
# ---------------------------------------------------------------------------


class GenerationAbortedError(ContentEngineError):
    """Raised when the caller cancels an in-flight generation."""


class MalformedResponseError(ContentEngineError):
    """Raised when model output cannot be turned into JSON."""

    def __init__(self, message: str, text_prefix: str = "") -> None:
        super().__init__(message)
        self.text_prefix = text_prefix


# ---------------------------------------------------------------------------
# Schema errors
# ---------------------------------------------------------------------------


class SchemaNotFoundError(ContentEngineError):
    """Raised when a content schema name is not registered."""


# ---------------------------------------------------------------------------
# Classification
# ---------------------------------------------------------------------------


class ErrorCategory(StrEnum):
    """Coarse failure category reported per generated section."""

    PROVIDER_UNAVAILABLE = "provider_unavailable"
    PROVIDERS_EXHAUSTED = "providers_exhausted"
    TIMEOUT = "timeout"
    PROVIDER_ERROR = "provider_error"
    MALFORMED_RESPONSE = "malformed_response"
    SCHEMA_MISMATCH = "schema_mismatch"
    ABORTED = "aborted"
    UNKNOWN = "unknown"


def iter_error_chain(exc: BaseException) -> Iterator[BaseException]:
    """Yield ``exc`` followed by its ``__cause__`` chain (cycle-safe)."""
    seen: set[int] = set()
    current: BaseException | None = exc
    while current is not None and id(current) not in seen:
        seen.add(id(current))
        yield current
        current = current.__cause__


def categorize_error(exc: BaseException) -> ErrorCategory:
    """Map an exception to the category reported to callers.

    Args:
        exc: The exception raised while generating a section.

    Returns:
        The matching ``ErrorCategory``.
    """
    if isinstance(exc, (GenerationAbortedError, asyncio.CancelledError)):
        return ErrorCategory.ABORTED
    if isinstance(exc, ProviderUnavailableError):
        return ErrorCategory.PROVIDER_UNAVAILABLE
    if isinstance(exc, MalformedResponseError):
        return ErrorCategory.MALFORMED_RESPONSE
    if isinstance(exc, SchemaNotFoundError):
        return ErrorCategory.SCHEMA_MISMATCH
    if isinstance(exc, ProviderTimeoutError):
        return ErrorCategory.TIMEOUT
    if isinstance(exc, AllProvidersExhaustedError):
        if isinstance(exc.last_error, ProviderTimeoutError):
            return ErrorCategory.TIMEOUT
        return ErrorCategory.PROVIDERS_EXHAUSTED
    if isinstance(exc, ProviderError):
        return ErrorCategory.PROVIDER_ERROR
    return ErrorCategory.UNKNOWN


def is_retryable(exc: BaseException) -> bool:
    """Decide whether retrying the whole operation could help.

    Authentication and malformed-request failures (HTTP 400/401/403 anywhere
    in the cause chain), missing providers and caller aborts are final.

    Args:
        exc: The exception raised by the operation.

    Returns:
        True if the operation should be retried.
    """
    for err in iter_error_chain(exc):
        if isinstance(
            err,
            (ProviderUnavailableError, GenerationAbortedError, asyncio.CancelledError),
        ):
            return False
        status = getattr(err, "status_code", None) or getattr(err, "status", None)
        if isinstance(status, int) and status in NON_RETRYABLE_STATUS_CODES:
            return False
        if isinstance(err, AllProvidersExhaustedError) and err.last_error is not None:
            if not is_retryable(err.last_error):
                return False
    return True
