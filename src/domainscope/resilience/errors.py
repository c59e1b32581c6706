"""Error hierarchy and classification.

Enrichment errors carry an explicit ``retryable`` flag so the retry
policy never has to guess; everything else is classified from status
codes or message text.
"""

from __future__ import annotations

import asyncio
from enum import Enum


class DomainScopeError(Exception):
    """Base class for errors raised by the discovery engine."""


class InvalidPhaseTransitionError(DomainScopeError):
    def __init__(self, current: str, target: str) -> None:
        super().__init__(
            f"Cannot transition orchestrator from {current} to {target}"
        )
        self.current = current
        self.target = target


class InvalidHITLResponseError(DomainScopeError):
    """Response names an option the pending request never offered."""


class SchemaProposalError(DomainScopeError):
    pass


class EnrichmentError(DomainScopeError):
    """Failure reported by an enrichment provider."""

    def __init__(
        self,
        message: str,
        *,
        code: str = "UNKNOWN",
        provider: str = "",
        retryable: bool = False,
    ) -> None:
        super().__init__(message)
        self.code = code
        self.provider = provider
        self.retryable = retryable


class RateLimitError(EnrichmentError):
    def __init__(self, message: str, *, provider: str = "") -> None:
        super().__init__(
            message, code="RATE_LIMIT", provider=provider, retryable=True
        )


class AuthenticationError(EnrichmentError):
    def __init__(self, message: str, *, provider: str = "") -> None:
        super().__init__(
            message, code="AUTH_ERROR", provider=provider, retryable=False
        )


class ModelNotFoundError(EnrichmentError):
    def __init__(self, model: str, *, provider: str = "") -> None:
        super().__init__(
            f"Model not found: {model}",
            code="MODEL_NOT_FOUND",
            provider=provider,
            retryable=False,
        )
        self.model = model


class TransientEnrichmentError(EnrichmentError):
    def __init__(self, message: str, *, provider: str = "") -> None:
        super().__init__(
            message, code="TRANSIENT", provider=provider, retryable=True
        )


class ErrorClass(Enum):
    TRANSIENT = "transient"  # 429, network errors: retryable
    SERVER = "server"  # 500, 502, 503: retryable
    TIMEOUT = "timeout"  # deadline exceeded: retryable with backoff
    CLIENT = "client"  # 400, 401, 403: do NOT retry
    UNKNOWN = "unknown"  # unclassified: do NOT retry


def classify_error(error: Exception) -> ErrorClass:
    """Classify an error to determine handling strategy.

    Checks structured attributes first (status_code), falls back
    to string matching for untyped exceptions.
    """
    status_code = getattr(error, "status_code", None)
    if isinstance(status_code, int):
        if status_code == 429:
            return ErrorClass.TRANSIENT
        if 400 <= status_code < 500:
            return ErrorClass.CLIENT
        if 500 <= status_code < 600:
            return ErrorClass.SERVER

    if isinstance(error, (TimeoutError, asyncio.TimeoutError)):
        return ErrorClass.TIMEOUT

    msg = str(error).lower()

    if "timeout" in msg or "timed out" in msg:
        return ErrorClass.TIMEOUT
    if "429" in msg or "rate limit" in msg or "rate_limit" in msg:
        return ErrorClass.TRANSIENT
    if any(code in msg for code in ("500", "502", "503", "504")):
        return ErrorClass.SERVER
    if "econnrefused" in msg or "connection" in msg:
        return ErrorClass.TRANSIENT
    if any(code in msg for code in ("400", "401", "403", "404")):
        return ErrorClass.CLIENT

    return ErrorClass.UNKNOWN


_RETRYABLE = frozenset({
    ErrorClass.TRANSIENT,
    ErrorClass.SERVER,
    ErrorClass.TIMEOUT,
})


def is_retryable(error: BaseException) -> bool:
    """Return True if the error supports retry.

    Enrichment errors answer for themselves; other exceptions are
    classified.
    """
    if isinstance(error, EnrichmentError):
        return error.retryable
    if not isinstance(error, Exception):
        return False
    return classify_error(error) in _RETRYABLE
