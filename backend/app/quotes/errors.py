"""Exceptions for the quote subsystem.

Provider-level failures are absorbed by the fetcher and turned into
fallback attempts. Only exhaustion reaches callers, and even then most
callers get ``None`` rather than an exception.
"""

from __future__ import annotations


class QuoteError(Exception):
    """Base class for quote subsystem errors."""


class ProviderUnavailable(QuoteError):
    """Provider has no credential or is flagged inactive. Skipped, not fatal."""

    def __init__(self, provider: str, reason: str = "no credential") -> None:
        self.provider = provider
        self.reason = reason
        super().__init__(f"{provider} unavailable: {reason}")


class ProviderNotFound(QuoteError, KeyError):
    """No provider is registered under this name."""

    def __init__(self, provider: str) -> None:
        self.provider = provider
        super().__init__(f"Unknown provider: {provider}")

    def __str__(self) -> str:
        return self.args[0]


class UpstreamCallFailed(QuoteError):
    """A single provider call failed (network, non-2xx, malformed payload)."""

    def __init__(self, provider: str, message: str, status_code: int | None = None) -> None:
        self.provider = provider
        self.status_code = status_code
        super().__init__(f"{provider}: {message}")


class AllProvidersExhausted(QuoteError):
    """Every candidate provider failed, or none is configured."""

    def __init__(self, symbol: str, attempted: list[str] | None = None) -> None:
        self.symbol = symbol
        self.attempted = attempted or []
        if self.attempted:
            detail = f"tried {', '.join(self.attempted)}"
        else:
            detail = "no provider configured"
        super().__init__(f"Unable to fetch live data for {symbol} ({detail})")


class TransportError(QuoteError):
    """Socket or frame-level failure on an upstream feed. Triggers reconnect."""


class ConfigurationError(QuoteError):
    """No usable provider, or invalid settings. Terminal until configuration changes."""
