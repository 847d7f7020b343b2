"""Abstract interfaces for quote providers and upstream feeds."""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import AsyncIterator

from .models import ProviderInfo, SearchResult, StreamConfig, Tick


class QuoteProvider(ABC):
    """Capability set every upstream quote provider implements.

    The registry and fetcher work only against this interface; nothing
    downstream branches on a provider's name.

    Lifecycle:
        provider = FinnhubProvider(info)
        quote = await provider.fetch_quote("AAPL")
        results = await provider.search("apple")
        feed = provider.create_feed()   # None for polling-only providers
        # ... app shutting down ...
        await provider.close()
    """

    def __init__(self, info: ProviderInfo) -> None:
        self.info = info

    @property
    def name(self) -> str:
        return self.info.name

    @abstractmethod
    async def fetch_quote(self, symbol: str):
        """Return a normalized Quote for ``symbol``.

        Raises UpstreamCallFailed on network errors, non-2xx responses,
        provider error payloads, or payloads with no usable price.
        """

    @abstractmethod
    async def search(self, query: str) -> list[SearchResult]:
        """Return matching symbols (at most 20). Raises UpstreamCallFailed."""

    def stream_config(self) -> StreamConfig | None:
        """WebSocket endpoint for this provider, or None if it only supports polling."""
        return None

    def create_feed(self) -> UpstreamFeed | None:
        """Create a fresh, unconnected WebSocket feed, or None if unsupported."""
        return None

    async def close(self) -> None:
        """Release HTTP sessions. Safe to call multiple times."""


class UpstreamFeed(ABC):
    """A single upstream push connection, as seen by the RealtimeBroker.

    A feed is single-use: the broker creates a new one for every
    (re)connect. Transport-level failures surface as TransportError from
    ``connect`` or while iterating ``ticks``.
    """

    @abstractmethod
    async def connect(self, symbols: list[str]) -> None:
        """Open the connection and subscribe to ``symbols`` (including any auth handshake)."""

    @abstractmethod
    async def subscribe(self, symbols: list[str]) -> None:
        """Add symbols on a live connection."""

    @abstractmethod
    async def unsubscribe(self, symbols: list[str]) -> None:
        """Remove symbols on a live connection."""

    @abstractmethod
    def ticks(self) -> AsyncIterator[Tick]:
        """Yield ticks until the connection closes. Raises TransportError on failure."""

    @abstractmethod
    async def close(self) -> None:
        """Close the connection. Safe to call multiple times."""
