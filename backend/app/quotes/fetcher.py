"""Quote fetching with provider failover."""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import AsyncIterator, Awaitable, Callable
from typing import Any

from .cache import QuoteCache
from .errors import AllProvidersExhausted, QuoteError, UpstreamCallFailed
from .interface import QuoteProvider, UpstreamFeed
from .models import Quote, SearchResult, Tick
from .registry import ProviderRegistry
from .usage import UsageRecorder

logger = logging.getLogger(__name__)


def normalize_symbol(symbol: str) -> str:
    return symbol.strip().upper()


class QuoteFetcher:
    """Gets quotes by trying providers strictly in selection order.

    A fresh cache hit short-circuits everything (no upstream call, no usage
    record). Otherwise each provider attempt is timed and recorded; the
    first success is cached and returned. Exhausting the list is a normal
    outcome and yields None.
    """

    def __init__(
        self,
        registry: ProviderRegistry,
        cache: QuoteCache,
        usage: UsageRecorder,
        timeout: float = 10.0,
        clock: Callable[[], float] = time.perf_counter,
    ) -> None:
        self._registry = registry
        self._cache = cache
        self._usage = usage
        self._timeout = timeout
        self._clock = clock

    @property
    def cache(self) -> QuoteCache:
        return self._cache

    async def get_quote(self, symbol: str) -> Quote | None:
        quote, _ = await self._get_quote(symbol)
        return quote

    async def require_quote(self, symbol: str) -> Quote:
        """Like get_quote, but raises AllProvidersExhausted instead of returning None."""
        quote, attempted = await self._get_quote(symbol)
        if quote is None:
            raise AllProvidersExhausted(normalize_symbol(symbol), attempted)
        return quote

    async def get_quotes(self, symbols: list[str]) -> dict[str, Quote]:
        """Fetch several symbols one after another. Misses are left out."""
        quotes: dict[str, Quote] = {}
        for symbol in dict.fromkeys(normalize_symbol(s) for s in symbols if s.strip()):
            quote = await self.get_quote(symbol)
            if quote is not None:
                quotes[symbol] = quote
        return quotes

    async def search(self, query: str) -> list[SearchResult]:
        """Search providers in order; the first non-empty result wins."""
        query = query.strip()
        if not query:
            raise ValueError("Search query must not be empty")

        for provider in self._registry.select_order():
            results = await self._attempt(provider, "search", provider.search, query)
            if results:
                return results
        return []

    # --- Internal ---

    async def _get_quote(self, symbol: str) -> tuple[Quote | None, list[str]]:
        symbol = normalize_symbol(symbol)
        if not symbol:
            return None, []

        cached = self._cache.get(symbol)
        if cached is not None:
            return cached, []

        providers = self._registry.select_order()
        if not providers:
            logger.warning("No quote provider configured; cannot fetch %s", symbol)
            return None, []

        attempted = []
        for provider in providers:
            attempted.append(provider.name)
            quote = await self._attempt(provider, "quote", provider.fetch_quote, symbol)
            if quote is not None:
                self._cache.put(symbol, quote)
                return quote, attempted

        logger.warning("All providers failed for %s (tried %s)", symbol, ", ".join(attempted))
        return None, attempted

    async def _attempt(
        self,
        provider: QuoteProvider,
        endpoint: str,
        call: Callable[[str], Awaitable[Any]],
        arg: str,
    ) -> Any:
        """One timed provider call. Returns the result, or None after recording the failure."""
        start = self._clock()
        status_code = 500
        try:
            result = await asyncio.wait_for(call(arg), timeout=self._timeout)
        except asyncio.TimeoutError:
            error = f"Timed out after {self._timeout:g}s"
        except UpstreamCallFailed as e:
            error = str(e)
            status_code = e.status_code or 500
        except QuoteError as e:
            error = str(e)
        except Exception as e:
            logger.exception("Unexpected error from %s %s(%s)", provider.name, endpoint, arg)
            error = f"{type(e).__name__}: {e}"
        else:
            latency_ms = (self._clock() - start) * 1000
            self._usage.record(provider.name, endpoint, latency_ms, 200)
            self._registry.mark_used(provider.name)
            return result

        latency_ms = (self._clock() - start) * 1000
        self._usage.record(provider.name, endpoint, latency_ms, status_code, error)
        logger.warning("%s %s failed for %s: %s", provider.name, endpoint, arg, error)
        return None


class PollingFeed(UpstreamFeed):
    """UpstreamFeed that polls the QuoteFetcher on a fixed interval.

    Used by the broker when no usable provider offers a WebSocket feed.
    Fetch failures are absorbed by the fetcher, so this feed never raises
    TransportError; a symbol with no data simply produces no tick.
    """

    def __init__(self, fetcher: QuoteFetcher, interval: float = 5.0) -> None:
        self._fetcher = fetcher
        self._interval = interval
        self._symbols: list[str] = []
        self._closed = False

    async def connect(self, symbols: list[str]) -> None:
        self._symbols = list(dict.fromkeys(symbols))
        self._closed = False
        logger.info("Polling feed started: %d symbols, %.1fs interval", len(self._symbols), self._interval)

    async def subscribe(self, symbols: list[str]) -> None:
        for symbol in symbols:
            if symbol not in self._symbols:
                self._symbols.append(symbol)

    async def unsubscribe(self, symbols: list[str]) -> None:
        self._symbols = [s for s in self._symbols if s not in symbols]

    async def ticks(self) -> AsyncIterator[Tick]:
        while not self._closed:
            for symbol in list(self._symbols):
                quote = await self._fetcher.get_quote(symbol)
                if quote is not None and not self._closed:
                    yield Tick(symbol=quote.symbol, price=quote.price, volume=quote.volume)
            await asyncio.sleep(self._interval)

    async def close(self) -> None:
        self._closed = True
