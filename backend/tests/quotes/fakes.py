"""Fake providers and feeds so no test touches the network."""

import asyncio
import json

import websockets

from app.quotes.broker import RealtimeBroker
from app.quotes.cache import QuoteCache
from app.quotes.errors import UpstreamCallFailed
from app.quotes.fetcher import QuoteFetcher
from app.quotes.interface import QuoteProvider, UpstreamFeed
from app.quotes.models import ProviderInfo, Quote, StreamConfig
from app.quotes.registry import ProviderRegistry
from app.quotes.usage import UsageRecorder


def make_quote(symbol: str, price: float, provider: str = "fake") -> Quote:
    return Quote(symbol=symbol, price=price, previous_close=price, as_of="2024-02-10", provider=provider)


class FakeClock:
    """Manually advanced clock for TTL tests."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeFeed(UpstreamFeed):
    """Feed driven by the test: push Ticks or exceptions onto its queue."""

    def __init__(self, connect_error: Exception | None = None) -> None:
        self.queue: asyncio.Queue = asyncio.Queue()
        self.connect_error = connect_error
        self.connected_with: list[str] | None = None
        self.subscribed: list[str] = []
        self.unsubscribed: list[str] = []
        self.closed = False

    async def connect(self, symbols):
        if self.connect_error is not None:
            raise self.connect_error
        self.connected_with = list(symbols)

    async def subscribe(self, symbols):
        self.subscribed.extend(symbols)

    async def unsubscribe(self, symbols):
        self.unsubscribed.extend(symbols)

    async def ticks(self):
        while True:
            item = await self.queue.get()
            if isinstance(item, BaseException):
                raise item
            yield item

    async def close(self):
        self.closed = True

    def push(self, item) -> None:
        self.queue.put_nowait(item)


class FakeProvider(QuoteProvider):
    """In-memory provider. Records every call in ``calls`` (and an optional shared log)."""

    def __init__(
        self,
        name: str,
        api_key: str | None = "test-key",
        quotes: dict[str, Quote] | None = None,
        error: Exception | None = None,
        search_results: list | None = None,
        feed_factory=None,
        call_log: list | None = None,
        delay: float = 0.0,
    ) -> None:
        super().__init__(
            ProviderInfo(
                name=name,
                display_name=name.title(),
                api_key=api_key,
                websocket_supported=feed_factory is not None,
            )
        )
        self.quotes = quotes or {}
        self.error = error
        self.search_results = search_results or []
        self.feed_factory = feed_factory
        self.calls: list[tuple[str, str]] = []
        self.call_log = call_log if call_log is not None else []
        self.delay = delay
        self.closed = False

    async def fetch_quote(self, symbol):
        self.calls.append(("quote", symbol))
        self.call_log.append((self.name, symbol))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        if symbol not in self.quotes:
            raise UpstreamCallFailed(self.name, f"No quote data for {symbol}")
        return self.quotes[symbol]

    async def search(self, query):
        self.calls.append(("search", query))
        self.call_log.append((self.name, query))
        if self.error is not None:
            raise self.error
        return list(self.search_results)

    def stream_config(self):
        if self.feed_factory is None:
            return None
        return StreamConfig(url=f"wss://{self.name}.invalid")

    def create_feed(self):
        return self.feed_factory() if self.feed_factory else None

    async def close(self):
        self.closed = True


class FakeWebSocket:
    """Stands in for a websockets client connection. Sent frames are decoded into ``sent``."""

    def __init__(self, frames=()) -> None:
        self.frames = list(frames)
        self.sent: list = []
        self.closed = False

    async def send(self, data):
        self.sent.append(json.loads(data))

    async def recv(self):
        if not self.frames:
            raise websockets.exceptions.ConnectionClosed(None, None)
        return self.frames.pop(0)

    async def close(self):
        self.closed = True


class FeedFactory:
    """Hands out a new FakeFeed per connect and remembers them all."""

    def __init__(self, connect_error: Exception | None = None) -> None:
        self.connect_error = connect_error
        self.feeds: list[FakeFeed] = []

    def __call__(self) -> FakeFeed:
        feed = FakeFeed(connect_error=self.connect_error)
        self.feeds.append(feed)
        return feed


def make_broker(*providers, **kwargs) -> RealtimeBroker:
    registry = ProviderRegistry(list(providers))
    fetcher = QuoteFetcher(registry, QuoteCache(ttl=60, clock=FakeClock()), UsageRecorder())
    return RealtimeBroker(registry, fetcher, **kwargs)


async def wait_until(condition, timeout: float = 2.0) -> None:
    """Poll ``condition`` until it holds; fails the test with TimeoutError otherwise."""

    async def _poll():
        while not condition():
            await asyncio.sleep(0.005)

    await asyncio.wait_for(_poll(), timeout)
