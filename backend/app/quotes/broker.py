"""Realtime quote broker: upstream feed state machine and per-symbol fan-out."""

from __future__ import annotations

import asyncio
import logging
import time
from collections import deque
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from enum import Enum

from .errors import TransportError
from .fetcher import PollingFeed, QuoteFetcher, normalize_symbol
from .interface import UpstreamFeed
from .models import QuoteUpdate, Tick, format_percent
from .registry import ProviderRegistry

logger = logging.getLogger(__name__)

QuoteListener = Callable[[QuoteUpdate], None]
StatusListener = Callable[["BrokerState", str], None]


class BrokerState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    STREAMING = "streaming"
    ERROR = "error"
    CLOSED = "closed"
    # Terminal: the control loop has stopped and will not retry on its own
    UNCONFIGURED = "unconfigured"
    FAILED = "failed"


TERMINAL_STATES = frozenset({BrokerState.UNCONFIGURED, BrokerState.FAILED})


@dataclass(frozen=True, slots=True)
class BackoffPolicy:
    """Exponential reconnect backoff.

    The delay before reconnect attempt ``n`` (1-based) is
    ``min(base_delay * 2 ** (n - 1), max_delay)``. With ``max_attempts``
    set, failure number ``max_attempts + 1`` is terminal; with None the
    broker retries forever at the ceiling.
    """

    base_delay: float = 1.0
    max_delay: float = 30.0
    max_attempts: int | None = 5

    def delay(self, attempt: int) -> float:
        if attempt < 1:
            return 0.0
        return min(self.base_delay * 2 ** (attempt - 1), self.max_delay)

    def exhausted(self, attempt: int) -> bool:
        return self.max_attempts is not None and attempt > self.max_attempts


@dataclass(frozen=True, slots=True)
class Transition:
    state: BrokerState
    reason: str
    at: float = field(default_factory=time.time)

    def to_dict(self) -> dict:
        return {"state": self.state.value, "reason": self.reason, "at": self.at}


class RealtimeBroker:
    """Keeps one upstream feed alive for the current symbol set and relays ticks.

    States: DISCONNECTED -> CONNECTING -> STREAMING -> (ERROR | CLOSED) -> DISCONNECTED.
    A single control task drives every transition:

    - transport failures (TransportError) move to ERROR, then back off
      and reconnect; after ``backoff.max_attempts`` consecutive failures
      the broker reports FAILED and stops.
    - a connection that reaches ``connection_lifetime`` is CLOSED and
      reopened immediately with a fresh handshake; this does not count
      against the retry budget.
    - with no usable provider at all the broker reports UNCONFIGURED and
      stops instead of retrying.

    Feed choice: the first provider in selection order with a WebSocket
    feed; otherwise a PollingFeed over the QuoteFetcher.

    Every tick becomes a QuoteUpdate whose change is relative to the last
    price seen for the symbol. Listeners for the symbol are called in
    registration order, synchronously, within the same event.
    """

    def __init__(
        self,
        registry: ProviderRegistry,
        fetcher: QuoteFetcher,
        backoff: BackoffPolicy | None = None,
        connection_lifetime: float = 300.0,
        poll_interval: float = 5.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._registry = registry
        self._fetcher = fetcher
        self._backoff = backoff or BackoffPolicy()
        self._lifetime = connection_lifetime
        self._poll_interval = poll_interval
        self._sleep = sleep

        self._symbols: list[str] = []
        self._listeners: dict[str, list[QuoteListener]] = {}
        self._status_listeners: list[StatusListener] = []
        self._last_prices: dict[str, float] = {}

        self._state = BrokerState.DISCONNECTED
        self._history: deque[Transition] = deque(maxlen=50)
        self._feed: UpstreamFeed | None = None
        self._task: asyncio.Task | None = None
        self._attempts = 0
        self._mode: str | None = None

    # --- Introspection ---

    @property
    def state(self) -> BrokerState:
        return self._state

    @property
    def attempts(self) -> int:
        """Consecutive failed connections since the last successful one."""
        return self._attempts

    @property
    def mode(self) -> str | None:
        """Provider name of the live WebSocket feed, 'polling', or None."""
        return self._mode

    @property
    def history(self) -> list[Transition]:
        return list(self._history)

    def get_symbols(self) -> list[str]:
        return list(self._symbols)

    def last_price(self, symbol: str) -> float | None:
        return self._last_prices.get(normalize_symbol(symbol))

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def status(self) -> dict:
        return {
            "state": self._state.value,
            "mode": self._mode,
            "attempts": self._attempts,
            "maxAttempts": self._backoff.max_attempts,
            "symbols": self.get_symbols(),
            "history": [t.to_dict() for t in list(self._history)[-10:]],
        }

    # --- Listeners ---

    def add_listener(self, symbol: str, listener: QuoteListener) -> None:
        self._listeners.setdefault(normalize_symbol(symbol), []).append(listener)

    def remove_listener(self, symbol: str, listener: QuoteListener) -> None:
        symbol = normalize_symbol(symbol)
        listeners = self._listeners.get(symbol, [])
        if listener in listeners:
            listeners.remove(listener)
        if not listeners:
            self._listeners.pop(symbol, None)

    def add_status_listener(self, listener: StatusListener) -> None:
        self._status_listeners.append(listener)

    def remove_status_listener(self, listener: StatusListener) -> None:
        if listener in self._status_listeners:
            self._status_listeners.remove(listener)

    # --- Symbol set ---

    async def subscribe(self, symbols: list[str]) -> list[str]:
        """Add symbols to the upstream subscription. Returns the newly added ones."""
        added = []
        for symbol in (normalize_symbol(s) for s in symbols):
            if symbol and symbol not in self._symbols and symbol not in added:
                added.append(symbol)
        if not added:
            return []
        self._symbols.extend(added)
        logger.info("Broker: subscribed %s", ", ".join(added))
        await self._forward(added, subscribe=True)
        return added

    async def unsubscribe(self, symbols: list[str]) -> list[str]:
        """Remove symbols from the upstream subscription. Returns the removed ones."""
        wanted = {normalize_symbol(s) for s in symbols}
        removed = [s for s in self._symbols if s in wanted]
        if not removed:
            return []
        self._symbols = [s for s in self._symbols if s not in wanted]
        for symbol in removed:
            self._last_prices.pop(symbol, None)
        logger.info("Broker: unsubscribed %s", ", ".join(removed))
        await self._forward(removed, subscribe=False)
        return removed

    # --- Lifecycle ---

    async def start(self) -> None:
        """Start the control loop. No-op if it is already running."""
        if self.running:
            return
        self._task = asyncio.create_task(self._run(), name="realtime-broker")

    async def stop(self) -> None:
        """Cancel the control loop immediately and release the feed. Safe to call twice."""
        if self._task and not self._task.done():
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        self._task = None
        if self._feed is not None:
            await self._close_feed(self._feed)
        self._last_prices.clear()
        self._mode = None
        if self._state is not BrokerState.DISCONNECTED:
            self._set_state(BrokerState.DISCONNECTED, "Stopped")
        logger.info("Realtime broker stopped")

    async def restart(self) -> None:
        """Stop and start again, e.g. after a credential change."""
        await self.stop()
        await self.start()

    def handle_tick(self, tick: Tick) -> QuoteUpdate:
        """Turn a tick into a QuoteUpdate and invoke the symbol's listeners."""
        last = self._last_prices.get(tick.symbol, tick.price)
        change = tick.price - last
        update = QuoteUpdate(
            symbol=tick.symbol,
            price=tick.price,
            change=round(change, 4),
            change_percent=format_percent(change, last),
            volume=tick.volume,
            timestamp=tick.timestamp,
        )
        self._last_prices[tick.symbol] = tick.price

        for listener in list(self._listeners.get(tick.symbol, ())):
            try:
                listener(update)
            except Exception:
                logger.exception("Quote listener failed for %s", tick.symbol)
        return update

    # --- Control loop ---

    async def _run(self) -> None:
        self._attempts = 0
        while True:
            feed = self._create_feed()
            if feed is None:
                self._set_state(BrokerState.UNCONFIGURED, "No quote provider has a usable API key")
                return

            self._feed = feed
            self._set_state(BrokerState.CONNECTING, f"Connecting via {self._mode}")
            try:
                await feed.connect(list(self._symbols))
                self._attempts = 0
                self._set_state(BrokerState.STREAMING, f"Streaming via {self._mode}")
                await self._consume(feed)
            except TransportError as e:
                if not await self._back_off(feed, str(e)):
                    return
                continue
            except Exception as e:
                logger.exception("Unexpected error from the %s feed", self._mode)
                if not await self._back_off(feed, f"{type(e).__name__}: {e}"):
                    return
                continue

            await self._close_feed(feed)
            self._set_state(BrokerState.CLOSED, "Connection lifetime reached")
            self._set_state(BrokerState.DISCONNECTED, "Reconnecting with a fresh handshake")

    async def _back_off(self, feed: UpstreamFeed, reason: str) -> bool:
        """Record a failed connection and wait before the next attempt.

        Returns False once the retry budget is spent (state FAILED).
        """
        await self._close_feed(feed)
        self._attempts += 1
        self._set_state(BrokerState.ERROR, reason)
        if self._backoff.exhausted(self._attempts):
            self._set_state(
                BrokerState.FAILED,
                f"Giving up after {self._backoff.max_attempts} reconnect attempts",
            )
            return False
        delay = self._backoff.delay(self._attempts)
        self._set_state(
            BrokerState.DISCONNECTED,
            f"Reconnecting in {delay:g}s (attempt {self._attempts})",
        )
        await self._sleep(delay)
        return True

    async def _consume(self, feed: UpstreamFeed) -> None:
        """Relay ticks until the connection lifetime runs out.

        Returns normally on lifetime expiry. A feed that ends on its own
        has lost its upstream connection and is reported as TransportError.
        """
        try:
            async with asyncio.timeout(self._lifetime):
                async for tick in feed.ticks():
                    self.handle_tick(tick)
        except TimeoutError:
            return
        raise TransportError("Upstream feed ended unexpectedly")

    def _create_feed(self) -> UpstreamFeed | None:
        provider = self._registry.streaming_candidate()
        if provider is not None:
            feed = provider.create_feed()
            if feed is not None:
                self._mode = provider.name
                return feed
        if self._registry.has_usable_provider():
            self._mode = "polling"
            return PollingFeed(self._fetcher, interval=self._poll_interval)
        self._mode = None
        return None

    async def _forward(self, symbols: list[str], subscribe: bool) -> None:
        feed = self._feed
        if feed is None or self._state is not BrokerState.STREAMING:
            return  # Picked up by the next connect
        try:
            if subscribe:
                await feed.subscribe(symbols)
            else:
                await feed.unsubscribe(symbols)
        except TransportError as e:
            # The control loop sees the broken connection on its next read
            logger.warning("Broker: could not update upstream subscription: %s", e)

    async def _close_feed(self, feed: UpstreamFeed) -> None:
        try:
            await feed.close()
        except Exception:
            logger.exception("Error closing upstream feed")
        if self._feed is feed:
            self._feed = None

    def _set_state(self, state: BrokerState, reason: str) -> None:
        self._state = state
        self._history.append(Transition(state=state, reason=reason))
        if state in (BrokerState.ERROR, BrokerState.FAILED, BrokerState.UNCONFIGURED):
            logger.warning("Broker %s: %s", state.value, reason)
        else:
            logger.info("Broker %s: %s", state.value, reason)

        for listener in list(self._status_listeners):
            try:
                listener(state, reason)
            except Exception:
                logger.exception("Status listener failed")
