"""Per-client push channels and their symbol subscriptions."""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from collections import deque

from .broker import TERMINAL_STATES, BrokerState, RealtimeBroker
from .fetcher import normalize_symbol
from .models import QuoteUpdate

logger = logging.getLogger(__name__)

MAX_PENDING_EVENTS = 1000


def _now_ms() -> int:
    return int(time.time() * 1000)


def connected_event(channel: ClientChannel) -> dict:
    return {
        "type": "connected",
        "channelId": channel.id,
        "symbols": channel.get_symbols(),
        "timestamp": _now_ms(),
    }


def quote_event(update: QuoteUpdate) -> dict:
    return {"type": "quote", **update.to_dict()}


def error_event(message: str, state: str | None = None) -> dict:
    return {"type": "error", "message": message, "state": state, "timestamp": _now_ms()}


def heartbeat_event() -> dict:
    return {"type": "heartbeat", "timestamp": _now_ms()}


class ClientChannel:
    """One connected client: its symbol set and a buffer of pending events.

    Owned by the ChannelHub. If a client falls more than
    MAX_PENDING_EVENTS behind, the oldest events are dropped.
    """

    def __init__(self, channel_id: str | None = None) -> None:
        self.id = channel_id or uuid.uuid4().hex
        self.opened_at = time.monotonic()
        self._symbols: list[str] = []
        self._pending: deque[dict] = deque(maxlen=MAX_PENDING_EVENTS)
        self._ready = asyncio.Event()
        self.closed = False

    def get_symbols(self) -> list[str]:
        return list(self._symbols)

    def push(self, event: dict) -> None:
        if self.closed:
            return
        if len(self._pending) == self._pending.maxlen:
            logger.warning("Channel %s is falling behind; dropping oldest event", self.id)
        self._pending.append(event)
        self._ready.set()

    def on_quote(self, update: QuoteUpdate) -> None:
        self.push(quote_event(update))

    def drain(self) -> list[dict]:
        events = list(self._pending)
        self._pending.clear()
        self._ready.clear()
        return events

    async def wait(self, timeout: float) -> bool:
        """Wait up to ``timeout`` seconds for an event. True if one is pending."""
        if self._pending:
            return True
        try:
            await asyncio.wait_for(self._ready.wait(), timeout=timeout)
        except asyncio.TimeoutError:
            return False
        return True


class ChannelHub:
    """Owns all open client channels and keeps the broker's symbol set in sync.

    The broker subscribes to the union of the channels' symbols: a symbol
    is subscribed upstream when its first channel asks for it and dropped
    when its last channel goes away.
    """

    def __init__(self, broker: RealtimeBroker) -> None:
        self._broker = broker
        self._channels: dict[str, ClientChannel] = {}
        self._refcounts: dict[str, int] = {}
        broker.add_status_listener(self._on_broker_status)

    @property
    def broker(self) -> RealtimeBroker:
        return self._broker

    def get(self, channel_id: str) -> ClientChannel:
        """Raises KeyError for unknown or closed channels."""
        return self._channels[channel_id]

    def channels(self) -> list[ClientChannel]:
        return list(self._channels.values())

    async def open(self, symbols: list[str]) -> ClientChannel:
        channel = ClientChannel()
        self._channels[channel.id] = channel
        await self.subscribe(channel.id, symbols)
        logger.info("Channel %s opened: %s", channel.id, ", ".join(channel.get_symbols()) or "-")

        if not self._broker.running:
            # Also revives a broker that gave up or was unconfigured
            await self._broker.start()
        return channel

    async def close(self, channel_id: str) -> None:
        channel = self._channels.pop(channel_id, None)
        if channel is None:
            return
        channel.closed = True
        await self._release(channel, channel.get_symbols())
        logger.info("Channel %s closed", channel_id)

    async def subscribe(self, channel_id: str, symbols: list[str]) -> list[str]:
        channel = self.get(channel_id)
        added = []
        for symbol in (normalize_symbol(s) for s in symbols):
            if not symbol or symbol in channel._symbols:
                continue
            channel._symbols.append(symbol)
            self._broker.add_listener(symbol, channel.on_quote)
            self._refcounts[symbol] = self._refcounts.get(symbol, 0) + 1
            added.append(symbol)

        new_upstream = [s for s in added if self._refcounts[s] == 1]
        if new_upstream:
            await self._broker.subscribe(new_upstream)
        return added

    async def unsubscribe(self, channel_id: str, symbols: list[str]) -> list[str]:
        channel = self.get(channel_id)
        wanted = {normalize_symbol(s) for s in symbols}
        removed = [s for s in channel._symbols if s in wanted]
        await self._release(channel, removed)
        return removed

    async def close_all(self) -> None:
        for channel_id in list(self._channels):
            await self.close(channel_id)

    async def _release(self, channel: ClientChannel, symbols: list[str]) -> None:
        dropped = []
        for symbol in symbols:
            if symbol in channel._symbols:
                channel._symbols.remove(symbol)
            self._broker.remove_listener(symbol, channel.on_quote)
            count = self._refcounts.get(symbol, 0) - 1
            if count <= 0:
                self._refcounts.pop(symbol, None)
                dropped.append(symbol)
            else:
                self._refcounts[symbol] = count
        if dropped:
            await self._broker.unsubscribe(dropped)

    def _on_broker_status(self, state: BrokerState, reason: str) -> None:
        if state not in TERMINAL_STATES:
            return
        event = error_event(self._terminal_message(state), state.value)
        event["reason"] = reason
        for channel in self._channels.values():
            channel.push(dict(event))

    @staticmethod
    def _terminal_message(state: BrokerState) -> str:
        if state is BrokerState.UNCONFIGURED:
            return "Unable to fetch live data; check API configuration"
        return "Real-time connection lost"

    def __len__(self) -> int:
        return len(self._channels)
