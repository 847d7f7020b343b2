"""WebSocket upstream feeds."""

from __future__ import annotations

import json
import logging
from abc import abstractmethod
from collections.abc import AsyncIterator
from typing import Any

import websockets

from .errors import TransportError
from .interface import UpstreamFeed
from .models import Tick

logger = logging.getLogger(__name__)


class WebSocketFeed(UpstreamFeed):
    """UpstreamFeed over a single ``websockets`` client connection.

    Subclasses supply the provider's message protocol: the handshake sent
    after the socket opens, subscribe/unsubscribe frames, and how an
    incoming JSON message maps to ticks. Every socket or frame-level
    problem is raised as TransportError so the broker can back off and
    reconnect.
    """

    provider: str = ""

    def __init__(self, url: str, open_timeout: float = 10.0, ping_interval: float | None = 20.0) -> None:
        self._url = url
        self._open_timeout = open_timeout
        self._ping_interval = ping_interval
        self._ws: Any = None
        self._closing = False

    async def connect(self, symbols: list[str]) -> None:
        try:
            self._ws = await websockets.connect(
                self._url,
                open_timeout=self._open_timeout,
                ping_interval=self._ping_interval,
            )
        except (OSError, TimeoutError, websockets.exceptions.WebSocketException) as e:
            raise TransportError(f"{self.provider}: connect failed: {e}") from e
        logger.info("%s WebSocket connected", self.provider)
        await self._handshake(symbols)

    async def subscribe(self, symbols: list[str]) -> None:
        for message in self._subscribe_messages(symbols):
            await self._send(message)

    async def unsubscribe(self, symbols: list[str]) -> None:
        for message in self._unsubscribe_messages(symbols):
            await self._send(message)

    async def ticks(self) -> AsyncIterator[Tick]:
        if self._ws is None:
            raise TransportError(f"{self.provider}: not connected")
        while True:
            try:
                raw = await self._ws.recv()
            except websockets.exceptions.ConnectionClosed as e:
                if self._closing:
                    return
                raise TransportError(f"{self.provider}: connection closed: {e}") from e
            try:
                ticks = self._parse(json.loads(raw))
            except (TypeError, ValueError, KeyError, AttributeError) as e:
                raise TransportError(f"{self.provider}: malformed frame: {e}") from e
            for tick in ticks:
                yield tick

    async def close(self) -> None:
        self._closing = True
        if self._ws is not None:
            try:
                await self._ws.close()
            except (OSError, websockets.exceptions.WebSocketException) as e:
                logger.debug("%s close failed: %s", self.provider, e)
            logger.info("%s WebSocket closed", self.provider)
        self._ws = None

    async def _send(self, payload: dict) -> None:
        if self._ws is None:
            raise TransportError(f"{self.provider}: not connected")
        try:
            await self._ws.send(json.dumps(payload))
        except (OSError, websockets.exceptions.WebSocketException) as e:
            raise TransportError(f"{self.provider}: send failed: {e}") from e

    async def _handshake(self, symbols: list[str]) -> None:
        """Default handshake: just subscribe."""
        await self.subscribe(symbols)

    @abstractmethod
    def _subscribe_messages(self, symbols: list[str]) -> list[dict]:
        ...

    @abstractmethod
    def _unsubscribe_messages(self, symbols: list[str]) -> list[dict]:
        ...

    @abstractmethod
    def _parse(self, message: Any) -> list[Tick]:
        """Map one decoded message to zero or more ticks."""
