"""Twelve Data REST adapter and WebSocket price feed.

API documentation: https://twelvedata.com/docs
Free tier: 800 API credits/day, 8 requests/minute
"""

from __future__ import annotations

import asyncio
import logging
import time
from datetime import date
from typing import Any

from .errors import UpstreamCallFailed
from .feeds import WebSocketFeed
from .models import ProviderInfo, Quote, SearchResult, StreamConfig, Tick
from .rest import RestProvider, to_float, to_int

logger = logging.getLogger(__name__)

TWELVE_DATA_BASE_URL = "https://api.twelvedata.com"
TWELVE_DATA_WS_URL = "wss://ws.twelvedata.com/v1/quotes/price"

MAX_SEARCH_RESULTS = 20


def default_twelve_data_info(api_key: str | None = None) -> ProviderInfo:
    return ProviderInfo(
        name="twelve_data",
        display_name="Twelve Data (WebSocket)",
        api_key=api_key,
        rate_limit_per_minute=8,
        daily_limit=800,
        websocket_supported=True,
    )


class TwelveDataProvider(RestProvider):
    """QuoteProvider backed by Twelve Data.

    Error responses come back as HTTP 200 with a ``code``/``message`` body,
    so the payload is checked as well as the status.
    """

    base_url = TWELVE_DATA_BASE_URL

    def __init__(self, info: ProviderInfo, timeout: float = 10.0, session=None, subscribe_delay: float = 1.0) -> None:
        super().__init__(info, timeout=timeout, session=session)
        self._subscribe_delay = subscribe_delay

    async def fetch_quote(self, symbol: str) -> Quote:
        symbol = symbol.upper()
        data = await self._get_json("/quote", {"symbol": symbol, "apikey": self._require_key()})
        return self._parse_quote(symbol, data)

    async def search(self, query: str) -> list[SearchResult]:
        data = await self._get_json(
            "/symbol_search", {"symbol": query, "apikey": self._require_key()}
        )
        if not isinstance(data, dict) or not isinstance(data.get("data"), list):
            raise UpstreamCallFailed(self.name, "Malformed search payload")

        results = []
        for item in data["data"][:MAX_SEARCH_RESULTS]:
            if not isinstance(item, dict) or not item.get("symbol"):
                continue
            results.append(
                SearchResult(
                    symbol=item["symbol"],
                    name=item.get("instrument_name") or item["symbol"],
                    type=(item.get("instrument_type") or "stock").lower(),
                    exchange=item.get("exchange"),
                    currency=item.get("currency"),
                    country=item.get("country"),
                )
            )
        return results

    def stream_config(self) -> StreamConfig:
        return StreamConfig(url=TWELVE_DATA_WS_URL)

    def create_feed(self) -> TwelveDataFeed:
        return TwelveDataFeed(
            self.stream_config().url,
            api_key=self.info.api_key or "",
            subscribe_delay=self._subscribe_delay,
            open_timeout=self._timeout,
        )

    def _parse_quote(self, symbol: str, data: Any) -> Quote:
        if not isinstance(data, dict):
            raise UpstreamCallFailed(self.name, "Malformed quote payload")
        if "code" in data:
            raise UpstreamCallFailed(
                self.name,
                data.get("message", "Unknown error"),
                status_code=to_int(data.get("code")) or None,
            )
        if not data.get("symbol"):
            raise UpstreamCallFailed(self.name, f"No quote data for {symbol}")
        price = to_float(data.get("close") or data.get("price"))
        if price <= 0:
            raise UpstreamCallFailed(self.name, f"No quote data for {symbol}")

        percent = data.get("percent_change")
        if percent in (None, ""):
            change_percent = "0%"
        else:
            change_percent = f"{to_float(percent):.2f}%"

        return Quote(
            symbol=data["symbol"],
            name=data.get("name"),
            price=price,
            change=to_float(data.get("change")),
            change_percent=change_percent,
            volume=to_int(data.get("volume")),
            open=to_float(data.get("open")),
            high=to_float(data.get("high")),
            low=to_float(data.get("low")),
            previous_close=to_float(data.get("previous_close")),
            as_of=(data.get("datetime") or date.today().isoformat())[:10],
            exchange=data.get("exchange"),
            currency=data.get("currency"),
            provider=self.name,
        )


class TwelveDataFeed(WebSocketFeed):
    """Twelve Data price stream.

    Handshake: {"action": "auth", "params": {"apikey": KEY}}, then after a
    short delay {"action": "subscribe", "params": {"symbols": "AAPL,MSFT"}}.
    Prices:    {"event": "price", "symbol": "AAPL", "price": 190.5, "day_volume": 1000, "timestamp": 1707580800}
    """

    provider = "twelve_data"

    def __init__(self, url: str, api_key: str, subscribe_delay: float = 1.0, **kwargs) -> None:
        super().__init__(url, **kwargs)
        self._api_key = api_key
        self._subscribe_delay = subscribe_delay

    async def _handshake(self, symbols: list[str]) -> None:
        await self._send({"action": "auth", "params": {"apikey": self._api_key}})
        if self._subscribe_delay:
            await asyncio.sleep(self._subscribe_delay)
        await self.subscribe(symbols)

    def _subscribe_messages(self, symbols: list[str]) -> list[dict]:
        if not symbols:
            return []
        return [{"action": "subscribe", "params": {"symbols": ",".join(symbols)}}]

    def _unsubscribe_messages(self, symbols: list[str]) -> list[dict]:
        if not symbols:
            return []
        return [{"action": "unsubscribe", "params": {"symbols": ",".join(symbols)}}]

    def _parse(self, message: Any) -> list[Tick]:
        if not isinstance(message, dict):
            return []
        event = message.get("event")
        if event == "subscribe-status" and message.get("status") != "ok":
            logger.warning("Twelve Data subscribe failed: %s", message.get("fails") or message)
            return []
        if event != "price":
            return []
        try:
            # Twelve Data timestamps are Unix seconds; ticks carry milliseconds
            timestamp = to_int(message.get("timestamp")) * 1000 or int(time.time() * 1000)
            return [
                Tick(
                    symbol=message["symbol"],
                    price=float(message["price"]),
                    volume=to_int(message.get("day_volume")),
                    timestamp=timestamp,
                )
            ]
        except (KeyError, TypeError, ValueError) as e:
            logger.warning("Skipping Twelve Data price event %r: %s", message, e)
            return []
