"""Finnhub REST adapter and WebSocket trade feed.

API documentation: https://finnhub.io/docs/api
Free tier: 60 requests/minute, WebSocket trades for US stocks.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import date, datetime, timezone
from typing import Any

from .errors import UpstreamCallFailed
from .feeds import WebSocketFeed
from .models import ProviderInfo, Quote, SearchResult, StreamConfig, Tick, format_percent
from .rest import RestProvider, to_float, to_int

logger = logging.getLogger(__name__)

FINNHUB_BASE_URL = "https://finnhub.io/api/v1"
FINNHUB_WS_URL = "wss://ws.finnhub.io"

MAX_SEARCH_RESULTS = 20


def default_finnhub_info(api_key: str | None = None) -> ProviderInfo:
    return ProviderInfo(
        name="finnhub",
        display_name="Finnhub (WebSocket)",
        api_key=api_key,
        rate_limit_per_minute=60,
        daily_limit=None,
        websocket_supported=True,
    )


class FinnhubProvider(RestProvider):
    """QuoteProvider backed by Finnhub.

    Quotes combine ``/quote`` (prices) with ``/stock/profile2`` (name,
    exchange, currency). The profile is best effort: a failed profile call
    still yields a quote.
    """

    base_url = FINNHUB_BASE_URL

    async def fetch_quote(self, symbol: str) -> Quote:
        symbol = symbol.upper()
        params = {"symbol": symbol, "token": self._require_key()}

        quote_data, profile_data = await asyncio.gather(
            self._get_json("/quote", params),
            self._get_json("/stock/profile2", params),
            return_exceptions=True,
        )
        if isinstance(quote_data, BaseException):
            raise quote_data
        if isinstance(profile_data, BaseException):
            logger.debug("Finnhub profile lookup failed for %s: %s", symbol, profile_data)
            profile_data = {}
        return self._parse_quote(symbol, quote_data, profile_data)

    async def search(self, query: str) -> list[SearchResult]:
        data = await self._get_json("/search", {"q": query, "token": self._require_key()})
        if not isinstance(data, dict) or not isinstance(data.get("result"), list):
            raise UpstreamCallFailed(self.name, "Malformed search payload")

        results = []
        for item in data["result"][:MAX_SEARCH_RESULTS]:
            if not isinstance(item, dict) or not item.get("symbol"):
                continue
            results.append(
                SearchResult(
                    symbol=item["symbol"],
                    name=item.get("description") or item["symbol"],
                    type=(item.get("type") or "stock").lower(),
                    exchange=item.get("displaySymbol"),
                )
            )
        return results

    def stream_config(self) -> StreamConfig:
        return StreamConfig(url=f"{FINNHUB_WS_URL}?token={self.info.api_key or ''}")

    def create_feed(self) -> FinnhubFeed:
        return FinnhubFeed(self.stream_config().url, open_timeout=self._timeout)

    def _parse_quote(self, symbol: str, data: Any, profile: Any) -> Quote:
        if not isinstance(data, dict):
            raise UpstreamCallFailed(self.name, "Malformed quote payload")
        price = to_float(data.get("c"))
        if price <= 0:
            raise UpstreamCallFailed(self.name, f"No quote data for {symbol}")
        if not isinstance(profile, dict):
            profile = {}

        previous_close = to_float(data.get("pc"))
        change = price - previous_close
        timestamp = to_int(data.get("t"))
        if timestamp:
            as_of = datetime.fromtimestamp(timestamp, tz=timezone.utc).date().isoformat()
        else:
            as_of = date.today().isoformat()

        return Quote(
            symbol=symbol,
            name=profile.get("name") or symbol,
            price=price,
            change=round(change, 4),
            change_percent=format_percent(change, previous_close),
            volume=0,  # Not part of Finnhub's quote endpoint
            open=to_float(data.get("o")),
            high=to_float(data.get("h")),
            low=to_float(data.get("l")),
            previous_close=previous_close,
            as_of=as_of,
            exchange=profile.get("exchange"),
            currency=profile.get("currency") or "USD",
            provider=self.name,
        )


class FinnhubFeed(WebSocketFeed):
    """Finnhub trade stream.

    Subscribe: {"type": "subscribe", "symbol": "AAPL"} (one frame per symbol)
    Trades:    {"type": "trade", "data": [{"s": "AAPL", "p": 190.5, "v": 100, "t": 1707580800000}]}
    Finnhub also sends {"type": "ping"} keepalives, which are ignored.
    """

    provider = "finnhub"

    def _subscribe_messages(self, symbols: list[str]) -> list[dict]:
        return [{"type": "subscribe", "symbol": s} for s in symbols]

    def _unsubscribe_messages(self, symbols: list[str]) -> list[dict]:
        return [{"type": "unsubscribe", "symbol": s} for s in symbols]

    def _parse(self, message: Any) -> list[Tick]:
        if not isinstance(message, dict):
            return []
        kind = message.get("type")
        if kind == "error":
            logger.warning("Finnhub stream error: %s", message.get("msg"))
            return []
        if kind != "trade":
            return []

        ticks = []
        for trade in message.get("data") or []:
            try:
                ticks.append(
                    Tick(
                        symbol=trade["s"],
                        price=float(trade["p"]),
                        volume=to_int(trade.get("v")),
                        timestamp=to_int(trade.get("t")),
                    )
                )
            except (KeyError, TypeError, ValueError) as e:
                logger.warning("Skipping Finnhub trade %r: %s", trade, e)
        return ticks
