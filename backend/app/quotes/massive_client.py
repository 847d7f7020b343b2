"""Massive (Polygon.io) API client for real market data."""

from __future__ import annotations

import asyncio
import itertools
import logging
from datetime import date, datetime, timezone
from typing import Any

from .errors import UpstreamCallFailed
from .interface import QuoteProvider
from .models import ProviderInfo, Quote, SearchResult, format_percent

logger = logging.getLogger(__name__)

MAX_SEARCH_RESULTS = 20


def default_massive_info(api_key: str | None = None) -> ProviderInfo:
    return ProviderInfo(
        name="massive",
        display_name="Massive (Polygon.io)",
        api_key=api_key,
        rate_limit_per_minute=5,
        daily_limit=None,
        websocket_supported=False,
    )


class MassiveProvider(QuoteProvider):
    """QuoteProvider backed by the Massive (Polygon.io) REST API.

    Uses GET /v2/snapshot/locale/us/markets/stocks/tickers/{ticker} for
    quotes and the reference tickers endpoint for search. There is no feed:
    the broker falls back to polling when this is the only usable provider.

    Rate limits:
      - Free tier: 5 req/min
      - Paid tiers: higher limits
    """

    def __init__(self, info: ProviderInfo, timeout: float = 10.0) -> None:
        super().__init__(info)
        self._timeout = timeout
        self._client: Any = None
        self._client_key: str | None = None

    async def fetch_quote(self, symbol: str) -> Quote:
        symbol = symbol.upper()
        try:
            # RESTClient is synchronous; keep it off the event loop
            snap = await asyncio.to_thread(self._fetch_snapshot, symbol)
        except UpstreamCallFailed:
            raise
        except Exception as e:
            # Common failures: 401 (bad key), 429 (rate limit), network errors.
            raise UpstreamCallFailed(self.name, str(e)) from e
        return self._parse_snapshot(symbol, snap)

    async def search(self, query: str) -> list[SearchResult]:
        try:
            tickers = await asyncio.to_thread(self._search_tickers, query)
        except UpstreamCallFailed:
            raise
        except Exception as e:
            raise UpstreamCallFailed(self.name, str(e)) from e

        results = []
        for item in tickers:
            ticker = getattr(item, "ticker", None)
            if not ticker:
                continue
            results.append(
                SearchResult(
                    symbol=ticker,
                    name=getattr(item, "name", None) or ticker,
                    type=(getattr(item, "type", None) or "stock").lower(),
                    exchange=getattr(item, "primary_exchange", None),
                    currency=(getattr(item, "currency_name", None) or "").upper() or None,
                    country=(getattr(item, "locale", None) or "").upper() or None,
                )
            )
        return results

    async def close(self) -> None:
        self._client = None
        self._client_key = None

    # --- Internal ---

    def _get_client(self) -> Any:
        """Build the REST client on first use, and again whenever the credential changes."""
        if not self.info.has_credential:
            raise UpstreamCallFailed(self.name, "API key not configured")
        api_key = self.info.api_key.strip()
        if self._client is None or self._client_key != api_key:
            # Imported on first use
            from massive import RESTClient

            self._client = RESTClient(api_key=api_key, connect_timeout=self._timeout, read_timeout=self._timeout)
            self._client_key = api_key
        return self._client

    def _fetch_snapshot(self, symbol: str) -> Any:
        """Synchronous call to the Massive REST API. Runs in a thread."""
        return self._get_client().get_snapshot_ticker("stocks", symbol)

    def _search_tickers(self, query: str) -> list:
        """Synchronous reference-tickers search. Runs in a thread."""
        listing = self._get_client().list_tickers(
            search=query, market="stocks", active=True, limit=MAX_SEARCH_RESULTS
        )
        return list(itertools.islice(listing, MAX_SEARCH_RESULTS))

    def _parse_snapshot(self, symbol: str, snap: Any) -> Quote:
        try:
            day = getattr(snap, "day", None)
            prev_day = getattr(snap, "prev_day", None)
            last_trade = getattr(snap, "last_trade", None)

            price = getattr(last_trade, "price", None) or getattr(day, "close", None)
            if not price:
                raise UpstreamCallFailed(self.name, f"No quote data for {symbol}")
            price = float(price)
            previous_close = float(getattr(prev_day, "close", None) or 0.0)

            change = getattr(snap, "todays_change", None)
            change = float(change) if change is not None else price - previous_close
            change_percent = getattr(snap, "todays_change_percent", None)
            if change_percent is not None:
                change_percent = f"{float(change_percent):.2f}%"
            else:
                change_percent = format_percent(change, previous_close)

            # Massive timestamps are Unix milliseconds
            trade_ts = getattr(last_trade, "timestamp", None)
            if trade_ts:
                as_of = datetime.fromtimestamp(trade_ts / 1000.0, tz=timezone.utc).date().isoformat()
            else:
                as_of = date.today().isoformat()

            return Quote(
                symbol=getattr(snap, "ticker", None) or symbol,
                price=price,
                change=round(change, 4),
                change_percent=change_percent,
                volume=int(getattr(day, "volume", None) or 0),
                open=float(getattr(day, "open", None) or 0.0),
                high=float(getattr(day, "high", None) or 0.0),
                low=float(getattr(day, "low", None) or 0.0),
                previous_close=previous_close,
                as_of=as_of,
                currency="USD",
                provider=self.name,
            )
        except (AttributeError, TypeError, ValueError) as e:
            raise UpstreamCallFailed(self.name, f"Malformed snapshot for {symbol}: {e}") from e
