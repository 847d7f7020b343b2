"""Data models for quote distribution."""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from datetime import datetime


def format_percent(change: float, base: float) -> str:
    """Format a change relative to ``base`` the way the dashboard expects ("1.23%")."""
    if not base:
        return "0%"
    return f"{change / base * 100:.2f}%"


@dataclass(frozen=True, slots=True)
class Quote:
    """Immutable point-in-time quote for a symbol, normalized across providers."""

    symbol: str
    price: float
    change: float = 0.0
    change_percent: str = "0%"
    volume: int = 0
    open: float = 0.0
    high: float = 0.0
    low: float = 0.0
    previous_close: float = 0.0
    as_of: str = ""  # Trading day, YYYY-MM-DD
    name: str | None = None
    exchange: str | None = None
    currency: str | None = None
    provider: str = ""

    def to_dict(self) -> dict:
        """Serialize for the dashboard (camelCase keys)."""
        return {
            "symbol": self.symbol,
            "name": self.name,
            "price": self.price,
            "change": self.change,
            "changePercent": self.change_percent,
            "volume": self.volume,
            "open": self.open,
            "high": self.high,
            "low": self.low,
            "previousClose": self.previous_close,
            "latestTradingDay": self.as_of,
            "exchange": self.exchange,
            "currency": self.currency,
            "provider": self.provider,
        }


@dataclass(frozen=True, slots=True)
class SearchResult:
    symbol: str
    name: str
    type: str = "stock"
    exchange: str | None = None
    currency: str | None = None
    country: str | None = None

    def to_dict(self) -> dict:
        return {
            "symbol": self.symbol,
            "name": self.name,
            "type": self.type,
            "exchange": self.exchange,
            "currency": self.currency,
            "country": self.country,
        }


@dataclass(frozen=True, slots=True)
class Tick:
    """A raw trade/price event from an upstream feed, before change tracking."""

    symbol: str
    price: float
    volume: int = 0
    timestamp: int = field(default_factory=lambda: int(time.time() * 1000))  # Unix ms


@dataclass(frozen=True, slots=True)
class QuoteUpdate:
    """Realtime quote pushed to subscribers. Change is relative to the last known price."""

    symbol: str
    price: float
    change: float
    change_percent: str
    volume: int = 0
    timestamp: int = field(default_factory=lambda: int(time.time() * 1000))  # Unix ms

    @property
    def direction(self) -> str:
        """'up', 'down', or 'flat'."""
        if self.change > 0:
            return "up"
        elif self.change < 0:
            return "down"
        return "flat"

    def to_dict(self) -> dict:
        """Serialize as the payload of a ``quote`` push event."""
        return {
            "symbol": self.symbol,
            "price": self.price,
            "change": self.change,
            "changePercent": self.change_percent,
            "volume": self.volume,
            "timestamp": self.timestamp,
            "direction": self.direction,
        }


@dataclass(frozen=True, slots=True)
class UsageRecord:
    """One upstream call. Append-only; read only for aggregation."""

    provider: str
    endpoint: str
    latency_ms: int
    status_code: int
    error_message: str | None = None
    timestamp: float = field(default_factory=time.time)  # Unix seconds

    @property
    def ok(self) -> bool:
        return 200 <= self.status_code < 300


@dataclass(frozen=True, slots=True)
class StreamConfig:
    """Where and how to open a provider's WebSocket feed."""

    url: str
    supported: bool = True


@dataclass(slots=True)
class ProviderInfo:
    """Configuration and bookkeeping for one upstream provider.

    Owned by the ProviderRegistry. Mutated by admin updates (credential,
    default, active) and by ``mark_used``; never deleted at runtime.
    """

    name: str
    display_name: str
    api_key: str | None = None
    active: bool = True
    default: bool = False
    rate_limit_per_minute: int | None = None
    daily_limit: int | None = None
    last_used_at: datetime | None = None
    websocket_supported: bool = False

    @property
    def has_credential(self) -> bool:
        return bool(self.api_key and self.api_key.strip())

    @property
    def usable(self) -> bool:
        return self.active and self.has_credential

    def to_dict(self) -> dict:
        """Serialize for the admin view. The credential itself is never included."""
        return {
            "name": self.name,
            "displayName": self.display_name,
            "hasCredential": self.has_credential,
            "active": self.active,
            "default": self.default,
            "rateLimitPerMinute": self.rate_limit_per_minute,
            "dailyLimit": self.daily_limit,
            "lastUsedAt": self.last_used_at.isoformat() if self.last_used_at else None,
            "websocketSupported": self.websocket_supported,
        }
