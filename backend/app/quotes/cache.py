"""Thread-safe in-memory quote cache with a per-instance TTL."""

from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass
from threading import Lock

from .models import Quote


@dataclass(frozen=True, slots=True)
class CacheEntry:
    quote: Quote
    fetched_at: float  # Monotonic seconds


class QuoteCache:
    """Thread-safe in-memory cache of the last fetched quote for each symbol.

    Entries older than ``ttl`` are ignored on read and overwritten by the
    next successful fetch. Nothing is evicted proactively: quotes are
    replaced, never deleted.

    Writers: QuoteFetcher after a successful upstream call.
    Readers: QuoteFetcher (fresh hits), diagnostics.
    """

    def __init__(self, ttl: float = 60.0, clock: Callable[[], float] = time.monotonic) -> None:
        self._ttl = ttl
        self._clock = clock
        self._entries: dict[str, CacheEntry] = {}
        self._lock = Lock()
        self._version: int = 0  # Monotonically increasing; bumped on every put

    @property
    def ttl(self) -> float:
        return self._ttl

    def put(self, symbol: str, quote: Quote) -> CacheEntry:
        """Store a quote as the latest for ``symbol``. Last writer wins."""
        with self._lock:
            entry = CacheEntry(quote=quote, fetched_at=self._clock())
            self._entries[symbol] = entry
            self._version += 1
            return entry

    def get(self, symbol: str) -> Quote | None:
        """The cached quote if it is younger than the TTL, else None."""
        with self._lock:
            entry = self._entries.get(symbol)
            if entry is None or self._clock() - entry.fetched_at >= self._ttl:
                return None
            return entry.quote

    def get_entry(self, symbol: str) -> CacheEntry | None:
        """Raw entry regardless of age (for diagnostics)."""
        with self._lock:
            return self._entries.get(symbol)

    def age(self, symbol: str) -> float | None:
        """Seconds since ``symbol`` was last written, or None if never."""
        with self._lock:
            entry = self._entries.get(symbol)
            return None if entry is None else self._clock() - entry.fetched_at

    def get_all(self) -> dict[str, Quote]:
        """Snapshot of all fresh quotes."""
        with self._lock:
            now = self._clock()
            return {
                symbol: entry.quote
                for symbol, entry in self._entries.items()
                if now - entry.fetched_at < self._ttl
            }

    @property
    def version(self) -> int:
        return self._version

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, symbol: str) -> bool:
        """True only for fresh entries."""
        return self.get(symbol) is not None
