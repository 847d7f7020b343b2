"""Usage recording for upstream provider calls."""

from __future__ import annotations

import logging
import time
from collections import deque
from collections.abc import Callable
from threading import Lock
from typing import Protocol

from .models import UsageRecord

logger = logging.getLogger(__name__)


class UsageStore(Protocol):
    """Storage collaborator for usage records (append + scan)."""

    def append(self, record: UsageRecord) -> None: ...

    def scan(self, since: float | None = None) -> list[UsageRecord]: ...


class InMemoryUsageStore:
    """Bounded in-process store. Oldest records fall off once ``maxlen`` is reached."""

    def __init__(self, maxlen: int = 10_000) -> None:
        self._records: deque[UsageRecord] = deque(maxlen=maxlen)
        self._lock = Lock()

    def append(self, record: UsageRecord) -> None:
        with self._lock:
            self._records.append(record)

    def scan(self, since: float | None = None) -> list[UsageRecord]:
        with self._lock:
            if since is None:
                return list(self._records)
            return [r for r in self._records if r.timestamp >= since]


class UsageRecorder:
    """Appends one UsageRecord per upstream call.

    ``record`` never raises: a failing store is logged and ignored so that
    bookkeeping can't break a quote request. Aggregates are computed on
    demand from the stored records.
    """

    def __init__(self, store: UsageStore | None = None, clock: Callable[[], float] = time.time) -> None:
        self._store = store if store is not None else InMemoryUsageStore()
        self._clock = clock

    def record(
        self,
        provider: str,
        endpoint: str,
        latency_ms: float,
        status_code: int,
        error: str | None = None,
    ) -> UsageRecord | None:
        try:
            record = UsageRecord(
                provider=provider,
                endpoint=endpoint,
                latency_ms=int(round(latency_ms)),
                status_code=status_code,
                error_message=error,
                timestamp=self._clock(),
            )
            self._store.append(record)
            return record
        except Exception:
            logger.exception("Failed to record usage for %s %s", provider, endpoint)
            return None

    def records(self, provider: str | None = None, since: float | None = None) -> list[UsageRecord]:
        records = self._store.scan(since)
        if provider is not None:
            records = [r for r in records if r.provider == provider]
        return records

    def summarize(self, window_seconds: float = 3600.0) -> dict[str, dict]:
        """Per-provider request count, error count, average latency and error rate
        over the trailing ``window_seconds``."""
        since = self._clock() - window_seconds
        summary: dict[str, dict] = {}
        for record in self._store.scan(since):
            stats = summary.setdefault(
                record.provider,
                {"requests": 0, "errors": 0, "total_latency_ms": 0, "endpoints": {}},
            )
            stats["requests"] += 1
            stats["total_latency_ms"] += record.latency_ms
            stats["endpoints"][record.endpoint] = stats["endpoints"].get(record.endpoint, 0) + 1
            if not record.ok:
                stats["errors"] += 1

        for stats in summary.values():
            total = stats.pop("total_latency_ms")
            stats["avg_latency_ms"] = round(total / stats["requests"], 1)
            stats["error_rate"] = round(stats["errors"] / stats["requests"], 4)
        return summary

    def __len__(self) -> int:
        return len(self._store.scan())
