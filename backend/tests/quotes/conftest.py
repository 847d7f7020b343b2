"""Fixtures for quote subsystem tests."""

import pytest

from app.quotes.cache import QuoteCache
from app.quotes.fetcher import QuoteFetcher
from app.quotes.registry import ProviderRegistry
from app.quotes.usage import UsageRecorder

from fakes import FakeClock


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def usage():
    return UsageRecorder()


@pytest.fixture
def build_fetcher(usage, clock):
    """Build a QuoteFetcher over the given providers, with a 60s cache on the fake clock."""

    def _build(*providers, ttl: float = 60.0, timeout: float = 5.0):
        registry = ProviderRegistry(list(providers))
        cache = QuoteCache(ttl=ttl, clock=clock)
        return QuoteFetcher(registry, cache, usage, timeout=timeout)

    return _build
