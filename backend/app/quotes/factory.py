"""Factory for the quote subsystem's shared objects."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from .broker import BackoffPolicy, RealtimeBroker
from .cache import QuoteCache
from .channels import ChannelHub
from .config import PROVIDER_ORDER, QuoteSettings
from .errors import ConfigurationError
from .fetcher import QuoteFetcher
from .finnhub_client import FinnhubProvider, default_finnhub_info
from .interface import QuoteProvider
from .massive_client import MassiveProvider, default_massive_info
from .registry import ProviderRegistry
from .twelve_data_client import TwelveDataProvider, default_twelve_data_info
from .usage import InMemoryUsageStore, UsageRecorder

logger = logging.getLogger(__name__)


@dataclass
class QuoteContext:
    """Everything the quote endpoints need, created once per application.

    Two cache tiers share one registry and usage recorder: ``fetcher``
    serves interactive quote requests and polling (short TTL), while
    ``valuation_fetcher`` serves batch portfolio refreshes (long TTL).

    Lifecycle:
        context = create_quote_context(settings)
        await context.start()
        # ... app runs ...
        await context.close()
    """

    settings: QuoteSettings
    registry: ProviderRegistry
    usage: UsageRecorder
    cache: QuoteCache
    valuation_cache: QuoteCache
    fetcher: QuoteFetcher
    valuation_fetcher: QuoteFetcher
    broker: RealtimeBroker
    hub: ChannelHub

    async def start(self) -> None:
        await self.broker.start()
        logger.info("Quote subsystem started (broker %s)", self.broker.state.value)

    async def refresh_broker(self) -> None:
        """Reconnect the broker after a provider change so feed selection is redone."""
        await self.broker.restart()

    async def close(self) -> None:
        await self.hub.close_all()
        await self.broker.stop()
        await self.registry.close()
        logger.info("Quote subsystem stopped")


def create_providers(settings: QuoteSettings) -> list[QuoteProvider]:
    """Build every known provider in fixed fallback order, with credentials from settings.

    Providers without a credential are still registered so an operator can
    add a key at runtime; they are skipped by selection until then.
    """
    timeout = settings.request_timeout_seconds
    builders = {
        "finnhub": lambda: FinnhubProvider(
            default_finnhub_info(settings.finnhub_api_key), timeout=timeout
        ),
        "twelve_data": lambda: TwelveDataProvider(
            default_twelve_data_info(settings.twelve_data_api_key), timeout=timeout
        ),
        "massive": lambda: MassiveProvider(
            default_massive_info(settings.massive_api_key), timeout=timeout
        ),
    }
    return [builders[name]() for name in PROVIDER_ORDER]


def create_quote_context(
    settings: QuoteSettings | None = None,
    providers: list[QuoteProvider] | None = None,
) -> QuoteContext:
    """Wire registry, caches, fetchers, broker and channel hub from settings.

    ``providers`` overrides the configured provider list (tests, custom
    deployments). Raises ConfigurationError if ``default_provider`` names
    an unknown provider. Returns an unstarted context.
    """
    settings = settings or QuoteSettings()
    registry = ProviderRegistry(providers if providers is not None else create_providers(settings))

    if settings.default_provider:
        if settings.default_provider not in registry:
            raise ConfigurationError(f"Unknown default provider: {settings.default_provider}")
        registry.set_default(settings.default_provider)

    usable = [p.name for p in registry.select_order()]
    if usable:
        logger.info("Quote providers in fallback order: %s", ", ".join(usable))
    else:
        logger.warning("No quote provider has an API key; live data is unavailable")

    usage = UsageRecorder(InMemoryUsageStore(maxlen=settings.usage_history_size))
    cache = QuoteCache(ttl=settings.cache_ttl_seconds)
    valuation_cache = QuoteCache(ttl=settings.persisted_cache_ttl_seconds)
    timeout = settings.request_timeout_seconds
    fetcher = QuoteFetcher(registry, cache, usage, timeout=timeout)
    valuation_fetcher = QuoteFetcher(registry, valuation_cache, usage, timeout=timeout)

    broker = RealtimeBroker(
        registry,
        fetcher,
        backoff=BackoffPolicy(
            base_delay=settings.reconnect_base_delay_seconds,
            max_delay=settings.reconnect_max_delay_seconds,
            max_attempts=settings.reconnect_max_attempts,
        ),
        connection_lifetime=settings.connection_lifetime_seconds,
        poll_interval=settings.poll_interval_seconds,
    )
    hub = ChannelHub(broker)

    return QuoteContext(
        settings=settings,
        registry=registry,
        usage=usage,
        cache=cache,
        valuation_cache=valuation_cache,
        fetcher=fetcher,
        valuation_fetcher=valuation_fetcher,
        broker=broker,
        hub=hub,
    )
