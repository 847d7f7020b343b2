"""Provider registry and fallback selection."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from threading import Lock

from .errors import ProviderNotFound
from .interface import QuoteProvider
from .models import ProviderInfo

logger = logging.getLogger(__name__)


class ProviderRegistry:
    """Process-wide set of configured quote providers.

    Providers are kept in registration order, which is the fixed fallback
    order. Read-mostly: the only writers are admin updates (credential,
    default, active) and ``mark_used`` after a successful call.
    """

    def __init__(self, providers: list[QuoteProvider] | None = None) -> None:
        self._providers: dict[str, QuoteProvider] = {}
        self._lock = Lock()
        for provider in providers or []:
            self.register(provider)

    def register(self, provider: QuoteProvider) -> None:
        with self._lock:
            self._providers[provider.name] = provider
        logger.info(
            "Registered provider %s (credential: %s, active: %s)",
            provider.name,
            "yes" if provider.info.has_credential else "no",
            provider.info.active,
        )

    def get(self, name: str) -> QuoteProvider:
        with self._lock:
            provider = self._providers.get(name)
        if provider is None:
            raise ProviderNotFound(name)
        return provider

    def providers(self) -> list[QuoteProvider]:
        with self._lock:
            return list(self._providers.values())

    def list_info(self) -> list[ProviderInfo]:
        return [p.info for p in self.providers()]

    def select_order(self) -> list[QuoteProvider]:
        """Providers to try, best first.

        The default provider leads if it is active and has a credential;
        the remaining usable providers follow in registration order.
        Returns an empty list when nothing is usable; callers treat that
        as "no quote available".
        """
        usable = [p for p in self.providers() if p.info.usable]
        default = [p for p in usable if p.info.default]
        return default[:1] + [p for p in usable if p not in default[:1]]

    def streaming_candidate(self) -> QuoteProvider | None:
        """First provider in selection order that offers a WebSocket feed."""
        for provider in self.select_order():
            if provider.info.websocket_supported and provider.stream_config() is not None:
                return provider
        return None

    def has_usable_provider(self) -> bool:
        return any(p.info.usable for p in self.providers())

    # --- Admin updates ---

    def set_credential(self, name: str, api_key: str | None) -> ProviderInfo:
        provider = self.get(name)
        with self._lock:
            provider.info.api_key = api_key.strip() if api_key and api_key.strip() else None
        logger.info("Credential %s for provider %s", "set" if provider.info.api_key else "cleared", name)
        return provider.info

    def set_active(self, name: str, active: bool) -> ProviderInfo:
        provider = self.get(name)
        with self._lock:
            provider.info.active = active
        logger.info("Provider %s %s", name, "activated" if active else "deactivated")
        return provider.info

    def set_default(self, name: str) -> ProviderInfo:
        """Make ``name`` the default provider; any previous default is cleared."""
        target = self.get(name)
        with self._lock:
            for provider in self._providers.values():
                provider.info.default = provider is target
        logger.info("Default provider set to %s", name)
        return target.info

    def mark_used(self, name: str, when: datetime | None = None) -> None:
        provider = self.get(name)
        with self._lock:
            provider.info.last_used_at = when or datetime.now(timezone.utc)

    async def close(self) -> None:
        for provider in self.providers():
            await provider.close()

    def __len__(self) -> int:
        with self._lock:
            return len(self._providers)

    def __contains__(self, name: str) -> bool:
        with self._lock:
            return name in self._providers
