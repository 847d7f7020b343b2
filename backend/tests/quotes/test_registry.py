"""Tests for ProviderRegistry selection order and admin updates."""

import pytest

from app.quotes.errors import ProviderNotFound
from app.quotes.registry import ProviderRegistry

from fakes import FakeFeed, FakeProvider


class TestSelectOrder:
    """Fallback order: usable default first, then registration order."""

    def test_registration_order(self):
        registry = ProviderRegistry([FakeProvider("a"), FakeProvider("b"), FakeProvider("c")])
        assert [p.name for p in registry.select_order()] == ["a", "b", "c"]

    def test_default_leads(self):
        registry = ProviderRegistry([FakeProvider("a"), FakeProvider("b"), FakeProvider("c")])
        registry.set_default("c")
        assert [p.name for p in registry.select_order()] == ["c", "a", "b"]

    def test_skips_missing_credential(self):
        registry = ProviderRegistry([FakeProvider("a", api_key=None), FakeProvider("b")])
        assert [p.name for p in registry.select_order()] == ["b"]

    def test_skips_inactive(self):
        registry = ProviderRegistry([FakeProvider("a"), FakeProvider("b")])
        registry.set_active("a", False)
        assert [p.name for p in registry.select_order()] == ["b"]

    def test_unusable_default_does_not_lead(self):
        """A default without a credential is skipped like any other provider."""
        registry = ProviderRegistry([FakeProvider("a"), FakeProvider("b", api_key=None)])
        registry.set_default("b")
        assert [p.name for p in registry.select_order()] == ["a"]

    def test_empty_when_nothing_usable(self):
        registry = ProviderRegistry([FakeProvider("a", api_key=None)])
        assert registry.select_order() == []
        assert not registry.has_usable_provider()

    def test_empty_registry(self):
        registry = ProviderRegistry()
        assert registry.select_order() == []
        assert len(registry) == 0


class TestAdminUpdates:
    def test_set_default_clears_previous(self):
        registry = ProviderRegistry([FakeProvider("a"), FakeProvider("b")])
        registry.set_default("a")
        registry.set_default("b")

        defaults = [info.name for info in registry.list_info() if info.default]
        assert defaults == ["b"]

    def test_set_credential(self):
        registry = ProviderRegistry([FakeProvider("a", api_key=None)])
        info = registry.set_credential("a", "  new-key  ")
        assert info.api_key == "new-key"
        assert info.usable

    def test_blank_credential_clears(self):
        registry = ProviderRegistry([FakeProvider("a")])
        info = registry.set_credential("a", "   ")
        assert info.api_key is None
        assert not info.usable

    def test_mark_used(self):
        registry = ProviderRegistry([FakeProvider("a")])
        assert registry.get("a").info.last_used_at is None
        registry.mark_used("a")
        assert registry.get("a").info.last_used_at is not None

    def test_unknown_provider(self):
        registry = ProviderRegistry([FakeProvider("a")])
        with pytest.raises(ProviderNotFound):
            registry.get("nope")
        with pytest.raises(ProviderNotFound):
            registry.set_default("nope")

    def test_contains(self):
        registry = ProviderRegistry([FakeProvider("a")])
        assert "a" in registry
        assert "b" not in registry


class TestStreamingCandidate:
    def test_first_websocket_provider_in_order(self):
        registry = ProviderRegistry(
            [FakeProvider("poll"), FakeProvider("ws1", feed_factory=FakeFeed), FakeProvider("ws2", feed_factory=FakeFeed)]
        )
        assert registry.streaming_candidate().name == "ws1"

        registry.set_default("ws2")
        assert registry.streaming_candidate().name == "ws2"

    def test_none_without_websocket_provider(self):
        registry = ProviderRegistry([FakeProvider("poll")])
        assert registry.streaming_candidate() is None

    def test_ignores_unusable_websocket_provider(self):
        registry = ProviderRegistry([FakeProvider("ws", api_key=None, feed_factory=FakeFeed)])
        assert registry.streaming_candidate() is None


@pytest.mark.asyncio
class TestClose:
    async def test_closes_every_provider(self):
        providers = [FakeProvider("a"), FakeProvider("b")]
        registry = ProviderRegistry(providers)
        await registry.close()
        assert all(p.closed for p in providers)
