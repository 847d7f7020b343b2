"""Tests for the SSE event generator and helpers."""

import asyncio
import json
from types import SimpleNamespace

import pytest
import pytest_asyncio

from app.quotes.channels import ChannelHub
from app.quotes.models import Tick
from app.quotes.stream import _generate_events, format_event, parse_symbols

from fakes import FakeProvider, FeedFactory, make_broker


class FakeRequest:
    def __init__(self):
        self.disconnected = False
        self.client = SimpleNamespace(host="127.0.0.1")

    async def is_disconnected(self):
        return self.disconnected


def decode(chunk: str) -> dict:
    assert chunk.startswith("data: ")
    assert chunk.endswith("\n\n")
    return json.loads(chunk[len("data: "):])


@pytest_asyncio.fixture
async def hub():
    broker = make_broker(FakeProvider("ws", feed_factory=FeedFactory()))
    hub = ChannelHub(broker)
    yield hub
    await hub.close_all()
    await broker.stop()


class TestHelpers:
    def test_parse_symbols(self):
        assert parse_symbols("aapl, MSFT,,aapl") == ["AAPL", "MSFT"]
        assert parse_symbols("") == []

    def test_format_event(self):
        assert format_event({"type": "heartbeat"}) == 'data: {"type": "heartbeat"}\n\n'


@pytest.mark.asyncio
class TestGenerateEvents:
    """Drive the generator directly with a fake request."""

    async def test_retry_then_connected(self, hub):
        gen = _generate_events(hub, ["AAPL"], FakeRequest(), interval=0.01)

        assert await anext(gen) == "retry: 1000\n\n"
        [channel] = hub.channels()
        connected = decode(await anext(gen))
        assert connected["type"] == "connected"
        assert connected["channelId"] == channel.id
        assert connected["symbols"] == ["AAPL"]
        await gen.aclose()

    async def test_quote_events(self, hub):
        gen = _generate_events(hub, ["AAPL"], FakeRequest(), interval=0.01, heartbeat_every=0)
        await anext(gen)
        await anext(gen)

        hub.broker.handle_tick(Tick(symbol="AAPL", price=100.0))
        hub.broker.handle_tick(Tick(symbol="AAPL", price=101.0))
        first = decode(await asyncio.wait_for(anext(gen), 1))
        second = decode(await asyncio.wait_for(anext(gen), 1))

        assert (first["type"], first["price"]) == ("quote", 100.0)
        assert (second["change"], second["changePercent"], second["direction"]) == (1.0, "1.00%", "up")
        await gen.aclose()

    async def test_heartbeat_every_nth_cycle(self, hub):
        gen = _generate_events(hub, ["AAPL"], FakeRequest(), interval=0.01, heartbeat_every=3)
        await anext(gen)
        await anext(gen)

        event = decode(await asyncio.wait_for(anext(gen), 1))

        assert event["type"] == "heartbeat"
        await gen.aclose()

    async def test_lifetime_closes_channel(self, hub):
        gen = _generate_events(hub, ["AAPL"], FakeRequest(), interval=0.01, heartbeat_every=0, lifetime=0.05)

        chunks = [chunk async for chunk in gen]

        assert len(chunks) == 2
        assert len(hub) == 0
        assert hub.broker.get_symbols() == []

    async def test_client_disconnect_closes_channel(self, hub):
        request = FakeRequest()
        gen = _generate_events(hub, ["AAPL"], request, interval=0.01)
        await anext(gen)
        [channel] = hub.channels()
        await anext(gen)

        request.disconnected = True
        with pytest.raises(StopAsyncIteration):
            await asyncio.wait_for(anext(gen), 1)

        assert channel.closed
        assert len(hub) == 0

    async def test_unstarted_stream_opens_nothing(self, hub):
        """A response whose body never starts leaves no channel or upstream symbol behind."""
        gen = _generate_events(hub, ["AAPL"], FakeRequest(), interval=0.01)
        await gen.aclose()

        assert len(hub) == 0
        assert hub.broker.get_symbols() == []
        assert not hub.broker.running
