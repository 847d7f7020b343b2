"""Tests for client channels and the ChannelHub."""

import pytest
import pytest_asyncio

from app.quotes.broker import BrokerState
from app.quotes.channels import MAX_PENDING_EVENTS, ChannelHub, ClientChannel
from app.quotes.models import Tick

from fakes import FakeProvider, FeedFactory, make_broker, wait_until


@pytest_asyncio.fixture
async def hub():
    broker = make_broker(FakeProvider("ws", feed_factory=FeedFactory()))
    hub = ChannelHub(broker)
    yield hub
    await hub.close_all()
    await broker.stop()


@pytest.mark.asyncio
class TestClientChannel:
    async def test_push_and_drain(self):
        channel = ClientChannel()
        channel.push({"type": "heartbeat"})

        assert await channel.wait(0.01)
        assert channel.drain() == [{"type": "heartbeat"}]
        assert channel.drain() == []

    async def test_wait_times_out(self):
        channel = ClientChannel()
        assert not await channel.wait(0.01)

    async def test_closed_channel_ignores_events(self):
        channel = ClientChannel()
        channel.closed = True
        channel.push({"type": "heartbeat"})
        assert channel.drain() == []

    async def test_slow_client_drops_oldest(self):
        channel = ClientChannel()
        for i in range(MAX_PENDING_EVENTS + 5):
            channel.push({"n": i})

        events = channel.drain()

        assert len(events) == MAX_PENDING_EVENTS
        assert events[0] == {"n": 5}


@pytest.mark.asyncio
class TestChannelHub:
    """Symbol refcounting and broker wiring."""

    async def test_open_subscribes_and_starts_broker(self, hub):
        channel = await hub.open(["aapl", "MSFT"])

        assert channel.get_symbols() == ["AAPL", "MSFT"]
        assert hub.broker.get_symbols() == ["AAPL", "MSFT"]
        assert hub.broker.running
        assert hub.get(channel.id) is channel

    async def test_shared_symbol_refcount(self, hub):
        first = await hub.open(["AAPL"])
        second = await hub.open(["AAPL", "MSFT"])

        await hub.close(first.id)
        assert hub.broker.get_symbols() == ["AAPL", "MSFT"]

        await hub.close(second.id)
        assert hub.broker.get_symbols() == []
        assert len(hub) == 0

    async def test_subscribe_and_unsubscribe(self, hub):
        channel = await hub.open([])

        assert await hub.subscribe(channel.id, ["AAPL", "aapl"]) == ["AAPL"]
        assert await hub.unsubscribe(channel.id, ["AAPL", "TSLA"]) == ["AAPL"]
        assert channel.get_symbols() == []
        assert hub.broker.get_symbols() == []

    async def test_quotes_reach_subscribed_channels_only(self, hub):
        aapl = await hub.open(["AAPL"])
        msft = await hub.open(["MSFT"])

        hub.broker.handle_tick(Tick(symbol="AAPL", price=190.0))

        events = aapl.drain()
        assert [e["type"] for e in events] == ["quote"]
        assert events[0]["symbol"] == "AAPL"
        assert events[0]["direction"] == "flat"
        assert msft.drain() == []

    async def test_closed_channel_stops_receiving(self, hub):
        channel = await hub.open(["AAPL"])
        await hub.close(channel.id)

        hub.broker.handle_tick(Tick(symbol="AAPL", price=190.0))

        assert channel.drain() == []
        with pytest.raises(KeyError):
            hub.get(channel.id)

    async def test_unknown_channel(self, hub):
        with pytest.raises(KeyError):
            await hub.subscribe("missing", ["AAPL"])
        await hub.close("missing")

    async def test_unconfigured_broker_reports_error(self):
        broker = make_broker(FakeProvider("ws", api_key=None, feed_factory=FeedFactory()))
        hub = ChannelHub(broker)

        channel = await hub.open(["AAPL"])
        await wait_until(lambda: broker.state is BrokerState.UNCONFIGURED)

        events = channel.drain()
        assert events[-1]["type"] == "error"
        assert events[-1]["message"] == "Unable to fetch live data; check API configuration"
        assert events[-1]["state"] == "unconfigured"
        await hub.close_all()
        await broker.stop()
