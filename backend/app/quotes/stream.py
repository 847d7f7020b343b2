"""SSE streaming endpoints for live quote updates."""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import AsyncGenerator

from fastapi import APIRouter, HTTPException, Request
from fastapi.responses import StreamingResponse
from pydantic import BaseModel

from .channels import ChannelHub, connected_event, heartbeat_event
from .fetcher import normalize_symbol

logger = logging.getLogger(__name__)


class SymbolsRequest(BaseModel):
    symbols: list[str]


def parse_symbols(raw: str) -> list[str]:
    """'aapl, MSFT,,aapl' -> ['AAPL', 'MSFT']"""
    return list(dict.fromkeys(s for s in (normalize_symbol(p) for p in raw.split(",")) if s))


def format_event(event: dict) -> str:
    return f"data: {json.dumps(event)}\n\n"


def create_stream_router(
    hub: ChannelHub,
    interval: float = 1.0,
    heartbeat_every: int = 10,
    lifetime: float = 300.0,
    default_symbols: list[str] | None = None,
) -> APIRouter:
    """Create the realtime router around a ChannelHub.

    A client that names no symbols gets ``default_symbols``.
    """
    router = APIRouter(prefix="/api/realtime", tags=["streaming"])

    @router.get("")
    async def stream_quotes(request: Request, symbols: str = "") -> StreamingResponse:
        """SSE endpoint for live quote updates.

        The client connects with EventSource (``?symbols=AAPL,MSFT``) and
        receives JSON events with a ``type`` of connected, quote, error or
        heartbeat:

            data: {"type": "quote", "symbol": "AAPL", "price": 190.5, "change": 0.5, ...}

        The stream ends after ``lifetime`` seconds; the retry directive makes
        the browser reconnect with a fresh channel.
        """
        wanted = parse_symbols(symbols) or list(default_symbols or [])
        return StreamingResponse(
            _generate_events(hub, wanted, request, interval, heartbeat_every, lifetime),
            media_type="text/event-stream",
            headers={
                "Cache-Control": "no-cache",
                "Connection": "keep-alive",
                "X-Accel-Buffering": "no",  # Disable nginx buffering if proxied
            },
        )

    @router.get("/status")
    async def broker_status() -> dict:
        return {**hub.broker.status(), "channels": len(hub)}

    @router.post("/{channel_id}/subscribe")
    async def subscribe(channel_id: str, body: SymbolsRequest) -> dict:
        try:
            added = await hub.subscribe(channel_id, body.symbols)
            channel = hub.get(channel_id)
        except KeyError:
            raise HTTPException(status_code=404, detail="Unknown channel")
        return {"channelId": channel_id, "added": added, "symbols": channel.get_symbols()}

    @router.post("/{channel_id}/unsubscribe")
    async def unsubscribe(channel_id: str, body: SymbolsRequest) -> dict:
        try:
            removed = await hub.unsubscribe(channel_id, body.symbols)
            channel = hub.get(channel_id)
        except KeyError:
            raise HTTPException(status_code=404, detail="Unknown channel")
        return {"channelId": channel_id, "removed": removed, "symbols": channel.get_symbols()}

    return router


async def _generate_events(
    hub: ChannelHub,
    symbols: list[str],
    request: Request,
    interval: float = 1.0,
    heartbeat_every: int = 10,
    lifetime: float = 300.0,
) -> AsyncGenerator[str, None]:
    """Async generator that opens a channel for ``symbols`` and yields its SSE-formatted events.

    Each cycle waits up to ``interval`` seconds for quotes, then flushes
    them. Every ``heartbeat_every``-th cycle also sends a heartbeat so
    proxies don't drop a quiet connection. Stops when the client
    disconnects or the channel reaches ``lifetime``; the channel is
    closed either way. Nothing is opened until the response body starts.
    """
    channel = await hub.open(symbols)
    client_ip = request.client.host if request.client else "unknown"
    logger.info("SSE client connected: %s (channel %s)", client_ip, channel.id)

    loop = asyncio.get_running_loop()
    deadline = loop.time() + lifetime
    cycle = 0
    try:
        # Tell the client to retry after 1 second if the connection drops
        yield "retry: 1000\n\n"
        yield format_event(connected_event(channel))

        while True:
            # Check for client disconnect
            if await request.is_disconnected():
                logger.info("SSE client disconnected: %s", client_ip)
                break
            if loop.time() >= deadline:
                logger.info("SSE channel %s reached its lifetime; closing", channel.id)
                break

            await channel.wait(min(interval, max(deadline - loop.time(), 0)))
            cycle += 1
            for event in channel.drain():
                yield format_event(event)
            if heartbeat_every and cycle % heartbeat_every == 0:
                yield format_event(heartbeat_event())
    except asyncio.CancelledError:
        logger.info("SSE stream cancelled for: %s", client_ip)
    finally:
        await hub.close(channel.id)
