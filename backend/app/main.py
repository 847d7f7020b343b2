"""FastAPI application for the portfolio dashboard's quote backend."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from app.quotes import QuoteSettings, create_quote_context, create_quote_router, create_stream_router
from app.quotes.factory import QuoteContext


def create_app(settings: QuoteSettings | None = None, context: QuoteContext | None = None) -> FastAPI:
    """Build the app. The quote context is started and closed with the app lifespan."""
    settings = settings or (context.settings if context else QuoteSettings())
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    context = context or create_quote_context(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await context.start()
        try:
            yield
        finally:
            await context.close()

    app = FastAPI(title="Portfolio quotes", lifespan=lifespan)
    app.state.quotes = context
    app.include_router(create_quote_router(context))
    app.include_router(
        create_stream_router(
            context.hub,
            interval=settings.stream_interval_seconds,
            heartbeat_every=settings.heartbeat_every,
            lifetime=settings.channel_lifetime_seconds,
            default_symbols=settings.default_symbols,
        )
    )
    return app
