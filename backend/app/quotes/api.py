"""REST endpoints for quotes, search and provider administration."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Query
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from .errors import AllProvidersExhausted, ProviderNotFound
from .factory import QuoteContext

logger = logging.getLogger(__name__)

NO_DATA_MESSAGE = "Unable to fetch live data; check API configuration"


class UpdatePricesRequest(BaseModel):
    symbols: list[str]


class ProviderUpdate(BaseModel):
    api_key: str | None = None
    active: bool | None = None


def create_quote_router(context: QuoteContext) -> APIRouter:
    """Create the REST router over an initialized QuoteContext."""
    router = APIRouter(prefix="/api", tags=["quotes"])

    @router.get("/quote/{symbol}")
    async def get_quote(symbol: str):
        try:
            quote = await context.fetcher.require_quote(symbol)
        except AllProvidersExhausted as e:
            logger.info("%s", e)
            return JSONResponse(
                status_code=404,
                content={"error": NO_DATA_MESSAGE, "symbol": e.symbol, "attempted": e.attempted},
            )
        return quote.to_dict()

    @router.get("/search")
    async def search(q: str = Query(default="")):
        if not q.strip():
            return JSONResponse(status_code=400, content={"error": "Query parameter required"})
        results = await context.fetcher.search(q)
        return {"results": [r.to_dict() for r in results]}

    @router.post("/update-prices")
    async def update_prices(body: UpdatePricesRequest):
        """Refresh prices for portfolio holdings (uses the longer-lived valuation cache)."""
        quotes = await context.valuation_fetcher.get_quotes(body.symbols)
        return {
            "success": True,
            "message": f"Updated {len(quotes)} securities",
            "quotes": {symbol: q.to_dict() for symbol, q in quotes.items()},
        }

    @router.get("/admin/providers")
    async def list_providers():
        return {"providers": [info.to_dict() for info in context.registry.list_info()]}

    @router.put("/admin/providers/{name}")
    async def update_provider(name: str, body: ProviderUpdate):
        try:
            info = context.registry.get(name).info
            if "api_key" in body.model_fields_set:
                context.registry.set_credential(name, body.api_key)
            if body.active is not None:
                context.registry.set_active(name, body.active)
        except ProviderNotFound as e:
            return JSONResponse(status_code=404, content={"error": str(e)})
        await context.refresh_broker()
        return info.to_dict()

    @router.post("/admin/providers/{name}/default")
    async def set_default_provider(name: str):
        try:
            info = context.registry.set_default(name)
        except ProviderNotFound as e:
            return JSONResponse(status_code=404, content={"error": str(e)})
        await context.refresh_broker()
        return info.to_dict()

    @router.get("/admin/usage")
    async def usage_summary(window: float = Query(default=3600.0, gt=0)):
        return {"windowSeconds": window, "providers": context.usage.summarize(window)}

    return router
