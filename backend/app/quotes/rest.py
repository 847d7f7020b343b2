"""Shared aiohttp plumbing for REST quote providers."""

from __future__ import annotations

import asyncio
import logging
from typing import Any

import aiohttp

from .errors import ProviderUnavailable, UpstreamCallFailed
from .interface import QuoteProvider
from .models import ProviderInfo

logger = logging.getLogger(__name__)


class RestProvider(QuoteProvider):
    """QuoteProvider that talks JSON over HTTP GET.

    The aiohttp session is created lazily on first use and closed by
    ``close()``. The credential is read from ``self.info`` on every call so
    that admin updates take effect without rebuilding the provider.
    """

    base_url: str = ""

    def __init__(
        self,
        info: ProviderInfo,
        timeout: float = 10.0,
        session: aiohttp.ClientSession | None = None,
    ) -> None:
        super().__init__(info)
        self._timeout = timeout
        self._session = session
        self._owns_session = session is None

    def _require_key(self) -> str:
        if not self.info.has_credential:
            raise ProviderUnavailable(self.name)
        return self.info.api_key.strip()

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self._timeout)
            )
            self._owns_session = True
        return self._session

    async def _get_json(self, path: str, params: dict[str, str]) -> Any:
        """GET ``base_url + path`` and decode the JSON body.

        Any transport problem, non-200 status or undecodable body becomes
        UpstreamCallFailed.
        """
        session = self._get_session()
        url = f"{self.base_url}{path}"
        try:
            async with session.get(url, params=params) as response:
                if response.status != 200:
                    text = await response.text()
                    raise UpstreamCallFailed(
                        self.name,
                        f"HTTP {response.status}: {text[:200]}",
                        status_code=response.status,
                    )
                return await response.json(content_type=None)
        except aiohttp.ClientError as e:
            raise UpstreamCallFailed(self.name, f"Connection error: {e}") from e
        except asyncio.TimeoutError as e:
            raise UpstreamCallFailed(self.name, "Request timed out") from e
        except ValueError as e:
            raise UpstreamCallFailed(self.name, f"Malformed payload: {e}") from e

    async def close(self) -> None:
        if self._session is not None and self._owns_session and not self._session.closed:
            await self._session.close()
        self._session = None
        logger.debug("%s HTTP session closed", self.name)


def to_float(value: Any, default: float = 0.0) -> float:
    """Lenient float parse for provider payloads that send numbers as strings."""
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


def to_int(value: Any, default: int = 0) -> int:
    try:
        return int(float(value))
    except (TypeError, ValueError):
        return default
