"""Market config service backed by the Solend markets API or inline YAML."""
from __future__ import annotations

import asyncio
import logging
import ssl
from typing import Any

import aiohttp
import certifi

from ..config import MarketsConfig
from ..models import Pool
from ..protocols.solend.markets import parse_markets

logger = logging.getLogger(__name__)


class MarketService:
    """Loads market configs once; they are static metadata and safe to keep."""

    def __init__(
        self, config: MarketsConfig, attempts: int = 3, retry_delay: float = 1.0
    ) -> None:
        self._config = config
        self._attempts = max(1, attempts)
        self._retry_delay = retry_delay
        self._pools: list[Pool] | None = None

    async def _fetch_api(self) -> list[dict[str, Any]]:
        ssl_context = ssl.create_default_context(cafile=certifi.where())

        last_error: Exception | None = None
        for attempt in range(self._attempts):
            try:
                connector = aiohttp.TCPConnector(ssl=ssl_context)
                async with aiohttp.ClientSession(connector=connector) as session:
                    async with session.get(self._config.api_url) as response:
                        if response.status != 200:
                            raise RuntimeError(f"HTTP {response.status}")
                        data = await response.json()
                        if not isinstance(data, list):
                            raise RuntimeError("Unexpected market config payload")
                        return data
            except Exception as e:
                last_error = e
                logger.warning(
                    "Fetching market configs failed (attempt %d/%d): %s",
                    attempt + 1,
                    self._attempts,
                    e,
                )
                if attempt < self._attempts - 1:
                    await asyncio.sleep(self._retry_delay)

        raise RuntimeError(f"Unable to fetch market configs: {last_error}")

    async def load_markets(self) -> list[Pool]:
        if self._pools is not None:
            return self._pools

        if self._config.source == "file":
            raw = list(self._config.markets)
        else:
            raw = await self._fetch_api()

        pools = parse_markets(raw, self._config.names)
        if self._config.names and not pools:
            logger.warning("No market matched names %s", ", ".join(self._config.names))
        logger.info("Loaded %d market(s) from %s", len(pools), self._config.source)
        self._pools = pools
        return pools
