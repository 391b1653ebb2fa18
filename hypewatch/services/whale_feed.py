import logging
from typing import Any, Dict, Optional

import aiohttp

from hypewatch.config import config
from hypewatch.services.market_feed import _HttpFeed

logger = logging.getLogger("WhaleFeed")

BROWSER_HEADERS = {
    "User-Agent": "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
}


class WhaleFeed(_HttpFeed):
    """
    Whale positioning for the tracked token from hyperbot.network.
    Results are relayed as-is; the dashboard does the formatting.
    """

    def __init__(
        self,
        session: Optional[aiohttp.ClientSession] = None,
        base_url: str = config.WHALE_API_BASE,
        coin: str = config.COIN,
    ):
        super().__init__(session)
        self.base_url = base_url.rstrip("/")
        self.coin = coin

    async def get_open_positions(self, take: int = 50) -> Optional[Any]:
        url = (
            f"{self.base_url}/open-positions?take={take}&coin={self.coin}"
            "&dir=all&npnl-side=all&fr-side=all&top-by=create-time"
        )
        return await self._get_json(url, headers=BROWSER_HEADERS)

    async def get_analysis(self) -> Optional[Dict[str, Any]]:
        """24h whale liquidations plus long/short head count. None if either call fails."""
        liquidation = await self._get_json(
            f"{self.base_url}/coin-liquidation?coin={self.coin}&interval=24h", headers=BROWSER_HEADERS
        )
        long_short = await self._get_json(
            f"{self.base_url}/long-short?coin={self.coin}", headers=BROWSER_HEADERS
        )
        if liquidation is None or long_short is None:
            logger.warning("Whale analysis upstream unavailable")
            return None

        return {
            "liquidation": liquidation.get("data") or {"longUsd": 0, "shortUsd": 0},
            "longShort": long_short.get("data") or {"longCount": 0, "shortCount": 0},
        }
