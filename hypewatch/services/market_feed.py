"""
Upstream market-data adapters for the tracked token.

Each feed owns its TTL caches and an aiohttp session (shared when one is
passed in). Failures are logged and answered from the last good value where
one exists; the simulator core never sees a network call.
"""

import logging
import time
from typing import Any, Callable, Dict, List, Literal, Optional, Tuple

import aiohttp
from pydantic import BaseModel

from hypewatch.config import config
from hypewatch.services.ttl_cache import TTLCache
from hypewatch.sim_engine.models.cascade_models import BidLevel, PriceBin
from hypewatch.sim_engine.models.position_models import TimeWeightedOrder
from hypewatch.sim_engine.processors.price_bins import normalize_heatmap, parse_bids

logger = logging.getLogger(__name__)

# HYPE market ids on Hyperliquid
HYPE_PERP_ID = 159
HYPE_SPOT_ID = 10107
HYPE_SPOT_INDEX = 107
SPOT_ID_OFFSET = 10000


class MarketSnapshot(BaseModel):
    perp_price: float = 0.0
    spot_price: float = 0.0
    open_interest: float = 0.0
    last_updated: int = 0


class EnrichedTwap(BaseModel):
    """A Hypurrscan TWAP entry resolved to token, side and USD size."""
    id: str
    time: int
    user: str
    market_id: int
    market_type: Literal["PERP", "SPOT"]
    token: str
    side: Literal["BUY", "SELL"]
    size: str
    size_usd: float
    mark_price: float = 0.0
    duration_minutes: int
    time_remaining_minutes: int
    reduce_only: bool = False
    randomize: bool = False
    status: Literal["active", "canceled", "error", "ended"] = "active"
    hash: str

    def to_order(self) -> TimeWeightedOrder:
        return TimeWeightedOrder(
            id=self.id,
            time=self.time,
            user=self.user,
            side=self.side,
            size_usd=self.size_usd,
            price=self.mark_price or None,
            duration_minutes=self.duration_minutes,
        )


def _safe_float(value: Any) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0.0


def _now_ms() -> int:
    return int(time.time() * 1000)


class _HttpFeed:
    def __init__(self, session: Optional[aiohttp.ClientSession] = None):
        self.session = session
        self._owns_session = session is None

    async def _get_session(self) -> aiohttp.ClientSession:
        """Get or create aiohttp session."""
        if self.session is None or self.session.closed:
            self.session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=10),
                headers={"Content-Type": "application/json"},
            )
            self._owns_session = True
        return self.session

    async def _get_json(self, url: str, headers: Optional[Dict[str, str]] = None) -> Optional[Any]:
        try:
            session = await self._get_session()
            async with session.get(url, headers=headers) as resp:
                if resp.status != 200:
                    logger.error(f"GET {url} returned {resp.status}")
                    return None
                return await resp.json()
        except Exception as e:
            logger.error(f"Error fetching {url}: {e}")
            return None

    async def close(self):
        if self._owns_session and self.session is not None and not self.session.closed:
            await self.session.close()


class HyperliquidFeed(_HttpFeed):
    """Prices, open interest, order book and market metadata from the Hyperliquid info API."""

    def __init__(
        self,
        session: Optional[aiohttp.ClientSession] = None,
        api_url: str = config.HYPERLIQUID_API,
        coin: str = config.COIN,
        price_ttl: float = config.PRICE_CACHE_TTL,
        meta_ttl: float = config.META_CACHE_TTL,
        clock: Optional[Callable[[], float]] = None,
    ):
        super().__init__(session)
        self.api_url = api_url
        self.coin = coin
        self.price_cache: TTLCache[MarketSnapshot] = TTLCache(price_ttl, clock)
        self.meta_cache: TTLCache[Tuple[List[Tuple[str, float]], Dict[int, Tuple[str, float]]]] = TTLCache(meta_ttl, clock)

    async def _post(self, payload: Dict[str, Any]) -> Optional[Any]:
        try:
            session = await self._get_session()
            async with session.post(self.api_url, json=payload) as resp:
                if resp.status != 200:
                    logger.error(f"Hyperliquid {payload.get('type')} returned {resp.status}")
                    return None
                return await resp.json()
        except Exception as e:
            logger.error(f"Hyperliquid {payload.get('type')} request failed: {e}")
            return None

    def _parse_perp(self, data: Any) -> Tuple[float, float]:
        universe, ctxs = data[0].get("universe", []), data[1]
        for i, asset in enumerate(universe):
            if asset.get("name") == self.coin and i < len(ctxs):
                return _safe_float(ctxs[i].get("markPx")), _safe_float(ctxs[i].get("openInterest"))
        return 0.0, 0.0

    def _parse_spot(self, data: Any) -> float:
        universe, ctxs = data[0].get("universe", []), data[1]
        market = next((m for m in universe if m.get("index") == HYPE_SPOT_INDEX), None)
        if market is None:
            market = next((m for m in universe if m.get("name") == f"{self.coin}/USDC"), None)
        if market is None:
            return 0.0
        idx = market.get("index", -1)
        if 0 <= idx < len(ctxs):
            return _safe_float(ctxs[idx].get("markPx"))
        return 0.0

    async def get_prices(self) -> MarketSnapshot:
        cached = self.price_cache.get()
        if cached is not None:
            return cached

        perp_data = await self._post({"type": "metaAndAssetCtxs"})
        spot_data = await self._post({"type": "spotMetaAndAssetCtxs"})

        if perp_data is None and spot_data is None:
            stale = self.price_cache.get_stale()
            if stale is not None:
                logger.warning("Price feed unavailable, serving last snapshot")
                return stale
            return MarketSnapshot(last_updated=_now_ms())

        perp_price, open_interest, spot_price = 0.0, 0.0, 0.0
        try:
            if perp_data is not None:
                perp_price, open_interest = self._parse_perp(perp_data)
            if spot_data is not None:
                spot_price = self._parse_spot(spot_data)
        except (KeyError, IndexError, TypeError, AttributeError) as e:
            logger.error(f"Malformed price payload: {e}")

        snapshot = MarketSnapshot(
            perp_price=perp_price,
            spot_price=spot_price,
            open_interest=open_interest,
            last_updated=_now_ms(),
        )
        return self.price_cache.set(snapshot)

    async def get_order_book(self) -> Optional[Dict[str, Any]]:
        """Raw l2Book payload: {"coin", "time", "levels": [bids, asks]}."""
        return await self._post({"type": "l2Book", "coin": self.coin})

    async def get_bids(self) -> List[BidLevel]:
        book = await self.get_order_book()
        if not book:
            return []
        levels = book.get("levels") or [[], []]
        return parse_bids(levels[0] if levels else [])

    async def get_market_metadata(self):
        """
        (perp list indexed by market id, spot map keyed by 10000 + spot index),
        each entry a (name, mark price) pair.
        """
        cached = self.meta_cache.get()
        if cached is not None:
            return cached

        perp_data = await self._post({"type": "metaAndAssetCtxs"})
        spot_data = await self._post({"type": "spotMetaAndAssetCtxs"})
        stale = self.meta_cache.get_stale()
        perps, spots = stale if stale is not None else ([], {})

        try:
            if perp_data is not None:
                universe, ctxs = perp_data[0].get("universe", []), perp_data[1]
                perps = [
                    (asset.get("name", f"PERP_{i}"), _safe_float(ctxs[i].get("markPx")) if i < len(ctxs) else 0.0)
                    for i, asset in enumerate(universe)
                ]
            if spot_data is not None:
                meta, ctxs = spot_data[0], spot_data[1]
                token_names = {t.get("index"): t.get("name") for t in meta.get("tokens", [])}
                spots = {}
                for i, market in enumerate(meta.get("universe", [])):
                    base_idx = (market.get("tokens") or [None])[0]
                    name = token_names.get(base_idx) or market.get("name", "")
                    idx = market.get("index", i)
                    ctx = ctxs[idx] if 0 <= idx < len(ctxs) else (ctxs[i] if i < len(ctxs) else {})
                    spots[SPOT_ID_OFFSET + idx] = (name, _safe_float(ctx.get("markPx")))
        except (KeyError, IndexError, TypeError, AttributeError) as e:
            logger.error(f"Malformed market metadata: {e}")

        if perp_data is None and spot_data is None:
            return perps, spots
        return self.meta_cache.set((perps, spots))

    async def token_info(self, market_id: int) -> Tuple[str, float]:
        perps, spots = await self.get_market_metadata()
        if market_id < SPOT_ID_OFFSET:
            if market_id < len(perps):
                return perps[market_id]
            return f"Unknown-{market_id}", 0.0
        if market_id in spots:
            return spots[market_id]
        return f"SPOT-{market_id - SPOT_ID_OFFSET}", 0.0


class TwapFeed(_HttpFeed):
    """Active TWAPs for the tracked token from HypurrScan."""

    MARKET_IDS = (HYPE_PERP_ID, HYPE_SPOT_ID)

    def __init__(
        self,
        hl_feed: HyperliquidFeed,
        session: Optional[aiohttp.ClientSession] = None,
        url: str = config.HYPURRSCAN_API,
    ):
        super().__init__(session or hl_feed.session)
        self.hl_feed = hl_feed
        self.url = url

    async def fetch_raw(self) -> Optional[List[Dict[str, Any]]]:
        return await self._get_json(self.url)

    async def enrich(self, raw: Dict[str, Any], prices: MarketSnapshot, now_ms: Optional[int] = None) -> EnrichedTwap:
        now_ms = _now_ms() if now_ms is None else now_ms
        twap = raw["action"]["twap"]
        market_id = int(twap.get("a", 0))
        name, mark_px = await self.hl_feed.token_info(market_id)
        if market_id == HYPE_PERP_ID:
            mark_px = prices.perp_price
        elif market_id == HYPE_SPOT_ID:
            mark_px = prices.spot_price

        duration = int(twap.get("m", 0) or 0)
        start = int(raw.get("time", 0) or 0)
        end = start + duration * 60_000
        return EnrichedTwap(
            id=raw.get("hash", ""),
            time=start,
            user=raw.get("user", ""),
            market_id=market_id,
            market_type="SPOT" if market_id >= SPOT_ID_OFFSET else "PERP",
            token=name,
            side="BUY" if twap.get("b", True) else "SELL",
            size=str(twap.get("s", "0")),
            size_usd=_safe_float(twap.get("s")) * mark_px,
            mark_price=mark_px,
            duration_minutes=duration,
            time_remaining_minutes=max(0, round((end - now_ms) / 60_000)),
            reduce_only=bool(twap.get("r", False)),
            randomize=bool(twap.get("t", False)),
            hash=raw.get("hash", ""),
        )

    async def get_active_twaps(self, prices: Optional[MarketSnapshot] = None) -> Optional[List[EnrichedTwap]]:
        """Active TWAPs on the tracked markets, newest first. None if HypurrScan is unreachable."""
        raw_twaps = await self.fetch_raw()
        if raw_twaps is None:
            return None
        prices = prices or await self.hl_feed.get_prices()
        now_ms = _now_ms()

        enriched = []
        for raw in raw_twaps:
            try:
                if raw.get("ended"):
                    continue
                if int(raw["action"]["twap"].get("a", -1)) not in self.MARKET_IDS:
                    continue
                enriched.append(await self.enrich(raw, prices, now_ms))
            except (KeyError, TypeError, ValueError) as e:
                logger.warning(f"Skipping malformed TWAP entry: {e}")
                continue

        enriched.sort(key=lambda t: t.time, reverse=True)
        logger.info(f"📊 Found {len(enriched)} active {self.hl_feed.coin} TWAPs")
        return enriched


class LiquidationMapFeed(_HttpFeed):
    """Liquidation heatmap for the tracked token, cached for LIQUIDATION_CACHE_TTL."""

    def __init__(
        self,
        hl_feed: HyperliquidFeed,
        session: Optional[aiohttp.ClientSession] = None,
        url: str = config.LIQUIDATION_MAP_URL,
        ttl: float = config.LIQUIDATION_CACHE_TTL,
        clock: Optional[Callable[[], float]] = None,
    ):
        super().__init__(session or hl_feed.session)
        self.hl_feed = hl_feed
        self.url = url
        self.cache: TTLCache[Tuple[Dict[str, Any], int]] = TTLCache(ttl, clock)

    async def get_heatmap(self) -> Optional[Dict[str, Any]]:
        """
        Heatmap payload merged with live price and open interest. Falls back
        to the last good payload marked `stale`; None when nothing was ever
        fetched.
        """
        cached = self.cache.get()
        if cached is None:
            data = await self._get_json(self.url)
            if data is None:
                stale = self.cache.get_stale()
                if stale is None:
                    return None
                payload, fetched_at = stale
                return {**payload, "lastUpdated": fetched_at, "stale": True}
            cached = self.cache.set((data, _now_ms()))

        payload, fetched_at = cached
        prices = await self.hl_feed.get_prices()
        return {
            **payload,
            "hypePrice": prices.perp_price,
            "openInterest": prices.open_interest,
            "lastUpdated": fetched_at,
        }

    async def get_bins(self) -> List[PriceBin]:
        payload = await self.get_heatmap()
        if not payload:
            return []
        return normalize_heatmap(payload.get("heatmap", []))
