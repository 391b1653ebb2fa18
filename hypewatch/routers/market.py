"""
Market Data Router
Thin relays over the upstream feeds for the dashboard panels.
"""

import logging
import time

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/market", tags=["Market Data"])


def _now_ms() -> int:
    return int(time.time() * 1000)


@router.get("/prices")
async def get_prices(request: Request):
    """Perp/spot mark price and open interest for the tracked token."""
    snapshot = await request.app.state.hl_feed.get_prices()
    return {
        "perp": snapshot.perp_price,
        "spot": snapshot.spot_price,
        "openInterest": snapshot.open_interest,
        "lastUpdated": snapshot.last_updated,
    }


@router.get("/order-book")
async def get_order_book(request: Request):
    book = await request.app.state.hl_feed.get_order_book()
    if book is None:
        return JSONResponse(
            status_code=500,
            content={"error": "Failed to fetch order book", "levels": [[], []]},
        )
    return book


@router.get("/liquidation-map")
async def get_liquidation_map(request: Request):
    payload = await request.app.state.liquidation_feed.get_heatmap()
    if payload is None:
        return JSONResponse(
            status_code=500,
            content={"error": "Failed to fetch liquidation data", "lastUpdated": _now_ms()},
        )
    return payload


@router.get("/twaps")
async def get_twaps(request: Request):
    """Active TWAPs on the tracked markets, enriched for display."""
    hl_feed = request.app.state.hl_feed
    prices = await hl_feed.get_prices()
    twaps = await request.app.state.twap_feed.get_active_twaps(prices)
    if twaps is None:
        return JSONResponse(
            status_code=500,
            content={"error": "Failed to fetch TWAPs", "twaps": [], "lastUpdated": _now_ms()},
        )
    return {
        "twaps": [t.model_dump() for t in twaps],
        "lastUpdated": _now_ms(),
        "hypePrice": prices.perp_price,
        "hypeSpotPrice": prices.spot_price,
        "openInterest": prices.open_interest,
    }


@router.get("/whale-positions")
async def get_whale_positions(request: Request, take: int = 50):
    data = await request.app.state.whale_feed.get_open_positions(take=take)
    if data is None:
        return JSONResponse(status_code=500, content={"error": "Failed to fetch whale positions"})
    return data


@router.get("/whale-analysis")
async def get_whale_analysis(request: Request):
    data = await request.app.state.whale_feed.get_analysis()
    if data is None:
        return JSONResponse(status_code=500, content={"error": "Failed to fetch whale data"})
    return data
