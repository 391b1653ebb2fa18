"""
Price-bin and density helpers shared by the cascade simulator and the
heatmap adapters.
"""

import math
from typing import Any, Iterable, Iterator, List, Optional

from hypewatch.sim_engine.models.cascade_models import BidLevel, PriceBin, SimulationParams

BINS_COUNT = 100
RANGE_PCT = 0.20  # scan down to a 20% drawdown


def bin_step(current_price: float, range_pct: float = RANGE_PCT, bins_count: int = BINS_COUNT) -> float:
    return current_price * range_pct / bins_count


def bin_prices(current_price: float, step: float, bins_count: int = BINS_COUNT) -> Iterator[float]:
    """
    Lower edge of each bin below `current_price`, highest first. The price
    walks down by repeated subtraction, so bin edges carry the running
    rounding of the scan rather than `current_price - (i + 1) * step`.
    """
    price = current_price
    for _ in range(bins_count):
        price -= step
        yield price


def drawdown(current_price: float, price: float) -> float:
    return (current_price - price) / current_price


def incremental_pressure(
    long_open_interest: float,
    dd: float,
    step: float,
    current_price: float,
    params: SimulationParams,
) -> float:
    """
    Sell pressure (base-asset units) contributed by one bin:
    L = OI_long * k * exp(a * (dd - x0)) * (step / P0), zero until dd > x0.
    """
    if dd <= params.x0:
        return 0.0
    intensity = params.k * math.exp(params.a * (dd - params.x0))
    return long_open_interest * intensity * (step / current_price)


def _to_float(value: Any) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return math.nan


def parse_bids(raw_bids: Optional[Iterable[Any]]) -> List[BidLevel]:
    """
    Normalize a bid ladder into BidLevels sorted highest price first.

    Accepts BidLevel instances, Hyperliquid l2Book rungs ({"px": "..",
    "sz": ".."}), {"price", "size"} dicts or (price, size) pairs. Entries
    whose price or size is not a number are dropped.
    """
    levels: List[BidLevel] = []
    for bid in raw_bids or []:
        if isinstance(bid, BidLevel):
            px, sz = bid.price, bid.size
        elif isinstance(bid, dict):
            px = _to_float(bid.get("px", bid.get("price")))
            sz = _to_float(bid.get("sz", bid.get("size")))
        elif isinstance(bid, (list, tuple)) and len(bid) >= 2:
            px, sz = _to_float(bid[0]), _to_float(bid[1])
        else:
            continue
        if math.isnan(px) or math.isnan(sz):
            continue
        levels.append(BidLevel(price=px, size=sz))
    levels.sort(key=lambda b: b.price, reverse=True)
    return levels


def depth_in_bin(bids: Iterable[BidLevel], low: float, step: float) -> float:
    """Total bid size resting in [low, low + step)."""
    high = low + step
    return sum(b.size for b in bids if low <= b.price < high)


def normalize_heatmap(entries: Optional[Iterable[Any]]) -> List[PriceBin]:
    """
    Build PriceBins from heatmap feed rows, sorted by start ascending.
    Rows with a non-positive width are skipped.
    """
    bins: List[PriceBin] = []
    for entry in entries or []:
        if isinstance(entry, PriceBin):
            pb = entry
        elif isinstance(entry, dict):
            start = _to_float(entry.get("priceBinStart", entry.get("start")))
            end = _to_float(entry.get("priceBinEnd", entry.get("end")))
            value = _to_float(entry.get("liquidationValue", entry.get("liquidation_value", 0)))
            if math.isnan(start) or math.isnan(end):
                continue
            pb = PriceBin(start=start, end=end, liquidation_value=0.0 if math.isnan(value) else value)
        else:
            continue
        if pb.start < pb.end:
            bins.append(pb)
    bins.sort(key=lambda b: b.start)
    return bins
