import logging
import math
from typing import Any, Iterable, List, Optional

from hypewatch.sim_engine.errors import CascadeSimulationError
from hypewatch.sim_engine.models.cascade_models import CascadeResult, CascadeStep, SimulationParams
from hypewatch.sim_engine.processors.price_bins import (
    BINS_COUNT,
    RANGE_PCT,
    bin_prices,
    bin_step,
    depth_in_bin,
    drawdown,
    incremental_pressure,
    parse_bids,
)

logger = logging.getLogger(__name__)

CHECKPOINT_EVERY = 25


class CascadeSimulator:
    """
    Estimates where a chain of forced LONG liquidations stops.

    TRADING LOGIC EXPLANATION:
    As price falls, leveraged longs get liquidated and their positions are
    market-sold. Liquidation density is modelled parametrically from open
    interest (it grows exponentially once the drawdown passes `x0`) and is
    compared bin by bin against the resting bid depth below the current
    price. The first bin at or below the target where cumulative forced
    selling meets or exceeds cumulative bids is the cascade floor.

    The heatmap argument is accepted for callers that display it alongside
    the result; it does not enter the calculation.
    """

    @staticmethod
    def simulate(
        target_price: float,
        current_price: float,
        open_interest: float,
        heatmap: Optional[Iterable[Any]],
        bids: Optional[Iterable[Any]],
        params: Optional[SimulationParams] = None,
    ) -> CascadeResult:
        params = params or SimulationParams()
        target_px = float(target_price)
        current_px = float(current_price)

        if not math.isfinite(current_px) or current_px <= 0:
            raise CascadeSimulationError(f"current_price must be a positive number, got {current_price}")
        if not math.isfinite(target_px):
            raise CascadeSimulationError(f"target_price must be finite, got {target_price}")

        long_oi = float(open_interest) * params.long_ratio
        active_bids = parse_bids(bids)
        step = bin_step(current_px, RANGE_PCT, BINS_COUNT)

        steps: List[CascadeStep] = []
        cum_sell = 0.0
        cum_bid = 0.0
        floor_price = target_px
        found_floor = False

        # O(BINS_COUNT * len(bids))
        for i, px in enumerate(bin_prices(current_px, step, BINS_COUNT)):
            try:
                step_sell = incremental_pressure(long_oi, drawdown(current_px, px), step, current_px, params)
            except OverflowError as e:
                raise CascadeSimulationError(f"Liquidation density overflowed at ${px:.4f}: {e}") from e

            cum_sell += step_sell
            cum_bid += depth_in_bin(active_bids, px, step)

            reached_target = px <= target_px

            if not found_floor and reached_target and cum_sell >= cum_bid:
                floor_price = px
                found_floor = True
                steps.append(CascadeStep(
                    start_price=current_px,
                    end_price=floor_price,
                    liquidated_value=cum_sell * floor_price,
                    description=(
                        f"Cumulative intersection hit at ${floor_price:.3f}. "
                        f"Total estimated pressure: ${cum_sell * floor_price / 1000:.1f}K"
                    ),
                ))

            if i % CHECKPOINT_EVERY == 0 and reached_target and not found_floor:
                steps.append(CascadeStep(
                    start_price=px + step,
                    end_price=px,
                    liquidated_value=step_sell * px,
                    description=(
                        f"Scanning price ${px:.2f}: Sell (${cum_sell * px / 1000:.1f}K) "
                        f"vs Depth (${cum_bid * px / 1000:.1f}K)"
                    ),
                ))

        if not found_floor:
            floor_price = target_px
            steps.append(CascadeStep(
                start_price=current_px,
                end_price=floor_price,
                liquidated_value=cum_sell * floor_price,
                description="No total cascade floor found. Liquidity depth exceeds estimated sell pressure at target.",
            ))

        total = cum_sell * floor_price
        if not math.isfinite(total):
            raise CascadeSimulationError(f"Simulation produced a non-finite liquidation total ({total})")

        logger.debug(
            f"Cascade sim: P0={current_px} Pt={target_px} floor={floor_price:.4f} "
            f"found={found_floor} total=${total:,.0f} bids={len(active_bids)}"
        )

        return CascadeResult(
            final_price=floor_price,
            total_liquidation_triggered=total,
            steps=steps,
        )


def simulate(
    target_price: float,
    current_price: float,
    open_interest: float,
    heatmap: Optional[Iterable[Any]],
    bids: Optional[Iterable[Any]],
    params: Optional[SimulationParams] = None,
) -> CascadeResult:
    return CascadeSimulator.simulate(target_price, current_price, open_interest, heatmap, bids, params)
