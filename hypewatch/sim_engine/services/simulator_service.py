import logging
import time
from typing import Any, Dict, Iterable, List, Optional

from hypewatch.config import config
from hypewatch.services.market_feed import HyperliquidFeed, LiquidationMapFeed, TwapFeed
from hypewatch.services.position_store import PositionStore
from hypewatch.services.scheduler import Ticker
from hypewatch.sim_engine.errors import CascadeSimulationError
from hypewatch.sim_engine.models.cascade_models import CascadeResult, SimulationParams
from hypewatch.sim_engine.models.position_models import PortfolioStats, SimulatedPosition
from hypewatch.sim_engine.processors.cascade_simulator import CascadeSimulator
from hypewatch.sim_engine.processors.position_lifecycle import evaluate_positions, portfolio_stats
from hypewatch.sim_engine.processors.trigger_engine import TriggerEngine

logger = logging.getLogger("SimulatorService")


class SimulatorService:
    """
    Glue between the pure engines and the outside world.

    One cycle: pull price and TWAPs, propose positions, let the store accept
    or ignore them, close positions whose exit conditions hit, then notify.
    """

    def __init__(
        self,
        store: PositionStore,
        hl_feed: HyperliquidFeed,
        twap_feed: TwapFeed,
        liquidation_feed: Optional[LiquidationMapFeed] = None,
        notifier=None,
        poll_interval: float = config.SIMULATOR_POLL_INTERVAL,
    ):
        self.store = store
        self.hl_feed = hl_feed
        self.twap_feed = twap_feed
        self.liquidation_feed = liquidation_feed
        self.notifier = notifier
        self.ticker = Ticker("simulator", poll_interval, self._tick)
        self.last_cycle: Dict[str, Any] = {}

    async def _tick(self):
        await self.run_cycle()

    async def _notify(self, method: str, position: SimulatedPosition):
        if self.notifier is None:
            return
        try:
            await getattr(self.notifier, method)(position)
        except Exception as e:
            logger.error(f"Notifier {method} failed for {position.id}: {e}")

    async def open_triggered(self, orders, price: float, positions: Iterable[SimulatedPosition]) -> List[SimulatedPosition]:
        opened = []
        for cmd in TriggerEngine.evaluate(orders, price, positions):
            created = self.store.create_position(cmd)
            if created is None:
                continue
            opened.append(created)
            await self._notify("send_position_opened", created)
        return opened

    async def close_expired(self, positions: Iterable[SimulatedPosition], price: float, now_ms: int) -> List[SimulatedPosition]:
        closed = []
        for cmd in evaluate_positions(positions, price, now_ms):
            position = self.store.close_position(cmd)
            if position is None:
                continue
            logger.info(f"🔒 {position.id} {position.status} @ {position.close_price} ({position.pnl_percent:+.2f}%)")
            closed.append(position)
            await self._notify("send_position_closed", position)
        return closed

    async def run_cycle(self, now_ms: Optional[int] = None) -> Dict[str, Any]:
        now_ms = int(time.time() * 1000) if now_ms is None else now_ms
        prices = await self.hl_feed.get_prices()
        price = prices.perp_price

        opened: List[SimulatedPosition] = []
        twaps = await self.twap_feed.get_active_twaps(prices)
        if twaps is None:
            logger.warning("TWAP feed unavailable, skipping trigger evaluation")
        elif twaps and price > 0:
            orders = [t.to_order() for t in twaps]
            opened = await self.open_triggered(orders, price, self.store.list_positions())

        closed: List[SimulatedPosition] = []
        if price > 0:
            closed = await self.close_expired(self.store.list_positions(), price, now_ms)

        self.last_cycle = {
            "timestamp": now_ms,
            "price": price,
            "twap_count": len(twaps or []),
            "opened": [p.model_dump(mode="json") for p in opened],
            "closed": [p.model_dump(mode="json") for p in closed],
        }
        return self.last_cycle

    async def stats(self) -> PortfolioStats:
        prices = await self.hl_feed.get_prices()
        return portfolio_stats(self.store.list_positions(), prices.perp_price)

    async def simulate_cascade(
        self,
        target_price: float,
        params: Optional[SimulationParams] = None,
        bids: Optional[List[Any]] = None,
        current_price: Optional[float] = None,
        open_interest: Optional[float] = None,
    ) -> CascadeResult:
        """Run the cascade simulator against live data, overriding any input supplied."""
        if current_price is None or open_interest is None:
            prices = await self.hl_feed.get_prices()
            current_price = prices.perp_price if current_price is None else current_price
            open_interest = prices.open_interest if open_interest is None else open_interest

        if current_price <= 0:
            raise CascadeSimulationError("Current price unavailable")
        if target_price >= current_price:
            raise CascadeSimulationError("Target price must be below current price for long liquidation impact.")

        if bids is None:
            bids = await self.hl_feed.get_bids()
        heatmap = await self.liquidation_feed.get_bins() if self.liquidation_feed else []

        return CascadeSimulator.simulate(target_price, current_price, open_interest, heatmap, bids, params)

    def start(self):
        return self.ticker.start()

    def stop(self):
        self.ticker.stop()
