import logging
from typing import Iterable, List, Optional, Set

from hypewatch.sim_engine.models.position_models import OpenCommand, SimulatedPosition, TimeWeightedOrder

logger = logging.getLogger(__name__)

LARGE_ORDER_USD = 1_000_000
DENSE_WINDOW_MS = 10 * 60 * 1000
DENSE_MIN_ORDERS = 10
SIDES = ("BUY", "SELL")


def large_trigger_id(order: TimeWeightedOrder) -> str:
    return f"large_{order.id}"


def dense_trigger_id(first: TimeWeightedOrder, side: str) -> str:
    return f"dense_{first.id}_{side}"


class TriggerEngine:
    """
    Turns the TWAP tape into proposals for simulated positions.

    Both rules re-run over the full order list on every call. Idempotence
    comes from the trigger ids already materialized in the position store:
    a trigger id that exists (open or closed) is never proposed again.
    """

    @staticmethod
    def _resolve_entry(order: TimeWeightedOrder, current_price: float) -> float:
        return order.price or current_price

    @staticmethod
    def _command(
        direction: str,
        order: TimeWeightedOrder,
        current_price: float,
        trigger_id: str,
    ) -> Optional[OpenCommand]:
        entry = TriggerEngine._resolve_entry(order, current_price)
        if not entry or entry <= 0:
            logger.debug(f"Skipping {trigger_id}: no usable entry price")
            return None
        return OpenCommand(
            direction=direction,
            entry_price=entry,
            trigger_id=trigger_id,
            end_time=order.end_time,
        )

    @staticmethod
    def large_orders(
        orders: List[TimeWeightedOrder],
        current_price: float,
        seen: Set[str],
    ) -> List[OpenCommand]:
        commands = []
        for order in orders:
            if order.size_usd <= LARGE_ORDER_USD:
                continue
            trigger_id = large_trigger_id(order)
            if trigger_id in seen:
                continue
            cmd = TriggerEngine._command(order.side, order, current_price, trigger_id)
            if cmd is None:
                continue
            logger.info(f"🐋 Large TWAP trigger {trigger_id}: {order.side} ${order.size_usd:,.0f}")
            commands.append(cmd)
            seen.add(trigger_id)
        return commands

    @staticmethod
    def dense_clusters(
        orders: List[TimeWeightedOrder],
        current_price: float,
        seen: Set[str],
    ) -> List[OpenCommand]:
        """
        Sliding window anchored at each order (oldest first). A window holds
        every later order starting within DENSE_WINDOW_MS of the anchor; a
        side with DENSE_MIN_ORDERS entries fires once per anchor.

        A window is consumed when a qualifying side fires now or has already
        fired on an earlier call, and the scan then jumps past it. Later
        anchors inside a consumed window are never evaluated, so re-running
        over the same tape proposes nothing new.
        """
        ordered = sorted(orders, key=lambda o: o.time)
        commands = []
        if len(ordered) < DENSE_MIN_ORDERS:
            return commands

        i = 0
        while i <= len(ordered) - DENSE_MIN_ORDERS:
            anchor = ordered[i]
            cutoff = anchor.time + DENSE_WINDOW_MS
            window = [o for o in ordered[i:] if o.time <= cutoff]

            consumed = False
            if len(window) >= DENSE_MIN_ORDERS:
                last = window[-1]
                for side in SIDES:
                    count = sum(1 for o in window if o.side == side)
                    if count < DENSE_MIN_ORDERS:
                        continue
                    trigger_id = dense_trigger_id(window[0], side)
                    if trigger_id in seen:
                        consumed = True
                        continue
                    cmd = TriggerEngine._command(side, last, current_price, trigger_id)
                    if cmd is None:
                        continue
                    logger.info(f"📈 Dense TWAP cluster {trigger_id}: {count} {side} orders in 10m")
                    commands.append(cmd)
                    seen.add(trigger_id)
                    consumed = True

            i += len(window) if consumed else 1
        return commands

    @staticmethod
    def evaluate(
        orders: Iterable[TimeWeightedOrder],
        current_price: float,
        existing_positions: Iterable[SimulatedPosition],
    ) -> List[OpenCommand]:
        orders = list(orders)
        seen = {p.trigger_id for p in existing_positions if p.trigger_id}
        commands = TriggerEngine.large_orders(orders, current_price, seen)
        commands.extend(TriggerEngine.dense_clusters(orders, current_price, seen))
        return commands


def evaluate_triggers(
    orders: Iterable[TimeWeightedOrder],
    current_price: float,
    existing_positions: Iterable[SimulatedPosition],
) -> List[OpenCommand]:
    return TriggerEngine.evaluate(orders, current_price, existing_positions)
