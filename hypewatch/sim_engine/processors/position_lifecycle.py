import time
from typing import Iterable, List, Optional

from hypewatch.sim_engine.models.position_models import (
    STOP_LOSS_PCT,
    TAKE_PROFIT_PCT,
    CloseCommand,
    PortfolioStats,
    SimulatedPosition,
)


def raw_pnl(position: SimulatedPosition, price: float) -> float:
    """Unlevered return as a fraction of entry price."""
    if position.direction == "BUY":
        return (price - position.entry_price) / position.entry_price
    return (position.entry_price - price) / position.entry_price


def pnl_percent(position: SimulatedPosition, price: float) -> float:
    return raw_pnl(position, price) * position.leverage * 100


def evaluate_position(
    position: SimulatedPosition,
    price: float,
    now_ms: Optional[int] = None,
) -> Optional[CloseCommand]:
    """
    OPEN -> CLOSED_TIME | CLOSED_TP | CLOSED_SL.
    The time exit is checked first and preempts the PnL exits.
    """
    if not position.is_open or price <= 0:
        return None
    now_ms = int(time.time() * 1000) if now_ms is None else now_ms

    pnl = pnl_percent(position, price)

    if position.end_time is not None and now_ms > position.end_time:
        status = "CLOSED_TIME"
    elif pnl >= TAKE_PROFIT_PCT:
        status = "CLOSED_TP"
    elif pnl <= STOP_LOSS_PCT:
        status = "CLOSED_SL"
    else:
        return None

    return CloseCommand(position_id=position.id, status=status, close_price=price, pnl_percent=pnl)


def evaluate_positions(
    positions: Iterable[SimulatedPosition],
    price: float,
    now_ms: Optional[int] = None,
) -> List[CloseCommand]:
    now_ms = int(time.time() * 1000) if now_ms is None else now_ms
    commands = []
    for position in positions:
        cmd = evaluate_position(position, price, now_ms)
        if cmd is not None:
            commands.append(cmd)
    return commands


def apply_close(position: SimulatedPosition, command: CloseCommand) -> SimulatedPosition:
    """Return the closed copy of `position`. Closed states are terminal."""
    if not position.is_open:
        raise ValueError(f"Position {position.id} is already {position.status}")
    if command.position_id != position.id:
        raise ValueError(f"Close command for {command.position_id} applied to {position.id}")
    return position.model_copy(update={
        "status": command.status,
        "close_price": command.close_price,
        "pnl_percent": command.pnl_percent,
    })


def portfolio_stats(positions: Iterable[SimulatedPosition], price: float) -> PortfolioStats:
    """Realized and unrealized PnL across all simulated positions."""
    positions = list(positions)
    active = [p for p in positions if p.is_open]
    closed = [p for p in positions if not p.is_open]

    realized_pct = sum(p.pnl_percent or 0 for p in closed)
    realized_usd = sum(p.amount_usd * ((p.pnl_percent or 0) / 100) for p in closed)

    if price > 0:
        unrealized_pct = sum(pnl_percent(p, price) for p in active)
        unrealized_usd = sum(p.amount_usd * raw_pnl(p, price) * p.leverage for p in active)
    else:
        unrealized_pct = unrealized_usd = 0.0

    return PortfolioStats(
        total_orders=len(positions),
        active_count=len(active),
        closed_count=len(closed),
        realized_pnl_percent=realized_pct,
        realized_pnl_usd=realized_usd,
        unrealized_pnl_percent=unrealized_pct,
        unrealized_pnl_usd=unrealized_usd,
        total_pnl_percent=realized_pct + unrealized_pct,
        total_pnl_usd=realized_usd + unrealized_usd,
    )
