from pydantic import BaseModel, ConfigDict, Field
from typing import Literal, Optional
from datetime import datetime

Direction = Literal["BUY", "SELL"]
PositionStatus = Literal["OPEN", "CLOSED_TP", "CLOSED_SL", "CLOSED_TIME"]
ClosedStatus = Literal["CLOSED_TP", "CLOSED_SL", "CLOSED_TIME"]

# Fixed policy for simulated trades
DEFAULT_AMOUNT_USD = 1000.0
DEFAULT_LEVERAGE = 5.0
TAKE_PROFIT_PCT = 20.0
STOP_LOSS_PCT = -20.0


class TimeWeightedOrder(BaseModel):
    """
    An active TWAP order as seen on the tape. `time` is the start timestamp
    in epoch milliseconds.
    """
    model_config = ConfigDict(frozen=True)

    id: str
    time: int
    user: str = ""
    side: Direction
    size_usd: float
    price: Optional[float] = None
    duration_minutes: int = 0

    @property
    def end_time(self) -> int:
        return self.time + self.duration_minutes * 60_000


class SimulatedPosition(BaseModel):
    """
    A paper position opened by a trigger. Created OPEN, closed exactly once.
    Timestamps are epoch milliseconds.
    """
    id: str
    created_at: Optional[datetime] = None
    entry_price: float
    direction: Direction
    status: PositionStatus = "OPEN"
    amount_usd: float = DEFAULT_AMOUNT_USD
    leverage: float = DEFAULT_LEVERAGE
    close_price: Optional[float] = None
    pnl_percent: Optional[float] = None
    trigger_id: Optional[str] = None
    end_time: Optional[int] = None

    @property
    def is_open(self) -> bool:
        return self.status == "OPEN"


class OpenCommand(BaseModel):
    """Proposal to open a simulated position. Not a commit."""
    model_config = ConfigDict(frozen=True)

    direction: Direction
    entry_price: float
    trigger_id: str
    end_time: Optional[int] = None
    amount_usd: float = DEFAULT_AMOUNT_USD
    leverage: float = DEFAULT_LEVERAGE


class CloseCommand(BaseModel):
    model_config = ConfigDict(frozen=True)

    position_id: str
    status: ClosedStatus
    close_price: float
    pnl_percent: float


class PortfolioStats(BaseModel):
    total_orders: int = 0
    active_count: int = 0
    closed_count: int = 0
    realized_pnl_percent: float = 0.0
    realized_pnl_usd: float = 0.0
    unrealized_pnl_percent: float = 0.0
    unrealized_pnl_usd: float = 0.0
    total_pnl_percent: float = Field(default=0.0, description="Realized plus unrealized, summed per position")
    total_pnl_usd: float = 0.0
