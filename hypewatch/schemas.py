from pydantic import BaseModel, Field
from typing import List, Literal, Optional


class BidInput(BaseModel):
    px: str
    sz: str


class CascadeRequest(BaseModel):
    target_price: float
    current_price: Optional[float] = None
    open_interest: Optional[float] = None
    bids: Optional[List[BidInput]] = None  # live l2Book bids when omitted
    k: float = 0.18
    a: float = 14.0
    x0: float = 0.05
    long_ratio: float = Field(default=0.6, ge=0.0, le=1.0)


class OpenPositionRequest(BaseModel):
    entry_price: float = Field(gt=0)
    direction: Literal["BUY", "SELL"]
    amount_usd: Optional[float] = None
    leverage: Optional[float] = None
    trigger_id: Optional[str] = None
    end_time: Optional[int] = None  # epoch ms


class UpdatePositionRequest(BaseModel):
    id: str
    status: Literal["OPEN", "CLOSED_TP", "CLOSED_SL", "CLOSED_TIME"]
    close_price: Optional[float] = None
    pnl_percent: Optional[float] = None
