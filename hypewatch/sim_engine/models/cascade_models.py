from pydantic import BaseModel, ConfigDict, Field
from typing import List


class PriceBin(BaseModel):
    """
    A contiguous slice of price carrying the historical liquidation notional
    recorded inside it. Sourced from the liquidation heatmap feed.
    """
    start: float
    end: float
    liquidation_value: float = 0.0

    @property
    def width(self) -> float:
        return self.end - self.start


class BidLevel(BaseModel):
    """One rung of order-book bid depth (price in USD, size in base asset)."""
    price: float
    size: float


class SimulationParams(BaseModel):
    """
    Coefficients of the parametric liquidation-density model.
    Passed per call; never mutated.
    """
    model_config = ConfigDict(frozen=True)

    k: float = Field(default=0.18, description="Cascade intensity coefficient")
    a: float = Field(default=14.0, description="Exponential growth rate of liquidation density")
    x0: float = Field(default=0.05, description="Drawdown threshold before liquidations start")
    long_ratio: float = Field(default=0.6, description="Fraction of open interest assumed long")


class CascadeStep(BaseModel):
    model_config = ConfigDict(frozen=True)

    start_price: float
    end_price: float
    liquidated_value: float
    description: str


class CascadeResult(BaseModel):
    """
    Outcome of a long-liquidation cascade simulation.
    `final_price` is the cascade floor, `total_liquidation_triggered` is USD
    notional valued at that floor.
    """
    model_config = ConfigDict(frozen=True)

    final_price: float
    total_liquidation_triggered: float
    steps: List[CascadeStep] = Field(default_factory=list)
