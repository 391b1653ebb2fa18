from sqlalchemy import BigInteger, Column, DateTime, Float, String
from sqlalchemy.orm import declarative_base
from sqlalchemy.sql import func
import uuid

Base = declarative_base()


class SimulatedPositionRecord(Base):
    """Paper position opened by a TWAP trigger."""
    __tablename__ = "simulated_positions"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    entry_price = Column(Float, nullable=False)
    direction = Column(String(4), nullable=False)  # 'BUY' or 'SELL'
    status = Column(String(16), nullable=False, default="OPEN")  # OPEN, CLOSED_TP, CLOSED_SL, CLOSED_TIME
    amount_usd = Column(Float, nullable=False, default=1000.0)
    leverage = Column(Float, nullable=False, default=5.0)
    close_price = Column(Float, nullable=True)
    pnl_percent = Column(Float, nullable=True)
    trigger_id = Column(String(255), unique=True, nullable=True, index=True)  # e.g. 'large_<hash>' or 'dense_<hash>_BUY'
    end_time = Column(BigInteger, nullable=True)  # epoch ms when the triggering TWAP finishes

    def to_dict(self):
        return {
            "id": self.id,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "entry_price": self.entry_price,
            "direction": self.direction,
            "status": self.status,
            "amount_usd": self.amount_usd,
            "leverage": self.leverage,
            "close_price": self.close_price,
            "pnl_percent": self.pnl_percent,
            "trigger_id": self.trigger_id,
            "end_time": self.end_time,
        }
