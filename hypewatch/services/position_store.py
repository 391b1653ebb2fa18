import logging
from typing import Any, Dict, List, Optional, Set, Union

from sqlalchemy.exc import IntegrityError

from hypewatch.database import get_db_session, get_session_factory
from hypewatch.models import SimulatedPositionRecord
from hypewatch.sim_engine.models.position_models import (
    DEFAULT_AMOUNT_USD,
    DEFAULT_LEVERAGE,
    CloseCommand,
    OpenCommand,
    SimulatedPosition,
)

logger = logging.getLogger(__name__)

UPDATABLE_FIELDS = {"status", "close_price", "pnl_percent", "end_time"}


class PositionStore:
    """
    SQL-backed store for simulated positions.

    `create_position` is insert-or-ignore on `trigger_id`: a duplicate
    trigger returns None instead of raising, which is what lets trigger
    evaluation run repeatedly and concurrently.
    """

    def __init__(self, session_factory=None):
        self._session_factory = session_factory

    @property
    def session_factory(self):
        return self._session_factory or get_session_factory()

    @staticmethod
    def _to_model(record: SimulatedPositionRecord) -> SimulatedPosition:
        return SimulatedPosition(**record.to_dict())

    def list_positions(self) -> List[SimulatedPosition]:
        with get_db_session(self.session_factory) as db:
            records = (
                db.query(SimulatedPositionRecord)
                .order_by(SimulatedPositionRecord.created_at.desc())
                .all()
            )
            return [self._to_model(r) for r in records]

    def get_position(self, position_id: str) -> Optional[SimulatedPosition]:
        with get_db_session(self.session_factory) as db:
            record = db.get(SimulatedPositionRecord, position_id)
            return self._to_model(record) if record else None

    def trigger_ids(self) -> Set[str]:
        with get_db_session(self.session_factory) as db:
            rows = (
                db.query(SimulatedPositionRecord.trigger_id)
                .filter(SimulatedPositionRecord.trigger_id.isnot(None))
                .all()
            )
            return {r[0] for r in rows}

    def create_position(self, fields: Union[OpenCommand, Dict[str, Any]]) -> Optional[SimulatedPosition]:
        data = fields.model_dump() if isinstance(fields, OpenCommand) else dict(fields)
        if not data.get("entry_price") or not data.get("direction"):
            raise ValueError("entry_price and direction are required")

        values = {
            "entry_price": float(data["entry_price"]),
            "direction": data["direction"],
            "status": "OPEN",
            "amount_usd": data.get("amount_usd") or DEFAULT_AMOUNT_USD,
            "leverage": data.get("leverage") or DEFAULT_LEVERAGE,
            "trigger_id": data.get("trigger_id") or None,
            "end_time": data.get("end_time"),
        }

        try:
            with get_db_session(self.session_factory) as db:
                record = SimulatedPositionRecord(**values)
                db.add(record)
                db.flush()
                db.refresh(record)
                created = self._to_model(record)
        except IntegrityError:
            logger.info(f"Duplicate trigger_id {values['trigger_id']} ignored")
            return None

        logger.info(f"🆕 Opened simulated {created.direction} @ {created.entry_price} ({created.trigger_id or 'manual'})")
        return created

    def update_position(self, position_id: str, fields: Dict[str, Any]) -> SimulatedPosition:
        unknown = set(fields) - UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Fields not updatable: {sorted(unknown)}")

        with get_db_session(self.session_factory) as db:
            record = db.get(SimulatedPositionRecord, position_id)
            if record is None:
                raise KeyError(position_id)
            for key, value in fields.items():
                setattr(record, key, value)
            db.flush()
            return self._to_model(record)

    def update_open_position(self, position_id: str, fields: Dict[str, Any]) -> Optional[SimulatedPosition]:
        """
        Like `update_position`, but the write only lands while the row is
        still OPEN. Returns None when the position is missing or was closed
        in the meantime.
        """
        unknown = set(fields) - UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Fields not updatable: {sorted(unknown)}")

        with get_db_session(self.session_factory) as db:
            updated = (
                db.query(SimulatedPositionRecord)
                .filter(
                    SimulatedPositionRecord.id == position_id,
                    SimulatedPositionRecord.status == "OPEN",
                )
                .update(fields, synchronize_session=False)
            )
            if not updated:
                return None
            record = db.get(SimulatedPositionRecord, position_id)
            db.refresh(record)
            return self._to_model(record)

    def close_position(self, command: CloseCommand) -> Optional[SimulatedPosition]:
        """
        Apply a close only if the position is still OPEN. Returns None when
        another evaluation already closed it.
        """
        with get_db_session(self.session_factory) as db:
            updated = (
                db.query(SimulatedPositionRecord)
                .filter(
                    SimulatedPositionRecord.id == command.position_id,
                    SimulatedPositionRecord.status == "OPEN",
                )
                .update(
                    {
                        "status": command.status,
                        "close_price": command.close_price,
                        "pnl_percent": command.pnl_percent,
                    },
                    synchronize_session=False,
                )
            )
            if not updated:
                return None
            record = db.get(SimulatedPositionRecord, command.position_id)
            db.refresh(record)
            return self._to_model(record)
