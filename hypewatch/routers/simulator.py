"""
Simulated Trading Router
Cascade simulation, paper positions and the trigger evaluation cycle.
"""

import logging

from fastapi import APIRouter, HTTPException, Request

from hypewatch.schemas import CascadeRequest, OpenPositionRequest, UpdatePositionRequest
from hypewatch.sim_engine.errors import CascadeSimulationError
from hypewatch.sim_engine.models.cascade_models import SimulationParams

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/simulator", tags=["Simulator"])


def _service(request: Request):
    service = getattr(request.app.state, "simulator", None)
    if service is None:
        raise HTTPException(status_code=503, detail="Simulator not initialized")
    return service


@router.post("/cascade")
async def simulate_cascade(req: CascadeRequest, request: Request):
    """Where would a long-liquidation cascade triggered at `target_price` stop?"""
    service = _service(request)
    params = SimulationParams(k=req.k, a=req.a, x0=req.x0, long_ratio=req.long_ratio)
    bids = [b.model_dump() for b in req.bids] if req.bids is not None else None
    try:
        result = await service.simulate_cascade(
            req.target_price,
            params=params,
            bids=bids,
            current_price=req.current_price,
            open_interest=req.open_interest,
        )
    except CascadeSimulationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return result.model_dump()


@router.get("/positions")
async def list_positions(request: Request):
    return [p.model_dump(mode="json") for p in _service(request).store.list_positions()]


@router.post("/positions")
async def open_position(req: OpenPositionRequest, request: Request):
    """Open a position; a duplicate trigger_id is ignored rather than rejected."""
    created = _service(request).store.create_position(req.model_dump())
    if created is None:
        return {"message": "Conflict or duplicate trigger_id ignored"}
    return created.model_dump(mode="json")


@router.patch("/positions")
async def update_position(req: UpdatePositionRequest, request: Request):
    store = _service(request).store
    current = store.get_position(req.id)
    if current is None:
        raise HTTPException(status_code=404, detail=f"Position {req.id} not found")
    if not current.is_open:
        raise HTTPException(status_code=409, detail=f"Position {req.id} is already {current.status}")
    updated = store.update_open_position(
        req.id,
        {"status": req.status, "close_price": req.close_price, "pnl_percent": req.pnl_percent},
    )
    if updated is None:
        # closed by the evaluation cycle after the read above
        latest = store.get_position(req.id)
        status = latest.status if latest else "gone"
        raise HTTPException(status_code=409, detail=f"Position {req.id} is already {status}")
    return updated.model_dump(mode="json")


@router.get("/stats")
async def get_stats(request: Request):
    stats = await _service(request).stats()
    return stats.model_dump()


@router.post("/evaluate")
async def evaluate(request: Request):
    """Run one trigger/exit cycle now instead of waiting for the ticker."""
    return await _service(request).run_cycle()
