import asyncio

import pytest
from sqlalchemy.orm import sessionmaker

from hypewatch.database import build_engine, init_db
from hypewatch.services.market_feed import HYPE_PERP_ID, EnrichedTwap, MarketSnapshot
from hypewatch.services.position_store import PositionStore
from hypewatch.sim_engine.errors import CascadeSimulationError
from hypewatch.sim_engine.services.simulator_service import SimulatorService

T0 = 1_700_000_000_000
MINUTE = 60_000


class FakeHyperliquid:
    def __init__(self, price=25.0, open_interest=1_000_000.0):
        self.price = price
        self.open_interest = open_interest
        self.bids_requested = 0

    async def get_prices(self):
        return MarketSnapshot(perp_price=self.price, spot_price=self.price, open_interest=self.open_interest)

    async def get_bids(self):
        self.bids_requested += 1
        return []


class FakeTwaps:
    def __init__(self, twaps):
        self.twaps = twaps

    async def get_active_twaps(self, prices=None):
        return self.twaps


class RecordingNotifier:
    def __init__(self):
        self.events = []

    async def send_position_opened(self, position):
        self.events.append(("opened", position.trigger_id))

    async def send_position_closed(self, position):
        self.events.append(("closed", position.status))


class BrokenNotifier:
    async def send_position_opened(self, position):
        raise RuntimeError("telegram down")


def _twap(hash_="whale1", side="BUY", size_usd=2_500_000.0, price=25.0, time=T0, minutes=60):
    return EnrichedTwap(
        id=hash_,
        time=time,
        user="0xwhale",
        market_id=HYPE_PERP_ID,
        market_type="PERP",
        token="HYPE",
        side=side,
        size=str(size_usd / price),
        size_usd=size_usd,
        mark_price=price,
        duration_minutes=minutes,
        time_remaining_minutes=minutes,
        hash=hash_,
    )


@pytest.fixture
def store():
    engine = build_engine("sqlite://")
    init_db(engine)
    return PositionStore(sessionmaker(autocommit=False, autoflush=False, bind=engine))


def _service(store, hl=None, twaps=None, notifier=None):
    return SimulatorService(
        store=store,
        hl_feed=hl or FakeHyperliquid(),
        twap_feed=FakeTwaps([_twap()] if twaps is None else twaps),
        notifier=notifier,
        poll_interval=5,
    )


def test_cycle_opens_once_then_time_exit_closes(store):
    notifier = RecordingNotifier()
    hl = FakeHyperliquid(price=25.0)
    service = _service(store, hl=hl, notifier=notifier)

    first = asyncio.run(service.run_cycle(now_ms=T0 + MINUTE))
    assert [p["trigger_id"] for p in first["opened"]] == ["large_whale1"]
    assert first["closed"] == []
    assert first["twap_count"] == 1

    second = asyncio.run(service.run_cycle(now_ms=T0 + 2 * MINUTE))
    assert second["opened"] == []
    assert len(store.list_positions()) == 1

    hl.price = 25.5
    third = asyncio.run(service.run_cycle(now_ms=T0 + 61 * MINUTE))
    assert [p["status"] for p in third["closed"]] == ["CLOSED_TIME"]
    assert third["closed"][0]["pnl_percent"] == pytest.approx(10.0)

    assert notifier.events == [("opened", "large_whale1"), ("closed", "CLOSED_TIME")]
    assert service.last_cycle is third


def test_cycle_take_profit(store):
    hl = FakeHyperliquid(price=25.0)
    service = _service(store, hl=hl)
    asyncio.run(service.run_cycle(now_ms=T0 + MINUTE))

    hl.price = 27.0
    out = asyncio.run(service.run_cycle(now_ms=T0 + 2 * MINUTE))
    assert [p["status"] for p in out["closed"]] == ["CLOSED_TP"]
    assert store.list_positions()[0].close_price == 27.0


def test_cycle_skips_triggers_when_feed_down(store):
    service = _service(store, twaps=None)
    service.twap_feed = FakeTwaps(None)
    out = asyncio.run(service.run_cycle(now_ms=T0))
    assert out["opened"] == [] and out["twap_count"] == 0


def test_cycle_without_price_does_nothing(store):
    service = _service(store, hl=FakeHyperliquid(price=0.0))
    out = asyncio.run(service.run_cycle(now_ms=T0))
    assert out["opened"] == [] and out["closed"] == []
    assert store.list_positions() == []


def test_notifier_failure_does_not_block_open(store):
    service = _service(store, notifier=BrokenNotifier())
    out = asyncio.run(service.run_cycle(now_ms=T0 + MINUTE))
    assert len(out["opened"]) == 1


def test_stats_use_live_price(store):
    hl = FakeHyperliquid(price=25.0)
    service = _service(store, hl=hl)
    asyncio.run(service.run_cycle(now_ms=T0 + MINUTE))

    hl.price = 25.5
    stats = asyncio.run(service.stats())
    assert stats.active_count == 1
    assert stats.unrealized_pnl_percent == pytest.approx(10.0)


def test_simulate_cascade_with_overrides(store):
    hl = FakeHyperliquid()
    service = _service(store, hl=hl)
    result = asyncio.run(service.simulate_cascade(27.0, bids=[], current_price=30.0, open_interest=10_000_000))
    assert result.final_price == pytest.approx(26.94)
    assert hl.bids_requested == 0


def test_simulate_cascade_fetches_live_inputs(store):
    hl = FakeHyperliquid(price=30.0)
    service = _service(store, hl=hl)
    result = asyncio.run(service.simulate_cascade(27.0))
    assert result.final_price < 27.0
    assert hl.bids_requested == 1


@pytest.mark.parametrize("target", [30.0, 31.0])
def test_simulate_cascade_rejects_target_above_price(store, target):
    service = _service(store, hl=FakeHyperliquid(price=30.0))
    with pytest.raises(CascadeSimulationError):
        asyncio.run(service.simulate_cascade(target))


def test_simulate_cascade_requires_price(store):
    service = _service(store, hl=FakeHyperliquid(price=0.0))
    with pytest.raises(CascadeSimulationError):
        asyncio.run(service.simulate_cascade(20.0))
