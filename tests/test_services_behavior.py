import asyncio

import pytest

from hypewatch.services.market_feed import (
    HYPE_PERP_ID,
    HYPE_SPOT_ID,
    HyperliquidFeed,
    LiquidationMapFeed,
    MarketSnapshot,
    TwapFeed,
)
from hypewatch.services.scheduler import Ticker
from hypewatch.services.ttl_cache import TTLCache
from hypewatch.services.whale_feed import WhaleFeed


class _Clock:
    def __init__(self, now=1000.0):
        self.now = now

    def __call__(self):
        return self.now


class _Resp:
    def __init__(self, payload, status=200):
        self.status = status
        self._payload = payload

    async def json(self):
        return self._payload

    async def __aenter__(self):
        return self

    async def __aexit__(self, *_):
        return False


class _Session:
    """Routes POST by payload type and GET by URL substring."""

    closed = False

    def __init__(self, posts=None, gets=None):
        self.posts = posts or {}
        self.gets = gets or {}
        self.calls = []

    def post(self, _url, json=None):
        kind = (json or {}).get("type")
        self.calls.append(("POST", kind))
        payload = self.posts.get(kind)
        if isinstance(payload, Exception):
            raise payload
        return _Resp(payload, 200 if payload is not None else 500)

    def get(self, url, headers=None):
        self.calls.append(("GET", url))
        for key, payload in self.gets.items():
            if key in url:
                if isinstance(payload, Exception):
                    raise payload
                return _Resp(payload, 200 if payload is not None else 503)
        return _Resp(None, 404)

    async def close(self):
        self.closed = True


def _perp_meta(mark="25.5", oi="1200000"):
    universe = [{"name": f"PERP{i}"} for i in range(HYPE_PERP_ID)] + [{"name": "HYPE"}]
    ctxs = [{"markPx": "1.0", "openInterest": "10"} for _ in range(HYPE_PERP_ID)] + [{"markPx": mark, "openInterest": oi}]
    return [{"universe": universe}, ctxs]


def _spot_meta(mark="25.4"):
    tokens = [{"name": "USDC", "index": 0}, {"name": "HYPE", "index": 150}]
    universe = [{"name": f"@{i}", "tokens": [0, 0], "index": i} for i in range(107)]
    universe.append({"name": "HYPE/USDC", "tokens": [150, 0], "index": 107})
    ctxs = [{"markPx": "0.5"} for _ in range(107)] + [{"markPx": mark}]
    return [{"tokens": tokens, "universe": universe}, ctxs]


def _raw_twap(hash_, market=HYPE_PERP_ID, buy=True, size="1000", minutes=60, time=1_700_000_000_000, ended=None):
    return {
        "time": time,
        "user": "0xwhale",
        "action": {"type": "twapOrder", "twap": {"a": market, "b": buy, "s": size, "r": False, "m": minutes, "t": False}},
        "block": 1,
        "hash": hash_,
        "error": None,
        "ended": ended,
    }


# --- TTLCache -------------------------------------------------------------

def test_ttl_cache_expires_with_injected_clock():
    clock = _Clock()
    cache = TTLCache(10, clock)
    cache.set("v")
    assert cache.get() == "v"
    clock.now += 9.9
    assert cache.get() == "v"
    clock.now += 0.1
    assert cache.get() is None
    assert cache.get_stale() == "v"


def test_ttl_cache_keys_and_invalidate():
    cache = TTLCache(5, _Clock())
    cache.set(1, key="a")
    cache.set(2, key="b")
    cache.invalidate("a")
    assert cache.get("a") is None
    assert cache.get("b") == 2
    cache.clear()
    assert cache.get_stale("b") is None


def test_ttl_cache_rejects_negative_ttl():
    with pytest.raises(ValueError):
        TTLCache(-1)


# --- Ticker ---------------------------------------------------------------

def test_ticker_runs_until_stopped():
    async def _run():
        calls = []
        ticker = None

        async def _cb():
            calls.append(1)
            if len(calls) == 3:
                ticker.stop()

        ticker = Ticker("test", 0.01, _cb)
        await asyncio.wait_for(ticker.run(), timeout=2)
        return calls, ticker

    calls, ticker = asyncio.run(_run())
    assert len(calls) == 3
    assert ticker.ticks == 3


def test_ticker_survives_callback_errors():
    async def _run():
        calls = []

        async def _cb():
            calls.append(1)
            if len(calls) < 3:
                raise RuntimeError("upstream down")
            ticker.stop()

        ticker = Ticker("flaky", 0.01, _cb)
        ticker.start()
        await asyncio.wait_for(ticker.wait_closed(), timeout=2)
        return calls

    assert len(asyncio.run(_run())) == 3


def test_ticker_rejects_bad_interval():
    with pytest.raises(ValueError):
        Ticker("bad", 0, None)


# --- HyperliquidFeed ------------------------------------------------------

def test_prices_parsed_and_cached():
    session = _Session(posts={"metaAndAssetCtxs": _perp_meta(), "spotMetaAndAssetCtxs": _spot_meta()})
    clock = _Clock()
    feed = HyperliquidFeed(session=session, price_ttl=10, clock=clock)

    snap = asyncio.run(feed.get_prices())
    assert snap.perp_price == 25.5
    assert snap.spot_price == 25.4
    assert snap.open_interest == 1_200_000

    asyncio.run(feed.get_prices())
    assert len(session.calls) == 2  # second call served from cache

    clock.now += 11
    asyncio.run(feed.get_prices())
    assert len(session.calls) == 4


def test_prices_fall_back_to_last_snapshot():
    session = _Session(posts={"metaAndAssetCtxs": _perp_meta(), "spotMetaAndAssetCtxs": _spot_meta()})
    clock = _Clock()
    feed = HyperliquidFeed(session=session, price_ttl=10, clock=clock)
    asyncio.run(feed.get_prices())

    session.posts = {}
    clock.now += 60
    snap = asyncio.run(feed.get_prices())
    assert snap.perp_price == 25.5


def test_prices_default_to_zero_without_history():
    feed = HyperliquidFeed(session=_Session(posts={"metaAndAssetCtxs": RuntimeError("boom")}))
    snap = asyncio.run(feed.get_prices())
    assert snap.perp_price == 0 and snap.open_interest == 0


def test_bids_from_order_book():
    book = {"coin": "HYPE", "time": 1, "levels": [[{"px": "25.1", "sz": "100", "n": 2}, {"px": "25.3", "sz": "5", "n": 1}], []]}
    feed = HyperliquidFeed(session=_Session(posts={"l2Book": book}))
    bids = asyncio.run(feed.get_bids())
    assert [(b.price, b.size) for b in bids] == [(25.3, 5.0), (25.1, 100.0)]


def test_bids_empty_when_book_unavailable():
    feed = HyperliquidFeed(session=_Session())
    assert asyncio.run(feed.get_bids()) == []


def test_token_info_resolves_perp_and_spot():
    session = _Session(posts={"metaAndAssetCtxs": _perp_meta(), "spotMetaAndAssetCtxs": _spot_meta()})
    feed = HyperliquidFeed(session=session)
    assert asyncio.run(feed.token_info(HYPE_PERP_ID)) == ("HYPE", 25.5)
    assert asyncio.run(feed.token_info(HYPE_SPOT_ID)) == ("HYPE", 25.4)
    assert asyncio.run(feed.token_info(99_999))[0] == "SPOT-89999"


# --- TwapFeed -------------------------------------------------------------

def test_active_twaps_filtered_and_enriched():
    raws = [
        _raw_twap("h1", time=1_700_000_000_000),
        _raw_twap("h2", market=HYPE_SPOT_ID, buy=False, size="200", time=1_700_000_100_000),
        _raw_twap("h3", ended="canceled"),
        _raw_twap("h4", market=0),
        {"hash": "broken"},
    ]
    session = _Session(
        posts={"metaAndAssetCtxs": _perp_meta(), "spotMetaAndAssetCtxs": _spot_meta()},
        gets={"hypurrscan": raws},
    )
    hl = HyperliquidFeed(session=session)
    feed = TwapFeed(hl, session=session)

    prices = MarketSnapshot(perp_price=30.0, spot_price=29.0, open_interest=1.0)
    twaps = asyncio.run(feed.get_active_twaps(prices))

    assert [t.id for t in twaps] == ["h2", "h1"]
    spot, perp = twaps
    assert spot.market_type == "SPOT" and spot.side == "SELL"
    assert spot.size_usd == pytest.approx(200 * 29.0)
    assert perp.market_type == "PERP" and perp.token == "HYPE"
    assert perp.size_usd == pytest.approx(1000 * 30.0)

    order = perp.to_order()
    assert order.price == 30.0
    assert order.end_time == 1_700_000_000_000 + 60 * 60_000


def test_active_twaps_none_when_upstream_down():
    session = _Session(gets={"hypurrscan": None})
    feed = TwapFeed(HyperliquidFeed(session=session), session=session)
    assert asyncio.run(feed.get_active_twaps(MarketSnapshot())) is None


# --- LiquidationMapFeed ---------------------------------------------------

def test_liquidation_map_caches_and_goes_stale():
    heatmap = {"coin": "HYPE", "heatmap": [{"priceBinStart": 20, "priceBinEnd": 21, "liquidationValue": 5}]}
    session = _Session(
        posts={"metaAndAssetCtxs": _perp_meta(), "spotMetaAndAssetCtxs": _spot_meta()},
        gets={"liquidation-heatmap": heatmap},
    )
    clock = _Clock()
    feed = LiquidationMapFeed(HyperliquidFeed(session=session), session=session, ttl=600, clock=clock)

    first = asyncio.run(feed.get_heatmap())
    assert first["hypePrice"] == 25.5
    assert first["openInterest"] == 1_200_000
    assert "stale" not in first

    bins = asyncio.run(feed.get_bins())
    assert [(b.start, b.end) for b in bins] == [(20.0, 21.0)]

    session.gets = {"liquidation-heatmap": None}
    clock.now += 601
    stale = asyncio.run(feed.get_heatmap())
    assert stale["stale"] is True
    assert stale["heatmap"] == heatmap["heatmap"]


def test_liquidation_map_none_without_history():
    session = _Session(gets={"liquidation-heatmap": None})
    feed = LiquidationMapFeed(HyperliquidFeed(session=session), session=session)
    assert asyncio.run(feed.get_heatmap()) is None
    assert asyncio.run(feed.get_bins()) == []


# --- WhaleFeed ------------------------------------------------------------

def test_whale_analysis_defaults():
    session = _Session(gets={"coin-liquidation": {"data": None}, "long-short": {"data": {"longCount": 3, "shortCount": 1}}})
    feed = WhaleFeed(session=session, base_url="https://example.test/api/whales")
    out = asyncio.run(feed.get_analysis())
    assert out == {"liquidation": {"longUsd": 0, "shortUsd": 0}, "longShort": {"longCount": 3, "shortCount": 1}}


def test_whale_feed_failures():
    session = _Session(gets={"coin-liquidation": None, "long-short": {"data": {}}, "open-positions": None})
    feed = WhaleFeed(session=session)
    assert asyncio.run(feed.get_analysis()) is None
    assert asyncio.run(feed.get_open_positions()) is None


# --- TelegramBot ----------------------------------------------------------

class _FakeBot:
    def __init__(self):
        self.sent = []

    async def send_message(self, chat_id, text, **kwargs):
        self.sent.append((chat_id, text))


def _position(**kw):
    from hypewatch.sim_engine.models.position_models import SimulatedPosition

    base = dict(id="p1", entry_price=25.0, direction="BUY", trigger_id="large_h1")
    base.update(kw)
    return SimulatedPosition(**base)


def test_telegram_disabled_without_credentials():
    from hypewatch.notifications import TelegramBot

    bot = TelegramBot(token="", chat_id="")
    assert bot.bot is None
    asyncio.run(bot.send_position_opened(_position()))


def test_telegram_formats_and_dedupes():
    from hypewatch.notifications import TelegramBot

    async def _run():
        bot = TelegramBot(token="", chat_id="42")
        bot.bot = _FakeBot()
        await bot.send_position_opened(_position())
        await bot.send_position_opened(_position())
        await bot.send_position_closed(_position(status="CLOSED_TIME", close_price=25.5, pnl_percent=10.0))
        return bot.bot.sent

    sent = asyncio.run(_run())
    assert len(sent) == 2
    assert "large_h1" in sent[0][1]
    assert "TWAP Finished" in sent[1][1]
    assert "+10.00%" in sent[1][1]
