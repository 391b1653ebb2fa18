from contextlib import asynccontextmanager
import logging
import os
import aiohttp
import colorlog
import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from hypewatch.config import config
from hypewatch.database import init_db
from hypewatch.notifications import TelegramBot
from hypewatch.services.market_feed import HyperliquidFeed, LiquidationMapFeed, TwapFeed
from hypewatch.services.position_store import PositionStore
from hypewatch.services.whale_feed import WhaleFeed
from hypewatch.sim_engine.services.simulator_service import SimulatorService

# Import Routers
from hypewatch.routers import market, simulator

# Configure Colored Logging
handler = colorlog.StreamHandler()
handler.setFormatter(colorlog.ColoredFormatter(
    '%(log_color)s%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    log_colors={
        'DEBUG': 'cyan',
        'INFO': 'green',
        'WARNING': 'yellow',
        'ERROR': 'red',
        'CRITICAL': 'red,bg_white',
    }
))
logger = colorlog.getLogger()
if not logger.handlers:
    logger.addHandler(handler)
    logger.setLevel(logging.DEBUG if config.DEBUG else logging.INFO)

VERSION = "0.1.0"


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    logger.info(f"🚀 HypeWatch {VERSION} starting ({config.COIN})...")
    init_db()
    config.validate()

    session = aiohttp.ClientSession(
        timeout=aiohttp.ClientTimeout(total=10),
        headers={"Content-Type": "application/json"}
    )
    app.state.session = session
    app.state.hl_feed = HyperliquidFeed(session=session)
    app.state.twap_feed = TwapFeed(app.state.hl_feed, session=session)
    app.state.liquidation_feed = LiquidationMapFeed(app.state.hl_feed, session=session)
    app.state.whale_feed = WhaleFeed(session=session)
    app.state.simulator = SimulatorService(
        store=PositionStore(),
        hl_feed=app.state.hl_feed,
        twap_feed=app.state.twap_feed,
        liquidation_feed=app.state.liquidation_feed,
        notifier=TelegramBot(),
    )

    if config.SIMULATOR_ENABLED:
        app.state.simulator.start()

    yield
    # Shutdown
    logger.info("🛑 Shutting down simulator...")
    app.state.simulator.stop()
    await app.state.simulator.ticker.wait_closed()
    await session.close()


app = FastAPI(title="HypeWatch", version=VERSION, lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(market.router)
app.include_router(simulator.router)


@app.get("/health")
async def health():
    return {"status": "ok", "version": VERSION, "coin": config.COIN}


def run():
    uvicorn.run(
        "hypewatch.main:app",
        host=os.getenv("HOST", "0.0.0.0"),
        port=int(os.getenv("PORT", "8000")),
        reload=config.DEBUG,
    )


if __name__ == "__main__":
    run()
