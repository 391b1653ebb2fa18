import os
import logging
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()

logger = logging.getLogger(__name__)


class Config:
    """
    HypeWatch Configuration
    All settings are loaded from environment variables.
    """

    # Environment
    ENVIRONMENT = os.getenv("ENVIRONMENT", "development")
    DEBUG = ENVIRONMENT == "development"

    # Tracked token
    COIN = os.getenv("HYPEWATCH_COIN", "HYPE")

    # Upstream feeds
    HYPERLIQUID_API = os.getenv("HYPERLIQUID_API", "https://api.hyperliquid.xyz/info")
    HYPURRSCAN_API = os.getenv("HYPURRSCAN_API", "https://api.hypurrscan.io/twap/*")
    LIQUIDATION_MAP_URL = os.getenv(
        "LIQUIDATION_MAP_URL",
        "https://dw3ji7n7thadj.cloudfront.net/aggregator/assets/HYPE/liquidation-heatmap.json",
    )
    WHALE_API_BASE = os.getenv("WHALE_API_BASE", "https://hyperbot.network/api/whales")

    # Cache TTLs (seconds)
    PRICE_CACHE_TTL = float(os.getenv("PRICE_CACHE_TTL", "10"))
    META_CACHE_TTL = float(os.getenv("META_CACHE_TTL", "300"))
    LIQUIDATION_CACHE_TTL = float(os.getenv("LIQUIDATION_CACHE_TTL", "600"))

    # Simulated trading loop
    SIMULATOR_POLL_INTERVAL = float(os.getenv("SIMULATOR_POLL_INTERVAL", "30"))
    SIMULATOR_ENABLED = os.getenv("SIMULATOR_ENABLED", "true").lower() == "true"

    # Telegram Bot
    TELEGRAM_BOT_TOKEN = os.getenv("TELEGRAM_BOT_TOKEN")
    TELEGRAM_CHAT_ID = os.getenv("TELEGRAM_CHAT_ID")

    # Database (simulated positions)
    DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./hypewatch.db")

    # CORS - Allowed origins for frontend
    ALLOWED_ORIGINS = os.getenv("ALLOWED_ORIGINS", "http://localhost:3000").split(",")

    @classmethod
    def validate(cls):
        """Validate configuration on startup."""
        warnings = []

        if not cls.TELEGRAM_BOT_TOKEN or not cls.TELEGRAM_CHAT_ID:
            warnings.append("TELEGRAM_BOT_TOKEN/TELEGRAM_CHAT_ID not set (Notifications disabled)")
        if cls.DATABASE_URL.startswith("sqlite"):
            logger.info(f"Using SQLite position store at {cls.DATABASE_URL}")
        if cls.SIMULATOR_POLL_INTERVAL <= 0:
            warnings.append("SIMULATOR_POLL_INTERVAL must be positive")

        for w in warnings:
            logger.warning(f"⚠️  {w}")

        if cls.ENVIRONMENT == "production":
            logger.info("🚀 Running in PRODUCTION mode")
        else:
            logger.info("🔧 Running in DEVELOPMENT mode")

        return len(warnings) == 0

    @classmethod
    def is_production(cls) -> bool:
        return cls.ENVIRONMENT == "production"


config = Config()
