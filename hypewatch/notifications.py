import logging
import asyncio
import os
import time
from typing import Optional

from telegram import Bot
from telegram.request import HTTPXRequest
from telegram.error import TimedOut, NetworkError, RetryAfter

from hypewatch.config import config
from hypewatch.sim_engine.models.position_models import SimulatedPosition

logger = logging.getLogger(__name__)

CLOSE_HEADLINES = {
    "CLOSED_TP": "🎯 <b>Take Profit Hit</b>",
    "CLOSED_SL": "🛑 <b>Stop Loss Hit</b>",
    "CLOSED_TIME": "⏱️ <b>TWAP Finished, Position Closed</b>",
}


class TelegramBot:
    """Telegram notifier for simulated-trade events. Silently disabled without credentials."""

    def __init__(self, token: Optional[str] = None, chat_id: Optional[str] = None):
        self.bot = None
        token = token if token is not None else config.TELEGRAM_BOT_TOKEN
        self.chat_id = chat_id if chat_id is not None else config.TELEGRAM_CHAT_ID
        self._send_lock = asyncio.Lock()
        self._global_backoff_until = 0.0
        self._message_last_sent_at = {}
        self._dedupe_window_sec = max(1.0, float(os.getenv("TELEGRAM_DEDUPE_WINDOW_SEC", "4.0")))

        if token and self.chat_id:
            try:
                trequest = HTTPXRequest(connection_pool_size=16, read_timeout=30.0, write_timeout=30.0, connect_timeout=30.0)
                self.bot = Bot(token=token, request=trequest)
                logger.info("Telegram Bot initialized.")
            except Exception as e:
                logger.error(f"Failed to initialize Telegram Bot: {e}")
        else:
            logger.warning("Telegram credentials missing. Alerts will be disabled.")

    async def send_message(self, message: str, chat_id: str = None):
        target_id = chat_id or self.chat_id

        if not self.bot or not target_id:
            logger.debug(f"Alert (Not Sent): {message}")
            return

        now = time.monotonic()
        dedupe_key = (str(target_id), message.strip())
        if (now - self._message_last_sent_at.get(dedupe_key, 0.0)) < self._dedupe_window_sec:
            logger.debug("Telegram dedupe skip chat=%s", target_id)
            return

        async with self._send_lock:
            for attempt in range(5):
                wait_for = max(0.0, self._global_backoff_until - time.monotonic())
                if wait_for > 0:
                    await asyncio.sleep(wait_for)

                try:
                    await self.bot.send_message(
                        chat_id=target_id,
                        text=message,
                        parse_mode='HTML',
                        disable_web_page_preview=True,
                    )
                    self._message_last_sent_at[dedupe_key] = time.monotonic()
                    return
                except RetryAfter as e:
                    retry_after = max(1, int(getattr(e, "retry_after", 1)))
                    self._global_backoff_until = max(self._global_backoff_until, time.monotonic() + retry_after + 1)
                    logger.warning("Telegram flood control. Retry after %ss.", retry_after)
                except (TimedOut, NetworkError) as e:
                    logger.warning("Telegram network timeout (attempt %s/5): %s", attempt + 1, e)
                    await asyncio.sleep(min(8, 2 ** attempt))
                except Exception as e:
                    logger.error(f"Failed to send Telegram message: {e}")
                    return

    async def send_position_opened(self, position: SimulatedPosition):
        icon = "🟢" if position.direction == "BUY" else "🔴"
        msg = (
            f"{icon} <b>Simulated {position.direction} Opened</b>\n\n"
            f"💵 <b>Entry:</b> ${position.entry_price:,.4f}\n"
            f"⚙️ <b>Size:</b> ${position.amount_usd:,.0f} x{position.leverage:g}\n"
            f"🏷️ <b>Trigger:</b> <code>{position.trigger_id or 'manual'}</code>"
        )
        await self.send_message(msg)

    async def send_position_closed(self, position: SimulatedPosition):
        headline = CLOSE_HEADLINES.get(position.status, f"<b>{position.status}</b>")
        msg = (
            f"{headline}\n\n"
            f"{position.direction} @ ${position.entry_price:,.4f} → ${position.close_price or 0:,.4f}\n"
            f"📊 <b>PnL:</b> {position.pnl_percent or 0:+.2f}%"
        )
        await self.send_message(msg)
