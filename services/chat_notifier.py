"""
Chat Notifier - outbound Telegram messages

Used for conversation replies, payment confirmations, reminders and deadline notices.
Send failures are raised as TelegramError so callers decide whether to log or retry.
"""

import asyncio
import logging
from typing import Iterable, Optional, Tuple

from telegram import Bot
from telegram.constants import ParseMode
from telegram.error import BadRequest, TelegramError

from config import Config

logger = logging.getLogger(__name__)


class ChatNotifier:
    """Markdown sender with plain-text fallback and a constant batch throttle"""

    def __init__(self, bot: Bot, send_delay_seconds: Optional[float] = None):
        self.bot = bot
        self.send_delay_seconds = (
            send_delay_seconds if send_delay_seconds is not None else Config.OUTBOUND_SEND_DELAY_SECONDS
        )

    async def send_text(self, chat_id: str, text: str) -> None:
        """Send one message; Markdown first, plain text if Telegram can't parse the markup"""
        try:
            await self.bot.send_message(
                chat_id=chat_id,
                text=text,
                parse_mode=ParseMode.MARKDOWN,
                disable_web_page_preview=True,
            )
        except BadRequest as e:
            if "parse" not in str(e).lower():
                logger.warning(f"❌ TELEGRAM_SEND: Bad request for chat {chat_id}: {e}")
                raise
            logger.info(f"ℹ️ TELEGRAM_SEND: Markdown rejected for chat {chat_id}, resending as plain text")
            await self.bot.send_message(chat_id=chat_id, text=text, disable_web_page_preview=True)
        logger.debug(f"📱 TELEGRAM_SENT: chat={chat_id}")

    async def send_many(self, messages: Iterable[Tuple[str, str]]) -> Tuple[int, int]:
        """Send (chat_id, text) pairs with a fixed delay between sends; returns (sent, failed)"""
        sent = failed = 0
        for index, (chat_id, text) in enumerate(messages):
            if index and self.send_delay_seconds > 0:
                await asyncio.sleep(self.send_delay_seconds)
            try:
                await self.send_text(chat_id, text)
                sent += 1
            except TelegramError as e:
                failed += 1
                logger.error(f"❌ TELEGRAM_ERROR: chat={chat_id}, error={e}")
        logger.info(f"📊 TELEGRAM_BATCH: {sent} sent, {failed} failed")
        return sent, failed

    async def throttle(self) -> None:
        """Constant inter-item delay for batch jobs that send one message at a time"""
        if self.send_delay_seconds > 0:
            await asyncio.sleep(self.send_delay_seconds)
