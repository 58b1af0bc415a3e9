"""
Telegram Router - forwards chat updates to the conversation engine

/start, /menu and every plain text message go through
ConversationEngine.process_inbound_message(chat_id, first_name, text).
"""

import logging
from telegram import Update
from telegram.ext import Application, CommandHandler, ContextTypes, MessageHandler, filters

from handlers.conversation import ConversationEngine
from utils.exception_handler import safe_telegram_handler

logger = logging.getLogger(__name__)


class TelegramRouter:
    """Thin adapter between python-telegram-bot updates and the engine"""

    def __init__(self, engine: ConversationEngine):
        self.engine = engine

    @safe_telegram_handler
    async def handle_command(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        message = update.effective_message
        chat = update.effective_chat
        if not message or not chat or not message.text:
            return
        # "/start@AfroFutureBot payload" -> "/start"
        command = message.text.split()[0].split("@")[0].lower()
        await self.engine.process_inbound_message(str(chat.id), self._first_name(update), command)

    @safe_telegram_handler
    async def handle_text(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        message = update.effective_message
        chat = update.effective_chat
        if not message or not chat or not message.text:
            logger.warning("🚫 TELEGRAM_ROUTER: Update without text or chat")
            return
        await self.engine.process_inbound_message(str(chat.id), self._first_name(update), message.text)

    @staticmethod
    def _first_name(update: Update):
        user = update.effective_user
        return user.first_name if user else None


def register_handlers(application: Application, engine: ConversationEngine) -> TelegramRouter:
    """Attach the command and text handlers to the bot application"""
    router = TelegramRouter(engine)
    application.add_handler(CommandHandler(["start", "menu"], router.handle_command))
    application.add_handler(MessageHandler(filters.TEXT & ~filters.COMMAND, router.handle_text))
    logger.info("✅ TELEGRAM_ROUTER: /start, /menu and text handlers registered")
    return router
