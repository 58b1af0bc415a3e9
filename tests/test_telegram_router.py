"""Telegram adapter: commands and text reach the conversation engine"""

from unittest.mock import AsyncMock, MagicMock

import pytest
from telegram.ext import CommandHandler, MessageHandler

from handlers.telegram_router import TelegramRouter, register_handlers


def _update(text, chat_id=1001, first_name="Ama"):
    update = MagicMock()
    update.effective_message.text = text
    update.effective_chat.id = chat_id
    update.effective_user.first_name = first_name
    return update


@pytest.fixture
def engine():
    mock = MagicMock()
    mock.process_inbound_message = AsyncMock(return_value=[])
    return mock


class TestTelegramRouter:

    @pytest.mark.asyncio
    async def test_command_with_bot_suffix_is_normalized(self, engine):
        await TelegramRouter(engine).handle_command(_update("/start@AfroFutureBot promo"), MagicMock())
        engine.process_inbound_message.assert_awaited_once_with("1001", "Ama", "/start")

    @pytest.mark.asyncio
    async def test_text_forwarded_verbatim(self, engine):
        await TelegramRouter(engine).handle_text(_update("ama@example.com"), MagicMock())
        engine.process_inbound_message.assert_awaited_once_with("1001", "Ama", "ama@example.com")

    @pytest.mark.asyncio
    async def test_engine_failure_does_not_escape(self, engine):
        engine.process_inbound_message.side_effect = RuntimeError("boom")
        assert await TelegramRouter(engine).handle_text(_update("hi"), MagicMock()) is None

    def test_register_handlers(self, engine):
        application = MagicMock()

        register_handlers(application, engine)

        handlers = [call.args[0] for call in application.add_handler.call_args_list]
        assert isinstance(handlers[0], CommandHandler)
        assert handlers[0].commands == frozenset({"start", "menu"})
        assert isinstance(handlers[1], MessageHandler)
