"""Tests for src.bot.telegram_bot and src.adapters.telegram_transport.

Telegram objects are mocked; nothing talks to the network.
"""

from unittest.mock import AsyncMock, MagicMock

import pytest
from telegram import MessageEntity
from telegram.constants import ChatType
from telegram.error import NetworkError

from src.adapters.telegram_transport import TelegramTransport
from src.bot.telegram_bot import build_app, extract_mentions, handle_text, to_incoming
from src.core.router import IncomingMessage
from src.ports.transport_port import Payload, TransportError


def _entity(kind, user_id=None):
    entity = MagicMock()
    entity.type = kind
    entity.user = MagicMock(id=user_id) if user_id is not None else None
    return entity


def _make_update(text, user_id=111, username="alice", chat_id=-100, chat_type=ChatType.SUPERGROUP, entities=None):
    update = MagicMock()
    update.effective_user.id = user_id
    update.effective_user.username = username
    update.effective_chat.id = chat_id
    update.effective_chat.type = chat_type
    update.effective_message.text = text
    update.effective_message.parse_entities.return_value = entities or {}
    return update


class TestExtractMentions:
    def test_text_mention_uses_user_id(self):
        update = _make_update("!group ban Bob", entities={_entity(MessageEntity.TEXT_MENTION, 222): "Bob"})
        assert extract_mentions(update, {}) == ["222"]

    def test_known_username_resolved(self):
        update = _make_update("!group ban @Bob", entities={_entity(MessageEntity.MENTION): "@Bob"})
        assert extract_mentions(update, {"bob": "222"}) == ["222"]

    def test_unknown_username_kept_raw(self):
        update = _make_update("!group ban @Bob", entities={_entity(MessageEntity.MENTION): "@Bob"})
        assert extract_mentions(update, {}) == ["@bob"]

    def test_duplicates_removed(self):
        update = _make_update("x", entities={
            _entity(MessageEntity.TEXT_MENTION, 222): "Bob",
            _entity(MessageEntity.MENTION): "@bob",
        })
        assert extract_mentions(update, {"bob": "222"}) == ["222"]


class TestToIncoming:
    def test_group_message(self):
        usernames = {}
        message = to_incoming(_make_update("!todo list"), usernames)
        assert isinstance(message, IncomingMessage)
        assert message.chat_id == "-100"
        assert message.sender_id == "111"
        assert message.is_group is True
        assert usernames == {"alice": "111"}

    def test_private_message(self):
        update = _make_update("!todo list", chat_id=111, chat_type=ChatType.PRIVATE)
        assert to_incoming(update, {}).is_group is False


class TestHandleText:
    @pytest.mark.asyncio
    async def test_routes_commands(self):
        router = MagicMock()
        router.handle = AsyncMock()
        context = MagicMock()
        context.bot_data = {"router": router}

        await handle_text(_make_update("!help"), context)
        router.handle.assert_awaited_once()
        assert router.handle.await_args.args[0].text == "!help"

    @pytest.mark.asyncio
    async def test_ignores_plain_text(self):
        router = MagicMock()
        router.handle = AsyncMock()
        context = MagicMock()
        context.bot_data = {"router": router}

        await handle_text(_make_update("good morning"), context)
        router.handle.assert_not_awaited()


class TestTelegramTransport:
    @pytest.mark.asyncio
    async def test_text(self):
        bot = MagicMock()
        bot.send_message = AsyncMock()
        await TelegramTransport(bot).send("42", Payload(text="hi"))
        bot.send_message.assert_awaited_once_with(chat_id="42", text="hi")

    @pytest.mark.asyncio
    async def test_image_goes_as_photo(self):
        bot = MagicMock()
        bot.send_photo = AsyncMock()
        await TelegramTransport(bot).send("42", Payload(media=b"png", mime_type="image/png"))
        bot.send_photo.assert_awaited_once_with(chat_id="42", photo=b"png", caption=None)

    @pytest.mark.asyncio
    async def test_other_media_goes_as_document(self):
        bot = MagicMock()
        bot.send_document = AsyncMock()
        await TelegramTransport(bot).send("42", Payload(text="log", media=b"data", mime_type="text/plain"))
        bot.send_document.assert_awaited_once_with(chat_id="42", document=b"data", caption="log")

    @pytest.mark.asyncio
    async def test_telegram_error_wrapped(self):
        bot = MagicMock()
        bot.send_message = AsyncMock(side_effect=NetworkError("timeout"))
        with pytest.raises(TransportError):
            await TelegramTransport(bot).send("42", Payload(text="hi"))

    def test_empty_payload_rejected(self):
        with pytest.raises(ValueError):
            Payload()


class TestBuildApp:
    def test_wires_router_and_engine(self, tmp_db_path):
        app = build_app(transport=AsyncMock(), db_path=tmp_db_path)
        router = app.bot_data["router"]
        assert "notify" in router.commands
        assert app.bot_data["engine"].started is False
        assert len(app.handlers[0]) == 1
