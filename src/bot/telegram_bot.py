"""
Taskmate — Telegram Bot.

Telegram is the transport: every text message in a private chat or group is
handed to the CommandRouter, and the scheduling engine delivers reminders
and timers through the same bot. Pending work is recovered in post_init,
before polling starts, so nothing scheduled before a restart is lost.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from telegram import MessageEntity, Update
from telegram.constants import ChatType
from telegram.ext import Application, ApplicationBuilder, ContextTypes, MessageHandler, filters

from src.config import settings

if TYPE_CHECKING:
    from src.core.router import BotServices, CommandRouter, IncomingMessage
    from src.core.scheduling import Clock, SchedulingEngine
    from src.ports.transport_port import TransportPort

logger = logging.getLogger(__name__)

_GROUP_CHATS = (ChatType.GROUP, ChatType.SUPERGROUP)


# ---------------------------------------------------------------------------
# Wiring
# ---------------------------------------------------------------------------


def build_services(
    transport: TransportPort,
    db_path: str | None = None,
    clock: Clock | None = None,
) -> tuple[BotServices, SchedulingEngine]:
    """Create the stores, the engine and the services on top of them."""
    from src.core.permissions import PermissionGate
    from src.core.reminder_service import ReminderService
    from src.core.router import BotServices
    from src.core.scheduling import SchedulingEngine
    from src.core.timer_service import TimerService
    from src.data.db import GroupDB, NoteDB, ReminderDB, TimerDB, TodoDB, UserDB

    path = db_path or settings.DATABASE_PATH
    users = UserDB(db_path=path, default_timezone=settings.DEFAULT_TIMEZONE)
    groups = GroupDB(db_path=path, default_commands=settings.DEFAULT_ALLOWED_COMMANDS)
    engine = SchedulingEngine(clock)

    services = BotServices(
        users=users,
        todos=TodoDB(db_path=path),
        notes=NoteDB(db_path=path),
        reminders=ReminderService(ReminderDB(db_path=path), engine, transport, users, groups),
        timers=TimerService(TimerDB(db_path=path), engine, transport),
        permissions=PermissionGate(groups),
        clock=engine.clock,
        prefix=settings.COMMAND_PREFIX,
        max_timer_minutes=settings.MAX_TIMER_MINUTES,
        max_reminder_minutes=settings.MAX_REMINDER_MINUTES,
    )
    return services, engine


# ---------------------------------------------------------------------------
# Update -> IncomingMessage
# ---------------------------------------------------------------------------


def extract_mentions(update: Update, usernames: dict[str, str]) -> list[str]:
    """User ids mentioned in the message, in message order.

    Text mentions carry the user directly. Plain @username mentions are
    resolved through usernames seen earlier; unknown ones are kept as the
    raw lowercase @username.
    """
    message = update.effective_message
    entities = message.parse_entities([MessageEntity.TEXT_MENTION, MessageEntity.MENTION])

    mentions: list[str] = []
    for entity, text in entities.items():
        if entity.type == MessageEntity.TEXT_MENTION and entity.user is not None:
            user_id = str(entity.user.id)
        else:
            handle = text.lower()
            user_id = usernames.get(handle.lstrip("@"), handle)
        if user_id not in mentions:
            mentions.append(user_id)
    return mentions


def to_incoming(update: Update, usernames: dict[str, str]) -> IncomingMessage:
    """Translate a Telegram update into the router's IncomingMessage."""
    from src.core.router import IncomingMessage

    message = update.effective_message
    user = update.effective_user
    chat = update.effective_chat

    if user.username:
        usernames[user.username.lower()] = str(user.id)

    return IncomingMessage(
        chat_id=str(chat.id),
        sender_id=str(user.id),
        text=message.text,
        is_group=chat.type in _GROUP_CHATS,
        mentions=extract_mentions(update, usernames),
    )


# ---------------------------------------------------------------------------
# Message handler
# ---------------------------------------------------------------------------


async def handle_text(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Route every text message through the CommandRouter."""
    message = update.effective_message
    if message is None or not message.text or update.effective_user is None:
        return
    if not message.text.startswith(settings.COMMAND_PREFIX):
        return

    router: CommandRouter = context.bot_data["router"]
    usernames: dict[str, str] = context.bot_data.setdefault("usernames", {})
    await router.handle(to_incoming(update, usernames))


async def _on_error(update: object, context: ContextTypes.DEFAULT_TYPE) -> None:
    logger.error("Unhandled error for update %s", update, exc_info=context.error)


# ---------------------------------------------------------------------------
# App builder
# ---------------------------------------------------------------------------


def build_app(transport: TransportPort | None = None, db_path: str | None = None) -> Application:
    """Build and configure the Telegram Application.

    Args:
        transport: Transport port implementation. Defaults to TelegramTransport
                   (created from the bot instance after the app is built).
        db_path: SQLite file; defaults to settings.DATABASE_PATH.
    """
    from src.bot.commands import build_commands
    from src.core.router import CommandRouter

    async def _post_init(app: Application) -> None:
        recovered = await app.bot_data["engine"].start()
        logger.info("Recovered %d pending jobs", recovered)

    async def _post_shutdown(app: Application) -> None:
        await app.bot_data["engine"].shutdown()
        await app.bot_data["router"].aclose()

    app = (
        ApplicationBuilder()
        .token(settings.TELEGRAM_BOT_TOKEN)
        .concurrent_updates(True)
        .post_init(_post_init)
        .post_shutdown(_post_shutdown)
        .build()
    )

    if transport is None:
        from src.adapters.telegram_transport import TelegramTransport
        transport = TelegramTransport(app.bot)

    services, engine = build_services(transport, db_path=db_path)
    router = CommandRouter(
        services,
        transport,
        build_commands(),
        reply_unknown=settings.REPLY_UNKNOWN_COMMAND,
        reply_on_denied=settings.REPLY_ON_DENIED,
    )

    app.bot_data["engine"] = engine
    app.bot_data["router"] = router
    app.bot_data["usernames"] = {}

    app.add_handler(MessageHandler(filters.TEXT, handle_text))
    app.add_error_handler(_on_error)

    logger.info("Telegram bot application built with %d commands", len(router.commands))
    return app


def main() -> None:
    """Entry point: build the app and start polling."""
    logger.info("Starting Taskmate bot...")
    app = build_app()
    app.run_polling(allowed_updates=Update.ALL_TYPES)


if __name__ == "__main__":
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    main()
