"""Shared test fixtures and configuration.

Sets up fake environment variables so src.config doesn't sys.exit(),
and provides common fixtures: temp-file stores, a controllable clock,
a mocked transport and a fully wired router.
"""

import os

# Patch env vars BEFORE any src imports
os.environ.setdefault("TELEGRAM_BOT_TOKEN", "fake-token-for-tests")
os.environ.setdefault("DATABASE_PATH", ":memory:")
os.environ.setdefault("COMMAND_PREFIX", "!")

import asyncio
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock

import pytest
import pytest_asyncio

START = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


class FakeClock:
    """Manual clock: time only moves when a test calls advance().

    Engines attached to the clock are re-anchored on every advance() so
    their scheduler sees the jump.
    """

    def __init__(self, start: datetime = START) -> None:
        self._now = start
        self._engines: list = []

    def now(self) -> datetime:
        return self._now

    def attach(self, engine):
        self._engines.append(engine)
        return engine

    async def settle(self, rounds: int = 25) -> None:
        """Let woken jobs run to completion."""
        for _ in range(rounds):
            await asyncio.sleep(0)
        # The scheduler wakes up through call_soon_threadsafe.
        await asyncio.sleep(0.02)
        for _ in range(rounds):
            await asyncio.sleep(0)

    async def advance(self, **delta) -> None:
        await self.settle()
        self._now += timedelta(**delta)
        for engine in self._engines:
            engine.resync()
        await self.settle()


@pytest.fixture
def tmp_db_path(tmp_path):
    """Return a temporary SQLite DB path shared by every store in a test."""
    return str(tmp_path / "test_taskmate.db")


@pytest.fixture
def user_db(tmp_db_path):
    from src.data.db import UserDB
    return UserDB(db_path=tmp_db_path, default_timezone="UTC")


@pytest.fixture
def group_db(tmp_db_path):
    from src.data.db import GroupDB
    return GroupDB(db_path=tmp_db_path, default_commands=["help", "notify", "todo", "note", "timer"])


@pytest.fixture
def todo_db(tmp_db_path):
    from src.data.db import TodoDB
    return TodoDB(db_path=tmp_db_path)


@pytest.fixture
def note_db(tmp_db_path):
    from src.data.db import NoteDB
    return NoteDB(db_path=tmp_db_path)


@pytest.fixture
def reminder_db(tmp_db_path):
    from src.data.db import ReminderDB
    return ReminderDB(db_path=tmp_db_path)


@pytest.fixture
def timer_db(tmp_db_path):
    from src.data.db import TimerDB
    return TimerDB(db_path=tmp_db_path)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def transport():
    """A TransportPort double; inspect transport.send.await_args_list."""
    mock = AsyncMock()
    mock.send = AsyncMock(return_value=None)
    return mock


@pytest_asyncio.fixture
async def engine(clock):
    from src.core.scheduling import SchedulingEngine
    engine = clock.attach(SchedulingEngine(clock))
    yield engine
    await engine.shutdown()


@pytest.fixture
def gate(group_db):
    from src.core.permissions import PermissionGate
    return PermissionGate(group_db)


@pytest.fixture
def reminder_service(reminder_db, engine, transport, user_db, group_db):
    from src.core.reminder_service import ReminderService
    return ReminderService(reminder_db, engine, transport, user_db, group_db)


@pytest.fixture
def timer_service(timer_db, engine, transport):
    from src.core.timer_service import TimerService
    return TimerService(timer_db, engine, transport)


@pytest.fixture
def services(user_db, todo_db, note_db, reminder_service, timer_service, gate, clock):
    from src.core.router import BotServices
    return BotServices(
        users=user_db,
        todos=todo_db,
        notes=note_db,
        reminders=reminder_service,
        timers=timer_service,
        permissions=gate,
        clock=clock,
        prefix="!",
        max_timer_minutes=1440,
        max_reminder_minutes=525600,
    )


@pytest.fixture
def router(services, transport):
    from src.bot.commands import build_commands
    from src.core.router import CommandRouter
    return CommandRouter(services, transport, build_commands())


@pytest.fixture
def sent(transport):
    """Callable returning (recipient, text) for every send so far."""

    def _sent() -> list[tuple[str, str]]:
        return [(c.args[0], c.args[1].text) for c in transport.send.await_args_list]

    return _sent
