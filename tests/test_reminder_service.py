"""Tests for src.core.reminder_service — persist, schedule, claim, send."""

import asyncio
from datetime import timedelta

import pytest

from src.core.reminder_service import ReminderService
from src.core.scheduling import SchedulingEngine
from src.ports.transport_port import TransportError


class TestCreateAndFire:
    @pytest.mark.asyncio
    async def test_fires_once_to_owner(self, reminder_service, reminder_db, clock, sent):
        r = await reminder_service.create("u1", "call mom", clock.now() + timedelta(minutes=30))

        await clock.advance(minutes=29)
        assert sent() == []

        await clock.advance(minutes=1)
        assert sent() == [("u1", "🔔 Reminder: call mom")]
        assert reminder_db.get_reminder(r.id).completed is True

        await clock.advance(hours=1)
        assert len(sent()) == 1

    @pytest.mark.asyncio
    async def test_notify_users_deduplicated_and_muted_skipped(
        self, reminder_service, user_db, clock, sent,
    ):
        user_db.update_settings("u3", notifications_enabled=False)
        await reminder_service.create(
            "u1", "standup", clock.now() + timedelta(minutes=5),
            notify_users=["u2", "u2", "u1", "u3"],
        )
        await clock.advance(minutes=5)
        assert [recipient for recipient, _ in sent()] == ["u1", "u2"]

    @pytest.mark.asyncio
    async def test_owner_muted_still_gets_own_reminder(self, reminder_service, user_db, clock, sent):
        user_db.update_settings("u1", notifications_enabled=False)
        await reminder_service.create("u1", "x", clock.now() + timedelta(minutes=1))
        await clock.advance(minutes=1)
        assert sent() == [("u1", "🔔 Reminder: x")]

    @pytest.mark.asyncio
    async def test_group_reminder_goes_to_group(self, reminder_service, clock, sent):
        await reminder_service.create("u1", "team sync", clock.now() + timedelta(minutes=1), group_id="g1")
        await clock.advance(minutes=1)
        assert sent() == [("g1", "🔔 Reminder: team sync")]

    @pytest.mark.asyncio
    async def test_group_notifications_off_suppresses(
        self, reminder_service, reminder_db, gate, clock, sent,
    ):
        gate.claim_admin("g1", "a")
        gate.update_settings("g1", "a", notifications_enabled=False)
        r = await reminder_service.create("u1", "x", clock.now() + timedelta(minutes=1), group_id="g1")
        await clock.advance(minutes=1)
        assert sent() == []
        assert reminder_db.get_reminder(r.id).completed is True

    @pytest.mark.asyncio
    async def test_send_failure_is_not_retried(
        self, reminder_service, reminder_db, transport, clock,
    ):
        transport.send.side_effect = [TransportError("offline"), None]
        r = await reminder_service.create(
            "u1", "x", clock.now() + timedelta(minutes=1), notify_users=["u2"],
        )
        await clock.advance(minutes=1)
        assert transport.send.await_count == 2
        assert reminder_db.get_reminder(r.id).completed is True

        await clock.advance(hours=1)
        assert transport.send.await_count == 2


class TestDelete:
    @pytest.mark.asyncio
    async def test_delete_cancels_job(self, reminder_service, reminder_db, engine, clock, sent):
        r = await reminder_service.create("u1", "x", clock.now() + timedelta(minutes=10))
        assert await reminder_service.delete("u1", r.id) is True
        assert not engine.is_scheduled(f"reminder:{r.id}")
        assert reminder_db.get_reminder(r.id) is None

        await clock.advance(minutes=10)
        assert sent() == []

    @pytest.mark.asyncio
    async def test_delete_while_sending_keeps_delivered_row(
        self, reminder_service, reminder_db, transport, clock,
    ):
        release = asyncio.Event()

        async def slow_send(recipient, payload):
            await release.wait()

        transport.send.side_effect = slow_send
        r = await reminder_service.create("u1", "x", clock.now() + timedelta(minutes=1))
        await clock.advance(minutes=1)
        transport.send.assert_awaited_once()

        assert await reminder_service.delete("u1", r.id) is False
        release.set()
        await clock.settle()
        stored = reminder_db.get_reminder(r.id)
        assert stored is not None
        assert stored.completed is True

    @pytest.mark.asyncio
    async def test_delete_delivered_reminder_is_refused(self, reminder_service, reminder_db, clock):
        r = await reminder_service.create("u1", "x", clock.now() + timedelta(minutes=1))
        await clock.advance(minutes=1)
        assert await reminder_service.delete("u1", r.id) is False
        assert reminder_db.get_reminder(r.id).completed is True
        assert reminder_service.clear_completed("u1") == 1

    @pytest.mark.asyncio
    async def test_delete_other_users_reminder(self, reminder_service, clock):
        r = await reminder_service.create("u1", "x", clock.now() + timedelta(minutes=10))
        assert await reminder_service.delete("u2", r.id) is False
        assert reminder_service.list("u1")[0].id == r.id

    @pytest.mark.asyncio
    async def test_fire_after_delete_sends_nothing(self, reminder_service, reminder_db, clock, sent):
        r = reminder_db.add_reminder("u1", "x", clock.now())
        reminder_db.delete_reminder(r.id)
        await reminder_service.fire(r.id)
        assert sent() == []


class TestRecovery:
    @pytest.mark.asyncio
    async def test_restart_delivers_overdue_and_waits_for_future(
        self, reminder_db, user_db, group_db, transport, clock, sent,
    ):
        now = clock.now()
        for i in range(3):
            reminder_db.add_reminder("u1", f"overdue {i}", now - timedelta(minutes=10 + i))
        for i in range(2):
            reminder_db.add_reminder("u1", f"future {i}", now + timedelta(minutes=5 * (i + 1)))
        done = reminder_db.add_reminder("u1", "already sent", now - timedelta(hours=1))
        reminder_db.claim(done.id)

        engine = clock.attach(SchedulingEngine(clock))
        ReminderService(reminder_db, engine, transport, user_db, group_db)
        assert await engine.start() == 5

        await clock.settle()
        assert sorted(text for _, text in sent()) == [
            "🔔 Reminder: overdue 0", "🔔 Reminder: overdue 1", "🔔 Reminder: overdue 2",
        ]

        await clock.advance(minutes=10)
        assert len(sent()) == 5
        assert reminder_db.list_pending() == []
        await engine.shutdown()

    @pytest.mark.asyncio
    async def test_second_engine_cannot_double_fire(
        self, reminder_db, user_db, group_db, transport, clock, sent,
    ):
        reminder_db.add_reminder("u1", "once", clock.now() - timedelta(minutes=1))

        first = clock.attach(SchedulingEngine(clock))
        second = clock.attach(SchedulingEngine(clock))
        ReminderService(reminder_db, first, transport, user_db, group_db)
        ReminderService(reminder_db, second, transport, user_db, group_db)
        await first.start()
        await second.start()
        await clock.settle()

        assert sent() == [("u1", "🔔 Reminder: once")]
        await first.shutdown()
        await second.shutdown()
