"""
Taskmate — Timer Service.

Same lifecycle as reminders (persist, schedule, claim, send), but a timer
is always delivered to its owner and is deactivated rather than deleted
when cancelled.
"""

from __future__ import annotations

import functools
import logging
from datetime import datetime, timedelta
from typing import TYPE_CHECKING

from src.core.scheduling import job_id
from src.ports.transport_port import Payload, TransportError

if TYPE_CHECKING:
    from src.core.scheduling import SchedulingEngine
    from src.data.models import Timer
    from src.ports.storage_port import TimerStore
    from src.ports.transport_port import TransportPort

logger = logging.getLogger(__name__)


class TimerService:
    """Start, list, cancel and fire countdown timers."""

    kind = "timer"

    def __init__(
        self,
        timers: TimerStore,
        engine: SchedulingEngine,
        transport: TransportPort,
    ) -> None:
        self._timers = timers
        self._engine = engine
        self._transport = transport
        engine.register_source(self)

    async def create(self, user_id: str, duration_minutes: int) -> Timer:
        fire_at = self._engine.clock.now() + timedelta(minutes=duration_minutes)
        timer = self._timers.add_timer(user_id, duration_minutes, fire_at)
        try:
            self._engine.schedule(
                job_id(self.kind, timer.id),
                timer.fire_at,
                functools.partial(self.fire, timer.id),
            )
        except Exception as exc:
            logger.error(
                "Timer #%d persisted but not scheduled (%s); next recovery will pick it up",
                timer.id, exc,
            )
        return timer

    def list(self, user_id: str) -> list[Timer]:
        """Active timers of a user, soonest first."""
        return self._timers.list_active(user_id=user_id)

    async def cancel(self, user_id: str, timer_id: int) -> bool:
        """Returns False if the timer is not the user's or has already finished."""
        timer = self._timers.get_timer(timer_id)
        if timer is None or timer.user_id != user_id:
            return False
        self._engine.cancel(job_id(self.kind, timer_id))
        return self._timers.deactivate(timer_id, user_id=user_id)

    # --- JobSource ---------------------------------------------------------

    def list_pending(self) -> list[tuple[int, datetime]]:
        return [(t.id, t.fire_at) for t in self._timers.list_active()]

    async def fire(self, timer_id: int) -> None:
        timer = self._timers.claim(timer_id)
        if timer is None:
            logger.info("Timer #%d already fired or cancelled; skipping", timer_id)
            return

        payload = Payload(
            text=f"⏰ Timer completed: {timer.duration_minutes} minutes have passed!"
        )
        try:
            await self._transport.send(timer.user_id, payload)
        except TransportError as exc:
            logger.error("Timer #%d: delivery to %s failed: %s", timer_id, timer.user_id, exc)
            return
        logger.info("Timer #%d fired", timer_id)
