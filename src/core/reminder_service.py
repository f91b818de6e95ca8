"""
Taskmate — Reminder Service.

Thin orchestration over the reminder store, the scheduling engine and the
transport:

- create: persist first, then schedule. A row whose job failed to schedule
  is still picked up by the next recovery; a lost row could not be.
- delete: cancel the job first, then delete the row, so a fire can't race
  the deletion.
- fire: claim the row (completed 0 -> 1) before sending. Only the caller
  that wins the claim sends anything, and a failed send is never retried.
"""

from __future__ import annotations

import functools
import logging
from datetime import datetime
from typing import TYPE_CHECKING

from src.core.scheduling import job_id
from src.ports.transport_port import Payload, TransportError

if TYPE_CHECKING:
    from src.core.scheduling import SchedulingEngine
    from src.data.models import Reminder
    from src.ports.storage_port import GroupStore, ReminderStore, UserStore
    from src.ports.transport_port import TransportPort

logger = logging.getLogger(__name__)


class ReminderService:
    """Create, list, cancel and fire one-shot reminders."""

    kind = "reminder"

    def __init__(
        self,
        reminders: ReminderStore,
        engine: SchedulingEngine,
        transport: TransportPort,
        users: UserStore | None = None,
        groups: GroupStore | None = None,
    ) -> None:
        self._reminders = reminders
        self._engine = engine
        self._transport = transport
        self._users = users
        self._groups = groups
        engine.register_source(self)

    async def create(
        self,
        user_id: str,
        task: str,
        fire_at: datetime,
        notify_users: list[str] | tuple[str, ...] = (),
        group_id: str | None = None,
    ) -> Reminder:
        reminder = self._reminders.add_reminder(
            user_id=user_id,
            task=task,
            fire_at=fire_at,
            notify_users=list(notify_users),
            group_id=group_id,
        )
        self._schedule(reminder)
        return reminder

    def _schedule(self, reminder: Reminder) -> None:
        try:
            self._engine.schedule(
                job_id(self.kind, reminder.id),
                reminder.fire_at,
                functools.partial(self.fire, reminder.id),
            )
        except Exception as exc:
            logger.error(
                "Reminder #%d persisted but not scheduled (%s); next recovery will pick it up",
                reminder.id, exc,
            )

    def list(self, user_id: str) -> list[Reminder]:
        """Pending reminders of a user, soonest first."""
        return self._reminders.list_pending(user_id=user_id)

    async def delete(self, user_id: str, reminder_id: int) -> bool:
        reminder = self._reminders.get_reminder(reminder_id)
        if reminder is None or reminder.user_id != user_id:
            return False
        if reminder.completed:
            logger.info("Reminder #%d was already delivered; not deleting", reminder_id)
            return False
        self._engine.cancel(job_id(self.kind, reminder_id))
        # Conditional: a fire that claimed the row in the meantime wins.
        return self._reminders.delete_reminder(reminder_id, user_id=user_id, pending_only=True)

    def clear_completed(self, user_id: str) -> int:
        return self._reminders.clear_completed(user_id)

    # --- JobSource ---------------------------------------------------------

    def list_pending(self) -> list[tuple[int, datetime]]:
        return [(r.id, r.fire_at) for r in self._reminders.list_pending()]

    async def fire(self, reminder_id: int) -> None:
        reminder = self._reminders.claim(reminder_id)
        if reminder is None:
            logger.info("Reminder #%d already fired or cancelled; skipping", reminder_id)
            return

        payload = Payload(text=f"🔔 Reminder: {reminder.task}")
        recipients = self.recipients(reminder)
        for recipient in recipients:
            try:
                await self._transport.send(recipient, payload)
            except TransportError as exc:
                logger.error(
                    "Reminder #%d: delivery to %s failed: %s", reminder_id, recipient, exc,
                )
            except Exception:
                logger.exception(
                    "Reminder #%d: unexpected error delivering to %s", reminder_id, recipient,
                )
        logger.info("Reminder #%d fired to %d recipient(s)", reminder_id, len(recipients))

    def recipients(self, reminder: Reminder) -> list[str]:
        """Group chat for group reminders, otherwise owner plus notify list.

        Users who turned notifications off are skipped when someone else's
        reminder targets them; the owner always gets their own reminder.
        """
        if reminder.group_id:
            if self._groups is not None:
                group = self._groups.get_group(reminder.group_id)
                if group is not None and not group.notifications_enabled:
                    logger.info(
                        "Reminder #%d: notifications disabled in group %s",
                        reminder.id, reminder.group_id,
                    )
                    return []
            return [reminder.group_id]

        recipients = [reminder.user_id]
        for user_id in reminder.notify_users:
            if user_id in recipients:
                continue
            if self._users is not None and not self._users.notifications_enabled(user_id):
                continue
            recipients.append(user_id)
        return recipients
