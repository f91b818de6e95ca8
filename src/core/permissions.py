"""
Taskmate — Group Permission Gate.

All admin/ban/allowed-command logic lives here so command handlers never
inline it. The module-level predicates are pure functions of a Group
snapshot; PermissionGate wraps them around the group store and mediates
every mutation of a Group row.

Rules:
- Settings (notifications, mentions, allowed commands) can be changed by
  anyone when only_admins_can_change is off, otherwise by admins only.
- Admin add/remove, ban/unban, mention policy and the admin-only flag
  always require an admin.
- Banning an admin also revokes their admin status.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Callable, TypeVar

from src.core.errors import PermissionDeniedError, ValidationError

if TYPE_CHECKING:
    from src.data.models import Group
    from src.ports.storage_port import GroupStore

logger = logging.getLogger(__name__)

T = TypeVar("T")

# A group can never lock itself out of its own settings or of !help.
ALWAYS_ALLOWED_COMMANDS = frozenset({"help", "group"})


# ---------------------------------------------------------------------------
# Pure predicates over a Group snapshot
# ---------------------------------------------------------------------------


def is_command_allowed(group: Group, command: str) -> bool:
    name = command.lower()
    return name in ALWAYS_ALLOWED_COMMANDS or name in group.allowed_commands


def is_admin(group: Group, user_id: str) -> bool:
    return user_id in group.admin_users


def is_banned(group: Group, user_id: str) -> bool:
    return user_id in group.banned_users


def can_change_settings(group: Group, user_id: str) -> bool:
    return not group.only_admins_can_change or is_admin(group, user_id)


def can_mention_everyone(group: Group) -> bool:
    return group.mentions_enabled and group.allow_mention_everyone


def can_mention_users(group: Group) -> bool:
    return group.mentions_enabled and group.allow_mention_users


def _require_admin(group: Group, user_id: str, action: str) -> None:
    if not is_admin(group, user_id):
        raise PermissionDeniedError(f"❌ You need to be an admin to {action}.")


def _require_settings_access(group: Group, user_id: str) -> None:
    if not can_change_settings(group, user_id):
        raise PermissionDeniedError("❌ You need to be an admin to change this setting.")


# ---------------------------------------------------------------------------
# Store-backed gate
# ---------------------------------------------------------------------------


class PermissionGate:
    """Answers permission questions and applies permission-checked group edits."""

    def __init__(self, groups: GroupStore) -> None:
        self._groups = groups

    def get_group(self, group_id: str) -> Group:
        return self._groups.get_or_create(group_id)

    def is_command_allowed(self, group_id: str, command: str) -> bool:
        return is_command_allowed(self.get_group(group_id), command)

    def is_admin(self, group_id: str, user_id: str) -> bool:
        return is_admin(self.get_group(group_id), user_id)

    def is_banned(self, group_id: str, user_id: str) -> bool:
        return is_banned(self.get_group(group_id), user_id)

    def _mutate(self, group_id: str, mutate: Callable[[Group], T]) -> T:
        _, result = self._groups.update_group(group_id, mutate)
        return result

    # --- settings ----------------------------------------------------------

    def update_settings(
        self,
        group_id: str,
        requester: str,
        *,
        notifications_enabled: bool | None = None,
        mentions_enabled: bool | None = None,
    ) -> Group:
        def mutate(group: Group) -> Group:
            _require_settings_access(group, requester)
            if notifications_enabled is not None:
                group.notifications_enabled = notifications_enabled
            if mentions_enabled is not None:
                group.mentions_enabled = mentions_enabled
            return group

        group = self._mutate(group_id, mutate)
        logger.info("Group %s settings updated by %s", group_id, requester)
        return group

    def allow_command(self, group_id: str, requester: str, command: str) -> bool:
        name = command.lower()

        def mutate(group: Group) -> bool:
            _require_settings_access(group, requester)
            if name in group.allowed_commands:
                return False
            group.allowed_commands.add(name)
            return True

        return self._mutate(group_id, mutate)

    def disallow_command(self, group_id: str, requester: str, command: str) -> bool:
        name = command.lower()
        if name in ALWAYS_ALLOWED_COMMANDS:
            raise ValidationError(f"!{name} cannot be disabled.")

        def mutate(group: Group) -> bool:
            _require_settings_access(group, requester)
            if name not in group.allowed_commands:
                return False
            group.allowed_commands.discard(name)
            return True

        return self._mutate(group_id, mutate)

    def set_admin_only(self, group_id: str, requester: str, enabled: bool) -> Group:
        def mutate(group: Group) -> Group:
            _require_admin(group, requester, "change who can edit settings")
            group.only_admins_can_change = enabled
            return group

        return self._mutate(group_id, mutate)

    def update_mention_settings(
        self,
        group_id: str,
        requester: str,
        *,
        everyone: bool | None = None,
        roles: bool | None = None,
        users: bool | None = None,
    ) -> Group:
        def mutate(group: Group) -> Group:
            _require_admin(group, requester, "change mention settings")
            if everyone is not None:
                group.allow_mention_everyone = everyone
            if roles is not None:
                group.allow_mention_roles = roles
            if users is not None:
                group.allow_mention_users = users
            return group

        return self._mutate(group_id, mutate)

    # --- admins and bans ---------------------------------------------------

    def claim_admin(self, group_id: str, requester: str) -> bool:
        """Make the requester the first admin of a group that has none."""

        def mutate(group: Group) -> bool:
            if group.admin_users:
                return False
            if is_banned(group, requester):
                raise PermissionDeniedError("❌ Banned users cannot claim admin.")
            group.admin_users.add(requester)
            return True

        claimed = self._mutate(group_id, mutate)
        if claimed:
            logger.info("User %s claimed admin of group %s", requester, group_id)
        return claimed

    def add_admin(self, group_id: str, requester: str, target: str) -> bool:
        def mutate(group: Group) -> bool:
            _require_admin(group, requester, "add admins")
            if target in group.admin_users:
                return False
            group.admin_users.add(target)
            return True

        return self._mutate(group_id, mutate)

    def remove_admin(self, group_id: str, requester: str, target: str) -> bool:
        def mutate(group: Group) -> bool:
            _require_admin(group, requester, "remove admins")
            if target not in group.admin_users:
                return False
            group.admin_users.discard(target)
            return True

        return self._mutate(group_id, mutate)

    def ban_user(self, group_id: str, requester: str, target: str) -> bool:
        if target == requester:
            raise ValidationError("You cannot ban yourself.")

        def mutate(group: Group) -> bool:
            _require_admin(group, requester, "ban users")
            if target in group.banned_users:
                return False
            group.banned_users.add(target)
            group.admin_users.discard(target)
            return True

        banned = self._mutate(group_id, mutate)
        if banned:
            logger.info("User %s banned in group %s by %s", target, group_id, requester)
        return banned

    def unban_user(self, group_id: str, requester: str, target: str) -> bool:
        def mutate(group: Group) -> bool:
            _require_admin(group, requester, "unban users")
            if target not in group.banned_users:
                return False
            group.banned_users.discard(target)
            return True

        return self._mutate(group_id, mutate)
