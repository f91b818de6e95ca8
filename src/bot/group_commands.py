"""
Taskmate — Group administration command.

`!group` only works inside group chats. Every change goes through the
PermissionGate, which decides who may do what.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from src.bot.commands import SubHandler, parse_switch
from src.core.errors import ValidationError

if TYPE_CHECKING:
    from src.core.router import CommandContext
    from src.data.models import Group

logger = logging.getLogger(__name__)

GROUP_USAGE = (
    "group <claim|settings|admin|ban|unban|mentions> ...\n"
    "  group claim\n"
    "  group settings list\n"
    "  group settings notifications|mentions|adminonly on|off\n"
    "  group settings commands allow|deny <command>\n"
    "  group admin add|remove @user\n"
    "  group ban|unban @user\n"
    "  group mentions everyone|users|roles on|off"
)


def _flag(value: bool) -> str:
    return "✅" if value else "❌"


def _mention_target(ctx: CommandContext) -> str:
    users = ctx.mentioned_users()
    if not users:
        raise ValidationError("Please mention a user.")
    return users[0]


def render_group_settings(group: Group, prefix: str) -> str:
    commands = ", ".join(f"{prefix}{c}" for c in sorted(group.allowed_commands)) or "none"
    return "\n".join([
        "⚙️ Group Settings:",
        f"- Notifications: {_flag(group.notifications_enabled)}",
        f"- Mentions: {_flag(group.mentions_enabled)}",
        f"- Only admins can change settings: {_flag(group.only_admins_can_change)}",
        f"- Mention everyone: {_flag(group.allow_mention_everyone)}",
        f"- Mention users: {_flag(group.allow_mention_users)}",
        f"- Mention roles: {_flag(group.allow_mention_roles)}",
        f"- Admins: {len(group.admin_users)}",
        f"- Banned users: {len(group.banned_users)}",
        f"- Allowed commands: {commands}",
    ])


# ---------------------------------------------------------------------------
# Subcommands
# ---------------------------------------------------------------------------


async def _claim(ctx: CommandContext) -> str:
    if ctx.services.permissions.claim_admin(ctx.chat_id, ctx.sender_id):
        return "👑 You are now an admin of this group."
    return "This group already has admins. Ask one of them to add you."


async def _settings(ctx: CommandContext) -> str:
    gate = ctx.services.permissions
    args = ctx.args[1:]
    usage = f"{ctx.prefix}group settings <list|notifications|mentions|adminonly|commands> ..."

    if not args or args[0].lower() == "list":
        return render_group_settings(gate.get_group(ctx.chat_id), ctx.prefix)

    key = args[0].lower()
    if key == "commands":
        if len(args) < 3 or args[1].lower() not in ("allow", "deny"):
            raise ValidationError(f"Usage: {ctx.prefix}group settings commands allow|deny <command>")
        name = args[2].lower().removeprefix(ctx.prefix.lower())
        if name not in ctx.commands:
            raise ValidationError(f"Unknown command: {name}")
        if args[1].lower() == "allow":
            changed = gate.allow_command(ctx.chat_id, ctx.sender_id, name)
            return f"✅ {ctx.prefix}{name} is now allowed." if changed else f"{ctx.prefix}{name} is already allowed."
        changed = gate.disallow_command(ctx.chat_id, ctx.sender_id, name)
        return f"🚫 {ctx.prefix}{name} is now disabled." if changed else f"{ctx.prefix}{name} is already disabled."

    if len(args) < 2:
        raise ValidationError(f"Usage: {usage}")
    enabled = parse_switch(args[1], usage)
    state = "enabled" if enabled else "disabled"

    if key == "notifications":
        gate.update_settings(ctx.chat_id, ctx.sender_id, notifications_enabled=enabled)
        return f"✅ Group notifications {state}."
    if key == "mentions":
        gate.update_settings(ctx.chat_id, ctx.sender_id, mentions_enabled=enabled)
        return f"✅ Mentions {state}."
    if key == "adminonly":
        gate.set_admin_only(ctx.chat_id, ctx.sender_id, enabled)
        return f"✅ Admin-only settings {state}."

    raise ValidationError(f"Unknown setting. Usage: {usage}")


async def _admin(ctx: CommandContext) -> str:
    if len(ctx.args) < 2 or ctx.args[1].lower() not in ("add", "remove"):
        raise ValidationError(f"Usage: {ctx.prefix}group admin add|remove @user")
    gate = ctx.services.permissions
    target = _mention_target(ctx)

    if ctx.args[1].lower() == "add":
        if gate.add_admin(ctx.chat_id, ctx.sender_id, target):
            return "👑 Admin added."
        return "That user is already an admin."
    if gate.remove_admin(ctx.chat_id, ctx.sender_id, target):
        return "Admin removed."
    return "That user is not an admin."


async def _ban(ctx: CommandContext) -> str:
    target = _mention_target(ctx)
    if ctx.services.permissions.ban_user(ctx.chat_id, ctx.sender_id, target):
        return "🚫 User banned from using commands in this group."
    return "That user is already banned."


async def _unban(ctx: CommandContext) -> str:
    target = _mention_target(ctx)
    if ctx.services.permissions.unban_user(ctx.chat_id, ctx.sender_id, target):
        return "✅ User unbanned."
    return "That user is not banned."


async def _mentions(ctx: CommandContext) -> str:
    usage = f"{ctx.prefix}group mentions everyone|users|roles on|off"
    if len(ctx.args) < 3:
        raise ValidationError(f"Usage: {usage}")
    kind = ctx.args[1].lower()
    if kind not in ("everyone", "users", "roles"):
        raise ValidationError(f"Usage: {usage}")
    enabled = parse_switch(ctx.args[2], usage)

    ctx.services.permissions.update_mention_settings(
        ctx.chat_id, ctx.sender_id, **{kind: enabled},
    )
    return f"✅ Mentioning {kind} {'enabled' if enabled else 'disabled'}."


_GROUP_ACTIONS: dict[str, SubHandler] = {
    "claim": _claim,
    "settings": _settings,
    "admin": _admin,
    "ban": _ban,
    "unban": _unban,
    "mentions": _mentions,
}


async def cmd_group(ctx: CommandContext) -> str:
    if not ctx.is_group:
        raise ValidationError("❌ This command only works in group chats.")
    if not ctx.args:
        return f"Usage: {ctx.prefix}{GROUP_USAGE}"
    action = _GROUP_ACTIONS.get(ctx.args[0].lower())
    if action is None:
        raise ValidationError(f"Unknown subcommand. Use: {', '.join(_GROUP_ACTIONS)}.")
    logger.debug("!group %s from %s in %s", ctx.args[0].lower(), ctx.sender_id, ctx.chat_id)
    return await action(ctx)
