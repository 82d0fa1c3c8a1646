"""Chat-based management of channel commands: !command add/edit/remove/show.

Syntax:
    !command add <name> [options] <response>
    !command edit <name> [options] [new response]
    !command remove <name>
    !command show <name>

Options:
    -gcd=N              Global cooldown in seconds
    -ucd=N              Per-user cooldown in seconds
    -level=X            Access level: everyone/sub/regular/vip/mod/lead_mod/broadcaster
    -alias=a,b,c        Comma-separated aliases ("none" clears them)
    -type=X             Response type: say/mention/reply
    -regex=PATTERN      Trigger on any message matching PATTERN instead of a name
    -enable=on/off      Toggle enabled state
    -limituser=NAME     Only NAME may use the command ("clear" lifts it)

Examples:
    !command add lurk {user} is now lurking!
    !command add hug -ucd=30 -alias=cuddle {user} hugs {touser}
    !command edit hug -level=sub
    !command remove hug
"""

import logging
import re
from typing import TYPE_CHECKING, Any

from twitchio.ext import commands

from shared.models.chat_command import AccessLevel, ChatCommand, ResponseType

if TYPE_CHECKING:
    from twitchbot.core.bot import Bot

LOGGER = logging.getLogger("CommandManagerComponent")

# Pattern to match option flags like -gcd=30, -alias=a,b
_OPT_PATTERN = re.compile(r"-(\w+)=(\S+)")

_TRUTHY = {"on", "true", "yes", "1"}
_FALSY = {"off", "false", "no", "0"}
_LOGIN_PATTERN = re.compile(r"\w{1,25}")

_LEVEL_NAMES = ", ".join(level.name.lower() for level in AccessLevel)
_TYPE_NAMES = ", ".join(t.value for t in ResponseType)


def _parse_args(raw: str) -> tuple[dict[str, str], str]:
    """Parse option flags and remaining text from raw arguments.

    Returns (options_dict, remaining_text).
    """
    options: dict[str, str] = {}
    remaining_parts: list[str] = []

    for token in raw.split():
        match = _OPT_PATTERN.fullmatch(token)
        if match:
            options[match.group(1).lower()] = match.group(2)
        else:
            remaining_parts.append(token)

    return options, " ".join(remaining_parts)


def _parse_bool(value: str) -> bool | None:
    """Parse a boolean-ish string. Returns None if unrecognised."""
    if value.lower() in _TRUTHY:
        return True
    if value.lower() in _FALSY:
        return False
    return None


def _strip_prefix(name: str) -> str:
    return name.lstrip("!").lower()


def _build_fields(options: dict[str, str]) -> tuple[dict[str, Any], list[str]]:
    """Turn option flags into ``ChatCommandRepository.upsert`` keyword args.

    Returns (fields, errors); errors are user-facing messages.
    """
    fields: dict[str, Any] = {}
    errors: list[str] = []

    for key, value in options.items():
        if key in ("gcd", "ucd"):
            if not value.isdigit():
                errors.append(f"-{key} requires a non-negative number")
                continue
            fields["global_cooldown" if key == "gcd" else "user_cooldown"] = int(value)
        elif key == "level":
            level = AccessLevel.parse(value)
            if level is None:
                errors.append(f"-level must be one of: {_LEVEL_NAMES}")
                continue
            fields["access_level"] = level
        elif key == "type":
            try:
                fields["response_type"] = ResponseType(value.lower())
            except ValueError:
                errors.append(f"-type must be one of: {_TYPE_NAMES}")
        elif key == "alias":
            if value.lower() == "none":
                fields["aliases"] = []
            else:
                fields["aliases"] = [_strip_prefix(a) for a in value.split(",") if a.strip("! ")]
        elif key == "regex":
            try:
                re.compile(value, re.IGNORECASE)
            except re.error as e:
                errors.append(f"invalid regex: {e}")
                continue
            fields["regex"] = value
        elif key == "enable":
            enabled = _parse_bool(value)
            if enabled is None:
                errors.append("-enable must be on or off")
                continue
            fields["enabled"] = enabled
        elif key == "limituser":
            login = value.lstrip("@").lower()
            if login == "clear":
                fields["limit_to_user"] = ""
            elif _LOGIN_PATTERN.fullmatch(login):
                fields["limit_to_user"] = login
            else:
                errors.append("-limituser requires a username or 'clear'")
        else:
            errors.append(f"Unknown flag: -{key}")

    return fields, errors


def describe_command(cmd: ChatCommand) -> str:
    """One-line summary used by !command show."""
    parts = [
        f"!{cmd.name}",
        f"[{'enabled' if cmd.enabled else 'disabled'}]",
        f"type:{cmd.response_type.value}",
        f"level:{cmd.access_level.name.lower()}",
        f"cd:{cmd.global_cooldown}s",
        f"usercd:{cmd.user_cooldown}s",
    ]
    if cmd.aliases:
        parts.append(f"aliases:{','.join(cmd.aliases)}")
    if cmd.regex:
        parts.append(f"regex:{cmd.regex}")
    if cmd.limit_to_user:
        parts.append(f"user:{cmd.limit_to_user}")
    parts.append(f"| {cmd.response}")
    return " ".join(parts)


class CommandManagerComponent(commands.Component):
    def __init__(self, bot: commands.Bot) -> None:
        self.bot: Bot = bot  # type: ignore[assignment]
        LOGGER.info("CommandManager component initialized")

    def _is_builtin(self, name: str) -> bool:
        return self.bot.get_command(name) is not None

    def _shadowed_names(self, name: str, fields: dict[str, Any]) -> list[str]:
        names = [name, *fields.get("aliases", [])]
        return [n for n in names if self._is_builtin(n)]

    @commands.command(name="command")
    async def manage_commands(self, ctx: commands.Context["Bot"], *, args: str | None = None) -> None:
        """Manage this channel's chat commands. Moderator+ only."""
        if self.bot.access.level_for(ctx.chatter) < AccessLevel.MODERATOR:
            return

        user = ctx.chatter.name
        parts = (args or "").strip().split(maxsplit=1)
        sub = parts[0].lower() if parts else ""
        rest = parts[1] if len(parts) > 1 else ""

        if sub == "add":
            reply = await self._add(ctx, rest)
        elif sub == "edit":
            reply = await self._edit(ctx, rest)
        elif sub in ("remove", "delete"):
            reply = await self._remove(ctx, rest)
        elif sub == "show":
            reply = await self._show(ctx, rest)
        else:
            reply = "Usage: !command add|edit|remove|show <name> [options] [response]"

        await ctx.send(f"@{user} {reply}")

    async def _add(self, ctx: commands.Context["Bot"], raw: str) -> str:
        parts = raw.strip().split(maxsplit=1)
        if not parts:
            return "Usage: !command add <name> [options] <response>"
        name = _strip_prefix(parts[0])
        options, response = _parse_args(parts[1] if len(parts) > 1 else "")
        if not name or not response:
            return "Usage: !command add <name> [options] <response>"

        fields, errors = _build_fields(options)
        if errors:
            return f"Errors: {'; '.join(errors)}"
        shadowed = self._shadowed_names(name, fields)
        if shadowed:
            return f'"{shadowed[0]}" is a built-in command and cannot be added.'

        channel_id = str(ctx.channel.id)
        if await self.bot.chat_commands.get(channel_id, name):
            return f"Command !{name} already exists."

        await self.bot.chat_commands.upsert(channel_id, name, response=response, **fields)
        await self.bot.command_cache.reload()
        LOGGER.info(f"Command added: !{name} by {ctx.chatter.name}")
        return f"Command !{name} has been added."

    async def _edit(self, ctx: commands.Context["Bot"], raw: str) -> str:
        parts = raw.strip().split(maxsplit=1)
        if not parts:
            return "Usage: !command edit <name> [options] [new response]"
        name = _strip_prefix(parts[0])
        options, response = _parse_args(parts[1] if len(parts) > 1 else "")

        fields, errors = _build_fields(options)
        if errors:
            return f"Errors: {'; '.join(errors)}"
        if not fields and not response:
            return "No valid options provided."
        shadowed = self._shadowed_names(name, fields)
        if shadowed:
            return f'"{shadowed[0]}" is a built-in command and cannot be used.'

        channel_id = str(ctx.channel.id)
        if not await self.bot.chat_commands.get(channel_id, name):
            return f"Command !{name} does not exist."

        await self.bot.chat_commands.upsert(channel_id, name, response=response or None, **fields)
        await self.bot.command_cache.reload()
        LOGGER.info(f"Command edited: !{name} by {ctx.chatter.name}")
        return f"Command !{name} has been updated."

    async def _remove(self, ctx: commands.Context["Bot"], raw: str) -> str:
        name = _strip_prefix(raw.strip().split(maxsplit=1)[0]) if raw.strip() else ""
        if not name:
            return "Usage: !command remove <name>"

        if not await self.bot.chat_commands.delete(str(ctx.channel.id), name):
            return f"Command !{name} does not exist."

        await self.bot.command_cache.reload()
        LOGGER.info(f"Command removed: !{name} by {ctx.chatter.name}")
        return f"Command !{name} has been removed."

    async def _show(self, ctx: commands.Context["Bot"], raw: str) -> str:
        name = _strip_prefix(raw.strip().split(maxsplit=1)[0]) if raw.strip() else ""
        if not name:
            return "Usage: !command show <name>"

        cmd = await self.bot.chat_commands.get(str(ctx.channel.id), name)
        if cmd is None:
            return f"Command !{name} does not exist."
        return describe_command(cmd)


async def setup(bot: commands.Bot) -> None:
    await bot.add_component(CommandManagerComponent(bot))
    LOGGER.info("CommandManager component loaded")


async def teardown(bot: commands.Bot) -> None:
    LOGGER.info("CommandManager component unloaded")
