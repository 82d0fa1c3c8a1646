"""Chat command pipeline: resolve, authorize, cooldown, render, dispatch.

Every way a message can fail to produce a reply (unknown command, disabled
in the channel, insufficient access, cooldown) is a silent outcome rather
than an exception, so nothing is ever posted to chat about it.
"""

from __future__ import annotations

import asyncio
import logging
import random
import re
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from shared.models.chat_command import AccessLevel, ChatCommand, ResponseType

from .access import meets_access_level
from .channel_state import ChannelStateTable
from .command_cache import CommandCache, channel_key
from .cooldowns import CooldownLedger
from .template import TemplateContext, substitute_variables

LOGGER = logging.getLogger("CommandExecutor")

_COUNT_PATTERN = re.compile(r"\{count\}", re.IGNORECASE)

# send(channel, text, *, reply_to=None)
SendFunc = Callable[..., Awaitable[None]]
UseCounter = Callable[[int], Awaitable[int]]


class CommandOutcome(str, Enum):
    NO_MATCH = "no_match"
    DISABLED = "disabled"
    FORBIDDEN = "forbidden"
    COOLDOWN = "cooldown"
    SEND_FAILED = "send_failed"
    DISPATCHED = "dispatched"


@dataclass
class InvocationContext:
    """One incoming chat message, as far as the pipeline cares."""

    user: str
    channel: str
    user_id: str
    args: list[str] = field(default_factory=list)
    access_level: AccessLevel = AccessLevel.EVERYONE
    display_name: str | None = None
    message: Any = None  # originating SDK message, used for replies


class CommandExecutor:
    def __init__(
        self,
        commands: CommandCache,
        channel_states: ChannelStateTable,
        cooldowns: CooldownLedger,
        send: SendFunc,
        *,
        prefix: str = "!",
        use_counter: UseCounter | None = None,
        cooldown_bypass: AccessLevel | None = AccessLevel.MODERATOR,
        rng: Callable[[], float] = random.random,
    ) -> None:
        self._commands = commands
        self._channel_states = channel_states
        self._cooldowns = cooldowns
        self._send = send
        self._prefix = prefix
        self._use_counter = use_counter
        self._cooldown_bypass = cooldown_bypass
        self._rng = rng

    def match(self, text: str, channel: str) -> tuple[ChatCommand, list[str]] | None:
        """Find the command a message triggers, with its argument tokens.

        Prefix commands are tried first; otherwise the first regex command
        whose pattern matches the message wins.
        """
        stripped = text.strip()
        if stripped.startswith(self._prefix):
            tokens = stripped[len(self._prefix) :].split()
            if tokens:
                command = self._commands.resolve(tokens[0], channel)
                if command is not None:
                    return command, tokens[1:]

        for candidate in self._commands.regex_candidates(channel):
            if candidate.pattern.search(text):
                return candidate.command, text.split()
        return None

    async def handle_message(
        self,
        text: str,
        *,
        user: str,
        user_id: str,
        channel: str,
        access_level: AccessLevel = AccessLevel.EVERYONE,
        display_name: str | None = None,
        message: Any = None,
    ) -> CommandOutcome:
        found = self.match(text, channel)
        if found is None:
            return CommandOutcome.NO_MATCH
        command, args = found
        ctx = InvocationContext(
            user=user,
            channel=channel,
            user_id=user_id,
            args=args,
            access_level=access_level,
            display_name=display_name,
            message=message,
        )
        return await self.execute(command, ctx)

    def cooldown_key(self, command: ChatCommand, channel: str) -> str:
        return f"{channel_key(channel)}:{command.name.lower()}"

    async def execute(self, command: ChatCommand, ctx: InvocationContext) -> CommandOutcome:
        name = command.name

        if self._channel_states.is_disabled(ctx.channel, name):
            LOGGER.debug(f"[SKIP] !{name} disabled in {ctx.channel}")
            return CommandOutcome.DISABLED

        required = self._channel_states.access_override(ctx.channel, name)
        if required is None:
            required = command.access_level
        if not meets_access_level(ctx.access_level, required):
            LOGGER.debug(f"[SKIP] !{name}: {ctx.user} is {ctx.access_level.name}, needs {required.name}")
            return CommandOutcome.FORBIDDEN

        if command.limit_to_user and command.limit_to_user.lower() != ctx.user.lower():
            LOGGER.debug(f"[SKIP] !{name} is limited to {command.limit_to_user}, not {ctx.user}")
            return CommandOutcome.FORBIDDEN

        key = self.cooldown_key(command, ctx.channel)
        bypass = self._cooldown_bypass is not None and ctx.access_level >= self._cooldown_bypass
        if not bypass:
            status = self._cooldowns.is_on_cooldown(
                key, ctx.user_id, command.global_cooldown, command.user_cooldown
            )
            if status.on_cooldown:
                LOGGER.debug(f"[SKIP] !{name} on cooldown for {ctx.user} ({status.remaining_seconds}s)")
                return CommandOutcome.COOLDOWN

        text = await self.render(command, ctx)

        try:
            await self._dispatch(command, ctx, text)
        except asyncio.CancelledError:
            raise
        except Exception:
            LOGGER.exception(f"Failed to send !{name} response in {ctx.channel}")
            return CommandOutcome.SEND_FAILED

        self._cooldowns.record_usage(key, ctx.user_id, command.global_cooldown, command.user_cooldown)
        LOGGER.info(f"Command: !{name} by {ctx.user} in {ctx.channel}")
        return CommandOutcome.DISPATCHED

    async def render(self, command: ChatCommand, ctx: InvocationContext) -> str:
        use_count: int | str | None = None
        if self._use_counter and command.id is not None and _COUNT_PATTERN.search(command.response):
            try:
                use_count = await self._use_counter(command.id)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                LOGGER.warning(f"Use count update failed for !{command.name}: {type(e).__name__}: {e}")
                use_count = "(count error)"

        template_ctx = TemplateContext(
            user=ctx.user,
            channel=ctx.channel,
            args=ctx.args,
            user_id=ctx.user_id,
            display_name=ctx.display_name,
            user_level=ctx.access_level,
            use_count=use_count,
        )
        try:
            return substitute_variables(command.response, template_ctx, rng=self._rng)
        except Exception as e:
            LOGGER.warning(f"Variable substitution error in !{command.name}: {e}")
            return command.response

    async def _dispatch(self, command: ChatCommand, ctx: InvocationContext, text: str) -> None:
        if command.response_type is ResponseType.REPLY:
            await self._send(ctx.channel, text, reply_to=ctx.message)
        elif command.response_type is ResponseType.MENTION:
            await self._send(ctx.channel, f"@{ctx.user} {text}")
        else:
            await self._send(ctx.channel, text)
