"""Twitch Bot class: lifecycle, chat routing into the command pipeline, reloads."""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Coroutine
from typing import Any

import asyncpg
import twitchio
from twitchio import eventsub
from twitchio.ext import commands

from shared.repositories.channel import ChannelRepository
from shared.repositories.chat_command import ChatCommandRepository
from shared.repositories.regular import RegularRepository

from .access import AccessControl
from .channel_state import ChannelStateTable
from .command_cache import CommandCache, channel_key
from .config import COMPONENTS_DIR, TwitchBotSettings
from .cooldowns import CooldownLedger
from .executor import CommandExecutor
from .guards import allow_builtin
from .pg_listener import pg_listen
from .subscriptions import get_channel_subscriptions

LOGGER: logging.Logger = logging.getLogger("Bot")


class Bot(commands.AutoBot):
    token_database: asyncpg.Pool

    def __init__(
        self,
        *,
        settings: TwitchBotSettings,
        token_database: asyncpg.Pool,
        subs: list[eventsub.SubscriptionPayload] | None = None,
    ) -> None:
        self.settings = settings
        self.token_database = token_database
        self._bot_id = settings.bot_id
        self._subscribed_channels: set[str] = set()
        self._subscription_ids: dict[str, list[str]] = {}
        # channel name -> broadcaster seen in chat, used to send responses
        self._broadcasters: dict[str, twitchio.PartialUser] = {}
        self._tasks: set[asyncio.Task] = set()

        self.channels = ChannelRepository(token_database)
        self.chat_commands = ChatCommandRepository(token_database)
        self.regulars = RegularRepository(token_database)

        self.command_cache = CommandCache(self.chat_commands)
        self.channel_states = ChannelStateTable(self.channels)
        self.cooldowns = CooldownLedger(
            retention=settings.cooldown_retention_seconds,
            maxsize=settings.cooldown_max_entries,
        )
        self.access = AccessControl(self.regulars)
        self.executor = CommandExecutor(
            self.command_cache,
            self.channel_states,
            self.cooldowns,
            self.send_chat,
            prefix=settings.command_prefix,
            use_counter=self.chat_commands.increment_use_count,
            cooldown_bypass=settings.cooldown_bypass,
        )

        init_kwargs: dict = dict(
            client_id=settings.client_id,
            client_secret=settings.client_secret,
            bot_id=settings.bot_id,
            owner_id=settings.owner_id,
            prefix=settings.command_prefix,
            subscriptions=subs or [],
            force_subscribe=True,
        )
        if settings.conduit_id:
            init_kwargs["conduit_id"] = settings.conduit_id

        super().__init__(**init_kwargs)

    # ------------------------------------------------------------------
    # Setup
    # ------------------------------------------------------------------

    async def setup_hook(self) -> None:
        if COMPONENTS_DIR.exists():
            for file in sorted(COMPONENTS_DIR.glob("*.py")):
                if file.stem == "__init__":
                    continue
                module_name = f"twitchbot.components.{file.stem}"
                try:
                    await self.load_module(module_name)
                except Exception as e:
                    LOGGER.error(f"Failed to load component {module_name}: {e}")

        try:
            await self.reload_all()
        except Exception as e:
            LOGGER.exception(f"Initial command load failed, retrying on next refresh: {e}")

        self._spawn(self._subscribe_initial_channels())
        self._spawn(pg_listen(self.token_database, "config_change", self._handle_config_change))
        self._spawn(self._periodic_cache_refresh())

    def _spawn(self, coro: Coroutine[Any, Any, None]) -> None:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def close(self, **options: Any) -> None:
        for task in list(self._tasks):
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        await super().close(**options)

    async def reload_all(self) -> None:
        """Reload commands, channel state and regulars from the database."""
        self.channels.invalidate_cache()
        self.regulars.invalidate_cache()
        await self.command_cache.reload()
        await self.channel_states.load()
        await self.access.load()

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------

    async def event_ready(self) -> None:
        LOGGER.info("Successfully logged in as: %s", self.bot_id)

    async def event_eventsub_ready(self) -> None:
        LOGGER.info("EventSub is ready to receive notifications")

    async def event_eventsub_error(self, error: Exception) -> None:
        LOGGER.error(f"EventSub error: {error}")

    async def event_oauth_authorized(
        self, payload: twitchio.authentication.UserTokenPayload
    ) -> None:
        await self.add_token(payload.access_token, payload.refresh_token)

        if not payload.user_id:
            return

        if payload.user_id == self.bot_id:
            LOGGER.info("Bot account authorized")
            return

        users = await self.fetch_users(ids=[payload.user_id])
        if users and users[0].name:
            user = users[0]
            await self.add_channel_to_db(user.id, user.name)
            LOGGER.info(f"Channel authorized and added: {user.name} (ID: {user.id})")

        await self.subscribe_channel_events(payload.user_id)

    async def event_message(self, payload: twitchio.ChatMessage) -> None:
        if not payload.broadcaster:
            LOGGER.debug(f"[{payload.chatter.name}]: {payload.text}")
            await super().event_message(payload)
            return

        broadcaster = payload.broadcaster
        channel = broadcaster.name or ""
        LOGGER.debug(f"[{payload.chatter.name}#{channel}]: {payload.text}")

        if broadcaster.id not in self._subscribed_channels:
            LOGGER.debug(f"[BLOCK] Ignoring message from unsubscribed channel: {channel}")
            return
        if payload.chatter.id == self._bot_id:
            return

        self._broadcasters[channel_key(channel)] = broadcaster
        text = payload.text or ""

        if self.channel_states.is_muted(channel) and not self._is_unmute(text):
            return

        level = self.access.level_for(payload.chatter)

        builtin = self._builtin_name(text)
        if builtin is not None:
            if allow_builtin(self.channel_states, channel, builtin, level):
                # Lowercase the trigger so "!ReloadCommands" reaches the component
                prefix_len = len(self.settings.command_prefix)
                head, _, rest = text.strip()[prefix_len:].partition(" ")
                payload.text = f"{self.settings.command_prefix}{head.lower()} {rest}".rstrip()
                await super().event_message(payload)
            return

        await self.executor.handle_message(
            text,
            user=payload.chatter.name or "",
            user_id=payload.chatter.id,
            channel=channel,
            access_level=level,
            display_name=payload.chatter.display_name,
            message=payload,
        )

    def _builtin_name(self, text: str) -> str | None:
        """Name of the registered component command a message invokes, if any."""
        prefix = self.settings.command_prefix
        stripped = text.strip()
        if not stripped.startswith(prefix):
            return None
        tokens = stripped[len(prefix) :].split(maxsplit=1)
        if not tokens:
            return None
        command = self.get_command(tokens[0].lower())
        return command.name if command is not None else None

    def _is_unmute(self, text: str) -> bool:
        tokens = text.strip().lower().split()
        return tokens[:2] == [f"{self.settings.command_prefix.lower()}bot", "unmute"]

    # ------------------------------------------------------------------
    # Chat output
    # ------------------------------------------------------------------

    async def send_chat(self, channel: str, text: str, *, reply_to: Any = None) -> None:
        """Post ``text`` to ``channel`` as the bot, optionally as a reply."""
        broadcaster = self._broadcasters.get(channel_key(channel))
        if broadcaster is None:
            raise LookupError(f"No broadcaster known for channel '{channel}'")

        kwargs: dict[str, Any] = {}
        if reply_to is not None and getattr(reply_to, "id", None):
            kwargs["reply_to_message_id"] = str(reply_to.id)
        await broadcaster.send_message(
            message=text,
            sender=self.bot_id,
            token_for=self.bot_id,
            **kwargs,
        )

    async def set_channel_muted(self, channel: str, channel_id: str, muted: bool) -> bool:
        """Mute or unmute a channel in memory, then persist it."""
        self.channel_states.set_muted(channel, muted, channel_id=channel_id)
        persisted = await self.channels.set_muted(channel_id, muted)
        LOGGER.info(f"Channel {channel} {'muted' if muted else 'unmuted'} (persisted: {persisted})")
        return persisted

    # ------------------------------------------------------------------
    # Token management
    # ------------------------------------------------------------------

    async def add_token(
        self, token: str, refresh: str
    ) -> twitchio.authentication.ValidateTokenPayload:
        resp: twitchio.authentication.ValidateTokenPayload = await super().add_token(token, refresh)

        if resp.user_id:
            for attempt in range(1, 4):
                try:
                    await self.channels.upsert_token(resp.user_id, token, refresh)
                    break
                except Exception as e:
                    if attempt < 3:
                        LOGGER.warning(f"save_token attempt {attempt}/3 failed: {e}")
                        await asyncio.sleep(2)
                    else:
                        LOGGER.error(f"save_token failed after 3 attempts: {e}")

        LOGGER.info(f"Added token to database: {resp.login or 'unknown'} ({resp.user_id})")
        return resp

    async def load_tokens(self, path: str | None = None) -> None:
        tokens = await self.channels.list_tokens()

        for tok in tokens:
            try:
                user_info = await self.add_token(tok.token, tok.refresh)
            except twitchio.exceptions.InvalidTokenException as e:
                LOGGER.warning(
                    f"Invalid token for user_id {tok.user_id}, skipping. "
                    f"User needs to re-authenticate: {e}"
                )
                continue

            try:
                await self.add_channel_to_db(tok.user_id, user_info.login or "unknown")
            except Exception as e:
                LOGGER.error(f"Failed to add channel for user_id {tok.user_id}: {e}")

    # ------------------------------------------------------------------
    # Channel management
    # ------------------------------------------------------------------

    async def add_channel_to_db(self, channel_id: str, channel_name: str) -> None:
        if channel_id == self._bot_id:
            LOGGER.debug(f"Skipping bot's own channel: {channel_name}")
            return

        await self.channels.upsert_channel(channel_id, channel_name.lower(), enabled=True)
        LOGGER.info(f"Added channel {channel_name} (ID: {channel_id}) to database")

    async def subscribe_channel_events(self, broadcaster_user_id: str) -> None:
        if broadcaster_user_id in self._subscribed_channels:
            LOGGER.debug(f"Already subscribed: {broadcaster_user_id}")
            return

        try:
            subs = get_channel_subscriptions(broadcaster_user_id, self._bot_id)
            resp = await self.multi_subscribe(subs)
            if resp.errors:
                non_conflict = [
                    e for e in resp.errors if "409" not in str(e) and "already exists" not in str(e)
                ]
                if non_conflict:
                    LOGGER.warning(f"Subscription errors: {non_conflict}")

            subscription_ids = [
                item.response["id"]
                for item in resp.success
                if isinstance(item.response.get("id"), str)
            ]
            if subscription_ids:
                self._subscription_ids[broadcaster_user_id] = subscription_ids

            self._subscribed_channels.add(broadcaster_user_id)
            LOGGER.info(f"Subscribed to chat for channel: {broadcaster_user_id}")

        except Exception as e:
            LOGGER.exception(f"Failed to subscribe channel {broadcaster_user_id}: {e}")

    async def _subscribe_initial_channels(self) -> None:
        """Subscribe to chat for every enabled channel on startup."""
        try:
            await asyncio.sleep(2)
            enabled_channels = await self.channels.list_enabled_channels()
            LOGGER.info(f"Subscribing to {len(enabled_channels)} enabled channels...")
            for ch in enabled_channels:
                if ch.channel_id == self._bot_id:
                    continue
                await self.subscribe_channel_events(ch.channel_id)
            LOGGER.info("Initial channel subscription complete")
        except asyncio.CancelledError:
            raise
        except Exception as e:
            LOGGER.exception(f"Error subscribing to initial channels: {e}")

    # ------------------------------------------------------------------
    # PG NOTIFY handlers
    # ------------------------------------------------------------------

    async def _handle_config_change(self, connection, pid, channel, payload) -> None:
        try:
            data = json.loads(payload)
            table = data.get("table", "")
            channel_id = data.get("channel_id")
            LOGGER.info(f"[NOTIFY] Config change on {table} for {channel_id or 'global'}")
            await self.apply_config_change(table, channel_id)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            LOGGER.warning(f"[NOTIFY] Error handling config_change: {type(e).__name__}: {e}")

    async def apply_config_change(self, table: str, channel_id: str | None) -> None:
        """Refresh only what a change to ``table`` can affect."""
        if table == "chat_commands":
            await self.command_cache.reload()
        elif table in ("channels", "command_overrides"):
            if channel_id:
                await self.channel_states.reload_for_channel(channel_id)
            if table == "channels":
                # Commands are keyed by channel name, which a rename changes
                self.channels.invalidate_cache()
                await self.command_cache.reload()
        elif table == "regulars":
            self.regulars.invalidate_cache()
            await self.access.load()
        else:
            LOGGER.debug(f"[NOTIFY] Ignoring change on unknown table '{table}'")

    async def _periodic_cache_refresh(self) -> None:
        """Safety net: reload everything in case a NOTIFY was missed."""
        interval = self.settings.cache_refresh_interval
        while True:
            await asyncio.sleep(interval)
            try:
                await self.reload_all()
                LOGGER.debug("Periodic cache refresh complete")
            except asyncio.CancelledError:
                raise
            except Exception as e:
                LOGGER.warning(f"Periodic cache refresh error: {type(e).__name__}: {e}")
