from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from twitchio.ext import commands

from conftest import make_chatter, make_command, make_state
from twitchbot.core.access import AccessControl
from twitchbot.core.bot import Bot

BUILTINS = {"bot", "reloadcommands", "command"}


@pytest.fixture
def bot(pipeline):
    """A Bot with the pipeline wired in but no Twitch client behind it."""
    bot = Bot.__new__(Bot)
    bot.settings = SimpleNamespace(command_prefix="!")
    bot._bot_id = "999"
    bot._subscribed_channels = {"1"}
    bot._broadcasters = {}
    bot.command_cache = pipeline.cache
    bot.channel_states = pipeline.table
    bot.access = AccessControl()
    bot.executor = pipeline.executor
    bot.get_command = lambda name: SimpleNamespace(name=name) if name in BUILTINS else None
    return bot


def message(text, *, channel_id="1", channel="foo", **chatter):
    return SimpleNamespace(
        text=text,
        broadcaster=SimpleNamespace(id=channel_id, name=channel),
        chatter=make_chatter(**chatter),
    )


@pytest.fixture
def twitchio_dispatch():
    with patch.object(commands.AutoBot, "event_message", new_callable=AsyncMock) as dispatch:
        yield dispatch


async def test_custom_command_goes_through_executor(bot, pipeline, twitchio_dispatch):
    pipeline.source.commands = [make_command("dice", "{user} rolled ${random.pick '4'}")]
    await pipeline.load()

    await bot.event_message(message("!dice"))

    assert pipeline.sender.texts == ["alice rolled 4"]
    twitchio_dispatch.assert_not_called()
    assert "foo" in bot._broadcasters


async def test_unsubscribed_channel_is_ignored(bot, pipeline, twitchio_dispatch):
    pipeline.source.commands = [make_command("dice", "4")]
    await pipeline.load()

    await bot.event_message(message("!dice", channel_id="2", channel="bar"))
    assert pipeline.sender.sent == []


async def test_own_messages_are_ignored(bot, pipeline, twitchio_dispatch):
    pipeline.source.commands = [make_command("echo", "echo", regex=".")]
    await pipeline.load()

    await bot.event_message(message("anything", user_id="999", name="thebot"))
    assert pipeline.sender.sent == []


async def test_builtin_is_handed_to_twitchio_lowercased(bot, pipeline, twitchio_dispatch):
    await pipeline.load()
    payload = message("!ReloadCommands now", broadcaster=True)

    await bot.event_message(payload)

    twitchio_dispatch.assert_awaited_once()
    assert payload.text == "!reloadcommands now"


async def test_builtin_blocked_when_disabled_in_channel(bot, pipeline, twitchio_dispatch):
    pipeline.states.states["1"] = make_state("1", "foo", disabled=["command"])
    await pipeline.load()

    await bot.event_message(message("!command show dice", moderator=True))
    twitchio_dispatch.assert_not_called()


async def test_muted_channel_only_accepts_unmute(bot, pipeline, twitchio_dispatch):
    pipeline.source.commands = [make_command("dice", "4")]
    pipeline.states.states["1"] = make_state("1", "foo", muted=True)
    await pipeline.load()

    await bot.event_message(message("!dice"))
    await bot.event_message(message("!bot mute", broadcaster=True))
    assert pipeline.sender.sent == []
    twitchio_dispatch.assert_not_called()

    await bot.event_message(message("!Bot Unmute", broadcaster=True))
    twitchio_dispatch.assert_awaited_once()


async def test_send_chat_uses_remembered_broadcaster(bot):
    broadcaster = SimpleNamespace(id="1", name="foo", send_message=AsyncMock())
    bot._broadcasters["foo"] = broadcaster

    await bot.send_chat("#Foo", "hello", reply_to=SimpleNamespace(id="abc"))

    broadcaster.send_message.assert_awaited_once_with(
        message="hello", sender="999", token_for="999", reply_to_message_id="abc"
    )


async def test_send_chat_to_unknown_channel_raises(bot):
    with pytest.raises(LookupError):
        await bot.send_chat("nowhere", "hello")


@pytest.fixture
def reload_bot():
    bot = Bot.__new__(Bot)
    bot.command_cache = MagicMock(reload=AsyncMock())
    bot.channel_states = MagicMock(reload_for_channel=AsyncMock())
    bot.access = MagicMock(load=AsyncMock())
    bot.channels = MagicMock()
    bot.regulars = MagicMock()
    return bot


async def test_notify_chat_commands_reloads_command_cache(reload_bot):
    await reload_bot._handle_config_change(None, 1, "config_change", '{"table": "chat_commands"}')
    reload_bot.command_cache.reload.assert_awaited_once()
    reload_bot.channel_states.reload_for_channel.assert_not_called()


async def test_notify_overrides_reload_one_channel(reload_bot):
    await reload_bot.apply_config_change("command_overrides", "42")
    reload_bot.channel_states.reload_for_channel.assert_awaited_once_with("42")
    reload_bot.command_cache.reload.assert_not_called()


async def test_notify_channels_also_rebuilds_command_cache(reload_bot):
    await reload_bot.apply_config_change("channels", "42")
    reload_bot.channel_states.reload_for_channel.assert_awaited_once_with("42")
    reload_bot.channels.invalidate_cache.assert_called_once()
    reload_bot.command_cache.reload.assert_awaited_once()


async def test_notify_regulars_reloads_access(reload_bot):
    await reload_bot.apply_config_change("regulars", None)
    reload_bot.regulars.invalidate_cache.assert_called_once()
    reload_bot.access.load.assert_awaited_once()


async def test_bad_notify_payload_is_logged_not_raised(reload_bot, caplog):
    await reload_bot._handle_config_change(None, 1, "config_change", "not json")
    assert "Error handling config_change" in caplog.text


async def test_failed_reload_from_notify_keeps_running(reload_bot):
    reload_bot.command_cache.reload.side_effect = ConnectionError("db down")
    await reload_bot._handle_config_change(None, 1, "config_change", '{"table": "chat_commands"}')
