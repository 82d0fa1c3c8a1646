from unittest.mock import patch

import pytest

from conftest import make_command, make_state
from shared.models.chat_command import AccessLevel, ResponseType
from twitchbot.core.executor import CommandExecutor, CommandOutcome


async def say(pipeline, text, *, user="alice", user_id="1", channel="#foo", level=AccessLevel.EVERYONE, **kw):
    return await pipeline.executor.handle_message(
        text, user=user, user_id=user_id, channel=channel, access_level=level, **kw
    )


async def test_lurk_user_cooldown_end_to_end(pipeline, clock):
    pipeline.source.commands = [make_command("lurk", "{user} is lurking", user_cooldown=30)]
    await pipeline.load()

    with patch.object(pipeline.ledger, "record_usage", wraps=pipeline.ledger.record_usage) as record:
        assert await say(pipeline, "!lurk") is CommandOutcome.DISPATCHED
        clock.advance(10)
        assert await say(pipeline, "!lurk") is CommandOutcome.COOLDOWN

    assert pipeline.sender.texts == ["alice is lurking"]
    assert record.call_count == 1


async def test_user_cooldown_is_per_user(pipeline):
    pipeline.source.commands = [make_command("lurk", "{user} is lurking", user_cooldown=30)]
    await pipeline.load()

    await say(pipeline, "!lurk")
    assert await say(pipeline, "!lurk", user="bob", user_id="2") is CommandOutcome.DISPATCHED
    assert pipeline.sender.texts == ["alice is lurking", "bob is lurking"]


async def test_no_match_is_silent(pipeline):
    await pipeline.load()
    assert await say(pipeline, "!nothing") is CommandOutcome.NO_MATCH
    assert await say(pipeline, "just chatting") is CommandOutcome.NO_MATCH
    assert await say(pipeline, "!") is CommandOutcome.NO_MATCH
    assert pipeline.sender.sent == []


async def test_prefix_resolution_is_case_insensitive_and_passes_args(pipeline):
    pipeline.source.commands = [make_command("hug", "{user} hugs ${1|'everyone'}", aliases=["cuddle"])]
    await pipeline.load()

    await say(pipeline, "!HUG bob")
    await say(pipeline, "!cuddle", user_id="2", user="carol")
    assert pipeline.sender.texts == ["alice hugs bob", "carol hugs everyone"]


async def test_disabled_command_is_suppressed_even_when_enabled(pipeline):
    pipeline.source.commands = [make_command("dice", "4", enabled=True)]
    pipeline.states.states["1"] = make_state("1", "foo", disabled=["dice"])
    await pipeline.load()

    assert await say(pipeline, "!dice", level=AccessLevel.BROADCASTER) is CommandOutcome.DISABLED
    assert await say(pipeline, "!dice", channel="#bar") is CommandOutcome.DISPATCHED
    assert pipeline.sender.sent[0].channel == "#bar"


async def test_access_level_is_enforced(pipeline):
    pipeline.source.commands = [make_command("so", "shoutout", access_level=AccessLevel.MODERATOR)]
    await pipeline.load()

    assert await say(pipeline, "!so", level=AccessLevel.VIP) is CommandOutcome.FORBIDDEN
    assert await say(pipeline, "!so", level=AccessLevel.MODERATOR) is CommandOutcome.DISPATCHED


async def test_channel_override_replaces_command_level(pipeline):
    pipeline.source.commands = [
        make_command("dice", "4", access_level=AccessLevel.EVERYONE),
        make_command("so", "shoutout", access_level=AccessLevel.MODERATOR),
    ]
    pipeline.states.states["1"] = make_state("1", "foo", overrides={"dice": "vip", "so": "everyone"})
    await pipeline.load()

    assert await say(pipeline, "!dice", level=AccessLevel.SUBSCRIBER) is CommandOutcome.FORBIDDEN
    assert await say(pipeline, "!dice", level=AccessLevel.VIP) is CommandOutcome.DISPATCHED
    assert await say(pipeline, "!so") is CommandOutcome.DISPATCHED


async def test_send_failure_does_not_consume_cooldown(pipeline):
    pipeline.source.commands = [make_command("lurk", "bye", global_cooldown=60, user_cooldown=60)]
    await pipeline.load()

    pipeline.sender.error = ConnectionError("chat down")
    assert await say(pipeline, "!lurk") is CommandOutcome.SEND_FAILED

    pipeline.sender.error = None
    assert await say(pipeline, "!lurk") is CommandOutcome.DISPATCHED
    assert pipeline.sender.texts == ["bye"]


async def test_global_cooldown_blocks_other_users(pipeline, clock):
    pipeline.source.commands = [make_command("dice", "4", global_cooldown=10)]
    await pipeline.load()

    await say(pipeline, "!dice")
    clock.advance(5)
    assert await say(pipeline, "!dice", user="bob", user_id="2") is CommandOutcome.COOLDOWN
    clock.advance(5)
    assert await say(pipeline, "!dice", user="bob", user_id="2") is CommandOutcome.DISPATCHED


async def test_cooldowns_are_tracked_per_channel(pipeline):
    pipeline.source.commands = [make_command("dice", "4", global_cooldown=10)]
    await pipeline.load()

    await say(pipeline, "!dice", channel="#foo")
    assert await say(pipeline, "!dice", channel="#bar") is CommandOutcome.DISPATCHED


async def test_moderators_bypass_cooldown(pipeline):
    pipeline.source.commands = [make_command("dice", "4", global_cooldown=30)]
    await pipeline.load()

    await say(pipeline, "!dice")
    assert await say(pipeline, "!dice", level=AccessLevel.MODERATOR) is CommandOutcome.DISPATCHED
    assert await say(pipeline, "!dice", level=AccessLevel.VIP) is CommandOutcome.COOLDOWN


async def test_bypass_can_be_disabled(pipeline):
    executor = CommandExecutor(
        pipeline.cache, pipeline.table, pipeline.ledger, pipeline.sender, cooldown_bypass=None
    )
    pipeline.source.commands = [make_command("dice", "4", global_cooldown=30)]
    await pipeline.load()

    kw = dict(user="alice", user_id="1", channel="#foo", access_level=AccessLevel.BROADCASTER)
    assert await executor.handle_message("!dice", **kw) is CommandOutcome.DISPATCHED
    assert await executor.handle_message("!dice", **kw) is CommandOutcome.COOLDOWN


async def test_regex_command_uses_whole_message_as_args(pipeline):
    pipeline.source.commands = [make_command("gm", "morning {user}! (${2})", regex=r"^good morning")]
    await pipeline.load()

    assert await say(pipeline, "Good Morning chat") is CommandOutcome.DISPATCHED
    assert pipeline.sender.texts == ["morning alice! (Morning)"]


async def test_regex_first_match_wins_channel_first(pipeline):
    pipeline.source.commands = [
        make_command("global_hi", "global", regex="hi"),
        make_command("chan_hi", "channel", regex="hi", channel_id="1", channel_name="foo"),
    ]
    await pipeline.load()

    await say(pipeline, "hi there")
    await say(pipeline, "hi there", channel="#bar")
    assert pipeline.sender.texts == ["channel", "global"]


async def test_regex_match_is_not_retried_when_forbidden(pipeline):
    pipeline.source.commands = [
        make_command("mods_hi", "mods", regex="hi", access_level=AccessLevel.MODERATOR),
        make_command("all_hi", "all", regex="hi"),
    ]
    await pipeline.load()

    assert await say(pipeline, "hi") is CommandOutcome.FORBIDDEN
    assert pipeline.sender.sent == []


async def test_prefix_command_takes_priority_over_regex(pipeline):
    pipeline.source.commands = [
        make_command("dice", "rolled"),
        make_command("anything", "regex", regex="."),
    ]
    await pipeline.load()

    await say(pipeline, "!dice")
    await say(pipeline, "!unknown")
    assert pipeline.sender.texts == ["rolled", "regex"]


async def test_mention_and_reply_response_types(pipeline):
    message = object()
    pipeline.source.commands = [
        make_command("m", "hello", response_type=ResponseType.MENTION),
        make_command("r", "hello", response_type=ResponseType.REPLY),
    ]
    await pipeline.load()

    await say(pipeline, "!m")
    await say(pipeline, "!r", message=message)
    mention, reply = pipeline.sender.sent
    assert mention.text == "@alice hello"
    assert mention.reply_to is None
    assert reply.text == "hello"
    assert reply.reply_to is message


async def test_use_counter(pipeline):
    counts = {}

    async def bump(command_id):
        counts[command_id] = counts.get(command_id, 0) + 1
        return counts[command_id]

    executor = CommandExecutor(
        pipeline.cache, pipeline.table, pipeline.ledger, pipeline.sender, use_counter=bump
    )
    pipeline.source.commands = [make_command("hugs", "{count} hugs"), make_command("plain", "no count")]
    await pipeline.load()

    kw = dict(user="alice", user_id="1", channel="#foo")
    await executor.handle_message("!hugs", **kw)
    await executor.handle_message("!hugs", **kw)
    await executor.handle_message("!plain", **kw)
    assert pipeline.sender.texts == ["1 hugs", "2 hugs", "no count"]
    assert len(counts) == 1


async def test_use_counter_failure_renders_marker(pipeline):
    async def broken(command_id):
        raise ConnectionError("db down")

    executor = CommandExecutor(
        pipeline.cache, pipeline.table, pipeline.ledger, pipeline.sender, use_counter=broken
    )
    pipeline.source.commands = [make_command("hugs", "{count} hugs")]
    await pipeline.load()

    outcome = await executor.handle_message("!hugs", user="alice", user_id="1", channel="#foo")
    assert outcome is CommandOutcome.DISPATCHED
    assert pipeline.sender.texts == ["(count error) hugs"]


async def test_render_error_falls_back_to_raw_template(pipeline):
    pipeline.source.commands = [make_command("x", "raw {user}")]
    await pipeline.load()

    with patch("twitchbot.core.executor.substitute_variables", side_effect=RuntimeError("boom")):
        assert await say(pipeline, "!x") is CommandOutcome.DISPATCHED
    assert pipeline.sender.texts == ["raw {user}"]


@pytest.mark.parametrize("prefix", ["?", "bot!"])
async def test_custom_prefix(pipeline, prefix):
    executor = CommandExecutor(
        pipeline.cache, pipeline.table, pipeline.ledger, pipeline.sender, prefix=prefix
    )
    pipeline.source.commands = [make_command("dice", "4")]
    await pipeline.load()

    kw = dict(user="alice", user_id="1", channel="#foo")
    assert await executor.handle_message(f"{prefix}dice", **kw) is CommandOutcome.DISPATCHED
    assert await executor.handle_message("!dice", **kw) is CommandOutcome.NO_MATCH


async def test_reload_is_visible_to_next_message(pipeline):
    pipeline.source.commands = [make_command("dice", "old")]
    await pipeline.load()
    await say(pipeline, "!dice")

    pipeline.source.commands = [make_command("dice", "new")]
    await pipeline.cache.reload()
    await say(pipeline, "!dice", user_id="2")
    assert pipeline.sender.texts == ["old", "new"]


async def test_limit_to_user_only_admits_that_chatter(pipeline):
    pipeline.source.commands = [make_command("secret", "hi {user}", limit_to_user="alice")]
    await pipeline.load()

    outcome = await say(pipeline, "!secret", user="bob", user_id="2", level=AccessLevel.BROADCASTER)
    assert outcome is CommandOutcome.FORBIDDEN
    assert await say(pipeline, "!secret", user="Alice") is CommandOutcome.DISPATCHED
    assert pipeline.sender.texts == ["hi Alice"]


async def test_limit_to_user_is_checked_after_access_level(pipeline):
    pipeline.source.commands = [
        make_command("secret", "hi", limit_to_user="alice", access_level=AccessLevel.VIP)
    ]
    await pipeline.load()

    assert await say(pipeline, "!secret") is CommandOutcome.FORBIDDEN
    assert await say(pipeline, "!secret", level=AccessLevel.VIP) is CommandOutcome.DISPATCHED
