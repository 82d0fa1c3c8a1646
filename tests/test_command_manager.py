import pytest

from conftest import make_command
from shared.models.chat_command import AccessLevel, ResponseType
from twitchbot.components.command_manager import _build_fields, _parse_args, describe_command


def test_parse_args_separates_flags_from_text():
    options, text = _parse_args("-gcd=30 -Alias=hey,hi {user}  says   hello")
    assert options == {"gcd": "30", "alias": "hey,hi"}
    assert text == "{user} says hello"


def test_parse_args_keeps_dashes_in_text():
    options, text = _parse_args("-type=mention a - b -c")
    assert options == {"type": "mention"}
    assert text == "a - b -c"


def test_build_fields_all_options():
    fields, errors = _build_fields(
        {
            "gcd": "10",
            "ucd": "30",
            "level": "sub",
            "alias": "!Hey,hi",
            "type": "REPLY",
            "regex": r"^good\s+morning",
            "enable": "off",
        }
    )
    assert errors == []
    assert fields == {
        "global_cooldown": 10,
        "user_cooldown": 30,
        "access_level": AccessLevel.SUBSCRIBER,
        "aliases": ["hey", "hi"],
        "response_type": ResponseType.REPLY,
        "regex": r"^good\s+morning",
        "enabled": False,
    }


def test_alias_none_clears():
    fields, _ = _build_fields({"alias": "none"})
    assert fields == {"aliases": []}


@pytest.mark.parametrize(
    "options,message",
    [
        ({"gcd": "-5"}, "-gcd requires a non-negative number"),
        ({"ucd": "soon"}, "-ucd requires a non-negative number"),
        ({"level": "admin"}, "-level must be one of"),
        ({"type": "shout"}, "-type must be one of"),
        ({"regex": "(unclosed"}, "invalid regex"),
        ({"enable": "maybe"}, "-enable must be on or off"),
        ({"hidden": "on"}, "Unknown flag: -hidden"),
    ],
)
def test_build_fields_errors(options, message):
    fields, errors = _build_fields(options)
    assert fields == {}
    assert len(errors) == 1
    assert errors[0].startswith(message)


def test_describe_command():
    cmd = make_command(
        "hug",
        "{user} hugs {touser}",
        aliases=["cuddle"],
        access_level=AccessLevel.VIP,
        response_type=ResponseType.MENTION,
        global_cooldown=5,
        user_cooldown=30,
    )
    assert describe_command(cmd) == (
        "!hug [enabled] type:mention level:vip cd:5s usercd:30s aliases:cuddle | {user} hugs {touser}"
    )


def test_limituser_sets_and_clears():
    assert _build_fields({"limituser": "@Bob_99"}) == ({"limit_to_user": "bob_99"}, [])
    assert _build_fields({"limituser": "CLEAR"}) == ({"limit_to_user": ""}, [])


def test_limituser_rejects_bad_names():
    fields, errors = _build_fields({"limituser": "not/a/name"})
    assert fields == {}
    assert errors == ["-limituser requires a username or 'clear'"]


def test_describe_command_shows_user_limit():
    cmd = make_command("secret", "hi", limit_to_user="bob")
    assert describe_command(cmd).endswith("usercd:0s user:bob | hi")


def test_parse_args_reads_limituser_flag():
    options, text = _parse_args("-limituser=@Bob hello")
    assert options == {"limituser": "@Bob"}
    assert text == "hello"
