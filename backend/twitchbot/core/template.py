"""Response template rendering for chat commands.

Supported variables (names are case-insensitive):
    {user} {channel} {args}      Invoker, channel name, all arguments
    {touser}                     First argument, or the invoker
    {query}                      All arguments, or the invoker
    {displayname} {userid}       Invoker display name / Twitch user id
    {userlevel}                  Invoker access level, lowercase
    {querystring}                URL-encoded arguments
    {count}                      Command use count
    {random.N-M}                 Random integer in [N, M]
    {math EXPR}                  Arithmetic: + - * / % and parentheses
    {repeat 'TEXT' N}            TEXT repeated N times (max 50)
    {urlencode TEXT}             URL-encoded TEXT
    {countdown DATE}             Time left until an ISO date
    {countup DATE}               Time elapsed since an ISO date
    ${N} ${N|'fallback'}         Nth argument (1-indexed) or the fallback
    ${random.pick 'a' 'b' ...}   One of the quoted options
    ${time ZONE}                 Current time in an IANA zone, e.g. 3:07 PM

Each construct is its own regex pass. Rendering never raises: bad input
renders as an inline marker and unknown syntax is left as written.
"""

from __future__ import annotations

import functools
import math
import random
import re
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from datetime import datetime, timezone
from urllib.parse import quote
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError, available_timezones

from shared.models.chat_command import AccessLevel

_I = re.IGNORECASE

_RANDOM_RANGE_PATTERN = re.compile(r"\{random\.(\d{1,9})-(\d{1,9})\}", _I)
_COUNTDOWN_PATTERN = re.compile(r"\{countdown\s+([^}]+)\}", _I)
_COUNTUP_PATTERN = re.compile(r"\{countup\s+([^}]+)\}", _I)
_MATH_PATTERN = re.compile(r"\{math\s+([^}]+)\}", _I)
_REPEAT_PATTERN = re.compile(r"\{repeat\s+'([^']*)'\s+(\d{1,9})\}", _I)
_URLENCODE_PATTERN = re.compile(r"\{urlencode\s+([^}]+)\}", _I)
_POSITIONAL_PATTERN = re.compile(r"\$\{(\d{1,9})(?:\|'?([^}']*)'?)?\}")
_PICK_PATTERN = re.compile(r"\$\{random\.pick((?:\s+'[^']*')*)\s*\}", _I)
_PICK_OPTION_PATTERN = re.compile(r"'([^']*)'")
_TIME_PATTERN = re.compile(r"\$\{time\s+([^}]+)\}", _I)
_NUMBER_PATTERN = re.compile(r"\d+(?:\.\d*)?|\.\d+")

MAX_REPEAT = 50
MAX_MATH_DEPTH = 32
_URL_SAFE = "!*'()"


@dataclass
class TemplateContext:
    """What a template can see about the invocation."""

    user: str = ""
    channel: str = ""
    args: Sequence[str | None] = ()
    user_id: str = ""
    display_name: str | None = None
    user_level: AccessLevel | None = None
    use_count: int | str | None = None


def substitute_variables(
    template: str,
    ctx: TemplateContext | None = None,
    *,
    rng: Callable[[], float] = random.random,
    now: datetime | None = None,
) -> str:
    """Render ``template`` for one invocation.

    ``rng`` must return floats in [0, 1); ``now`` defaults to the current
    UTC time. Both exist so callers can make rendering deterministic.
    """
    ctx = ctx or TemplateContext()
    now = now or datetime.now(timezone.utc)
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)

    text = _substitute_simple(template, ctx)
    text = _substitute_parameterized(text, rng, now)
    text = _POSITIONAL_PATTERN.sub(lambda m: _positional(m, ctx.args), text)
    text = _PICK_PATTERN.sub(lambda m: _pick(m, rng), text)
    text = _TIME_PATTERN.sub(lambda m: _time_in(m.group(1).strip(), now), text)
    return text


# ── simple variables ──


def _substitute_simple(text: str, ctx: TemplateContext) -> str:
    channel = ctx.channel.removeprefix("#")
    defined_args = [a for a in ctx.args if a is not None]
    joined = " ".join(defined_args)
    level = ctx.user_level if ctx.user_level is not None else AccessLevel.EVERYONE

    values = {
        "user": ctx.user,
        "channel": channel,
        "args": joined,
        "touser": defined_args[0] if defined_args else ctx.user,
        "query": joined or ctx.user,
        "displayname": ctx.display_name or ctx.user,
        "userid": ctx.user_id,
        "userlevel": level.name.lower(),
        "querystring": quote(joined, safe=_URL_SAFE),
        "count": str(ctx.use_count) if ctx.use_count is not None else "0",
    }
    for name, value in values.items():
        text = re.sub(r"\{" + name + r"\}", lambda _m, v=value: v, text, flags=_I)
    return text


# ── parameterized {…} constructs ──


def _substitute_parameterized(text: str, rng: Callable[[], float], now: datetime) -> str:
    def _random_range(m: re.Match) -> str:
        lo, hi = int(m.group(1)), int(m.group(2))
        if lo > hi:
            return str(lo)
        return str(lo + min(int(rng() * (hi - lo + 1)), hi - lo))

    def _repeat(m: re.Match) -> str:
        return m.group(1) * min(int(m.group(2)), MAX_REPEAT)

    text = _RANDOM_RANGE_PATTERN.sub(_random_range, text)
    text = _COUNTDOWN_PATTERN.sub(lambda m: _countdown(m.group(1), now), text)
    text = _COUNTUP_PATTERN.sub(lambda m: _countup(m.group(1), now), text)
    text = _MATH_PATTERN.sub(lambda m: _math(m.group(1)), text)
    text = _REPEAT_PATTERN.sub(_repeat, text)
    text = _URLENCODE_PATTERN.sub(lambda m: quote(m.group(1).strip(), safe=_URL_SAFE), text)
    return text


def _parse_date(value: str) -> datetime | None:
    try:
        parsed = datetime.fromisoformat(value.strip())
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _countdown(value: str, now: datetime) -> str:
    target = _parse_date(value)
    if target is None:
        return "(invalid date)"
    seconds = (target - now).total_seconds()
    if seconds <= 0:
        return "0s (passed)"
    return format_time_diff(seconds)


def _countup(value: str, now: datetime) -> str:
    target = _parse_date(value)
    if target is None:
        return "(invalid date)"
    seconds = (now - target).total_seconds()
    if seconds <= 0:
        return "0s (in the future)"
    return format_time_diff(seconds)


def _plural(n: int, unit: str) -> str:
    return f"{n} {unit}{'' if n == 1 else 's'}"


def format_time_diff(total_seconds: float) -> str:
    """Coarse human duration, at most three parts: '2 years, 3 months'."""
    seconds = int(total_seconds)
    minutes = seconds // 60
    hours = minutes // 60
    days = hours // 24
    months = days // 30
    years = days // 365

    parts: list[str] = []
    if years > 0:
        parts.append(_plural(years, "year"))
    if months % 12 > 0:
        parts.append(_plural(months % 12, "month"))
    if days % 30 > 0 and years == 0:
        parts.append(_plural(days % 30, "day"))
    if hours % 24 > 0 and months == 0:
        parts.append(f"{hours % 24}h")
    if minutes % 60 > 0 and days == 0:
        parts.append(f"{minutes % 60}m")
    if not parts:
        parts.append(f"{seconds}s")
    return ", ".join(parts[:3])


def _math(expr: str) -> str:
    try:
        result = _MathParser(expr).parse()
    except (ValueError, OverflowError):
        return "(math error)"
    if not math.isfinite(result):
        return "(math error)"
    result = round(result, 2)
    if result.is_integer():
        return str(int(result))
    return str(result)


class _MathParser:
    """Recursive-descent evaluator for + - * / % and parentheses.

    Division or modulo by zero yields 0. Parentheses nest at most
    MAX_MATH_DEPTH deep.
    """

    def __init__(self, expr: str) -> None:
        self.src = re.sub(r"\s+", "", expr)
        self.pos = 0
        self.depth = 0

    def parse(self) -> float:
        value = self._add_sub()
        if self.pos != len(self.src):
            raise ValueError(f"unexpected {self.src[self.pos]!r} at {self.pos}")
        return value

    def _peek(self) -> str:
        return self.src[self.pos] if self.pos < len(self.src) else ""

    def _add_sub(self) -> float:
        left = self._mul_div()
        while self._peek() in ("+", "-"):
            op = self.src[self.pos]
            self.pos += 1
            right = self._mul_div()
            left = left + right if op == "+" else left - right
        return left

    def _mul_div(self) -> float:
        left = self._operand()
        while self._peek() in ("*", "/", "%"):
            op = self.src[self.pos]
            self.pos += 1
            right = self._operand()
            if op == "*":
                left *= right
            elif right == 0:
                left = 0.0
            elif op == "/":
                left /= right
            else:
                left = math.fmod(left, right)
        return left

    def _operand(self) -> float:
        negative = False
        if self._peek() == "-":
            negative = True
            self.pos += 1
        if self._peek() == "(":
            if self.depth >= MAX_MATH_DEPTH:
                raise ValueError("parentheses nested too deep")
            self.pos += 1
            self.depth += 1
            value = self._add_sub()
            if self._peek() != ")":
                raise ValueError("missing ')'")
            self.pos += 1
            self.depth -= 1
            return -value if negative else value

        match = _NUMBER_PATTERN.match(self.src, self.pos)
        if not match:
            raise ValueError(f"expected a number at {self.pos}")
        self.pos = match.end()
        value = float(match.group())
        return -value if negative else value


# ── ${…} constructs ──


def _positional(m: re.Match, args: Sequence[str | None]) -> str:
    index = int(m.group(1)) - 1
    if 0 <= index < len(args) and args[index] is not None:
        return args[index]  # type: ignore[return-value]
    fallback = m.group(2)
    return fallback if fallback is not None else ""


def _pick(m: re.Match, rng: Callable[[], float]) -> str:
    options = _PICK_OPTION_PATTERN.findall(m.group(1))
    if not options:
        return ""
    return options[min(int(rng() * len(options)), len(options) - 1)]


@functools.lru_cache(maxsize=1)
def _zone_names() -> dict[str, str]:
    return {name.lower(): name for name in available_timezones()}


def _time_in(zone: str, now: datetime) -> str:
    # IANA keys are case-sensitive on disk; chat input is not
    key = _zone_names().get(zone.lower(), zone)
    try:
        local = now.astimezone(ZoneInfo(key))
    except (ZoneInfoNotFoundError, ValueError, OSError, OverflowError):
        return f"(invalid timezone: {zone})"
    suffix = "AM" if local.hour < 12 else "PM"
    return f"{local.hour % 12 or 12}:{local.minute:02d} {suffix}"
