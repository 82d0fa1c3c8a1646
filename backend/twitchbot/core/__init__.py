"""Core modules for the Twitch bot."""

from .access import AccessControl, meets_access_level
from .channel_state import ChannelGate, ChannelStateTable
from .command_cache import CommandCache, CommandSnapshot, channel_key
from .config import (
    COMPONENTS_DIR,
    TWITCHBOT_DIR,
    TwitchBotSettings,
    get_settings,
    validate_env_vars,
)
from .cooldowns import CooldownLedger, CooldownStatus
from .executor import CommandExecutor, CommandOutcome, InvocationContext
from .guards import allow_builtin
from .logging import setup_logging
from .pg_listener import pg_listen
from .subscriptions import get_channel_subscriptions
from .template import TemplateContext, substitute_variables

__all__ = [
    # Settings
    "TwitchBotSettings",
    "get_settings",
    "validate_env_vars",
    # Path Constants
    "TWITCHBOT_DIR",
    "COMPONENTS_DIR",
    # Setup functions
    "setup_logging",
    # Command pipeline
    "AccessControl",
    "meets_access_level",
    "ChannelGate",
    "ChannelStateTable",
    "CommandCache",
    "CommandSnapshot",
    "channel_key",
    "CooldownLedger",
    "CooldownStatus",
    "CommandExecutor",
    "CommandOutcome",
    "InvocationContext",
    "TemplateContext",
    "substitute_variables",
    # Guards
    "allow_builtin",
    # Twitch specific
    "get_channel_subscriptions",
    # PG Listener
    "pg_listen",
]
