"""Twitch bot configuration"""

import logging
from functools import lru_cache
from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from shared.models.chat_command import AccessLevel

logger = logging.getLogger(__name__)

# === Path Configuration ===
TWITCHBOT_DIR = Path(__file__).parent.parent
COMPONENTS_DIR = TWITCHBOT_DIR / "components"


class TwitchBotSettings(BaseSettings):
    """Twitch bot settings"""

    model_config = SettingsConfigDict(
        env_file=TWITCHBOT_DIR / ".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Twitch OAuth
    client_id: str = Field(..., description="Twitch OAuth Client ID")
    client_secret: str = Field(..., description="Twitch OAuth Client Secret")

    # Bot Configuration
    bot_id: str = Field(..., description="Bot User ID")
    owner_id: str = Field(..., description="Owner User ID")
    command_prefix: str = Field(default="!", description="Chat command prefix")

    # Database
    database_url: str = Field(..., description="PostgreSQL database URL")

    # EventSub
    conduit_id: str = Field(default="", description="Twitch EventSub Conduit ID")

    # Command pipeline
    cooldown_bypass_level: str = Field(
        default="moderator",
        description="Lowest access level that skips cooldowns ('none' to disable)",
    )
    cooldown_retention_seconds: float = Field(
        default=3600.0, ge=0, description="Minimum lifetime of a cooldown ledger entry"
    )
    cooldown_max_entries: int = Field(
        default=100_000, gt=0, description="Maximum cooldown ledger entries per axis"
    )
    cache_refresh_interval: float = Field(
        default=300.0, gt=0, description="Seconds between full cache reloads"
    )

    # Environment
    log_level: str = Field(default="INFO", description="Logging level")

    @field_validator("database_url")
    @classmethod
    def validate_database_url(cls, v: str) -> str:
        """Validate database URL starts with postgresql://"""
        if not v.startswith("postgresql://"):
            raise ValueError("DATABASE_URL must start with 'postgresql://'")
        return v

    @field_validator("command_prefix")
    @classmethod
    def validate_command_prefix(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("COMMAND_PREFIX must not be empty")
        return v

    @field_validator("cooldown_bypass_level")
    @classmethod
    def validate_cooldown_bypass_level(cls, v: str) -> str:
        v = v.strip().lower()
        if v != "none" and AccessLevel.parse(v) is None:
            raise ValueError(f"Unknown access level '{v}'")
        return v

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level is valid"""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        v_upper = v.upper()
        if v_upper not in valid_levels:
            logger.warning(f"Invalid log level '{v}', defaulting to INFO")
            return "INFO"
        return v_upper

    @property
    def cooldown_bypass(self) -> AccessLevel | None:
        if self.cooldown_bypass_level == "none":
            return None
        return AccessLevel.parse(self.cooldown_bypass_level)


@lru_cache
def get_settings() -> TwitchBotSettings:
    """Get cached settings instance"""
    return TwitchBotSettings()  # type: ignore[call-arg]


def validate_env_vars() -> TwitchBotSettings:
    """Load settings, logging and re-raising validation failures as ValueError."""
    try:
        settings = get_settings()
    except Exception as e:
        logging.getLogger("Bot").error(f"Environment validation failed: {e}")
        raise ValueError(str(e)) from e
    logger.info("All required environment variables validated successfully")
    return settings
