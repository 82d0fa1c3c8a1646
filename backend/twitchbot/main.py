"""Twitch bot entry point."""

import asyncio
import logging

from shared.database import DatabaseManager, PoolConfig

from twitchbot.core.bot import Bot
from twitchbot.core.config import validate_env_vars
from twitchbot.core.database import setup_database_schema
from twitchbot.core.logging import setup_logging

LOGGER: logging.Logger = logging.getLogger("Bot")


def main() -> None:
    settings = validate_env_vars()
    setup_logging(settings.log_level)

    async def runner() -> None:
        db = DatabaseManager(settings.database_url, PoolConfig(max_size=5))
        await db.connect()
        try:
            async with db.pool.acquire() as connection:
                await setup_database_schema(connection)
            LOGGER.info("Database schema ready")

            async with Bot(settings=settings, token_database=db.pool) as bot:
                await bot.start()
        finally:
            await db.disconnect()

    try:
        asyncio.run(runner())
    except KeyboardInterrupt:
        LOGGER.warning("Shutting down due to KeyboardInterrupt...")


if __name__ == "__main__":
    main()
