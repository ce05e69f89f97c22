import logging
import os
from pathlib import Path
from typing import Optional

import discord
from discord.ext import commands
from dotenv import load_dotenv

from fablebot.commands import FableManager, setup_fable_mode
from fablebot.config import FableConfig

load_dotenv()

BASE_DIR = Path(__file__).resolve().parent

logging.basicConfig(
    level=os.getenv("FABLE_LOG_LEVEL", "INFO"),
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
logger = logging.getLogger("fablebot")
logging.getLogger("httpx").setLevel(logging.WARNING)

CONFIG = FableConfig.from_env(BASE_DIR)

intents = discord.Intents.default()
intents.message_content = True
intents.members = True


class FableBot(commands.Bot):
    manager: Optional[FableManager] = None

    async def setup_hook(self) -> None:
        self.manager = setup_fable_mode(self, CONFIG)

    async def close(self) -> None:
        if self.manager is not None:
            await self.manager.close()
        await super().close()


bot = FableBot(command_prefix=CONFIG.command_prefix, intents=intents)


@bot.event
async def on_ready():
    logger.info("Logged in as %s (id=%s)", bot.user, bot.user.id if bot.user else "unknown")
    logger.info("Database: %s", CONFIG.db_path)
    logger.info("Pool cache: %s", CONFIG.pool_path)
    disabled = [
        name
        for name, enabled in (
            ("gacha", CONFIG.gacha),
            ("trading", CONFIG.trading),
            ("stealing", CONFIG.stealing),
            ("synthesis", CONFIG.synthesis),
            ("community packs", CONFIG.community_packs),
        )
        if not enabled
    ]
    if disabled:
        logger.warning("Under maintenance: %s", ", ".join(disabled))


@bot.event
async def on_command_error(ctx: commands.Context, error: commands.CommandError):
    if isinstance(error, commands.CommandNotFound):
        return
    if isinstance(error, (commands.MissingRequiredArgument, commands.BadArgument)):
        try:
            await ctx.reply(f"{error}\nSee `{CONFIG.command_prefix}help`.", mention_author=False)
        except discord.HTTPException:
            logger.warning("Failed to send usage hint for %s", ctx.command)
        return
    logger.error("Command %s failed", ctx.command, exc_info=(type(error), error, error.__traceback__))


def main():
    if not CONFIG.token:
        raise RuntimeError("Missing FABLE_DISCORD_TOKEN. Set it in your environment or .env file.")
    bot.run(CONFIG.token)


if __name__ == "__main__":
    main()
