import asyncio
import logging
import sys

import discord
from discord.ext import commands
from loguru import logger

from config import Config

EXTENSIONS = ("cogs.music_cog",)


class InterceptHandler(logging.Handler):
    """把 discord.py 的標準 logging 轉給 loguru"""

    def emit(self, record: logging.LogRecord) -> None:
        try:
            level = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno
        logger.opt(depth=6, exception=record.exc_info).log(level, record.getMessage())


def setup_logging() -> None:
    logger.remove()
    logger.add(sys.stderr, level=Config.LOG_LEVEL)
    Config.LOG_FILE.parent.mkdir(parents=True, exist_ok=True)
    logger.add(Config.LOG_FILE, level=Config.LOG_LEVEL, rotation="10 MB", retention=5, encoding="utf-8")
    logging.basicConfig(handlers=[InterceptHandler()], level=logging.INFO, force=True)


class MusicBot(commands.Bot):
    def __init__(self):
        intents = discord.Intents.default()
        intents.voice_states = True
        super().__init__(command_prefix=commands.when_mentioned, intents=intents)

    async def setup_hook(self) -> None:
        for extension in EXTENSIONS:
            await self.load_extension(extension)
            logger.info(f"已載入擴充: {extension}")

        if Config.COMMAND_GUILD_ID:
            guild = discord.Object(id=Config.COMMAND_GUILD_ID)
            self.tree.copy_global_to(guild=guild)
            synced = await self.tree.sync(guild=guild)
            logger.info(f"已同步 {len(synced)} 個斜線指令到伺服器 {Config.COMMAND_GUILD_ID}")
        else:
            synced = await self.tree.sync()
            logger.info(f"已同步 {len(synced)} 個全域斜線指令")

    async def on_ready(self):
        logger.info(f"已登入: {self.user} (ID: {self.user.id})")


async def main() -> None:
    setup_logging()
    Config.validate()
    bot = MusicBot()
    async with bot:
        await bot.start(Config.DISCORD_TOKEN)


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        logger.info("收到中斷訊號，關閉機器人")
