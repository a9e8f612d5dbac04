"""從環境變數（與 .env）讀取的設定"""
import os
import sys
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv
from loguru import logger

BASE_DIR = Path(__file__).resolve().parent

# 在測試中不讀取 .env，讓測試自行控制環境變數
_running_under_tests = bool(os.getenv("PYTEST_CURRENT_TEST")) or any(
    "pytest" in arg or "unittest" in arg for arg in sys.argv
)
if not _running_under_tests:
    load_dotenv(BASE_DIR / ".env")


def _int_env(name: str, default: Optional[int]) -> Optional[int]:
    raw = os.getenv(name)
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning(f"環境變數 {name}='{raw}' 不是整數，改用預設值 {default}")
        return default


class Config:
    """集中管理的設定值"""

    BASE_DIR = BASE_DIR
    DISCORD_TOKEN = os.getenv("DISCORD_TOKEN", "")
    # 指定時只同步斜線指令到這個伺服器（開發時生效較快）
    COMMAND_GUILD_ID = _int_env("COMMAND_GUILD_ID", None)
    FFMPEG_PATH = os.getenv("FFMPEG_PATH") or None

    PLAYLIST_LIMIT = _int_env("PLAYLIST_LIMIT", 50)
    REFRESH_INTERVAL = _int_env("REFRESH_INTERVAL", 5)
    SURFACE_DELETE_DELAY = _int_env("SURFACE_DELETE_DELAY", 5)

    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
    LOG_FILE = BASE_DIR / "logs" / "bot.log"

    @staticmethod
    def validate() -> None:
        if not Config.DISCORD_TOKEN:
            logger.error("缺少必要的設定: DISCORD_TOKEN")
            sys.exit(1)
        for name in ("PLAYLIST_LIMIT", "REFRESH_INTERVAL"):
            if getattr(Config, name) <= 0:
                logger.error(f"設定 {name} 必須大於 0")
                sys.exit(1)
