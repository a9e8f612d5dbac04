from typing import NamedTuple, Optional

import discord
from loguru import logger

from .button_manager import ButtonHandler, MusicPlayerButtons
from .constants import (
    COLOR_PAUSED,
    COLOR_PLAYING,
    FOOTER_TEXT,
    PROGRESS_BAR_LENGTH,
    QUEUE_HISTORY_DISPLAY,
    QUEUE_UPCOMING_DISPLAY,
)
from .state import SessionSnapshot, ViewMode


class RenderedView(NamedTuple):
    embed: discord.Embed
    view: Optional[discord.ui.View]


def format_time(seconds: int) -> str:
    minutes, seconds = divmod(max(0, int(seconds)), 60)
    return f"{minutes}:{seconds:02d}"


class MusicEmbedManager:
    """
    由 Session 快照生成播放畫面（嵌入訊息 + 控制按鈕），不做任何 I/O
    """

    def __init__(self, button_handler: Optional[ButtonHandler] = None):
        self.button_handler = button_handler

    def render(self, snapshot: SessionSnapshot) -> RenderedView:
        """
        依 snapshot.view_mode 生成對應的畫面
        """
        if snapshot.view_mode is ViewMode.QUEUE:
            embed = self.queue_embed(snapshot)
        else:
            embed = self.now_playing_embed(snapshot)
        view = MusicPlayerButtons(self.button_handler, is_paused=snapshot.is_paused, view_mode=snapshot.view_mode)
        return RenderedView(embed, view)

    def render_queue(self, snapshot: SessionSnapshot) -> RenderedView:
        """單次顯示的佇列畫面，不附按鈕"""
        return RenderedView(self.queue_embed(snapshot), None)

    # ---------------------
    # 播放相關嵌入
    # ---------------------
    def now_playing_embed(self, snapshot: SessionSnapshot) -> discord.Embed:
        track = snapshot.current
        if track is None:
            return self.error_embed("目前沒有正在播放的歌曲")

        status_icon = "⏸" if snapshot.is_paused else "🎵"
        status_text = "已暫停" if snapshot.is_paused else "正在播放"
        elapsed = snapshot.elapsed_seconds
        total = track.duration
        logger.debug(f"生成正在播放嵌入: {track.title} {elapsed}/{total}")

        embed = discord.Embed(
            description=f"**{track.title}**",
            color=COLOR_PAUSED if snapshot.is_paused else COLOR_PLAYING
        )
        embed.set_author(name=status_text)
        embed.add_field(
            name=f"{format_time(elapsed)} / {format_time(total) if total > 0 else '--:--'}",
            value=self.create_progress_bar(elapsed, total),
            inline=False
        )
        embed.add_field(name="點播者", value=track.requester_mention, inline=True)
        embed.add_field(name="狀態", value=f"{status_icon} {status_text}", inline=True)
        embed.add_field(name="​", value="​", inline=True)
        if track.thumbnail_url:
            embed.set_thumbnail(url=track.thumbnail_url)
        embed.set_footer(text=FOOTER_TEXT)
        return embed

    @staticmethod
    def create_progress_bar(current: int, total: int, length: int = PROGRESS_BAR_LENGTH) -> str:
        """
        建立進度條
        :param current: int, 已播放秒數
        :param total: int, 總秒數（0 表示未知）
        :param length: int, 進度條長度
        :return: str, 進度條
        """
        ratio = min(current / total, 1) if total > 0 else 0
        filled = round(length * ratio)
        return "━" * filled + "🔘" + "━" * (length - filled)

    # ---------------------
    # 佇列相關嵌入
    # ---------------------
    def queue_embed(self, snapshot: SessionSnapshot) -> discord.Embed:
        track = snapshot.current
        if track is None:
            return self.error_embed("佇列是空的")

        lines = ["**🎵 正在播放：**", f"**{track.title}**", f"點播者 {track.requester_mention}", ""]

        lines.append("**📋 接下來：**")
        shown = snapshot.upcoming[:QUEUE_UPCOMING_DISPLAY]
        if shown:
            for index, upcoming in enumerate(shown, start=1):
                lines.append(f"`{index}.` **{upcoming.title}** `[{upcoming.duration_formatted}]`")
                lines.append(f"    點播者 {upcoming.requester_mention}")
            remaining = len(snapshot.upcoming) - len(shown)
            if remaining > 0:
                lines.append(f"\n*...還有 {remaining} 首歌曲*")
        else:
            lines.append("*佇列是空的*")

        if snapshot.history:
            lines.append("\n**⏮️ 上一首：**")
            for previous in reversed(snapshot.history[-QUEUE_HISTORY_DISPLAY:]):
                lines.append(f"**{previous.title}**")

        embed = discord.Embed(
            description="\n".join(lines),
            color=COLOR_PAUSED if snapshot.is_paused else COLOR_PLAYING
        )
        embed.set_author(name="音樂佇列")
        if track.thumbnail_url:
            embed.set_thumbnail(url=track.thumbnail_url)
        embed.set_footer(text=f"總共: {snapshot.total_tracks} 首 | {FOOTER_TEXT}")
        return embed

    # ---------------------
    # 其他嵌入
    # ---------------------
    def help_embed(self) -> discord.Embed:
        embed = discord.Embed(title="🎵 音樂指令", color=0x0099FF)
        commands_help = (
            ("/play <關鍵字或網址>", "播放 YouTube 歌曲或播放清單（網址或搜尋關鍵字）"),
            ("/skip", "跳過目前歌曲"),
            ("/rewind", "開播 10 秒內回到上一首，否則重新播放目前歌曲"),
            ("/stop", "停止播放並清空佇列"),
            ("/clear", "清空佇列（保留目前歌曲）"),
            ("/queue", "查看目前佇列"),
            ("/nowplaying", "顯示正在播放畫面與控制按鈕"),
            ("/help", "顯示這則說明"),
        )
        for name, value in commands_help:
            embed.add_field(name=name, value=value, inline=False)
        embed.set_footer(text=FOOTER_TEXT)
        return embed

    def error_embed(self, error_message: str) -> discord.Embed:
        """
        生成錯誤提示嵌入訊息
        :param error_message: str, 錯誤訊息
        :return: discord.Embed
        """
        return discord.Embed(
            title="❌ 錯誤",
            description=error_message,
            color=discord.Color.red()
        )
