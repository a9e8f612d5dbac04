#--------------------------Discord---------------------------------
import discord
from discord.ext import commands
#--------------------------Module----------------------------------
from config import Config
from module.ffmpeg.ffmpeg_manager import ensure_ffmpeg
from module.music_session import (
    MusicController,
    MusicEmbedManager,
    MusicError,
    VoiceTransport,
    YTDLPResolver,
)
from module.music_session.button_manager import PLAY_PAUSE, REWIND, SKIP, VIEW_TOGGLE
from module.music_session.errors import NothingPlayingError, NotInVoiceChannelError
#--------------------------Other-----------------------------------
from typing import Optional
from loguru import logger
#------------------------------------------------------------------

GENERIC_FAILURE = "❌ 發生未預期的錯誤，請稍後再試。"


class MusicCog(commands.Cog):
    def __init__(self, bot):
        self.bot = bot
        self.ffmpeg_path = None
        self.controller: Optional[MusicController] = None

    async def cog_load(self):
        self.ffmpeg_path = await ensure_ffmpeg(Config.FFMPEG_PATH)
        renderer = MusicEmbedManager(button_handler=self.button_action_handler)
        self.controller = MusicController(
            self.bot,
            YTDLPResolver(),
            renderer,
            transport_factory=self.connect_transport,
            playlist_limit=Config.PLAYLIST_LIMIT,
            refresh_interval=Config.REFRESH_INTERVAL,
            delete_delay=Config.SURFACE_DELETE_DELAY,
        )
        logger.info("[MusicCog] 已載入")

    async def cog_unload(self):
        if self.controller:
            await self.controller.shutdown()
        logger.info("[MusicCog] 已卸載，所有播放 Session 已結束。")

    async def connect_transport(self, channel: discord.VoiceChannel) -> VoiceTransport:
        return await VoiceTransport.connect(channel, self.ffmpeg_path)

    @staticmethod
    def _voice_channel(interaction: discord.Interaction) -> Optional[discord.VoiceChannel]:
        voice = getattr(interaction.user, "voice", None)
        return voice.channel if voice else None

    async def _reply(self, interaction: discord.Interaction, content: str = None, *, ephemeral: bool = False, **kwargs):
        if interaction.response.is_done():
            return await interaction.followup.send(content, ephemeral=ephemeral, **kwargs)
        await interaction.response.send_message(content, ephemeral=ephemeral, **kwargs)
        return None

    async def _report_error(self, interaction: discord.Interaction, error: Exception, action: str):
        if isinstance(error, MusicError):
            logger.warning(f"{action}失敗：{error}")
            await self._reply(interaction, error.user_message, ephemeral=True)
        else:
            logger.exception(f"{action}時發生未預期的錯誤：{error}")
            await self._reply(interaction, GENERIC_FAILURE, ephemeral=True)

    #--------------------------Commands--------------------------------
    @discord.app_commands.command(name="play", description="播放 YouTube 歌曲或播放清單")
    @discord.app_commands.describe(query="YouTube 網址、播放清單網址或搜尋關鍵字")
    @discord.app_commands.guild_only()
    async def play(self, interaction: discord.Interaction, query: str):
        await interaction.response.defer()
        try:
            reply = await self.controller.request_play(
                interaction.guild_id,
                query,
                interaction.user,
                self._voice_channel(interaction),
                interaction.channel,
            )
            await interaction.followup.send(reply)
        except Exception as e:
            await self._report_error(interaction, e, "播放")

    @discord.app_commands.command(name="skip", description="跳過目前歌曲")
    @discord.app_commands.guild_only()
    async def skip(self, interaction: discord.Interaction):
        await self._run_control(interaction, self.controller.skip, "跳過歌曲")

    @discord.app_commands.command(name="rewind", description="回到上一首或重新播放目前歌曲")
    @discord.app_commands.guild_only()
    async def rewind(self, interaction: discord.Interaction):
        await self._run_control(interaction, self.controller.rewind, "上一首")

    @discord.app_commands.command(name="stop", description="停止播放並清空佇列")
    @discord.app_commands.guild_only()
    async def stop(self, interaction: discord.Interaction):
        await self._run_control(interaction, self.controller.stop, "停止播放")

    @discord.app_commands.command(name="clear", description="清空佇列（保留目前歌曲）")
    @discord.app_commands.guild_only()
    async def clear(self, interaction: discord.Interaction):
        await self._run_control(interaction, self.controller.clear_queue, "清空佇列")

    async def _run_control(self, interaction: discord.Interaction, action, action_name: str):
        await interaction.response.defer()
        try:
            self.controller.require_voice(self._voice_channel(interaction))
            reply = await action(interaction.guild_id)
            await interaction.followup.send(reply)
        except Exception as e:
            await self._report_error(interaction, e, action_name)

    @discord.app_commands.command(name="queue", description="查看目前佇列")
    @discord.app_commands.guild_only()
    async def queue(self, interaction: discord.Interaction):
        try:
            rendered = self.controller.show_queue(interaction.guild_id)
            await interaction.response.send_message(embed=rendered.embed)
        except Exception as e:
            await self._report_error(interaction, e, "查看佇列")

    @discord.app_commands.command(name="nowplaying", description="顯示正在播放畫面與控制按鈕")
    @discord.app_commands.guild_only()
    async def nowplaying(self, interaction: discord.Interaction):
        try:
            rendered = self.controller.show_now_playing(interaction.guild_id)
            await interaction.response.send_message(embed=rendered.embed, view=rendered.view)
            message = await interaction.original_response()
            if not self.controller.track_surface(interaction.guild_id, message, owner=interaction.user.id):
                # Session 在發送期間結束，畫面不會再更新
                await message.delete(delay=Config.SURFACE_DELETE_DELAY)
        except Exception as e:
            await self._report_error(interaction, e, "顯示播放畫面")

    @discord.app_commands.command(name="help", description="顯示音樂指令說明")
    async def help(self, interaction: discord.Interaction):
        await interaction.response.send_message(embed=self.controller.help_embed(), ephemeral=True)

    #--------------------------Buttons---------------------------------
    async def button_action_handler(self, interaction: discord.Interaction, action: str):
        """
        處理播放畫面上的按鈕（interaction 已由按鈕 View defer）
        """
        guild_id = interaction.guild_id
        try:
            if self._voice_channel(interaction) is None:
                raise NotInVoiceChannelError()
            if action == PLAY_PAUSE:
                await self.controller.toggle_play_pause(guild_id)
            elif action == SKIP:
                await self.controller.skip(guild_id)
            elif action == REWIND:
                await self.controller.rewind(guild_id)
            elif action == VIEW_TOGGLE:
                await self.controller.toggle_view(guild_id)
            else:
                logger.warning(f"未知的按鈕動作: {action}")
        except (NotInVoiceChannelError, NothingPlayingError) as e:
            await interaction.followup.send(e.user_message, ephemeral=True)
        except Exception as e:
            await self._report_error(interaction, e, f"按鈕 {action} ")


async def setup(bot):
    await bot.add_cog(MusicCog(bot))
