import time
from typing import Any, Awaitable, Callable, Optional, Sequence

import discord
from loguru import logger

from .constants import PLAYLIST_LIMIT, REFRESH_INTERVAL, SURFACE_DELETE_DELAY
from .embed_manager import MusicEmbedManager, RenderedView
from .errors import NothingPlayingError, NotInVoiceChannelError, PlaybackError, SessionClosedError
from .registry import SessionRegistry
from .resolver import YTDLPResolver, resolution_error
from .session import PlaybackSession
from .state import ViewMode
from .track import Track
from .transport import VoiceTransport
from .view_sync import SurfaceLocator, ViewSynchronizer

TransportFactory = Callable[[discord.VoiceChannel], Awaitable[VoiceTransport]]


class MusicController:
    """
    音樂指令的進入點：檢查語音頻道、解析歌曲、找到或建立 Session 後轉交操作，
    並回傳給使用者的狀態文字
    """

    def __init__(self, bot, resolver: YTDLPResolver, renderer: MusicEmbedManager,
                 transport_factory: TransportFactory, registry: Optional[SessionRegistry] = None,
                 playlist_limit: int = PLAYLIST_LIMIT, refresh_interval: float = REFRESH_INTERVAL,
                 delete_delay: float = SURFACE_DELETE_DELAY, clock: Callable[[], float] = time.monotonic):
        self.bot = bot
        self.resolver = resolver
        self.renderer = renderer
        self.transport_factory = transport_factory
        self.registry = registry or SessionRegistry()
        self.playlist_limit = playlist_limit
        self.refresh_interval = refresh_interval
        self.delete_delay = delete_delay
        self.clock = clock

    # ---------------------
    # 播放
    # ---------------------
    async def request_play(self, guild_id: int, query: str, invoker: Any,
                           voice_channel: Optional[discord.VoiceChannel],
                           text_channel: Optional[discord.abc.Messageable] = None) -> str:
        """
        播放單首歌曲（網址或搜尋關鍵字）；播放清單網址會轉給 request_play_playlist
        """
        self.require_voice(voice_channel)
        if self.resolver.is_playlist(query):
            return await self.request_play_playlist(guild_id, query, invoker, voice_channel, text_channel)

        track = await self.resolver.resolve(query, requested_by=invoker)
        started = await self._enqueue(guild_id, [track], voice_channel, text_channel)
        if started:
            return f"🎵 **{track.title}** 正在播放！"
        return f"✅ **{track.title}** 已加入佇列！"

    async def request_play_playlist(self, guild_id: int, url: str, invoker: Any,
                                    voice_channel: Optional[discord.VoiceChannel],
                                    text_channel: Optional[discord.abc.Messageable] = None) -> str:
        self.require_voice(voice_channel)
        result = await self.resolver.resolve_playlist(url, max_items=self.playlist_limit, requested_by=invoker)
        if not result.tracks:
            raise resolution_error("empty_playlist", f"播放清單沒有可播放的歌曲: {url}")

        await self._enqueue(guild_id, result.tracks, voice_channel, text_channel)
        reply = f"📜 已從播放清單 **{result.title}** 加入 {len(result.tracks)} 首歌曲"
        if result.failed:
            reply += f"（{result.failed} 首無法載入）"
        return reply

    async def _enqueue(self, guild_id: int, tracks: Sequence[Track], voice_channel: discord.VoiceChannel,
                       text_channel: Optional[discord.abc.Messageable]) -> bool:
        for attempt in range(2):
            session = await self.registry.open(
                guild_id, lambda: self._create_session(guild_id, voice_channel, text_channel)
            )
            try:
                started = await session.request_play(tracks)
            except SessionClosedError:
                # Session 在等待鎖的期間結束了，換一個新的再試一次
                logger.info(f"[{guild_id}] Session 已結束，重新建立後再加入歌曲 (第 {attempt + 1} 次)")
                continue
            if session.closed:
                # 第一次播放時所有歌曲都無法播放
                raise PlaybackError(f"[{guild_id}] 所有歌曲都無法播放")
            return started
        raise PlaybackError(f"[{guild_id}] 無法建立播放 Session")

    async def _create_session(self, guild_id: int, voice_channel: discord.VoiceChannel,
                              text_channel: Optional[discord.abc.Messageable]) -> PlaybackSession:
        transport = await self.transport_factory(voice_channel)
        view_sync = ViewSynchronizer(self.bot, self.renderer, self.refresh_interval, self.delete_delay)
        return PlaybackSession(
            guild_id,
            transport,
            self.resolver,
            view_sync,
            text_channel=text_channel,
            on_closed=self._on_session_closed,
            clock=self.clock,
        )

    def _on_session_closed(self, session: PlaybackSession) -> None:
        self.registry.discard(session.guild_id, session)

    # ---------------------
    # 控制
    # ---------------------
    async def skip(self, guild_id: int) -> str:
        session = self._require_session(guild_id)
        try:
            await session.skip()
        except SessionClosedError:
            raise NothingPlayingError() from None
        return "⏭️ 已跳過歌曲！"

    async def rewind(self, guild_id: int) -> str:
        session = self._require_session(guild_id)
        try:
            track, went_back = await session.rewind()
        except SessionClosedError:
            raise NothingPlayingError() from None
        if track is None:
            raise PlaybackError("重新播放失敗，已停止播放")
        if went_back:
            return f"⏮️ 播放上一首歌曲：**{track.title}**"
        return f"⏪ 已重新開始播放：**{track.title}**"

    async def stop(self, guild_id: int) -> str:
        session = self._require_session(guild_id)
        try:
            await session.stop()
        except SessionClosedError:
            raise NothingPlayingError() from None
        return "⏹️ 已停止播放並清空佇列！"

    async def clear_queue(self, guild_id: int) -> str:
        session = self._require_session(guild_id)
        try:
            removed = await session.clear_queue()
        except SessionClosedError:
            raise NothingPlayingError() from None
        if not removed:
            return "❌ 佇列已經是空的！"
        return f"🗑️ 已清空佇列，移除 {removed} 首歌曲！"

    async def toggle_play_pause(self, guild_id: int) -> str:
        session = self._require_session(guild_id)
        try:
            paused = await session.toggle_play_pause()
        except SessionClosedError:
            raise NothingPlayingError() from None
        return "⏸️ 已暫停播放！" if paused else "▶️ 已恢復播放！"

    async def toggle_view(self, guild_id: int) -> ViewMode:
        session = self._require_session(guild_id)
        try:
            return await session.toggle_view()
        except SessionClosedError:
            raise NothingPlayingError() from None

    # ---------------------
    # 顯示
    # ---------------------
    def show_queue(self, guild_id: int) -> RenderedView:
        session = self._require_session(guild_id)
        return self.renderer.render_queue(session.snapshot())

    def show_now_playing(self, guild_id: int) -> RenderedView:
        session = self._require_session(guild_id)
        return self.renderer.render(session.snapshot())

    def track_surface(self, guild_id: int, message: discord.Message, owner: Optional[int] = None) -> bool:
        """
        追蹤使用者要求顯示的播放畫面，讓它跟著 Session 自動更新
        """
        session = self.registry.get(guild_id)
        if session is None:
            return False
        locator = SurfaceLocator(channel_id=message.channel.id, message_id=message.id, owner=owner)
        return session.view_sync.track_surface(message.id, locator)

    def help_embed(self) -> discord.Embed:
        return self.renderer.help_embed()

    async def shutdown(self) -> None:
        logger.info(f"關閉所有播放 Session，共 {len(self.registry)} 個")
        await self.registry.close_all()

    # ---------------------
    # 檢查
    # ---------------------
    @staticmethod
    def require_voice(voice_channel: Optional[discord.VoiceChannel]) -> None:
        if voice_channel is None:
            raise NotInVoiceChannelError()

    def _require_session(self, guild_id: int) -> PlaybackSession:
        session = self.registry.get(guild_id)
        if session is None or session.queue.current is None:
            raise NothingPlayingError()
        return session
