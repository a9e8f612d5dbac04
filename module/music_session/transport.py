import asyncio
from typing import Callable, Optional

import discord
from loguru import logger

from .constants import FFMPEG_BEFORE_OPTIONS, FFMPEG_OPTIONS
from .errors import PlaybackError, VoiceConnectionError
from .track import StreamHandle

TransportListener = Callable[[int, Optional[Exception]], None]


class VoiceTransport:
    """
    語音傳輸層，負責與 Discord 音頻系統交互
    核心職責：
    - 播放、暫停、恢復、停止串流
    - 每次 play 都會遞增 generation，播放結束回調會帶上當次的 generation，
      讓 Session 能忽略被手動替換掉的舊播放所觸發的結束事件
    - 在 Session 結束時釋放語音連線（只會釋放一次）
    """

    def __init__(self, voice_client: discord.VoiceClient, ffmpeg_path: str, loop: asyncio.AbstractEventLoop):
        """
        :param voice_client: discord.VoiceClient, 已連線的語音 client
        :param ffmpeg_path: str, FFmpeg 執行檔路徑
        :param loop: asyncio.AbstractEventLoop, 事件循環（播放結束回調來自音頻執行緒）
        """
        self.voice_client = voice_client
        self.ffmpeg_path = ffmpeg_path
        self.loop = loop
        self.generation = 0
        self._listener: Optional[TransportListener] = None
        self._released = False

    @classmethod
    async def connect(cls, channel: discord.VoiceChannel, ffmpeg_path: str) -> "VoiceTransport":
        """
        加入語音頻道並建立傳輸層
        :raises VoiceConnectionError: 無法加入語音頻道
        """
        try:
            voice_client = await channel.connect()
        except (discord.ClientException, discord.opus.OpusNotLoaded, asyncio.TimeoutError) as e:
            logger.error(f"連接語音頻道失敗：{e}")
            raise VoiceConnectionError(str(e)) from e
        logger.info(f"已連接語音頻道: {channel.name}")
        return cls(voice_client, ffmpeg_path, asyncio.get_running_loop())

    @property
    def released(self) -> bool:
        return self._released

    def set_listener(self, listener: TransportListener) -> None:
        self._listener = listener

    def play(self, stream: StreamHandle) -> int:
        """
        播放串流；若目前有歌曲在播放會先停止（視為同一個重播動作）
        :return: int, 本次播放的 generation
        :raises PlaybackError: 無法開始播放
        """
        self._ensure_usable()
        self.generation += 1
        generation = self.generation

        if self.voice_client.is_playing() or self.voice_client.is_paused():
            logger.debug("播放新串流前先停止目前播放")
            self.voice_client.stop()

        try:
            audio_source = self._create_audio_source(stream)
            self.voice_client.play(
                audio_source,
                after=lambda error: self._play_finished_callback(generation, error)
            )
        except (discord.ClientException, discord.opus.OpusNotLoaded, TypeError) as e:
            logger.error(f"無法開始播放 {stream.track.title}: {e}")
            raise PlaybackError(str(e)) from e

        logger.info(f"開始播放歌曲: {stream.track.title} (generation={generation})")
        return generation

    def pause(self) -> None:
        self._ensure_usable()
        if self.voice_client.is_playing():
            self.voice_client.pause()
            logger.info("已暫停播放")

    def resume(self) -> None:
        self._ensure_usable()
        if self.voice_client.is_paused():
            self.voice_client.resume()
            logger.info("已恢復播放")

    def stop(self) -> None:
        """停止目前歌曲，會觸發一次帶有目前 generation 的結束事件"""
        self._ensure_usable()
        if self.voice_client.is_playing() or self.voice_client.is_paused():
            self.voice_client.stop()
            logger.info("已停止播放")

    async def release(self) -> None:
        """
        停止播放並斷開語音連線，重複呼叫不會有任何作用
        """
        if self._released:
            return
        self._released = True
        try:
            if self.voice_client.is_playing() or self.voice_client.is_paused():
                self.voice_client.stop()
            await self.voice_client.disconnect()
            logger.info("已斷開語音連線")
        except Exception as e:
            logger.error(f"斷開語音連線時發生錯誤：{e}")
            logger.exception(e)

    def _ensure_usable(self) -> None:
        if self._released:
            raise PlaybackError("語音連線已釋放")

    def _create_audio_source(self, stream: StreamHandle) -> discord.AudioSource:
        return discord.FFmpegPCMAudio(
            stream.url,
            executable=self.ffmpeg_path,
            before_options=FFMPEG_BEFORE_OPTIONS,
            options=FFMPEG_OPTIONS,
        )

    def _play_finished_callback(self, generation: int, error: Optional[Exception]) -> None:
        """
        播放完成回調，由 Discord 音頻執行緒調用
        """
        if error:
            logger.error(f"播放結束時發生錯誤: {error}")
        if self._listener is None:
            return
        # 使用線程安全的方式交回事件循環
        self.loop.call_soon_threadsafe(self._listener, generation, error)
