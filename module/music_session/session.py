import asyncio
import time
from collections import deque
from typing import Callable, Deque, Optional, Sequence, Set, Tuple

import discord
from loguru import logger

from .constants import REWIND_WINDOW
from .errors import NothingPlayingError, PlaybackError, ResolutionError, SessionClosedError
from .queue_store import QueueStore
from .resolver import YTDLPResolver
from .state import PlaybackState, SessionSnapshot, ViewMode
from .time_accountant import TimeAccountant
from .track import Track
from .transport import VoiceTransport
from .view_sync import ViewSynchronizer


class PlaybackSession:
    """
    單一伺服器的播放狀態機

    所有會改變狀態的操作（使用者指令與播放結束事件）都在 self.lock 內依到達順序執行，
    播放結束事件在送達時就記錄下來，之後取得鎖的第一個操作會先處理它。
    畫面刷新則在釋放鎖之後進行，避免網路延遲拖住其他指令。
    Session 只有 PLAYING / PAUSED 兩個穩定狀態，沒有 Session 即代表閒置。
    """

    def __init__(self, guild_id: int, transport: VoiceTransport, resolver: YTDLPResolver,
                 view_sync: ViewSynchronizer, text_channel: Optional[discord.abc.Messageable] = None,
                 on_closed: Optional[Callable[["PlaybackSession"], None]] = None,
                 clock: Callable[[], float] = time.monotonic):
        self.guild_id = guild_id
        self.transport = transport
        self.resolver = resolver
        self.view_sync = view_sync
        self.text_channel = text_channel
        self.on_closed = on_closed
        self.clock = clock

        self.lock = asyncio.Lock()
        self.queue = QueueStore()
        self.timer = TimeAccountant()
        self.state = PlaybackState.PLAYING
        self.current_view = ViewMode.NOW_PLAYING
        self.closed = False

        self._started = False
        self._generation: Optional[int] = None
        self._pending_events: Deque[Tuple[int, Optional[Exception]]] = deque()
        self._event_tasks: Set[asyncio.Task] = set()
        self._closed_event = asyncio.Event()

        transport.set_listener(self.notify_transport_event)
        view_sync.bind(self)

    @property
    def is_paused(self) -> bool:
        return self.state is PlaybackState.PAUSED

    def snapshot(self, now: Optional[float] = None) -> SessionSnapshot:
        now = self.clock() if now is None else now
        return SessionSnapshot(
            guild_id=self.guild_id,
            current=self.queue.current,
            upcoming=self.queue.upcoming,
            history=tuple(self.queue.history),
            is_paused=self.is_paused,
            view_mode=self.current_view,
            elapsed_seconds=self.timer.elapsed_seconds(now),
        )

    async def wait_closed(self) -> None:
        await self._closed_event.wait()

    # ---------------------
    # 使用者指令
    # ---------------------
    async def request_play(self, tracks: Sequence[Track]) -> bool:
        """
        加入歌曲；Session 第一次加入時會開始播放並發送播放畫面
        :return: bool, 本次呼叫是否開始了播放
        :raises SessionClosedError: Session 已在取得鎖之前結束
        """
        async with self.lock:
            await self._drain_events()
            self._ensure_open()
            self.queue.enqueue_many(tracks)
            first_start = not self._started
            if first_start:
                await self._begin_playback(announce=True)
        if not first_start:
            await self.view_sync.refresh_all(self)
        return first_start

    async def skip(self) -> Track:
        """
        停止目前歌曲，之後由播放結束事件切換到下一首
        :return: Track, 被跳過的歌曲
        """
        async with self.lock:
            await self._drain_events()
            self._ensure_open()
            current = self.queue.current
            if current is None:
                raise NothingPlayingError()
            logger.info(f"[{self.guild_id}] 跳過歌曲: {current.title}")
            self.transport.stop()
        return current

    async def toggle_play_pause(self) -> bool:
        """
        :return: bool, 切換後是否為暫停
        """
        async with self.lock:
            await self._drain_events()
            self._ensure_open()
            now = self.clock()
            if self.is_paused:
                self.transport.resume()
                self.timer.on_resume(now)
                self.state = PlaybackState.PLAYING
            else:
                self.transport.pause()
                self.timer.on_pause(now)
                self.state = PlaybackState.PAUSED
            paused = self.is_paused
            logger.info(f"[{self.guild_id}] {'已暫停' if paused else '已恢復'}播放")
        await self.view_sync.refresh_all(self)
        return paused

    async def rewind(self) -> Tuple[Optional[Track], bool]:
        """
        開播 REWIND_WINDOW 秒內（含）且有播放歷史時回到上一首，否則重新播放目前歌曲
        :return: (開始播放的歌曲, 是否回到了上一首)
        """
        async with self.lock:
            await self._drain_events()
            self._ensure_open()
            within_window = self.timer.since_start(self.clock()) <= REWIND_WINDOW
            went_back = within_window and bool(self.queue.history)
            self.queue.rewind(within_window)
            logger.info(f"[{self.guild_id}] {'回到上一首' if went_back else '重新播放目前歌曲'}")
            await self._begin_playback(announce=False)
            track = self.queue.current if not self.closed else None
        await self.view_sync.refresh_all(self)
        return track, went_back

    async def clear_queue(self) -> int:
        """
        :return: int, 被移除的歌曲數量
        """
        async with self.lock:
            await self._drain_events()
            self._ensure_open()
            removed = self.queue.clear_except_current()
        if removed:
            await self.view_sync.refresh_all(self)
        return removed

    async def toggle_view(self) -> ViewMode:
        async with self.lock:
            await self._drain_events()
            self._ensure_open()
            self.current_view = self.current_view.toggled()
            view_mode = self.current_view
        await self.view_sync.refresh_all(self)
        return view_mode

    async def stop(self) -> None:
        """清空佇列並結束 Session"""
        async with self.lock:
            await self._drain_events()
            self._ensure_open()
            self.queue.clear_all()
            await self._teardown()

    async def close(self) -> None:
        """與 stop 相同，但 Session 已結束時不會報錯"""
        async with self.lock:
            if self.closed:
                return
            self.queue.clear_all()
            await self._teardown()

    # ---------------------
    # 播放結束事件
    # ---------------------
    def notify_transport_event(self, generation: int, error: Optional[Exception] = None) -> None:
        """
        由傳輸層在事件循環上呼叫：事件立即記錄到 _pending_events，
        之後任何取得 self.lock 的操作都會先處理它，再執行自己的邏輯
        """
        self._pending_events.append((generation, error))
        task = asyncio.create_task(self.on_transport_finished())
        self._event_tasks.add(task)
        task.add_done_callback(self._event_tasks.discard)

    async def on_transport_finished(self) -> None:
        """處理尚未被其他操作處理掉的播放結束事件，並刷新畫面"""
        try:
            async with self.lock:
                await self._drain_events()
        except Exception as e:
            # _begin_playback 已記錄例外並結束 Session
            logger.error(f"[{self.guild_id}] 自動播放下一首失敗，Session 已結束：{e}")
            await self._send_notice("❌ 播放時發生錯誤，已停止播放。")
            return
        await self.view_sync.refresh_all(self)

    async def _drain_events(self) -> None:
        while self._pending_events:
            if self.closed:
                self._pending_events.clear()
                return
            generation, error = self._pending_events.popleft()
            await self._handle_finished(generation, error)

    async def _handle_finished(self, generation: int, error: Optional[Exception]) -> None:
        if generation != self._generation:
            logger.debug(f"[{self.guild_id}] 忽略過期的播放結束事件 (generation={generation})")
            return
        if error is not None:
            track = self.queue.drop_current()
            logger.warning(f"[{self.guild_id}] 播放中發生錯誤，跳過歌曲: {error}")
            if track:
                await self._notify_failure(track)
        else:
            self.queue.advance()
        await self._begin_playback(announce=False)

    # ---------------------
    # 內部流程（呼叫前必須持有 self.lock）
    # ---------------------
    async def _begin_playback(self, announce: bool) -> bool:
        """
        播放 pending[0]；無法播放的歌曲會被移除並嘗試下一首，全部失敗則結束 Session
        :return: bool, 是否成功開始播放
        """
        while True:
            track = self.queue.current
            if track is None:
                await self._teardown()
                return False
            try:
                stream = await self.resolver.stream(track)
                self._generation = self.transport.play(stream)
            except (ResolutionError, PlaybackError) as e:
                logger.warning(f"[{self.guild_id}] 無法播放 {track.title}，跳過：{e}")
                self.queue.drop_current()
                await self._notify_failure(track)
                continue
            except Exception as e:
                logger.exception(f"[{self.guild_id}] 開始播放時發生未預期的錯誤：{e}")
                self.queue.clear_all()
                await self._teardown()
                raise

            self.state = PlaybackState.PLAYING
            self.timer.on_track_start(self.clock())
            if announce and not self._started:
                await self.view_sync.announce(self.text_channel, self)
            self._started = True
            return True

    async def _notify_failure(self, track: Track) -> None:
        await self._send_notice(f"⚠️ 無法播放 **{track.title}**，已跳過。")

    async def _send_notice(self, content: str) -> None:
        if self.text_channel is None:
            return
        try:
            await self.text_channel.send(content)
        except discord.HTTPException as e:
            logger.warning(f"無法發送通知到文字頻道：{e}")

    async def _teardown(self) -> None:
        if self.closed:
            return
        self.state = PlaybackState.TERMINATING
        self.closed = True
        logger.info(f"[{self.guild_id}] 結束播放 Session")
        try:
            self.view_sync.teardown()
            await self.transport.release()
        finally:
            if self.on_closed is not None:
                self.on_closed(self)
            self._closed_event.set()

    def _ensure_open(self) -> None:
        if self.closed:
            raise SessionClosedError(f"Session {self.guild_id} 已結束")
