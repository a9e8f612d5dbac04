import asyncio
from dataclasses import dataclass
from typing import TYPE_CHECKING, Dict, Iterable, Optional

import discord
from loguru import logger

from .constants import REFRESH_INTERVAL, SURFACE_DELETE_DELAY
from .embed_manager import MusicEmbedManager, RenderedView
from .errors import SurfaceUnavailableError

if TYPE_CHECKING:
    from .session import PlaybackSession


@dataclass(frozen=True)
class SurfaceLocator:
    channel_id: int
    message_id: int
    owner: Optional[int] = None


class ViewSynchronizer:
    """
    管理一個 Session 的所有播放畫面訊息
    - 狀態改變時，渲染一次並把同一份內容推送到每個畫面
    - 定期刷新，讓播放進度保持最新
    - Session 結束時延遲刪除所有畫面訊息
    """

    def __init__(self, bot, renderer: MusicEmbedManager, refresh_interval: float = REFRESH_INTERVAL,
                 delete_delay: float = SURFACE_DELETE_DELAY):
        """
        :param bot: discord 的 Bot（或 Client），用來取得頻道
        :param renderer: MusicEmbedManager, 畫面渲染器
        :param refresh_interval: float, 定期刷新間隔（秒）
        :param delete_delay: float, Session 結束後刪除畫面前的等待秒數
        """
        self.bot = bot
        self.renderer = renderer
        self.refresh_interval = refresh_interval
        self.delete_delay = delete_delay
        self.surfaces: Dict[int, SurfaceLocator] = {}
        self._session: Optional["PlaybackSession"] = None
        self._refresh_task: Optional[asyncio.Task] = None
        self._deletion_task: Optional[asyncio.Task] = None
        self._closed = False

    def bind(self, session: "PlaybackSession") -> None:
        self._session = session

    @property
    def refresh_timer_active(self) -> bool:
        return self._refresh_task is not None and not self._refresh_task.done()

    # ---------------------
    # 畫面追蹤
    # ---------------------
    def track_surface(self, surface_id: int, locator: SurfaceLocator) -> bool:
        """
        追蹤一個新的畫面訊息，第一個畫面會啟動定期刷新
        :return: bool, Session 已結束時回傳 False
        """
        if self._closed:
            logger.debug(f"Session 已結束，不追蹤畫面 {surface_id}")
            return False
        self.surfaces[surface_id] = locator
        logger.info(f"開始追蹤播放畫面 {surface_id}，共 {len(self.surfaces)} 個")
        if not self.refresh_timer_active:
            self._refresh_task = asyncio.create_task(self._refresh_loop())
        return True

    def untrack_surface(self, surface_id: int) -> None:
        if self.surfaces.pop(surface_id, None) is not None:
            logger.info(f"停止追蹤播放畫面 {surface_id}，剩餘 {len(self.surfaces)} 個")
        if not self.surfaces:
            self._stop_refresh()

    async def announce(self, channel: discord.abc.Messageable, session: "PlaybackSession") -> Optional[discord.Message]:
        """
        在文字頻道發送新的播放畫面並追蹤它，只用於 Session 第一次開始播放
        """
        if channel is None:
            return None
        rendered = self.renderer.render(session.snapshot())
        try:
            message = await channel.send(embed=rendered.embed, view=rendered.view)
        except discord.HTTPException as e:
            logger.warning(f"無法發送播放畫面：{e}")
            return None
        self.track_surface(message.id, SurfaceLocator(message.channel.id, message.id))
        return message

    # ---------------------
    # 刷新
    # ---------------------
    async def refresh_all(self, session: Optional["PlaybackSession"] = None) -> None:
        """
        渲染一次目前狀態，並推送到所有追蹤中的畫面；無法更新的畫面會被移除
        Session 已結束時不做任何事
        """
        session = session or self._session
        if session is None or session.closed or self._closed or not self.surfaces:
            return
        rendered = self.renderer.render(session.snapshot())
        for surface_id, locator in list(self.surfaces.items()):
            if surface_id not in self.surfaces:
                continue
            try:
                await self._push(locator, rendered)
            except SurfaceUnavailableError as e:
                logger.warning(f"播放畫面 {surface_id} 無法更新，停止追蹤：{e}")
                self.untrack_surface(surface_id)
        logger.debug(f"已刷新 {len(self.surfaces)} 個播放畫面")

    async def _push(self, locator: SurfaceLocator, rendered: RenderedView) -> None:
        message = self._partial_message(locator)
        try:
            await message.edit(embed=rendered.embed, view=rendered.view)
        except discord.HTTPException as e:
            raise SurfaceUnavailableError(str(e)) from e

    def _partial_message(self, locator: SurfaceLocator) -> discord.PartialMessage:
        channel = self.bot.get_channel(locator.channel_id)
        if channel is None:
            raise SurfaceUnavailableError(f"找不到頻道 {locator.channel_id}")
        return channel.get_partial_message(locator.message_id)

    async def _refresh_loop(self) -> None:
        try:
            while self.surfaces and self._refresh_task is asyncio.current_task():
                await asyncio.sleep(self.refresh_interval)
                await self.refresh_all()
        except asyncio.CancelledError:
            logger.debug("定期刷新任務已取消")
        except Exception as e:
            logger.exception(f"定期刷新播放畫面時發生錯誤：{e}")
        finally:
            if self._refresh_task is asyncio.current_task():
                self._refresh_task = None

    def _stop_refresh(self) -> None:
        task = self._refresh_task
        self._refresh_task = None
        # 在刷新任務內部呼叫時，迴圈會在本輪結束後自行退出
        if task is not None and task is not asyncio.current_task() and not task.done():
            task.cancel()
            logger.debug("已停止定期刷新")

    # ---------------------
    # 結束
    # ---------------------
    def teardown(self) -> None:
        """
        停止定期刷新、清空追蹤的畫面，並排程延遲刪除畫面訊息（不等待刪除完成）
        """
        self._closed = True
        self._stop_refresh()
        locators = list(self.surfaces.values())
        self.surfaces.clear()
        if locators:
            logger.info(f"將在 {self.delete_delay} 秒後刪除 {len(locators)} 個播放畫面")
            self._deletion_task = asyncio.create_task(self._delete_surfaces(locators))

    async def _delete_surfaces(self, locators: Iterable[SurfaceLocator]) -> None:
        await asyncio.sleep(self.delete_delay)
        for locator in locators:
            try:
                await self._partial_message(locator).delete()
            except (SurfaceUnavailableError, discord.HTTPException) as e:
                logger.debug(f"刪除播放畫面 {locator.message_id} 失敗（可能已被刪除）：{e}")
