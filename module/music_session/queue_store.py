from collections import deque
from typing import Deque, Iterable, List, Optional, Tuple

from loguru import logger

from .constants import HISTORY_LIMIT
from .track import Track


class QueueStore:
    """
    佇列管理器：負責管理待播歌曲與已播放歷史
    - pending[0] 為目前播放中的歌曲
    - history 最新的在最後，超過上限時從最舊的開始淘汰
    每首歌同一時間只會存在於 pending 或 history 其中之一
    """

    def __init__(self, history_limit: int = HISTORY_LIMIT):
        self.pending: List[Track] = []
        self.history: Deque[Track] = deque(maxlen=history_limit)

    def __len__(self) -> int:
        return len(self.pending)

    @property
    def current(self) -> Optional[Track]:
        return self.pending[0] if self.pending else None

    @property
    def upcoming(self) -> Tuple[Track, ...]:
        return tuple(self.pending[1:])

    def enqueue(self, track: Track) -> None:
        """
        新增一首歌曲到佇列尾端
        :param track: Track
        """
        self.pending.append(track)
        logger.info(f"已新增歌曲: {track.title}，目前佇列共 {len(self.pending)} 首")

    def enqueue_many(self, tracks: Iterable[Track]) -> int:
        """
        依序新增多首歌曲，解析失敗的項目必須在呼叫前就過濾掉
        :return: int, 新增的數量
        """
        tracks = list(tracks)
        self.pending.extend(tracks)
        logger.info(f"已批次新增 {len(tracks)} 首歌曲，目前佇列共 {len(self.pending)} 首")
        return len(tracks)

    def advance(self) -> Optional[Track]:
        """
        目前歌曲播放完畢：把 pending[0] 移到歷史，回傳新的目前歌曲（沒有則回傳 None）
        每個播放結束事件只能呼叫一次
        """
        if self.pending:
            finished = self.pending.pop(0)
            if len(self.history) == self.history.maxlen:
                logger.debug(f"播放歷史已滿，淘汰最舊的歌曲: {self.history[0].title}")
            self.history.append(finished)
        next_track = self.current
        logger.debug(f"切換至下一首: {next_track.title if next_track else '無'}")
        return next_track

    def rewind(self, within_rewind_window: bool) -> Optional[Track]:
        """
        回到上一首或重播目前歌曲（純狀態判斷，不做任何 I/O）
        :param within_rewind_window: bool, 是否仍在可回到上一首的時間內
        :return: 應該開始播放的歌曲
        """
        if within_rewind_window and self.history:
            previous = self.history.pop()
            self.pending.insert(0, previous)
            logger.info(f"回到上一首: {previous.title}")
            return previous
        return self.current

    def drop_current(self) -> Optional[Track]:
        """
        移除無法播放的目前歌曲，不記入播放歷史
        """
        if not self.pending:
            return None
        dropped = self.pending.pop(0)
        logger.info(f"已移除無法播放的歌曲: {dropped.title}，剩餘 {len(self.pending)} 首")
        return dropped

    def clear_except_current(self) -> int:
        """
        清空待播歌曲，只保留目前播放中的歌曲
        :return: int, 被移除的數量
        """
        if len(self.pending) <= 1:
            return 0
        removed = len(self.pending) - 1
        del self.pending[1:]
        logger.info(f"已清空佇列，移除 {removed} 首歌曲")
        return removed

    def clear_all(self) -> None:
        logger.info(f"清空整個佇列，原有 {len(self.pending)} 首歌曲")
        self.pending.clear()
