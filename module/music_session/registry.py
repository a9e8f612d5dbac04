import asyncio
from collections import defaultdict
from typing import Awaitable, Callable, DefaultDict, Dict, Optional

from loguru import logger

from .session import PlaybackSession

SessionFactory = Callable[[], Awaitable[PlaybackSession]]


class SessionRegistry:
    """
    伺服器 ID → PlaybackSession 的對照表

    建立 Session 時以每個伺服器各自的鎖保護：同一伺服器同時只會有一個 factory 在執行，
    factory 失敗時不會留下任何註冊。移除只能由 Session 結束時透過 discard 進行。
    """

    def __init__(self):
        self._sessions: Dict[int, PlaybackSession] = {}
        self._locks: DefaultDict[int, asyncio.Lock] = defaultdict(asyncio.Lock)
        self._lock_users: DefaultDict[int, int] = defaultdict(int)

    def __contains__(self, guild_id: int) -> bool:
        return guild_id in self._sessions

    def __len__(self) -> int:
        return len(self._sessions)

    def get(self, guild_id: int) -> Optional[PlaybackSession]:
        session = self._sessions.get(guild_id)
        if session is None or session.closed:
            return None
        return session

    async def open(self, guild_id: int, factory: SessionFactory) -> PlaybackSession:
        """
        取得伺服器目前的 Session，沒有的話用 factory 建立並註冊
        :raises: factory 拋出的任何例外，此時不會註冊任何東西
        """
        lock = self._locks[guild_id]
        self._lock_users[guild_id] += 1
        try:
            async with lock:
                existing = self._sessions.get(guild_id)
                if existing is not None:
                    if not existing.closed:
                        return existing
                    # 等舊 Session 釋放完語音連線再建立新的
                    await existing.wait_closed()
                    self.discard(guild_id, existing)

                session = await factory()
                self._sessions[guild_id] = session
                logger.info(f"[{guild_id}] 已建立播放 Session，目前共 {len(self._sessions)} 個")
                return session
        finally:
            # 沒有人持有或等待時移除這把鎖
            self._lock_users[guild_id] -= 1
            if not self._lock_users[guild_id]:
                del self._lock_users[guild_id]
                del self._locks[guild_id]

    def discard(self, guild_id: int, session: PlaybackSession) -> None:
        """只有在註冊的仍是同一個 Session 時才移除"""
        if self._sessions.get(guild_id) is session:
            del self._sessions[guild_id]
            logger.info(f"[{guild_id}] 已移除播放 Session，剩餘 {len(self._sessions)} 個")

    async def close_all(self) -> None:
        sessions = list(self._sessions.values())
        for session in sessions:
            try:
                await session.close()
            except Exception as e:
                logger.exception(f"[{session.guild_id}] 關閉 Session 時發生錯誤：{e}")
        self._sessions.clear()
