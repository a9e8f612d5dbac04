import math
from dataclasses import dataclass
from typing import Optional, Union

from .errors import ClockStateError


@dataclass(frozen=True)
class RunningClock:
    started_at: float
    paused_total: float = 0.0


@dataclass(frozen=True)
class PausedClock:
    started_at: float
    paused_total: float
    paused_at: float


class TimeAccountant:
    """
    播放計時器，計算扣除暫停時間後的實際播放秒數

    狀態只有 RunningClock / PausedClock 兩種，暫停起點只存在於 PausedClock，
    因此「有暫停起點 ⇔ 正在暫停」由型別保證。
    開始時間原樣保留，讓「上一首」判斷可以用未扣除暫停的經過時間。
    """

    def __init__(self):
        self._clock: Optional[Union[RunningClock, PausedClock]] = None

    @property
    def is_started(self) -> bool:
        return self._clock is not None

    @property
    def is_paused(self) -> bool:
        return isinstance(self._clock, PausedClock)

    def on_track_start(self, now: float) -> None:
        self._clock = RunningClock(started_at=now)

    def on_pause(self, now: float) -> None:
        clock = self._clock
        if not isinstance(clock, RunningClock):
            raise ClockStateError("計時器不在播放狀態，無法暫停")
        self._clock = PausedClock(clock.started_at, clock.paused_total, paused_at=now)

    def on_resume(self, now: float) -> None:
        clock = self._clock
        if not isinstance(clock, PausedClock):
            raise ClockStateError("計時器不在暫停狀態，無法恢復")
        paused_for = max(0.0, now - clock.paused_at)
        self._clock = RunningClock(clock.started_at, clock.paused_total + paused_for)

    def since_start(self, now: float) -> float:
        """開始播放至今的經過秒數（不扣除暫停）"""
        if self._clock is None:
            return 0.0
        return max(0.0, now - self._clock.started_at)

    def elapsed_seconds(self, now: float) -> int:
        """
        實際播放秒數 = (now - 開始) - (累計暫停 + 進行中的暫停)，最小為 0
        """
        clock = self._clock
        if clock is None:
            return 0
        paused = clock.paused_total
        if isinstance(clock, PausedClock):
            paused += max(0.0, now - clock.paused_at)
        return max(0, math.floor(now - clock.started_at - paused))
