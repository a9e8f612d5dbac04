from dataclasses import dataclass
from enum import Enum
from typing import Optional, Tuple

from .track import Track


class PlaybackState(Enum):
    PLAYING = "playing"
    PAUSED = "paused"
    TERMINATING = "terminating"


class ViewMode(Enum):
    NOW_PLAYING = "now_playing"
    QUEUE = "queue"

    def toggled(self) -> "ViewMode":
        return ViewMode.QUEUE if self is ViewMode.NOW_PLAYING else ViewMode.NOW_PLAYING


@dataclass(frozen=True)
class SessionSnapshot:
    """提供給畫面渲染的唯讀狀態快照"""
    guild_id: int
    current: Optional[Track]
    upcoming: Tuple[Track, ...]
    history: Tuple[Track, ...]
    is_paused: bool
    view_mode: ViewMode
    elapsed_seconds: int

    @property
    def total_tracks(self) -> int:
        return len(self.upcoming) + (1 if self.current else 0)
