from dataclasses import dataclass
from typing import Any, Optional


@dataclass(frozen=True)
class Track:
    """
    已解析完成、可播放的歌曲

    建立後不會再被修改，依序存在於佇列或播放歷史其中之一。
    """
    title: str
    source_url: str
    duration: int = 0  # 秒，0 表示未知
    thumbnail_url: Optional[str] = None
    requested_by: Any = None

    def __post_init__(self):
        if self.duration < 0:
            raise ValueError("duration 不可為負數")

    @property
    def requester_mention(self) -> str:
        mention = getattr(self.requested_by, "mention", None)
        if mention:
            return mention
        requester_id = getattr(self.requested_by, "id", None)
        return f"<@{requester_id}>" if requester_id is not None else "未知"

    @property
    def duration_formatted(self) -> str:
        if self.duration <= 0:
            return "--:--"
        minutes, seconds = divmod(self.duration, 60)
        return f"{minutes}:{seconds:02d}"

    def __str__(self) -> str:
        return f"{self.title} [{self.duration_formatted}]"


@dataclass(frozen=True)
class StreamHandle:
    """可交給語音傳輸層播放的串流位址"""
    url: str
    track: Track
