import asyncio
from dataclasses import dataclass, field
from typing import Any, List, Optional

import yt_dlp
from yt_dlp.utils import DownloadError
from loguru import logger

from .constants import PLAYLIST_LIMIT, YTDLP_EXTRACT_TIMEOUT, YTDLP_PLAYLIST_TIMEOUT
from .errors import ResolutionError
from .track import StreamHandle, Track

BASE_OPTIONS = {
    "quiet": True,
    "no_warnings": True,
    "noplaylist": True,
    "default_search": "ytsearch",
}

PLAYLIST_OPTIONS = {
    "quiet": True,
    "no_warnings": True,
    "extract_flat": "in_playlist",
}

STREAM_OPTIONS = {
    **BASE_OPTIONS,
    "format": "bestaudio/best",
}

INVALID_TITLE_PATTERNS = (
    "[deleted video]",
    "[private video]",
    "deleted video",
    "private video",
    "video unavailable",
)

ERROR_PATTERNS = {
    "age_restricted": ("sign in to confirm your age", "age-restricted", "inappropriate for some users"),
    "copyright": ("copyright grounds", "blocked it", "content owner", "has blocked"),
    "region_blocked": ("not available in your country",),
    "private": ("private video", "sign in if you've been granted access"),
    "account_terminated": ("account associated with this video has been terminated", "account has been terminated"),
    "unavailable": ("video unavailable", "this video is unavailable", "no longer available", "has been removed"),
}

USER_FRIENDLY_MESSAGES = {
    "age_restricted": "年齡限制",
    "copyright": "版權問題被阻擋",
    "private": "私人或不公開",
    "unavailable": "已不可用（可能已被刪除）",
    "account_terminated": "來源帳號已被終止",
    "region_blocked": "在此地區無法觀看",
    "not_found": "找不到搜尋結果",
    "no_stream": "找不到可播放的音訊串流",
    "timeout": "解析逾時",
    "empty_playlist": "播放清單中沒有可播放的歌曲",
    "unknown": "未知原因",
}


@dataclass
class PlaylistResult:
    title: str
    tracks: List[Track] = field(default_factory=list)
    failed: int = 0


def detect_error_type(error_message: str) -> str:
    """
    根據錯誤訊息檢測具體錯誤類型
    """
    lowered = error_message.lower()
    for error_type, phrases in ERROR_PATTERNS.items():
        if any(phrase in lowered for phrase in phrases):
            return error_type
    return "unknown"


def resolution_error(error_type: str, message: str) -> ResolutionError:
    display = USER_FRIENDLY_MESSAGES.get(error_type, USER_FRIENDLY_MESSAGES["unknown"])
    return ResolutionError(message, error_type=error_type, user_message=f"❌ 無法播放這首歌曲：{display}")


class YTDLPResolver:
    """
    使用 yt-dlp 解析歌曲資訊與串流位址，所有 yt-dlp 呼叫都在執行緒池中進行
    """

    def __init__(self, extract_timeout: int = YTDLP_EXTRACT_TIMEOUT, playlist_timeout: int = YTDLP_PLAYLIST_TIMEOUT):
        self.extract_timeout = extract_timeout
        self.playlist_timeout = playlist_timeout

    @staticmethod
    def is_url(query: str) -> bool:
        return query.startswith(("http://", "https://"))

    def is_playlist(self, query: str) -> bool:
        """
        判斷是否為播放清單網址
        """
        return self.is_url(query) and ("list=" in query or "/playlist" in query)

    async def resolve(self, query: str, requested_by: Any = None) -> Track:
        """
        解析單首歌曲：網址直接解析，其他文字取第一筆搜尋結果
        :raises ResolutionError: 找不到或無法解析
        """
        target = query if self.is_url(query) else f"ytsearch1:{query}"
        logger.info(f"解析歌曲資訊: {target}")
        info = await self._run(self._extract_info, target, BASE_OPTIONS, timeout=self.extract_timeout)
        if info.get("entries") is not None:
            entries = [entry for entry in info["entries"] if entry]
            if not entries:
                raise resolution_error("not_found", f"沒有搜尋結果: {query}")
            info = entries[0]
        track = self._to_track(info, requested_by)
        if track is None:
            raise resolution_error("unavailable", f"影片無法使用: {query}")
        return track

    async def resolve_playlist(self, url: str, max_items: int = PLAYLIST_LIMIT, requested_by: Any = None) -> PlaylistResult:
        """
        解析播放清單，最多取 max_items 首，無效的項目計入 failed
        :raises ResolutionError: 播放清單本身無法解析
        """
        logger.info(f"解析播放清單: {url}")
        options = {**PLAYLIST_OPTIONS, "playlistend": max_items}
        info = await self._run(self._extract_info, url, options, timeout=self.playlist_timeout)

        result = PlaylistResult(title=info.get("title") or "播放清單")
        for entry in list(info.get("entries") or [])[:max_items]:
            track = self._to_track(entry, requested_by) if entry else None
            if track is None:
                result.failed += 1
                continue
            result.tracks.append(track)

        if result.failed:
            logger.info(f"已從播放清單中過濾 {result.failed} 首無效歌曲")
        logger.info(f"已解析播放清單 {result.title}，共 {len(result.tracks)} 首有效歌曲")
        return result

    async def stream(self, track: Track) -> StreamHandle:
        """
        取得歌曲當下可用的串流位址
        :raises ResolutionError: 無法取得串流
        """
        info = await self._run(self._extract_info, track.source_url, STREAM_OPTIONS, timeout=self.extract_timeout)
        stream_url = info.get("url")
        if not stream_url:
            raise resolution_error("no_stream", f"找不到串流位址: {track.source_url}")
        return StreamHandle(url=stream_url, track=track)

    async def _run(self, func, target: str, options: dict, timeout: int) -> dict:
        loop = asyncio.get_running_loop()
        try:
            return await asyncio.wait_for(loop.run_in_executor(None, func, target, options), timeout=timeout)
        except asyncio.TimeoutError as e:
            logger.error(f"yt-dlp 解析逾時: {target}")
            raise resolution_error("timeout", f"解析逾時: {target}") from e
        except DownloadError as e:
            error_type = detect_error_type(str(e))
            logger.warning(f"yt-dlp 無法解析 ({error_type}): {target}")
            raise resolution_error(error_type, str(e)) from e

    @staticmethod
    def _extract_info(target: str, options: dict) -> dict:
        with yt_dlp.YoutubeDL(options) as ydl:
            info = ydl.extract_info(target, download=False)
        if not info:
            raise DownloadError(f"yt-dlp 沒有回傳任何資訊: {target}")
        return info

    @staticmethod
    def _is_valid_entry(entry: dict) -> bool:
        """
        檢查影片是否有效（非刪除、非私人）
        """
        title = (entry.get("title") or "").lower()
        if not title or not entry.get("id"):
            logger.warning(f"過濾無效影片 (標題或 ID 為空): {entry.get('url')}")
            return False
        for pattern in INVALID_TITLE_PATTERNS:
            if pattern in title:
                logger.warning(f"過濾無效影片 (標題含有 '{pattern}'): {title}")
                return False
        return True

    @staticmethod
    def _pick_best_thumbnail(entry: dict) -> Optional[str]:
        """
        取得最佳縮圖：先抓 thumbnail，沒有就從 thumbnails 陣列選最大尺寸
        """
        thumb = entry.get("thumbnail")
        if not thumb and entry.get("thumbnails"):
            best = max(entry["thumbnails"], key=lambda t: (t.get("width") or 0) * (t.get("height") or 0))
            thumb = best.get("url")
        return thumb or None

    def _to_track(self, entry: dict, requested_by: Any) -> Optional[Track]:
        if not self._is_valid_entry(entry):
            return None
        source_url = entry.get("webpage_url") or entry.get("url")
        if not source_url or not self.is_url(source_url):
            source_url = f"https://www.youtube.com/watch?v={entry['id']}"
        return Track(
            title=entry["title"],
            source_url=source_url,
            duration=int(entry.get("duration") or 0),
            thumbnail_url=self._pick_best_thumbnail(entry),
            requested_by=requested_by,
        )
