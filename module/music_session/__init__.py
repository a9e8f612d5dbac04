"""
Music Session 子模組
-------------------
每個伺服器一個播放 Session：佇列、播放計時、暫停/上一首的狀態轉換，以及同步所有播放畫面

注意：音樂來源只支援 YouTube（透過 yt-dlp 解析串流位址，不下載檔案）

主要元件：
- PlaybackSession：單一伺服器的播放狀態機
- SessionRegistry：伺服器 → Session 的對照表
- MusicController：指令進入點，回傳給使用者的狀態文字
- QueueStore / TimeAccountant：佇列與播放計時
- ViewSynchronizer：追蹤並刷新播放畫面
- YTDLPResolver / VoiceTransport：歌曲解析與語音播放
- MusicEmbedManager / MusicPlayerButtons：嵌入訊息與控制按鈕
"""

from .controller import MusicController
from .embed_manager import MusicEmbedManager, RenderedView
from .button_manager import MusicPlayerButtons
from .errors import MusicError
from .queue_store import QueueStore
from .registry import SessionRegistry
from .resolver import YTDLPResolver
from .session import PlaybackSession
from .time_accountant import TimeAccountant
from .track import Track
from .transport import VoiceTransport
from .view_sync import SurfaceLocator, ViewSynchronizer

__all__ = [
    "MusicController",
    "MusicEmbedManager",
    "RenderedView",
    "MusicPlayerButtons",
    "MusicError",
    "QueueStore",
    "SessionRegistry",
    "YTDLPResolver",
    "PlaybackSession",
    "TimeAccountant",
    "Track",
    "VoiceTransport",
    "SurfaceLocator",
    "ViewSynchronizer",
]
