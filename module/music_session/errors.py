"""
音樂 Session 例外類別

每個例外都帶有 user_message，指令層直接用它回覆使用者。
"""
from typing import Optional


class MusicError(Exception):
    """所有音樂相關錯誤的基底類別"""
    user_message = "❌ 發生未預期的錯誤，請稍後再試。"

    def __init__(self, message: Optional[str] = None, *, user_message: Optional[str] = None):
        super().__init__(message or self.user_message)
        if user_message is not None:
            self.user_message = user_message


class NotInVoiceChannelError(MusicError):
    user_message = "❌ 你需要先加入語音頻道才能使用這個指令！"


class NothingPlayingError(MusicError):
    user_message = "❌ 目前沒有正在播放的歌曲！"


class ResolutionError(MusicError):
    """找不到或無法解析音樂來源"""
    user_message = "❌ 找不到這首歌曲！"

    def __init__(self, message: Optional[str] = None, *, error_type: str = "unknown", user_message: Optional[str] = None):
        super().__init__(message, user_message=user_message)
        self.error_type = error_type


class VoiceConnectionError(MusicError):
    user_message = "❌ 無法加入語音頻道，請確認機器人是否有權限。"


class PlaybackError(MusicError):
    user_message = "❌ 播放歌曲時發生錯誤。"


class SurfaceUnavailableError(MusicError):
    """播放畫面訊息已被刪除或無法存取，不會回報給使用者"""


class SessionClosedError(MusicError):
    """Session 已在處理指令前結束"""


class ClockStateError(MusicError):
    """計時器狀態轉換錯誤（例如重複暫停）"""
