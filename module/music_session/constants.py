"""
音樂 Session 常數
"""

# 佇列
HISTORY_LIMIT = 10  # 已播放歷史最多保留幾首
REWIND_WINDOW = 10  # 開播幾秒內按「上一首」會回到上一首（含邊界）

# 播放清單
PLAYLIST_LIMIT = 50  # 單一播放清單最多載入幾首

# 畫面
REFRESH_INTERVAL = 5  # 播放畫面自動刷新間隔（秒）
SURFACE_DELETE_DELAY = 5  # 結束播放後延遲刪除播放畫面（秒）
QUEUE_UPCOMING_DISPLAY = 10
QUEUE_HISTORY_DISPLAY = 3
PROGRESS_BAR_LENGTH = 15
COLOR_PLAYING = 0x00FF88
COLOR_PAUSED = 0xFFA500
FOOTER_TEXT = "Noibat Music Player"

# yt-dlp
YTDLP_EXTRACT_TIMEOUT = 30
YTDLP_PLAYLIST_TIMEOUT = 90

# FFmpeg
FFMPEG_BEFORE_OPTIONS = "-reconnect 1 -reconnect_streamed 1 -reconnect_delay_max 5"
FFMPEG_OPTIONS = "-vn -loglevel error -ar 48000 -ac 2"
