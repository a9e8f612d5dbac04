import unittest
import os
import sys
import time
from unittest.mock import MagicMock, patch

from yt_dlp.utils import DownloadError

# 設定模組路徑
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from module.music_session.errors import ResolutionError
from module.music_session.resolver import YTDLPResolver, detect_error_type
from tests.fakes import make_track


def patch_youtube_dl(info=None, error=None):
    """讓 yt_dlp.YoutubeDL(...).extract_info 回傳 info 或拋出 error"""
    ydl = MagicMock()
    if error is not None:
        ydl.extract_info.side_effect = error
    else:
        ydl.extract_info.return_value = info
    youtube_dl_cls = MagicMock()
    youtube_dl_cls.return_value.__enter__.return_value = ydl
    return patch("yt_dlp.YoutubeDL", youtube_dl_cls), youtube_dl_cls, ydl


class TestErrorClassification(unittest.TestCase):
    def test_known_messages(self):
        cases = {
            "ERROR: Sign in to confirm your age": "age_restricted",
            "This video contains content from UMG, who has blocked it on copyright grounds": "copyright",
            "Video unavailable. This video is not available in your country": "region_blocked",
            "ERROR: Private video. Sign in if you've been granted access": "private",
            "This video is no longer available because the YouTube account associated with this video has been terminated": "account_terminated",
            "Some brand new failure": "unknown",
        }
        for message, expected in cases.items():
            self.assertEqual(detect_error_type(message), expected, message)

    def test_is_playlist(self):
        resolver = YTDLPResolver()
        self.assertTrue(resolver.is_playlist("https://www.youtube.com/playlist?list=PL1"))
        self.assertTrue(resolver.is_playlist("https://www.youtube.com/watch?v=abc&list=PL1"))
        self.assertFalse(resolver.is_playlist("https://www.youtube.com/watch?v=abc"))
        self.assertFalse(resolver.is_playlist("lofi list=chill"))


class TestYTDLPResolver(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self):
        self.resolver = YTDLPResolver()

    async def test_search_query_takes_first_hit(self):
        """測試：關鍵字搜尋取第一筆結果"""
        info = {"entries": [{
            "id": "abc", "title": "Lofi Beats", "duration": 185.0,
            "webpage_url": "https://www.youtube.com/watch?v=abc",
            "thumbnails": [{"url": "small.jpg", "width": 120, "height": 90},
                           {"url": "big.jpg", "width": 1280, "height": 720}],
        }]}
        patcher, _, ydl = patch_youtube_dl(info)
        with patcher:
            track = await self.resolver.resolve("lofi beats", requested_by="user")
        ydl.extract_info.assert_called_once_with("ytsearch1:lofi beats", download=False)
        self.assertEqual(track.title, "Lofi Beats")
        self.assertEqual(track.duration, 185)
        self.assertEqual(track.source_url, "https://www.youtube.com/watch?v=abc")
        self.assertEqual(track.thumbnail_url, "big.jpg")
        self.assertEqual(track.requested_by, "user")

    async def test_url_is_resolved_directly(self):
        info = {"id": "xyz", "title": "Song", "duration": 90, "thumbnail": "t.jpg"}
        patcher, _, ydl = patch_youtube_dl(info)
        with patcher:
            track = await self.resolver.resolve("https://youtu.be/xyz")
        ydl.extract_info.assert_called_once_with("https://youtu.be/xyz", download=False)
        self.assertEqual(track.source_url, "https://www.youtube.com/watch?v=xyz")
        self.assertEqual(track.thumbnail_url, "t.jpg")

    async def test_no_search_results(self):
        patcher, _, _ = patch_youtube_dl({"entries": []})
        with patcher, self.assertRaises(ResolutionError) as ctx:
            await self.resolver.resolve("nothing matches this")
        self.assertEqual(ctx.exception.error_type, "not_found")

    async def test_download_error_is_classified(self):
        patcher, _, _ = patch_youtube_dl(error=DownloadError("ERROR: Sign in to confirm your age"))
        with patcher, self.assertRaises(ResolutionError) as ctx:
            await self.resolver.resolve("https://youtu.be/old")
        self.assertEqual(ctx.exception.error_type, "age_restricted")
        self.assertIn("年齡限制", ctx.exception.user_message)

    async def test_playlist_filters_invalid_entries(self):
        """測試：已刪除、私人或缺少 ID 的影片計入失敗數"""
        info = {"title": "My Mix", "entries": [
            {"id": "a", "title": "Alpha", "url": "https://www.youtube.com/watch?v=a", "duration": 100},
            {"id": "b", "title": "[Deleted video]"},
            {"id": "c", "title": "[Private video]"},
            {"id": None, "title": "No Id"},
            None,
            {"id": "d", "title": "Delta", "url": "d", "duration": None},
        ]}
        patcher, youtube_dl_cls, _ = patch_youtube_dl(info)
        with patcher:
            result = await self.resolver.resolve_playlist("https://www.youtube.com/playlist?list=PL1", max_items=50)
        self.assertEqual(result.title, "My Mix")
        self.assertEqual([t.title for t in result.tracks], ["Alpha", "Delta"])
        self.assertEqual(result.tracks[1].source_url, "https://www.youtube.com/watch?v=d")
        self.assertEqual(result.tracks[1].duration, 0)
        self.assertEqual(result.failed, 4)
        options = youtube_dl_cls.call_args.args[0]
        self.assertEqual(options["playlistend"], 50)
        self.assertEqual(options["extract_flat"], "in_playlist")

    async def test_playlist_respects_max_items(self):
        entries = [{"id": str(i), "title": f"T{i}", "url": f"https://www.youtube.com/watch?v={i}"} for i in range(10)]
        patcher, _, _ = patch_youtube_dl({"title": "Big", "entries": entries})
        with patcher:
            result = await self.resolver.resolve_playlist("https://www.youtube.com/playlist?list=PL2", max_items=3)
        self.assertEqual(len(result.tracks), 3)

    async def test_stream_returns_handle(self):
        track = make_track("Song")
        patcher, _, _ = patch_youtube_dl({"url": "https://rr1.googlevideo.com/audio"})
        with patcher:
            handle = await self.resolver.stream(track)
        self.assertEqual(handle.url, "https://rr1.googlevideo.com/audio")
        self.assertIs(handle.track, track)

    async def test_stream_without_url(self):
        patcher, _, _ = patch_youtube_dl({"title": "Song"})
        with patcher, self.assertRaises(ResolutionError) as ctx:
            await self.resolver.stream(make_track("Song"))
        self.assertEqual(ctx.exception.error_type, "no_stream")

    async def test_timeout(self):
        resolver = YTDLPResolver(extract_timeout=0.01)

        def slow_extract(target, options):
            time.sleep(0.2)
            return {}

        with patch.object(YTDLPResolver, "_extract_info", side_effect=slow_extract):
            with self.assertRaises(ResolutionError) as ctx:
                await resolver.resolve("https://youtu.be/slow")
        self.assertEqual(ctx.exception.error_type, "timeout")


if __name__ == '__main__':
    unittest.main()
