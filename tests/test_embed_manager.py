import unittest
import os
import sys
from types import SimpleNamespace

# 設定模組路徑
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from module.music_session.button_manager import PLAY_PAUSE, VIEW_TOGGLE
from module.music_session.constants import COLOR_PAUSED, COLOR_PLAYING
from module.music_session.embed_manager import MusicEmbedManager, format_time
from module.music_session.state import SessionSnapshot, ViewMode
from tests.fakes import make_track


def snapshot(current, upcoming=(), history=(), is_paused=False, view_mode=ViewMode.NOW_PLAYING, elapsed=0):
    return SessionSnapshot(
        guild_id=1,
        current=current,
        upcoming=tuple(upcoming),
        history=tuple(history),
        is_paused=is_paused,
        view_mode=view_mode,
        elapsed_seconds=elapsed,
    )


class TestEmbedManager(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self):
        self.manager = MusicEmbedManager()
        self.requester = SimpleNamespace(id=7, mention="<@7>")
        self.song = make_track("Song", duration=200, requested_by=self.requester)

    def test_format_time(self):
        self.assertEqual(format_time(0), "0:00")
        self.assertEqual(format_time(65), "1:05")
        self.assertEqual(format_time(3600), "60:00")

    def test_progress_bar(self):
        bar = MusicEmbedManager.create_progress_bar(0, 100)
        self.assertTrue(bar.startswith("🔘"))
        self.assertEqual(bar.count("━"), 15)
        self.assertTrue(MusicEmbedManager.create_progress_bar(150, 100).endswith("🔘"))
        self.assertTrue(MusicEmbedManager.create_progress_bar(30, 0).startswith("🔘"))

    async def test_now_playing_layout(self):
        """測試：正在播放畫面顯示進度、點播者與狀態"""
        embed = self.manager.now_playing_embed(snapshot(self.song, elapsed=65))
        self.assertEqual(embed.author.name, "正在播放")
        self.assertEqual(embed.description, "**Song**")
        self.assertEqual(embed.fields[0].name, "1:05 / 3:20")
        self.assertIn("🔘", embed.fields[0].value)
        self.assertEqual(embed.fields[1].value, "<@7>")
        self.assertEqual(embed.color.value, COLOR_PLAYING)

    async def test_now_playing_paused_and_unknown_duration(self):
        track = make_track("Live", duration=0)
        embed = self.manager.now_playing_embed(snapshot(track, is_paused=True, elapsed=12))
        self.assertEqual(embed.author.name, "已暫停")
        self.assertEqual(embed.fields[0].name, "0:12 / --:--")
        self.assertEqual(embed.color.value, COLOR_PAUSED)

    async def test_queue_layout_truncates_and_lists_history(self):
        upcoming = [make_track(f"Next{i}", duration=60) for i in range(1, 13)]
        history = [make_track(f"Old{i}") for i in range(1, 5)]
        embed = self.manager.queue_embed(snapshot(self.song, upcoming, history))
        text = embed.description
        self.assertIn("**Song**", text)
        self.assertIn("`10.` **Next10** `[1:00]`", text)
        self.assertNotIn("Next11", text)
        self.assertIn("...還有 2 首歌曲", text)
        self.assertNotIn("Old1", text)
        self.assertLess(text.index("Old4"), text.index("Old2"))
        self.assertTrue(embed.footer.text.startswith("總共: 13 首"))

    async def test_queue_layout_empty_upcoming(self):
        embed = self.manager.queue_embed(snapshot(self.song))
        self.assertIn("*佇列是空的*", embed.description)
        self.assertNotIn("上一首", embed.description)

    async def test_render_follows_view_mode_and_pause_state(self):
        rendered = self.manager.render(snapshot(self.song, is_paused=True, view_mode=ViewMode.QUEUE))
        self.assertEqual(rendered.embed.author.name, "音樂佇列")
        buttons = {item.custom_id: item for item in rendered.view.children}
        self.assertEqual(set(buttons), {"rewind", PLAY_PAUSE, "skip", VIEW_TOGGLE})
        self.assertEqual(str(buttons[PLAY_PAUSE].emoji), "▶️")
        self.assertEqual(buttons[VIEW_TOGGLE].label, "📊 正在播放")

        rendered = self.manager.render(snapshot(self.song))
        buttons = {item.custom_id: item for item in rendered.view.children}
        self.assertEqual(str(buttons[PLAY_PAUSE].emoji), "⏸️")
        self.assertEqual(buttons[VIEW_TOGGLE].label, "📋 佇列")

    async def test_render_queue_has_no_buttons(self):
        rendered = self.manager.render_queue(snapshot(self.song))
        self.assertIsNone(rendered.view)

    def test_help_lists_commands(self):
        names = [field.name for field in self.manager.help_embed().fields]
        self.assertIn("/nowplaying", names)
        self.assertEqual(len(names), 8)


if __name__ == '__main__':
    unittest.main()
