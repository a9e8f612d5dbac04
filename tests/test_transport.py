import unittest
import asyncio
import os
import sys
from unittest.mock import AsyncMock, MagicMock, patch

import discord

# 設定模組路徑
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from module.music_session.errors import PlaybackError, VoiceConnectionError
from module.music_session.track import StreamHandle
from module.music_session.transport import VoiceTransport
from tests.fakes import make_track


class TestVoiceTransport(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self):
        self.voice_client = MagicMock()
        self.voice_client.is_playing.return_value = False
        self.voice_client.is_paused.return_value = False
        self.voice_client.disconnect = AsyncMock()
        self.transport = VoiceTransport(self.voice_client, "ffmpeg", asyncio.get_running_loop())
        self.events = []
        self.transport.set_listener(lambda generation, error: self.events.append((generation, error)))
        self.source_patch = patch.object(VoiceTransport, "_create_audio_source", return_value=MagicMock())
        self.source_patch.start()
        self.stream = StreamHandle(url="stream://a", track=make_track("A"))

    async def asyncTearDown(self):
        self.source_patch.stop()

    async def test_play_increments_generation(self):
        self.assertEqual(self.transport.play(self.stream), 1)
        self.assertEqual(self.transport.play(self.stream), 2)
        self.assertEqual(self.transport.generation, 2)

    async def test_finish_callback_carries_generation(self):
        """測試：音頻執行緒的結束回調帶著當次 generation 回到事件循環"""
        self.transport.play(self.stream)
        after = self.voice_client.play.call_args.kwargs["after"]
        after(None)
        await asyncio.sleep(0)
        self.assertEqual(self.events, [(1, None)])

    async def test_replaying_stops_current_first(self):
        self.voice_client.is_playing.return_value = True
        self.transport.play(self.stream)
        self.voice_client.stop.assert_called_once()

    async def test_play_failure_raises_playback_error(self):
        self.voice_client.play.side_effect = discord.ClientException("Not connected to voice.")
        with self.assertRaises(PlaybackError):
            self.transport.play(self.stream)

    async def test_pause_resume_only_when_applicable(self):
        self.transport.pause()
        self.voice_client.pause.assert_not_called()
        self.voice_client.is_playing.return_value = True
        self.transport.pause()
        self.voice_client.pause.assert_called_once()
        self.voice_client.is_paused.return_value = True
        self.transport.resume()
        self.voice_client.resume.assert_called_once()

    async def test_release_is_idempotent(self):
        await self.transport.release()
        await self.transport.release()
        self.voice_client.disconnect.assert_awaited_once()
        self.assertTrue(self.transport.released)

    async def test_use_after_release_is_rejected(self):
        await self.transport.release()
        with self.assertRaises(PlaybackError):
            self.transport.play(self.stream)
        with self.assertRaises(PlaybackError):
            self.transport.stop()

    async def test_connect_failure(self):
        channel = MagicMock()
        channel.connect = AsyncMock(side_effect=asyncio.TimeoutError())
        with self.assertRaises(VoiceConnectionError):
            await VoiceTransport.connect(channel, "ffmpeg")

    async def test_connect_success(self):
        channel = MagicMock()
        channel.connect = AsyncMock(return_value=self.voice_client)
        transport = await VoiceTransport.connect(channel, "ffmpeg")
        self.assertIs(transport.voice_client, self.voice_client)
        self.assertEqual(transport.generation, 0)


if __name__ == '__main__':
    unittest.main()
