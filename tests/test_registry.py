import unittest
import asyncio
import os
import sys
from unittest.mock import AsyncMock, MagicMock

# 設定模組路徑
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from module.music_session.errors import VoiceConnectionError
from module.music_session.registry import SessionRegistry
from module.music_session.session import PlaybackSession
from tests.fakes import FakeClock, FakeResolver, FakeTransport, make_track, make_view_sync


class TestSessionRegistry(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self):
        self.registry = SessionRegistry()
        self.factory_calls = 0

    async def factory(self, guild_id=1):
        self.factory_calls += 1
        await asyncio.sleep(0)
        return PlaybackSession(
            guild_id,
            FakeTransport(),
            FakeResolver(),
            make_view_sync(),
            on_closed=lambda session: self.registry.discard(session.guild_id, session),
            clock=FakeClock(),
        )

    async def test_open_creates_and_reuses(self):
        first = await self.registry.open(1, self.factory)
        second = await self.registry.open(1, self.factory)
        self.assertIs(first, second)
        self.assertEqual(self.factory_calls, 1)
        self.assertIn(1, self.registry)
        self.assertIs(self.registry.get(1), first)

    async def test_concurrent_open_runs_factory_once(self):
        """測試：同一伺服器同時建立 Session 時只會建立一次"""
        sessions = await asyncio.gather(*(self.registry.open(1, self.factory) for _ in range(5)))
        self.assertEqual(self.factory_calls, 1)
        self.assertTrue(all(session is sessions[0] for session in sessions))

    async def test_guilds_are_independent(self):
        a = await self.registry.open(1, lambda: self.factory(1))
        b = await self.registry.open(2, lambda: self.factory(2))
        self.assertIsNot(a, b)
        self.assertEqual(len(self.registry), 2)

    async def test_factory_failure_registers_nothing(self):
        """測試：無法加入語音頻道時不會留下 Session"""
        failing = AsyncMock(side_effect=VoiceConnectionError("no permission"))
        with self.assertRaises(VoiceConnectionError):
            await self.registry.open(1, failing)
        self.assertNotIn(1, self.registry)
        self.assertIsNone(self.registry.get(1))
        session = await self.registry.open(1, self.factory)
        self.assertIs(self.registry.get(1), session)

    async def test_closed_session_is_deregistered(self):
        session = await self.registry.open(1, self.factory)
        await session.request_play([make_track("T1")])
        await session.stop()
        self.assertNotIn(1, self.registry)
        replacement = await self.registry.open(1, self.factory)
        self.assertIsNot(replacement, session)

    async def test_guild_lock_is_released_after_open(self):
        """測試：建立完成後不會為每個伺服器留下一把鎖"""
        await asyncio.gather(*(self.registry.open(1, self.factory) for _ in range(3)))
        await self.registry.open(2, lambda: self.factory(2))
        self.assertEqual(dict(self.registry._locks), {})
        self.assertEqual(dict(self.registry._lock_users), {})

    async def test_guild_lock_is_released_after_factory_failure(self):
        failing = AsyncMock(side_effect=VoiceConnectionError("no permission"))
        with self.assertRaises(VoiceConnectionError):
            await self.registry.open(1, failing)
        self.assertNotIn(1, self.registry._locks)

    async def test_open_waits_for_closing_session(self):
        """測試：舊 Session 正在釋放語音連線時，新的 Session 要等它結束才建立"""
        old = await self.registry.open(1, self.factory)
        await old.request_play([make_track("T1")])
        gate = asyncio.Event()
        release = old.transport.release

        async def slow_release():
            await gate.wait()
            await release()

        old.transport.release = slow_release
        stop_task = asyncio.create_task(old.stop())
        await asyncio.sleep(0)
        open_task = asyncio.create_task(self.registry.open(1, self.factory))
        for _ in range(5):
            await asyncio.sleep(0)
        self.assertTrue(old.closed)
        self.assertFalse(open_task.done())
        self.assertEqual(self.factory_calls, 1)

        gate.set()
        await stop_task
        replacement = await open_task
        self.assertIsNot(replacement, old)
        self.assertEqual(old.transport.release_calls, 1)
        self.assertIs(self.registry.get(1), replacement)

    async def test_discard_checks_identity(self):
        session = await self.registry.open(1, self.factory)
        stranger = MagicMock()
        self.registry.discard(1, stranger)
        self.assertIs(self.registry.get(1), session)
        self.registry.discard(1, session)
        self.assertNotIn(1, self.registry)

    async def test_close_all_tears_down_every_session(self):
        a = await self.registry.open(1, lambda: self.factory(1))
        b = await self.registry.open(2, lambda: self.factory(2))
        await a.request_play([make_track("A")])
        await b.request_play([make_track("B")])
        await self.registry.close_all()
        self.assertTrue(a.closed and b.closed)
        self.assertEqual(a.transport.release_calls, 1)
        self.assertEqual(b.transport.release_calls, 1)
        self.assertEqual(len(self.registry), 0)


if __name__ == '__main__':
    unittest.main()
