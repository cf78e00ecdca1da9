"""Tests for the session lifecycle manager and background sweeper."""

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from jiraoauth.service import pkce
from jiraoauth.service.errors import InvalidStateError, SessionExpiredError
from jiraoauth.service.sessions import SessionManager
from jiraoauth.service.sweeper import SessionSweeper
from jiraoauth.storage.chain import SessionStore
from jiraoauth.storage.files import FileSessionBackend
from jiraoauth.storage.memory import MemorySessionBackend

REDIRECT = "http://localhost:3000/oauth/callback"


class FakeClock:
    def __init__(self):
        self.now = datetime.now(timezone.utc)

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += timedelta(seconds=seconds)


def _manager(tmp_path, clock=None, ttl_seconds=900):
    store = SessionStore(
        [MemorySessionBackend(), FileSessionBackend(tmp_path)], ttl_seconds=ttl_seconds
    )
    return SessionManager(store, ttl_seconds=ttl_seconds, clock=clock)


class TestBeginResolve:
    async def test_begin_returns_challenge_for_stored_verifier(self, session_manager):
        state, challenge = await session_manager.begin(REDIRECT, "dev@example.com")
        session = await session_manager.resolve(state)
        assert pkce.challenge_for(session.code_verifier) == challenge
        assert session.redirect_uri == REDIRECT
        assert session.user_hint == "dev@example.com"

    async def test_each_begin_gets_distinct_state(self, session_manager):
        first, _ = await session_manager.begin(REDIRECT)
        second, _ = await session_manager.begin(REDIRECT)
        assert first != second

    async def test_unknown_or_empty_state_is_invalid(self, session_manager):
        with pytest.raises(InvalidStateError):
            await session_manager.resolve("never-issued")
        with pytest.raises(InvalidStateError):
            await session_manager.resolve("")

    async def test_resolve_does_not_consume(self, session_manager):
        state, _ = await session_manager.begin(REDIRECT)
        await session_manager.resolve(state)
        assert await session_manager.resolve(state) is not None

    def test_ttl_must_be_positive(self, session_store):
        with pytest.raises(ValueError):
            SessionManager(session_store, ttl_seconds=0)


class TestExpiry:
    async def test_expired_session_raises_and_is_deleted(self, tmp_path):
        clock = FakeClock()
        manager = _manager(tmp_path, clock=clock)
        state, _ = await manager.begin(REDIRECT)

        clock.advance(901)
        with pytest.raises(SessionExpiredError) as exc_info:
            await manager.resolve(state)
        # Indistinguishable from an unknown state to callers
        assert isinstance(exc_info.value, InvalidStateError)
        assert exc_info.value.error_code == "invalid_state"
        assert await manager.store.get(state) is None

    async def test_session_valid_right_up_to_ttl(self, tmp_path):
        clock = FakeClock()
        manager = _manager(tmp_path, clock=clock)
        state, _ = await manager.begin(REDIRECT)
        clock.advance(900)
        assert (await manager.resolve(state)).state == state

    async def test_sweep_removes_only_expired(self, tmp_path):
        clock = FakeClock()
        manager = _manager(tmp_path, clock=clock)
        old, _ = await manager.begin(REDIRECT)
        clock.advance(600)
        fresh, _ = await manager.begin(REDIRECT)
        clock.advance(400)

        assert await manager.sweep() == 1
        with pytest.raises(InvalidStateError):
            await manager.resolve(old)
        assert (await manager.resolve(fresh)).state == fresh


class TestConsumeAndClear:
    async def test_consume_is_idempotent(self, session_manager):
        state, _ = await session_manager.begin(REDIRECT)
        await session_manager.consume(state)
        await session_manager.consume(state)
        await session_manager.consume("")
        with pytest.raises(InvalidStateError):
            await session_manager.resolve(state)

    async def test_clear_all_invalidates_everything(self, session_manager):
        states = [(await session_manager.begin(REDIRECT))[0] for _ in range(3)]
        assert await session_manager.clear_all() == 3
        for state in states:
            with pytest.raises(InvalidStateError):
                await session_manager.resolve(state)

    async def test_stats_counts_active_and_expired(self, tmp_path):
        clock = FakeClock()
        manager = _manager(tmp_path, clock=clock)
        await manager.begin(REDIRECT)
        clock.advance(1000)
        await manager.begin(REDIRECT)

        stats = await manager.stats()
        assert stats["active_sessions"] == 1
        assert stats["expired_sessions"] == 1
        assert stats["ttl_seconds"] == 900
        assert set(stats["backends"]) == {"memory", "file"}


class TestSweeper:
    async def test_run_once_sweeps(self, tmp_path):
        clock = FakeClock()
        manager = _manager(tmp_path, clock=clock)
        await manager.begin(REDIRECT)
        clock.advance(901)

        sweeper = SessionSweeper(manager, interval=60)
        assert await sweeper.run_once() == 1
        assert sweeper.runs == 1

    async def test_start_and_stop(self, session_manager):
        sweeper = SessionSweeper(session_manager, interval=0.01)
        await sweeper.start()
        assert sweeper.running
        await asyncio.sleep(0.05)
        await sweeper.stop()
        assert not sweeper.running
        assert sweeper.runs >= 1

    async def test_loop_survives_errors(self, session_manager):
        class ExplodingManager:
            calls = 0

            async def sweep(self):
                ExplodingManager.calls += 1
                raise RuntimeError("store offline")

        sweeper = SessionSweeper(ExplodingManager(), interval=0.01)
        await sweeper.start()
        await asyncio.sleep(0.05)
        await sweeper.stop()
        assert ExplodingManager.calls >= 2


class TestBackfillClock:
    async def test_backfill_ttl_follows_manager_clock(self, tmp_path):
        class RecordingMemory(MemorySessionBackend):
            def __init__(self):
                super().__init__()
                self.ttls = []

            async def put(self, session, ttl_seconds):
                self.ttls.append(ttl_seconds)
                await super().put(session, ttl_seconds)

        clock = FakeClock()
        files = FileSessionBackend(tmp_path)
        writer = SessionManager(SessionStore([files], ttl_seconds=900), clock=clock)
        state, _ = await writer.begin(REDIRECT)

        clock.advance(300)
        memory = RecordingMemory()
        reader = SessionManager(
            SessionStore([memory, files], ttl_seconds=900), ttl_seconds=900, clock=clock
        )
        await reader.resolve(state)

        assert memory.ttls == [600]
