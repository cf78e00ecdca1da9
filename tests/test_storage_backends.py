"""Tests for the individual session backends."""

import fnmatch
import os
import stat

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from jiraoauth.storage.errors import BackendError
from jiraoauth.storage.files import FileSessionBackend
from jiraoauth.storage.memory import MemorySessionBackend
from jiraoauth.storage.models import AuthSession
from jiraoauth.storage.redis_cache import KEY_PREFIX, RedisSessionBackend


def _session(state="state-1"):
    return AuthSession(
        state=state,
        code_verifier="v" * 43,
        redirect_uri="http://localhost:3000/oauth/callback",
    )


class FakeRedis:
    """Minimal async stand-in for redis.asyncio.Redis."""

    def __init__(self):
        self.data = {}
        self.expiry = {}
        self.closed = False

    async def set(self, key, value, ex=None):
        self.data[key] = value
        self.expiry[key] = ex
        return True

    async def get(self, key):
        return self.data.get(key)

    async def delete(self, *keys):
        removed = 0
        for key in keys:
            if self.data.pop(key, None) is not None:
                removed += 1
        return removed

    async def scan_iter(self, match=None):
        for key in list(self.data):
            if match is None or fnmatch.fnmatch(key, match):
                yield key

    async def aclose(self):
        self.closed = True


class BrokenRedis(FakeRedis):
    async def set(self, key, value, ex=None):
        raise RedisConnectionError("connection refused")

    async def get(self, key):
        raise RedisConnectionError("connection refused")


class TestMemoryBackend:
    async def test_put_get_delete(self):
        backend = MemorySessionBackend()
        await backend.put(_session(), 900)
        assert (await backend.get("state-1")).code_verifier == "v" * 43
        assert await backend.delete("state-1") is True
        assert await backend.delete("state-1") is False
        assert await backend.get("state-1") is None

    async def test_clear_reports_count(self):
        backend = MemorySessionBackend()
        await backend.put(_session("a"), 900)
        await backend.put(_session("b"), 900)
        assert await backend.clear() == 2
        assert await backend.list() == []


class TestFileBackend:
    async def test_round_trip_and_permissions(self, tmp_path):
        backend = FileSessionBackend(tmp_path / "sessions")
        await backend.put(_session(), 900)

        files = list((tmp_path / "sessions").glob("*.json"))
        assert len(files) == 1
        # File names never contain the raw state
        assert "state-1" not in files[0].name
        assert stat.S_IMODE(os.stat(files[0]).st_mode) == 0o600
        assert (await backend.get("state-1")).redirect_uri.endswith("/oauth/callback")

    async def test_survives_new_instance(self, tmp_path):
        await FileSessionBackend(tmp_path).put(_session(), 900)
        assert await FileSessionBackend(tmp_path).get("state-1") is not None

    async def test_missing_session_returns_none(self, tmp_path):
        backend = FileSessionBackend(tmp_path)
        assert await backend.get("nope") is None
        assert await backend.delete("nope") is False

    async def test_corrupt_file_is_discarded(self, tmp_path):
        backend = FileSessionBackend(tmp_path)
        await backend.put(_session(), 900)
        path = backend._path_for("state-1")
        path.write_text("{not json", encoding="utf-8")

        assert await backend.get("state-1") is None
        assert not path.exists()

    async def test_list_and_clear(self, tmp_path):
        backend = FileSessionBackend(tmp_path)
        for state in ("a", "b", "c"):
            await backend.put(_session(state), 900)
        assert {s.state for s in await backend.list()} == {"a", "b", "c"}
        assert await backend.clear() == 3
        assert await backend.list() == []

    async def test_unwritable_root_raises_backend_error(self, tmp_path):
        blocker = tmp_path / "blocker"
        blocker.write_text("x", encoding="utf-8")
        backend = FileSessionBackend(blocker / "sessions")
        with pytest.raises(BackendError):
            await backend.put(_session(), 900)


class TestRedisBackend:
    async def test_put_sets_prefixed_key_with_expiry(self):
        client = FakeRedis()
        backend = RedisSessionBackend(client=client)
        await backend.put(_session(), 900)

        assert f"{KEY_PREFIX}state-1" in client.data
        assert client.expiry[f"{KEY_PREFIX}state-1"] == 900
        assert (await backend.get("state-1")).state == "state-1"

    async def test_ttl_never_below_one_second(self):
        client = FakeRedis()
        await RedisSessionBackend(client=client).put(_session(), 0)
        assert client.expiry[f"{KEY_PREFIX}state-1"] == 1

    async def test_corrupt_record_deleted(self):
        client = FakeRedis()
        client.data[f"{KEY_PREFIX}state-1"] = "garbage"
        backend = RedisSessionBackend(client=client)
        assert await backend.get("state-1") is None
        assert client.data == {}

    async def test_list_and_clear_only_touch_prefix(self):
        client = FakeRedis()
        client.data["unrelated"] = "keep"
        backend = RedisSessionBackend(client=client)
        await backend.put(_session("a"), 900)
        await backend.put(_session("b"), 900)

        assert {s.state for s in await backend.list()} == {"a", "b"}
        assert await backend.clear() == 2
        assert client.data == {"unrelated": "keep"}

    async def test_connection_errors_become_backend_errors(self):
        backend = RedisSessionBackend(client=BrokenRedis())
        with pytest.raises(BackendError):
            await backend.put(_session(), 900)
        with pytest.raises(BackendError):
            await backend.get("state-1")

    async def test_close_uses_aclose(self):
        client = FakeRedis()
        await RedisSessionBackend(client=client).close()
        assert client.closed

    def test_requires_url_or_client(self):
        with pytest.raises(ValueError):
            RedisSessionBackend()


class TestFileBackendThreading:
    async def test_disk_io_runs_off_the_event_loop(self, tmp_path):
        import threading

        backend = FileSessionBackend(tmp_path)
        loop_thread = threading.get_ident()
        seen = []
        original_write = backend._write

        def _recording_write(session):
            seen.append(threading.get_ident())
            original_write(session)

        backend._write = _recording_write
        await backend.put(_session(), 900)

        assert seen and seen[0] != loop_thread
        assert await backend.get("state-1") is not None
