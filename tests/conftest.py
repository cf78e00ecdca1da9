import asyncio
import inspect
import os
import sys
import tempfile
from pathlib import Path

# Environment must be in place before jiraoauth.config is imported anywhere
_test_tmp_dir = tempfile.mkdtemp(prefix="jiraoauth_test_")
os.environ.setdefault("OAUTH_SESSION_DIR", os.path.join(_test_tmp_dir, "sessions"))
os.environ.setdefault("OAUTH_SESSION_BACKENDS", "memory,file")
os.environ.setdefault("JIRA_OAUTH_CLIENT_ID", "test-client-id")
os.environ.setdefault("SERVER_URL", "http://localhost:3000")
os.environ.setdefault("LOG_LEVEL", "WARNING")

import httpx  # noqa: E402
import pytest  # noqa: E402

ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


from jiraoauth.config import Settings  # noqa: E402
from jiraoauth.service.runtime import reset_runtime_for_tests  # noqa: E402
from jiraoauth.service.sessions import SessionManager  # noqa: E402
from jiraoauth.storage.chain import SessionStore  # noqa: E402
from jiraoauth.storage.files import FileSessionBackend  # noqa: E402
from jiraoauth.storage.memory import MemorySessionBackend  # noqa: E402


@pytest.fixture(autouse=True)
def reset_runtime_state():
    reset_runtime_for_tests()
    yield
    reset_runtime_for_tests()


@pytest.fixture
def settings(tmp_path):
    return Settings(
        client_id="test-client-id",
        session_dir=str(tmp_path / "sessions"),
        session_backends=["memory", "file"],
    )


@pytest.fixture
def session_store(tmp_path):
    return SessionStore(
        [MemorySessionBackend(), FileSessionBackend(tmp_path / "sessions")],
        ttl_seconds=900,
    )


@pytest.fixture
def session_manager(session_store):
    return SessionManager(session_store, ttl_seconds=900)


class RecordingTransport(httpx.MockTransport):
    """MockTransport that keeps every request it served."""

    def __init__(self, handler):
        self.requests = []

        def _record(request):
            self.requests.append(request)
            return handler(request)

        super().__init__(_record)


@pytest.fixture
def make_transport():
    return RecordingTransport


def pytest_pyfunc_call(pyfuncitem):
    if inspect.iscoroutinefunction(pyfuncitem.obj):
        call_kwargs = {
            name: pyfuncitem.funcargs[name]
            for name in pyfuncitem._fixtureinfo.argnames
            if name in pyfuncitem.funcargs
        }
        asyncio.run(pyfuncitem.obj(**call_kwargs))
        return True
    return None


def pytest_configure(config):
    config.addinivalue_line("markers", "asyncio: mark test as async")
