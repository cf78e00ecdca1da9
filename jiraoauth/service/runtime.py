from __future__ import annotations

import threading
from typing import List, Optional, Sequence
from urllib.parse import urlparse, urlunparse

import httpx

from jiraoauth.config import Settings, get_settings, reset_settings_cache
from jiraoauth.logging import get_logger
from jiraoauth.service.auth import AuthService
from jiraoauth.service.authorize import AuthorizationRequestBuilder
from jiraoauth.service.sessions import SessionManager
from jiraoauth.service.sweeper import SessionSweeper
from jiraoauth.service.tokens import TokenExchangeClient
from jiraoauth.storage.chain import SessionStore
from jiraoauth.storage.common import SessionBackend
from jiraoauth.storage.files import FileSessionBackend
from jiraoauth.storage.memory import MemorySessionBackend
from jiraoauth.storage.redis_cache import RedisSessionBackend

logger = get_logger(__name__)


def _mask_url_password(url: Optional[str]) -> Optional[str]:
    """Mask the password in a URL so it can be logged.

    Example: redis://:mypassword@localhost:6379 -> redis://:***@localhost:6379
    """
    if not url:
        return url
    try:
        parsed = urlparse(url)
        if parsed.password:
            netloc = parsed.hostname or ""
            if parsed.port:
                netloc = f"{netloc}:{parsed.port}"
            if parsed.username:
                netloc = f"{parsed.username}:***@{netloc}"
            else:
                netloc = f":***@{netloc}"
            return urlunparse(
                (parsed.scheme, netloc, parsed.path, parsed.params, parsed.query, parsed.fragment)
            )
        return url
    except ValueError:
        return "***url_parse_error***"


def build_backends(settings: Settings) -> List[SessionBackend]:
    """Instantiate the configured session tiers in order, skipping unusable ones."""
    backends: List[SessionBackend] = []
    for name in settings.session_backends:
        if name == "memory":
            backends.append(MemorySessionBackend())
        elif name == "file":
            backends.append(FileSessionBackend(settings.session_dir))
        elif name == "redis":
            if not settings.redis_url:
                logger.info("redis_backend_skipped", reason="redis_url_missing")
                continue
            backend = RedisSessionBackend(settings.redis_url)
            try:
                backend.verify_connection()
            except Exception as exc:
                logger.warning(
                    "redis_disabled_fallback",
                    redis_url=_mask_url_password(settings.redis_url),
                    error=str(exc),
                    message="Continuing without the Redis session tier.",
                )
                continue
            backends.append(backend)
    if not any(backend.name != "memory" for backend in backends):
        logger.warning(
            "oauth_no_durable_backend",
            message="Sessions will not survive a restart or cross process boundaries.",
        )
    return backends


class Runtime:
    """Holds the single instance of each OAuth engine component."""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        *,
        backends: Optional[Sequence[SessionBackend]] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.settings.validate_for_startup()

        resolved = list(backends) if backends is not None else build_backends(self.settings)
        self.store = SessionStore(resolved, ttl_seconds=self.settings.session_ttl_seconds)
        self.sessions = SessionManager(self.store, ttl_seconds=self.settings.session_ttl_seconds)
        self.builder = AuthorizationRequestBuilder(self.settings, self.sessions)
        self.tokens = TokenExchangeClient(self.settings, self.sessions, http_client=http_client)
        self.sweeper = SessionSweeper(
            self.sessions, interval=self.settings.session_sweep_interval_seconds
        )
        self.auth = AuthService(self.settings, self.sessions, self.builder, self.tokens)
        logger.info(
            "runtime_initialized",
            backends=self.store.backend_names,
            cloud=self.settings.is_cloud,
            ttl_seconds=self.settings.session_ttl_seconds,
        )

    async def start(self) -> None:
        await self.sweeper.start()

    async def shutdown(self) -> None:
        await self.sweeper.stop()
        await self.tokens.aclose()
        for backend in self.store.backends:
            close = getattr(backend, "close", None)
            if close is not None:
                await close()


_runtime: Optional[Runtime] = None
_runtime_lock = threading.Lock()


def get_runtime() -> Runtime:
    global _runtime
    if _runtime is None:
        with _runtime_lock:
            if _runtime is None:
                _runtime = Runtime()
    return _runtime


def reset_runtime_for_tests() -> None:
    """Drop the cached runtime and settings so tests start clean."""

    global _runtime
    with _runtime_lock:
        _runtime = None
    reset_settings_cache()
