from __future__ import annotations

from typing import Any, List, Optional

import redis.asyncio as aioredis
from redis import Redis
from redis.exceptions import RedisError

from jiraoauth.logging import get_logger
from jiraoauth.storage.common import decode_session, encode_session
from jiraoauth.storage.errors import BackendError
from jiraoauth.storage.models import AuthSession

KEY_PREFIX = "jiraoauth:oauth:session:"


class RedisSessionBackend:
    """Session tier in a shared Redis instance.

    Each session is one key holding the JSON record, with a Redis expiry equal
    to the session TTL so abandoned flows disappear even without a sweep.
    """

    name = "redis"

    def __init__(
        self,
        redis_url: Optional[str] = None,
        *,
        client: Any = None,
        socket_timeout: float = 5.0,
        key_prefix: str = KEY_PREFIX,
    ) -> None:
        if client is None and not redis_url:
            raise ValueError("redis_url or client is required")
        self.logger = get_logger(__name__)
        self.redis_url = redis_url
        self.key_prefix = key_prefix
        self.client = client or aioredis.from_url(
            redis_url,
            decode_responses=True,
            socket_timeout=socket_timeout,
            socket_connect_timeout=socket_timeout,
        )

    def _key(self, state: str) -> str:
        return f"{self.key_prefix}{state}"

    def verify_connection(self) -> None:
        """Assert Redis connectivity before adding this tier to the chain."""
        if not self.redis_url:
            return
        # Short-lived sync client so the async client is not bound to a
        # temporary event loop during startup checks.
        sync_client = Redis.from_url(self.redis_url, decode_responses=True)
        try:
            sync_client.ping()
        finally:
            sync_client.close()

    async def put(self, session: AuthSession, ttl_seconds: int) -> None:
        try:
            await self.client.set(
                self._key(session.state), encode_session(session), ex=max(1, int(ttl_seconds))
            )
        except (RedisError, OSError) as exc:
            raise BackendError(f"redis write failed: {exc}", backend=self.name) from exc

    async def get(self, state: str) -> Optional[AuthSession]:
        key = self._key(state)
        try:
            raw = await self.client.get(key)
        except (RedisError, OSError) as exc:
            raise BackendError(f"redis read failed: {exc}", backend=self.name) from exc
        if raw is None:
            return None
        try:
            return decode_session(raw)
        except ValueError as exc:
            self.logger.warning("redis_session_corrupt", error=str(exc))
            await self.delete(state)
            return None

    async def delete(self, state: str) -> bool:
        try:
            return bool(await self.client.delete(self._key(state)))
        except (RedisError, OSError) as exc:
            raise BackendError(f"redis delete failed: {exc}", backend=self.name) from exc

    async def _keys(self) -> List[str]:
        keys: List[str] = []
        async for key in self.client.scan_iter(match=f"{self.key_prefix}*"):
            keys.append(key)
        return keys

    async def list(self) -> List[AuthSession]:
        sessions: List[AuthSession] = []
        try:
            for key in await self._keys():
                raw = await self.client.get(key)
                if raw is None:
                    continue
                try:
                    sessions.append(decode_session(raw))
                except ValueError as exc:
                    self.logger.warning("redis_session_corrupt", error=str(exc))
                    await self.client.delete(key)
        except (RedisError, OSError) as exc:
            raise BackendError(f"redis scan failed: {exc}", backend=self.name) from exc
        return sessions

    async def clear(self) -> int:
        try:
            keys = await self._keys()
            if not keys:
                return 0
            return int(await self.client.delete(*keys))
        except (RedisError, OSError) as exc:
            raise BackendError(f"redis clear failed: {exc}", backend=self.name) from exc

    async def close(self) -> None:
        close = getattr(self.client, "aclose", None) or getattr(self.client, "close", None)
        if close is not None:
            await close()
