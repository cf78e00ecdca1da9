from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional, Tuple

from jiraoauth.logging import get_logger
from jiraoauth.service import pkce
from jiraoauth.service.errors import InvalidStateError, SessionExpiredError
from jiraoauth.storage.chain import SessionStore
from jiraoauth.storage.models import AuthSession

logger = get_logger(__name__)

DEFAULT_SESSION_TTL_SECONDS = 15 * 60
# Attempts to draw a state value that is not already live
_MAX_STATE_ATTEMPTS = 3


class SessionManager:
    """Creates, resolves, consumes and expires pending OAuth sessions.

    One instance is built at startup and shared by every caller. TTL is
    enforced at read time, so a record still physically present in a
    backend is treated as absent once it is too old.
    """

    def __init__(
        self,
        store: SessionStore,
        *,
        ttl_seconds: int = DEFAULT_SESSION_TTL_SECONDS,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive")
        self.store = store
        self.ttl_seconds = ttl_seconds
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def _now(self) -> datetime:
        return self._clock()

    async def _fresh_state(self) -> str:
        for _ in range(_MAX_STATE_ATTEMPTS):
            state = pkce.new_state()
            if await self.store.get(state, now=self._now()) is None:
                return state
            logger.warning("oauth_state_collision")
        raise RuntimeError("Unable to allocate a unique OAuth state")

    async def begin(
        self, redirect_uri: str, user_hint: Optional[str] = None
    ) -> Tuple[str, str]:
        """Create and persist a session.

        Returns:
            ``(state, code_challenge)`` for the authorization URL

        Raises:
            StoreUnavailableError: no backend could persist the session
        """
        verifier = pkce.new_code_verifier()
        session = AuthSession(
            state=await self._fresh_state(),
            code_verifier=verifier,
            redirect_uri=redirect_uri,
            created_at=self._now(),
            user_hint=user_hint,
        )
        await self.store.put(session, self.ttl_seconds)
        logger.info(
            "oauth_session_created",
            ttl_seconds=self.ttl_seconds,
            has_user_hint=user_hint is not None,
        )
        return session.state, pkce.challenge_for(verifier)

    async def resolve(self, state: str) -> AuthSession:
        """Look up a live session.

        Raises:
            InvalidStateError: unknown or already consumed state
            SessionExpiredError: session is older than the TTL (and is deleted)
        """
        if not state:
            raise InvalidStateError()
        session = await self.store.get(state, now=self._now())
        if session is None:
            logger.info("oauth_session_not_found")
            raise InvalidStateError()
        if session.is_expired(self.ttl_seconds, self._now()):
            age = int(session.age(self._now()).total_seconds())
            logger.info("oauth_session_expired", age_seconds=age, ttl_seconds=self.ttl_seconds)
            await self.store.delete(state)
            raise SessionExpiredError()
        return session

    async def consume(self, state: str) -> None:
        """Delete a session; deleting an absent state is not an error."""
        if not state:
            return
        deleted = await self.store.delete(state)
        logger.debug("oauth_session_consumed", deleted=deleted)

    async def sweep(self) -> int:
        """Delete every session past its TTL. Returns the number removed."""
        now = self._now()
        removed = 0
        for session in await self.store.list():
            if session.is_expired(self.ttl_seconds, now):
                await self.store.delete(session.state)
                removed += 1
        if removed:
            logger.info("oauth_sessions_swept", removed=removed)
        return removed

    async def clear_all(self) -> int:
        """Operator escape hatch: remove every session in every backend."""
        count = await self.store.clear()
        logger.warning("oauth_sessions_cleared", count=count, backends=self.store.backend_names)
        return count

    async def stats(self) -> Dict[str, Any]:
        now = self._now()
        sessions = await self.store.list()
        expired = sum(1 for s in sessions if s.is_expired(self.ttl_seconds, now))
        backend_stats = await self.store.stats()
        return {
            "active_sessions": len(sessions) - expired,
            "expired_sessions": expired,
            "ttl_seconds": self.ttl_seconds,
            **backend_stats,
        }
