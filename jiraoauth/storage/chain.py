"""Ordered chain of session backends.

Writes go to every tier; reads return the first hit and backfill the faster
tiers that missed. The in-process tier is an optimization only: a durable
tier is what lets a callback handled by a fresh process find a session
created elsewhere.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence

from jiraoauth.logging import get_logger
from jiraoauth.service.errors import StoreUnavailableError
from jiraoauth.storage.common import SessionBackend
from jiraoauth.storage.models import AuthSession

logger = get_logger(__name__)


class SessionStore:
    """Session persistence over backends ordered fastest first."""

    def __init__(
        self, backends: Sequence[SessionBackend], *, ttl_seconds: int = 900
    ) -> None:
        if not backends:
            raise ValueError("SessionStore requires at least one backend")
        self.backends: List[SessionBackend] = list(backends)
        self.ttl_seconds = ttl_seconds

    @property
    def backend_names(self) -> List[str]:
        return [backend.name for backend in self.backends]

    async def put(self, session: AuthSession, ttl_seconds: int) -> None:
        """Write to every backend; fail only if none accepted the session."""
        written: List[str] = []
        failures: Dict[str, str] = {}
        for backend in self.backends:
            try:
                await backend.put(session, ttl_seconds)
                written.append(backend.name)
            except Exception as exc:
                failures[backend.name] = str(exc)
                logger.warning(
                    "session_backend_put_failed",
                    backend=backend.name,
                    error_type=type(exc).__name__,
                    error=str(exc),
                )
        if not written:
            logger.error("session_store_unavailable", backends=self.backend_names)
            raise StoreUnavailableError(detail={"backends": list(failures)})
        logger.debug("session_stored", backends=written)

    async def get(self, state: str, *, now: Optional[datetime] = None) -> Optional[AuthSession]:
        """Return the first hit, backfilling faster tiers that missed.

        ``now`` is the caller's clock, used to size the backfilled TTL.
        """
        missed: List[SessionBackend] = []
        for backend in self.backends:
            try:
                session = await backend.get(state)
            except Exception as exc:
                logger.warning(
                    "session_backend_get_failed",
                    backend=backend.name,
                    error_type=type(exc).__name__,
                    error=str(exc),
                )
                continue
            if session is None:
                missed.append(backend)
                continue
            await self._backfill(session, missed, now)
            return session
        return None

    async def _backfill(
        self, session: AuthSession, backends: List[SessionBackend], now: Optional[datetime]
    ) -> None:
        # Backfilled entries never outlive the entry they were copied from
        remaining = max(1, self.ttl_seconds - int(session.age(now).total_seconds()))
        for backend in backends:
            try:
                await backend.put(session, remaining)
                logger.debug("session_backfilled", backend=backend.name)
            except Exception as exc:
                logger.warning(
                    "session_backfill_failed",
                    backend=backend.name,
                    error_type=type(exc).__name__,
                    error=str(exc),
                )

    async def delete(self, state: str) -> bool:
        """Best-effort delete from every backend; idempotent."""
        deleted = False
        for backend in self.backends:
            try:
                deleted = await backend.delete(state) or deleted
            except Exception as exc:
                logger.warning(
                    "session_backend_delete_failed",
                    backend=backend.name,
                    error_type=type(exc).__name__,
                    error=str(exc),
                )
        return deleted

    async def list(self) -> List[AuthSession]:
        """Union of all backends, one entry per state (earliest tier wins)."""
        seen: Dict[str, AuthSession] = {}
        for backend in self.backends:
            try:
                sessions = await backend.list()
            except Exception as exc:
                logger.warning(
                    "session_backend_list_failed",
                    backend=backend.name,
                    error_type=type(exc).__name__,
                    error=str(exc),
                )
                continue
            for session in sessions:
                seen.setdefault(session.state, session)
        return list(seen.values())

    async def clear(self) -> int:
        """Delete every session in every backend; returns distinct states removed."""
        states = {session.state for session in await self.list()}
        for backend in self.backends:
            try:
                removed = await backend.clear()
                logger.debug("session_backend_cleared", backend=backend.name, removed=removed)
            except Exception as exc:
                logger.warning(
                    "session_backend_clear_failed",
                    backend=backend.name,
                    error_type=type(exc).__name__,
                    error=str(exc),
                )
        return len(states)

    async def stats(self) -> Dict[str, Any]:
        backends: Dict[str, Any] = {}
        for backend in self.backends:
            try:
                backends[backend.name] = {"available": True, "sessions": len(await backend.list())}
            except Exception as exc:
                backends[backend.name] = {"available": False, "error": type(exc).__name__}
        return {"backends": backends}
