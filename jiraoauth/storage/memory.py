from __future__ import annotations

import threading
from typing import Dict, List, Optional

from jiraoauth.logging import get_logger
from jiraoauth.storage.models import AuthSession


class MemorySessionBackend:
    """Process-local session tier.

    Fastest tier and lost on restart or instance change, so it never bridges
    two processes on its own. Each critical section is a single dict access.
    """

    name = "memory"

    def __init__(self) -> None:
        self.logger = get_logger(__name__)
        self.sessions: Dict[str, AuthSession] = {}
        self._lock = threading.Lock()

    async def put(self, session: AuthSession, ttl_seconds: int) -> None:
        with self._lock:
            self.sessions[session.state] = session

    async def get(self, state: str) -> Optional[AuthSession]:
        with self._lock:
            return self.sessions.get(state)

    async def delete(self, state: str) -> bool:
        with self._lock:
            return self.sessions.pop(state, None) is not None

    async def list(self) -> List[AuthSession]:
        with self._lock:
            return list(self.sessions.values())

    async def clear(self) -> int:
        with self._lock:
            count = len(self.sessions)
            self.sessions.clear()
        self.logger.debug("memory_sessions_cleared", count=count)
        return count
