"""Background task that expires abandoned OAuth sessions.

Runs independently of request handling; each iteration lists the store once
and deletes expired sessions one key at a time.
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING, Optional

from jiraoauth.logging import get_logger

if TYPE_CHECKING:
    from jiraoauth.service.sessions import SessionManager

logger = get_logger(__name__)

DEFAULT_SWEEP_INTERVAL_SECONDS = 5 * 60
MAX_BACKOFF_SECONDS = 30 * 60


class SessionSweeper:
    """Periodically calls ``SessionManager.sweep``."""

    def __init__(
        self,
        sessions: "SessionManager",
        *,
        interval: float = DEFAULT_SWEEP_INTERVAL_SECONDS,
    ) -> None:
        self.sessions = sessions
        self.interval = interval
        self._running = False
        self._task: Optional[asyncio.Task] = None
        self.runs = 0

    @property
    def running(self) -> bool:
        return self._running

    async def start(self) -> None:
        """Start the background sweeper."""
        if self._running:
            logger.warning("session_sweeper_already_running")
            return

        self._running = True
        self._task = asyncio.create_task(self._run_loop())
        logger.info("session_sweeper_started", interval_seconds=self.interval)

    async def stop(self) -> None:
        """Stop the background sweeper."""
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info("session_sweeper_stopped")

    async def run_once(self) -> int:
        removed = await self.sessions.sweep()
        self.runs += 1
        return removed

    async def _run_loop(self) -> None:
        consecutive_errors = 0
        while self._running:
            try:
                await self.run_once()
                consecutive_errors = 0
            except Exception as exc:
                consecutive_errors += 1
                logger.error(
                    "session_sweeper_loop_error",
                    error=str(exc),
                    error_type=type(exc).__name__,
                    consecutive_errors=consecutive_errors,
                )
                if consecutive_errors > 3:
                    backoff = min(
                        MAX_BACKOFF_SECONDS, self.interval * (2 ** (consecutive_errors - 3))
                    )
                    logger.warning(
                        "session_sweeper_backoff",
                        backoff_seconds=backoff,
                        consecutive_errors=consecutive_errors,
                    )
                    await asyncio.sleep(backoff)
                    continue

            await asyncio.sleep(self.interval)
