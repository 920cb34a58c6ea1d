"""
Background task: delete sessions whose expiry has passed.

Runs inside the API process on a fixed interval (``session_purge_interval_seconds``).
"""

from __future__ import annotations

import asyncio
from typing import Optional

import structlog

from gymsync.core.errors import TemporaryUnavailable
from gymsync.services.sessions import SessionStore

log = structlog.get_logger()


async def purge_expired_sessions(sessions: SessionStore) -> int:
    """One sweep. Returns the number of sessions deleted."""
    count = await sessions.purge_expired()
    if count:
        log.info("session_cleanup.batch_purged", count=count)
    return count


class SessionSweeper:
    """Calls ``purge_expired_sessions`` every ``interval`` seconds until stopped."""

    def __init__(self, sessions: SessionStore, *, interval: float):
        self.sessions = sessions
        self.interval = interval
        self._task: Optional[asyncio.Task] = None
        self._running = False

    @property
    def running(self) -> bool:
        return self._running

    async def start(self) -> None:
        self._running = True
        self._task = asyncio.create_task(self._sweep_loop())
        log.info("session_cleanup.started", interval=self.interval)

    async def stop(self) -> None:
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        log.info("session_cleanup.stopped")

    async def _sweep_loop(self) -> None:
        while self._running:
            try:
                await purge_expired_sessions(self.sessions)
            except TemporaryUnavailable:
                log.warning("session_cleanup.store_unavailable", retry_in=self.interval)
            await asyncio.sleep(self.interval)
