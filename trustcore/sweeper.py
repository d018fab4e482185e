"""
Background Sweeper

Periodic maintenance owned by the host process:
- every ``flush_interval`` seconds: deliver queued security events
- every ``interval`` seconds: sweep expired lockout, rate-limit, token
  and session state

Started and stopped explicitly (FastAPI lifespan). Work runs in a worker
thread so store locks never block the event loop; a failing pass is
logged and the loop keeps going.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

from trustcore.orchestrator import TrustOrchestrator


logger = logging.getLogger(__name__)


class BackgroundSweeper:
    """Cancellable periodic sweep task."""

    def __init__(
        self,
        orchestrator: TrustOrchestrator,
        interval: float = 300.0,
        flush_interval: float = 5.0,
    ) -> None:
        if interval <= 0 or flush_interval <= 0:
            raise ValueError("Sweep intervals must be positive")
        self.orchestrator = orchestrator
        self.interval = interval
        self.flush_interval = min(flush_interval, interval)
        self._task: Optional[asyncio.Task] = None
        self._pass: Optional[asyncio.Future] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> asyncio.Task:
        """Schedule the loop on the running event loop."""
        if self.running:
            return self._task
        self._task = asyncio.get_running_loop().create_task(self._run(), name="trust-sweeper")
        logger.info(f"Background sweeper started (interval={self.interval}s)")
        return self._task

    async def stop(self) -> None:
        """
        Cancel the loop and wait for it to finish; flushes events once more.

        A pass already running in the worker thread is awaited, so the
        orchestrator can be closed as soon as this returns.
        """
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None

        if self._pass is not None:
            await self._pass
            self._pass = None
        await asyncio.to_thread(self.run_once, False)
        logger.info("Background sweeper stopped")

    def run_once(self, sweep: bool = True) -> None:
        """One maintenance pass; exceptions are logged, not raised."""
        try:
            self.orchestrator.flush_events()
        except Exception as e:
            logger.error(f"Security event flush failed: {e}")

        if not sweep:
            return
        try:
            removed = self.orchestrator.sweep()
            if any(removed.values()):
                logger.info(f"Sweep removed {removed}")
        except Exception as e:
            logger.exception(f"Sweep failed: {e}")

    async def _run(self) -> None:
        loop = asyncio.get_running_loop()
        last_sweep = loop.time()
        while True:
            await asyncio.sleep(self.flush_interval)
            due = loop.time() - last_sweep >= self.interval
            self._pass = asyncio.ensure_future(asyncio.to_thread(self.run_once, due))
            await asyncio.shield(self._pass)
            self._pass = None
            if due:
                last_sweep = loop.time()
