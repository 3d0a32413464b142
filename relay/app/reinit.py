"""Debounced destroy/initialize cycle for the messaging client."""
from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from typing import Optional

from .backend.base import MessagingClient
from .config import ReinitSettings
from .failures import signal_text

logger = logging.getLogger(__name__)


class ReinitScheduler:
    """Owns the single pending reinit timer and the in-flight reinit sequence.

    At most one timer is armed and at most one destroy/initialize sequence runs
    at any time. ``schedule()`` is a no-op while a job is pending or running.
    """

    def __init__(
        self,
        client: MessagingClient,
        settings: ReinitSettings,
        *,
        on_scheduled: Optional[Callable[[], None]] = None,
    ) -> None:
        self._client = client
        self.settings = settings
        self._on_scheduled = on_scheduled
        self._timer: Optional[asyncio.TimerHandle] = None
        self._run_task: Optional[asyncio.Task[None]] = None
        self._in_progress = False
        self._last_attempt_failed = False
        self._generation = 0
        self.attempts = 0

    @property
    def in_progress(self) -> bool:
        return self._in_progress

    @property
    def pending(self) -> bool:
        return self._timer is not None

    @property
    def last_attempt_failed(self) -> bool:
        return self._last_attempt_failed

    @property
    def next_delay(self) -> float:
        if self._last_attempt_failed:
            return self.settings.extended_delay_seconds
        return self.settings.base_delay_seconds

    def schedule(self) -> bool:
        """Arm a reinit after the backoff delay. Returns False if one is already pending/running."""
        if self._in_progress:
            return False
        self._in_progress = True
        if self._on_scheduled:
            self._on_scheduled()

        delay = self.next_delay
        logger.info("⏳ Reinitializing client in %.1f seconds...", delay)
        self._cancel_timer()
        self._generation += 1
        loop = asyncio.get_running_loop()
        self._timer = loop.call_later(delay, self._fire, self._generation)
        return True

    def cancel(self) -> None:
        """Drop an unfired timer and release the in-progress lock.

        A sequence that already started is left to finish; callers that must not
        overlap it await ``wait_idle()``.
        """
        self._cancel_timer()
        self._in_progress = False

    async def wait_idle(self) -> None:
        task = self._run_task
        if task and not task.done():
            await asyncio.shield(task)

    async def stop(self, timeout: float = 5.0) -> None:
        self._cancel_timer()
        task = self._run_task
        if task and not task.done():
            try:
                await asyncio.wait_for(asyncio.shield(task), timeout=timeout)
            except asyncio.TimeoutError:
                logger.warning("Reinit still running at shutdown; cancelling")
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass
        self._in_progress = False

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _fire(self, generation: int) -> None:
        self._timer = None
        self._run_task = asyncio.create_task(self._run(generation), name="client-reinit")

    async def _run(self, generation: int) -> None:
        self.attempts += 1
        try:
            await self.destroy_quietly(self.settings.destroy_timeout_seconds)
            await self._client.initialize()
            self._last_attempt_failed = False
            logger.info("Client reinitialized (attempt %d)", self.attempts)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            self._last_attempt_failed = True
            logger.error("Reinitialization failed: %s", signal_text(exc) or "unknown error")
        finally:
            # After a clear the lock may belong to a newer job.
            if generation == self._generation:
                self._in_progress = False

    async def destroy_quietly(self, timeout: float) -> None:
        try:
            await asyncio.wait_for(self._client.destroy(), timeout=timeout)
        except asyncio.TimeoutError:
            logger.debug("Client destroy timed out after %.1fs; continuing", timeout)
        except Exception as exc:
            logger.debug("Client destroy failed (ignored): %s", exc)


__all__ = ["ReinitScheduler"]
