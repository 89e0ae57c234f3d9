"""
Countdown timer for timed attempts.
"""
import asyncio
import logging
import time
from typing import Any, Awaitable, Callable, Optional

logger = logging.getLogger(__name__)


class AttemptTimer:
    """
    Counts down the time left on a timed attempt and fires once on expiry.

    The remaining time is recomputed from the attempt's start timestamp on
    every tick, so a slow event loop never stretches the allotted duration.
    """

    def __init__(
        self,
        attempt_id: str,
        started_at_ms: int,
        duration_seconds: int,
        clock: Callable[[], float] = time.time,
        tick_seconds: float = 1.0
    ):
        """
        Initialize the timer.

        Args:
            attempt_id: Attempt this timer belongs to (for logging)
            started_at_ms: Attempt start in epoch milliseconds
            duration_seconds: Allotted duration
            clock: Wall clock returning epoch seconds
            tick_seconds: Interval between checks
        """
        self.attempt_id = attempt_id
        self.started_at_ms = started_at_ms
        self.duration_seconds = duration_seconds
        self._clock = clock
        self._tick = tick_seconds
        self._task: Optional[asyncio.Task] = None
        self._is_cancelled = False
        self._expired = False

    @property
    def remaining_seconds(self) -> int:
        elapsed = self._clock() - self.started_at_ms / 1000
        return max(int(self.duration_seconds - elapsed), 0)

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def is_cancelled(self) -> bool:
        return self._is_cancelled

    @property
    def has_expired(self) -> bool:
        return self._expired

    def start(
        self,
        on_expire: Callable[[], Awaitable[Any]],
        on_tick: Optional[Callable[[int], Awaitable[Any]]] = None
    ) -> asyncio.Task:
        """Spawn the countdown task on the running loop."""
        if self.is_running:
            return self._task
        self._is_cancelled = False
        self._task = asyncio.create_task(self._run(on_expire, on_tick))
        logger.info(
            f"Attempt timer started for {self.attempt_id}, {self.remaining_seconds}s remaining",
            extra={
                'event_type': 'attempt_timer_started',
                'attempt_id': self.attempt_id,
                'remaining': self.remaining_seconds,
                'timestamp': time.time()
            }
        )
        return self._task

    async def _run(
        self,
        on_expire: Callable[[], Awaitable[Any]],
        on_tick: Optional[Callable[[int], Awaitable[Any]]]
    ) -> None:
        try:
            while not self._is_cancelled:
                remaining = self.remaining_seconds
                if remaining <= 0:
                    break
                if on_tick is not None:
                    await on_tick(remaining)
                await asyncio.sleep(min(self._tick, remaining))

            if self._is_cancelled:
                return

            self._expired = True
            logger.info(
                f"Attempt timer expired for {self.attempt_id}",
                extra={
                    'event_type': 'attempt_timer_expired',
                    'attempt_id': self.attempt_id,
                    'timestamp': time.time()
                }
            )
            await on_expire()
        except asyncio.CancelledError:
            self._is_cancelled = True
            raise

    def cancel(self) -> None:
        """Stop the countdown without firing the expiry callback."""
        self._is_cancelled = True
        if self._task is None or self._task.done():
            return
        # Called from the expiry callback itself: let it finish
        try:
            if self._task is asyncio.current_task():
                return
        except RuntimeError:
            pass
        self._task.cancel()
        logger.debug(f"Cancelled attempt timer for {self.attempt_id}")
