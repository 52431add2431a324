"""Fixed-window admission limiter.

Admits at most ``capacity`` callers per window. Permits are never
released by callers: a background task restores the whole pool at every
window boundary, so the external rate ceiling holds even when a call
hangs or fails half-way. The price is bursty admission at the start of
each window rather than smooth pacing.
"""

import asyncio
from collections import deque
from datetime import timedelta
from typing import Optional

from crptapi.app.core.logging import get_logger
from crptapi.app.exceptions import CancellationError, ConfigurationError
from crptapi.app.rate_limit.models import WindowStats

logger = get_logger(__name__)


class WindowLimiter:
    """Counting admission gate refilled on a fixed-rate timer.

    The pool state (``_available`` and the waiter queue) is only touched
    in synchronous sections, so it is consistent for every task on the
    owning event loop. Each blocked caller parks on its own future; a
    reset hands permits directly to queued futures in FIFO order.

    Usage:
        async with WindowLimiter(capacity=10, window=1.0) as limiter:
            await limiter.acquire()
            await call_api()
    """

    DEFAULT_STOP_TIMEOUT = 5.0

    def __init__(
        self,
        capacity: int,
        window: timedelta | float,
        *,
        name: str = "crpt",
        stop_timeout: float = DEFAULT_STOP_TIMEOUT,
    ):
        """Initialize the limiter.

        Args:
            capacity: Maximum admissions per window (>= 1)
            window: Window length as timedelta or seconds (> 0)
            name: Label used in logs and the reset task name
            stop_timeout: Seconds to wait for the reset task on stop()

        Raises:
            ConfigurationError: If capacity or window is out of range.
        """
        if isinstance(window, timedelta):
            window = window.total_seconds()
        if capacity < 1:
            raise ConfigurationError("Limiter capacity must be at least 1")
        if window <= 0:
            raise ConfigurationError("Limiter window must be positive")

        self.name = name
        self._capacity = capacity
        self._window = float(window)
        self._stop_timeout = stop_timeout
        self._available = capacity
        self._waiters: deque[asyncio.Future[None]] = deque()
        self._resets = 0
        self._task: Optional[asyncio.Task[None]] = None
        self._stop_event: Optional[asyncio.Event] = None
        self._stopping = False

    @property
    def capacity(self) -> int:
        return self._capacity

    @property
    def window(self) -> float:
        """Window length in seconds."""
        return self._window

    @property
    def available(self) -> int:
        return self._available

    @property
    def waiting(self) -> int:
        return sum(1 for fut in self._waiters if not fut.done())

    @property
    def resets(self) -> int:
        """Number of window boundaries passed since construction."""
        return self._resets

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def stats(self) -> WindowStats:
        return WindowStats(
            capacity=self._capacity,
            available=self._available,
            waiting=self.waiting,
            resets=self._resets,
            running=self.running,
        )

    async def acquire(self, cancel_event: Optional[asyncio.Event] = None) -> None:
        """Wait for a permit and consume it.

        Blocks without a timeout. Starts the reset task on first use.

        Args:
            cancel_event: Optional external cancel signal. Setting it
                abandons the wait.

        Raises:
            CancellationError: If cancel_event is set before a permit is
                granted, or the limiter is stopped while waiting or
                is being stopped.
            asyncio.CancelledError: If the awaiting task is cancelled.
        """
        if cancel_event is not None and cancel_event.is_set():
            raise CancellationError()

        self.start()

        if self._available > 0 and not self._waiters:
            self._available -= 1
            logger.debug(
                f"Permit granted ({self._available}/{self._capacity} left)",
                extra={"window": self._resets},
            )
            return

        fut: asyncio.Future[None] = asyncio.get_running_loop().create_future()
        self._waiters.append(fut)
        try:
            await self._wait(fut, cancel_event)
        except BaseException:
            self._abandon(fut)
            raise
        logger.debug("Permit granted after wait", extra={"window": self._resets})

    async def _wait(
        self, fut: asyncio.Future[None], cancel_event: Optional[asyncio.Event]
    ) -> None:
        if cancel_event is None:
            await fut
            return

        cancel_waiter = asyncio.ensure_future(cancel_event.wait())
        try:
            await asyncio.wait(
                (fut, cancel_waiter), return_when=asyncio.FIRST_COMPLETED
            )
        finally:
            cancel_waiter.cancel()

        # A grant that raced with the cancel signal still counts as admitted.
        if fut.done() and not fut.cancelled():
            fut.result()
            return
        raise CancellationError()

    def _abandon(self, fut: asyncio.Future[None]) -> None:
        """Clean up after a waiter that leaves without its permit."""
        if fut.done() and not fut.cancelled() and fut.exception() is None:
            # Granted, but the caller was cancelled before resuming.
            self._available += 1
            self._grant_waiters()
            return
        fut.cancel()
        try:
            self._waiters.remove(fut)
        except ValueError:
            pass

    def _grant_waiters(self) -> None:
        while self._available > 0 and self._waiters:
            fut = self._waiters.popleft()
            if fut.done():
                continue
            fut.set_result(None)
            self._available -= 1

    def reset(self) -> None:
        """Restore the pool to full capacity and admit queued waiters."""
        self._resets += 1
        self._available = self._capacity
        self._grant_waiters()
        logger.debug(
            f"Window reset, {self.waiting} still waiting",
            extra={"window": self._resets},
        )

    def start(self) -> None:
        """Start the background reset task if it is not running.

        Must be called from within a running event loop. The stop event is
        created per start, so a limiter can be reused on a later loop.

        Raises:
            CancellationError: If a stop() is in progress.
        """
        if self._stopping:
            raise CancellationError("Rate limiter stopped")
        if self.running:
            return
        self._stop_event = asyncio.Event()
        self._task = asyncio.get_running_loop().create_task(
            self._run(self._stop_event), name=f"window-limiter-{self.name}"
        )
        logger.info(
            f"Started window limiter '{self.name}' "
            f"({self._capacity} per {self._window}s)"
        )

    async def stop(self) -> None:
        """Stop the reset task and fail anyone still waiting.

        Waiters receive CancellationError, as does any acquire() made
        while the stop is in progress. The limiter restarts on the next
        acquire() after stop() returns.
        """
        task = self._task
        if task is None or self._stopping:
            return

        self._stopping = True
        try:
            if self._stop_event is not None:
                self._stop_event.set()
            try:
                if not task.done():
                    await asyncio.wait_for(task, timeout=self._stop_timeout)
            except asyncio.TimeoutError:
                logger.warning("Window reset task did not stop gracefully, cancelling")
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass
            finally:
                if self._task is task:
                    self._task = None
                    self._stop_event = None

            while self._waiters:
                fut = self._waiters.popleft()
                if not fut.done():
                    fut.set_exception(CancellationError("Rate limiter stopped"))
        finally:
            self._stopping = False
        logger.info(f"Stopped window limiter '{self.name}'")

    async def _run(self, stop_event: asyncio.Event) -> None:
        """Fixed-rate reset loop anchored to the event loop clock."""
        loop = asyncio.get_running_loop()
        next_reset = loop.time() + self._window
        while not stop_event.is_set():
            try:
                await asyncio.wait_for(
                    stop_event.wait(),
                    timeout=max(0.0, next_reset - loop.time()),
                )
            except asyncio.TimeoutError:
                pass
            if stop_event.is_set():
                break
            self.reset()
            next_reset += self._window
            # Missed boundaries are skipped, never replayed as a burst.
            now = loop.time()
            if next_reset <= now:
                next_reset = now + self._window

    async def __aenter__(self) -> "WindowLimiter":
        self.start()
        return self

    async def __aexit__(self, *args: object) -> None:
        await self.stop()
