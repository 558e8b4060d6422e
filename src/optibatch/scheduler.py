"""Debounce timer with a maximum-wait ceiling."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable

_logger = logging.getLogger(__name__)


class DebouncedScheduler:
    """Run *callback* once submissions go quiet, or when the ceiling hits.

    One logical timer, two deadlines:

    * quiet deadline: last ``arm()`` + ``quiet_period``
    * ceiling deadline: first ``arm()`` of the cycle + ``max_wait``

    The underlying handle is always scheduled at the earlier of the two.
    Times are event loop seconds (``loop.time()``).
    """

    def __init__(
        self,
        callback: Callable[[], None],
        *,
        quiet_period: float,
        max_wait: float,
        loop: asyncio.AbstractEventLoop | None = None,
    ) -> None:
        if max_wait < quiet_period:
            raise ValueError("max_wait must not be shorter than quiet_period")
        self._callback = callback
        self._quiet_period = quiet_period
        self._max_wait = max_wait
        self._loop = loop
        self._handle: asyncio.TimerHandle | None = None
        self._cycle_started_at: float | None = None
        self._deadline: float | None = None

    @property
    def armed(self) -> bool:
        return self._handle is not None

    @property
    def deadline(self) -> float | None:
        """Loop time at which the armed timer fires, or ``None``."""
        return self._deadline

    def _get_loop(self) -> asyncio.AbstractEventLoop:
        if self._loop is None:
            self._loop = asyncio.get_running_loop()
        return self._loop

    def arm(self) -> None:
        """Start a cycle, or push the quiet deadline of the current one."""
        loop = self._get_loop()
        now = loop.time()
        if self._cycle_started_at is None:
            self._cycle_started_at = now
        ceiling = self._cycle_started_at + self._max_wait
        deadline = min(now + self._quiet_period, ceiling)

        if self._handle is not None:
            self._handle.cancel()
        self._deadline = deadline
        self._handle = loop.call_at(deadline, self._fire)
        _logger.debug("Debounce armed deadline=%.3f ceiling=%.3f", deadline, ceiling)

    def cancel(self) -> None:
        """Drop the armed timer without running the callback."""
        if self._handle is not None:
            self._handle.cancel()
        self._reset()

    def fire_now(self) -> None:
        """Cancel the timer and run the callback immediately."""
        self.cancel()
        self._callback()

    def _reset(self) -> None:
        self._handle = None
        self._cycle_started_at = None
        self._deadline = None

    def _fire(self) -> None:
        _logger.debug("Debounce fired")
        # Reset first: the callback may lead to a new submission and arm().
        self._reset()
        self._callback()
