"""Debounced background saves for open editing sessions.

Every change restarts a countdown; when the session has been quiet for the
configured interval the document is saved. Autosaves of one session are never
closer together than ``AUTOSAVE_MIN_GAP_SECONDS``.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable
from typing import Any

from spreadsheet_editor.utils.exceptions import SpreadsheetEditorError
from spreadsheet_editor.utils.logging import get_logger

logger = get_logger(__name__)

AUTOSAVE_MIN_GAP_SECONDS = 5.0


class Autosaver:
    """Debounced saver for one document.

    Args:
        save: Coroutine function performing the save.
        interval_seconds: Quiet period before saving; None disables autosave.
        min_gap_seconds: Minimum time between two autosaves.
        sleep: Awaitable sleep, replaceable in tests.
        clock: Monotonic clock, replaceable in tests.
    """

    def __init__(
        self,
        save: Callable[[], Awaitable[Any]],
        interval_seconds: float | None,
        *,
        min_gap_seconds: float = AUTOSAVE_MIN_GAP_SECONDS,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._save = save
        self.interval_seconds = interval_seconds
        self.min_gap_seconds = min_gap_seconds
        self._sleep = sleep
        self._clock = clock
        self._countdown: asyncio.Task[None] | None = None
        self._in_flight: set[asyncio.Task[None]] = set()
        self._writing: set[asyncio.Task[Any]] = set()
        self._last_autosave_at: float | None = None

    @property
    def enabled(self) -> bool:
        return self.interval_seconds is not None

    @property
    def scheduled(self) -> bool:
        return self._countdown is not None and not self._countdown.done()

    @property
    def delay_seconds(self) -> float:
        """Effective quiet period; never shorter than the minimum gap."""
        return max(self.interval_seconds or 0.0, self.min_gap_seconds)

    def schedule(self) -> None:
        """Restart the countdown after a change.

        A save that is already writing is left to finish; the new countdown
        covers whatever changed while it ran.
        """
        if not self.enabled:
            return
        self._stop_countdown()
        task = asyncio.create_task(self._run())
        self._countdown = task
        self._in_flight.add(task)
        task.add_done_callback(self._in_flight.discard)

    def cancel(self) -> None:
        """Drop a pending countdown; an autosave already writing still finishes."""
        self._stop_countdown()
        self._countdown = None

    def _stop_countdown(self) -> None:
        if self._countdown is not None and self._countdown not in self._writing:
            self._countdown.cancel()

    async def close(self) -> None:
        """Cancel every countdown and wait for the tasks to wind down."""
        tasks = list(self._in_flight)
        for task in tasks:
            task.cancel()
        self._countdown = None
        await asyncio.gather(*tasks, return_exceptions=True)

    async def wait_idle(self) -> None:
        """Wait until no countdown or autosave is running."""
        while self._in_flight:
            await asyncio.gather(*list(self._in_flight), return_exceptions=True)

    async def _run(self) -> None:
        await self._sleep(self.delay_seconds)
        if self._last_autosave_at is not None:
            remaining = self.min_gap_seconds - (self._clock() - self._last_autosave_at)
            if remaining > 0:
                logger.debug("Autosave throttled", retry_in_seconds=round(remaining, 3))
                await self._sleep(remaining)

        self._last_autosave_at = self._clock()
        current = asyncio.current_task()
        assert current is not None
        self._writing.add(current)
        try:
            await self._save()
        except SpreadsheetEditorError as e:
            logger.warning(
                "Autosave failed",
                error_code=e.error_code.value,
                error=e.message,
            )
        else:
            logger.info("Autosaved document")
        finally:
            self._writing.discard(current)
