"""Foreground runner — ticks an engine once per second in the current process."""

from __future__ import annotations

import logging
import time
from typing import Callable, Optional

from rhythmark.core.engine import PhaseTimerEngine, RunState, TimerEvent
from rhythmark.core.suspension import SuspensionTracker

logger = logging.getLogger(__name__)

_SECOND_MS = 1000
_POLL_SECONDS = 0.25

_LIVE_STATES = frozenset({RunState.RUNNING, RunState.PAUSED})


def _wall_ms() -> int:
    # time.monotonic stands still while the machine sleeps; wall time does not
    return int(time.time() * 1000)


class ForegroundRunner:
    """Drives *engine* from a polling loop until the run ends.

    Every poll counts the whole seconds due since the last second accounted
    for.  One due second is an ordinary :meth:`~PhaseTimerEngine.tick`.  More
    than one means the loop itself was not scheduled (the process was
    stopped, the laptop slept), so the gap goes through *tracker* and
    :meth:`~PhaseTimerEngine.reconcile` instead.
    """

    def __init__(
        self,
        engine: PhaseTimerEngine,
        tracker: SuspensionTracker,
        on_tick: Optional[Callable[[PhaseTimerEngine, list[TimerEvent]], None]] = None,
        clock_ms: Callable[[], int] = _wall_ms,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._engine = engine
        self._tracker = tracker
        self._on_tick = on_tick
        self._clock_ms = clock_ms
        self._sleep = sleep
        self._accounted_ms: Optional[int] = None

    def run(self) -> RunState:
        """Start the engine if needed and loop until it stops being live.

        ``KeyboardInterrupt`` resets the engine and ends the loop.  Returns the
        final run-state.
        """
        if self._engine.run_state not in _LIVE_STATES:
            self._engine.start()
        self._accounted_ms = self._clock_ms()
        try:
            while self._engine.run_state in _LIVE_STATES:
                self._sleep(_POLL_SECONDS)
                self.step()
        except KeyboardInterrupt:
            logger.info("interrupted, resetting")
            self._engine.reset()
        return self._engine.run_state

    def step(self) -> list[TimerEvent]:
        """Account for the time since the previous step and report it."""
        now = self._clock_ms()
        if self._accounted_ms is None:
            self._accounted_ms = now
        if self._engine.run_state is not RunState.RUNNING:
            # paused time is not owed to the engine
            self._accounted_ms = now
            return []

        due = (now - self._accounted_ms) // _SECOND_MS
        if due <= 0:
            if due < 0:
                logger.warning("clock moved back %dms", self._accounted_ms - now)
                self._accounted_ms = now
            return []

        if due == 1:
            events = self._engine.tick(now)
        else:
            self._tracker.on_suspend(self._accounted_ms, self._engine.run_state)
            due = self._tracker.on_resume(now)
            events = self._engine.reconcile(due)
        self._accounted_ms += due * _SECOND_MS

        if self._on_tick is not None:
            self._on_tick(self._engine, events)
        return events
