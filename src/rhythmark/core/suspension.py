"""Suspension tracking — measures how long the engine's clock stood still."""

from __future__ import annotations

import logging
from typing import Optional

from rhythmark.core.engine import RunState

logger = logging.getLogger(__name__)


class SuspensionTracker:
    """Records when ticking stopped and reports the gap on resumption.

    Only one episode is tracked at a time; a second :meth:`on_suspend` before
    the matching :meth:`on_resume` replaces the first timestamp.
    """

    def __init__(self, suspended_at_ms: Optional[int] = None) -> None:
        self.suspended_at_ms: Optional[int] = suspended_at_ms

    @property
    def is_armed(self) -> bool:
        return self.suspended_at_ms is not None

    def on_suspend(self, now_ms: int, run_state: RunState) -> None:
        """Arm the tracker at *now_ms*, but only for a RUNNING engine."""
        if run_state is not RunState.RUNNING:
            logger.debug("suspend ignored in %s state", run_state.value)
            return
        self.suspended_at_ms = now_ms

    def on_resume(self, now_ms: int) -> int:
        """Disarm and return the whole seconds elapsed since :meth:`on_suspend`.

        Returns 0 when not armed.  Partial seconds are dropped and a clock
        that went backwards yields 0.
        """
        if self.suspended_at_ms is None:
            return 0
        delta_ms = now_ms - self.suspended_at_ms
        self.suspended_at_ms = None
        if delta_ms < 0:
            logger.warning("clock moved back %dms during suspension", -delta_ms)
            return 0
        elapsed = delta_ms // 1000
        logger.debug("suspended for %ds", elapsed)
        return elapsed

    def clear(self) -> None:
        """Forget any pending episode (the timer was stopped)."""
        self.suspended_at_ms = None
