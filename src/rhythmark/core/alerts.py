"""Alert contract between the engine's events and whatever renders them."""

from __future__ import annotations

import logging
from enum import Enum
from typing import Protocol

from rhythmark.core.engine import PhaseChanged, RunCompleted, TimerEvent

logger = logging.getLogger(__name__)


class AlertKind(Enum):
    """Which sound an event calls for."""

    BEEP_DOUBLE = "beep_double"
    BEEP_LONG = "beep_long"


class AlertSink(Protocol):
    def alert(self, kind: AlertKind, event: TimerEvent) -> None: ...


def alert_for(event: TimerEvent) -> AlertKind:
    """Phase changes get a double beep, the end of a run a long one."""
    if isinstance(event, RunCompleted):
        return AlertKind.BEEP_LONG
    return AlertKind.BEEP_DOUBLE


def describe(event: TimerEvent) -> str:
    """Return a one-line human description of *event*."""
    if isinstance(event, PhaseChanged):
        return f"Round {event.round}: {event.phase.value.upper()}"
    return "All rounds complete"


class AlertDispatcher:
    """Engine listener forwarding events to an :class:`AlertSink`.

    With ``enabled`` off, events are dropped (the alarm toggle).  A sink that
    raises is logged; the engine has already moved on and is not told.
    """

    def __init__(self, sink: AlertSink, enabled: bool = True) -> None:
        self.sink = sink
        self.enabled = enabled

    def __call__(self, event: TimerEvent) -> None:
        if not self.enabled:
            return
        kind = alert_for(event)
        try:
            self.sink.alert(kind, event)
        except Exception:
            logger.exception("alert sink failed to render %s for %s", kind.value, event)
