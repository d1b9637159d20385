"""Phase timer engine — a pure state machine for work/rest interval runs."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Optional, Union

from rhythmark.core.config import IntervalConfig

logger = logging.getLogger(__name__)


class Phase(Enum):
    """The activity segment a round is currently in."""

    WORK = "work"
    REST = "rest"


class RunState(Enum):
    """Whether time is advancing.  Orthogonal to :class:`Phase`."""

    IDLE = "idle"
    RUNNING = "running"
    PAUSED = "paused"
    COMPLETED = "completed"


class InvalidStateError(Exception):
    """Raised when an operation is not valid from the current run-state."""


@dataclass(frozen=True)
class PhaseChanged:
    """A phase boundary was crossed; *phase* is the phase just entered."""

    phase: Phase
    round: int


@dataclass(frozen=True)
class RunCompleted:
    """The final round's rest phase finished."""


TimerEvent = Union[PhaseChanged, RunCompleted]
Listener = Callable[[TimerEvent], None]


@dataclass(frozen=True)
class StateSnapshot:
    """Point-in-time view of the engine state."""

    phase: Phase
    round: int
    seconds_remaining: int
    run: RunState

    def to_dict(self) -> dict[str, Any]:
        return {
            "phase": self.phase.value,
            "round": self.round,
            "seconds_remaining": self.seconds_remaining,
            "run": self.run.value,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> StateSnapshot:
        return cls(
            phase=Phase(data["phase"]),
            round=int(data["round"]),
            seconds_remaining=int(data["seconds_remaining"]),
            run=RunState(data["run"]),
        )


_VALID_START_STATES = frozenset({RunState.IDLE, RunState.COMPLETED})
_VALID_JUMP_STATES = frozenset({RunState.IDLE, RunState.RUNNING, RunState.PAUSED})

_TICK_MS = 1000


class PhaseTimerEngine:
    """Tracks phase, round and seconds remaining for one interval run.

    The engine never reads a clock.  The host calls :meth:`tick` once per
    elapsed second while running, and :meth:`reconcile` with the whole seconds
    that passed while it could not tick (process suspended, screen off).
    Both paths share the same phase-completion logic, so a reconciled gap
    produces exactly the events the live ticks would have produced.

    Every operation returns the events it emitted, in order, and delivers
    them to subscribed listeners.  A listener that raises is logged and
    skipped; it never undoes the state change.
    """

    def __init__(
        self,
        config: IntervalConfig,
        on_stop: Optional[Callable[[], None]] = None,
    ) -> None:
        self._config = config
        self._on_stop = on_stop
        self._listeners: list[Listener] = []
        self._phase: Phase = Phase.WORK
        self._round: int = 1
        self._seconds_remaining: int = config.work_seconds
        self._run: RunState = RunState.IDLE
        self._baseline_ms: Optional[int] = None

    @classmethod
    def restore(
        cls,
        config: IntervalConfig,
        snapshot: StateSnapshot,
        on_stop: Optional[Callable[[], None]] = None,
    ) -> PhaseTimerEngine:
        """Rebuild an engine from a persisted *snapshot*.

        Raises ``ValueError`` if the snapshot is inconsistent with *config*.
        """
        if not (1 <= snapshot.round <= config.rounds):
            raise ValueError(f"round {snapshot.round} outside 1..{config.rounds}")
        limit = _duration(config, snapshot.phase)
        # a running phase never rests at zero; reaching zero completes it
        if not (1 <= snapshot.seconds_remaining <= limit):
            raise ValueError(
                f"seconds_remaining {snapshot.seconds_remaining} outside 1..{limit} "
                f"for {snapshot.phase.value} phase"
            )
        engine = cls(config, on_stop=on_stop)
        engine._phase = snapshot.phase
        engine._round = snapshot.round
        engine._seconds_remaining = snapshot.seconds_remaining
        engine._run = snapshot.run
        return engine

    # -- queries -------------------------------------------------------------

    @property
    def config(self) -> IntervalConfig:
        return self._config

    @property
    def run_state(self) -> RunState:
        return self._run

    def snapshot(self) -> StateSnapshot:
        """Return the current phase, round, seconds remaining and run-state."""
        return StateSnapshot(
            phase=self._phase,
            round=self._round,
            seconds_remaining=self._seconds_remaining,
            run=self._run,
        )

    def progress(self) -> float:
        """Return the elapsed fraction (0.0--1.0) of the current phase."""
        total = _duration(self._config, self._phase)
        return (total - self._seconds_remaining) / total

    # -- listeners -----------------------------------------------------------

    def subscribe(self, listener: Listener) -> None:
        self._listeners.append(listener)

    def unsubscribe(self, listener: Listener) -> None:
        self._listeners.remove(listener)

    # -- commands ------------------------------------------------------------

    def start(self) -> list[TimerEvent]:
        """Begin a run.  Valid only from IDLE or COMPLETED."""
        self._require_state("start", _VALID_START_STATES)
        if self._run is RunState.COMPLETED:
            self._rewind()
        self._run = RunState.RUNNING
        self._baseline_ms = None
        logger.debug("run started: %s", self._config)
        return []

    def pause(self) -> list[TimerEvent]:
        """Freeze the countdown.  Valid only from RUNNING."""
        self._require_state("pause", frozenset({RunState.RUNNING}))
        self._run = RunState.PAUSED
        logger.debug("paused at round %d %s, %ds left", self._round, self._phase.value,
                     self._seconds_remaining)
        return []

    def resume(self) -> list[TimerEvent]:
        """Continue a paused countdown.  Valid only from PAUSED."""
        self._require_state("resume", frozenset({RunState.PAUSED}))
        self._run = RunState.RUNNING
        self._baseline_ms = None
        return []

    def reset(self) -> list[TimerEvent]:
        """Return to the initial IDLE state from any state."""
        self._rewind()
        self._run = RunState.IDLE
        self._baseline_ms = None
        if self._on_stop is not None:
            self._on_stop()
        logger.debug("reset")
        return []

    def skip(self) -> list[TimerEvent]:
        """Finish the current phase now, as if it had counted down to zero.

        Does nothing once the run is COMPLETED.
        """
        if self._run is RunState.COMPLETED:
            return []
        return self._deliver([self._complete_phase()])

    def tick(self, now_ms: int) -> list[TimerEvent]:
        """Consume one second of the current phase.

        Ignored unless RUNNING.  The first tick landing within one second of
        a reconciliation baseline is dropped: those milliseconds were already
        accounted for by :meth:`reconcile`.
        """
        if self._run is not RunState.RUNNING:
            return []
        if self._baseline_ms is not None:
            baseline, self._baseline_ms = self._baseline_ms, None
            if now_ms - baseline < _TICK_MS:
                logger.debug("tick at %d dropped, reconciled at %d", now_ms, baseline)
                return []

        self._seconds_remaining -= 1
        if self._seconds_remaining > 0:
            return []
        return self._deliver([self._complete_phase()])

    def reconcile(self, elapsed_seconds: int, now_ms: Optional[int] = None) -> list[TimerEvent]:
        """Fast-forward *elapsed_seconds* as if :meth:`tick` had been called that often.

        Works one phase at a time rather than one second at a time, so the
        cost is bounded by the number of transitions crossed, which is itself
        bounded by twice the number of rounds.  Time left over after the run
        completes is discarded.  When *now_ms* is given it becomes the
        baseline against which the next :meth:`tick` is checked.
        """
        if elapsed_seconds <= 0 or self._run is not RunState.RUNNING:
            return []

        logger.info(
            "reconciling %ds from round %d %s (%ds left)",
            elapsed_seconds, self._round, self._phase.value, self._seconds_remaining,
        )
        events: list[TimerEvent] = []
        remaining = elapsed_seconds
        while self._run is RunState.RUNNING and remaining >= self._seconds_remaining:
            remaining -= self._seconds_remaining
            events.append(self._complete_phase())
        if self._run is RunState.RUNNING:
            self._seconds_remaining -= remaining
            self._baseline_ms = now_ms
        elif remaining:
            logger.debug("discarding %ds past run completion", remaining)
        return self._deliver(events)

    def next_round(self) -> list[TimerEvent]:
        """Jump to the work phase of the following round."""
        if self._round >= self._config.rounds:
            raise InvalidStateError(f"round {self._round} is the last round")
        return self._jump_to_round("next_round", self._round + 1)

    def previous_round(self) -> list[TimerEvent]:
        """Jump to the work phase of the preceding round."""
        if self._round <= 1:
            raise InvalidStateError("round 1 is the first round")
        return self._jump_to_round("previous_round", self._round - 1)

    # -- private helpers -----------------------------------------------------

    def _require_state(self, method: str, valid: frozenset[RunState]) -> None:
        """Raise ``InvalidStateError`` if the current run-state is not in *valid*."""
        if self._run not in valid:
            raise InvalidStateError(f"{method}() is not valid from {self._run.value} state")

    def _rewind(self) -> None:
        self._phase = Phase.WORK
        self._round = 1
        self._seconds_remaining = self._config.work_seconds

    def _jump_to_round(self, method: str, round_no: int) -> list[TimerEvent]:
        self._require_state(method, _VALID_JUMP_STATES)
        self._round = round_no
        self._phase = Phase.WORK
        self._seconds_remaining = self._config.work_seconds
        if self._run is RunState.RUNNING:
            self._run = RunState.PAUSED
        logger.debug("jumped to round %d", round_no)
        return []

    def _complete_phase(self) -> TimerEvent:
        """Advance past the end of the current phase and return the event."""
        if self._phase is Phase.WORK:
            self._phase = Phase.REST
            self._seconds_remaining = self._config.rest_seconds
            event: TimerEvent = PhaseChanged(Phase.REST, self._round)
        elif self._round < self._config.rounds:
            self._round += 1
            self._phase = Phase.WORK
            self._seconds_remaining = self._config.work_seconds
            event = PhaseChanged(Phase.WORK, self._round)
        else:
            self._run = RunState.COMPLETED
            self._rewind()
            self._baseline_ms = None
            event = RunCompleted()
        logger.debug("transition: %s", event)
        return event

    def _deliver(self, events: list[TimerEvent]) -> list[TimerEvent]:
        for event in events:
            for listener in list(self._listeners):
                try:
                    listener(event)
                except Exception:
                    logger.exception("listener %r failed on %s", listener, event)
        return events


def _duration(config: IntervalConfig, phase: Phase) -> int:
    return config.work_seconds if phase is Phase.WORK else config.rest_seconds
