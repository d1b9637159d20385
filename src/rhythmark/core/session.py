"""Session manager — keeps an interval run alive across CLI invocations."""

from __future__ import annotations

import fcntl
import json
import logging
import os
import time
from pathlib import Path
from typing import Any

from rhythmark.core.config import IntervalConfig, format_clock
from rhythmark.core.engine import (
    InvalidStateError,
    PhaseTimerEngine,
    RunState,
    StateSnapshot,
    TimerEvent,
)
from rhythmark.core.suspension import SuspensionTracker

logger = logging.getLogger(__name__)

_DEFAULT_CONFIG_DIR = Path.home() / ".config" / "rhythmark"
_CONFIG_DIR_ENV = "RHYTHMARK_CONFIG_DIR"
_STATE_FILE = "session.json"

_ACTIVE_STATES = frozenset({RunState.RUNNING, RunState.PAUSED})


def _now_ms() -> int:
    """Wall-clock milliseconds; unlike ``time.monotonic`` it survives process exit."""
    return int(time.time() * 1000)


def _default_config_dir() -> Path:
    override = os.environ.get(_CONFIG_DIR_ENV)
    return Path(override) if override else _DEFAULT_CONFIG_DIR


class Session:
    """Orchestrates an interval run with JSON file persistence.

    Between two invocations nothing ticks the engine, so every exit while
    RUNNING is treated as a suspension: the tracker is armed and saved, and
    the next load reconciles the gap.  Events replayed that way, and those
    produced by commands, are collected for :meth:`drain_events`.
    """

    def __init__(self, config_dir: Path | None = None) -> None:
        self._config_dir: Path = config_dir if config_dir is not None else _default_config_dir()
        self._tracker = SuspensionTracker()
        self._engine = PhaseTimerEngine(IntervalConfig(), on_stop=self._tracker.clear)
        self._alarm_enabled: bool = True
        self._events: list[TimerEvent] = []
        self._load()

    # -- public API ----------------------------------------------------------

    @property
    def config(self) -> IntervalConfig:
        return self._engine.config

    @property
    def alarm_enabled(self) -> bool:
        return self._alarm_enabled

    def snapshot(self) -> StateSnapshot:
        return self._engine.snapshot()

    def configure(self, config: IntervalConfig) -> str:
        """Replace the interval settings.  Not allowed during an active run."""
        if self._engine.run_state in _ACTIVE_STATES:
            raise InvalidStateError(
                f"configure() is not valid from {self._engine.run_state.value} state"
            )
        self._tracker.clear()
        self._engine = PhaseTimerEngine(config, on_stop=self._tracker.clear)
        self._save()
        return f"Configured: {_describe_config(config)}"

    def start(self) -> str:
        """Start a run with the current settings."""
        self._engine.start()
        self._rearm()
        self._save()
        return f"Started: {_describe_config(self.config)}"

    def pause(self) -> str:
        self._engine.pause()
        self._tracker.clear()
        self._save()
        return f"Paused at {self._position()}"

    def resume(self) -> str:
        self._engine.resume()
        self._rearm()
        self._save()
        return f"Resumed at {self._position()}"

    def reset(self) -> str:
        self._engine.reset()
        self._save()
        return "Timer reset"

    def skip(self) -> str:
        """Finish the current phase immediately."""
        events = self._engine.skip()
        self._events.extend(events)
        # the new phase begins now
        self._rearm()
        self._save()
        if not events:
            return "Nothing to skip"
        return f"Skipped to {self._position()}"

    def next_round(self) -> str:
        self._engine.next_round()
        self._tracker.clear()
        self._save()
        return f"Moved to {self._position()}"

    def previous_round(self) -> str:
        self._engine.previous_round()
        self._tracker.clear()
        self._save()
        return f"Moved to {self._position()}"

    def set_alarm(self, enabled: bool) -> str:
        self._alarm_enabled = enabled
        self._save()
        return f"Alarm {'on' if enabled else 'off'}"

    def status(self) -> tuple[str, int]:
        """Return ``(message, exit_code)``."""
        state = self._engine.run_state
        if state == RunState.RUNNING:
            return f"{self._position()} remaining", 0
        if state == RunState.PAUSED:
            return f"{self._position()} remaining (paused)", 0
        if state == RunState.COMPLETED:
            return "Run complete", 1
        return f"Ready: {_describe_config(self.config)}", 1

    def drain_events(self) -> list[TimerEvent]:
        """Return and forget the events collected since the last call."""
        events, self._events = self._events, []
        return events

    # -- private helpers -----------------------------------------------------

    def _position(self) -> str:
        snap = self._engine.snapshot()
        return (
            f"round {snap.round}/{self.config.rounds} {snap.phase.value.upper()} "
            f"{format_clock(snap.seconds_remaining)}"
        )

    def _rearm(self) -> None:
        """Start a fresh suspension episode now, or drop it if not running."""
        if self._engine.run_state == RunState.RUNNING:
            self._tracker.on_suspend(_now_ms(), RunState.RUNNING)
        else:
            self._tracker.clear()

    def _catch_up(self) -> None:
        """Replay the time that passed since the state file was written."""
        armed_at = self._tracker.suspended_at_ms
        if armed_at is None:
            return
        now = _now_ms()
        elapsed = self._tracker.on_resume(now)
        self._events.extend(self._engine.reconcile(elapsed))
        # carry the unconsumed fraction of a second into the next episode
        anchor = armed_at + elapsed * 1000 if now >= armed_at else now
        self._tracker.on_suspend(anchor, self._engine.run_state)

    # -- persistence ---------------------------------------------------------

    def _save(self) -> None:
        """Write current state to the JSON file with file locking."""
        self._config_dir.mkdir(parents=True, exist_ok=True)
        data = {
            "config": self.config.to_dict(),
            "engine": self._engine.snapshot().to_dict(),
            "alarm_enabled": self._alarm_enabled,
            "suspended_at_ms": self._tracker.suspended_at_ms,
        }
        with open(self._config_dir / _STATE_FILE, "w") as f:
            fcntl.flock(f, fcntl.LOCK_EX)
            json.dump(data, f)

    def _load(self) -> None:
        """Load state from the JSON file if it exists, then catch up."""
        path = self._config_dir / _STATE_FILE
        if not path.exists():
            return

        try:
            with open(path) as f:
                fcntl.flock(f, fcntl.LOCK_SH)
                data = json.load(f)
            self._restore(data)
        except (OSError, ValueError, KeyError, TypeError) as exc:
            logger.warning("discarding unreadable session state %s: %s", path, exc)
            self._tracker.clear()
            self._engine = PhaseTimerEngine(IntervalConfig(), on_stop=self._tracker.clear)
            return

        if self._engine.run_state == RunState.RUNNING:
            self._catch_up()
            self._save()

    def _restore(self, data: dict[str, Any]) -> None:
        config = IntervalConfig.from_dict(data["config"])
        snapshot = StateSnapshot.from_dict(data["engine"])
        self._engine = PhaseTimerEngine.restore(config, snapshot, on_stop=self._tracker.clear)
        self._alarm_enabled = bool(data.get("alarm_enabled", True))
        suspended_at = data.get("suspended_at_ms")
        self._tracker.suspended_at_ms = int(suspended_at) if suspended_at is not None else None


def _describe_config(config: IntervalConfig) -> str:
    return (
        f"{config.rounds} rounds of {format_clock(config.work_seconds)} work "
        f"/ {format_clock(config.rest_seconds)} rest"
    )
