"""Comprehensive tests for the Session Manager."""

import json
from pathlib import Path
from unittest.mock import patch

import pytest

from rhythmark.core.config import IntervalConfig
from rhythmark.core.engine import InvalidStateError, Phase, PhaseChanged, RunCompleted, RunState
from rhythmark.core.session import Session

_T0 = 1_000_000.0

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _read_state(config_dir: Path) -> dict:
    """Read and return the session.json content as a dict."""
    return json.loads((config_dir / "session.json").read_text())


def _started(config_dir: Path, config: IntervalConfig = IntervalConfig(30, 10, 2)) -> None:
    """Persist a session started at ``_T0`` with *config*."""
    with patch("rhythmark.core.session.time") as mock_time:
        mock_time.time.return_value = _T0
        session = Session(config_dir=config_dir)
        session.configure(config)
        session.start()


def _load_at(config_dir: Path, wall_seconds: float) -> Session:
    with patch("rhythmark.core.session.time") as mock_time:
        mock_time.time.return_value = wall_seconds
        return Session(config_dir=config_dir)


# ---------------------------------------------------------------------------
# start() / configure()
# ---------------------------------------------------------------------------


class TestSessionStart:
    """Session.start() begins a run with the current settings."""

    def test_start_returns_message(self, tmp_path: Path) -> None:
        with patch("rhythmark.core.session.time") as mock_time:
            mock_time.time.return_value = _T0
            session = Session(config_dir=tmp_path)
            assert session.start() == "Started: 4 rounds of 00:30 work / 00:10 rest"

    def test_start_when_already_running_raises(self, tmp_path: Path) -> None:
        with patch("rhythmark.core.session.time") as mock_time:
            mock_time.time.return_value = _T0
            session = Session(config_dir=tmp_path)
            session.start()
            with pytest.raises(InvalidStateError):
                session.start()

    def test_configure_changes_settings(self, tmp_path: Path) -> None:
        session = Session(config_dir=tmp_path)
        message = session.configure(IntervalConfig(90, 20, 3))
        assert message == "Configured: 3 rounds of 01:30 work / 00:20 rest"
        assert session.config == IntervalConfig(90, 20, 3)

    def test_configure_during_run_raises(self, tmp_path: Path) -> None:
        _started(tmp_path)
        session = _load_at(tmp_path, _T0 + 1)
        with pytest.raises(InvalidStateError):
            session.configure(IntervalConfig(60, 10, 1))


# ---------------------------------------------------------------------------
# status()
# ---------------------------------------------------------------------------


class TestSessionStatus:
    """Session.status() returns (message, exit_code)."""

    def test_idle_status(self, tmp_path: Path) -> None:
        msg, code = Session(config_dir=tmp_path).status()
        assert msg == "Ready: 4 rounds of 00:30 work / 00:10 rest"
        assert code == 1

    def test_running_status(self, tmp_path: Path) -> None:
        _started(tmp_path)
        msg, code = _load_at(tmp_path, _T0 + 12).status()
        assert msg == "round 1/2 WORK 00:18 remaining"
        assert code == 0

    def test_paused_status(self, tmp_path: Path) -> None:
        _started(tmp_path)
        with patch("rhythmark.core.session.time") as mock_time:
            mock_time.time.return_value = _T0 + 5
            Session(config_dir=tmp_path).pause()

        msg, code = _load_at(tmp_path, _T0 + 5000).status()
        assert msg == "round 1/2 WORK 00:25 remaining (paused)"
        assert code == 0

    def test_completed_status(self, tmp_path: Path) -> None:
        _started(tmp_path)
        msg, code = _load_at(tmp_path, _T0 + 80).status()
        assert msg == "Run complete"
        assert code == 1


# ---------------------------------------------------------------------------
# Catching up between invocations
# ---------------------------------------------------------------------------


class TestSessionCatchUp:
    """Loading a running session replays the time since it was saved."""

    def test_replays_transitions(self, tmp_path: Path) -> None:
        _started(tmp_path)
        session = _load_at(tmp_path, _T0 + 45)

        assert session.drain_events() == [PhaseChanged(Phase.REST, 1), PhaseChanged(Phase.WORK, 2)]
        assert session.snapshot().seconds_remaining == 25
        assert session.drain_events() == []

    def test_catch_up_is_persisted(self, tmp_path: Path) -> None:
        _started(tmp_path)
        _load_at(tmp_path, _T0 + 45)

        state = _read_state(tmp_path)
        assert state["engine"] == {
            "phase": "work",
            "round": 2,
            "seconds_remaining": 25,
            "run": "running",
        }
        assert state["suspended_at_ms"] == (_T0 + 45) * 1000

    def test_events_are_not_replayed_twice(self, tmp_path: Path) -> None:
        _started(tmp_path)
        _load_at(tmp_path, _T0 + 45)
        session = _load_at(tmp_path, _T0 + 46)
        assert session.drain_events() == []
        assert session.snapshot().seconds_remaining == 24

    def test_partial_second_carries_over(self, tmp_path: Path) -> None:
        _started(tmp_path)
        _load_at(tmp_path, _T0 + 1.5)
        assert _read_state(tmp_path)["suspended_at_ms"] == (_T0 + 1) * 1000

        session = _load_at(tmp_path, _T0 + 2.0)
        assert session.snapshot().seconds_remaining == 28

    def test_long_gap_completes_once(self, tmp_path: Path) -> None:
        _started(tmp_path)
        session = _load_at(tmp_path, _T0 + 10_000)

        events = session.drain_events()
        assert events[-1] == RunCompleted()
        assert events.count(RunCompleted()) == 1
        assert session.snapshot().run == RunState.COMPLETED
        assert _read_state(tmp_path)["suspended_at_ms"] is None

    def test_clock_regression_keeps_state(self, tmp_path: Path) -> None:
        _started(tmp_path)
        session = _load_at(tmp_path, _T0 - 300)
        assert session.drain_events() == []
        assert session.snapshot().seconds_remaining == 30
        assert _read_state(tmp_path)["suspended_at_ms"] == (_T0 - 300) * 1000


# ---------------------------------------------------------------------------
# pause() / resume() / reset() / skip()
# ---------------------------------------------------------------------------


class TestSessionCommands:
    """Commands mutate the run and persist the result."""

    def test_pause_disarms_tracker(self, tmp_path: Path) -> None:
        _started(tmp_path)
        with patch("rhythmark.core.session.time") as mock_time:
            mock_time.time.return_value = _T0 + 5
            message = Session(config_dir=tmp_path).pause()
        assert message == "Paused at round 1/2 WORK 00:25"
        assert _read_state(tmp_path)["suspended_at_ms"] is None

    def test_resume_rearms_tracker(self, tmp_path: Path) -> None:
        _started(tmp_path)
        with patch("rhythmark.core.session.time") as mock_time:
            mock_time.time.return_value = _T0 + 5
            Session(config_dir=tmp_path).pause()
            mock_time.time.return_value = _T0 + 600
            message = Session(config_dir=tmp_path).resume()
        assert message == "Resumed at round 1/2 WORK 00:25"
        assert _read_state(tmp_path)["suspended_at_ms"] == (_T0 + 600) * 1000

    def test_reset_clears_run(self, tmp_path: Path) -> None:
        _started(tmp_path)
        with patch("rhythmark.core.session.time") as mock_time:
            mock_time.time.return_value = _T0 + 50
            assert Session(config_dir=tmp_path).reset() == "Timer reset"

        state = _read_state(tmp_path)
        assert state["engine"]["run"] == "idle"
        assert state["suspended_at_ms"] is None

    def test_skip_starts_next_phase_now(self, tmp_path: Path) -> None:
        _started(tmp_path)
        with patch("rhythmark.core.session.time") as mock_time:
            mock_time.time.return_value = _T0 + 5
            session = Session(config_dir=tmp_path)
            message = session.skip()

        assert message == "Skipped to round 1/2 REST 00:10"
        assert session.drain_events() == [PhaseChanged(Phase.REST, 1)]
        assert _read_state(tmp_path)["suspended_at_ms"] == (_T0 + 5) * 1000

    def test_skip_to_completion_disarms_tracker(self, tmp_path: Path) -> None:
        _started(tmp_path, IntervalConfig(30, 10, 1))
        with patch("rhythmark.core.session.time") as mock_time:
            mock_time.time.return_value = _T0 + 31
            session = Session(config_dir=tmp_path)
            session.skip()

        assert session.drain_events() == [PhaseChanged(Phase.REST, 1), RunCompleted()]
        assert _read_state(tmp_path)["suspended_at_ms"] is None

    def test_skip_when_completed(self, tmp_path: Path) -> None:
        _started(tmp_path)
        session = _load_at(tmp_path, _T0 + 1000)
        session.drain_events()
        assert session.skip() == "Nothing to skip"

    def test_next_round_pauses(self, tmp_path: Path) -> None:
        _started(tmp_path)
        with patch("rhythmark.core.session.time") as mock_time:
            mock_time.time.return_value = _T0 + 3
            message = Session(config_dir=tmp_path).next_round()
        assert message == "Moved to round 2/2 WORK 00:30"
        assert _read_state(tmp_path)["engine"]["run"] == "paused"

    def test_set_alarm_persists(self, tmp_path: Path) -> None:
        assert Session(config_dir=tmp_path).set_alarm(False) == "Alarm off"
        assert Session(config_dir=tmp_path).alarm_enabled is False


# ---------------------------------------------------------------------------
# Loading from disk
# ---------------------------------------------------------------------------


class TestSessionLoadFromDisk:
    """Session constructor loads state from existing session.json."""

    def test_load_with_no_state_file(self, tmp_path: Path) -> None:
        session = Session(config_dir=tmp_path)
        assert session.snapshot().run == RunState.IDLE
        assert not (tmp_path / "session.json").exists()

    def test_corrupt_state_file_is_discarded(self, tmp_path: Path) -> None:
        (tmp_path / "session.json").write_text("{not json")
        session = Session(config_dir=tmp_path)
        assert session.status() == ("Ready: 4 rounds of 00:30 work / 00:10 rest", 1)

    def test_inconsistent_snapshot_is_discarded(self, tmp_path: Path) -> None:
        state = {
            "config": {"work_seconds": 30, "rest_seconds": 10, "rounds": 2},
            "engine": {"phase": "work", "round": 7, "seconds_remaining": 30, "run": "paused"},
            "alarm_enabled": True,
            "suspended_at_ms": None,
        }
        (tmp_path / "session.json").write_text(json.dumps(state))
        assert Session(config_dir=tmp_path).snapshot().run == RunState.IDLE


# ---------------------------------------------------------------------------
# Config directory
# ---------------------------------------------------------------------------


class TestConfigDirectory:
    """Session creates the config directory if it does not exist."""

    def test_creates_missing_config_dir(self, tmp_path: Path) -> None:
        config_dir = tmp_path / "nested" / "config" / "dir"
        assert not config_dir.exists()

        with patch("rhythmark.core.session.time") as mock_time:
            mock_time.time.return_value = _T0
            Session(config_dir=config_dir).start()

        assert (config_dir / "session.json").exists()

    def test_environment_override(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("RHYTHMARK_CONFIG_DIR", str(tmp_path))
        assert Session()._config_dir == tmp_path

    def test_default_config_dir(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """When no config_dir is given, defaults to ~/.config/rhythmark/."""
        monkeypatch.delenv("RHYTHMARK_CONFIG_DIR", raising=False)
        with patch("rhythmark.core.session.Session._load"):
            session = Session()
        assert session._config_dir == Path.home() / ".config" / "rhythmark"
