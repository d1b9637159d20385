"""CLI entry point for rhythmark.

Uses Click to expose the ``rhythmark`` command group.  Most subcommands
delegate to the persisted :class:`Session`; ``run`` keeps a timer in the
foreground and ticks it live.
"""

from __future__ import annotations

import dataclasses
import logging
import sys
from typing import Callable, Iterable, Optional, TypeVar

import click

import rhythmark
from rhythmark.core.alerts import AlertDispatcher, AlertKind, describe
from rhythmark.core.config import IntervalConfig, format_clock, parse_duration
from rhythmark.core.engine import InvalidStateError, PhaseTimerEngine, RunState, TimerEvent
from rhythmark.core.runner import ForegroundRunner
from rhythmark.core.session import Session
from rhythmark.core.suspension import SuspensionTracker

T = TypeVar("T")

_BELLS = {AlertKind.BEEP_DOUBLE: "\a\a", AlertKind.BEEP_LONG: "\a"}


class TerminalSink:
    """Renders alerts as terminal bells."""

    def alert(self, kind: AlertKind, event: TimerEvent) -> None:
        click.echo(_BELLS[kind], nl=False)


def _run(action: Callable[[], T]) -> T:
    """Execute *action*, converting misuse errors to a CLI error.

    On ``InvalidStateError`` or ``ValueError`` the message is printed to
    stderr and the process exits with code 1.
    """
    try:
        return action()
    except (InvalidStateError, ValueError) as exc:
        click.echo(str(exc), err=True)
        sys.exit(1)


def _render(events: Iterable[TimerEvent], alarm_enabled: bool) -> None:
    dispatcher = AlertDispatcher(TerminalSink(), enabled=alarm_enabled)
    for event in events:
        click.echo(describe(event))
        dispatcher(event)


def _duration_option(
    ctx: click.Context, param: click.Parameter, value: Optional[str]
) -> Optional[int]:
    if value is None:
        return None
    try:
        return parse_duration(value)
    except ValueError as exc:
        raise click.BadParameter(str(exc)) from exc


def _interval_options(func: Callable) -> Callable:
    func = click.option("--rounds", type=click.IntRange(min=1), help="Number of rounds.")(func)
    func = click.option("--rest", callback=_duration_option, help="Rest length, SS or M:SS.")(func)
    func = click.option("--work", callback=_duration_option, help="Work length, SS or M:SS.")(func)
    return func


def _merge(
    base: IntervalConfig, work: Optional[int], rest: Optional[int], rounds: Optional[int]
) -> Optional[IntervalConfig]:
    """Apply the given overrides to *base*; ``None`` if nothing was given."""
    overrides = {
        name: value
        for name, value in (("work_seconds", work), ("rest_seconds", rest), ("rounds", rounds))
        if value is not None
    }
    if not overrides:
        return None
    return dataclasses.replace(base, **overrides)


def _with_session(action: Callable[[Session], str]) -> None:
    """Load the session, show replayed events, run *action*, show the result."""
    session = Session()
    _render(session.drain_events(), session.alarm_enabled)
    message = _run(lambda: action(session))
    _render(session.drain_events(), session.alarm_enabled)
    click.echo(message)


@click.group()
@click.version_option(version=rhythmark.__version__, prog_name="rhythmark")
@click.option("-v", "--verbose", is_flag=True, help="Log engine activity to stderr.")
def cli(verbose: bool) -> None:
    """rhythmark: an interval-training timer for the terminal."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@cli.command()
@_interval_options
def start(work: Optional[int], rest: Optional[int], rounds: Optional[int]) -> None:
    """Start a run, optionally changing the interval settings first."""

    def action(session: Session) -> str:
        config = _merge(session.config, work, rest, rounds)
        if config is not None:
            session.configure(config)
        return session.start()

    _with_session(action)


@cli.command()
def status() -> None:
    """Show the current run status."""
    session = Session()
    _render(session.drain_events(), session.alarm_enabled)
    message, exit_code = session.status()
    click.echo(message)
    sys.exit(exit_code)


@cli.command()
def pause() -> None:
    """Pause the current run."""
    _with_session(lambda session: session.pause())


@cli.command()
def resume() -> None:
    """Resume a paused run."""
    _with_session(lambda session: session.resume())


@cli.command()
def reset() -> None:
    """Stop the run and return to round 1."""
    _with_session(lambda session: session.reset())


@cli.command()
def skip() -> None:
    """Finish the current phase now."""
    _with_session(lambda session: session.skip())


@cli.command(name="next")
def next_round() -> None:
    """Jump to the next round's work phase."""
    _with_session(lambda session: session.next_round())


@cli.command(name="prev")
def previous_round() -> None:
    """Jump to the previous round's work phase."""
    _with_session(lambda session: session.previous_round())


@cli.command()
@click.argument("state", type=click.Choice(["on", "off"]))
def alarm(state: str) -> None:
    """Turn phase-change bells on or off."""
    _with_session(lambda session: session.set_alarm(state == "on"))


@cli.command(name="run")
@_interval_options
def run_foreground(work: Optional[int], rest: Optional[int], rounds: Optional[int]) -> None:
    """Run a timer in the foreground until it completes (Ctrl-C to stop)."""
    session = Session()
    config = _run(lambda: _merge(session.config, work, rest, rounds)) or session.config
    dispatcher = AlertDispatcher(TerminalSink(), enabled=session.alarm_enabled)

    tracker = SuspensionTracker()
    engine = PhaseTimerEngine(config, on_stop=tracker.clear)
    engine.subscribe(dispatcher)

    def show(engine: PhaseTimerEngine, events: list[TimerEvent]) -> None:
        for event in events:
            click.echo(f"\r{describe(event)}")
        snap = engine.snapshot()
        if snap.run is RunState.RUNNING:
            click.echo(
                f"\rRound {snap.round}/{config.rounds} {snap.phase.value.upper()} "
                f"{format_clock(snap.seconds_remaining)}",
                nl=False,
            )

    final = ForegroundRunner(engine, tracker, on_tick=show).run()
    click.echo()
    if final is not RunState.COMPLETED:
        click.echo("Stopped")
        sys.exit(1)
