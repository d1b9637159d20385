"""Interval configuration — validated work/rest/rounds settings."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

DEFAULT_WORK_SECONDS = 30
DEFAULT_REST_SECONDS = 10
DEFAULT_ROUNDS = 4

_MAX_PART_MINUTES = 60
_MAX_PART_SECONDS = 59


def _require_int(name: str, value: Any) -> None:
    # bool is an int subclass but never a meaningful duration
    if isinstance(value, bool) or not isinstance(value, int):
        raise TypeError(f"{name} must be an integer, got {type(value).__name__}")


@dataclass(frozen=True)
class IntervalConfig:
    """Durations of one timer run.

    Immutable for the lifetime of a run.  Both phases must last at least one
    second and there must be at least one round; the engine relies on this.
    """

    work_seconds: int = DEFAULT_WORK_SECONDS
    rest_seconds: int = DEFAULT_REST_SECONDS
    rounds: int = DEFAULT_ROUNDS

    def __post_init__(self) -> None:
        for name in ("work_seconds", "rest_seconds", "rounds"):
            _require_int(name, getattr(self, name))
        if self.work_seconds <= 0:
            raise ValueError(f"work_seconds must be positive, got {self.work_seconds}")
        if self.rest_seconds <= 0:
            raise ValueError(f"rest_seconds must be positive, got {self.rest_seconds}")
        if self.rounds < 1:
            raise ValueError(f"rounds must be at least 1, got {self.rounds}")

    @classmethod
    def from_parts(
        cls,
        work_minutes: int,
        work_seconds: int,
        rest_minutes: int,
        rest_seconds: int,
        rounds: int,
    ) -> IntervalConfig:
        """Build a config from minute/second pairs (minutes 0--60, seconds 0--59)."""
        parts = {
            "work_minutes": work_minutes,
            "work_seconds": work_seconds,
            "rest_minutes": rest_minutes,
            "rest_seconds": rest_seconds,
        }
        for name, value in parts.items():
            _require_int(name, value)
            limit = _MAX_PART_MINUTES if name.endswith("minutes") else _MAX_PART_SECONDS
            if not (0 <= value <= limit):
                raise ValueError(f"{name} must be between 0 and {limit}, got {value}")
        return cls(
            work_seconds=work_minutes * 60 + work_seconds,
            rest_seconds=rest_minutes * 60 + rest_seconds,
            rounds=rounds,
        )

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> IntervalConfig:
        return cls(
            work_seconds=data["work_seconds"],
            rest_seconds=data["rest_seconds"],
            rounds=data["rounds"],
        )

    def to_dict(self) -> dict[str, int]:
        return {
            "work_seconds": self.work_seconds,
            "rest_seconds": self.rest_seconds,
            "rounds": self.rounds,
        }

    @property
    def total_seconds(self) -> int:
        """Length of a complete run, every round's work and rest included."""
        return (self.work_seconds + self.rest_seconds) * self.rounds


def parse_duration(text: str) -> int:
    """Parse ``"SS"`` or ``"M:SS"`` into whole seconds.

    >>> parse_duration("1:30")
    90
    """
    raw = text.strip()
    minutes_part, sep, seconds_part = raw.rpartition(":")
    if not sep:
        minutes_part, seconds_part = "0", raw
    if not (minutes_part.isdigit() and seconds_part.isdigit()):
        raise ValueError(f"invalid duration {text!r}, expected SS or M:SS")
    minutes, seconds = int(minutes_part), int(seconds_part)
    if sep and seconds > _MAX_PART_SECONDS:
        raise ValueError(f"invalid duration {text!r}, seconds must be below 60")
    return minutes * 60 + seconds


def format_clock(seconds: int) -> str:
    """Format *seconds* as ``MM:SS``."""
    return f"{seconds // 60:02d}:{seconds % 60:02d}"
