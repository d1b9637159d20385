"""rhythmark: an interval-training timer for the terminal."""

__version__ = "0.1.0"
