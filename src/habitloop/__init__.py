"""Habit loop engine: prediction polls, visit streaks, achievements and credits."""

__version__ = "0.1.0"
