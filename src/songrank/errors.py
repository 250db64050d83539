# src/songrank/errors.py
from __future__ import annotations


class RankingError(Exception):
    """Base exception for the ranking subsystem."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def __str__(self):
        return f"{type(self).__name__}: {self.message}"


class SnapshotError(RankingError):
    """Raised when a persisted graph snapshot cannot be read or written."""


class ConfigError(RankingError):
    """Raised for unreadable or invalid configuration files."""
