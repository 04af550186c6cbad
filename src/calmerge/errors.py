from __future__ import annotations

from typing import Optional


class CalmergeError(RuntimeError):
    """Base class for failures that abort an aggregation request."""


class ConfigError(CalmergeError, ValueError):
    """Raised when the source list or settings are missing or malformed."""


class FetchError(CalmergeError):
    """Raised when a feed cannot be retrieved (non-2xx response or network failure)."""

    def __init__(self, url: str, status: Optional[int] = None, reason: str = "") -> None:
        self.url = url
        self.status = status
        detail = status if status is not None else (reason or "network error")
        super().__init__(f"Fetch ICS failed {detail} for {url}")


class CalendarParseError(CalmergeError):
    """Raised when a fetched document is not a readable calendar."""

    def __init__(self, url: str, reason: str = "") -> None:
        self.url = url
        super().__init__(f"Could not parse calendar from {url}: {reason}" if reason else f"Could not parse calendar from {url}")


class DeadlineExceeded(CalmergeError):
    """Raised when sources are still pending after the caller's deadline."""


class ParseSkip(ValueError):
    """A single record is unusable; the caller drops it and keeps going."""


class RecurrenceDegrade(ValueError):
    """A recurrence rule could not be evaluated; the series yields no occurrences."""
