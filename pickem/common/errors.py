"""Error types raised by the pick'em engine.

Purpose:
    Give callers distinct exception classes for the failure modes they are
    expected to handle differently (surface, fall back, skip, reject).
Invariants:
    * ConfigurationError is raised before any network call is attempted.
    * TransientUpstreamError never escapes the acquisition orchestrator.
    * LockViolation subclasses are user-facing and never retried.
"""

from __future__ import annotations

from typing import Optional


class PickemError(RuntimeError):
    """Base class for engine errors."""


class ConfigurationError(PickemError):
    """A required credential or setting is missing for a source."""

    def __init__(self, source: str, message: str) -> None:
        super().__init__(f"{source}: {message}")
        self.source = source


class TransientUpstreamError(PickemError):
    """Network failure, 5xx/429 or undecodable payload from an upstream source."""

    def __init__(
        self,
        source: str,
        message: str,
        *,
        status: Optional[int] = None,
        quota_remaining: Optional[int] = None,
    ) -> None:
        super().__init__(f"{source}: {message}")
        self.source = source
        self.status = status
        self.quota_remaining = quota_remaining


class ParseError(PickemError):
    """A single scraped element could not be parsed."""


class LockViolation(PickemError):
    """A spread change was rejected."""

    def __init__(self, message: str, *, week_id: Optional[int] = None, game_id: Optional[int] = None) -> None:
        super().__init__(message)
        self.week_id = week_id
        self.game_id = game_id


class SpreadsLockedError(LockViolation):
    """The owning week has spreads_locked set."""


class OnlineSpreadError(LockViolation):
    """The game already carries a spread from an online odds source."""


class NotFoundError(PickemError):
    """A referenced week, game or user does not exist."""


class GradingTimeout(PickemError):
    """The grading pass ran past its deadline and stopped."""

    def __init__(self, message: str, *, graded: int = 0) -> None:
        super().__init__(message)
        self.graded = graded


__all__ = [
    "PickemError",
    "ConfigurationError",
    "TransientUpstreamError",
    "ParseError",
    "LockViolation",
    "SpreadsLockedError",
    "OnlineSpreadError",
    "NotFoundError",
    "GradingTimeout",
]
