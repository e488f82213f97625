"""Domain exceptions raised by the aggregation engine.

Routers translate these into HTTP responses; workers log them.
"""

from __future__ import annotations


class StudyTrackError(Exception):
    """Base class for engine errors."""


class SessionValidationError(StudyTrackError, ValueError):
    """A completed session is malformed (non-positive or absurd duration).

    Raised before any state is touched.
    """


class ProfileNotFoundError(StudyTrackError, LookupError):
    """The session's user has no profile row."""

    def __init__(self, user_id: object) -> None:
        super().__init__(f"Profile {user_id} not found")
        self.user_id = user_id


class ConcurrencyConflictError(StudyTrackError):
    """Per-user serialization could not be obtained in time.

    Nothing was committed, so the caller may retry with the same session id.
    """

    retryable = True

    def __init__(self, user_id: object, reason: str) -> None:
        super().__init__(f"Concurrent completion conflict for user {user_id}: {reason}")
        self.user_id = user_id
        self.reason = reason


class UnknownPeriodError(StudyTrackError, ValueError):
    """Leaderboard period is not one of week, month, year."""

    def __init__(self, period: str) -> None:
        super().__init__(f"Unknown period: {period}")
        self.period = period


class RefreshFailedError(StudyTrackError):
    """A leaderboard refresh was abandoned; the previous snapshot stays active."""

    def __init__(self, period: str, reason: str) -> None:
        super().__init__(f"Leaderboard refresh for {period} failed: {reason}")
        self.period = period
        self.reason = reason


class SessionConflictError(StudyTrackError):
    """A session id is already stored with different contents."""

    def __init__(self, session_id: object, fields: list[str]) -> None:
        super().__init__(f"Session {session_id} already recorded with different {', '.join(fields)}")
        self.session_id = session_id
        self.fields = fields
