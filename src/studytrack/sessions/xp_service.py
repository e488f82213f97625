"""XP and level computation.

XP is 1:1 with studied seconds. Levels are linear: one level per
``seconds_per_level`` of cumulative study (an hour by default, see
``Settings.seconds_per_level``). The stored level is always recomputed from
the stored XP in the same write, never incremented on its own.
"""

from __future__ import annotations

from datetime import datetime, timezone

from studytrack.db.models import Profile

DEFAULT_SECONDS_PER_LEVEL = 3600


def compute_level(xp_total: int, seconds_per_level: int = DEFAULT_SECONDS_PER_LEVEL) -> int:
    """Level implied by a cumulative XP total: ``1 + floor(xp / seconds_per_level)``."""
    if xp_total < 0:
        msg = f"xp_total must be non-negative, got {xp_total}"
        raise ValueError(msg)
    if seconds_per_level <= 0:
        msg = f"seconds_per_level must be positive, got {seconds_per_level}"
        raise ValueError(msg)
    return 1 + xp_total // seconds_per_level


def level_progress(xp_total: int, seconds_per_level: int = DEFAULT_SECONDS_PER_LEVEL) -> dict:
    """Position inside the current level, for the profile screen."""
    level = compute_level(xp_total, seconds_per_level)
    into = xp_total - (level - 1) * seconds_per_level
    return {
        "level": level,
        "seconds_into_level": into,
        "seconds_for_level": seconds_per_level,
        "seconds_to_next_level": seconds_per_level - into,
    }


def apply_xp(
    profile: Profile,
    duration_seconds: int,
    seconds_per_level: int = DEFAULT_SECONDS_PER_LEVEL,
) -> tuple[int, int]:
    """Add a session's duration to the profile's XP and recompute its level.

    Mutates the (locked) profile in the caller's transaction.
    Returns ``(old_level, new_level)``.
    """
    old_level = profile.level
    profile.xp_total = profile.xp_total + duration_seconds
    profile.level = compute_level(profile.xp_total, seconds_per_level)
    profile.updated_at = datetime.now(timezone.utc)
    return old_level, profile.level
