"""Session completion: XP, level, streak, daily totals and task progress."""
