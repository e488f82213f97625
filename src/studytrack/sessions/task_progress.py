"""Logged-time accumulation for the task a session was linked to.

Runs inside the completion transaction but behind a SAVEPOINT: a missing
task or a failed update is logged and skipped, and the XP, streak and
daily-summary writes still commit. Logging past ``planned_minutes`` is allowed.
"""

from __future__ import annotations

from datetime import datetime, timezone

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from studytrack.db.models import StudySession, Task

logger = structlog.get_logger()


def _apply_progress(task: Task, duration_seconds: int) -> None:
    task.logged_seconds = task.logged_seconds + duration_seconds
    if task.status == "planned":
        task.status = "in-progress"
    task.updated_at = datetime.now(timezone.utc)


async def link_task_progress(db: AsyncSession, session: StudySession) -> bool:
    """Add the session's duration to its task. Returns True if the task was updated."""
    if session.task_id is None:
        return False

    try:
        async with db.begin_nested():
            result = await db.execute(
                select(Task)
                .where(Task.id == session.task_id, Task.user_id == session.user_id)
                .with_for_update()
            )
            task = result.scalar_one_or_none()
            if task is None:
                logger.warning(
                    "task_link_target_missing",
                    task_id=str(session.task_id),
                    session_id=str(session.id),
                    user_id=str(session.user_id),
                )
                return False
            _apply_progress(task, session.duration_seconds)
    except Exception:
        logger.warning(
            "task_link_failed",
            task_id=str(session.task_id),
            session_id=str(session.id),
            exc_info=True,
        )
        return False

    return True
