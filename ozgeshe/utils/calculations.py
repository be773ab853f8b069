from typing import Dict, Iterable
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, func
from ..models.lesson import Lesson
from ..models.lesson_progress import LessonProgress
import logging
import math

logger = logging.getLogger(__name__)


def progress_percent(completed: int, total: int) -> int:
    """
    Share of completed lessons as a whole percentage, rounded half up.

    A course without lessons is 0% complete.
    """
    if total <= 0:
        return 0
    return int(math.floor(100 * completed / total + 0.5))


async def count_completed_lessons(session: AsyncSession, enrollment_ids: Iterable[int]) -> Dict[int, int]:
    """Completed lesson count per enrollment id"""
    ids = list(enrollment_ids)
    if not ids:
        return {}

    result = await session.execute(
        select(LessonProgress.enrollment_id, func.count(LessonProgress.id))
        .filter(LessonProgress.enrollment_id.in_(ids), LessonProgress.is_completed == True)
        .group_by(LessonProgress.enrollment_id)
    )
    return {enrollment_id: count for enrollment_id, count in result.all()}


async def count_course_lessons(session: AsyncSession, course_ids: Iterable[int]) -> Dict[int, int]:
    """Lesson count per course id"""
    ids = list(course_ids)
    if not ids:
        return {}

    result = await session.execute(
        select(Lesson.course_id, func.count(Lesson.id))
        .filter(Lesson.course_id.in_(ids))
        .group_by(Lesson.course_id)
    )
    return {course_id: count for course_id, count in result.all()}


async def calculate_enrollment_progress(session: AsyncSession, enrollments) -> Dict[int, dict]:
    """
    Progress figures for each enrollment, keyed by enrollment id:
    completed_lessons, total_lessons and the rounded percentage.
    """
    completed = await count_completed_lessons(session, [e.id for e in enrollments])
    totals = await count_course_lessons(session, {e.course_id for e in enrollments})

    summary = {}
    for enrollment in enrollments:
        done = completed.get(enrollment.id, 0)
        total = totals.get(enrollment.course_id, 0)
        summary[enrollment.id] = {
            "completed_lessons": done,
            "total_lessons": total,
            "progress": progress_percent(done, total),
        }

    logger.info(f"Calculated progress for {len(summary)} enrollments")
    return summary
