from datetime import datetime, timezone
from typing import Optional
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload
from ..core.auth import CurrentUser
from ..core.errors import Conflict, Forbidden, NotFound
from ..models.course import Course
from ..models.enrollment import Enrollment
from ..models.enums import EnrollmentStatus, Role
from ..models.lesson import Lesson
from ..models.lesson_progress import LessonProgress
import logging

logger = logging.getLogger(__name__)


async def find_enrollment(session: AsyncSession, student_id: int, course_id: int) -> Optional[Enrollment]:
    result = await session.execute(
        select(Enrollment).filter(Enrollment.student_id == student_id, Enrollment.course_id == course_id)
    )
    return result.scalar_one_or_none()


async def enroll(session: AsyncSession, actor: CurrentUser, course_id: int) -> Enrollment:
    """
    Enroll the actor in a course.

    Unpublished courses are only reachable for admins. The teacher of the
    enrollment is the course owner when that owner is a teacher.
    """
    result = await session.execute(
        select(Course).options(selectinload(Course.created_by)).filter(Course.id == course_id)
    )
    course = result.scalar_one_or_none()

    if not course or (not course.is_published and actor.role is not Role.ADMIN):
        raise NotFound("Course not available", code="COURSE_NOT_AVAILABLE")

    if await find_enrollment(session, actor.id, course.id):
        raise Conflict("Already enrolled", code="ALREADY_ENROLLED")

    owner = course.created_by
    enrollment = Enrollment(
        student_id=actor.id,
        course_id=course.id,
        teacher_id=owner.id if owner and owner.role == Role.TEACHER.value else None,
        status=EnrollmentStatus.ACTIVE.value,
    )
    session.add(enrollment)

    try:
        await session.commit()
    except IntegrityError:
        # A concurrent request won the race on (student_id, course_id)
        await session.rollback()
        raise Conflict("Already enrolled", code="ALREADY_ENROLLED")

    await session.refresh(enrollment)
    logger.info(f"Student {actor.id} enrolled in course {course.id}")
    return enrollment


def _apply_submission(progress: LessonProgress, answer: Optional[str], completed: bool):
    progress.homework_answer = answer
    progress.is_completed = completed
    progress.submitted_at = datetime.now(timezone.utc)


async def _find_progress(session: AsyncSession, enrollment_id: int, lesson_id: int) -> Optional[LessonProgress]:
    result = await session.execute(
        select(LessonProgress).filter(
            LessonProgress.enrollment_id == enrollment_id,
            LessonProgress.lesson_id == lesson_id
        )
    )
    return result.scalar_one_or_none()


async def submit_homework(session: AsyncSession, actor: CurrentUser, lesson_id: int,
                          answer: Optional[str] = None, completed: Optional[bool] = None) -> LessonProgress:
    """
    Record the actor's homework for a lesson.

    There is at most one progress row per (enrollment, lesson); a repeated
    submission overwrites the answer, the completion flag and the timestamp.
    """
    completed = True if completed is None else completed

    lesson_result = await session.execute(select(Lesson).filter(Lesson.id == lesson_id))
    lesson = lesson_result.scalar_one_or_none()
    if not lesson:
        raise NotFound("Lesson not found", code="LESSON_NOT_FOUND")

    enrollment = await find_enrollment(session, actor.id, lesson.course_id)
    if not enrollment:
        raise Forbidden("You are not enrolled in this course", code="NOT_ENROLLED")

    progress = await _find_progress(session, enrollment.id, lesson.id)
    if progress is None:
        progress = LessonProgress(enrollment_id=enrollment.id, lesson_id=lesson.id)
        session.add(progress)
    _apply_submission(progress, answer, completed)

    try:
        await session.commit()
    except IntegrityError:
        # Another submission created the row first; update that one instead
        await session.rollback()
        logger.warning(f"Concurrent homework submission for enrollment {enrollment.id}, lesson {lesson.id}")
        progress = await _find_progress(session, enrollment.id, lesson.id)
        if progress is None:
            raise
        _apply_submission(progress, answer, completed)
        await session.commit()

    await session.refresh(progress)
    logger.info(f"Homework submitted for enrollment {enrollment.id}, lesson {lesson.id}")
    return progress
