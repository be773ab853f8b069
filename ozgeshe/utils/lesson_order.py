"""
Dense ordering of lessons inside a course.

For every course the lesson order_index values are exactly 1..N. Each
operation below locks the course row, shifts the affected neighbours and
places the target lesson, all inside one unit of work.
"""

from typing import Optional
from sqlalchemy import select, update, func
from sqlalchemy.ext.asyncio import AsyncSession
from ..core.database import unit_of_work
from ..models.course import Course
from ..models.lesson import Lesson
import logging

logger = logging.getLogger(__name__)

# Never a valid position; the moving lesson waits here while its neighbours shift
PARKING_INDEX = 0


async def lock_course(session: AsyncSession, course_id: int) -> Optional[Course]:
    """Take a row lock on the course so concurrent reorders serialize (no-op on SQLite)."""
    result = await session.execute(
        select(Course).filter(Course.id == course_id).with_for_update()
    )
    return result.scalar_one_or_none()


async def count_lessons(session: AsyncSession, course_id: int) -> int:
    result = await session.execute(
        select(func.count(Lesson.id)).filter(Lesson.course_id == course_id)
    )
    return result.scalar() or 0


def clamp(position: int, lowest: int, highest: int) -> int:
    return min(max(position, lowest), highest)


async def shift_lessons(session: AsyncSession, course_id: int, delta: int,
                        lowest: int, highest: Optional[int] = None):
    """
    Add delta to order_index of the course's lessons in [lowest, highest].

    The rows are first parked on negative values and then flipped back, so
    the (course_id, order_index) unique constraint never sees two rows on
    the same position, whatever order the database applies row updates in.
    """
    conditions = [Lesson.course_id == course_id, Lesson.order_index >= lowest]
    if highest is not None:
        conditions.append(Lesson.order_index <= highest)

    await session.execute(
        update(Lesson)
        .where(*conditions)
        .values(order_index=-(Lesson.order_index + delta))
        .execution_options(synchronize_session=False)
    )
    await session.execute(
        update(Lesson)
        .where(Lesson.course_id == course_id, Lesson.order_index < 0)
        .values(order_index=-Lesson.order_index)
        .execution_options(synchronize_session=False)
    )


async def insert_lesson(session: AsyncSession, course_id: int, fields: dict,
                        position: Optional[int] = None) -> Lesson:
    """Create a lesson at position (defaults to the end), pushing later lessons down."""
    async with unit_of_work(session):
        await lock_course(session, course_id)
        total = await count_lessons(session, course_id)
        order_index = clamp(position or total + 1, 1, total + 1)

        if order_index <= total:
            await shift_lessons(session, course_id, 1, order_index)

        lesson = Lesson(course_id=course_id, order_index=order_index, **fields)
        session.add(lesson)
        await session.flush()

    await session.refresh(lesson)
    logger.info(f"Inserted lesson {lesson.id} into course {course_id} at {order_index}")
    return lesson


async def move_lesson(session: AsyncSession, lesson: Lesson, position: int,
                      fields: Optional[dict] = None) -> Lesson:
    """
    Move a lesson to position (clamped to 1..N) and apply any field updates
    in the same transaction.
    """
    async with unit_of_work(session):
        await lock_course(session, lesson.course_id)
        await session.refresh(lesson)

        current = lesson.order_index
        total = await count_lessons(session, lesson.course_id)
        target = clamp(position, 1, total)

        if target != current:
            await session.execute(
                update(Lesson)
                .where(Lesson.id == lesson.id)
                .values(order_index=PARKING_INDEX)
                .execution_options(synchronize_session=False)
            )
            if target < current:
                await shift_lessons(session, lesson.course_id, 1, target, current - 1)
            else:
                await shift_lessons(session, lesson.course_id, -1, current + 1, target)
            await session.execute(
                update(Lesson)
                .where(Lesson.id == lesson.id)
                .values(order_index=target)
                .execution_options(synchronize_session=False)
            )
            logger.info(f"Moved lesson {lesson.id} in course {lesson.course_id}: {current} -> {target}")

        for key, value in (fields or {}).items():
            setattr(lesson, key, value)
        await session.flush()

    await session.refresh(lesson)
    return lesson


async def update_lesson(session: AsyncSession, lesson: Lesson, fields: dict) -> Lesson:
    async with unit_of_work(session):
        for key, value in fields.items():
            setattr(lesson, key, value)
    await session.refresh(lesson)
    return lesson


async def delete_lesson(session: AsyncSession, lesson: Lesson) -> None:
    """Remove a lesson (and its progress rows) and close the gap behind it."""
    async with unit_of_work(session):
        await lock_course(session, lesson.course_id)
        await session.refresh(lesson)

        course_id = lesson.course_id
        position = lesson.order_index

        await session.delete(lesson)
        await session.flush()
        await shift_lessons(session, course_id, -1, position + 1)

    logger.info(f"Deleted lesson at {position} from course {course_id}")


async def ordered_lessons(session: AsyncSession, course_id: int):
    result = await session.execute(
        select(Lesson)
        .filter(Lesson.course_id == course_id)
        .order_by(Lesson.order_index)
        .execution_options(populate_existing=True)
    )
    return result.scalars().all()
