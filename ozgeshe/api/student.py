from datetime import datetime, timezone
from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
from sqlalchemy.orm import selectinload
from typing import List
from ..core.database import get_db
from ..core.auth import CurrentUser, get_current_user, require_student
from ..core.errors import NotFound, ServerError
from ..models.course import Course
from ..models.enrollment import Enrollment
from ..models.order import Order, OrderItem
from ..models.schedule_slot import ScheduleSlot
from ..schemas import (
    EnrollmentResponse, EnrollmentSummary, EnrollmentDetail, CourseProgress,
    EnrollmentCourseDetail, LessonWithProgress, LessonResponse, ProgressState,
    ProgressUpdate, ProgressResponse, ScheduleSlotResponse,
    OrderCreate, OrderResponse
)
from ..utils.calculations import calculate_enrollment_progress
from ..utils.checkout import place_order
from ..utils.enrollment import enroll, submit_homework
import logging

logger = logging.getLogger(__name__)
router = APIRouter()

UPCOMING_SLOTS_LIMIT = 6


@router.post("/courses/{course_id}/enroll", response_model=EnrollmentResponse,
             status_code=status.HTTP_201_CREATED)
async def enroll_in_course(course_id: int, db: AsyncSession = Depends(get_db),
                           user: CurrentUser = Depends(require_student)):
    try:
        return await enroll(db, user, course_id)
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error enrolling user {user.id} in course {course_id}: {e}")
        await db.rollback()
        raise ServerError("Unable to enroll", code="ENROLLMENT_FAILED")


@router.post("/lessons/{lesson_id}/complete", response_model=ProgressResponse)
async def complete_lesson(lesson_id: int, payload: ProgressUpdate, db: AsyncSession = Depends(get_db),
                          user: CurrentUser = Depends(require_student)):
    try:
        return await submit_homework(db, user, lesson_id, payload.homework_answer, payload.is_completed)
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error submitting homework for lesson {lesson_id}: {e}")
        await db.rollback()
        raise ServerError("Unable to submit homework", code="LESSON_PROGRESS_FAILED")


@router.get("/my/enrollments", response_model=List[EnrollmentSummary])
async def get_my_enrollments(db: AsyncSession = Depends(get_db),
                             user: CurrentUser = Depends(require_student)):
    try:
        result = await db.execute(
            select(Enrollment)
            .options(selectinload(Enrollment.course))
            .filter(Enrollment.student_id == user.id)
            .order_by(Enrollment.purchased_at.desc(), Enrollment.id.desc())
        )
        enrollments = result.scalars().all()
        progress = await calculate_enrollment_progress(db, enrollments)

        return [
            EnrollmentSummary(
                id=enrollment.id,
                status=enrollment.status,
                purchased_at=enrollment.purchased_at,
                course=CourseProgress(
                    id=enrollment.course.id,
                    title=enrollment.course.title,
                    level=enrollment.course.level,
                    **progress[enrollment.id]
                )
            )
            for enrollment in enrollments
        ]
    except Exception as e:
        logger.error(f"Error loading enrollments for user {user.id}: {e}")
        raise ServerError("Unable to load enrollments", code="ENROLLMENTS_FETCH_FAILED")


@router.get("/my/enrollments/{enrollment_id}", response_model=EnrollmentDetail)
async def get_my_enrollment(enrollment_id: int, db: AsyncSession = Depends(get_db),
                            user: CurrentUser = Depends(require_student)):
    try:
        result = await db.execute(
            select(Enrollment)
            .options(
                selectinload(Enrollment.course).selectinload(Course.lessons),
                selectinload(Enrollment.lesson_progress)
            )
            .filter(Enrollment.id == enrollment_id, Enrollment.student_id == user.id)
        )
        enrollment = result.scalar_one_or_none()
        if not enrollment:
            raise NotFound("Enrollment not found", code="ENROLLMENT_NOT_FOUND")

        progress_by_lesson = {p.lesson_id: p for p in enrollment.lesson_progress}
        course = enrollment.course

        lessons = []
        for lesson in course.lessons:
            progress = progress_by_lesson.get(lesson.id)
            lessons.append(LessonWithProgress(
                **LessonResponse.model_validate(lesson).model_dump(),
                progress=ProgressState.model_validate(progress) if progress else ProgressState()
            ))

        return EnrollmentDetail(
            id=enrollment.id,
            status=enrollment.status,
            purchased_at=enrollment.purchased_at,
            course=EnrollmentCourseDetail(
                id=course.id,
                title=course.title,
                level=course.level,
                description=course.description,
                lessons=lessons
            )
        )
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error loading enrollment {enrollment_id}: {e}")
        raise ServerError("Unable to load enrollment", code="ENROLLMENT_FETCH_FAILED")


@router.get("/my/schedule", response_model=List[ScheduleSlotResponse])
async def get_my_schedule(db: AsyncSession = Depends(get_db),
                          user: CurrentUser = Depends(require_student)):
    """Next upcoming sessions booked for the student"""
    try:
        result = await db.execute(
            select(ScheduleSlot)
            .options(
                selectinload(ScheduleSlot.course),
                selectinload(ScheduleSlot.lesson),
                selectinload(ScheduleSlot.student),
                selectinload(ScheduleSlot.teacher)
            )
            .filter(ScheduleSlot.student_id == user.id, ScheduleSlot.date >= datetime.now(timezone.utc))
            .order_by(ScheduleSlot.date)
            .limit(UPCOMING_SLOTS_LIMIT)
        )
        return result.scalars().all()
    except Exception as e:
        logger.error(f"Error loading schedule for user {user.id}: {e}")
        raise ServerError("Unable to load schedule", code="MY_SCHEDULE_FAILED")


@router.post("/orders", response_model=OrderResponse, status_code=status.HTTP_201_CREATED)
async def create_order(payload: OrderCreate, db: AsyncSession = Depends(get_db),
                       user: CurrentUser = Depends(get_current_user)):
    try:
        items = [item.model_dump() for item in payload.items]
        return await place_order(db, user, items)
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error placing order for user {user.id}: {e}")
        await db.rollback()
        raise ServerError("Unable to place order", code="ORDER_CREATE_FAILED")


@router.get("/my/orders", response_model=List[OrderResponse])
async def get_my_orders(db: AsyncSession = Depends(get_db),
                        user: CurrentUser = Depends(get_current_user)):
    try:
        result = await db.execute(
            select(Order)
            .options(selectinload(Order.items).selectinload(OrderItem.book))
            .filter(Order.user_id == user.id)
            .order_by(Order.created_at.desc(), Order.id.desc())
        )
        return result.scalars().all()
    except Exception as e:
        logger.error(f"Error loading orders for user {user.id}: {e}")
        raise ServerError("Unable to load orders", code="ORDERS_FETCH_FAILED")
