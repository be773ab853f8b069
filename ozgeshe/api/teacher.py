from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, func, or_
from sqlalchemy.orm import selectinload
from typing import List
from ..core.database import get_db
from ..core.auth import CurrentUser, require_staff, ensure_can_manage, can_manage
from ..core.errors import Forbidden, NotFound, ServerError, ValidationFailed
from ..models.enums import Role
from ..models.course import Course
from ..models.course_group import CourseGroup
from ..models.enrollment import Enrollment
from ..models.lesson import Lesson
from ..models.schedule_slot import ScheduleSlot
from ..models.user import User
from ..schemas import (
    CourseCreate, CourseUpdate, CourseResponse, TeacherCourseResponse,
    LessonCreate, LessonUpdate, LessonResponse,
    TeacherEnrollmentResponse,
    ScheduleSlotCreate, ScheduleSlotUpdate, ScheduleSlotResponse
)
from ..utils.checkout import to_money
from ..utils import lesson_order
import logging

logger = logging.getLogger(__name__)
router = APIRouter()


def course_with_relations():
    return select(Course).options(
        selectinload(Course.created_by),
        selectinload(Course.group),
        selectinload(Course.lessons),
    )


def slot_with_relations():
    return select(ScheduleSlot).options(
        selectinload(ScheduleSlot.course),
        selectinload(ScheduleSlot.lesson),
        selectinload(ScheduleSlot.student),
        selectinload(ScheduleSlot.teacher),
    )


async def load_course(db: AsyncSession, course_id: int) -> Course:
    result = await db.execute(
        course_with_relations()
        .filter(Course.id == course_id)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def load_lesson_for_edit(db: AsyncSession, lesson_id: int, user: CurrentUser) -> Lesson:
    result = await db.execute(
        select(Lesson, Course.created_by_id)
        .join(Course, Lesson.course_id == Course.id)
        .filter(Lesson.id == lesson_id)
    )
    row = result.first()
    if not row:
        raise NotFound("Lesson not found", code="LESSON_NOT_FOUND")

    lesson, owner_id = row
    ensure_can_manage(user, owner_id)
    return lesson


def lesson_fields(payload, exclude_unset: bool = False) -> dict:
    fields = payload.model_dump(exclude={"order_index"}, exclude_unset=exclude_unset)
    for key in ("video_url", "attachment_url"):
        if fields.get(key) is not None:
            fields[key] = str(fields[key])
    return fields


# Courses
@router.post("/courses", response_model=CourseResponse, status_code=status.HTTP_201_CREATED)
async def create_course(payload: CourseCreate, db: AsyncSession = Depends(get_db),
                        user: CurrentUser = Depends(require_staff)):
    try:
        if payload.group_id is not None:
            group_result = await db.execute(select(CourseGroup).filter(CourseGroup.id == payload.group_id))
            group = group_result.scalar_one_or_none()
            if not group:
                raise NotFound("Course group not found", code="COURSE_GROUP_NOT_FOUND")
            if group.subject != payload.subject.value:
                raise ValidationFailed("Course subject must match the group subject", code="SUBJECT_MISMATCH")

        if user.role is Role.TEACHER:
            teacher_result = await db.execute(select(User.subjects).filter(User.id == user.id))
            subjects = teacher_result.scalar_one_or_none() or []
            if subjects and payload.subject.value not in subjects:
                raise Forbidden("Subject not permitted for this teacher", code="SUBJECT_NOT_PERMITTED")

        course = Course(
            title=payload.title,
            description=payload.description,
            level=payload.level.value,
            subject=payload.subject.value,
            price=to_money(payload.price),
            is_published=bool(payload.is_published),
            created_by_id=user.id,
            group_id=payload.group_id
        )
        db.add(course)
        await db.commit()

        logger.info(f"Course {course.id} created by user {user.id}")
        return await load_course(db, course.id)
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error creating course: {e}")
        await db.rollback()
        raise ServerError("Unable to create course", code="COURSE_CREATE_FAILED")


@router.patch("/courses/{course_id}", response_model=CourseResponse)
async def update_course(course_id: int, payload: CourseUpdate, db: AsyncSession = Depends(get_db),
                        user: CurrentUser = Depends(require_staff)):
    try:
        result = await db.execute(select(Course).filter(Course.id == course_id))
        course = result.scalar_one_or_none()
        if not course:
            raise NotFound("Course not found", code="COURSE_NOT_FOUND")
        ensure_can_manage(user, course.created_by_id)

        if payload.title is not None:
            course.title = payload.title
        if payload.description is not None:
            course.description = payload.description
        if payload.level is not None:
            course.level = payload.level.value
        if payload.price is not None:
            course.price = to_money(payload.price)
        if payload.is_published is not None:
            course.is_published = payload.is_published

        await db.commit()
        return await load_course(db, course_id)
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error updating course: {e}")
        await db.rollback()
        raise ServerError("Unable to update course", code="COURSE_UPDATE_FAILED")


@router.delete("/courses/{course_id}")
async def delete_course(course_id: int, db: AsyncSession = Depends(get_db),
                        user: CurrentUser = Depends(require_staff)):
    try:
        result = await db.execute(select(Course).filter(Course.id == course_id))
        course = result.scalar_one_or_none()
        if not course:
            raise NotFound("Course not found", code="COURSE_NOT_FOUND")
        ensure_can_manage(user, course.created_by_id)

        await db.delete(course)
        await db.commit()
        logger.info(f"Course {course_id} deleted by user {user.id}")
        return {"success": True}
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error deleting course: {e}")
        await db.rollback()
        raise ServerError("Unable to delete course", code="COURSE_DELETE_FAILED")


@router.get("/teacher/courses", response_model=List[TeacherCourseResponse])
async def get_teacher_courses(db: AsyncSession = Depends(get_db),
                              user: CurrentUser = Depends(require_staff)):
    try:
        query = course_with_relations().order_by(Course.created_at.desc(), Course.id.desc())
        if user.role is not Role.ADMIN:
            query = query.filter(Course.created_by_id == user.id)
        result = await db.execute(query)
        courses = result.scalars().all()

        counts_result = await db.execute(
            select(Enrollment.course_id, func.count(Enrollment.id))
            .filter(Enrollment.course_id.in_([c.id for c in courses]))
            .group_by(Enrollment.course_id)
        )
        counts = dict(counts_result.all())

        return [
            TeacherCourseResponse.model_validate(course).model_copy(
                update={"enrollment_count": counts.get(course.id, 0)}
            )
            for course in courses
        ]
    except Exception as e:
        logger.error(f"Error loading teacher courses: {e}")
        raise ServerError("Unable to load teacher courses", code="TEACHER_COURSES_FAILED")


@router.get("/teacher/enrollments", response_model=List[TeacherEnrollmentResponse])
async def get_teacher_enrollments(db: AsyncSession = Depends(get_db),
                                  user: CurrentUser = Depends(require_staff)):
    try:
        query = (
            select(Enrollment)
            .join(Course, Enrollment.course_id == Course.id)
            .options(selectinload(Enrollment.student), selectinload(Enrollment.course))
            .order_by(Enrollment.purchased_at.desc(), Enrollment.id.desc())
        )
        if user.role is not Role.ADMIN:
            query = query.filter(or_(Enrollment.teacher_id == user.id, Course.created_by_id == user.id))

        result = await db.execute(query)
        return result.scalars().all()
    except Exception as e:
        logger.error(f"Error loading teacher enrollments: {e}")
        raise ServerError("Unable to load teacher enrollments", code="TEACHER_ENROLLMENTS_FAILED")


# Lessons
@router.post("/courses/{course_id}/lessons", response_model=LessonResponse, status_code=status.HTTP_201_CREATED)
async def create_lesson(course_id: int, payload: LessonCreate, db: AsyncSession = Depends(get_db),
                        user: CurrentUser = Depends(require_staff)):
    try:
        result = await db.execute(select(Course).filter(Course.id == course_id))
        course = result.scalar_one_or_none()
        if not course:
            raise NotFound("Course not found", code="COURSE_NOT_FOUND")
        ensure_can_manage(user, course.created_by_id)

        return await lesson_order.insert_lesson(db, course.id, lesson_fields(payload), payload.order_index)
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error creating lesson: {e}")
        await db.rollback()
        raise ServerError("Unable to create lesson", code="LESSON_CREATE_FAILED")


@router.patch("/lessons/{lesson_id}", response_model=LessonResponse)
async def update_lesson(lesson_id: int, payload: LessonUpdate, db: AsyncSession = Depends(get_db),
                        user: CurrentUser = Depends(require_staff)):
    try:
        lesson = await load_lesson_for_edit(db, lesson_id, user)
        fields = {
            key: value
            for key, value in lesson_fields(payload, exclude_unset=True).items()
            if value is not None
        }

        if payload.order_index is not None and payload.order_index != lesson.order_index:
            return await lesson_order.move_lesson(db, lesson, payload.order_index, fields)
        return await lesson_order.update_lesson(db, lesson, fields)
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error updating lesson: {e}")
        await db.rollback()
        raise ServerError("Unable to update lesson", code="LESSON_UPDATE_FAILED")


@router.delete("/lessons/{lesson_id}")
async def delete_lesson(lesson_id: int, db: AsyncSession = Depends(get_db),
                        user: CurrentUser = Depends(require_staff)):
    try:
        lesson = await load_lesson_for_edit(db, lesson_id, user)
        await lesson_order.delete_lesson(db, lesson)
        return {"success": True}
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error deleting lesson: {e}")
        await db.rollback()
        raise ServerError("Unable to delete lesson", code="LESSON_DELETE_FAILED")


# Schedule
async def check_slot_references(db: AsyncSession, course_id: int, lesson_id=None, student_id=None):
    if lesson_id is not None:
        lesson_result = await db.execute(
            select(Lesson.id).filter(Lesson.id == lesson_id, Lesson.course_id == course_id)
        )
        if not lesson_result.scalar_one_or_none():
            raise ValidationFailed("Lesson not part of this course", code="LESSON_NOT_IN_COURSE")

    if student_id is not None:
        student_result = await db.execute(
            select(User.id).filter(User.id == student_id, User.role == Role.STUDENT.value)
        )
        if not student_result.scalar_one_or_none():
            raise ValidationFailed("Student not found", code="STUDENT_NOT_FOUND")


async def load_slot(db: AsyncSession, slot_id: int) -> ScheduleSlot:
    result = await db.execute(
        slot_with_relations()
        .filter(ScheduleSlot.id == slot_id)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


@router.get("/teacher/schedule", response_model=List[ScheduleSlotResponse])
async def get_schedule(db: AsyncSession = Depends(get_db), user: CurrentUser = Depends(require_staff)):
    try:
        query = slot_with_relations().order_by(ScheduleSlot.date)
        if user.role is not Role.ADMIN:
            query = query.filter(ScheduleSlot.teacher_id == user.id)
        result = await db.execute(query)
        return result.scalars().all()
    except Exception as e:
        logger.error(f"Error loading schedule: {e}")
        raise ServerError("Unable to load schedule", code="SCHEDULE_FETCH_FAILED")


@router.post("/teacher/schedule", response_model=ScheduleSlotResponse, status_code=status.HTTP_201_CREATED)
async def create_schedule_slot(payload: ScheduleSlotCreate, db: AsyncSession = Depends(get_db),
                               user: CurrentUser = Depends(require_staff)):
    try:
        result = await db.execute(select(Course).filter(Course.id == payload.course_id))
        course = result.scalar_one_or_none()
        if not course:
            raise NotFound("Course not found", code="COURSE_NOT_FOUND")
        ensure_can_manage(user, course.created_by_id)

        await check_slot_references(db, course.id, payload.lesson_id, payload.student_id)

        slot = ScheduleSlot(
            teacher_id=course.created_by_id if user.role is Role.ADMIN else user.id,
            course_id=course.id,
            lesson_id=payload.lesson_id,
            student_id=payload.student_id,
            date=payload.date,
            duration_minutes=payload.duration_minutes,
            description=payload.description,
            online_link=str(payload.online_link) if payload.online_link else None
        )
        db.add(slot)
        await db.commit()

        logger.info(f"Schedule slot {slot.id} created for course {course.id}")
        return await load_slot(db, slot.id)
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error creating schedule slot: {e}")
        await db.rollback()
        raise ServerError("Unable to create schedule slot", code="SCHEDULE_CREATE_FAILED")


@router.patch("/teacher/schedule/{slot_id}", response_model=ScheduleSlotResponse)
async def update_schedule_slot(slot_id: int, payload: ScheduleSlotUpdate, db: AsyncSession = Depends(get_db),
                               user: CurrentUser = Depends(require_staff)):
    try:
        result = await db.execute(select(ScheduleSlot).filter(ScheduleSlot.id == slot_id))
        slot = result.scalar_one_or_none()
        if not slot:
            raise NotFound("Slot not found", code="SLOT_NOT_FOUND")
        ensure_can_manage(user, slot.teacher_id)

        changes = payload.model_dump(exclude_unset=True)
        course_id = changes.get("course_id") or slot.course_id

        if course_id != slot.course_id:
            course_result = await db.execute(select(Course).filter(Course.id == course_id))
            course = course_result.scalar_one_or_none()
            if not course:
                raise NotFound("Course not found", code="COURSE_NOT_FOUND")
            if not can_manage(user, course.created_by_id):
                raise Forbidden()

        lesson_id = changes.get("lesson_id")
        if course_id != slot.course_id and "lesson_id" not in changes:
            # The kept lesson must belong to the new course too
            lesson_id = slot.lesson_id
        await check_slot_references(db, course_id, lesson_id, changes.get("student_id"))

        if changes.get("online_link") is not None:
            changes["online_link"] = str(changes["online_link"])
        changes["course_id"] = course_id
        for key, value in changes.items():
            setattr(slot, key, value)

        await db.commit()
        return await load_slot(db, slot_id)
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error updating schedule slot: {e}")
        await db.rollback()
        raise ServerError("Unable to update schedule", code="SCHEDULE_UPDATE_FAILED")


@router.delete("/teacher/schedule/{slot_id}")
async def delete_schedule_slot(slot_id: int, db: AsyncSession = Depends(get_db),
                               user: CurrentUser = Depends(require_staff)):
    try:
        result = await db.execute(select(ScheduleSlot).filter(ScheduleSlot.id == slot_id))
        slot = result.scalar_one_or_none()
        if not slot:
            raise NotFound("Slot not found", code="SLOT_NOT_FOUND")
        ensure_can_manage(user, slot.teacher_id)

        await db.delete(slot)
        await db.commit()
        return {"success": True}
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error deleting schedule slot: {e}")
        await db.rollback()
        raise ServerError("Unable to delete schedule slot", code="SCHEDULE_DELETE_FAILED")
