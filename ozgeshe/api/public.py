from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, func
from sqlalchemy.orm import selectinload
from typing import List, Optional
from ..core.database import get_db
from ..core.auth import CurrentUser, get_optional_user, can_manage
from ..core.errors import NotFound, ServerError
from ..models.enums import Role
from ..models.book import Book
from ..models.course import Course
from ..models.course_group import CourseGroup
from ..models.lesson_progress import LessonProgress
from ..schemas import (
    BookResponse, CourseDetail, CourseGroupResponse, CourseResponse
)
from ..utils.enrollment import find_enrollment
import logging

logger = logging.getLogger(__name__)
router = APIRouter()


def course_query():
    return select(Course).options(
        selectinload(Course.created_by),
        selectinload(Course.group),
        selectinload(Course.lessons),
    )


@router.get("/courses", response_model=List[CourseResponse])
async def get_courses(db: AsyncSession = Depends(get_db)):
    """Published catalogue, newest first"""
    try:
        result = await db.execute(
            course_query()
            .filter(Course.is_published == True)
            .order_by(Course.created_at.desc(), Course.id.desc())
        )
        return result.scalars().all()
    except Exception as e:
        logger.error(f"Error fetching courses: {e}")
        raise ServerError("Unable to fetch courses", code="COURSES_FETCH_FAILED")


@router.get("/courses/{course_id}", response_model=CourseDetail)
async def get_course(course_id: int, db: AsyncSession = Depends(get_db),
                     user: Optional[CurrentUser] = Depends(get_optional_user)):
    """
    Course with its ordered lessons. Unpublished courses are only visible to
    their owner and admins; an enrolled student also sees which lessons are
    completed.
    """
    try:
        result = await db.execute(course_query().filter(Course.id == course_id))
        course = result.scalar_one_or_none()

        if not course:
            raise NotFound("Course not found", code="COURSE_NOT_FOUND")

        if not course.is_published and not (user and can_manage(user, course.created_by_id)):
            raise NotFound("Course not available", code="COURSE_NOT_AVAILABLE")

        completed = set()
        if user and user.role is Role.STUDENT:
            enrollment = await find_enrollment(db, user.id, course.id)
            if enrollment:
                progress_result = await db.execute(
                    select(LessonProgress.lesson_id).filter(
                        LessonProgress.enrollment_id == enrollment.id,
                        LessonProgress.is_completed == True
                    )
                )
                completed = set(progress_result.scalars().all())

        detail = CourseDetail.model_validate(course, from_attributes=True)
        detail.lessons = [
            lesson.model_copy(update={"is_completed": lesson.id in completed})
            for lesson in detail.lessons
        ]
        return detail
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error loading course {course_id}: {e}")
        raise ServerError("Unable to load course", code="COURSE_FETCH_FAILED")


@router.get("/course-groups", response_model=List[CourseGroupResponse])
async def get_course_groups(db: AsyncSession = Depends(get_db)):
    try:
        result = await db.execute(
            select(CourseGroup, func.count(Course.id))
            .outerjoin(Course, Course.group_id == CourseGroup.id)
            .group_by(CourseGroup.id)
            .order_by(CourseGroup.created_at.desc(), CourseGroup.id.desc())
        )
        return [
            CourseGroupResponse(
                id=group.id,
                name=group.name,
                description=group.description,
                subject=group.subject,
                course_count=count
            )
            for group, count in result.all()
        ]
    except Exception as e:
        logger.error(f"Error fetching course groups: {e}")
        raise ServerError("Unable to fetch course groups", code="COURSE_GROUPS_FETCH_FAILED")


@router.get("/books", response_model=List[BookResponse])
async def get_books(db: AsyncSession = Depends(get_db)):
    try:
        result = await db.execute(select(Book).order_by(Book.created_at.desc(), Book.id.desc()))
        return result.scalars().all()
    except Exception as e:
        logger.error(f"Error loading books: {e}")
        raise ServerError("Unable to load books", code="BOOKS_FETCH_FAILED")
