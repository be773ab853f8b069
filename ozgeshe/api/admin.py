from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, func
from typing import List
from ..core.database import get_db
from ..core.auth import CurrentUser, require_admin
from ..core.errors import NotFound, ServerError, ValidationFailed
from ..models.user import User
from ..models.course import Course
from ..models.course_group import CourseGroup
from ..models.book import Book
from ..models.order import OrderItem
from ..schemas import (
    UserResponse, UserUpdate, CourseGroupCreate, CourseGroupResponse,
    BookCreate, BookUpdate, BookResponse
)
from ..utils.checkout import to_money
import logging

logger = logging.getLogger(__name__)
router = APIRouter()


# Users
@router.get("/admin/users", response_model=List[UserResponse])
async def get_users(db: AsyncSession = Depends(get_db), admin: CurrentUser = Depends(require_admin)):
    try:
        result = await db.execute(select(User).order_by(User.created_at.desc(), User.id.desc()))
        return result.scalars().all()
    except Exception as e:
        logger.error(f"Error getting users: {e}")
        raise ServerError("Unable to load users", code="ADMIN_USERS_FAILED")


@router.patch("/admin/users/{user_id}", response_model=UserResponse)
async def update_user(user_id: int, payload: UserUpdate, db: AsyncSession = Depends(get_db),
                      admin: CurrentUser = Depends(require_admin)):
    try:
        result = await db.execute(select(User).filter(User.id == user_id))
        db_user = result.scalar_one_or_none()
        if not db_user:
            raise NotFound("User not found")

        if payload.role is not None:
            db_user.role = payload.role.value
        if payload.is_active is not None:
            db_user.is_active = payload.is_active
        if payload.subjects is not None:
            db_user.subjects = [subject.value for subject in payload.subjects]

        await db.commit()
        await db.refresh(db_user)
        logger.info(f"Admin {admin.id} updated user {user_id}")
        return db_user
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error updating user: {e}")
        await db.rollback()
        raise ServerError("Unable to update user", code="ADMIN_USER_UPDATE_FAILED")


# Course groups
@router.post("/course-groups", response_model=CourseGroupResponse, status_code=status.HTTP_201_CREATED)
async def create_course_group(payload: CourseGroupCreate, db: AsyncSession = Depends(get_db),
                              admin: CurrentUser = Depends(require_admin)):
    try:
        group = CourseGroup(
            name=payload.name,
            description=payload.description,
            subject=payload.subject.value
        )
        db.add(group)
        await db.commit()
        await db.refresh(group)
        return CourseGroupResponse(
            id=group.id,
            name=group.name,
            description=group.description,
            subject=group.subject,
            course_count=0
        )
    except Exception as e:
        logger.error(f"Error creating course group: {e}")
        await db.rollback()
        raise ServerError("Unable to create course group", code="COURSE_GROUP_CREATE_FAILED")


@router.delete("/course-groups/{group_id}")
async def delete_course_group(group_id: int, db: AsyncSession = Depends(get_db),
                              admin: CurrentUser = Depends(require_admin)):
    try:
        result = await db.execute(select(CourseGroup).filter(CourseGroup.id == group_id))
        group = result.scalar_one_or_none()
        if not group:
            raise NotFound("Course group not found")

        courses_count = await db.execute(select(func.count(Course.id)).filter(Course.group_id == group_id))
        if courses_count.scalar():
            raise ValidationFailed("Course group still has linked courses", code="COURSE_GROUP_NOT_EMPTY")

        await db.delete(group)
        await db.commit()
        return {"success": True}
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error deleting course group: {e}")
        await db.rollback()
        raise ServerError("Unable to delete course group", code="COURSE_GROUP_DELETE_FAILED")


# Books
@router.post("/books", response_model=BookResponse, status_code=status.HTTP_201_CREATED)
async def create_book(payload: BookCreate, db: AsyncSession = Depends(get_db),
                      admin: CurrentUser = Depends(require_admin)):
    try:
        book = Book(
            title=payload.title,
            author=payload.author,
            description=payload.description,
            price=to_money(payload.price),
            cover_image_url=str(payload.cover_image_url)
        )
        db.add(book)
        await db.commit()
        await db.refresh(book)
        return book
    except Exception as e:
        logger.error(f"Error creating book: {e}")
        await db.rollback()
        raise ServerError("Unable to create book", code="BOOK_CREATE_FAILED")


@router.patch("/books/{book_id}", response_model=BookResponse)
async def update_book(book_id: int, payload: BookUpdate, db: AsyncSession = Depends(get_db),
                      admin: CurrentUser = Depends(require_admin)):
    try:
        result = await db.execute(select(Book).filter(Book.id == book_id))
        book = result.scalar_one_or_none()
        if not book:
            raise NotFound("Book not found")

        if payload.title is not None:
            book.title = payload.title
        if payload.author is not None:
            book.author = payload.author
        if payload.description is not None:
            book.description = payload.description
        if payload.price is not None:
            book.price = to_money(payload.price)
        if payload.cover_image_url is not None:
            book.cover_image_url = str(payload.cover_image_url)

        await db.commit()
        await db.refresh(book)
        logger.info(f"Book {book_id} updated")
        return book
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error updating book: {e}")
        await db.rollback()
        raise ServerError("Unable to update book", code="BOOK_UPDATE_FAILED")


@router.delete("/books/{book_id}")
async def delete_book(book_id: int, db: AsyncSession = Depends(get_db),
                      admin: CurrentUser = Depends(require_admin)):
    try:
        result = await db.execute(select(Book).filter(Book.id == book_id))
        book = result.scalar_one_or_none()
        if not book:
            raise NotFound("Book not found")

        # Order history keeps referencing the book
        ordered = await db.execute(select(func.count(OrderItem.id)).filter(OrderItem.book_id == book_id))
        if ordered.scalar():
            raise ValidationFailed("Book has existing orders", code="BOOK_HAS_ORDERS")

        await db.delete(book)
        await db.commit()
        return {"success": True}
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error deleting book: {e}")
        await db.rollback()
        raise ServerError("Unable to delete book", code="BOOK_DELETE_FAILED")
