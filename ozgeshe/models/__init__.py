from .enums import Role, Subject, LessonLevel, EnrollmentStatus
from .user import User
from .course_group import CourseGroup
from .course import Course
from .lesson import Lesson
from .enrollment import Enrollment
from .lesson_progress import LessonProgress
from .schedule_slot import ScheduleSlot
from .book import Book
from .order import Order, OrderItem

__all__ = [
    "Role",
    "Subject",
    "LessonLevel",
    "EnrollmentStatus",
    "User",
    "CourseGroup",
    "Course",
    "Lesson",
    "Enrollment",
    "LessonProgress",
    "ScheduleSlot",
    "Book",
    "Order",
    "OrderItem"
]
