from datetime import datetime
from typing import List, Optional
from pydantic import BaseModel, ConfigDict, EmailStr, Field, HttpUrl, field_validator
from pydantic.alias_generators import to_camel
from .models.enums import Role, Subject, LessonLevel, EnrollmentStatus


class CamelModel(BaseModel):
    """Base for all payloads: camelCase on the wire, snake_case in Python."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )


def _blank_to_none(value):
    if isinstance(value, str) and not value.strip():
        return None
    return value


# Auth / users
class RegisterRequest(CamelModel):
    name: str = Field(min_length=2, max_length=60)
    email: EmailStr
    password: str = Field(min_length=8, max_length=128)
    role: Optional[Role] = None


class LoginRequest(CamelModel):
    email: EmailStr
    password: str = Field(min_length=6, max_length=128)


class UserBrief(CamelModel):
    id: int
    name: str


class UserResponse(CamelModel):
    id: int
    name: str
    email: str
    role: Role
    subjects: List[Subject] = []
    is_active: bool = True
    created_at: Optional[datetime] = None


class TokenResponse(CamelModel):
    token: str
    token_type: str = "bearer"
    user: UserResponse


class UserUpdate(CamelModel):
    role: Optional[Role] = None
    is_active: Optional[bool] = None
    subjects: Optional[List[Subject]] = None


# Course groups
class CourseGroupCreate(CamelModel):
    name: str = Field(min_length=2, max_length=120)
    description: Optional[str] = Field(default=None, max_length=500)
    subject: Subject


class CourseGroupBrief(CamelModel):
    id: int
    name: str
    subject: Subject
    description: Optional[str] = None


class CourseGroupResponse(CourseGroupBrief):
    course_count: int = 0


# Lessons
class LessonCreate(CamelModel):
    title: str = Field(min_length=4, max_length=160)
    description: str = Field(min_length=10, max_length=1200)
    video_url: HttpUrl
    homework_text: str = Field(min_length=10, max_length=3000)
    attachment_url: Optional[HttpUrl] = None
    order_index: Optional[int] = Field(default=None, ge=1)

    @field_validator("attachment_url", mode="before")
    @classmethod
    def blank_attachment(cls, value):
        return _blank_to_none(value)


class LessonUpdate(CamelModel):
    title: Optional[str] = Field(default=None, min_length=4, max_length=160)
    description: Optional[str] = Field(default=None, min_length=10, max_length=1200)
    video_url: Optional[HttpUrl] = None
    homework_text: Optional[str] = Field(default=None, min_length=10, max_length=3000)
    attachment_url: Optional[HttpUrl] = None
    order_index: Optional[int] = Field(default=None, ge=1)

    @field_validator("attachment_url", mode="before")
    @classmethod
    def blank_attachment(cls, value):
        return _blank_to_none(value)


class LessonBrief(CamelModel):
    id: int
    title: str
    order_index: Optional[int] = None


class LessonResponse(CamelModel):
    id: int
    course_id: int
    order_index: int
    title: str
    description: str
    video_url: str
    homework_text: str
    attachment_url: Optional[str] = None


class LessonWithCompletion(LessonResponse):
    is_completed: bool = False


class ProgressUpdate(CamelModel):
    homework_answer: Optional[str] = Field(default=None, min_length=3, max_length=4000)
    is_completed: Optional[bool] = None


class ProgressResponse(CamelModel):
    id: int
    enrollment_id: int
    lesson_id: int
    is_completed: bool
    homework_answer: Optional[str] = None
    submitted_at: Optional[datetime] = None


class ProgressState(CamelModel):
    is_completed: bool = False
    homework_answer: Optional[str] = None
    submitted_at: Optional[datetime] = None


class LessonWithProgress(LessonResponse):
    progress: ProgressState


# Courses
class CourseCreate(CamelModel):
    title: str = Field(min_length=4, max_length=120)
    description: str = Field(min_length=20, max_length=1200)
    level: LessonLevel
    subject: Subject
    price: float = Field(ge=0)
    is_published: Optional[bool] = None
    group_id: Optional[int] = None


class CourseUpdate(CamelModel):
    title: Optional[str] = Field(default=None, min_length=4, max_length=120)
    description: Optional[str] = Field(default=None, min_length=20, max_length=1200)
    level: Optional[LessonLevel] = None
    price: Optional[float] = Field(default=None, ge=0)
    is_published: Optional[bool] = None


class CourseBrief(CamelModel):
    id: int
    title: str
    level: Optional[LessonLevel] = None


class CourseResponse(CamelModel):
    id: int
    title: str
    description: str
    level: LessonLevel
    subject: Subject
    price: float
    is_published: bool
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    created_by: Optional[UserBrief] = None
    group: Optional[CourseGroupBrief] = None
    lessons: List[LessonResponse] = []


class CourseDetail(CourseResponse):
    lessons: List[LessonWithCompletion] = []


class TeacherCourseResponse(CourseResponse):
    created_by_id: int
    enrollment_count: int = 0


# Enrollments
class EnrollmentResponse(CamelModel):
    id: int
    status: EnrollmentStatus
    purchased_at: Optional[datetime] = None
    student_id: int
    course_id: int
    teacher_id: Optional[int] = None


class CourseProgress(CourseBrief):
    progress: int
    completed_lessons: int
    total_lessons: int


class EnrollmentSummary(CamelModel):
    id: int
    status: EnrollmentStatus
    purchased_at: Optional[datetime] = None
    course: CourseProgress


class EnrollmentCourseDetail(CourseBrief):
    description: str
    lessons: List[LessonWithProgress] = []


class EnrollmentDetail(CamelModel):
    id: int
    status: EnrollmentStatus
    purchased_at: Optional[datetime] = None
    course: EnrollmentCourseDetail


class StudentBrief(UserBrief):
    email: Optional[str] = None


class TeacherEnrollmentResponse(CamelModel):
    id: int
    status: EnrollmentStatus
    purchased_at: Optional[datetime] = None
    student: StudentBrief
    course: CourseBrief


# Schedule
class ScheduleSlotCreate(CamelModel):
    course_id: int
    lesson_id: Optional[int] = None
    student_id: Optional[int] = None
    date: datetime
    duration_minutes: int = Field(ge=15, le=180)
    description: Optional[str] = Field(default=None, max_length=500)
    online_link: Optional[HttpUrl] = None


class ScheduleSlotUpdate(CamelModel):
    course_id: Optional[int] = None
    lesson_id: Optional[int] = None
    student_id: Optional[int] = None
    date: Optional[datetime] = None
    duration_minutes: Optional[int] = Field(default=None, ge=15, le=180)
    description: Optional[str] = Field(default=None, max_length=500)
    online_link: Optional[HttpUrl] = None

    @field_validator("course_id", "date", "duration_minutes")
    @classmethod
    def not_null(cls, value):
        if value is None:
            raise ValueError("must not be null")
        return value


class ScheduleSlotResponse(CamelModel):
    id: int
    date: datetime
    duration_minutes: int
    description: Optional[str] = None
    online_link: Optional[str] = None
    teacher_id: int
    course: CourseBrief
    lesson: Optional[LessonBrief] = None
    student: Optional[StudentBrief] = None
    teacher: Optional[UserBrief] = None


# Books / orders
class BookCreate(CamelModel):
    title: str = Field(min_length=2, max_length=160)
    author: str = Field(min_length=2, max_length=120)
    description: str = Field(min_length=10, max_length=2000)
    price: float = Field(ge=0)
    cover_image_url: HttpUrl


class BookUpdate(CamelModel):
    title: Optional[str] = Field(default=None, min_length=2, max_length=160)
    author: Optional[str] = Field(default=None, min_length=2, max_length=120)
    description: Optional[str] = Field(default=None, min_length=10, max_length=2000)
    price: Optional[float] = Field(default=None, ge=0)
    cover_image_url: Optional[HttpUrl] = None


class BookResponse(CamelModel):
    id: int
    title: str
    author: str
    description: str
    price: float
    cover_image_url: str


class OrderItemCreate(CamelModel):
    book_id: int
    quantity: int = Field(ge=1, le=10)


class OrderCreate(CamelModel):
    items: List[OrderItemCreate] = Field(min_length=1)


class OrderItemResponse(CamelModel):
    id: int
    book_id: int
    quantity: int
    price_at_purchase: float
    book: Optional[BookResponse] = None


class OrderResponse(CamelModel):
    id: int
    user_id: int
    total_price: float
    created_at: Optional[datetime] = None
    items: List[OrderItemResponse] = []
