import enum


class Role(str, enum.Enum):
    STUDENT = "STUDENT"
    TEACHER = "TEACHER"
    ADMIN = "ADMIN"


class Subject(str, enum.Enum):
    ENGLISH = "ENGLISH"
    IELTS = "IELTS"
    KAZAKH = "KAZAKH"
    RUSSIAN = "RUSSIAN"
    MATH = "MATH"
    PHYSICS = "PHYSICS"
    CHEMISTRY = "CHEMISTRY"
    BIOLOGY = "BIOLOGY"
    HISTORY = "HISTORY"
    IT = "IT"
    PROGRAMMING = "PROGRAMMING"
    NIS_PREP = "NIS_PREP"
    ENT_PREP = "ENT_PREP"
    OTHER = "OTHER"


class LessonLevel(str, enum.Enum):
    A1 = "A1"
    A2 = "A2"
    B1 = "B1"
    B2 = "B2"
    C1 = "C1"
    C2 = "C2"


class EnrollmentStatus(str, enum.Enum):
    ACTIVE = "ACTIVE"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"
