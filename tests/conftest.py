"""
Shared fixtures: a throwaway SQLite database per test, an HTTP client bound
to the app with get_db overridden, and ready-made accounts for each role.
"""

from dataclasses import dataclass
from typing import Dict

import pytest
from httpx import AsyncClient, ASGITransport
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from ozgeshe.core.auth import CurrentUser, create_access_token
from ozgeshe.core.database import Base, get_db
from ozgeshe.main import app
from ozgeshe.models import Lesson, Role, User


@dataclass
class Account:
    id: int
    role: Role
    name: str
    email: str
    token: str

    @property
    def headers(self) -> Dict[str, str]:
        return {"Authorization": f"Bearer {self.token}"}

    @property
    def identity(self) -> CurrentUser:
        return CurrentUser(id=self.id, role=self.role, name=self.name, email=self.email)


@pytest.fixture
async def engine(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def client(session_factory):
    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as http:
        yield http
    app.dependency_overrides.clear()


@pytest.fixture
def make_account(session_factory):
    async def factory(role: Role, name: str, email: str, is_active: bool = True, subjects=None) -> Account:
        async with session_factory() as session:
            user = User(
                name=name,
                email=email,
                hashed_password="not-a-real-hash",
                role=role.value,
                subjects=subjects or [],
                is_active=is_active,
            )
            session.add(user)
            await session.commit()
            token = create_access_token(data={"sub": user.id, "role": user.role})
            return Account(id=user.id, role=role, name=name, email=email, token=token)

    return factory


@pytest.fixture
async def admin(make_account):
    return await make_account(Role.ADMIN, "Aigerim Admin", "admin@ozgeshe.kz")


@pytest.fixture
async def teacher(make_account):
    return await make_account(Role.TEACHER, "Dana Teacher", "dana@ozgeshe.kz")


@pytest.fixture
async def other_teacher(make_account):
    return await make_account(Role.TEACHER, "Marat Teacher", "marat@ozgeshe.kz")


@pytest.fixture
async def student(make_account):
    return await make_account(Role.STUDENT, "Ali Student", "ali@ozgeshe.kz")


@pytest.fixture
async def other_student(make_account):
    return await make_account(Role.STUDENT, "Aruzhan Student", "aruzhan@ozgeshe.kz")


def course_payload(**overrides):
    payload = {
        "title": "IELTS Intensive",
        "description": "Eight weeks of reading, writing and speaking practice.",
        "level": "B2",
        "subject": "IELTS",
        "price": 120,
        "isPublished": True,
    }
    payload.update(overrides)
    return payload


def lesson_payload(title: str, **overrides):
    payload = {
        "title": title,
        "description": f"{title} walkthrough and examples",
        "videoUrl": "https://videos.ozgeshe.kz/lesson",
        "homeworkText": f"Write a short essay about {title}",
    }
    payload.update(overrides)
    return payload


@pytest.fixture
def create_course(client):
    async def factory(account: Account, **overrides) -> dict:
        response = await client.post("/courses", json=course_payload(**overrides), headers=account.headers)
        assert response.status_code == 201, response.text
        return response.json()

    return factory


@pytest.fixture
def add_lesson(client):
    async def factory(account: Account, course_id: int, title: str, **overrides) -> dict:
        response = await client.post(
            f"/courses/{course_id}/lessons",
            json=lesson_payload(title, **overrides),
            headers=account.headers,
        )
        assert response.status_code == 201, response.text
        return response.json()

    return factory


@pytest.fixture
def lesson_titles(session_factory):
    """Titles of a course's lessons ordered by orderIndex, plus the raw indices."""

    async def read(course_id: int):
        async with session_factory() as session:
            result = await session.execute(
                select(Lesson.title, Lesson.order_index)
                .filter(Lesson.course_id == course_id)
                .order_by(Lesson.order_index)
            )
            rows = result.all()
        return [title for title, _ in rows], [index for _, index in rows]

    return read
