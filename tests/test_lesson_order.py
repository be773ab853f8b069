"""
Lesson ordering: insert, move and delete keep orderIndex dense (1..N) and
unique within a course.
"""

import random

import pytest
from sqlalchemy import select

from ozgeshe.models import Course, Lesson
from ozgeshe.utils import lesson_order


async def seed_lessons(add_lesson, account, course_id, names):
    return {name: await add_lesson(account, course_id, name) for name in names}


class TestInsert:
    async def test_appends_by_default(self, teacher, create_course, add_lesson, lesson_titles):
        course = await create_course(teacher)
        first = await add_lesson(teacher, course["id"], "Lesson A")
        second = await add_lesson(teacher, course["id"], "Lesson B")

        assert first["orderIndex"] == 1
        assert second["orderIndex"] == 2
        assert await lesson_titles(course["id"]) == (["Lesson A", "Lesson B"], [1, 2])

    async def test_insert_in_the_middle_shifts_followers(self, teacher, create_course, add_lesson, lesson_titles):
        course = await create_course(teacher)
        await seed_lessons(add_lesson, teacher, course["id"], ["Lesson A", "Lesson B", "Lesson C"])

        created = await add_lesson(teacher, course["id"], "Lesson X", orderIndex=2)

        assert created["orderIndex"] == 2
        assert await lesson_titles(course["id"]) == (
            ["Lesson A", "Lesson X", "Lesson B", "Lesson C"],
            [1, 2, 3, 4],
        )

    async def test_insert_at_front(self, teacher, create_course, add_lesson, lesson_titles):
        course = await create_course(teacher)
        await seed_lessons(add_lesson, teacher, course["id"], ["Lesson A", "Lesson B"])

        await add_lesson(teacher, course["id"], "Lesson X", orderIndex=1)

        assert await lesson_titles(course["id"]) == (["Lesson X", "Lesson A", "Lesson B"], [1, 2, 3])

    async def test_position_past_the_end_is_clamped(self, teacher, create_course, add_lesson, lesson_titles):
        course = await create_course(teacher)
        await seed_lessons(add_lesson, teacher, course["id"], ["Lesson A", "Lesson B"])

        created = await add_lesson(teacher, course["id"], "Lesson X", orderIndex=40)

        assert created["orderIndex"] == 3
        assert (await lesson_titles(course["id"]))[1] == [1, 2, 3]

    async def test_zero_position_is_rejected(self, client, teacher, create_course):
        course = await create_course(teacher)
        response = await client.post(
            f"/courses/{course['id']}/lessons",
            json={
                "title": "Lesson A",
                "description": "Lesson A walkthrough",
                "videoUrl": "https://videos.ozgeshe.kz/a",
                "homeworkText": "Answer the questions",
                "orderIndex": 0,
            },
            headers=teacher.headers,
        )

        assert response.status_code == 400
        assert response.json()["code"] == "VALIDATION_ERROR"


class TestMove:
    async def test_move_last_to_second(self, client, teacher, create_course, add_lesson, lesson_titles):
        course = await create_course(teacher)
        lessons = await seed_lessons(
            add_lesson, teacher, course["id"], ["Lesson A", "Lesson B", "Lesson C", "Lesson D"]
        )

        response = await client.patch(
            f"/lessons/{lessons['Lesson D']['id']}", json={"orderIndex": 2}, headers=teacher.headers
        )

        assert response.status_code == 200
        assert response.json()["orderIndex"] == 2
        assert await lesson_titles(course["id"]) == (
            ["Lesson A", "Lesson D", "Lesson B", "Lesson C"],
            [1, 2, 3, 4],
        )

    async def test_move_first_to_third(self, client, teacher, create_course, add_lesson, lesson_titles):
        course = await create_course(teacher)
        lessons = await seed_lessons(
            add_lesson, teacher, course["id"], ["Lesson A", "Lesson B", "Lesson C", "Lesson D"]
        )

        response = await client.patch(
            f"/lessons/{lessons['Lesson A']['id']}", json={"orderIndex": 3}, headers=teacher.headers
        )

        assert response.status_code == 200
        assert await lesson_titles(course["id"]) == (
            ["Lesson B", "Lesson C", "Lesson A", "Lesson D"],
            [1, 2, 3, 4],
        )

    async def test_target_is_clamped_to_lesson_count(self, client, teacher, create_course, add_lesson, lesson_titles):
        course = await create_course(teacher)
        lessons = await seed_lessons(add_lesson, teacher, course["id"], ["Lesson A", "Lesson B", "Lesson C"])

        response = await client.patch(
            f"/lessons/{lessons['Lesson A']['id']}", json={"orderIndex": 99}, headers=teacher.headers
        )

        assert response.json()["orderIndex"] == 3
        assert await lesson_titles(course["id"]) == (["Lesson B", "Lesson C", "Lesson A"], [1, 2, 3])

    async def test_move_and_rename_together(self, client, teacher, create_course, add_lesson, lesson_titles):
        course = await create_course(teacher)
        lessons = await seed_lessons(add_lesson, teacher, course["id"], ["Lesson A", "Lesson B"])

        response = await client.patch(
            f"/lessons/{lessons['Lesson B']['id']}",
            json={"orderIndex": 1, "title": "Warm-up lesson"},
            headers=teacher.headers,
        )

        assert response.status_code == 200
        assert response.json()["title"] == "Warm-up lesson"
        assert await lesson_titles(course["id"]) == (["Warm-up lesson", "Lesson A"], [1, 2])

    async def test_only_owner_or_admin_can_reorder(self, client, teacher, other_teacher, admin,
                                                   create_course, add_lesson, lesson_titles):
        course = await create_course(teacher)
        lessons = await seed_lessons(add_lesson, teacher, course["id"], ["Lesson A", "Lesson B"])
        url = f"/lessons/{lessons['Lesson B']['id']}"

        denied = await client.patch(url, json={"orderIndex": 1}, headers=other_teacher.headers)
        assert denied.status_code == 403
        assert await lesson_titles(course["id"]) == (["Lesson A", "Lesson B"], [1, 2])

        allowed = await client.patch(url, json={"orderIndex": 1}, headers=admin.headers)
        assert allowed.status_code == 200
        assert await lesson_titles(course["id"]) == (["Lesson B", "Lesson A"], [1, 2])


class TestEdit:
    async def test_null_fields_keep_stored_values(self, client, teacher, create_course, add_lesson):
        course = await create_course(teacher)
        lesson = await add_lesson(teacher, course["id"], "Lesson A",
                                  attachmentUrl="https://files.ozgeshe.kz/worksheet.pdf")

        response = await client.patch(
            f"/lessons/{lesson['id']}",
            json={"attachmentUrl": None, "title": None, "homeworkText": "Rewrite the essay in past tense"},
            headers=teacher.headers,
        )

        assert response.status_code == 200
        assert response.json()["attachmentUrl"] == "https://files.ozgeshe.kz/worksheet.pdf"
        assert response.json()["title"] == "Lesson A"
        assert response.json()["homeworkText"] == "Rewrite the essay in past tense"


class TestDelete:
    async def test_delete_middle_closes_the_gap(self, client, teacher, create_course, add_lesson, lesson_titles):
        course = await create_course(teacher)
        lessons = await seed_lessons(add_lesson, teacher, course["id"], ["Lesson A", "Lesson B", "Lesson C"])

        response = await client.delete(f"/lessons/{lessons['Lesson B']['id']}", headers=teacher.headers)

        assert response.status_code == 200
        assert await lesson_titles(course["id"]) == (["Lesson A", "Lesson C"], [1, 2])

    async def test_delete_removes_progress_rows(self, client, teacher, student, create_course, add_lesson,
                                                session_factory):
        course = await create_course(teacher)
        lesson = await add_lesson(teacher, course["id"], "Lesson A")
        await client.post(f"/courses/{course['id']}/enroll", headers=student.headers)
        await client.post(f"/lessons/{lesson['id']}/complete", json={}, headers=student.headers)

        response = await client.delete(f"/lessons/{lesson['id']}", headers=teacher.headers)
        assert response.status_code == 200

        summary = await client.get("/my/enrollments", headers=student.headers)
        assert summary.json()[0]["course"]["completedLessons"] == 0
        assert summary.json()[0]["course"]["progress"] == 0

    async def test_missing_lesson_is_404(self, client, teacher):
        response = await client.delete("/lessons/9999", headers=teacher.headers)
        assert response.status_code == 404


class TestOrderingService:
    async def test_random_operations_keep_indices_dense(self, teacher, create_course, session_factory):
        course = await create_course(teacher)
        rng = random.Random(20240601)
        fields = {
            "description": "generated lesson",
            "video_url": "https://videos.ozgeshe.kz/x",
            "homework_text": "generated homework",
        }

        for step in range(40):
            async with session_factory() as session:
                lessons = await lesson_order.ordered_lessons(session, course["id"])
                action = rng.choice(["insert", "insert", "move", "delete"]) if lessons else "insert"

                if action == "insert":
                    position = rng.randint(1, len(lessons) + 1)
                    await lesson_order.insert_lesson(
                        session, course["id"], dict(fields, title=f"Step {step}"), position
                    )
                elif action == "move":
                    await lesson_order.move_lesson(session, rng.choice(lessons), rng.randint(1, len(lessons)))
                else:
                    await lesson_order.delete_lesson(session, rng.choice(lessons))

            async with session_factory() as session:
                result = await session.execute(
                    select(Lesson.order_index).filter(Lesson.course_id == course["id"])
                )
                indices = sorted(result.scalars().all())
                assert indices == list(range(1, len(indices) + 1)), f"after step {step} ({action})"

    async def test_failed_insert_rolls_back_the_shift(self, teacher, create_course, add_lesson,
                                                      session_factory, lesson_titles):
        course = await create_course(teacher)
        await add_lesson(teacher, course["id"], "Lesson A")
        await add_lesson(teacher, course["id"], "Lesson B")

        async with session_factory() as session:
            with pytest.raises(Exception):
                # title is NOT NULL, so the insert fails after the shift ran
                await lesson_order.insert_lesson(
                    session,
                    course["id"],
                    {"title": None, "description": "x", "video_url": "https://v", "homework_text": "y"},
                    1,
                )

        assert await lesson_titles(course["id"]) == (["Lesson A", "Lesson B"], [1, 2])

    async def test_lock_course_returns_the_course(self, teacher, create_course, session_factory):
        course = await create_course(teacher)
        async with session_factory() as session:
            locked = await lesson_order.lock_course(session, course["id"])
            assert isinstance(locked, Course)
            assert locked.id == course["id"]
