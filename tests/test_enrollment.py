import pytest
from sqlalchemy import func, select

from ozgeshe.core.errors import Conflict, NotFound
from ozgeshe.models import Enrollment, LessonProgress
from ozgeshe.utils.enrollment import enroll


class TestEnroll:
    async def test_enroll_twice_conflicts(self, client, teacher, student, create_course):
        course = await create_course(teacher)

        first = await client.post(f"/courses/{course['id']}/enroll", headers=student.headers)
        second = await client.post(f"/courses/{course['id']}/enroll", headers=student.headers)

        assert first.status_code == 201
        assert first.json()["status"] == "ACTIVE"
        assert second.status_code == 409
        assert second.json()["code"] == "ALREADY_ENROLLED"

    async def test_teacher_owned_course_binds_teacher(self, client, teacher, student, create_course):
        course = await create_course(teacher)

        response = await client.post(f"/courses/{course['id']}/enroll", headers=student.headers)

        assert response.json()["teacherId"] == teacher.id

    async def test_admin_owned_course_leaves_teacher_empty(self, client, admin, student, create_course):
        course = await create_course(admin)

        response = await client.post(f"/courses/{course['id']}/enroll", headers=student.headers)

        assert response.status_code == 201
        assert response.json()["teacherId"] is None

    async def test_unpublished_course_is_not_found(self, client, teacher, student, create_course):
        course = await create_course(teacher, isPublished=False)

        response = await client.post(f"/courses/{course['id']}/enroll", headers=student.headers)

        assert response.status_code == 404

    async def test_missing_course_is_not_found(self, client, student):
        response = await client.post("/courses/4242/enroll", headers=student.headers)
        assert response.status_code == 404

    async def test_only_students_enroll(self, client, teacher, other_teacher, create_course):
        course = await create_course(teacher)

        response = await client.post(f"/courses/{course['id']}/enroll", headers=other_teacher.headers)

        assert response.status_code == 403

    async def test_admin_may_enroll_in_unpublished_course(self, teacher, admin, create_course, session_factory):
        course = await create_course(teacher, isPublished=False)

        async with session_factory() as session:
            enrollment = await enroll(session, admin.identity, course["id"])

        assert enrollment.course_id == course["id"]

    async def test_service_raises_typed_failures(self, teacher, student, create_course, session_factory):
        course = await create_course(teacher)

        async with session_factory() as session:
            await enroll(session, student.identity, course["id"])
            with pytest.raises(Conflict):
                await enroll(session, student.identity, course["id"])
            with pytest.raises(NotFound):
                await enroll(session, student.identity, 987654)

        async with session_factory() as session:
            count = await session.scalar(select(func.count(Enrollment.id)))
        assert count == 1


class TestHomework:
    async def test_requires_enrollment(self, client, teacher, student, create_course, add_lesson):
        course = await create_course(teacher)
        lesson = await add_lesson(teacher, course["id"], "Lesson A")

        response = await client.post(
            f"/lessons/{lesson['id']}/complete", json={"homeworkAnswer": "My answer"}, headers=student.headers
        )

        assert response.status_code == 403
        assert response.json()["code"] == "NOT_ENROLLED"

    async def test_missing_lesson(self, client, student):
        response = await client.post("/lessons/777/complete", json={}, headers=student.headers)
        assert response.status_code == 404

    async def test_resubmission_updates_the_same_row(self, client, teacher, student, create_course, add_lesson,
                                                     session_factory):
        course = await create_course(teacher)
        lesson = await add_lesson(teacher, course["id"], "Lesson A")
        await client.post(f"/courses/{course['id']}/enroll", headers=student.headers)
        url = f"/lessons/{lesson['id']}/complete"

        first = await client.post(url, json={"homeworkAnswer": "First draft", "isCompleted": True},
                                  headers=student.headers)
        second = await client.post(url, json={"homeworkAnswer": "Final version", "isCompleted": False},
                                   headers=student.headers)

        assert first.status_code == 200
        assert second.status_code == 200
        assert second.json()["id"] == first.json()["id"]
        assert second.json()["homeworkAnswer"] == "Final version"
        assert second.json()["isCompleted"] is False
        assert second.json()["submittedAt"] is not None

        async with session_factory() as session:
            count = await session.scalar(
                select(func.count(LessonProgress.id)).filter(LessonProgress.lesson_id == lesson["id"])
            )
        assert count == 1

    async def test_completion_defaults_to_true(self, client, teacher, student, create_course, add_lesson):
        course = await create_course(teacher)
        lesson = await add_lesson(teacher, course["id"], "Lesson A")
        await client.post(f"/courses/{course['id']}/enroll", headers=student.headers)

        response = await client.post(f"/lessons/{lesson['id']}/complete", json={}, headers=student.headers)

        assert response.json()["isCompleted"] is True
        assert response.json()["homeworkAnswer"] is None

    async def test_short_answer_is_rejected(self, client, teacher, student, create_course, add_lesson):
        course = await create_course(teacher)
        lesson = await add_lesson(teacher, course["id"], "Lesson A")
        await client.post(f"/courses/{course['id']}/enroll", headers=student.headers)

        response = await client.post(
            f"/lessons/{lesson['id']}/complete", json={"homeworkAnswer": "ok"}, headers=student.headers
        )

        assert response.status_code == 400


class TestProgressReadPath:
    async def test_empty_course_is_zero_percent(self, client, teacher, student, create_course):
        course = await create_course(teacher)
        await client.post(f"/courses/{course['id']}/enroll", headers=student.headers)

        response = await client.get("/my/enrollments", headers=student.headers)

        assert response.status_code == 200
        summary = response.json()[0]["course"]
        assert summary == {
            "id": course["id"],
            "title": course["title"],
            "level": "B2",
            "progress": 0,
            "completedLessons": 0,
            "totalLessons": 0,
        }

    async def test_progress_counts_completed_lessons(self, client, teacher, student, create_course, add_lesson):
        course = await create_course(teacher)
        lessons = [await add_lesson(teacher, course["id"], f"Lesson {name}") for name in "ABC"]
        await client.post(f"/courses/{course['id']}/enroll", headers=student.headers)
        await client.post(f"/lessons/{lessons[0]['id']}/complete", json={}, headers=student.headers)
        await client.post(f"/lessons/{lessons[1]['id']}/complete", json={"isCompleted": False},
                          headers=student.headers)

        summary = (await client.get("/my/enrollments", headers=student.headers)).json()[0]["course"]

        assert summary["completedLessons"] == 1
        assert summary["totalLessons"] == 3
        assert summary["progress"] == 33

    async def test_enrollment_detail_lists_lesson_progress(self, client, teacher, student, other_student,
                                                           create_course, add_lesson):
        course = await create_course(teacher)
        first = await add_lesson(teacher, course["id"], "Lesson A")
        await add_lesson(teacher, course["id"], "Lesson B")
        enrollment = (await client.post(f"/courses/{course['id']}/enroll", headers=student.headers)).json()
        await client.post(f"/lessons/{first['id']}/complete", json={"homeworkAnswer": "Done it"},
                          headers=student.headers)

        response = await client.get(f"/my/enrollments/{enrollment['id']}", headers=student.headers)

        assert response.status_code == 200
        lessons = response.json()["course"]["lessons"]
        assert [lesson["orderIndex"] for lesson in lessons] == [1, 2]
        assert lessons[0]["progress"]["isCompleted"] is True
        assert lessons[0]["progress"]["homeworkAnswer"] == "Done it"
        assert lessons[1]["progress"] == {"isCompleted": False, "homeworkAnswer": None, "submittedAt": None}

        foreign = await client.get(f"/my/enrollments/{enrollment['id']}", headers=other_student.headers)
        assert foreign.status_code == 404

    async def test_course_detail_marks_completed_lessons(self, client, teacher, student, create_course, add_lesson):
        course = await create_course(teacher)
        first = await add_lesson(teacher, course["id"], "Lesson A")
        await add_lesson(teacher, course["id"], "Lesson B")
        await client.post(f"/courses/{course['id']}/enroll", headers=student.headers)
        await client.post(f"/lessons/{first['id']}/complete", json={}, headers=student.headers)

        detail = (await client.get(f"/courses/{course['id']}", headers=student.headers)).json()

        assert [lesson["isCompleted"] for lesson in detail["lessons"]] == [True, False]

    async def test_teacher_sees_enrollments_of_own_courses(self, client, teacher, other_teacher, student,
                                                           create_course):
        course = await create_course(teacher)
        await client.post(f"/courses/{course['id']}/enroll", headers=student.headers)

        mine = (await client.get("/teacher/enrollments", headers=teacher.headers)).json()
        theirs = (await client.get("/teacher/enrollments", headers=other_teacher.headers)).json()

        assert len(mine) == 1
        assert mine[0]["student"]["email"] == student.email
        assert theirs == []
