"""The full course flow run against every store backend."""
from datetime import timedelta

import pytest

from conftest import START
from dashboard import check_deadlines, student_dashboard, teacher_dashboard
from stores import JsonFileStore, MemoryStore, MongoStore


@pytest.fixture(params=["memory", "json", "mongo"])
def store(request, tmp_path):
    if request.param == "json":
        return JsonFileStore(str(tmp_path / "lms.json"))
    if request.param == "mongo":
        mongomock = pytest.importorskip("mongomock")
        return MongoStore(mongomock.MongoClient()["lms_test"])
    return MemoryStore()


async def test_course_flow_on_each_backend(service, clock, teacher, student, course):
    module = await service.create_module(teacher, course.id, "Week 1")
    reading = await service.create_lesson(teacher, course.id, module.id, "Reading", "text", "...")
    await service.create_lesson(teacher, course.id, module.id, "Lecture", "video", "https://videos.school.edu/1")
    homework = await service.create_lesson(teacher, course.id, module.id, "Homework", "assignment", "Sort a list")
    quiz = await service.create_assignment(teacher, course.id, "Quiz", due_date=START + timedelta(hours=12))

    await service.enroll_in_course(student, course.id)
    await service.enroll_in_course(student, course.id)
    await service.mark_lesson_as_complete(student, reading.id, course.id, module.id)
    clock.advance(minutes=30)
    sub = await service.submit_assignment(student, homework.content, "sorted")
    assert sub.status == "submitted"

    [mine] = await service.get_my_courses(student.id)
    assert (mine.progress.completed, mine.progress.total, mine.progress.percent) == (2, 3, 67)
    [roster_entry] = await service.get_course_roster(teacher, course.id)
    assert roster_entry.id == student.id

    board = await teacher_dashboard(service, teacher.id)
    assert (board.course_count, board.student_count) == (1, 1)
    assert [p.submission.id for p in board.pending_reviews] == [sub.id]
    assert board.pending_reviews[0].student_name == "Alan Turing"

    await service.grade_submission(teacher, sub.id, 85, "Good job")
    assert await service.get_overall_course_grade(course.id, student.id) == 85
    assert (await teacher_dashboard(service, teacher.id)).pending_reviews == []

    summary = await student_dashboard(service, student.id)
    assert summary.enrolled_courses == 1
    assert summary.average_grade == 85
    assert [d.assignment.id for d in summary.upcoming_deadlines] == [quiz.id]

    reminders = await check_deadlines(service, student.id)
    assert [n.assignment_id for n in reminders] == [quiz.id]
    assert await check_deadlines(service, student.id) == []
    notes = await service.get_notifications(student.id)
    assert sorted(n.type for n in notes) == ["assignment-graded", "deadline-reminder"]
    assert [n.type for n in await service.get_notifications(teacher.id)] == ["new-submission"]
