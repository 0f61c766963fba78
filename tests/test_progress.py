from datetime import datetime, timezone

from progress import course_progress, mean_grade, overall_grade, round_half_up
from schemas import Assignment, Lesson, Progress, Submission


def _lesson(lesson_id, type="text", content=""):
    return Lesson(id=lesson_id, course_id="c1", module_id="m1", title=lesson_id, type=type, content=content)


def _graded(assignment_id, grade):
    return Submission(
        id=f"s-{assignment_id}",
        assignment_id=assignment_id,
        student_id="u1",
        submitted_at=datetime(2026, 1, 1, tzinfo=timezone.utc),
        grade=grade,
        status="graded" if grade is not None else "submitted",
    )


def test_round_half_up():
    assert round_half_up(84.5) == 85
    assert round_half_up(84.49) == 84
    assert round_half_up(0.5) == 1


def test_mean_grade_example():
    assert mean_grade([80, 90, 70]) == 80


def test_mean_grade_ignores_ungraded():
    assert mean_grade([None, 90, None, 85]) == 88


def test_mean_grade_none_when_nothing_graded():
    assert mean_grade([]) is None
    assert mean_grade([None, None]) is None


def test_overall_grade_only_counts_course_assignments():
    subs = [_graded("a1", 100), _graded("a2", 60), _graded("other", 0)]
    assert overall_grade(subs, {"a1", "a2"}) == 80


def test_course_progress_mixes_completions_and_submissions():
    lessons = [
        _lesson("l1"),
        _lesson("l2", "video"),
        _lesson("l3", "assignment", "a1"),
        _lesson("l4", "assignment", "a2"),
        _lesson("l5", "quiz"),
    ]
    progress = course_progress(lessons, completed_lesson_ids={"l1", "l5"}, submitted_assignment_ids={"a2"})
    assert progress.completed == 3
    assert progress.total == 5
    assert progress.percent == 60


def test_completion_record_does_not_count_for_assignment_lesson():
    lessons = [_lesson("l1", "assignment", "a1")]
    progress = course_progress(lessons, completed_lesson_ids={"l1"}, submitted_assignment_ids=set())
    assert progress.completed == 0


def test_empty_course_reports_zero_percent():
    progress = course_progress([], set(), set())
    assert progress.total == 0
    assert progress.percent == 0
    assert progress.model_dump()["percent"] == 0


def test_progress_percent_rounds_half_up():
    assert Progress(completed=1, total=8).percent == 13


def test_naive_datetimes_are_read_as_utc():
    a = Assignment(id="a1", course_id="c1", title="Essay", due_date=datetime(2026, 5, 1, 12, 0))
    assert a.due_date.tzinfo is not None
    assert a.due_date == datetime(2026, 5, 1, 12, 0, tzinfo=timezone.utc)
