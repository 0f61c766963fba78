"""Dashboard summaries and the deadline-reminder sweep."""
import logging
from datetime import datetime, timedelta
from typing import AbstractSet, Dict, Iterable, List

from lms import LMSService
from notifications import assignment_link
from progress import mean_grade
from schemas import (
    Assignment,
    Course,
    Notification,
    PendingReview,
    StudentDashboard,
    Submission,
    TeacherDashboard,
    UpcomingDeadline,
)

logger = logging.getLogger(__name__)

UPCOMING_WINDOW = timedelta(days=7)
REMINDER_WINDOW = timedelta(hours=24)


def due_within(
    assignments: Iterable[Assignment],
    submitted_ids: AbstractSet[str],
    now: datetime,
    window: timedelta,
) -> List[Assignment]:
    """Unsubmitted assignments due between now and now + window, soonest first."""
    due = [a for a in assignments if a.id not in submitted_ids and now <= a.due_date <= now + window]
    return sorted(due, key=lambda a: a.due_date)


async def _enrolled_work(service: LMSService, student_id: str):
    enrolls = await service.store.find("enrollment", {"student_id": student_id})
    course_ids = [e["course_id"] for e in enrolls]
    if not course_ids:
        return {}, [], []
    courses = {d["id"]: Course.model_validate(d) for d in await service.store.find("course", {"id": {"$in": course_ids}})}
    assignments = [
        Assignment.model_validate(d)
        for d in await service.store.find("assignment", {"course_id": {"$in": course_ids}})
    ]
    submissions = [
        Submission.model_validate(d)
        for d in await service.store.find("submission", {"student_id": student_id})
    ]
    return courses, assignments, submissions


async def student_dashboard(service: LMSService, student_id: str) -> StudentDashboard:
    courses, assignments, submissions = await _enrolled_work(service, student_id)
    submitted = {s.assignment_id for s in submissions}
    upcoming = due_within(assignments, submitted, service.clock(), UPCOMING_WINDOW)
    return StudentDashboard(
        enrolled_courses=len(courses),
        upcoming_deadlines=[UpcomingDeadline(assignment=a, course_title=courses[a.course_id].title) for a in upcoming],
        average_grade=mean_grade(s.grade for s in submissions),
    )


async def teacher_dashboard(service: LMSService, teacher_id: str) -> TeacherDashboard:
    course_docs = await service.store.find("course", {"teacher_id": teacher_id})
    course_ids = [c["id"] for c in course_docs]
    if not course_ids:
        return TeacherDashboard()
    enrolls = await service.store.find("enrollment", {"course_id": {"$in": course_ids}})
    assignments: Dict[str, Assignment] = {
        d["id"]: Assignment.model_validate(d)
        for d in await service.store.find("assignment", {"course_id": {"$in": course_ids}})
    }
    ungraded = []
    if assignments:
        docs = await service.store.find(
            "submission",
            {"assignment_id": {"$in": list(assignments)}, "grade": None},
            sort=[("submitted_at", -1)],
        )
        ungraded = [Submission.model_validate(d) for d in docs]
    student_ids = {s.student_id for s in ungraded}
    names = {
        d["id"]: d["name"]
        for d in (await service.store.find("user", {"id": {"$in": list(student_ids)}}) if student_ids else [])
    }
    return TeacherDashboard(
        course_count=len(course_ids),
        student_count=len({e["student_id"] for e in enrolls}),
        pending_reviews=[
            PendingReview(
                submission=s,
                assignment_title=assignments[s.assignment_id].title,
                course_id=assignments[s.assignment_id].course_id,
                student_name=names.get(s.student_id, ""),
            )
            for s in ungraded
        ],
    )


async def check_deadlines(service: LMSService, student_id: str) -> List[Notification]:
    """Remind the student of unsubmitted work due within 24 hours.

    Returns only the reminders created by this sweep; running it again for the
    same assignments creates nothing.
    """
    user = await service.get_user(student_id)
    if user.role != "student":
        return []
    _, assignments, submissions = await _enrolled_work(service, student_id)
    submitted = {s.assignment_id for s in submissions}
    created = []
    for a in due_within(assignments, submitted, service.clock(), REMINDER_WINDOW):
        note, is_new = await service.notifications.notify_once(
            student_id,
            "deadline-reminder",
            f'Reminder: "{a.title}" is due within 24 hours.',
            link=assignment_link(a.course_id, a.id),
            assignment_id=a.id,
        )
        if is_new:
            created.append(note)
    if created:
        logger.info("Created %d deadline reminders for %s", len(created), student_id)
    return created
