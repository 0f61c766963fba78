"""
Progress and grade derivations.

Pure functions over documents that have already been loaded; nothing here
touches a store.
"""
import math
from typing import AbstractSet, Iterable, Optional

from schemas import Lesson, Progress, Submission


def round_half_up(value: float) -> int:
    return math.floor(value + 0.5)


def is_lesson_done(lesson: Lesson, completed_lesson_ids: AbstractSet[str], submitted_assignment_ids: AbstractSet[str]) -> bool:
    """Assignment lessons count once submitted; every other lesson once viewed."""
    if lesson.type == "assignment":
        return lesson.content in submitted_assignment_ids
    return lesson.id in completed_lesson_ids


def course_progress(
    lessons: Iterable[Lesson],
    completed_lesson_ids: AbstractSet[str],
    submitted_assignment_ids: AbstractSet[str],
) -> Progress:
    lessons = list(lessons)
    done = sum(1 for lesson in lessons if is_lesson_done(lesson, completed_lesson_ids, submitted_assignment_ids))
    return Progress(completed=done, total=len(lessons))


def mean_grade(grades: Iterable[Optional[int]]) -> Optional[int]:
    """Rounded mean of the grades that are set, or None when none are."""
    graded = [g for g in grades if g is not None]
    if not graded:
        return None
    return round_half_up(sum(graded) / len(graded))


def overall_grade(submissions: Iterable[Submission], assignment_ids: AbstractSet[str]) -> Optional[int]:
    return mean_grade(s.grade for s in submissions if s.assignment_id in assignment_ids)
