"""Demo data for a fresh store."""
import logging
import os

from errors import Conflict
from lms import LMSService

logger = logging.getLogger(__name__)


async def seed_demo(service: LMSService) -> bool:
    """Create a demo teacher, student and course. Returns False if already seeded."""
    teacher_email = os.getenv("DEMO_TEACHER_EMAIL", "teacher@lms.dev")
    student_email = os.getenv("DEMO_STUDENT_EMAIL", "student@lms.dev")
    password = os.getenv("DEMO_PASSWORD", "password123")
    try:
        teacher = await service.register("Grace Hopper", teacher_email, password, "teacher")
    except Conflict:
        return False
    student = await service.register("Alan Turing", student_email, password, "student")

    course = await service.create_course(
        teacher,
        "Introduction to Programming",
        description="Variables, control flow and functions.",
        duration="6 weeks",
    )
    basics = await service.create_module(teacher, course.id, "Getting Started")
    await service.create_lesson(teacher, course.id, basics.id, "Welcome", "text", "# Welcome\nRead the syllabus first.")
    await service.create_lesson(teacher, course.id, basics.id, "Your First Program", "video", "https://example.com/videos/hello-world")
    await service.create_lesson(teacher, course.id, basics.id, "Hello, World", "assignment", "Write a program that prints a greeting.")
    control = await service.create_module(teacher, course.id, "Control Flow")
    await service.create_lesson(teacher, course.id, control.id, "Branches and Loops", "text", "if / while / for")
    await service.create_lesson(teacher, course.id, control.id, "Loop Check", "quiz", "What does `for` iterate over?")

    await service.enroll_in_course(student, course.id)
    logger.info("Seeded demo course %s", course.id)
    return True
