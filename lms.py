"""
LMS service layer.

``LMSService`` is the single entry point for reads and writes. It never assumes
a particular backend: every call goes through the injected ``Store``. Every
mutation takes the acting user and checks the role rule itself.
"""
import logging
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from passlib.context import CryptContext
from pydantic import ValidationError

from errors import Conflict, InvalidCredentials, InvalidInput, NotFound, Unauthorized
from notifications import NotificationCenter, assignment_link
from progress import course_progress, is_lesson_done, overall_grade
from schemas import (
    Assignment,
    AssignmentCreate,
    Attachment,
    Course,
    CourseCreate,
    CourseWithProgress,
    Enrollment,
    GradeEntry,
    GradeRequest,
    Lesson,
    LessonCompletion,
    LessonCreate,
    LessonType,
    LessonView,
    Module,
    ModuleCreate,
    ModuleWithLessons,
    Notification,
    Progress,
    RegisterRequest,
    Role,
    Submission,
    SubmissionCreate,
    User,
)
from stores import Store

logger = logging.getLogger(__name__)

DEFAULT_ASSIGNMENT_WINDOW = timedelta(days=14)

# (collection, fields, partial filter)
UNIQUE_KEYS: Sequence[Tuple[str, Tuple[str, ...], Optional[Dict[str, str]]]] = (
    ("user", ("email",), None),
    ("enrollment", ("student_id", "course_id"), None),
    ("lesson_completion", ("user_id", "lesson_id"), None),
    ("submission", ("assignment_id", "student_id"), None),
    ("notification", ("user_id", "type", "assignment_id"), {"type": "deadline-reminder"}),
)

pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _validate(model, **data):
    try:
        return model(**data)
    except ValidationError as e:
        first = e.errors()[0]
        field = ".".join(str(p) for p in first["loc"]) or model.__name__
        raise InvalidInput(f"{field}: {first['msg']}") from e


def _require_role(actor: User, role: Role) -> None:
    if actor.role != role:
        logger.warning("User %s (%s) denied: %s role required", actor.id, actor.role, role)
        raise Unauthorized(f"{role.capitalize()} role required")


class LMSService:
    def __init__(self, store: Store, clock: Callable[[], datetime] = utcnow, hasher: CryptContext = pwd_context):
        self.store = store
        self.clock = clock
        self.hasher = hasher
        self.notifications = NotificationCenter(store, clock)

    async def setup(self) -> None:
        """Declare the unique keys the upsert paths rely on."""
        for collection, fields, where in UNIQUE_KEYS:
            await self.store.ensure_unique(collection, fields, where=where)

    # ----------------------
    # Users
    # ----------------------
    async def register(self, name: str, email: str, password: str, role: Role = "student") -> User:
        req = _validate(RegisterRequest, name=name, email=email, password=password, role=role)
        try:
            doc = await self.store.insert("user", {
                "name": req.name,
                "email": req.email.lower(),
                "password_hash": self.hasher.hash(req.password),
                "role": req.role,
                "created_at": self.clock(),
            })
        except Conflict as e:
            raise Conflict("Email already registered") from e
        logger.info("Registered %s as %s", doc["email"], doc["role"])
        return User.model_validate(doc)

    async def login(self, email: str, password: str) -> User:
        doc = await self.store.find_one("user", {"email": email.strip().lower()})
        if not doc or not doc.get("password_hash") or not self.hasher.verify(password, doc["password_hash"]):
            raise InvalidCredentials("Invalid credentials")
        return User.model_validate(doc)

    async def get_user(self, user_id: str) -> User:
        doc = await self.store.get("user", user_id)
        if not doc:
            raise NotFound("User not found")
        return User.model_validate(doc)

    # ----------------------
    # Courses
    # ----------------------
    async def get_all_courses(self) -> List[Course]:
        docs = await self.store.find("course", sort=[("created_at", -1)])
        return [Course.model_validate(d) for d in docs]

    async def get_course_by_id(self, course_id: str) -> Course:
        doc = await self.store.get("course", course_id)
        if not doc:
            raise NotFound("Course not found")
        return Course.model_validate(doc)

    async def _owned_course(self, actor: User, course_id: str) -> Course:
        _require_role(actor, "teacher")
        course = await self.get_course_by_id(course_id)
        if course.teacher_id != actor.id:
            logger.warning("Teacher %s denied on course %s", actor.id, course_id)
            raise Unauthorized("Not your course")
        return course

    async def create_course(self, actor: User, title: str, description: str = "", duration: str = "") -> Course:
        _require_role(actor, "teacher")
        body = _validate(CourseCreate, title=title, description=description, duration=duration)
        teacher = await self.get_user(actor.id)
        doc = await self.store.insert("course", {
            **body.model_dump(),
            "teacher_id": teacher.id,
            "teacher_name": teacher.name,
            "created_at": self.clock(),
        })
        logger.info("Course %s created by %s", doc["id"], teacher.id)
        return Course.model_validate(doc)

    async def enroll_in_course(self, actor: User, course_id: str) -> Enrollment:
        _require_role(actor, "student")
        await self.get_course_by_id(course_id)
        doc, created = await self.store.upsert(
            "enrollment",
            {"student_id": actor.id, "course_id": course_id},
            on_insert={"created_at": self.clock()},
        )
        if created:
            logger.info("Student %s enrolled in %s", actor.id, course_id)
        return Enrollment.model_validate(doc)

    async def is_enrolled(self, student_id: str, course_id: str) -> bool:
        return await self.store.find_one("enrollment", {"student_id": student_id, "course_id": course_id}) is not None

    async def _require_enrolled(self, actor: User, course_id: str) -> None:
        if not await self.is_enrolled(actor.id, course_id):
            logger.warning("Student %s not enrolled in %s", actor.id, course_id)
            raise Unauthorized("Not enrolled in course")

    async def _enrolled_students(self, course_id: str) -> List[User]:
        enrolls = await self.store.find("enrollment", {"course_id": course_id})
        ids = [e["student_id"] for e in enrolls]
        docs = await self.store.find("user", {"id": {"$in": ids}}) if ids else []
        return sorted((User.model_validate(d) for d in docs), key=lambda u: u.name.lower())

    async def get_course_roster(self, actor: User, course_id: str) -> List[User]:
        await self._owned_course(actor, course_id)
        return await self._enrolled_students(course_id)

    async def _lessons(self, course_id: str) -> List[Lesson]:
        docs = await self.store.find("lesson", {"course_id": course_id}, sort=[("position", 1)])
        return [Lesson.model_validate(d) for d in docs]

    async def _completion_sets(self, course_id: str, user_id: str, lessons: List[Lesson]) -> Tuple[set, set]:
        completions = await self.store.find("lesson_completion", {"user_id": user_id, "course_id": course_id})
        assignment_ids = [l.content for l in lessons if l.type == "assignment"]
        submitted = await self.store.find(
            "submission", {"student_id": user_id, "assignment_id": {"$in": assignment_ids}}
        ) if assignment_ids else []
        return {c["lesson_id"] for c in completions}, {s["assignment_id"] for s in submitted}

    async def get_course_progress(self, course_id: str, student_id: str) -> Progress:
        lessons = await self._lessons(course_id)
        completed, submitted = await self._completion_sets(course_id, student_id, lessons)
        return course_progress(lessons, completed, submitted)

    async def get_my_courses(self, user_id: str) -> List[CourseWithProgress]:
        user = await self.get_user(user_id)
        if user.role == "teacher":
            docs = await self.store.find("course", {"teacher_id": user.id}, sort=[("created_at", -1)])
            result = []
            for d in docs:
                total = await self.store.count("lesson", {"course_id": d["id"]})
                result.append(CourseWithProgress(**d, progress=Progress(total=total)))
            return result
        enrolls = await self.store.find("enrollment", {"student_id": user.id})
        course_ids = [e["course_id"] for e in enrolls]
        if not course_ids:
            return []
        docs = await self.store.find("course", {"id": {"$in": course_ids}}, sort=[("created_at", -1)])
        return [
            CourseWithProgress(**d, progress=await self.get_course_progress(d["id"], user.id))
            for d in docs
        ]

    # ----------------------
    # Modules & lessons
    # ----------------------
    async def get_course_modules(self, course_id: str, user_id: str) -> List[ModuleWithLessons]:
        await self.get_course_by_id(course_id)
        modules = await self.store.find("module", {"course_id": course_id}, sort=[("position", 1)])
        lessons = await self._lessons(course_id)
        completed, submitted = await self._completion_sets(course_id, user_id, lessons)
        by_module: Dict[str, List[LessonView]] = {}
        for lesson in lessons:
            view = LessonView(**lesson.model_dump(), is_completed=is_lesson_done(lesson, completed, submitted))
            by_module.setdefault(lesson.module_id, []).append(view)
        return [ModuleWithLessons(**m, lessons=by_module.get(m["id"], [])) for m in modules]

    async def create_module(self, actor: User, course_id: str, title: str) -> Module:
        await self._owned_course(actor, course_id)
        body = _validate(ModuleCreate, title=title)
        position = await self.store.count("module", {"course_id": course_id})
        doc = await self.store.insert("module", {"course_id": course_id, "title": body.title, "position": position})
        return Module.model_validate(doc)

    async def create_lesson(
        self,
        actor: User,
        course_id: str,
        module_id: str,
        title: str,
        type: LessonType = "text",
        content: str = "",
        due_date: Optional[datetime] = None,
    ) -> Lesson:
        await self._owned_course(actor, course_id)
        module = await self.store.get("module", module_id)
        if not module or module["course_id"] != course_id:
            raise NotFound("Module not found")
        body = _validate(LessonCreate, title=title, type=type, content=content, due_date=due_date)
        if body.type == "assignment":
            assignment = await self.create_assignment(
                actor,
                course_id,
                body.title,
                description=body.content,
                due_date=body.due_date or self.clock() + DEFAULT_ASSIGNMENT_WINDOW,
            )
            content = assignment.id
        else:
            content = body.content
        position = await self.store.count("lesson", {"module_id": module_id})
        doc = await self.store.insert("lesson", {
            "course_id": course_id,
            "module_id": module_id,
            "title": body.title,
            "type": body.type,
            "content": content,
            "position": position,
        })
        return Lesson.model_validate(doc)

    async def mark_lesson_as_complete(self, actor: User, lesson_id: str, course_id: str, module_id: str) -> LessonCompletion:
        _require_role(actor, "student")
        lesson = await self.store.get("lesson", lesson_id)
        if not lesson or lesson["course_id"] != course_id or lesson["module_id"] != module_id:
            raise NotFound("Lesson not found")
        if lesson["type"] == "assignment":
            raise InvalidInput("Assignment lessons are completed by submitting the assignment")
        await self._require_enrolled(actor, course_id)
        doc, _ = await self.store.upsert(
            "lesson_completion",
            {"user_id": actor.id, "lesson_id": lesson_id},
            on_insert={"course_id": course_id, "module_id": module_id, "completed_at": self.clock()},
        )
        return LessonCompletion.model_validate(doc)

    # ----------------------
    # Assignments
    # ----------------------
    async def create_assignment(
        self,
        actor: User,
        course_id: str,
        title: str,
        description: str = "",
        due_date: Optional[datetime] = None,
        attachment: Optional[Attachment] = None,
    ) -> Assignment:
        await self._owned_course(actor, course_id)
        body = _validate(AssignmentCreate, title=title, description=description, due_date=due_date, attachment=attachment)
        doc = await self.store.insert("assignment", {
            "course_id": course_id,
            "title": body.title,
            "description": body.description,
            "due_date": body.due_date,
            "attachment": body.attachment.model_dump() if body.attachment else None,
            "created_at": self.clock(),
        })
        logger.info("Assignment %s created in %s", doc["id"], course_id)
        return Assignment.model_validate(doc)

    async def get_assignment_by_id(self, assignment_id: str) -> Assignment:
        doc = await self.store.get("assignment", assignment_id)
        if not doc:
            raise NotFound("Assignment not found")
        return Assignment.model_validate(doc)

    async def get_assignments_for_course(self, course_id: str) -> List[Assignment]:
        await self.get_course_by_id(course_id)
        docs = await self.store.find("assignment", {"course_id": course_id}, sort=[("due_date", 1)])
        return [Assignment.model_validate(d) for d in docs]

    # ----------------------
    # Submissions & grading
    # ----------------------
    async def get_submission(self, assignment_id: str, student_id: str) -> Optional[Submission]:
        doc = await self.store.find_one("submission", {"assignment_id": assignment_id, "student_id": student_id})
        return Submission.model_validate(doc) if doc else None

    async def submit_assignment(
        self,
        actor: User,
        assignment_id: str,
        content: str = "",
        attachment: Optional[Attachment] = None,
    ) -> Submission:
        _require_role(actor, "student")
        assignment = await self.get_assignment_by_id(assignment_id)
        await self._require_enrolled(actor, assignment.course_id)
        body = _validate(SubmissionCreate, content=content, attachment=attachment)
        now = self.clock()
        doc, created = await self.store.upsert(
            "submission",
            {"assignment_id": assignment_id, "student_id": actor.id},
            changes={
                "content": body.content,
                "attachment": body.attachment.model_dump() if body.attachment else None,
                "submitted_at": now,
                "status": "late" if now > assignment.due_date else "submitted",
                "grade": None,
                "feedback": None,
            },
        )
        course = await self.get_course_by_id(assignment.course_id)
        verb = "submitted" if created else "resubmitted"
        await self.notifications.notify(
            course.teacher_id,
            "new-submission",
            f'{actor.name} {verb} an assignment for "{assignment.title}".',
            link=assignment_link(course.id, assignment.id),
            assignment_id=assignment.id,
        )
        logger.info("Student %s %s %s (%s)", actor.id, verb, assignment_id, doc["status"])
        return Submission.model_validate(doc)

    async def get_submissions_for_assignment(self, actor: User, assignment_id: str) -> List[GradeEntry]:
        assignment = await self.get_assignment_by_id(assignment_id)
        await self._owned_course(actor, assignment.course_id)
        students = await self._enrolled_students(assignment.course_id)
        subs = await self.store.find("submission", {"assignment_id": assignment_id})
        by_student = {s["student_id"]: Submission.model_validate(s) for s in subs}
        return [
            GradeEntry(student_id=s.id, student_name=s.name, submission=by_student.get(s.id))
            for s in students
        ]

    async def grade_submission(self, actor: User, submission_id: str, grade: int, feedback: Optional[str] = None) -> Submission:
        sub = await self.store.get("submission", submission_id)
        if not sub:
            raise NotFound("Submission not found")
        assignment = await self.get_assignment_by_id(sub["assignment_id"])
        await self._owned_course(actor, assignment.course_id)
        body = _validate(GradeRequest, grade=grade, feedback=feedback)
        doc = await self.store.update("submission", submission_id, {
            "grade": body.grade,
            "feedback": body.feedback,
            "status": "graded",
            "graded_at": self.clock(),
        })
        await self.notifications.notify(
            sub["student_id"],
            "assignment-graded",
            f'Your submission for "{assignment.title}" has been graded.',
            link=assignment_link(assignment.course_id, assignment.id),
            assignment_id=assignment.id,
        )
        logger.info("Submission %s graded %d by %s", submission_id, body.grade, actor.id)
        return Submission.model_validate(doc)

    async def get_overall_course_grade(self, course_id: str, student_id: str) -> Optional[int]:
        assignments = await self.store.find("assignment", {"course_id": course_id})
        ids = {a["id"] for a in assignments}
        if not ids:
            return None
        docs = await self.store.find("submission", {"student_id": student_id, "assignment_id": {"$in": list(ids)}})
        return overall_grade((Submission.model_validate(d) for d in docs), ids)

    # ----------------------
    # Notifications
    # ----------------------
    async def get_notifications(self, user_id: str) -> List[Notification]:
        return await self.notifications.for_user(user_id)

    async def get_unread_count(self, user_id: str) -> int:
        return await self.notifications.unread_count(user_id)

    async def mark_notification_as_read(self, actor: User, notification_id: str) -> Notification:
        return await self.notifications.mark_read(actor, notification_id)

    async def mark_all_notifications_as_read(self, actor: User) -> int:
        return await self.notifications.mark_all_read(actor)
