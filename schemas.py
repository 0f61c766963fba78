"""
Schemas for the LMS

Each entity model corresponds to a document collection. The collection name is the
snake_case of the class name (e.g., User -> "user", LessonCompletion -> "lesson_completion").
Derived views (progress, grade book, dashboards) are computed on read and never stored.
"""
import math
from datetime import datetime, timezone
from typing import Annotated, List, Literal, Optional

from pydantic import AfterValidator, BaseModel, EmailStr, Field, computed_field, field_validator

Role = Literal["student", "teacher"]
LessonType = Literal["text", "video", "assignment", "quiz"]
SubmissionStatus = Literal["submitted", "late", "graded"]
NotificationType = Literal["new-submission", "assignment-graded", "deadline-reminder"]


def _as_utc(value: datetime) -> datetime:
    # document stores hand back naive datetimes; they are always UTC
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


UTCDateTime = Annotated[datetime, AfterValidator(_as_utc)]


# ----------------------
# Stored entities
# ----------------------
class User(BaseModel):
    id: str
    name: str = Field(..., description="Full name")
    email: EmailStr = Field(..., description="Email address")
    role: Role = Field("student", description="User role")


class Course(BaseModel):
    id: str
    title: str
    description: str = ""
    duration: str = ""
    teacher_id: str = Field(..., description="Teacher user id")
    teacher_name: str = Field("", description="Teacher name at creation time")
    created_at: Optional[UTCDateTime] = None


class Module(BaseModel):
    id: str
    course_id: str
    title: str
    position: int = 0


class Lesson(BaseModel):
    id: str
    course_id: str
    module_id: str
    title: str
    type: LessonType = "text"
    content: str = Field("", description="Markdown, a video URL, or an assignment id")
    position: int = 0


class Attachment(BaseModel):
    name: str
    mime_type: str = "application/octet-stream"
    data: str = Field(..., description="Base64 payload")


class Assignment(BaseModel):
    id: str
    course_id: str
    title: str
    description: str = ""
    due_date: UTCDateTime
    attachment: Optional[Attachment] = None


class Submission(BaseModel):
    id: str
    assignment_id: str
    student_id: str
    content: str = ""
    attachment: Optional[Attachment] = None
    submitted_at: UTCDateTime
    grade: Optional[int] = Field(None, ge=0, le=100)
    feedback: Optional[str] = None
    status: SubmissionStatus = "submitted"


class Enrollment(BaseModel):
    id: str
    student_id: str
    course_id: str
    created_at: Optional[UTCDateTime] = None


class LessonCompletion(BaseModel):
    id: str
    user_id: str
    lesson_id: str
    course_id: str
    module_id: str
    completed_at: Optional[UTCDateTime] = None


class Notification(BaseModel):
    id: str
    user_id: str = Field(..., description="Recipient")
    message: str
    type: NotificationType
    read: bool = False
    created_at: UTCDateTime
    link: str = ""
    assignment_id: Optional[str] = None


# ----------------------
# Inputs
# ----------------------
class RegisterRequest(BaseModel):
    name: str = Field(..., min_length=1)
    email: EmailStr
    password: str = Field(..., min_length=1)
    role: Role = "student"


class LoginRequest(BaseModel):
    email: EmailStr
    password: str


class CourseCreate(BaseModel):
    title: str = Field(..., min_length=1)
    description: str = ""
    duration: str = ""


class ModuleCreate(BaseModel):
    title: str = Field(..., min_length=1)


class LessonCreate(BaseModel):
    title: str = Field(..., min_length=1)
    type: LessonType = "text"
    content: str = ""
    due_date: Optional[UTCDateTime] = None


class AssignmentCreate(BaseModel):
    title: str = Field(..., min_length=1)
    description: str = ""
    due_date: UTCDateTime
    attachment: Optional[Attachment] = None


class SubmissionCreate(BaseModel):
    content: str = ""
    attachment: Optional[Attachment] = None


class GradeRequest(BaseModel):
    grade: int = Field(..., ge=0, le=100)
    feedback: Optional[str] = None

    @field_validator("grade", mode="before")
    @classmethod
    def whole_number(cls, v):
        if isinstance(v, bool) or (isinstance(v, float) and not v.is_integer()):
            raise ValueError("grade must be a whole number")
        return v


# ----------------------
# Derived views
# ----------------------
class Progress(BaseModel):
    completed: int = 0
    total: int = 0

    @computed_field
    @property
    def percent(self) -> int:
        if self.total == 0:
            return 0
        return math.floor(self.completed * 100 / self.total + 0.5)


class CourseWithProgress(Course):
    progress: Progress = Field(default_factory=Progress)


class LessonView(Lesson):
    is_completed: bool = False


class ModuleWithLessons(Module):
    lessons: List[LessonView] = Field(default_factory=list)


class GradeEntry(BaseModel):
    student_id: str
    student_name: str
    submission: Optional[Submission] = None


class UpcomingDeadline(BaseModel):
    assignment: Assignment
    course_title: str


class PendingReview(BaseModel):
    submission: Submission
    assignment_title: str
    course_id: str
    student_name: str


class StudentDashboard(BaseModel):
    enrolled_courses: int = 0
    upcoming_deadlines: List[UpcomingDeadline] = Field(default_factory=list)
    average_grade: Optional[int] = None


class TeacherDashboard(BaseModel):
    course_count: int = 0
    student_count: int = 0
    pending_reviews: List[PendingReview] = Field(default_factory=list)
