import logging
from datetime import datetime, timedelta, timezone
from typing import List, Optional

import jwt
from fastapi import Depends, FastAPI, Header, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from config import Settings
from dashboard import check_deadlines, student_dashboard, teacher_dashboard
from errors import LMSError, NotFound
from lms import LMSService
from schemas import (
    Assignment,
    AssignmentCreate,
    Course,
    CourseCreate,
    CourseWithProgress,
    Enrollment,
    GradeEntry,
    GradeRequest,
    Lesson,
    LessonCompletion,
    LessonCreate,
    LoginRequest,
    Module,
    ModuleCreate,
    ModuleWithLessons,
    Notification,
    Progress,
    RegisterRequest,
    Submission,
    SubmissionCreate,
    User,
)
from seed import seed_demo
from stores import MongoStore, build_store

settings = Settings.from_env()
logging.basicConfig(level=settings.log_level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
logger = logging.getLogger(__name__)

app = FastAPI(title="LMS API")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

service = LMSService(build_store(settings))


def get_service() -> LMSService:
    return service


# ----------------------
# Auth models & helpers
# ----------------------
class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    user: User


class GradeSummary(BaseModel):
    course_id: str
    student_id: str
    grade: Optional[int] = None
    progress: Progress


def create_token(user: User) -> str:
    payload = {
        "sub": user.id,
        "role": user.role,
        "exp": datetime.now(timezone.utc) + timedelta(minutes=settings.jwt_exp_min),
    }
    return jwt.encode(payload, settings.secret_key, algorithm="HS256")


async def get_current_user(
    authorization: Optional[str] = Header(None),
    svc: LMSService = Depends(get_service),
) -> User:
    if not authorization:
        raise HTTPException(status_code=401, detail="Missing Authorization header")
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token:
        raise HTTPException(status_code=401, detail="Invalid token")
    try:
        payload = jwt.decode(token, settings.secret_key, algorithms=["HS256"])
    except jwt.ExpiredSignatureError:
        raise HTTPException(status_code=401, detail="Token expired")
    except jwt.InvalidTokenError:
        raise HTTPException(status_code=401, detail="Invalid token")
    try:
        return await svc.get_user(payload.get("sub", ""))
    except NotFound:
        raise HTTPException(status_code=401, detail="Invalid token")


@app.exception_handler(LMSError)
async def lms_error_handler(request: Request, exc: LMSError):
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail})


# ----------------------
# Startup
# ----------------------
@app.on_event("startup")
async def prepare_store():
    await service.setup()
    if settings.seed_demo and await seed_demo(service):
        logger.info("Demo data seeded")


# ----------------------
# Basic routes
# ----------------------
@app.get("/")
def root():
    return {"message": "LMS API running"}


@app.get("/test")
def test_database(svc: LMSService = Depends(get_service)):
    response = {
        "backend": "✅ Running",
        "store": settings.store,
        "database": "➖ Not used",
        "collections": [],
    }
    if isinstance(svc.store, MongoStore):
        try:
            response["collections"] = svc.store.db.list_collection_names()
            response["database"] = "✅ Connected & Working"
        except Exception as e:
            response["database"] = f"⚠️ Connected but error: {str(e)[:80]}"
    return response


# ----------------------
# Auth endpoints
# ----------------------
@app.post("/auth/register", response_model=TokenResponse)
async def register(payload: RegisterRequest, svc: LMSService = Depends(get_service)):
    user = await svc.register(payload.name, payload.email, payload.password, payload.role)
    return TokenResponse(access_token=create_token(user), user=user)


@app.post("/auth/login", response_model=TokenResponse)
async def login(payload: LoginRequest, svc: LMSService = Depends(get_service)):
    user = await svc.login(payload.email, payload.password)
    return TokenResponse(access_token=create_token(user), user=user)


@app.get("/me", response_model=User)
async def me(current: User = Depends(get_current_user)):
    return current


@app.get("/me/courses", response_model=List[CourseWithProgress])
async def my_courses(current: User = Depends(get_current_user), svc: LMSService = Depends(get_service)):
    return await svc.get_my_courses(current.id)


# ----------------------
# Courses
# ----------------------
@app.get("/courses", response_model=List[Course])
async def list_courses(svc: LMSService = Depends(get_service)):
    return await svc.get_all_courses()


@app.post("/courses", response_model=Course)
async def create_course(body: CourseCreate, current: User = Depends(get_current_user), svc: LMSService = Depends(get_service)):
    return await svc.create_course(current, body.title, body.description, body.duration)


@app.get("/courses/{course_id}", response_model=Course)
async def get_course(course_id: str, svc: LMSService = Depends(get_service)):
    return await svc.get_course_by_id(course_id)


@app.post("/courses/{course_id}/enroll", response_model=Enrollment)
async def enroll(course_id: str, current: User = Depends(get_current_user), svc: LMSService = Depends(get_service)):
    return await svc.enroll_in_course(current, course_id)


@app.get("/courses/{course_id}/roster", response_model=List[User])
async def roster(course_id: str, current: User = Depends(get_current_user), svc: LMSService = Depends(get_service)):
    return await svc.get_course_roster(current, course_id)


@app.get("/courses/{course_id}/grade", response_model=GradeSummary)
async def course_grade(course_id: str, current: User = Depends(get_current_user), svc: LMSService = Depends(get_service)):
    await svc.get_course_by_id(course_id)
    return GradeSummary(
        course_id=course_id,
        student_id=current.id,
        grade=await svc.get_overall_course_grade(course_id, current.id),
        progress=await svc.get_course_progress(course_id, current.id),
    )


# ----------------------
# Modules & lessons
# ----------------------
@app.get("/courses/{course_id}/modules", response_model=List[ModuleWithLessons])
async def course_modules(course_id: str, current: User = Depends(get_current_user), svc: LMSService = Depends(get_service)):
    return await svc.get_course_modules(course_id, current.id)


@app.post("/courses/{course_id}/modules", response_model=Module)
async def create_module(course_id: str, body: ModuleCreate, current: User = Depends(get_current_user), svc: LMSService = Depends(get_service)):
    return await svc.create_module(current, course_id, body.title)


@app.post("/courses/{course_id}/modules/{module_id}/lessons", response_model=Lesson)
async def create_lesson(
    course_id: str,
    module_id: str,
    body: LessonCreate,
    current: User = Depends(get_current_user),
    svc: LMSService = Depends(get_service),
):
    return await svc.create_lesson(current, course_id, module_id, body.title, body.type, body.content, body.due_date)


@app.post("/courses/{course_id}/modules/{module_id}/lessons/{lesson_id}/complete", response_model=LessonCompletion)
async def complete_lesson(
    course_id: str,
    module_id: str,
    lesson_id: str,
    current: User = Depends(get_current_user),
    svc: LMSService = Depends(get_service),
):
    return await svc.mark_lesson_as_complete(current, lesson_id, course_id, module_id)


# ----------------------
# Assignments & submissions
# ----------------------
@app.get("/courses/{course_id}/assignments", response_model=List[Assignment])
async def course_assignments(course_id: str, svc: LMSService = Depends(get_service)):
    return await svc.get_assignments_for_course(course_id)


@app.post("/courses/{course_id}/assignments", response_model=Assignment)
async def create_assignment(course_id: str, body: AssignmentCreate, current: User = Depends(get_current_user), svc: LMSService = Depends(get_service)):
    return await svc.create_assignment(current, course_id, body.title, body.description, body.due_date, body.attachment)


@app.get("/assignments/{assignment_id}", response_model=Assignment)
async def get_assignment(assignment_id: str, svc: LMSService = Depends(get_service)):
    return await svc.get_assignment_by_id(assignment_id)


@app.get("/assignments/{assignment_id}/submission", response_model=Optional[Submission])
async def my_submission(assignment_id: str, current: User = Depends(get_current_user), svc: LMSService = Depends(get_service)):
    return await svc.get_submission(assignment_id, current.id)


@app.post("/assignments/{assignment_id}/submit", response_model=Submission)
async def submit(assignment_id: str, body: SubmissionCreate, current: User = Depends(get_current_user), svc: LMSService = Depends(get_service)):
    return await svc.submit_assignment(current, assignment_id, body.content, body.attachment)


@app.get("/assignments/{assignment_id}/submissions", response_model=List[GradeEntry])
async def list_submissions(assignment_id: str, current: User = Depends(get_current_user), svc: LMSService = Depends(get_service)):
    return await svc.get_submissions_for_assignment(current, assignment_id)


@app.post("/submissions/{submission_id}/grade", response_model=Submission)
async def grade(submission_id: str, body: GradeRequest, current: User = Depends(get_current_user), svc: LMSService = Depends(get_service)):
    return await svc.grade_submission(current, submission_id, body.grade, body.feedback)


# ----------------------
# Dashboard & notifications
# ----------------------
@app.get("/dashboard")
async def dashboard(current: User = Depends(get_current_user), svc: LMSService = Depends(get_service)):
    if current.role == "teacher":
        return await teacher_dashboard(svc, current.id)
    return await student_dashboard(svc, current.id)


@app.get("/notifications", response_model=List[Notification])
async def list_notifications(current: User = Depends(get_current_user), svc: LMSService = Depends(get_service)):
    return await svc.get_notifications(current.id)


@app.get("/notifications/unread-count")
async def unread_count(current: User = Depends(get_current_user), svc: LMSService = Depends(get_service)):
    return {"unread": await svc.get_unread_count(current.id)}


@app.post("/notifications/check-deadlines", response_model=List[Notification])
async def deadline_check(current: User = Depends(get_current_user), svc: LMSService = Depends(get_service)):
    return await check_deadlines(svc, current.id)


@app.post("/notifications/read-all")
async def read_all(current: User = Depends(get_current_user), svc: LMSService = Depends(get_service)):
    return {"updated": await svc.mark_all_notifications_as_read(current)}


@app.post("/notifications/{notification_id}/read", response_model=Notification)
async def read_one(notification_id: str, current: User = Depends(get_current_user), svc: LMSService = Depends(get_service)):
    return await svc.mark_notification_as_read(current, notification_id)


if __name__ == "__main__":
    import os

    import uvicorn
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)
