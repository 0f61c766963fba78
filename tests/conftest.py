from datetime import datetime, timedelta, timezone

import pytest
from passlib.context import CryptContext

from lms import LMSService
from stores import MemoryStore

START = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)

# cheap hashing keeps the suite fast
FAST_HASHER = CryptContext(schemes=["pbkdf2_sha256"], pbkdf2_sha256__default_rounds=1000)


class FakeClock:
    def __init__(self, now: datetime = START):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store():
    """Provide a fresh in-memory store for each test."""
    return MemoryStore()


@pytest.fixture
async def service(store, clock):
    svc = LMSService(store, clock=clock, hasher=FAST_HASHER)
    await svc.setup()
    return svc


@pytest.fixture
async def teacher(service):
    return await service.register("Grace Hopper", "grace@school.edu", "teach-pass", "teacher")


@pytest.fixture
async def student(service):
    return await service.register("Alan Turing", "alan@school.edu", "learn-pass", "student")


@pytest.fixture
async def course(service, teacher):
    return await service.create_course(teacher, "Algorithms", "Sorting and searching", "8 weeks")
