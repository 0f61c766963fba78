"""Tests for the document store backends."""
from datetime import datetime, timezone

import pytest

from errors import Conflict
from stores import JsonFileStore, MemoryStore, MongoStore, build_store, matches, sort_docs
from config import Settings


def test_matches_equality_in_and_ne():
    doc = {"id": "1", "role": "student", "course_id": "c1"}
    assert matches(doc, {"role": "student"})
    assert matches(doc, {"course_id": {"$in": ["c1", "c2"]}})
    assert not matches(doc, {"course_id": {"$in": []}})
    assert matches(doc, {"role": {"$ne": "teacher"}})
    assert not matches(doc, {"role": "teacher"})
    assert matches(doc, None)


def test_matches_rejects_unknown_operator():
    with pytest.raises(ValueError):
        matches({"a": 1}, {"a": {"$gt": 0}})


def test_sort_docs_multi_key():
    docs = [{"a": 1, "b": 2}, {"a": 0, "b": 5}, {"a": 1, "b": 9}]
    ordered = sort_docs(docs, [("a", -1), ("b", 1)])
    assert [(d["a"], d["b"]) for d in ordered] == [(1, 2), (1, 9), (0, 5)]


async def test_insert_assigns_id_and_get_returns_copy():
    store = MemoryStore()
    doc = await store.insert("course", {"title": "Algorithms"})
    assert doc["id"]
    fetched = await store.get("course", doc["id"])
    fetched["title"] = "changed"
    assert (await store.get("course", doc["id"]))["title"] == "Algorithms"


async def test_get_missing_returns_none():
    assert await MemoryStore().get("course", "nope") is None


async def test_find_with_query_and_sort():
    store = MemoryStore()
    await store.insert("lesson", {"course_id": "c1", "position": 2})
    await store.insert("lesson", {"course_id": "c1", "position": 0})
    await store.insert("lesson", {"course_id": "c2", "position": 1})
    found = await store.find("lesson", {"course_id": "c1"}, sort=[("position", 1)])
    assert [d["position"] for d in found] == [0, 2]
    assert await store.count("lesson") == 3


async def test_unique_index_rejects_duplicate_insert():
    store = MemoryStore()
    await store.ensure_unique("user", ["email"])
    await store.insert("user", {"email": "a@school.edu"})
    with pytest.raises(Conflict):
        await store.insert("user", {"email": "a@school.edu"})


async def test_update_and_update_many():
    store = MemoryStore()
    a = await store.insert("notification", {"user_id": "u1", "read": False})
    await store.insert("notification", {"user_id": "u1", "read": False})
    await store.insert("notification", {"user_id": "u2", "read": False})
    updated = await store.update("notification", a["id"], {"read": True})
    assert updated["read"] is True
    assert await store.update("notification", "missing", {"read": True}) is None
    assert await store.update_many("notification", {"user_id": "u1", "read": False}, {"read": True}) == 1
    assert await store.count("notification", {"read": False}) == 1


async def test_upsert_inserts_then_updates():
    store = MemoryStore()
    await store.ensure_unique("submission", ["assignment_id", "student_id"])
    key = {"assignment_id": "a1", "student_id": "s1"}
    first, created = await store.upsert("submission", key, changes={"content": "v1"}, on_insert={"n": 1})
    assert created
    second, created = await store.upsert("submission", key, changes={"content": "v2"}, on_insert={"n": 2})
    assert not created
    assert second["id"] == first["id"]
    assert second["content"] == "v2"
    assert second["n"] == 1
    assert await store.count("submission") == 1


async def test_upsert_requires_fields():
    with pytest.raises(ValueError):
        await MemoryStore().upsert("x", {"a": 1})


async def test_json_file_store_persists_across_instances(tmp_path):
    path = tmp_path / "data" / "lms.json"
    when = datetime(2026, 3, 2, 9, 30, tzinfo=timezone.utc)
    store = JsonFileStore(str(path))
    doc = await store.insert("assignment", {"title": "Essay", "due_date": when})
    assert path.exists()

    reloaded = JsonFileStore(str(path))
    fetched = await reloaded.get("assignment", doc["id"])
    assert fetched["title"] == "Essay"
    assert fetched["due_date"] == when


def test_build_store_selects_backend(tmp_path):
    assert type(build_store(Settings(store="memory"))) is MemoryStore
    assert isinstance(build_store(Settings(store="json", data_file=str(tmp_path / "x.json"))), JsonFileStore)
    with pytest.raises(RuntimeError):
        build_store(Settings(store="mongo"))


@pytest.fixture
def mongo_store():
    mongomock = pytest.importorskip("mongomock")
    return MongoStore(mongomock.MongoClient()["lms_test"])


async def test_mongo_store_round_trip(mongo_store):
    doc = await mongo_store.insert("course", {"title": "Algorithms", "teacher_id": "t1"})
    assert isinstance(doc["id"], str)
    assert "_id" not in doc
    assert (await mongo_store.get("course", doc["id"]))["title"] == "Algorithms"
    assert await mongo_store.get("course", "not-an-object-id") is None
    found = await mongo_store.find("course", {"id": {"$in": [doc["id"]]}})
    assert [d["id"] for d in found] == [doc["id"]]
    updated = await mongo_store.update("course", doc["id"], {"title": "Data Structures"})
    assert updated["title"] == "Data Structures"


async def test_mongo_store_upsert_and_update_many(mongo_store):
    key = {"student_id": "s1", "course_id": "c1"}
    first, created = await mongo_store.upsert("enrollment", key, on_insert={"status": "enrolled"})
    assert created
    again, created = await mongo_store.upsert("enrollment", key, on_insert={"status": "other"})
    assert not created
    assert again["id"] == first["id"]
    assert again["status"] == "enrolled"
    assert await mongo_store.count("enrollment") == 1
    await mongo_store.insert("notification", {"user_id": "u1", "read": False})
    await mongo_store.insert("notification", {"user_id": "u1", "read": False})
    assert await mongo_store.update_many("notification", {"user_id": "u1", "read": False}, {"read": True}) == 2
    sorted_docs = await mongo_store.find("notification", {"user_id": "u1"}, sort=[("read", 1)])
    assert len(sorted_docs) == 2


def test_sort_docs_orders_missing_values_like_mongodb():
    docs = [{"id": "b", "due": 2}, {"id": "none", "due": None}, {"id": "a", "due": 1}, {"id": "missing"}]
    assert [d["id"] for d in sort_docs(list(docs), [("due", 1)])] == ["none", "missing", "a", "b"]
    assert [d["id"] for d in sort_docs(list(docs), [("due", -1)])] == ["b", "a", "none", "missing"]


async def test_partial_unique_index_only_covers_matching_documents():
    store = MemoryStore()
    await store.ensure_unique("notification", ["user_id", "type", "assignment_id"], where={"type": "deadline-reminder"})
    submitted = {"user_id": "t1", "type": "new-submission", "assignment_id": "a1"}
    await store.insert("notification", submitted)
    await store.insert("notification", submitted)
    reminder = {"user_id": "s1", "type": "deadline-reminder", "assignment_id": "a1"}
    await store.insert("notification", reminder)
    with pytest.raises(Conflict):
        await store.insert("notification", reminder)
    assert await store.count("notification") == 3


async def test_mongo_store_declares_partial_reminder_index(mongo_store):
    from lms import LMSService

    await LMSService(mongo_store).setup()
    info = mongo_store.db["notification"].index_information()
    [reminders] = [i for i in info.values() if i.get("unique")]
    assert [field for field, _ in reminders["key"]] == ["user_id", "type", "assignment_id"]
    assert reminders["partialFilterExpression"] == {"type": "deadline-reminder"}
    assert any(i.get("unique") for i in mongo_store.db["submission"].index_information().values())
