"""
Document stores behind the LMS service.

Every backend speaks the same asynchronous interface over named collections of
plain dict documents keyed by a string ``id``. Queries are MongoDB-style filter
dicts limited to field equality, ``$in`` and ``$ne``; sorts are lists of
``(field, 1 | -1)`` pairs.
"""
import asyncio
import copy
import logging
import os
from datetime import timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple

from bson import ObjectId, json_util
from pymongo import ASCENDING, ReturnDocument
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

from config import Settings
from database import get_database, oid, serialize_doc, to_mongo_query
from errors import Conflict

logger = logging.getLogger(__name__)

Query = Dict[str, Any]
Sort = Sequence[Tuple[str, int]]

JSON_OPTIONS = json_util.RELAXED_JSON_OPTIONS.with_options(tz_aware=True, tzinfo=timezone.utc)


def new_id() -> str:
    return str(ObjectId())


def matches(doc: Dict[str, Any], query: Optional[Query]) -> bool:
    for field, cond in (query or {}).items():
        value = doc.get(field)
        if isinstance(cond, dict):
            for op, arg in cond.items():
                if op == "$in":
                    ok = value in arg
                elif op == "$ne":
                    ok = value != arg
                else:
                    raise ValueError(f"Unsupported query operator: {op}")
                if not ok:
                    return False
        elif value != cond:
            return False
    return True


def sort_docs(docs: List[Dict[str, Any]], sort: Optional[Sort]) -> List[Dict[str, Any]]:
    # stable sorts applied last key first give a multi-key ordering;
    # missing and None values sort lowest, as MongoDB orders null
    for field, direction in reversed(list(sort or [])):
        docs.sort(key=lambda d: (d.get(field) is not None, d.get(field)), reverse=direction < 0)
    return docs


class Store:
    """Asynchronous document store over named collections."""

    async def insert(self, collection: str, doc: Dict[str, Any]) -> Dict[str, Any]:
        raise NotImplementedError

    async def get(self, collection: str, doc_id: str) -> Optional[Dict[str, Any]]:
        raise NotImplementedError

    async def find_one(self, collection: str, query: Query) -> Optional[Dict[str, Any]]:
        raise NotImplementedError

    async def find(self, collection: str, query: Optional[Query] = None, sort: Optional[Sort] = None) -> List[Dict[str, Any]]:
        raise NotImplementedError

    async def count(self, collection: str, query: Optional[Query] = None) -> int:
        raise NotImplementedError

    async def update(self, collection: str, doc_id: str, changes: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        raise NotImplementedError

    async def update_many(self, collection: str, query: Query, changes: Dict[str, Any]) -> int:
        raise NotImplementedError

    async def upsert(
        self,
        collection: str,
        key: Query,
        changes: Optional[Dict[str, Any]] = None,
        on_insert: Optional[Dict[str, Any]] = None,
    ) -> Tuple[Dict[str, Any], bool]:
        """Atomically update the document matching ``key`` or create it.

        ``on_insert`` fields are only written when the document is created.
        Returns the stored document and whether it was created.
        """
        raise NotImplementedError

    async def ensure_unique(self, collection: str, fields: Sequence[str], where: Optional[Query] = None) -> None:
        """Declare a unique index; with ``where`` it only covers documents matching that filter."""
        raise NotImplementedError


class MemoryStore(Store):
    """Collections held in dicts owned by this instance.

    ``latency`` (seconds) is awaited at the start of each call to mimic a
    backend round trip. Nothing yields between a read and the write that
    depends on it, so every call is atomic on the event loop.
    """

    def __init__(self, latency: float = 0.0):
        self.latency = latency
        self._collections: Dict[str, Dict[str, Dict[str, Any]]] = {}
        self._unique: Dict[str, List[Tuple[Tuple[str, ...], Optional[Query]]]] = {}

    async def _io(self) -> None:
        await asyncio.sleep(self.latency)

    def _coll(self, name: str) -> Dict[str, Dict[str, Any]]:
        return self._collections.setdefault(name, {})

    def _changed(self) -> None:
        """Called after every mutation."""

    def _check_unique(self, collection: str, doc: Dict[str, Any], skip_id: Optional[str] = None) -> None:
        for fields, where in self._unique.get(collection, []):
            if where and not matches(doc, where):
                continue
            key = tuple(doc.get(f) for f in fields)
            for other in self._coll(collection).values():
                if other["id"] == skip_id or (where and not matches(other, where)):
                    continue
                if tuple(other.get(f) for f in fields) == key:
                    raise Conflict(f"Duplicate {collection} for {', '.join(fields)}")

    async def insert(self, collection, doc):
        await self._io()
        stored = copy.deepcopy(doc)
        stored["id"] = stored.get("id") or new_id()
        if stored["id"] in self._coll(collection):
            raise Conflict(f"Duplicate {collection} id {stored['id']}")
        self._check_unique(collection, stored)
        self._coll(collection)[stored["id"]] = stored
        self._changed()
        logger.debug("insert %s %s", collection, stored["id"])
        return copy.deepcopy(stored)

    async def get(self, collection, doc_id):
        await self._io()
        doc = self._coll(collection).get(doc_id)
        return copy.deepcopy(doc) if doc else None

    async def find_one(self, collection, query):
        await self._io()
        for doc in self._coll(collection).values():
            if matches(doc, query):
                return copy.deepcopy(doc)
        return None

    async def find(self, collection, query=None, sort=None):
        await self._io()
        docs = [copy.deepcopy(d) for d in self._coll(collection).values() if matches(d, query)]
        return sort_docs(docs, sort)

    async def count(self, collection, query=None):
        await self._io()
        return sum(1 for d in self._coll(collection).values() if matches(d, query))

    async def update(self, collection, doc_id, changes):
        await self._io()
        doc = self._coll(collection).get(doc_id)
        if doc is None:
            return None
        candidate = {**doc, **copy.deepcopy(changes)}
        self._check_unique(collection, candidate, skip_id=doc_id)
        doc.update(copy.deepcopy(changes))
        self._changed()
        logger.debug("update %s %s", collection, doc_id)
        return copy.deepcopy(doc)

    async def update_many(self, collection, query, changes):
        await self._io()
        hits = [d for d in self._coll(collection).values() if matches(d, query)]
        for doc in hits:
            doc.update(copy.deepcopy(changes))
        if hits:
            self._changed()
        logger.debug("update_many %s matched %d", collection, len(hits))
        return len(hits)

    async def upsert(self, collection, key, changes=None, on_insert=None):
        if not changes and not on_insert:
            raise ValueError("upsert needs changes or on_insert fields")
        await self._io()
        for doc in self._coll(collection).values():
            if matches(doc, key):
                if changes:
                    doc.update(copy.deepcopy(changes))
                    self._changed()
                return copy.deepcopy(doc), False
        stored = {**copy.deepcopy(key), **copy.deepcopy(on_insert or {}), **copy.deepcopy(changes or {})}
        stored["id"] = new_id()
        self._check_unique(collection, stored)
        self._coll(collection)[stored["id"]] = stored
        self._changed()
        logger.debug("upsert created %s %s", collection, stored["id"])
        return copy.deepcopy(stored), True

    async def ensure_unique(self, collection, fields, where=None):
        index = (tuple(fields), copy.deepcopy(where))
        indexes = self._unique.setdefault(collection, [])
        if index not in indexes:
            indexes.append(index)


class JsonFileStore(MemoryStore):
    """A MemoryStore written through to a JSON file after every mutation."""

    def __init__(self, path: str, latency: float = 0.0):
        super().__init__(latency)
        self.path = Path(path)
        if self.path.exists():
            self._collections = json_util.loads(self.path.read_text(encoding="utf-8"), json_options=JSON_OPTIONS)
            logger.info("Loaded %s", self.path)

    def _changed(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_name(self.path.name + ".tmp")
        tmp.write_text(json_util.dumps(self._collections, json_options=JSON_OPTIONS, indent=2), encoding="utf-8")
        os.replace(tmp, self.path)


class MongoStore(Store):
    """MongoDB collections through pymongo; blocking calls run in a worker thread."""

    def __init__(self, db: Database):
        self.db = db

    async def _run(self, fn, *args, **kwargs):
        return await asyncio.to_thread(fn, *args, **kwargs)

    async def insert(self, collection, doc):
        data = {k: v for k, v in doc.items() if k != "id"}
        try:
            res = await self._run(self.db[collection].insert_one, data)
        except DuplicateKeyError as e:
            raise Conflict(f"Duplicate {collection}") from e
        data["_id"] = res.inserted_id
        return serialize_doc(data)

    async def get(self, collection, doc_id):
        _id = oid(doc_id)
        if _id is None:
            return None
        return serialize_doc(await self._run(self.db[collection].find_one, {"_id": _id}))

    async def find_one(self, collection, query):
        return serialize_doc(await self._run(self.db[collection].find_one, to_mongo_query(query)))

    async def find(self, collection, query=None, sort=None):
        def _find():
            cursor = self.db[collection].find(to_mongo_query(query))
            if sort:
                cursor = cursor.sort(list(sort))
            return [serialize_doc(d) for d in cursor]

        return await self._run(_find)

    async def count(self, collection, query=None):
        return await self._run(self.db[collection].count_documents, to_mongo_query(query))

    async def update(self, collection, doc_id, changes):
        _id = oid(doc_id)
        if _id is None:
            return None
        try:
            doc = await self._run(
                self.db[collection].find_one_and_update,
                {"_id": _id},
                {"$set": changes},
                return_document=ReturnDocument.AFTER,
            )
        except DuplicateKeyError as e:
            raise Conflict(f"Duplicate {collection}") from e
        return serialize_doc(doc)

    async def update_many(self, collection, query, changes):
        res = await self._run(self.db[collection].update_many, to_mongo_query(query), {"$set": changes})
        return res.modified_count

    async def upsert(self, collection, key, changes=None, on_insert=None):
        if not changes and not on_insert:
            raise ValueError("upsert needs changes or on_insert fields")
        update = {}
        if changes:
            update["$set"] = changes
        if on_insert:
            update["$setOnInsert"] = on_insert
        coll = self.db[collection]
        try:
            res = await self._run(coll.update_one, key, update, upsert=True)
            created = res.upserted_id is not None
        except DuplicateKeyError:
            # a concurrent upsert inserted first; ours becomes a plain update
            if changes:
                await self._run(coll.update_one, key, {"$set": changes})
            created = False
        doc = await self._run(coll.find_one, key)
        return serialize_doc(doc), created

    async def ensure_unique(self, collection, fields, where=None):
        options = {"unique": True}
        if where:
            options["partialFilterExpression"] = where
        await self._run(self.db[collection].create_index, [(f, ASCENDING) for f in fields], **options)


def build_store(settings: Settings) -> Store:
    if settings.store == "mongo":
        db = get_database(settings.database_url, settings.database_name)
        if db is None:
            raise RuntimeError("LMS_STORE=mongo requires DATABASE_URL and DATABASE_NAME")
        logger.info("Using MongoDB store %s", settings.database_name)
        return MongoStore(db)
    if settings.store == "json":
        logger.info("Using JSON file store %s", settings.data_file)
        return JsonFileStore(settings.data_file, latency=settings.latency)
    logger.info("Using in-memory store")
    return MemoryStore(latency=settings.latency)
