"""
MongoDB connection helpers.

Documents keep their MongoDB ``_id`` (an ObjectId) on the wire; callers only
ever see a string ``id``.
"""
import logging
from typing import Any, Dict, Optional

from bson import ObjectId
from bson.errors import InvalidId
from pymongo import MongoClient
from pymongo.database import Database

logger = logging.getLogger(__name__)


def get_database(database_url: Optional[str], database_name: Optional[str]) -> Optional[Database]:
    """Return a pymongo database handle, or None when the connection is not configured."""
    if not database_url or not database_name:
        logger.warning("DATABASE_URL / DATABASE_NAME not set; MongoDB unavailable")
        return None
    client = MongoClient(database_url, tz_aware=True)
    return client[database_name]


def oid(id_str: Any) -> Optional[ObjectId]:
    if isinstance(id_str, ObjectId):
        return id_str
    try:
        return ObjectId(id_str)
    except (InvalidId, TypeError):
        return None


def serialize_doc(doc: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    if not doc:
        return doc
    d = {**doc}
    if "_id" in d:
        d["id"] = str(d.pop("_id"))
    return d


def to_mongo_query(query: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """Rewrite an ``id`` filter into its ``_id`` form."""
    if not query:
        return {}
    q = {k: v for k, v in query.items() if k != "id"}
    if "id" in query:
        cond = query["id"]
        if isinstance(cond, dict):
            q["_id"] = {op: ([oid(v) for v in val] if isinstance(val, (list, tuple)) else oid(val)) for op, val in cond.items()}
        else:
            q["_id"] = oid(cond)
    return q
