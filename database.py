"""
MongoDB access for the charity API.

Collections used by the services:
- programs
- donations
- volunteers
- users
- otps

`db` is None when DATABASE_URL is not set; the test suite swaps it for a
mongomock database.
"""

import logging
import os
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

from bson import ObjectId
from bson.errors import InvalidId
from dotenv import load_dotenv
from pymongo import MongoClient
from pydantic import BaseModel

load_dotenv()

logger = logging.getLogger(__name__)

DATABASE_URL = os.getenv("DATABASE_URL")
DATABASE_NAME = os.getenv("DATABASE_NAME", "charity")
USE_TRANSACTIONS = os.getenv("DB_TRANSACTIONS", "1") not in ("0", "false", "False")

client: Optional[MongoClient] = None
db = None

if DATABASE_URL:
    client = MongoClient(DATABASE_URL)
    db = client[DATABASE_NAME]


def now_utc() -> datetime:
    return datetime.now(timezone.utc)


def to_object_id(doc_id: Union[str, ObjectId]) -> Optional[ObjectId]:
    """Parse a string id; returns None for ids that cannot exist."""
    if isinstance(doc_id, ObjectId):
        return doc_id
    try:
        return ObjectId(doc_id)
    except (InvalidId, TypeError):
        return None


def serialize_doc(doc: Optional[dict]):
    if not doc:
        return doc
    doc = dict(doc)
    _id = doc.pop("_id", None)
    if _id is not None:
        doc["id"] = str(_id)
    return doc


def _session_kwargs(session) -> dict:
    return {"session": session} if session is not None else {}


def create_document(collection_name: str, data: Union[BaseModel, dict], session=None) -> str:
    """Insert a document, stamping created_at/updated_at unless provided."""
    if isinstance(data, BaseModel):
        data = data.model_dump(mode="json")
    doc = dict(data)
    now = now_utc()
    doc.setdefault("created_at", now)
    doc.setdefault("updated_at", now)
    result = db[collection_name].insert_one(doc, **_session_kwargs(session))
    return str(result.inserted_id)


def get_documents(
    collection_name: str,
    filter_dict: Optional[dict] = None,
    sort: Optional[List[Tuple[str, int]]] = None,
    limit: Optional[int] = None,
    session=None,
) -> List[dict]:
    cursor = db[collection_name].find(filter_dict or {}, **_session_kwargs(session))
    if sort:
        cursor = cursor.sort(sort)
    if limit:
        cursor = cursor.limit(limit)
    return list(cursor)


def get_document(collection_name: str, doc_id: Union[str, ObjectId], session=None) -> Optional[dict]:
    oid = to_object_id(doc_id)
    if oid is None:
        return None
    return db[collection_name].find_one({"_id": oid}, **_session_kwargs(session))


def find_document(collection_name: str, filter_dict: dict, session=None) -> Optional[dict]:
    return db[collection_name].find_one(filter_dict, **_session_kwargs(session))


def update_document(collection_name: str, doc_id: Union[str, ObjectId], fields: Dict[str, Any], session=None) -> bool:
    """$set the given fields; returns False when no document matched."""
    oid = to_object_id(doc_id)
    if oid is None:
        return False
    result = db[collection_name].update_one({"_id": oid}, {"$set": fields}, **_session_kwargs(session))
    return result.matched_count > 0


def delete_document(collection_name: str, doc_id: Union[str, ObjectId], session=None) -> bool:
    oid = to_object_id(doc_id)
    if oid is None:
        return False
    result = db[collection_name].delete_one({"_id": oid}, **_session_kwargs(session))
    return result.deleted_count > 0


def delete_documents(collection_name: str, filter_dict: Optional[dict] = None, session=None) -> int:
    result = db[collection_name].delete_many(filter_dict or {}, **_session_kwargs(session))
    return result.deleted_count


def count_documents(collection_name: str, filter_dict: Optional[dict] = None, session=None) -> int:
    return db[collection_name].count_documents(filter_dict or {}, **_session_kwargs(session))


def run_transaction(callback: Callable[[Any], Any]):
    """Run callback(session) inside a multi-document transaction.

    Transactions need a replica set. With DB_TRANSACTIONS=0 (or no client)
    the callback runs with session=None against the plain collections.
    """
    if client is None or not USE_TRANSACTIONS:
        return callback(None)
    with client.start_session() as session:
        return session.with_transaction(callback)


@contextmanager
def watch(collection_name: str, pipeline: Optional[list] = None):
    """Open a change stream on a collection."""
    stream = db[collection_name].watch(pipeline or [])
    try:
        yield stream
    finally:
        stream.close()
