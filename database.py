"""
Database Helper Functions

MongoDB access for the bookstore API. The connection is opened from the
DATABASE_URL and DATABASE_NAME environment variables; every helper goes
through `get_db()` so the active database can be swapped (tests patch `db`).
"""

import logging
import os
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Union

from bson import ObjectId
from bson.errors import InvalidId
from dotenv import load_dotenv
from pydantic import BaseModel
from pymongo import ASCENDING, MongoClient

logger = logging.getLogger(__name__)

# Load environment variables from .env file
load_dotenv()

_client = None
db = None

database_url = os.getenv("DATABASE_URL")
database_name = os.getenv("DATABASE_NAME")

if database_url and database_name:
    _client = MongoClient(database_url)
    db = _client[database_name]


class DatabaseUnavailable(RuntimeError):
    pass


def get_db():
    if db is None:
        raise DatabaseUnavailable("Database not available. Check DATABASE_URL and DATABASE_NAME environment variables.")
    return db


def collection(name: str):
    return get_db()[name]


def now() -> datetime:
    return datetime.now(timezone.utc)


def to_object_id(value: Union[str, ObjectId, None]) -> Optional[ObjectId]:
    """Parse an id string; returns None for anything that is not a valid ObjectId."""
    if isinstance(value, ObjectId):
        return value
    if not value:
        return None
    try:
        return ObjectId(str(value))
    except (InvalidId, TypeError):
        return None


def create_document(collection_name: str, data: Union[BaseModel, dict]) -> ObjectId:
    """Insert a single document with timestamps and return its _id"""
    if isinstance(data, BaseModel):
        data_dict = data.model_dump()
    else:
        data_dict = data.copy()

    stamp = now()
    data_dict.setdefault("created_at", stamp)
    data_dict["updated_at"] = stamp

    result = collection(collection_name).insert_one(data_dict)
    return result.inserted_id


def get_documents(collection_name: str, filter_dict: Optional[dict] = None, limit: Optional[int] = None, sort: Optional[list] = None):
    """Get documents from collection"""
    cursor = collection(collection_name).find(filter_dict or {})
    if sort:
        cursor = cursor.sort(sort)
    if limit:
        cursor = cursor.limit(limit)
    return list(cursor)


def get_document_by_id(collection_name: str, doc_id: Union[str, ObjectId]) -> Optional[Dict[str, Any]]:
    """Get a single document by _id; invalid ids read as missing"""
    oid = to_object_id(doc_id)
    if oid is None:
        return None
    return collection(collection_name).find_one({"_id": oid})


def update_document(collection_name: str, doc_id: Union[str, ObjectId], data: dict) -> bool:
    """Update a document by id with $set and updated_at. Returns whether it matched."""
    oid = to_object_id(doc_id)
    if oid is None:
        return False
    data = data.copy()
    data["updated_at"] = now()
    res = collection(collection_name).update_one({"_id": oid}, {"$set": data})
    return res.matched_count > 0


def delete_document(collection_name: str, doc_id: Union[str, ObjectId]) -> bool:
    """Delete a document by id"""
    oid = to_object_id(doc_id)
    if oid is None:
        return False
    res = collection(collection_name).delete_one({"_id": oid})
    return res.deleted_count > 0


def serialize_doc(value: Any) -> Any:
    """Make a Mongo document JSON friendly: `_id` becomes `id`, ObjectIds become strings."""
    if isinstance(value, ObjectId):
        return str(value)
    if isinstance(value, list):
        return [serialize_doc(v) for v in value]
    if isinstance(value, dict):
        out = {}
        for k, v in value.items():
            if k == "_id":
                out["id"] = serialize_doc(v)
            else:
                out[k] = serialize_doc(v)
        return out
    return value


def ensure_indexes() -> None:
    """Create the indexes the data model relies on.

    `user.email` is unique. `user.admin_slot` is only set on the admin record,
    so a unique sparse index allows at most one admin.
    """
    database = get_db()
    database["user"].create_index([("email", ASCENDING)], unique=True)
    database["user"].create_index([("admin_slot", ASCENDING)], unique=True, sparse=True)
    database["order"].create_index([("user", ASCENDING), ("ordered_at", ASCENDING)])
    database["complaint"].create_index([("user", ASCENDING), ("created_at", ASCENDING)])
    logger.info("Database indexes ensured on %s", database.name)
