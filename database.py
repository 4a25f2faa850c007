"""
MongoDB access.

``db`` is the process-wide database handle; routes receive it through the
``get_db`` dependency so tests can swap in an in-memory database.
"""
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Union

from bson import ObjectId
from pydantic import BaseModel
from pymongo import ASCENDING, DESCENDING, MongoClient
from pymongo.database import Database

from config import DATABASE_NAME, DATABASE_URL

logger = logging.getLogger(__name__)

client = MongoClient(DATABASE_URL)
db = client[DATABASE_NAME]


def get_db() -> Database:
    return db


def utcnow() -> datetime:
    """Naive UTC timestamp, the form pymongo hands back from the database."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def oid(id_str: str) -> Optional[ObjectId]:
    """Parse an id, returning None for anything that is not an ObjectId."""
    if isinstance(id_str, ObjectId):
        return id_str
    if not id_str or not ObjectId.is_valid(id_str):
        return None
    return ObjectId(id_str)


def create_document(database: Database, collection_name: str, data: Union[BaseModel, Dict[str, Any]]) -> str:
    doc = data.model_dump() if isinstance(data, BaseModel) else dict(data)
    doc.pop("id", None)
    now = utcnow()
    doc["created_at"] = now
    doc["updated_at"] = now
    inserted_id = database[collection_name].insert_one(doc).inserted_id
    return str(inserted_id)


def get_documents(database: Database, collection_name: str, filter_dict: Optional[Dict[str, Any]] = None,
                  limit: Optional[int] = None) -> List[Dict[str, Any]]:
    cursor = database[collection_name].find(filter_dict or {}).sort("created_at", DESCENDING)
    if limit:
        cursor = cursor.limit(limit)
    return list(cursor)


def ensure_indexes(database: Database) -> None:
    database["user"].create_index([("email", ASCENDING)], unique=True)
    database["cart"].create_index([("user_id", ASCENDING)], unique=True)
    database["discount"].create_index([("code", ASCENDING)], unique=True)
    database["order"].create_index([("user_id", ASCENDING), ("created_at", DESCENDING)])
    database["advertisement"].create_index([("product_ref", ASCENDING), ("is_active", ASCENDING)])
    logger.info("MongoDB indexes ensured on %s", database.name)
