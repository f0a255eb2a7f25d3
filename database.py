"""
MongoDB access shared by every router.

One client is created at import time and reused for all requests. Each entity
lives in its own collection named after the lowercase schema class
(e.g. ``Product`` -> ``"product"``).
"""
import logging
import math
import re
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Union

from bson import ObjectId
from pydantic import BaseModel
from pymongo import MongoClient

from config import DATABASE_NAME, DATABASE_URL

logger = logging.getLogger(__name__)

client = MongoClient(DATABASE_URL)
db = client[DATABASE_NAME]


def now_utc() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    # pymongo hands datetimes back naive, in UTC
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def find_by_id(collection_name: str, id_str: str) -> Optional[dict]:
    """Return the document for a string id, or None when it is missing or malformed."""
    if not ObjectId.is_valid(id_str):
        return None
    return db[collection_name].find_one({"_id": ObjectId(id_str)})


def serialize_document(doc: Optional[dict]) -> Optional[dict]:
    if not doc:
        return doc
    doc = dict(doc)
    _id = doc.pop("_id", None)
    if _id is not None:
        doc["id"] = str(_id)
    return doc


def create_document(collection_name: str, data: Union[BaseModel, dict]) -> str:
    data_dict = data.model_dump() if isinstance(data, BaseModel) else dict(data)
    data_dict["created_at"] = now_utc()
    data_dict["updated_at"] = now_utc()
    result = db[collection_name].insert_one(data_dict)
    logger.debug("Inserted %s into %s", result.inserted_id, collection_name)
    return str(result.inserted_id)


def get_documents(
    collection_name: str,
    filter_dict: Optional[Dict[str, Any]] = None,
    page: int = 1,
    limit: Optional[int] = None,
    sort: Optional[List[tuple]] = None,
) -> List[dict]:
    cursor = db[collection_name].find(filter_dict or {})
    if sort:
        cursor = cursor.sort(sort)
    if limit:
        cursor = cursor.skip((page - 1) * limit).limit(limit)
    return list(cursor)


def contains(text: str) -> dict:
    """Case-insensitive substring match on a string field."""
    return {"$regex": re.escape(text), "$options": "i"}


def pagination(page: int, limit: int, total: int) -> dict:
    return {
        "current_page": page,
        "total_pages": math.ceil(total / limit) if limit else 0,
        "total": total,
        "limit": limit,
    }
