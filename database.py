"""
MongoDB access helpers.

Collections are named after the lowercase schema class (User -> "user",
Product -> "product").
"""
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel
from pymongo import ASCENDING, MongoClient

from config import DATABASE_NAME, DATABASE_URL

logger = logging.getLogger(__name__)

# MongoClient connects lazily, so importing this module never blocks on the server.
client = MongoClient(DATABASE_URL)
db = client[DATABASE_NAME]


def create_document(collection_name: str, data: Union[BaseModel, dict]) -> str:
    """Insert a document, stamping created_at/updated_at, and return its id."""
    if isinstance(data, BaseModel):
        doc = data.model_dump()
    else:
        doc = dict(data)
    now = datetime.now(timezone.utc)
    doc.setdefault("created_at", now)
    doc["updated_at"] = now
    result = db[collection_name].insert_one(doc)
    return str(result.inserted_id)


def get_documents(collection_name: str, filter_dict: Optional[Dict[str, Any]] = None, limit: Optional[int] = None) -> List[dict]:
    cursor = db[collection_name].find(filter_dict or {})
    if limit:
        cursor = cursor.limit(limit)
    return list(cursor)


def ensure_indexes():
    db["user"].create_index([("username", ASCENDING)], unique=True)
    db["user"].create_index([("email", ASCENDING)], unique=True)
    db["product"].create_index([("slug", ASCENDING)], unique=True)
    db["product"].create_index([("name", ASCENDING)], unique=True)
    logger.info("Indexes ensured on database %s", db.name)
