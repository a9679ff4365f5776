"""
MongoDB access layer.

Collections are named after the lowercased schema class (``user``,
``student``, ``attendance``, ``complaint``). References between documents are
stored as string ids, so ``student.parent_id`` holds ``str(user["_id"])``.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel
from pymongo import ASCENDING, MongoClient
from pymongo.database import Database

import config

logger = logging.getLogger(__name__)

_client: Optional[MongoClient] = None


def utcnow() -> datetime:
    """Naive UTC timestamp, matching what pymongo hands back on reads."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def get_client() -> MongoClient:
    global _client
    if _client is None:
        logger.info("Connecting to MongoDB database %s", config.DATABASE_NAME)
        _client = MongoClient(config.DATABASE_URL, serverSelectionTimeoutMS=5000)
    return _client


def get_db() -> Database:
    return get_client()[config.DATABASE_NAME]


def collection_name(model_cls) -> str:
    return model_cls.__name__.lower()


def create_document(db: Database, collection: str, data: Union[BaseModel, Dict[str, Any]]) -> str:
    doc = data.model_dump() if isinstance(data, BaseModel) else dict(data)
    now = utcnow()
    doc.setdefault("created_at", now)
    doc.setdefault("updated_at", now)
    res = db[collection].insert_one(doc)
    return str(res.inserted_id)


def get_documents(db: Database, collection: str, filter_dict: Optional[Dict[str, Any]] = None,
                  sort: Optional[List] = None) -> List[Dict[str, Any]]:
    cursor = db[collection].find(filter_dict or {})
    if sort:
        cursor = cursor.sort(sort)
    return list(cursor)


def ensure_indexes(db: Database) -> None:
    db["user"].create_index("email", unique=True)
    db["student"].create_index("roll_number", unique=True)
    db["student"].create_index("parent_id")
    # Lookup only; the one-record-per-day rule is checked before insert.
    db["attendance"].create_index([("student_id", ASCENDING), ("date", ASCENDING)])
    db["complaint"].create_index([("student_id", ASCENDING), ("created_at", ASCENDING)])
