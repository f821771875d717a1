"""
MongoDB access for MindBridge.

A single client is created at import; request handlers receive the database
through the `get_db` dependency so tests can swap in an in-memory store.
"""
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Union

from bson import ObjectId
from pydantic import BaseModel
from pymongo import ASCENDING, DESCENDING, MongoClient
from pymongo.database import Database

from config import DATABASE_NAME, DATABASE_URL
from errors import ValidationError

logger = logging.getLogger(__name__)

client = MongoClient(DATABASE_URL, serverSelectionTimeoutMS=5000, tz_aware=True)
db = client[DATABASE_NAME]


def get_db() -> Database:
    return db


def now_utc() -> datetime:
    return datetime.now(timezone.utc)


def oid(id_str: str) -> ObjectId:
    if isinstance(id_str, ObjectId):
        return id_str
    if not id_str or not ObjectId.is_valid(str(id_str)):
        raise ValidationError("Invalid ID")
    return ObjectId(str(id_str))


def create_document(collection_name: str, data: Union[BaseModel, Dict[str, Any]], database: Optional[Database] = None) -> str:
    """Insert a document, stamping created_at/updated_at, and return its id."""
    target = database if database is not None else db
    doc = data.model_dump() if isinstance(data, BaseModel) else dict(data)
    stamp = now_utc()
    doc.setdefault("created_at", stamp)
    doc["updated_at"] = stamp
    result = target[collection_name].insert_one(doc)
    return str(result.inserted_id)


def ensure_indexes(database: Database) -> None:
    database["user"].create_index([("email", ASCENDING)], unique=True)
    database["session"].create_index([("token", ASCENDING)])
    database["message"].create_index([("conversation_id", ASCENDING), ("created_at", DESCENDING)])
    database["message"].create_index([("sender_id", ASCENDING), ("receiver_id", ASCENDING)])
    database["block"].create_index([("blocker_id", ASCENDING), ("blocked_id", ASCENDING)], unique=True)
    database["moodentry"].create_index([("user_id", ASCENDING), ("day", ASCENDING)], unique=True)
    database["notification"].create_index([("user_id", ASCENDING), ("created_at", DESCENDING)])
    database["circle"].create_index([("members", ASCENDING)])
    logger.info("Database indexes ensured on %s", database.name)
