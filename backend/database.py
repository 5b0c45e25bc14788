"""
MongoDB access helpers.

The database handle is created once from ``Settings`` and passed to the
services; nothing here holds a module level connection.
"""
import logging
from datetime import datetime, timezone
from typing import Optional, Union

from bson.errors import InvalidId
from bson.objectid import ObjectId
from pydantic import BaseModel
from pymongo import ASCENDING, DESCENDING, MongoClient
from pymongo.database import Database

from backend.config import Settings

logger = logging.getLogger(__name__)

USER_COLLECTION = "user"
TASK_COLLECTION = "task"


def get_database(settings: Settings) -> Database:
    client = MongoClient(settings.database_url)
    logger.info("MongoDB client configured for database %r", settings.database_name)
    return client[settings.database_name]


def ensure_indexes(db: Database) -> None:
    db[USER_COLLECTION].create_index([("email", ASCENDING)], unique=True)
    db[TASK_COLLECTION].create_index([("user_id", ASCENDING), ("created_at", DESCENDING)])
    db[TASK_COLLECTION].create_index([("status", ASCENDING)])
    logger.info("Indexes ensured on %r and %r", USER_COLLECTION, TASK_COLLECTION)


def utcnow() -> datetime:
    """Current time as naive UTC, the form pymongo hands back from the store."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_storage_datetime(value: Optional[datetime]) -> Optional[datetime]:
    """Normalize to naive UTC; naive input is taken to already be UTC."""
    if value is None:
        return None
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def from_storage_datetime(value: Optional[datetime]) -> Optional[datetime]:
    if value is None:
        return None
    return value.replace(tzinfo=timezone.utc)


def parse_object_id(value: str) -> Optional[ObjectId]:
    """Return the ObjectId for ``value`` or None when it is not a valid id."""
    try:
        return ObjectId(value)
    except (InvalidId, TypeError):
        return None


def create_document(db: Database, collection_name: str, data: Union[BaseModel, dict]) -> str:
    """Insert one document with fresh timestamps and return its id as a string."""
    if isinstance(data, BaseModel):
        data = data.model_dump()
    else:
        data = dict(data)
    now = utcnow()
    data["created_at"] = now
    data["updated_at"] = now
    result = db[collection_name].insert_one(data)
    return str(result.inserted_id)
