"""
Database helpers

A single MongoClient is created at import time and shared by every request.
`db` is None when DATABASE_URL / DATABASE_NAME are not configured.
"""
import logging
import os
from datetime import datetime, timezone
from typing import Optional, Union

from pydantic import BaseModel
from pymongo import ASCENDING, DESCENDING, MongoClient

logger = logging.getLogger(__name__)

DATABASE_URL = os.getenv("DATABASE_URL")
DATABASE_NAME = os.getenv("DATABASE_NAME")

# Verification records live for 5 minutes
OTP_TTL_SECONDS = 5 * 60

client = None
db = None

if DATABASE_URL and DATABASE_NAME:
    client = MongoClient(DATABASE_URL, serverSelectionTimeoutMS=5000)
    db = client[DATABASE_NAME]
else:
    logger.warning("DATABASE_URL or DATABASE_NAME not set, database disabled")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_aware(value: Optional[datetime]) -> Optional[datetime]:
    """Mongo hands datetimes back naive (UTC); make them comparable again."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def create_document(collection_name: str, data: Union[BaseModel, dict]) -> str:
    """Insert a document, stamping created_at/updated_at. Returns the new id."""
    if db is None:
        raise Exception("Database not available. Check DATABASE_URL and DATABASE_NAME environment variables.")

    if isinstance(data, BaseModel):
        data_dict = data.model_dump()
    else:
        data_dict = data.copy()

    now = utcnow()
    data_dict.setdefault("created_at", now)
    data_dict["updated_at"] = now

    result = db[collection_name].insert_one(data_dict)
    return str(result.inserted_id)


def get_documents(collection_name: str, filter_dict: Optional[dict] = None, limit: Optional[int] = None,
                  sort: Optional[list] = None):
    if db is None:
        raise Exception("Database not available. Check DATABASE_URL and DATABASE_NAME environment variables.")

    cursor = db[collection_name].find(filter_dict or {})
    if sort:
        cursor = cursor.sort(sort)
    if limit:
        cursor = cursor.limit(limit)
    return list(cursor)


def ensure_indexes():
    if db is None:
        return
    db["user"].create_index("email", unique=True)
    db["category"].create_index("name", unique=True)
    db["verification"].create_index("email", unique=True)
    db["verification"].create_index("created_at", expireAfterSeconds=OTP_TTL_SECONDS)
    db["tool"].create_index([("created_at", DESCENDING)])
    db["notification"].create_index([("user_id", ASCENDING), ("created_at", DESCENDING)])
    logger.info("Database indexes ensured on %s", db.name)
