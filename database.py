"""
MongoDB access for the admin API.

The client is created once at import time from DATABASE_URL / DATABASE_NAME.
Route handlers receive the database through the ``get_db`` dependency so
tests can swap in an in-memory database.
"""

import logging
from datetime import datetime, timezone
from typing import Optional, Union

from fastapi import HTTPException
from pydantic import BaseModel
from pymongo import ASCENDING, DESCENDING, MongoClient
from pymongo.database import Database

from config import DATABASE_NAME, DATABASE_URL

logger = logging.getLogger(__name__)

client: Optional[MongoClient] = None
db: Optional[Database] = None

if DATABASE_URL and DATABASE_NAME:
    client = MongoClient(DATABASE_URL)
    db = client[DATABASE_NAME]


def get_db() -> Database:
    if db is None:
        raise HTTPException(status_code=503, detail="Database not available")
    return db


def utcnow() -> datetime:
    # pymongo hands back naive UTC datetimes, so everything we store and compare is naive UTC
    return datetime.now(timezone.utc).replace(tzinfo=None)


def create_document(database: Database, collection_name: str, data: Union[BaseModel, dict]) -> str:
    """Insert a document stamped with createdAt/updatedAt and return its id as a string."""
    if isinstance(data, BaseModel):
        doc = data.model_dump(by_alias=True)
    else:
        doc = dict(data)
    now = utcnow()
    doc.setdefault("createdAt", now)
    doc["updatedAt"] = now
    inserted_id = database[collection_name].insert_one(doc).inserted_id
    return str(inserted_id)


def ensure_indexes(database: Database) -> None:
    database["user"].create_index("email", unique=True)
    database["category"].create_index("name", unique=True)
    database["product"].create_index([("category", ASCENDING), ("price", ASCENDING)])
    database["product"].create_index("featured")
    database["order"].create_index([("user", ASCENDING), ("orderDate", DESCENDING)])
    database["order"].create_index("status")
    logger.info(f"Indexes ensured on database {database.name}")
