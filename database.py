"""
MongoDB access.

`db` is the pymongo database handle every module reads and writes through.
Collection names are the lowercase model names from `schemas.py`.
"""
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Union

import structlog
from pydantic import BaseModel
from pymongo import ASCENDING, MongoClient

from config import DATABASE_NAME, DATABASE_URL

logger = structlog.get_logger(__name__)

client = MongoClient(DATABASE_URL, serverSelectionTimeoutMS=5000)
db = client[DATABASE_NAME]


def now() -> datetime:
    # Stored datetimes are naive UTC, matching what pymongo hands back.
    return datetime.now(timezone.utc).replace(tzinfo=None)


def as_utc(value: datetime) -> datetime:
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def create_document(collection_name: str, data: Union[BaseModel, Dict[str, Any]]) -> str:
    """Insert a document stamped with created_at/updated_at and return its id."""
    if isinstance(data, BaseModel):
        data_dict = data.model_dump()
    else:
        data_dict = dict(data)
    stamp = now()
    data_dict["created_at"] = stamp
    data_dict["updated_at"] = stamp
    result = db[collection_name].insert_one(data_dict)
    return str(result.inserted_id)


def get_documents(collection_name: str, filter_dict: Optional[Dict[str, Any]] = None,
                  limit: Optional[int] = None, sort: Optional[List] = None) -> List[Dict[str, Any]]:
    cursor = db[collection_name].find(filter_dict or {})
    if sort:
        cursor = cursor.sort(sort)
    if limit:
        cursor = cursor.limit(limit)
    return list(cursor)


def ensure_indexes() -> None:
    db["user"].create_index("email", unique=True)
    db["user"].create_index("phone", unique=True)
    db["category"].create_index("name", unique=True)
    db["product"].create_index("name", unique=True)
    db["product"].create_index("category")
    db["product"].create_index("promotion")
    db["product"].create_index("promoId")
    db["order"].create_index("reference", unique=True)
    db["review"].create_index(
        [("product", ASCENDING), ("user", ASCENDING), ("reference", ASCENDING)], unique=True
    )
    logger.info("indexes_ensured", database=db.name)
