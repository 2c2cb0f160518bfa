"""
MongoDB access helpers.

The client is created by ``connect`` and stored on the application state;
handlers receive the database handle through the ``get_db`` dependency.
Collection names are the lowercase entity names (user, product, category, order).
"""
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Union

from bson.errors import InvalidId
from bson.objectid import ObjectId
from fastapi import Request
from pydantic import BaseModel
from pymongo import ASCENDING, MongoClient
from pymongo.database import Database
from pymongo.errors import PyMongoError

from errors import InternalError, NotFound
from settings import Settings

logger = logging.getLogger(__name__)


def connect(settings: Settings) -> Optional[Database]:
    if not settings.database_url:
        logger.warning("DATABASE_URL is not set, running without a database")
        return None
    client = MongoClient(
        settings.database_url,
        serverSelectionTimeoutMS=5000,
        connectTimeoutMS=10000,
    )
    return client[settings.database_name]


def ensure_indexes(db: Database) -> None:
    try:
        db["user"].create_index([("email", ASCENDING)], unique=True)
        db["category"].create_index([("name", ASCENDING)], unique=True)
        db["category"].create_index([("slug", ASCENDING)], unique=True)
    except PyMongoError as exc:
        logger.warning("Unable to ensure indexes: %s", exc)


def get_db(request: Request) -> Database:
    db = request.app.state.db
    if db is None:
        raise InternalError("Database not available")
    return db


def now() -> datetime:
    # Naive UTC, which is what pymongo hands back for stored dates.
    return datetime.now(timezone.utc).replace(tzinfo=None)


def create_document(db: Database, collection_name: str, data: Union[BaseModel, dict]) -> str:
    if isinstance(data, BaseModel):
        data_dict = data.model_dump()
    else:
        data_dict = dict(data)
    stamp = now()
    data_dict["created_at"] = stamp
    data_dict["updated_at"] = stamp
    result = db[collection_name].insert_one(data_dict)
    return str(result.inserted_id)


def get_documents(db: Database, collection_name: str, filter_dict: Optional[dict] = None,
                  limit: Optional[int] = None, sort: Optional[list] = None) -> List[dict]:
    cursor = db[collection_name].find(filter_dict or {})
    if sort:
        cursor = cursor.sort(sort)
    if limit:
        cursor = cursor.limit(limit)
    return list(cursor)


def parse_object_id(value: Any, label: str = "Document") -> ObjectId:
    if isinstance(value, ObjectId):
        return value
    try:
        return ObjectId(str(value))
    except (InvalidId, TypeError):
        raise NotFound(f"{label} not found")


def serialize_value(value: Any) -> Any:
    if isinstance(value, ObjectId):
        return str(value)
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, dict):
        return {k: serialize_value(v) for k, v in value.items()}
    if isinstance(value, list):
        return [serialize_value(v) for v in value]
    return value


def serialize_doc(doc: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    if not doc:
        return doc
    doc = dict(doc)
    _id = doc.pop("_id", None)
    if _id is not None:
        doc["id"] = str(_id)
    return serialize_value(doc)
