"""
MongoDB access for the LifeLine registry.

Collections are named after the lowercased schema class (Donor -> "donor").
Datetimes are stored as naive UTC, which is also what pymongo hands back.
"""
import os
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Union

from bson import ObjectId
from bson.errors import InvalidId
from dotenv import load_dotenv
from fastapi import HTTPException
from pydantic import BaseModel
from pymongo import ASCENDING, MongoClient
from pymongo.database import Database

from errors import ValidationError

load_dotenv()

_client = None
db: Optional[Database] = None

database_url = os.getenv("DATABASE_URL")
database_name = os.getenv("DATABASE_NAME")

if database_url and database_name:
    _client = MongoClient(database_url)
    db = _client[database_name]


def get_db() -> Database:
    """FastAPI dependency returning the process-wide database handle."""
    if db is None:
        raise HTTPException(status_code=500, detail="Database not configured. Set DATABASE_URL and DATABASE_NAME.")
    return db


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Normalize a datetime to naive UTC so stored and computed values compare."""
    if value is None:
        return None
    if value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def to_object_id(value: Any, label: str = "id") -> ObjectId:
    if isinstance(value, ObjectId):
        return value
    try:
        return ObjectId(str(value))
    except (InvalidId, TypeError):
        raise ValidationError(f"Invalid {label}.")


def serialize(doc: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    """Return a JSON-friendly copy with the ObjectId exposed as `id`."""
    if doc is None:
        return None
    out = dict(doc)
    if "_id" in out:
        out["id"] = str(out.pop("_id"))
    return out


def create_document(database: Database, collection_name: str, data: Union[BaseModel, dict]) -> str:
    if isinstance(data, BaseModel):
        data_dict = data.model_dump()
    else:
        data_dict = data.copy()

    now = utcnow()
    data_dict.setdefault("created_at", now)
    data_dict["updated_at"] = now

    result = database[collection_name].insert_one(data_dict)
    return str(result.inserted_id)


def get_documents(database: Database, collection_name: str, filter_dict: Optional[dict] = None,
                  limit: Optional[int] = None, sort: Optional[list] = None) -> List[Dict[str, Any]]:
    cursor = database[collection_name].find(filter_dict or {})
    if sort:
        cursor = cursor.sort(sort)
    if limit:
        cursor = cursor.limit(limit)
    return list(cursor)


def find_by_id(database: Database, collection_name: str, doc_id: Any, label: str = "id",
               include_deleted: bool = False) -> Optional[Dict[str, Any]]:
    query: Dict[str, Any] = {"_id": to_object_id(doc_id, label)}
    if not include_deleted:
        query["is_deleted"] = {"$ne": True}
    return database[collection_name].find_one(query)


def ensure_indexes(database: Database) -> None:
    database["user"].create_index([("email", ASCENDING)], unique=True)
    database["donor"].create_index([("user_id", ASCENDING)], unique=True)
    database["donor"].create_index([("email", ASCENDING)], unique=True, sparse=True)
    database["donor"].create_index([("blood_group", ASCENDING), ("willing_to_donate", ASCENDING)])
    database["institution"].create_index([("name", ASCENDING)], unique=True)
    database["thread"].create_index([("participants", ASCENDING), ("updated_at", ASCENDING)])
    database["notification"].create_index([("user_id", ASCENDING), ("created_at", ASCENDING)])


def attach_profile_pictures(database: Database, donors: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Copy each owning user's profile_picture onto its donor document, in place."""
    user_ids = {str(d["user_id"]) for d in donors if d.get("user_id") and ObjectId.is_valid(str(d["user_id"]))}
    pictures = {
        str(u["_id"]): u.get("profile_picture")
        for u in database["user"].find({"_id": {"$in": [ObjectId(i) for i in user_ids]}}, {"profile_picture": 1})
    }
    for donor in donors:
        donor["profile_picture"] = pictures.get(str(donor.get("user_id")))
    return donors
