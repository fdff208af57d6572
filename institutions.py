from typing import Any, Dict, List

from pymongo import ASCENDING, DESCENDING
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

from database import create_document, find_by_id, serialize, to_object_id, utcnow
from errors import ConflictError, NotFoundError
from notifications import record_audit
from schemas import Institution, InstitutionPayload
from visibility import Viewer


def create_institution(db: Database, payload: InstitutionPayload, viewer: Viewer) -> Dict[str, Any]:
    name = payload.name.strip()
    if db["institution"].find_one({"name": name}):
        raise ConflictError("Institution name must be unique.")

    institution = Institution(**payload.model_dump(exclude={"name"}), name=name)
    try:
        institution_id = create_document(db, "institution", institution)
    except DuplicateKeyError:
        raise ConflictError("Institution name must be unique.")

    record_audit(db, viewer.user_id, "create_institution", "Institution", institution_id, {"name": name})
    return serialize(db["institution"].find_one({"_id": to_object_id(institution_id)}))


def list_institutions(db: Database) -> List[Dict[str, Any]]:
    docs = db["institution"].find({"is_deleted": {"$ne": True}}).sort("name", ASCENDING)
    return [serialize(d) for d in docs]


def institution_ranking(db: Database) -> List[Dict[str, Any]]:
    docs = db["institution"].find({"is_deleted": {"$ne": True}}).sort(
        [("total_donations", DESCENDING), ("name", ASCENDING)])
    return [serialize(d) for d in docs]


def delete_institution(db: Database, institution_id: str, viewer: Viewer) -> None:
    institution = find_by_id(db, "institution", institution_id, "institution ID")
    if not institution:
        raise NotFoundError("Institution not found.")
    db["institution"].update_one(
        {"_id": institution["_id"]}, {"$set": {"is_deleted": True, "updated_at": utcnow()}})
    record_audit(db, viewer.user_id, "delete_institution", "Institution", institution_id)
