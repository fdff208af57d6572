"""
Blood request lifecycle: creation with donor matching, listing, and the
one-way status workflow (open -> fulfilled | cancelled).
"""
from typing import Any, Dict, List, Mapping, Optional

from pymongo import DESCENDING
from pymongo.database import Database

from database import (
    as_utc,
    attach_profile_pictures,
    create_document,
    find_by_id,
    serialize,
    to_object_id,
    utcnow,
)
from errors import ForbiddenError, NotFoundError, ValidationError
from matching import find_eligible_donors, match_donors, notify_matched_donors
from notifications import record_audit
from observability import log_domain_event
from schemas import REQUEST_STATUSES, BloodRequest, BloodRequestPayload
from visibility import Viewer, project_donor_view

ALLOWED_TRANSITIONS = {
    "open": {"fulfilled", "cancelled"},
    "fulfilled": set(),
    "cancelled": set(),
}


def _ensure_owner_or_admin(request: Mapping[str, Any], viewer: Viewer, message: str) -> None:
    if not viewer.is_admin and str(request.get("user_id")) != viewer.user_id:
        raise ForbiddenError(message)


def get_request(db: Database, request_id: str) -> Dict[str, Any]:
    request = find_by_id(db, "bloodrequest", request_id, "request ID")
    if not request:
        raise NotFoundError("Blood request not found.")
    return request


def create_request(db: Database, payload: BloodRequestPayload, viewer: Viewer) -> Dict[str, Any]:
    previous = db["bloodrequest"].count_documents({"user_id": viewer.user_id})
    data = payload.model_dump()
    data["required_date"] = as_utc(data["required_date"])
    bloodrequest = BloodRequest(user_id=viewer.user_id, request_number=previous + 1, status="open", **data)
    request_id = create_document(db, "bloodrequest", bloodrequest)
    request = db["bloodrequest"].find_one({"_id": to_object_id(request_id)})

    donors = find_eligible_donors(db, request["blood_group"], request["city"], viewer)
    notify_matched_donors(db, request, donors)

    log_domain_event("request_created", entity_type="BloodRequest", entity_id=request_id,
                     blood_group=request["blood_group"], matches=len(donors))
    return {
        "request": serialize(request),
        "matches": [project_donor_view(d, viewer) for d in attach_profile_pictures(db, donors)],
    }


def list_user_requests(db: Database, user_id: str) -> List[Dict[str, Any]]:
    docs = db["bloodrequest"].find({"user_id": user_id, "is_deleted": {"$ne": True}}).sort("created_at", DESCENDING)
    return [serialize(d) for d in docs]


def list_all_requests(db: Database, status: Optional[str] = None) -> List[Dict[str, Any]]:
    query: Dict[str, Any] = {"is_deleted": {"$ne": True}}
    if status:
        if status not in REQUEST_STATUSES:
            raise ValidationError("Status must be open, fulfilled, or cancelled.")
        query["status"] = status
    return [serialize(d) for d in db["bloodrequest"].find(query).sort("created_at", DESCENDING)]


def transition_request_status(db: Database, request_id: str, new_status: str, viewer: Viewer) -> Dict[str, Any]:
    if new_status not in REQUEST_STATUSES:
        raise ValidationError("Status must be open, fulfilled, or cancelled.")

    request = get_request(db, request_id)
    _ensure_owner_or_admin(request, viewer, "You can only update your own request.")

    current = request.get("status", "open")
    if new_status not in ALLOWED_TRANSITIONS.get(current, set()):
        log_domain_event("request_status_rejected", entity_type="BloodRequest", entity_id=request_id,
                         result="rejected", from_status=current, to_status=new_status)
        raise ValidationError(f"Cannot change request status from {current} to {new_status}.")

    updated_at = utcnow()
    # Guarded on the old status; a concurrent transition makes this a no-op.
    result = db["bloodrequest"].update_one(
        {"_id": request["_id"], "status": current},
        {"$set": {"status": new_status, "updated_at": updated_at}},
    )
    if result.modified_count == 0:
        raise ValidationError("Request status changed concurrently. Reload and try again.")

    record_audit(db, viewer.user_id, "update_request_status", "BloodRequest", request_id,
                 {"from": current, "to": new_status})
    log_domain_event("request_status_changed", entity_type="BloodRequest", entity_id=request_id,
                     from_status=current, to_status=new_status)
    request.update({"status": new_status, "updated_at": updated_at})
    return serialize(request)


def get_request_matches(db: Database, request_id: str, viewer: Viewer) -> List[Dict[str, Any]]:
    request = get_request(db, request_id)
    _ensure_owner_or_admin(request, viewer, "You can only view matches for your own request.")
    return match_donors(db, request, viewer)


def delete_request(db: Database, request_id: str, viewer: Viewer) -> None:
    request = get_request(db, request_id)
    _ensure_owner_or_admin(request, viewer, "You can only delete your own request.")
    db["bloodrequest"].update_one({"_id": request["_id"]}, {"$set": {"is_deleted": True, "updated_at": utcnow()}})
    record_audit(db, viewer.user_id, "delete_request", "BloodRequest", request_id)
