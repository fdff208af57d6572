"""
Donor profiles.

Donation counters (total_donations, last_donation_date) are owned by
donations.record_donation and never accepted from a payload here.
"""
from typing import Any, Dict, List, Optional

from pymongo import DESCENDING
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

from database import as_utc, attach_profile_pictures, create_document, find_by_id, to_object_id, utcnow
from eligibility import evaluate_eligibility, ineligibility_reason
from errors import ConflictError, ForbiddenError, NotFoundError, ValidationError
from matching import city_filter
from notifications import record_audit
from observability import log_domain_event
from schemas import Donor, DonorCreatePayload, DonorUpdatePayload
from visibility import Viewer, project_donor_view

ADMIN_ONLY_FIELDS = {"deferral_until"}
NON_NULLABLE_FIELDS = {
    "full_name",
    "phone",
    "emergency_contact_name",
    "emergency_contact_phone",
    "blood_group",
    "willing_to_donate",
    "visibility",
    "phone_visibility",
    "allow_request_contact",
    "contact_preference",
    "address",
}


def get_donor(db: Database, donor_id: str) -> Dict[str, Any]:
    donor = find_by_id(db, "donor", donor_id, "donor ID")
    if not donor:
        raise NotFoundError("Donor not found.")
    return donor


def _view(db: Database, donor: Dict[str, Any], viewer: Viewer) -> Dict[str, Any]:
    return project_donor_view(attach_profile_pictures(db, [donor])[0], viewer)


def _ensure_owner_or_admin(donor: Dict[str, Any], viewer: Viewer, message: str) -> None:
    if not viewer.is_admin and not viewer.owns(donor):
        raise ForbiddenError(message)


def _ensure_email_free(db: Database, email: Optional[str], exclude_id=None) -> None:
    if not email:
        return
    query: Dict[str, Any] = {"email": email.lower()}
    if exclude_id is not None:
        query["_id"] = {"$ne": exclude_id}
    if db["donor"].find_one(query):
        raise ConflictError("Email already exists for another donor.")


def create_donor(db: Database, payload: DonorCreatePayload, viewer: Viewer) -> Dict[str, Any]:
    owner_id = viewer.user_id
    if payload.user_id and viewer.is_admin:
        owner = db["user"].find_one({"_id": to_object_id(payload.user_id, "user id")})
        if not owner:
            raise NotFoundError("User not found.")
        owner_id = str(owner["_id"])

    if db["donor"].find_one({"user_id": owner_id}):
        raise ConflictError("You already have a donor profile. Update it instead.")

    data = payload.model_dump(exclude={"user_id"})
    if data.get("email"):
        data["email"] = data["email"].lower()
    data["date_of_birth"] = as_utc(data.get("date_of_birth"))
    _ensure_email_free(db, data.get("email"))

    donor = Donor(user_id=owner_id, **data)
    doc = donor.model_dump()
    if doc.get("email") is None:
        # Keeps the sparse unique index on email from colliding on nulls.
        doc.pop("email")
    try:
        donor_id = create_document(db, "donor", doc)
    except DuplicateKeyError:
        raise ConflictError("Donor profile or email already exists.")

    log_domain_event("donor_created", entity_type="Donor", entity_id=donor_id, blood_group=donor.blood_group)
    return _view(db, get_donor(db, donor_id), viewer)


def get_my_donor(db: Database, viewer: Viewer) -> Dict[str, Any]:
    donor = db["donor"].find_one({"user_id": viewer.user_id, "is_deleted": {"$ne": True}})
    if not donor:
        raise NotFoundError("No donor profile found for this user.")
    return _view(db, donor, viewer)


def view_donor(db: Database, donor_id: str, viewer: Viewer) -> Dict[str, Any]:
    donor = get_donor(db, donor_id)
    _ensure_owner_or_admin(donor, viewer, "You can only view your own donor profile.")
    return _view(db, donor, viewer)


def list_donors(db: Database, viewer: Viewer, blood_group: Optional[str] = None, city: Optional[str] = None,
                willing: Optional[bool] = None) -> List[Dict[str, Any]]:
    filters: Dict[str, Any] = {"is_deleted": {"$ne": True}}
    if blood_group:
        filters["blood_group"] = blood_group
    if city:
        filters["address.city"] = city_filter(city)
    if willing is not None:
        filters["willing_to_donate"] = willing
    docs = attach_profile_pictures(db, list(db["donor"].find(filters).sort("created_at", DESCENDING)))
    return [project_donor_view(d, viewer) for d in docs]


def update_donor(db: Database, donor_id: str, payload: DonorUpdatePayload, viewer: Viewer) -> Dict[str, Any]:
    donor = get_donor(db, donor_id)
    _ensure_owner_or_admin(donor, viewer, "You can only update your own donor profile.")

    updates = payload.model_dump(exclude_unset=True)
    forbidden = ADMIN_ONLY_FIELDS & set(updates)
    if forbidden and not viewer.is_admin:
        raise ForbiddenError("Only admins can set a deferral.")
    if not updates:
        raise ValidationError("No fields to update.")
    cleared = sorted(f for f in NON_NULLABLE_FIELDS if f in updates and updates[f] is None)
    if cleared:
        raise ValidationError(f"These fields cannot be empty: {', '.join(cleared)}.", fields=cleared)

    operation: Dict[str, Any] = {}
    if "email" in updates and updates["email"] is None:
        # Missing, not null: the sparse unique index only skips absent keys.
        updates.pop("email")
        operation["$unset"] = {"email": ""}
    elif updates.get("email"):
        updates["email"] = updates["email"].lower()
        _ensure_email_free(db, updates["email"], exclude_id=donor["_id"])
    for key in ("date_of_birth", "deferral_until"):
        if key in updates:
            updates[key] = as_utc(updates[key])
    updates["updated_at"] = utcnow()
    operation["$set"] = updates

    try:
        db["donor"].update_one({"_id": donor["_id"]}, operation)
    except DuplicateKeyError:
        raise ConflictError("Email already exists for another donor.")

    if forbidden:
        record_audit(db, viewer.user_id, "set_donor_deferral", "Donor", str(donor["_id"]),
                     {"deferral_until": updates.get("deferral_until")})
    return _view(db, get_donor(db, donor_id), viewer)


def delete_donor(db: Database, donor_id: str, viewer: Viewer) -> None:
    donor = get_donor(db, donor_id)
    db["donor"].update_one({"_id": donor["_id"]}, {"$set": {"is_deleted": True, "updated_at": utcnow()}})
    record_audit(db, viewer.user_id, "delete_donor", "Donor", str(donor["_id"]))
    log_domain_event("donor_deleted", entity_type="Donor", entity_id=str(donor["_id"]))


def donor_eligibility(db: Database, donor_id: str, viewer: Viewer) -> Dict[str, Any]:
    donor = get_donor(db, donor_id)
    _ensure_owner_or_admin(donor, viewer, "You can only view your own donor eligibility.")

    result = evaluate_eligibility(donor)
    response = {
        "eligible": result.eligible,
        "days_until_eligible": result.days_until_eligible,
        "message": "Donor is eligible to donate." if result.eligible else "Donor is not eligible yet.",
    }
    if not result.eligible:
        response["reason"] = ineligibility_reason(donor)
    return response
