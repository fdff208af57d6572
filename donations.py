"""
Donation records. Recording a donation is the only way donor and institution
counters change; both are bumped with atomic update operators.
"""
from datetime import datetime
from typing import Any, Dict, List, Optional

from pymongo import DESCENDING, ReturnDocument
from pymongo.database import Database

from database import as_utc, create_document, find_by_id, serialize, to_object_id, utcnow
from eligibility import evaluate_eligibility
from errors import ForbiddenError, NotFoundError, ValidationError
from observability import log_domain_event
from schemas import Donation, DonationPayload
from visibility import Viewer


def record_donation(db: Database, payload: DonationPayload, viewer: Viewer) -> Dict[str, Any]:
    donor = find_by_id(db, "donor", payload.donor_id, "donor ID")
    if not donor:
        raise NotFoundError("Donor not found.")
    if not viewer.is_admin and not viewer.owns(donor):
        raise ForbiddenError("You can only record donations for your own donor profile.")

    eligibility = evaluate_eligibility(donor)
    if not eligibility.eligible:
        raise ValidationError(
            f"Donor is not eligible to donate yet. Please wait {eligibility.days_until_eligible} more days."
            if eligibility.days_until_eligible is not None
            else "Donor is not willing to donate currently.",
            days_until_eligible=eligibility.days_until_eligible,
        )

    institution = None
    if payload.institution_id:
        institution = find_by_id(db, "institution", payload.institution_id, "institution ID")
        if not institution:
            raise NotFoundError("Institution not found.")

    donation_date = as_utc(payload.donation_date) or utcnow()
    if donation_date > utcnow():
        raise ValidationError("donation_date cannot be in the future.")

    donation = Donation(
        donor_id=str(donor["_id"]),
        institution_id=str(institution["_id"]) if institution else None,
        donation_date=donation_date,
        units=payload.units,
        location=payload.location,
        notes=payload.notes,
        recorded_by=viewer.user_id,
    )
    donation_id = create_document(db, "donation", donation)

    updated_donor = db["donor"].find_one_and_update(
        {"_id": donor["_id"]},
        {"$inc": {"total_donations": 1}, "$set": {"updated_at": utcnow()}},
        return_document=ReturnDocument.AFTER,
    )
    # Conditional set so a backdated record never moves last_donation_date backwards.
    db["donor"].update_one(
        {
            "_id": donor["_id"],
            "$or": [{"last_donation_date": None}, {"last_donation_date": {"$lt": donation_date}}],
        },
        {"$set": {"last_donation_date": donation_date}},
    )
    if institution:
        db["institution"].update_one(
            {"_id": institution["_id"]},
            {"$inc": {"total_donations": 1}, "$set": {"updated_at": utcnow()}},
        )

    log_domain_event("donation_recorded", entity_type="Donation", entity_id=donation_id,
                     donor_id=str(donor["_id"]), total_donations=updated_donor.get("total_donations"))
    return serialize(db["donation"].find_one({"_id": to_object_id(donation_id)}))


def list_donations(db: Database, donor_id: Optional[str] = None, institution_id: Optional[str] = None,
                   from_date: Optional[datetime] = None, to_date: Optional[datetime] = None) -> List[Dict[str, Any]]:
    filters: Dict[str, Any] = {}
    if donor_id:
        filters["donor_id"] = str(to_object_id(donor_id, "donor ID"))
    if institution_id:
        filters["institution_id"] = str(to_object_id(institution_id, "institution ID"))
    if from_date or to_date:
        filters["donation_date"] = {}
        if from_date:
            filters["donation_date"]["$gte"] = as_utc(from_date)
        if to_date:
            filters["donation_date"]["$lte"] = as_utc(to_date)

    docs = db["donation"].find(filters).sort("donation_date", DESCENDING)
    return [serialize(d) for d in docs]


def donor_history(db: Database, donor_id: str, viewer: Viewer) -> List[Dict[str, Any]]:
    donor = find_by_id(db, "donor", donor_id, "donor ID", include_deleted=True)
    if not donor:
        raise NotFoundError("Donor not found.")
    if not viewer.is_admin and not viewer.owns(donor):
        raise ForbiddenError("You can only view your own donation history.")
    return list_donations(db, donor_id=str(donor["_id"]))
