"""
Donor matching for blood requests and the donor search.
"""
import re
from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional

from pymongo.database import Database

from database import attach_profile_pictures
from eligibility import evaluate_eligibility
from notifications import emit_notification
from observability import log_domain_event
from visibility import Viewer, ViewerRole, project_donor_view

VISIBILITY_BY_ROLE = {
    ViewerRole.ADMIN: ["public", "registered", "admin"],
    ViewerRole.REGISTERED: ["public", "registered"],
    ViewerRole.GUEST: ["public"],
}


def allowed_visibilities(viewer: Viewer) -> List[str]:
    return list(VISIBILITY_BY_ROLE[viewer.role])


def city_filter(city: str) -> Dict[str, Any]:
    return {"$regex": re.escape(city.strip()), "$options": "i"}


def find_eligible_donors(db: Database, blood_group: str, city: Optional[str], viewer: Viewer,
                         now: Optional[datetime] = None) -> List[Dict[str, Any]]:
    """Raw donor documents a viewer may see that could donate for this group and city now."""
    filters: Dict[str, Any] = {
        "willing_to_donate": True,
        "is_deleted": {"$ne": True},
        "blood_group": blood_group,
        "visibility": {"$in": allowed_visibilities(viewer)},
    }
    if city and city.strip():
        filters["address.city"] = city_filter(city)

    donors = db["donor"].find(filters)
    return [d for d in donors if evaluate_eligibility(d, now).eligible]


def match_donors(db: Database, request: Mapping[str, Any], viewer: Viewer,
                 now: Optional[datetime] = None) -> List[Dict[str, Any]]:
    donors = find_eligible_donors(db, request.get("blood_group"), request.get("city"), viewer, now)
    return [project_donor_view(d, viewer, now) for d in attach_profile_pictures(db, donors)]


def notify_matched_donors(db: Database, request: Mapping[str, Any], donors: List[Mapping[str, Any]]) -> int:
    """Tell consenting matched donors about a new request. Returns how many were notified."""
    request_id = str(request.get("_id") or request.get("id"))
    sent = 0
    for donor in donors:
        if not donor.get("allow_request_contact") or not donor.get("user_id"):
            continue
        if str(donor["user_id"]) == str(request.get("user_id")):
            continue
        notif_id = emit_notification(
            db,
            user_id=str(donor["user_id"]),
            donor_id=str(donor["_id"]),
            type="request_match",
            title="New blood request match",
            message=f"A request for {request.get('units_needed')} unit(s) of {request.get('blood_group')} "
                    f"in {request.get('city')} matches your profile.",
            meta={"request_id": request_id},
        )
        if notif_id:
            sent += 1
    log_domain_event("request_match_notified", entity_type="BloodRequest", entity_id=request_id,
                     matched=len(donors), notified=sent)
    return sent


def search_donors(db: Database, viewer: Viewer, blood_group: Optional[str] = None,
                  city: Optional[str] = None) -> List[Dict[str, Any]]:
    filters: Dict[str, Any] = {
        "willing_to_donate": True,
        "is_deleted": {"$ne": True},
        "visibility": {"$in": allowed_visibilities(viewer)},
    }
    if blood_group:
        filters["blood_group"] = blood_group
    if city and city.strip():
        filters["address.city"] = city_filter(city)

    donors = attach_profile_pictures(db, list(db["donor"].find(filters)))
    return [project_donor_view(d, viewer) for d in donors]
