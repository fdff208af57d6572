"""
Viewer-aware donor projection.

The projection is an allowlist: a donor field reaches the response only if it
is named in one of the tuples below.
"""
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Mapping, Optional

from eligibility import evaluate_eligibility


class ViewerRole(str, Enum):
    ADMIN = "admin"
    REGISTERED = "registered"
    GUEST = "guest"


@dataclass(frozen=True)
class Viewer:
    role: ViewerRole
    user_id: Optional[str] = None

    @classmethod
    def guest(cls) -> "Viewer":
        return cls(ViewerRole.GUEST)

    @classmethod
    def from_user(cls, user: Optional[Mapping[str, Any]]) -> "Viewer":
        """Build a viewer from an authenticated user document (or None for guests)."""
        if not user:
            return cls.guest()
        role = ViewerRole.ADMIN if user.get("role") == "admin" else ViewerRole.REGISTERED
        return cls(role, str(user.get("_id") or user.get("id")))

    @property
    def is_admin(self) -> bool:
        return self.role is ViewerRole.ADMIN

    def owns(self, donor: Mapping[str, Any]) -> bool:
        return bool(self.user_id) and str(donor.get("user_id")) == self.user_id


PUBLIC_FIELDS = (
    "full_name",
    "profile_picture",
    "blood_group",
    "willing_to_donate",
    "address",
    "visibility",
    "phone_visibility",
    "allow_request_contact",
    "contact_preference",
    "total_donations",
    "last_donation_date",
    "created_at",
    "updated_at",
)

REGISTERED_FIELDS = ("phone", "email")

PRIVATE_FIELDS = (
    "phone",
    "email",
    "emergency_contact_name",
    "emergency_contact_phone",
    "notes",
    "gender",
    "date_of_birth",
)


def _extra_fields(donor: Mapping[str, Any], viewer: Viewer) -> tuple:
    if viewer.role is ViewerRole.ADMIN or viewer.owns(donor):
        return PRIVATE_FIELDS
    if viewer.role is ViewerRole.REGISTERED:
        # Any signed-in user sees the phone, whatever phone_visibility says.
        return REGISTERED_FIELDS
    if viewer.role is ViewerRole.GUEST:
        return ("phone",) if donor.get("phone_visibility") == "public" else ()
    raise ValueError(f"Unknown viewer role: {viewer.role!r}")


def project_donor_view(donor: Mapping[str, Any], viewer: Viewer,
                       now: Optional[datetime] = None) -> Dict[str, Any]:
    view: Dict[str, Any] = {"id": str(donor.get("_id") or donor.get("id"))}
    for field in PUBLIC_FIELDS:
        view[field] = donor.get(field)
    view["eligibility"] = evaluate_eligibility(donor, now).as_dict()
    for field in _extra_fields(donor, viewer):
        view[field] = donor.get(field)
    return view
