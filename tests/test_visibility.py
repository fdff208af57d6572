"""
Donor projection per viewer: admin, owner, registered user, guest.
"""
from datetime import datetime, timedelta

import pytest
from bson import ObjectId

from visibility import Viewer, ViewerRole, project_donor_view

OWNER_ID = str(ObjectId())
NOW = datetime(2026, 6, 1)

PRIVATE = {"emergency_contact_name", "emergency_contact_phone", "notes", "gender", "date_of_birth"}


@pytest.fixture
def donor_doc():
    return {
        "_id": ObjectId(),
        "user_id": OWNER_ID,
        "full_name": "Nadia Islam",
        "email": "nadia@test.com",
        "phone": "+8801711111111",
        "emergency_contact_name": "Rafi Islam",
        "emergency_contact_phone": "+8801722222222",
        "date_of_birth": datetime(1995, 4, 2),
        "gender": "female",
        "blood_group": "A+",
        "willing_to_donate": True,
        "visibility": "registered",
        "phone_visibility": "registered",
        "allow_request_contact": True,
        "contact_preference": "phone",
        "address": {"city": "Chattogram"},
        "last_donation_date": NOW - timedelta(days=30),
        "total_donations": 4,
        "notes": "Diabetic relative",
        "deferral_until": None,
        "is_deleted": False,
        "password_hash": "should never leak",
        "created_at": NOW,
        "updated_at": NOW,
    }


def test_admin_sees_everything(donor_doc):
    view = project_donor_view(donor_doc, Viewer(ViewerRole.ADMIN, str(ObjectId())), NOW)
    assert PRIVATE <= set(view)
    assert view["phone"] == donor_doc["phone"]
    assert view["email"] == donor_doc["email"]


def test_owner_sees_everything(donor_doc):
    view = project_donor_view(donor_doc, Viewer(ViewerRole.REGISTERED, OWNER_ID), NOW)
    assert PRIVATE <= set(view)
    assert view["notes"] == "Diabetic relative"


def test_registered_viewer_gets_phone_and_email_only(donor_doc):
    donor_doc["phone_visibility"] = "admin"
    view = project_donor_view(donor_doc, Viewer(ViewerRole.REGISTERED, str(ObjectId())), NOW)
    assert view["phone"] == donor_doc["phone"]
    assert view["email"] == donor_doc["email"]
    assert not PRIVATE & set(view)


def test_guest_without_public_phone_sees_no_phone(donor_doc):
    view = project_donor_view(donor_doc, Viewer.guest(), NOW)
    assert "phone" not in view
    assert "email" not in view
    assert not PRIVATE & set(view)


def test_guest_sees_public_phone(donor_doc):
    donor_doc["phone_visibility"] = "public"
    view = project_donor_view(donor_doc, Viewer.guest(), NOW)
    assert view["phone"] == donor_doc["phone"]
    assert "email" not in view


def test_common_fields_and_eligibility_always_present(donor_doc):
    view = project_donor_view(donor_doc, Viewer.guest(), NOW)
    assert view["id"] == str(donor_doc["_id"])
    assert view["blood_group"] == "A+"
    assert view["address"] == {"city": "Chattogram"}
    assert view["total_donations"] == 4
    assert view["eligibility"] == {"eligible": False, "days_until_eligible": 60}


def test_unlisted_fields_never_leak(donor_doc):
    for viewer in (Viewer.guest(), Viewer(ViewerRole.REGISTERED, "x"), Viewer(ViewerRole.ADMIN, "y")):
        view = project_donor_view(donor_doc, viewer, NOW)
        for field in ("password_hash", "user_id", "deferral_until", "is_deleted", "_id"):
            assert field not in view


def test_viewer_from_user_document():
    admin = Viewer.from_user({"_id": ObjectId(), "role": "admin"})
    regular = Viewer.from_user({"id": "abc", "role": "user"})
    assert admin.role is ViewerRole.ADMIN
    assert regular.role is ViewerRole.REGISTERED
    assert regular.user_id == "abc"
    assert Viewer.from_user(None) == Viewer.guest()
