"""
Global test fixtures for pytest.

Provides:
- an in-memory MongoDB (mongomock) wired into the app through `get_db`
- users and bearer headers per role
- a donor factory writing straight into the store
"""
from datetime import timedelta

import mongomock
import pytest
from fastapi.testclient import TestClient

from database import create_document, get_db, to_object_id, utcnow
from main import app
from security import get_password_hash, token_for_user
from visibility import Viewer

TEST_PASSWORD = "testpass123"


@pytest.fixture(scope="session")
def password_hash():
    # bcrypt is slow; hash once for the whole run.
    return get_password_hash(TEST_PASSWORD)


@pytest.fixture
def db():
    client = mongomock.MongoClient()
    return client["lifeline_test"]


@pytest.fixture
def client(db):
    app.dependency_overrides[get_db] = lambda: db
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def make_user(db, password_hash):
    def _make_user(email, role="user", name=None, is_active=True):
        user_id = create_document(db, "user", {
            "name": name or email.split("@")[0],
            "email": email,
            "password_hash": password_hash,
            "role": role,
            "is_active": is_active,
            "deactivated_at": None,
        })
        return db["user"].find_one({"_id": to_object_id(user_id)})
    return _make_user


@pytest.fixture
def admin_user(make_user):
    return make_user("admin@test.com", role="admin")


@pytest.fixture
def requester(make_user):
    return make_user("requester@test.com")


@pytest.fixture
def donor_user(make_user):
    return make_user("donor@test.com")


@pytest.fixture
def other_user(make_user):
    return make_user("other@test.com")


def auth_headers(user):
    return {"Authorization": f"Bearer {token_for_user(user)}"}


def viewer_for(user):
    return Viewer.from_user(user)


@pytest.fixture
def make_donor(db):
    """Insert a donor document; keyword overrides replace the defaults."""
    def _make_donor(user, **overrides):
        doc = {
            "user_id": str(user["_id"]),
            "full_name": "Rahim Uddin",
            "email": f"donor-{user['_id']}@test.com",
            "phone": "+8801700000000",
            "emergency_contact_name": "Karim Uddin",
            "emergency_contact_phone": "+8801800000000",
            "date_of_birth": None,
            "gender": "male",
            "blood_group": "O-",
            "willing_to_donate": True,
            "visibility": "public",
            "phone_visibility": "registered",
            "allow_request_contact": True,
            "contact_preference": "message",
            "address": {"country": "Bangladesh", "city": "Dhaka", "area": "Mirpur"},
            "last_donation_date": None,
            "total_donations": 0,
            "notes": "Prefers weekend appointments",
            "deferral_until": None,
            "is_deleted": False,
        }
        doc.update(overrides)
        donor_id = create_document(db, "donor", doc)
        return db["donor"].find_one({"_id": to_object_id(donor_id)})
    return _make_donor


@pytest.fixture
def make_request(db):
    def _make_request(user, **overrides):
        doc = {
            "user_id": str(user["_id"]),
            "request_number": 1,
            "blood_group": "O-",
            "city": "Dhaka",
            "hospital": "Dhaka Medical College",
            "patient_name": "Patient A",
            "units_needed": 2,
            "required_date": utcnow() + timedelta(days=3),
            "contact_phone": "+8801900000000",
            "status": "open",
            "is_deleted": False,
        }
        doc.update(overrides)
        request_id = create_document(db, "bloodrequest", doc)
        return db["bloodrequest"].find_one({"_id": to_object_id(request_id)})
    return _make_request
