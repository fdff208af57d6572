"""
Donor matching against blood requests, plus match notifications.
"""
from datetime import timedelta

from pymongo.errors import PyMongoError

import notifications
from conftest import viewer_for
from database import utcnow
from matching import allowed_visibilities, match_donors, notify_matched_donors, search_donors
from visibility import Viewer, ViewerRole

REQUEST = {"blood_group": "O-", "city": "dhaka", "units_needed": 2, "user_id": "requester"}


def test_allowed_visibilities_per_role():
    assert allowed_visibilities(Viewer(ViewerRole.ADMIN, "a")) == ["public", "registered", "admin"]
    assert allowed_visibilities(Viewer(ViewerRole.REGISTERED, "r")) == ["public", "registered"]
    assert allowed_visibilities(Viewer.guest()) == ["public"]


def test_guest_matches_public_first_time_donor(db, donor_user, make_donor):
    donor = make_donor(donor_user, blood_group="O-", visibility="public", phone_visibility="registered")

    matches = match_donors(db, REQUEST, Viewer.guest())

    assert [m["id"] for m in matches] == [str(donor["_id"])]
    assert "phone" not in matches[0]


def test_guest_gets_phone_when_public(db, donor_user, make_donor):
    make_donor(donor_user, phone_visibility="public")
    matches = match_donors(db, REQUEST, Viewer.guest())
    assert matches[0]["phone"] == "+8801700000000"


def test_other_blood_group_excluded_even_in_same_city(db, donor_user, other_user, make_donor):
    make_donor(donor_user, blood_group="O-")
    make_donor(other_user, blood_group="A+")

    matches = match_donors(db, REQUEST, Viewer.guest())

    assert {m["blood_group"] for m in matches} == {"O-"}


def test_filters_unwilling_deleted_ineligible_and_other_cities(db, make_user, make_donor):
    keep = make_donor(make_user("keep@test.com"))
    make_donor(make_user("unwilling@test.com"), willing_to_donate=False)
    make_donor(make_user("deleted@test.com"), is_deleted=True)
    make_donor(make_user("recent@test.com"), last_donation_date=utcnow() - timedelta(days=10))
    make_donor(make_user("deferred@test.com"), deferral_until=utcnow() + timedelta(days=10))
    make_donor(make_user("far@test.com"), address={"city": "Sylhet"})

    matches = match_donors(db, REQUEST, Viewer.guest())

    assert [m["id"] for m in matches] == [str(keep["_id"])]


def test_city_is_a_literal_substring(db, donor_user, make_donor):
    make_donor(donor_user, address={"city": "North Dhaka"})
    assert len(match_donors(db, {**REQUEST, "city": "DHAKA"}, Viewer.guest())) == 1
    assert match_donors(db, {**REQUEST, "city": "Dh.ka"}, Viewer.guest()) == []


def test_visibility_tiers(db, make_user, make_donor, other_user):
    make_donor(make_user("pub@test.com"), visibility="public")
    make_donor(make_user("reg@test.com"), visibility="registered")
    make_donor(make_user("adm@test.com"), visibility="admin")

    assert len(match_donors(db, REQUEST, Viewer.guest())) == 1
    assert len(match_donors(db, REQUEST, viewer_for(other_user))) == 2
    assert len(match_donors(db, REQUEST, Viewer(ViewerRole.ADMIN, "admin"))) == 3


def test_missing_request_city_matches_any_city(db, make_user, make_donor):
    make_donor(make_user("a@test.com"), address={"city": "Khulna"})
    make_donor(make_user("b@test.com"), address={"city": "Rajshahi"})
    assert len(match_donors(db, {**REQUEST, "city": None}, Viewer.guest())) == 2


def test_notify_only_consenting_donors(db, make_user, make_donor):
    consenting = make_donor(make_user("yes@test.com"))
    declining = make_donor(make_user("no@test.com"), allow_request_contact=False)
    request = {**REQUEST, "_id": "req1"}

    sent = notify_matched_donors(db, request, [consenting, declining])

    assert sent == 1
    notif = db["notification"].find_one({})
    assert notif["user_id"] == consenting["user_id"]
    assert notif["type"] == "request_match"
    assert notif["meta"] == {"request_id": "req1"}


def test_notification_failures_are_swallowed(db, donor_user, make_donor, monkeypatch):
    donor = make_donor(donor_user)

    def failing_create(database, collection_name, data):
        raise PyMongoError("store down")

    monkeypatch.setattr(notifications, "create_document", failing_create)

    assert notify_matched_donors(db, {**REQUEST, "_id": "req1"}, [donor]) == 0


def test_search_ignores_eligibility(db, donor_user, make_donor):
    make_donor(donor_user, last_donation_date=utcnow() - timedelta(days=5))
    results = search_donors(db, Viewer.guest(), blood_group="O-", city="dha")
    assert len(results) == 1
    assert results[0]["eligibility"]["eligible"] is False
