"""
Donor profile updates and the owner's picture in donor views.
"""
import pytest

from conftest import viewer_for
from donors import get_my_donor, list_donors, update_donor
from errors import ValidationError
from matching import search_donors
from schemas import DonorUpdatePayload
from visibility import Viewer


class TestUpdateDonor:

    def test_null_required_fields_rejected(self, db, donor_user, make_donor):
        donor = make_donor(donor_user)
        payload = DonorUpdatePayload.model_validate({"blood_group": None, "phone": None, "full_name": None})

        with pytest.raises(ValidationError) as exc:
            update_donor(db, str(donor["_id"]), payload, viewer_for(donor_user))

        assert exc.value.extra["fields"] == ["blood_group", "full_name", "phone"]
        stored = db["donor"].find_one({"_id": donor["_id"]})
        assert stored["blood_group"] == "O-"
        assert stored["phone"] == "+8801700000000"
        assert stored["full_name"] == "Rahim Uddin"

    @pytest.mark.parametrize("field", ["willing_to_donate", "visibility", "emergency_contact_phone", "address"])
    def test_each_required_field_guarded(self, db, donor_user, make_donor, field):
        donor = make_donor(donor_user)
        with pytest.raises(ValidationError):
            update_donor(db, str(donor["_id"]), DonorUpdatePayload.model_validate({field: None}),
                         viewer_for(donor_user))

    def test_optional_fields_can_be_cleared(self, db, donor_user, make_donor):
        donor = make_donor(donor_user)

        view = update_donor(db, str(donor["_id"]), DonorUpdatePayload.model_validate({"notes": None}),
                            viewer_for(donor_user))

        assert view["notes"] is None

    def test_clearing_email_removes_the_key(self, db, donor_user, other_user, make_donor):
        first = make_donor(donor_user)
        second = make_donor(other_user)

        update_donor(db, str(first["_id"]), DonorUpdatePayload.model_validate({"email": None}),
                     viewer_for(donor_user))
        update_donor(db, str(second["_id"]), DonorUpdatePayload.model_validate({"email": None}),
                     viewer_for(other_user))

        assert "email" not in db["donor"].find_one({"_id": first["_id"]})
        assert "email" not in db["donor"].find_one({"_id": second["_id"]})

    def test_email_is_lowercased(self, db, donor_user, make_donor):
        donor = make_donor(donor_user)
        view = update_donor(db, str(donor["_id"]), DonorUpdatePayload(email="New@Mail.com"),
                            viewer_for(donor_user))
        assert view["email"] == "new@mail.com"


class TestProfilePicture:

    def test_owner_picture_joined_into_views(self, db, make_user, make_donor, admin_user):
        owner = make_user("pic@test.com")
        db["user"].update_one({"_id": owner["_id"]}, {"$set": {"profile_picture": "https://img.test/pic.png"}})
        make_donor(owner)

        assert get_my_donor(db, viewer_for(owner))["profile_picture"] == "https://img.test/pic.png"
        assert search_donors(db, Viewer.guest())[0]["profile_picture"] == "https://img.test/pic.png"
        assert list_donors(db, viewer_for(admin_user))[0]["profile_picture"] == "https://img.test/pic.png"

    def test_missing_picture_is_none(self, db, donor_user, make_donor):
        make_donor(donor_user)
        assert search_donors(db, Viewer.guest())[0]["profile_picture"] is None
