"""
Donation eligibility: the 90-day cooldown plus willingness and deferral checks.
"""
import math
from datetime import datetime
from typing import Any, Mapping, NamedTuple, Optional

from database import as_utc, utcnow

MIN_DONATION_GAP_DAYS = 90
SECONDS_PER_DAY = 24 * 60 * 60


class Eligibility(NamedTuple):
    eligible: bool
    days_until_eligible: Optional[int]

    def as_dict(self):
        return {"eligible": self.eligible, "days_until_eligible": self.days_until_eligible}


def evaluate_eligibility(donor: Mapping[str, Any], now: Optional[datetime] = None) -> Eligibility:
    """
    Decide whether a donor may donate at `now`.

    Checked in order: willingness, an active deferral, then the gap since the
    last donation. A donor who never donated is eligible straight away.
    """
    now = as_utc(now) or utcnow()

    if not donor.get("willing_to_donate", True):
        return Eligibility(False, None)

    deferral_until = as_utc(donor.get("deferral_until"))
    if deferral_until and deferral_until > now:
        remaining = (deferral_until - now).total_seconds() / SECONDS_PER_DAY
        return Eligibility(False, math.ceil(remaining))

    last_donation = as_utc(donor.get("last_donation_date"))
    if last_donation is None:
        return Eligibility(True, 0)

    elapsed_days = math.floor((now - last_donation).total_seconds() / SECONDS_PER_DAY)
    if elapsed_days >= MIN_DONATION_GAP_DAYS:
        return Eligibility(True, 0)
    return Eligibility(False, MIN_DONATION_GAP_DAYS - elapsed_days)


def ineligibility_reason(donor: Mapping[str, Any], now: Optional[datetime] = None) -> Optional[str]:
    if evaluate_eligibility(donor, now).eligible:
        return None
    if not donor.get("willing_to_donate", True):
        return "Donor is not willing to donate currently."
    deferral_until = as_utc(donor.get("deferral_until"))
    if deferral_until and deferral_until > (as_utc(now) or utcnow()):
        return "Donor is deferred."
    return "Donated too recently."
