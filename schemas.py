"""
Database Schemas for the LifeLine registry

Each Pydantic model corresponds to a MongoDB collection (lowercased class name).
Foreign keys are stored as string ObjectIds. Request payload models live at the
bottom of the file.
"""

from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, EmailStr, Field

BloodGroup = Literal["A+", "A-", "B+", "B-", "AB+", "AB-", "O+", "O-"]
Visibility = Literal["public", "registered", "admin"]
RequestStatus = Literal["open", "fulfilled", "cancelled"]

BLOOD_GROUPS = ["A+", "A-", "B+", "B-", "AB+", "AB-", "O+", "O-"]
REQUEST_STATUSES = ["open", "fulfilled", "cancelled"]


# Core Users and Auth
class User(BaseModel):
    name: str
    email: EmailStr = Field(..., description="Login email (unique, lowercased)")
    password_hash: str = Field(..., description="BCrypt hashed password")
    role: Literal["admin", "user"] = "user"
    profile_picture: Optional[str] = None
    is_active: bool = True
    deactivated_at: Optional[datetime] = None


class Address(BaseModel):
    country: Optional[str] = "Bangladesh"
    state_or_division: Optional[str] = None
    city: Optional[str] = None
    area: Optional[str] = None
    postal_code: Optional[str] = None
    # Stored for the UI only; no proximity search.
    lat: Optional[float] = None
    lng: Optional[float] = None


# Donors and Donations
class Donor(BaseModel):
    user_id: str = Field(..., description="Owning user _id (one profile per user)")
    full_name: str
    email: Optional[EmailStr] = None
    phone: str
    emergency_contact_name: str
    emergency_contact_phone: str
    date_of_birth: Optional[datetime] = None
    gender: Optional[Literal["male", "female", "other"]] = None
    blood_group: BloodGroup
    willing_to_donate: bool = True
    visibility: Visibility = "registered"
    phone_visibility: Visibility = "registered"
    allow_request_contact: bool = True
    contact_preference: Literal["phone", "email", "message"] = "message"
    address: Address = Field(default_factory=Address)
    last_donation_date: Optional[datetime] = None
    total_donations: int = 0
    notes: Optional[str] = None
    deferral_until: Optional[datetime] = Field(None, description="Administrative block beyond the 90-day rule")
    is_deleted: bool = False


class Institution(BaseModel):
    name: str
    type: Literal["hospital", "clinic", "ngo", "camp", "other"] = "other"
    contact_person: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[EmailStr] = None
    address: Address = Field(default_factory=Address)
    total_donations: int = 0
    is_deleted: bool = False


class Donation(BaseModel):
    donor_id: str
    institution_id: Optional[str] = None
    donation_date: datetime
    units: int = Field(1, ge=1)
    location: Optional[str] = None
    notes: Optional[str] = None
    recorded_by: Optional[str] = None


# Requests, threads and notifications
class BloodRequest(BaseModel):
    user_id: str
    request_number: int = 0
    blood_group: BloodGroup
    city: str
    hospital: Optional[str] = None
    patient_name: Optional[str] = None
    units_needed: int = Field(..., ge=1)
    required_date: datetime
    contact_phone: str
    status: RequestStatus = "open"
    is_deleted: bool = False


class LastMessage(BaseModel):
    text: str
    from_user: str
    created_at: datetime


class Thread(BaseModel):
    kind: Literal["request", "contact"]
    participants: List[str] = Field(..., min_length=2, max_length=2)
    request_id: Optional[str] = None
    donor_id: Optional[str] = None
    paused_by: List[str] = Field(default_factory=list)
    last_message: Optional[LastMessage] = None


class Message(BaseModel):
    thread_id: str
    kind: Literal["request", "contact"]
    from_user: str
    to_user: str
    request_id: Optional[str] = None
    donor_id: Optional[str] = None
    text: str


class Notification(BaseModel):
    user_id: str
    donor_id: Optional[str] = None
    type: Literal["request_match", "contact_message", "chat_message"]
    title: Optional[str] = None
    message: str
    meta: Dict[str, Any] = Field(default_factory=dict)
    read: bool = False


class AuditLog(BaseModel):
    user_id: Optional[str] = None
    action: str
    target_type: str
    target_id: Optional[str] = None
    details: Dict[str, Any] = Field(default_factory=dict)


# ------------------------------------
# Request payloads
# ------------------------------------
class RegisterPayload(BaseModel):
    name: str = Field(..., min_length=1)
    email: EmailStr
    password: str = Field(..., min_length=6)
    profile_picture: Optional[str] = None


class LoginPayload(BaseModel):
    email: EmailStr
    password: str


class DonorCreatePayload(BaseModel):
    user_id: Optional[str] = Field(None, description="Admins only: create on behalf of this user")
    full_name: str = Field(..., min_length=1)
    email: Optional[EmailStr] = None
    phone: str = Field(..., min_length=1)
    emergency_contact_name: str = Field(..., min_length=1)
    emergency_contact_phone: str = Field(..., min_length=1)
    date_of_birth: Optional[datetime] = None
    gender: Optional[Literal["male", "female", "other"]] = None
    blood_group: BloodGroup
    willing_to_donate: bool = True
    visibility: Visibility = "registered"
    phone_visibility: Visibility = "registered"
    allow_request_contact: bool = True
    contact_preference: Literal["phone", "email", "message"] = "message"
    address: Address = Field(default_factory=Address)
    notes: Optional[str] = None


class DonorUpdatePayload(BaseModel):
    full_name: Optional[str] = None
    email: Optional[EmailStr] = None
    phone: Optional[str] = None
    emergency_contact_name: Optional[str] = None
    emergency_contact_phone: Optional[str] = None
    date_of_birth: Optional[datetime] = None
    gender: Optional[Literal["male", "female", "other"]] = None
    blood_group: Optional[BloodGroup] = None
    willing_to_donate: Optional[bool] = None
    visibility: Optional[Visibility] = None
    phone_visibility: Optional[Visibility] = None
    allow_request_contact: Optional[bool] = None
    contact_preference: Optional[Literal["phone", "email", "message"]] = None
    address: Optional[Address] = None
    notes: Optional[str] = None
    deferral_until: Optional[datetime] = None


class DonationPayload(BaseModel):
    donor_id: str
    institution_id: Optional[str] = None
    donation_date: Optional[datetime] = None
    units: int = Field(1, ge=1)
    location: Optional[str] = None
    notes: Optional[str] = None


class InstitutionPayload(BaseModel):
    name: str = Field(..., min_length=1)
    type: Literal["hospital", "clinic", "ngo", "camp", "other"] = "other"
    contact_person: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[EmailStr] = None
    address: Address = Field(default_factory=Address)


class BloodRequestPayload(BaseModel):
    blood_group: BloodGroup
    city: str = Field(..., min_length=1)
    hospital: Optional[str] = None
    patient_name: Optional[str] = None
    units_needed: int = Field(..., ge=1)
    required_date: datetime
    contact_phone: str = Field(..., min_length=1)


class UpdateStatusPayload(BaseModel):
    status: str


class UpdateRolePayload(BaseModel):
    role: str


class UpdateActivePayload(BaseModel):
    is_active: bool


class ContactPayload(BaseModel):
    donor_id: str
    request_id: Optional[str] = None
    message: str


class OpenRequestThreadPayload(BaseModel):
    request_id: str
    donor_id: Optional[str] = None


class SendMessagePayload(BaseModel):
    message: str
