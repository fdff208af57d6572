"""
Accounts: registration, login, and admin management of roles and activation.

An organization must always keep at least one active admin.
"""
from typing import Any, Dict, List

from pymongo import DESCENDING
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

from database import create_document, to_object_id, utcnow
from errors import ConflictError, ForbiddenError, NotFoundError, ValidationError
from notifications import record_audit
from observability import log_domain_event
from schemas import LoginPayload, RegisterPayload, User
from security import get_password_hash, public_user, token_for_user, verify_password
from visibility import Viewer

ROLES = ("admin", "user")


def _avatar_url(seed: str) -> str:
    return f"https://i.pravatar.cc/150?u={seed}"


def register_user(db: Database, payload: RegisterPayload) -> Dict[str, Any]:
    email = str(payload.email).lower()
    if db["user"].find_one({"email": email}):
        raise ConflictError("Email already registered.")

    picture = (payload.profile_picture or "").strip() or _avatar_url(email)
    user = User(
        name=payload.name.strip(),
        email=email,
        password_hash=get_password_hash(payload.password),
        role="user",
        profile_picture=picture,
    )
    try:
        user_id = create_document(db, "user", user)
    except DuplicateKeyError:
        raise ConflictError("Email already registered.")

    doc = db["user"].find_one({"_id": to_object_id(user_id)})
    log_domain_event("user_registered", entity_type="User", entity_id=user_id)
    return {"access_token": token_for_user(doc), "token_type": "bearer", "user": public_user(doc)}


def login_user(db: Database, payload: LoginPayload) -> Dict[str, Any]:
    user = db["user"].find_one({"email": str(payload.email).lower()})
    if not user or not verify_password(payload.password, user.get("password_hash", "")):
        log_domain_event("login_failed", entity_type="User", result="warning")
        raise ValidationError("Invalid credentials.")
    if user.get("is_active") is False:
        raise ForbiddenError("Account is disabled. Contact support.")
    return {"access_token": token_for_user(user), "token_type": "bearer", "user": public_user(user)}


def list_users(db: Database) -> List[Dict[str, Any]]:
    return [public_user(u) for u in db["user"].find({}).sort("created_at", DESCENDING)]


def _get_user(db: Database, user_id: str) -> Dict[str, Any]:
    user = db["user"].find_one({"_id": to_object_id(user_id, "user ID")})
    if not user:
        raise NotFoundError("User not found.")
    return user


def _ensure_other_active_admin(db: Database, user: Dict[str, Any], message: str) -> None:
    if user.get("role") != "admin":
        return
    others = db["user"].count_documents({
        "role": "admin",
        "is_active": {"$ne": False},
        "_id": {"$ne": user["_id"]},
    })
    if others == 0:
        raise ValidationError(message)


def update_role(db: Database, user_id: str, role: str, viewer: Viewer) -> Dict[str, Any]:
    if role not in ROLES:
        raise ValidationError("Role must be admin or user.")
    user = _get_user(db, user_id)
    if str(user["_id"]) == viewer.user_id and role != "admin":
        raise ValidationError("You cannot remove your own admin role.")
    if role == "user":
        _ensure_other_active_admin(db, user, "Cannot remove the last active admin.")

    db["user"].update_one({"_id": user["_id"]}, {"$set": {"role": role, "updated_at": utcnow()}})
    record_audit(db, viewer.user_id, "update_user_role", "User", str(user["_id"]), {"role": role})
    return public_user(_get_user(db, user_id))


def set_active(db: Database, user_id: str, is_active: bool, viewer: Viewer) -> Dict[str, Any]:
    user = _get_user(db, user_id)
    if str(user["_id"]) == viewer.user_id and not is_active:
        raise ValidationError("You cannot deactivate your own account.")
    if not is_active:
        _ensure_other_active_admin(db, user, "Cannot deactivate the last active admin.")

    db["user"].update_one(
        {"_id": user["_id"]},
        {"$set": {"is_active": is_active, "deactivated_at": None if is_active else utcnow(), "updated_at": utcnow()}},
    )
    record_audit(db, viewer.user_id, "activate_user" if is_active else "deactivate_user", "User", str(user["_id"]))
    return public_user(_get_user(db, user_id))


def deactivate_user(db: Database, user_id: str, viewer: Viewer) -> Dict[str, Any]:
    if str(to_object_id(user_id, "user ID")) == viewer.user_id:
        raise ValidationError("You cannot delete your own account.")
    return set_active(db, user_id, False, viewer)
