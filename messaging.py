"""
Threads and messages between requesters and donors.

A thread is either request-scoped (kind "request") or a direct contact with a
donor profile (kind "contact"). Either participant may pause a thread; while
anyone has it paused, nobody can post.
"""
import logging
from typing import Any, Dict, List, Mapping, Optional

from pymongo import ASCENDING, DESCENDING
from pymongo.database import Database
from pymongo.errors import PyMongoError

from database import create_document, find_by_id, serialize, to_object_id, utcnow
from errors import ForbiddenError, NotFoundError, ValidationError
from notifications import emit_notification
from observability import log_domain_event
from schemas import LastMessage, Message, Thread
from visibility import Viewer

logger = logging.getLogger(__name__)

NOTIFICATION_TEXT = {
    "request": ("chat_message", "New inbox message", "You received a new message in your inbox."),
    "contact": ("contact_message", "New contact message", "You received a new contact message."),
}


def _get_donor(db: Database, donor_id: str) -> Dict[str, Any]:
    donor = find_by_id(db, "donor", donor_id, "donor ID")
    if not donor:
        raise NotFoundError("Donor not found.")
    return donor


def _ensure_accepts_contact(donor: Mapping[str, Any]) -> None:
    if not donor.get("allow_request_contact", True):
        raise ForbiddenError("This donor is not accepting contact requests.")


def _find_or_create_thread(db: Database, kind: str, participants: List[str],
                           request_id: Optional[str], donor_id: Optional[str]) -> Dict[str, Any]:
    query: Dict[str, Any] = {"kind": kind, "participants": {"$all": participants}}
    if kind == "request":
        query["request_id"] = request_id
    else:
        query["donor_id"] = donor_id

    existing = db["thread"].find_one(query)
    if existing:
        return existing

    thread = Thread(kind=kind, participants=participants, request_id=request_id, donor_id=donor_id)
    thread_id = create_document(db, "thread", thread)
    log_domain_event("thread_opened", entity_type="Thread", entity_id=thread_id, kind=kind)
    return db["thread"].find_one({"_id": to_object_id(thread_id)})


def open_request_thread(db: Database, request_id: str, viewer: Viewer,
                        donor_id: Optional[str] = None) -> Dict[str, Any]:
    """
    Open (or reuse) the conversation about a blood request.

    The requester talks to a matched donor by passing `donor_id`; anyone else
    reaches the requester directly.
    """
    request = find_by_id(db, "bloodrequest", request_id, "request ID")
    if not request:
        raise NotFoundError("Blood request not found.")

    owner_id = str(request["user_id"])
    if viewer.user_id == owner_id:
        if not donor_id:
            raise ValidationError("donor_id is required to message a donor about your own request.")
        donor = _get_donor(db, donor_id)
        _ensure_accepts_contact(donor)
        other_id = str(donor["user_id"])
    else:
        other_id = owner_id

    if other_id == viewer.user_id:
        raise ForbiddenError("You cannot open a conversation with yourself.")

    return serialize(_find_or_create_thread(
        db, "request", [viewer.user_id, other_id], str(request["_id"]), donor_id))


def open_contact_thread(db: Database, viewer: Viewer, donor_id: str,
                        request_id: Optional[str] = None) -> Dict[str, Any]:
    donor = _get_donor(db, donor_id)
    _ensure_accepts_contact(donor)
    if viewer.owns(donor):
        raise ForbiddenError("You cannot contact your own donor profile.")

    related_request_id = None
    if request_id:
        request = find_by_id(db, "bloodrequest", request_id, "request ID")
        if not request:
            raise NotFoundError("Related blood request not found.")
        if not viewer.is_admin and str(request["user_id"]) != viewer.user_id:
            raise ForbiddenError("You can only send from your own request.")
        related_request_id = str(request["_id"])

    thread = _find_or_create_thread(
        db, "contact", [viewer.user_id, str(donor["user_id"])], None, str(donor["_id"]))
    if related_request_id and thread.get("request_id") != related_request_id:
        db["thread"].update_one({"_id": thread["_id"]}, {"$set": {"request_id": related_request_id}})
        thread["request_id"] = related_request_id
    return serialize(thread)


def send_contact_message(db: Database, viewer: Viewer, donor_id: str, text: str,
                         request_id: Optional[str] = None) -> Dict[str, Any]:
    """Open (or reuse) a contact thread and post the first message, creating nothing on bad input."""
    if not (text or "").strip():
        raise ValidationError("Message is required.")
    thread = open_contact_thread(db, viewer, donor_id, request_id)
    message = send_message(db, thread["id"], viewer.user_id, text)
    chat = db["thread"].find_one({"_id": to_object_id(thread["id"])})
    return {"chat": serialize(chat), "message": message}


def get_member_thread(db: Database, thread_id: str, user_id: str) -> Dict[str, Any]:
    thread = db["thread"].find_one({"_id": to_object_id(thread_id, "chat ID")})
    if not thread:
        raise NotFoundError("Chat not found.")
    if user_id not in thread.get("participants", []):
        raise ForbiddenError("Not authorized for this chat.")
    return thread


def send_message(db: Database, thread_id: str, sender_id: str, text: str) -> Dict[str, Any]:
    clean = (text or "").strip()
    if not clean:
        raise ValidationError("Message is required.")

    thread = get_member_thread(db, thread_id, sender_id)
    if thread.get("paused_by"):
        raise ForbiddenError("Chat is paused. Ask the other participant to resume before messaging.")

    if thread["kind"] == "contact":
        _ensure_accepts_contact(_get_donor(db, thread["donor_id"]))

    recipient_id = next((p for p in thread["participants"] if p != sender_id), None)
    if recipient_id is None:
        raise ForbiddenError("You cannot message yourself.")

    message = Message(
        thread_id=str(thread["_id"]),
        kind=thread["kind"],
        from_user=sender_id,
        to_user=recipient_id,
        request_id=thread.get("request_id"),
        donor_id=thread.get("donor_id"),
        text=clean,
    )
    message_id = create_document(db, "message", message)
    stored = db["message"].find_one({"_id": to_object_id(message_id)})

    snapshot = LastMessage(text=clean, from_user=sender_id, created_at=stored["created_at"])
    try:
        db["thread"].update_one(
            {"_id": thread["_id"]},
            {"$set": {"last_message": snapshot.model_dump(), "updated_at": utcnow()}},
        )
    except PyMongoError:
        # A message never exists without its inbox snapshot.
        db["message"].delete_one({"_id": stored["_id"]})
        logger.exception("Thread snapshot update failed; message rolled back",
                         extra={"thread_id": str(thread["_id"])})
        raise

    notif_type, title, body = NOTIFICATION_TEXT[thread["kind"]]
    emit_notification(
        db,
        user_id=recipient_id,
        donor_id=thread.get("donor_id"),
        type=notif_type,
        title=title,
        message=body,
        meta={"chat_id": str(thread["_id"]), "message_id": message_id, "request_id": thread.get("request_id")},
    )
    log_domain_event("message_sent", entity_type="Message", entity_id=message_id,
                     thread_id=str(thread["_id"]), kind=thread["kind"])
    return serialize(stored)


def pause_thread(db: Database, thread_id: str, user_id: str) -> Dict[str, Any]:
    thread = get_member_thread(db, thread_id, user_id)
    db["thread"].update_one(
        {"_id": thread["_id"]},
        {"$addToSet": {"paused_by": user_id}, "$set": {"updated_at": utcnow()}},
    )
    return serialize(db["thread"].find_one({"_id": thread["_id"]}))


def unpause_thread(db: Database, thread_id: str, user_id: str) -> Dict[str, Any]:
    thread = get_member_thread(db, thread_id, user_id)
    db["thread"].update_one(
        {"_id": thread["_id"]},
        {"$pull": {"paused_by": user_id}, "$set": {"updated_at": utcnow()}},
    )
    return serialize(db["thread"].find_one({"_id": thread["_id"]}))


def list_inbox(db: Database, user_id: str) -> List[Dict[str, Any]]:
    threads = db["thread"].find({"participants": user_id}).sort("updated_at", DESCENDING)
    return [serialize(t) for t in threads]


def list_messages(db: Database, thread_id: str, user_id: str) -> Dict[str, Any]:
    thread = get_member_thread(db, thread_id, user_id)
    messages = db["message"].find({"thread_id": str(thread["_id"])}).sort("created_at", ASCENDING)
    return {"chat": serialize(thread), "messages": [serialize(m) for m in messages]}
