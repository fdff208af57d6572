"""
In-app notifications and the audit trail.

Notifications are fire-and-forget: a failed insert is logged and dropped so
the operation that triggered it still succeeds.
"""
import logging
from typing import Any, Dict, List, Optional

from pymongo import DESCENDING
from pymongo.database import Database
from pymongo.errors import PyMongoError

from database import create_document, get_documents, serialize, to_object_id, utcnow
from errors import NotFoundError
from observability import log_domain_event
from schemas import AuditLog, Notification

logger = logging.getLogger(__name__)

NOTIFICATION_LIMIT = 100
AUDIT_LIMIT = 200


def emit_notification(db: Database, user_id: str, type: str, message: str, title: Optional[str] = None,
                      donor_id: Optional[str] = None, meta: Optional[Dict[str, Any]] = None) -> Optional[str]:
    notif = Notification(
        user_id=user_id,
        donor_id=donor_id,
        type=type,
        title=title,
        message=message,
        meta=meta or {},
    )
    try:
        return create_document(db, "notification", notif)
    except PyMongoError:
        logger.exception("Notification insert failed", extra={"notification_type": type, "user_id": user_id})
        log_domain_event("notification_failed", entity_type="Notification", result="warning",
                         notification_type=type, user_id=user_id)
        return None


def list_notifications(db: Database, user_id: str, limit: int = NOTIFICATION_LIMIT) -> List[Dict[str, Any]]:
    docs = get_documents(db, "notification", {"user_id": user_id}, limit=limit, sort=[("created_at", DESCENDING)])
    return [serialize(d) for d in docs]


def mark_notification_read(db: Database, notification_id: str, user_id: str) -> Dict[str, Any]:
    oid = to_object_id(notification_id, "notification ID")
    result = db["notification"].update_one(
        {"_id": oid, "user_id": user_id},
        {"$set": {"read": True, "updated_at": utcnow()}},
    )
    if result.matched_count == 0:
        raise NotFoundError("Notification not found.")
    return serialize(db["notification"].find_one({"_id": oid}))


def record_audit(db: Database, actor_id: Optional[str], action: str, target_type: str,
                 target_id: Optional[str] = None, details: Optional[Dict[str, Any]] = None) -> str:
    entry = AuditLog(user_id=actor_id, action=action, target_type=target_type,
                     target_id=target_id, details=details or {})
    return create_document(db, "auditlog", entry)


def list_audit_logs(db: Database, limit: int = AUDIT_LIMIT) -> List[Dict[str, Any]]:
    docs = get_documents(db, "auditlog", limit=limit, sort=[("created_at", DESCENDING)])
    return [serialize(d) for d in docs]
