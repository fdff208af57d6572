import logging
import os
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Optional

from fastapi import Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pymongo.database import Database

import blood_requests
import donations
import donors
import institutions
import messaging
import notifications
import users
from database import db as configured_db, ensure_indexes, get_db
from errors import RegistryError
from matching import search_donors
from observability import configure_logging
from schemas import (
    BloodGroup,
    BloodRequestPayload,
    ContactPayload,
    DonationPayload,
    DonorCreatePayload,
    DonorUpdatePayload,
    InstitutionPayload,
    LoginPayload,
    OpenRequestThreadPayload,
    RegisterPayload,
    SendMessagePayload,
    UpdateActivePayload,
    UpdateRolePayload,
    UpdateStatusPayload,
)
from security import get_current_user, get_current_viewer, get_optional_viewer, require_admin
from visibility import Viewer

configure_logging()
logger = logging.getLogger(__name__)

# ------------------------------------
# App Setup
# ------------------------------------
@asynccontextmanager
async def lifespan(app: FastAPI):
    if configured_db is not None:
        ensure_indexes(configured_db)
    yield


app = FastAPI(title="LifeLine Registry API", version="1.0.0", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(RegistryError)
async def registry_error_handler(request: Request, exc: RegistryError):
    if exc.status_code >= 500:
        logger.error("Unhandled registry error: %s", exc.message)
    body = {"detail": exc.message}
    body.update(exc.extra)
    return JSONResponse(status_code=exc.status_code, content=body)


def admin_viewer(admin=Depends(require_admin)) -> Viewer:
    return Viewer.from_user(admin)

# ------------------------------------
# Health
# ------------------------------------
@app.get("/")
def read_root():
    return {"message": "LifeLine Registry API running"}


@app.get("/test")
def test_database():
    response = {
        "backend": "running",
        "database": "not-configured",
        "database_name": None,
        "collections": [],
    }
    try:
        if configured_db is not None:
            response["database"] = "connected"
            response["database_name"] = configured_db.name
            response["collections"] = configured_db.list_collection_names()
    except Exception as e:
        response["database"] = f"error: {str(e)[:80]}"
    return response

# ------------------------------------
# Auth
# ------------------------------------
@app.post("/auth/register", status_code=201)
def register(payload: RegisterPayload, db: Database = Depends(get_db)):
    return users.register_user(db, payload)


@app.post("/auth/login")
def login(payload: LoginPayload, db: Database = Depends(get_db)):
    return users.login_user(db, payload)


@app.get("/auth/me")
def me(current_user=Depends(get_current_user)):
    return current_user

# ------------------------------------
# Users (admin)
# ------------------------------------
@app.get("/users", dependencies=[Depends(require_admin)])
def list_users(db: Database = Depends(get_db)):
    return users.list_users(db)


@app.put("/users/{user_id}/role")
def update_user_role(user_id: str, payload: UpdateRolePayload, viewer: Viewer = Depends(admin_viewer),
                     db: Database = Depends(get_db)):
    return users.update_role(db, user_id, payload.role, viewer)


@app.put("/users/{user_id}/status")
def update_user_status(user_id: str, payload: UpdateActivePayload, viewer: Viewer = Depends(admin_viewer),
                       db: Database = Depends(get_db)):
    return users.set_active(db, user_id, payload.is_active, viewer)


@app.delete("/users/{user_id}")
def delete_user(user_id: str, viewer: Viewer = Depends(admin_viewer), db: Database = Depends(get_db)):
    return users.deactivate_user(db, user_id, viewer)

# ------------------------------------
# Donors
# ------------------------------------
@app.get("/donors/search")
def donor_search(blood_group: Optional[BloodGroup] = None, city: Optional[str] = None,
                 viewer: Viewer = Depends(get_optional_viewer), db: Database = Depends(get_db)):
    return search_donors(db, viewer, blood_group=blood_group, city=city)


@app.post("/donors", status_code=201)
def create_donor(payload: DonorCreatePayload, viewer: Viewer = Depends(get_current_viewer),
                 db: Database = Depends(get_db)):
    return donors.create_donor(db, payload, viewer)


@app.get("/donors")
def list_donors(blood_group: Optional[BloodGroup] = None, city: Optional[str] = None,
                willing: Optional[bool] = None, viewer: Viewer = Depends(admin_viewer),
                db: Database = Depends(get_db)):
    return donors.list_donors(db, viewer, blood_group=blood_group, city=city, willing=willing)


@app.get("/donors/me")
def my_donor(viewer: Viewer = Depends(get_current_viewer), db: Database = Depends(get_db)):
    return donors.get_my_donor(db, viewer)


@app.get("/donors/{donor_id}")
def get_donor(donor_id: str, viewer: Viewer = Depends(get_current_viewer), db: Database = Depends(get_db)):
    return donors.view_donor(db, donor_id, viewer)


@app.put("/donors/{donor_id}")
def update_donor(donor_id: str, payload: DonorUpdatePayload, viewer: Viewer = Depends(get_current_viewer),
                 db: Database = Depends(get_db)):
    return donors.update_donor(db, donor_id, payload, viewer)


@app.delete("/donors/{donor_id}")
def delete_donor(donor_id: str, viewer: Viewer = Depends(admin_viewer), db: Database = Depends(get_db)):
    donors.delete_donor(db, donor_id, viewer)
    return {"deleted": True}


@app.get("/donors/{donor_id}/eligibility")
def donor_eligibility(donor_id: str, viewer: Viewer = Depends(get_current_viewer),
                      db: Database = Depends(get_db)):
    return donors.donor_eligibility(db, donor_id, viewer)

# ------------------------------------
# Donations
# ------------------------------------
@app.post("/donations", status_code=201)
def record_donation(payload: DonationPayload, viewer: Viewer = Depends(get_current_viewer),
                    db: Database = Depends(get_db)):
    return donations.record_donation(db, payload, viewer)


@app.get("/donations", dependencies=[Depends(require_admin)])
def list_donations(donor_id: Optional[str] = None, institution_id: Optional[str] = None,
                   from_date: Optional[datetime] = None, to_date: Optional[datetime] = None,
                   db: Database = Depends(get_db)):
    return donations.list_donations(db, donor_id=donor_id, institution_id=institution_id,
                                    from_date=from_date, to_date=to_date)


@app.get("/donations/donor/{donor_id}")
def donor_donations(donor_id: str, viewer: Viewer = Depends(get_current_viewer), db: Database = Depends(get_db)):
    return donations.donor_history(db, donor_id, viewer)

# ------------------------------------
# Institutions
# ------------------------------------
@app.post("/institutions", status_code=201)
def create_institution(payload: InstitutionPayload, viewer: Viewer = Depends(admin_viewer),
                       db: Database = Depends(get_db)):
    return institutions.create_institution(db, payload, viewer)


@app.get("/institutions", dependencies=[Depends(get_current_user)])
def list_institutions(db: Database = Depends(get_db)):
    return institutions.list_institutions(db)


@app.get("/institutions/ranking", dependencies=[Depends(get_current_user)])
def institution_ranking(db: Database = Depends(get_db)):
    return institutions.institution_ranking(db)


@app.delete("/institutions/{institution_id}")
def delete_institution(institution_id: str, viewer: Viewer = Depends(admin_viewer),
                       db: Database = Depends(get_db)):
    institutions.delete_institution(db, institution_id, viewer)
    return {"deleted": True}

# ------------------------------------
# Blood Requests & Matching
# ------------------------------------
@app.post("/requests", status_code=201)
def create_request(payload: BloodRequestPayload, viewer: Viewer = Depends(get_current_viewer),
                   db: Database = Depends(get_db)):
    return blood_requests.create_request(db, payload, viewer)


@app.get("/requests/me")
def my_requests(viewer: Viewer = Depends(get_current_viewer), db: Database = Depends(get_db)):
    return blood_requests.list_user_requests(db, viewer.user_id)


@app.get("/requests", dependencies=[Depends(require_admin)])
def list_requests(status: Optional[str] = None, db: Database = Depends(get_db)):
    return blood_requests.list_all_requests(db, status=status)


@app.put("/requests/{request_id}/status")
def update_request_status(request_id: str, payload: UpdateStatusPayload,
                          viewer: Viewer = Depends(get_current_viewer), db: Database = Depends(get_db)):
    return blood_requests.transition_request_status(db, request_id, payload.status, viewer)


@app.get("/requests/{request_id}/matches")
def request_matches(request_id: str, viewer: Viewer = Depends(get_current_viewer), db: Database = Depends(get_db)):
    return blood_requests.get_request_matches(db, request_id, viewer)


@app.delete("/requests/{request_id}")
def delete_request(request_id: str, viewer: Viewer = Depends(get_current_viewer), db: Database = Depends(get_db)):
    blood_requests.delete_request(db, request_id, viewer)
    return {"deleted": True}

# ------------------------------------
# Contact & Chats
# ------------------------------------
@app.post("/contact", status_code=201)
def contact_donor(payload: ContactPayload, viewer: Viewer = Depends(get_current_viewer),
                  db: Database = Depends(get_db)):
    return messaging.send_contact_message(db, viewer, payload.donor_id, payload.message, payload.request_id)


@app.get("/chats")
def inbox(viewer: Viewer = Depends(get_current_viewer), db: Database = Depends(get_db)):
    return messaging.list_inbox(db, viewer.user_id)


@app.post("/chats/request", status_code=201)
def open_request_chat(payload: OpenRequestThreadPayload, viewer: Viewer = Depends(get_current_viewer),
                      db: Database = Depends(get_db)):
    return messaging.open_request_thread(db, payload.request_id, viewer, payload.donor_id)


@app.get("/chats/{chat_id}/messages")
def chat_messages(chat_id: str, viewer: Viewer = Depends(get_current_viewer), db: Database = Depends(get_db)):
    return messaging.list_messages(db, chat_id, viewer.user_id)


@app.post("/chats/{chat_id}/messages", status_code=201)
def send_chat_message(chat_id: str, payload: SendMessagePayload, viewer: Viewer = Depends(get_current_viewer),
                      db: Database = Depends(get_db)):
    return messaging.send_message(db, chat_id, viewer.user_id, payload.message)


@app.post("/chats/{chat_id}/pause")
def pause_chat(chat_id: str, viewer: Viewer = Depends(get_current_viewer), db: Database = Depends(get_db)):
    return messaging.pause_thread(db, chat_id, viewer.user_id)


@app.post("/chats/{chat_id}/unpause")
def unpause_chat(chat_id: str, viewer: Viewer = Depends(get_current_viewer), db: Database = Depends(get_db)):
    return messaging.unpause_thread(db, chat_id, viewer.user_id)

# ------------------------------------
# Notifications & Audit
# ------------------------------------
@app.get("/notifications")
def my_notifications(viewer: Viewer = Depends(get_current_viewer), db: Database = Depends(get_db)):
    return notifications.list_notifications(db, viewer.user_id)


@app.post("/notifications/{notification_id}/read")
def read_notification(notification_id: str, viewer: Viewer = Depends(get_current_viewer),
                      db: Database = Depends(get_db)):
    return notifications.mark_notification_read(db, notification_id, viewer.user_id)


@app.get("/admin/audit", dependencies=[Depends(require_admin)])
def audit_logs(db: Database = Depends(get_db)):
    return notifications.list_audit_logs(db)


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)
