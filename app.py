import os
import time
from datetime import date, datetime, timezone
from typing import Any, Dict, List, Optional
from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from loguru import logger
from dotenv import load_dotenv

# Import our modules
from graph.sync import SyncController, SyncError
from pipeline.constants import (
    PIPELINE_STAGES,
    PROOF_ACTIONS,
    QUICK_ACTION_GROUPS,
    ROLE_ADMIN,
    ROLE_SALES_PERSON,
    STATUS_OPTIONS,
)
from pipeline.mutations import MutationCoordinator, MutationError
from pipeline.projections import lead_history, stage_for
from pipeline.reminders import compute_reminders
from pipeline.session import SessionManager
from pipeline.state import Contact
from pipeline.store import AppState
from pipeline import views
from tools.cache import SnapshotCache
from tools.errors import RecordStoreError
from tools.record_store import RecordStoreClient

# Load environment variables
load_dotenv()

# Configure logging
logger.add("logs/app.log", rotation="1 day", retention="7 days", level="INFO")

app = FastAPI(
    title="Sales Pipeline Desk",
    description="Cached, optimistic client for the sales pipeline record store",
    version="1.0.0"
)

class Services:
    """Everything one session needs, wired together."""

    def __init__(self, cache: Optional[SnapshotCache] = None, record_store: Optional[RecordStoreClient] = None):
        self.app_state = AppState()
        self.cache = cache if cache is not None else SnapshotCache()
        self.record_store = record_store if record_store is not None else RecordStoreClient()
        self.sync = SyncController(self.app_state, self.cache, self.record_store)
        self.mutations = MutationCoordinator(self.app_state, self.record_store, self.sync)
        self.session = SessionManager(self.app_state, self.record_store)

services = Services()

# Request bodies

class LoginRequest(BaseModel):
    name: str
    password: str
    role: str = ROLE_SALES_PERSON

class NewLeadRequest(BaseModel):
    company: Dict[str, Any]
    persons: List[Dict[str, Any]]

class FieldsRequest(BaseModel):
    fields: Dict[str, Any]

class StatusRequest(BaseModel):
    status: str

class ProofFileRequest(BaseModel):
    mime_type: str
    file_name: str
    base64_data: str

class FollowUpRequest(BaseModel):
    action: str
    details: Optional[str] = None      # None means a quick action
    remarks: str = ""
    next_follow_up_date: Optional[str] = None
    template_id: Optional[str] = None
    proof_file: Optional[ProofFileRequest] = None

class SocialClickRequest(BaseModel):
    action: str
    details: str

class WhatsAppRequest(BaseModel):
    message: str = ""
    template_id: Optional[str] = None

class UserRequest(BaseModel):
    name: str
    role: str
    password: Optional[str] = None

def _require_login() -> str:
    if not services.app_state.user:
        raise HTTPException(status_code=401, detail="Not logged in")
    return services.app_state.user

def _require_admin() -> str:
    user = _require_login()
    if services.app_state.role != ROLE_ADMIN:
        raise HTTPException(status_code=403, detail="Admin access required")
    return user

def _find_contact(contact_id: int) -> Contact:
    for contact in services.app_state.contacts:
        if contact.get("id") == contact_id:
            return contact
    raise HTTPException(status_code=404, detail=f"Contact {contact_id} not found")

def _find_lead(lead_no: str) -> Contact:
    for contact in services.app_state.contacts:
        if contact.get("lead_no") == lead_no:
            return contact
    raise HTTPException(status_code=404, detail=f"Lead {lead_no} not found")

def _snapshot_response() -> Dict[str, Any]:
    state = services.app_state
    return {
        "status": "success",
        "version": state.version,
        "is_loading": state.is_loading,
        "error": state.error,
        "contacts": state.contacts,
        "follow_ups": state.follow_ups,
    }

# Session

@app.get("/session/login-options")
async def login_options():
    return await services.session.login_options()

@app.post("/session/login")
async def login(body: LoginRequest):
    """Authenticate, then load the snapshot (cache first)."""
    role = await services.session.login(body.name, body.password, body.role)
    try:
        await services.sync.load()
    except SyncError as e:
        logger.error(f"Initial load after login failed: {e}")
    return {"status": "success", "user": body.name, "role": role, "error": services.app_state.error}

@app.post("/session/logout")
def logout():
    services.session.logout()
    return {"status": "success"}

# Data

@app.post("/data/load")
async def load(force_loader: bool = True):
    """
    Reload the snapshot.

    Serves the cached snapshot first when there is one and only fails
    when the fetch fails and nothing was cached.
    """
    _require_login()
    start_time = time.time()
    await services.sync.load(force_loader)
    logger.info(f"Load completed in {time.time() - start_time:.2f}s")
    return _snapshot_response()

@app.get("/data/snapshot")
def snapshot():
    _require_login()
    return _snapshot_response()

# Projections

@app.get("/views/pipeline-stages")
def pipeline_stages():
    _require_login()
    stages = services.app_state.stages()
    leads = views.unique_leads(services.app_state.contacts)
    return {lead["lead_no"]: stage_for(stages, lead["lead_no"]) for lead in leads}

@app.get("/views/last-actions")
def last_actions():
    _require_login()
    return services.app_state.last_actions()

@app.get("/views/reminders")
def reminders():
    user = _require_login()
    return compute_reminders(services.app_state.contacts, user, date.today(), services.app_state.role)

@app.get("/views/dashboard")
def dashboard(search: str = "", country: str = "", company: str = "", active_filter: Optional[str] = None, sales_person: str = ""):
    user = _require_login()
    state = services.app_state
    today = date.today()
    scoped = views.scoped_contacts(state.contacts, user, state.role, sales_person)
    filtered = views.filter_contacts(scoped, state.stages(), today, search, country, company, active_filter)
    return {
        "contacts": filtered,
        "unique_leads": views.unique_leads(filtered),
        "stage_counts": views.stage_counts(scoped, state.stages()),
        "todays_follow_ups": views.todays_follow_up_count(state.contacts, user, state.role, today),
        "primary_sales_person": views.primary_sales_person(state.contacts, user),
    }

@app.get("/views/actions")
def actions():
    """Quick action groups, pipeline stages and status options offered by the desk."""
    return {
        "quick_actions": QUICK_ACTION_GROUPS,
        "pipeline_stages": PIPELINE_STAGES,
        "status_options": STATUS_OPTIONS,
        "proof_actions": PROOF_ACTIONS,
    }

@app.get("/leads/{lead_no}/history")
def history(lead_no: str):
    _require_login()
    return lead_history(services.app_state.follow_ups, lead_no)

@app.get("/views/team")
def team():
    user = _require_login()
    state = services.app_state
    return views.team_activity(state.contacts, state.follow_ups, user, date.today())

@app.get("/views/admin-overview")
def admin_overview():
    _require_admin()
    state = services.app_state
    return views.sales_person_overview(state.contacts, state.follow_ups, state.stages())

@app.get("/views/comparison")
def comparison(window: str = "month"):
    _require_admin()
    state = services.app_state
    return views.sales_person_comparison(state.contacts, state.follow_ups, datetime.now(timezone.utc), window)

# Mutations

@app.post("/leads")
async def create_lead(body: NewLeadRequest):
    _require_login()
    rows = await services.mutations.create_lead(body.company, body.persons)
    return {"status": "success", "lead_no": rows[0]["lead_no"], "contacts": rows}

@app.post("/leads/{lead_no}/persons")
async def add_person(lead_no: str, body: FieldsRequest):
    _require_login()
    await services.mutations.add_person(_find_lead(lead_no), body.fields)
    return _snapshot_response()

@app.put("/leads/{lead_no}/company")
async def edit_company(lead_no: str, body: FieldsRequest):
    _require_login()
    contacts = await services.mutations.edit_company(_find_lead(lead_no), body.fields)
    return {"status": "success", "contacts": contacts}

@app.put("/contacts/{contact_id}")
async def edit_person(contact_id: int, body: FieldsRequest):
    _require_login()
    contact = await services.mutations.edit_person(_find_contact(contact_id), body.fields)
    return {"status": "success", "contact": contact}

@app.delete("/contacts/{contact_id}")
async def delete_person(contact_id: int):
    _require_login()
    await services.mutations.delete_person(_find_contact(contact_id))
    return {"status": "success"}

@app.post("/contacts/{contact_id}/status")
async def change_status(contact_id: int, body: StatusRequest):
    _require_login()
    contact = await services.mutations.change_status(_find_contact(contact_id), body.status)
    return {"status": "success", "contact": contact}

@app.post("/contacts/{contact_id}/follow-ups")
async def log_follow_up(contact_id: int, body: FollowUpRequest):
    _require_login()
    contact = _find_contact(contact_id)
    options = {
        "next_follow_up_date": body.next_follow_up_date,
        "template_id": body.template_id,
        "proof_file": body.proof_file.model_dump() if body.proof_file else None,
    }
    if body.details is None:
        log = await services.mutations.quick_action(contact, body.action, body.remarks, **options)
    else:
        log = await services.mutations.log_follow_up(contact, body.action, body.details, body.remarks, **options)
    return {"status": "success", "log": log}

@app.post("/contacts/{contact_id}/social-clicks")
async def log_social_click(contact_id: int, body: SocialClickRequest):
    _require_login()
    log = await services.mutations.log_social_click(_find_contact(contact_id), body.action, body.details)
    return {"status": "success", "log": log}

@app.post("/contacts/{contact_id}/whatsapp")
async def log_whatsapp(contact_id: int, body: WhatsAppRequest):
    _require_login()
    log = await services.mutations.log_whatsapp_message(_find_contact(contact_id), body.message, body.template_id)
    return {"status": "success", "log": log}

# User administration

@app.get("/admin/users")
async def list_users():
    _require_admin()
    return await services.record_store.list_users()

@app.post("/admin/users")
async def add_user(body: UserRequest):
    _require_admin()
    await services.record_store.add_user(body.model_dump())
    return {"status": "success"}

@app.put("/admin/users/{user_row}")
async def update_user(user_row: int, body: UserRequest):
    _require_admin()
    await services.record_store.update_user({**body.model_dump(), "user_row": user_row})
    return {"status": "success"}

@app.delete("/admin/users/{user_row}")
async def delete_user(user_row: int):
    _require_admin()
    await services.record_store.delete_user(user_row)
    return {"status": "success"}

@app.get("/health")
def health():
    """Health check endpoint."""
    return {
        "status": "healthy",
        "timestamp": time.time(),
        "version": "1.0.0",
        "services": {
            "redis": "connected" if services.cache.r else "disconnected",
            "record_store": "configured" if services.record_store.url else "unconfigured",
            "snapshot_version": services.app_state.version,
        }
    }

# Error handlers
@app.exception_handler(MutationError)
async def mutation_exception_handler(request: Request, exc: MutationError):
    return JSONResponse(status_code=502, content={"status": "error", "message": str(exc)})

@app.exception_handler(SyncError)
async def sync_exception_handler(request: Request, exc: SyncError):
    return JSONResponse(status_code=502, content={"status": "error", "kind": exc.kind, "message": str(exc)})

@app.exception_handler(RecordStoreError)
async def record_store_exception_handler(request: Request, exc: RecordStoreError):
    logger.error(f"Record store request failed: {exc}")
    return JSONResponse(status_code=502, content={"status": "error", "message": str(exc)})

@app.exception_handler(ValueError)
async def value_exception_handler(request: Request, exc: ValueError):
    return JSONResponse(status_code=400, content={"status": "error", "message": str(exc)})

@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.error(f"Unhandled exception: {exc}")
    return JSONResponse(
        status_code=500,
        content={"status": "error", "message": "Internal server error"}
    )

if __name__ == "__main__":
    import uvicorn

    # Create logs directory if it doesn't exist
    os.makedirs("logs", exist_ok=True)

    logger.info("Starting Sales Pipeline Desk")

    uvicorn.run(
        "app:app",
        host=os.getenv("HOST", "127.0.0.1"),
        port=int(os.getenv("PORT", "8000")),
        reload=True,
        log_level="info"
    )
