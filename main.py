import asyncio
import json
from pathlib import Path
from typing import List, Optional, Union

from fastapi import (
    FastAPI,
    Depends,
    HTTPException,
    Query,
    Request,
    status,
)
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles
from fastapi.responses import JSONResponse, Response, HTMLResponse
from fastapi.templating import Jinja2Templates
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from sse_starlette.sse import EventSourceResponse
import structlog
from structlog.contextvars import get_contextvars

import address_lookup
import auth
import crud
import emails
import logic
import models
import permissions
import schemas
from auth import get_current_user, verify_token
from database import SessionLocal, create_db_and_tables, get_db
from settings import get_settings, Settings
from observability import init_observability


BASE_DIR = Path(__file__).resolve().parent

app = FastAPI(
    title="JobConnect",
    description="Backend API for the JobConnect recruitment marketplace",
    version="0.1.0",
)

# Initialise observability (logging + request ids) before serving anything
init_observability(app)
logger = structlog.get_logger(__name__)

# Create DB tables on startup
create_db_and_tables()

# --- CORS Middleware ---
origins = [
    "http://localhost",
    "http://localhost:8000",
    "http://127.0.0.1",
    "http://127.0.0.1:8000",
    get_settings().app_base_url,
]

app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Headers the email function answers with, including on errors
FUNCTION_CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Headers": "authorization, x-client-info, apikey, content-type",
}

# Mount static files directory
app.mount("/static", StaticFiles(directory=str(BASE_DIR / "static")), name="static")

# Templates directory
templates = Jinja2Templates(directory=str(BASE_DIR / "templates"))


# --- Realtime Connection Manager (Simple In-Memory) --- #
class ConnectionManager:
    """Fan realtime events out to every SSE subscriber of a conversation."""

    def __init__(self):
        # conversation_id -> one asyncio Queue per open stream
        self.active_connections: dict[str, set[asyncio.Queue]] = {}

    async def connect(self, conversation_id: str) -> asyncio.Queue:
        queue = asyncio.Queue()
        self.active_connections.setdefault(conversation_id, set()).add(queue)
        logger.info("SSE connection established", conversation_id=conversation_id)
        return queue

    def disconnect(self, conversation_id: str, queue: asyncio.Queue):
        queues = self.active_connections.get(conversation_id)
        if not queues:
            return
        queues.discard(queue)
        if not queues:
            del self.active_connections[conversation_id]
        logger.info("SSE connection closed", conversation_id=conversation_id)

    def subscriber_count(self, conversation_id: str) -> int:
        return len(self.active_connections.get(conversation_id, ()))

    async def publish(
        self, conversation_id: str, message: Union[str, dict], event: str = "message"
    ) -> int:
        """Queue an event for all subscribers; returns how many were reached."""
        queues = self.active_connections.get(conversation_id)
        if not queues:
            logger.debug("No subscribers for conversation", conversation_id=conversation_id)
            return 0
        # If the message is a dict, inject request_id for correlation if missing
        if isinstance(message, dict):
            if "request_id" not in message:
                req_id = get_contextvars().get("request_id")
                if req_id:
                    message["request_id"] = req_id
            data = json.dumps(message, default=str)
        else:
            data = message
        for queue in list(queues):
            await queue.put({"event": event, "data": data})
        logger.info("Sent SSE event", sse_event=event, conversation_id=conversation_id, subscribers=len(queues))
        return len(queues)


manager = ConnectionManager()


def _page_context(settings: Settings) -> dict:
    return {
        "auth_enabled": settings.auth_enabled,
        "auth_provider_url": settings.auth_provider_url or "",
        "auth_provider_anon_key": settings.auth_provider_anon_key or "",
    }


# --- Pages --- #
@app.get("/", response_class=HTMLResponse, include_in_schema=False)
async def landing_page(
    request: Request,
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    """Render the landing page with the latest featured openings."""
    jobs = crud.search_jobs(db)[:6]
    return templates.TemplateResponse(
        request, "landing.html", {"jobs": jobs, **_page_context(settings)}
    )


@app.get("/auth", response_class=HTMLResponse, include_in_schema=False)
async def auth_page(request: Request, mode: str = "login", settings: Settings = Depends(get_settings)):
    mode = "signup" if mode == "signup" else "login"
    return templates.TemplateResponse(request, "auth.html", {"mode": mode, **_page_context(settings)})


@app.get("/dashboard", response_class=HTMLResponse, include_in_schema=False)
@app.get("/dashboard/{section}", response_class=HTMLResponse, include_in_schema=False)
async def dashboard_page(
    request: Request, section: str = "jobs", settings: Settings = Depends(get_settings)
):
    return templates.TemplateResponse(
        request, "dashboard.html", {"section": section, **_page_context(settings)}
    )


@app.get("/admin", response_class=HTMLResponse, include_in_schema=False)
async def admin_page(request: Request, settings: Settings = Depends(get_settings)):
    return templates.TemplateResponse(request, "admin.html", _page_context(settings))


@app.get("/favicon.ico", include_in_schema=False)
async def favicon():
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# --- Auth Endpoints --- #
def _auth_http_error(exc: auth.AuthProviderError) -> HTTPException:
    message = exc.message or ""
    if "Invalid login credentials" in message:
        return HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Incorrect email or password")
    if "already registered" in message:
        return HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="This email is already in use. Try logging in.",
        )
    if exc.status_code >= 500:
        return HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=message)
    return HTTPException(status_code=exc.status_code, detail=message)


@app.post("/auth/signup", response_model=schemas.AuthSession, status_code=status.HTTP_201_CREATED, tags=["Auth"])
async def signup_endpoint(
    signup: schemas.SignupRequest,
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    try:
        session = await auth.sign_up(signup, settings)
    except auth.AuthProviderError as exc:
        logger.warning("Signup rejected by auth provider", status_code=exc.status_code)
        raise _auth_http_error(exc)
    crud.ensure_user(db, session.user_id, session.email or signup.email, full_name=signup.full_name)
    db.commit()
    logger.info("User signed up", user_id=session.user_id)
    return session


@app.post("/auth/login", response_model=schemas.AuthSession, tags=["Auth"])
async def login_endpoint(login: schemas.LoginRequest, settings: Settings = Depends(get_settings)):
    try:
        return await auth.sign_in_with_password(login, settings)
    except auth.AuthProviderError as exc:
        logger.warning("Login rejected by auth provider", status_code=exc.status_code)
        raise _auth_http_error(exc)


@app.get("/auth/oauth/{provider}", response_model=schemas.OAuthRedirect, tags=["Auth"])
async def oauth_endpoint(provider: str, settings: Settings = Depends(get_settings)):
    return {"url": auth.oauth_authorize_url(provider, settings)}


@app.get("/users/me", response_model=schemas.Profile, tags=["Auth"])
def get_me(current_user: models.Profile = Depends(get_current_user)):
    """Returns the authenticated user's profile."""
    return current_user


# --- Profile Endpoints --- #
@app.get("/profile", response_model=schemas.Profile, tags=["Profiles"])
def get_my_profile_endpoint(
    current_user: models.Profile = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return crud.get_profile_by_user_id(db, current_user.user_id)


@app.patch("/profile", response_model=schemas.Profile, tags=["Profiles"])
def update_profile_endpoint(
    updates: schemas.ProfileUpdate,
    current_user: models.Profile = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    profile = crud.update_profile(db, current_user.user_id, updates)
    if not profile:
        raise HTTPException(status_code=404, detail="Profile not found")
    logger.info("Profile updated", user_id=current_user.user_id)
    return profile


@app.get("/profiles/{user_id}", response_model=schemas.Profile, tags=["Profiles"])
def get_profile_endpoint(
    user_id: str,
    current_user: models.Profile = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    profile = crud.get_profile_by_user_id(db, user_id)
    if not profile:
        raise HTTPException(status_code=404, detail="Profile not found")
    return profile


# --- Company Endpoints --- #
@app.get("/companies/me", response_model=Optional[schemas.MyCompany], tags=["Companies"])
def get_my_company_endpoint(
    current_user: models.Profile = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    membership = crud.get_membership(db, current_user.user_id)
    if not membership:
        return None
    company = schemas.Company.model_validate(membership.company)
    return schemas.MyCompany(**company.model_dump(), is_admin=membership.is_admin)


@app.get("/companies", response_model=List[schemas.CompanyOption], tags=["Companies"])
def list_companies_endpoint(
    current_user: models.Profile = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return crud.list_company_options(db)


@app.post("/companies", response_model=schemas.Company, status_code=status.HTTP_201_CREATED, tags=["Companies"])
def create_company_endpoint(
    company: schemas.CompanyCreate,
    current_user: models.Profile = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    db_company = crud.create_company(db, company, user_id=current_user.user_id)
    logger.info("Company registered", company_id=db_company.id, user_id=current_user.user_id)
    return db_company


@app.get("/companies/{company_id}", response_model=schemas.Company, tags=["Companies"])
def get_company_endpoint(
    company_id: str,
    current_user: models.Profile = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    company = crud.get_company(db, company_id)
    if not company:
        raise HTTPException(status_code=404, detail="Company not found")
    return company


@app.patch("/companies/{company_id}", response_model=schemas.Company, tags=["Companies"])
def update_company_endpoint(
    company_id: str,
    updates: schemas.CompanyUpdate,
    current_user: models.Profile = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    if not crud.get_company(db, company_id):
        raise HTTPException(status_code=404, detail="Company not found")
    permissions.require_company_admin(db, company_id, current_user.user_id)
    return crud.update_company(db, company_id, updates)


@app.get("/companies/{company_id}/jobs", response_model=List[schemas.Job], tags=["Companies"])
def list_company_jobs_endpoint(
    company_id: str,
    current_user: models.Profile = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return crud.list_company_jobs(db, company_id)


# --- Tag Endpoints --- #
@app.get("/tags", response_model=List[schemas.Tag], tags=["Tags"])
def list_tags_endpoint(
    current_user: models.Profile = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return crud.list_tags(db)


@app.post("/tags", response_model=schemas.Tag, status_code=status.HTTP_201_CREATED, tags=["Tags"])
def create_tag_endpoint(
    tag: schemas.TagCreate,
    current_user: models.Profile = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    db_tag = crud.create_tag(
        db,
        tag,
        user_id=current_user.user_id,
        company_id=permissions.get_user_company(db, current_user.user_id),
    )
    db.commit()
    db.refresh(db_tag)
    return db_tag


# --- Job Endpoints --- #
@app.get("/jobs", response_model=List[schemas.Job], tags=["Jobs"])
def search_jobs_endpoint(
    search: Optional[str] = None,
    city: Optional[str] = None,
    state: Optional[str] = None,
    job_type: Optional[models.JobType] = None,
    is_remote: Optional[bool] = None,
    tags: Optional[List[str]] = Query(default=None),
    current_user: models.Profile = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    jobs = crud.search_jobs(
        db, search=search, city=city, state=state, job_type=job_type, is_remote=is_remote
    )
    return logic.filter_jobs_by_tags(jobs, tags)


@app.get("/jobs/managed", response_model=List[schemas.ManagedJob], tags=["Jobs"])
def list_managed_jobs_endpoint(
    search: Optional[str] = None,
    tags: Optional[List[str]] = Query(default=None),
    current_user: models.Profile = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    company_id = permissions.get_user_company(db, current_user.user_id)
    jobs = crud.list_managed_jobs(db, current_user.user_id, company_id=company_id, search=search)
    jobs = logic.filter_jobs_by_tags(jobs, tags)
    counts = crud.count_applications_by_job(db, [job.id for job in jobs])
    return [
        schemas.ManagedJob(
            **schemas.Job.model_validate(job).model_dump(),
            application_count=counts.get(job.id, 0),
        )
        for job in jobs
    ]


@app.get("/jobs/{job_id}", response_model=schemas.Job, tags=["Jobs"])
def get_job_endpoint(
    job_id: str,
    current_user: models.Profile = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    job = crud.get_job(db, job_id)
    if not job:
        raise HTTPException(status_code=404, detail="Job not found")
    return job


@app.post("/jobs", response_model=schemas.Job, status_code=status.HTTP_201_CREATED, tags=["Jobs"])
def create_job_endpoint(
    job: schemas.JobCreate,
    current_user: models.Profile = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    if not crud.get_company(db, job.company_id):
        raise HTTPException(status_code=404, detail="Company not found")
    permissions.require_company_member(db, job.company_id, current_user.user_id)
    db_job = crud.create_job(db, job, user_id=current_user.user_id)
    logger.info("Job created", job_id=db_job.id, company_id=db_job.company_id)
    return db_job


def _get_managed_job_or_404(db: Session, job_id: str, user_id: str) -> models.Job:
    job = crud.get_job(db, job_id)
    if not job:
        raise HTTPException(status_code=404, detail="Job not found")
    permissions.require_company_member(db, job.company_id, user_id)
    return job


@app.patch("/jobs/{job_id}", response_model=schemas.Job, tags=["Jobs"])
def update_job_endpoint(
    job_id: str,
    updates: schemas.JobUpdate,
    current_user: models.Profile = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    _get_managed_job_or_404(db, job_id, current_user.user_id)
    return crud.update_job(db, job_id, updates, user_id=current_user.user_id)


@app.delete("/jobs/{job_id}", tags=["Jobs"])
def delete_job_endpoint(
    job_id: str,
    current_user: models.Profile = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    _get_managed_job_or_404(db, job_id, current_user.user_id)
    logger.info("Deleting job", job_id=job_id, user_id=current_user.user_id)
    crud.delete_job(db, job_id)
    return {"status": "deleted", "job_id": job_id}


# --- Application Endpoints --- #
@app.post(
    "/jobs/{job_id}/applications",
    response_model=schemas.Application,
    status_code=status.HTTP_201_CREATED,
    tags=["Applications"],
)
def apply_to_job_endpoint(
    job_id: str,
    application: schemas.ApplicationCreate,
    current_user: models.Profile = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    if not crud.get_job(db, job_id):
        raise HTTPException(status_code=404, detail="Job not found")
    try:
        db_application = crud.create_application(
            db, job_id=job_id, user_id=current_user.user_id, cover_letter=application.cover_letter
        )
    except IntegrityError as exc:
        db.rollback()
        if logic.is_duplicate_violation(str(exc.orig)):
            logger.info("Duplicate application rejected", job_id=job_id, user_id=current_user.user_id)
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="You have already applied to this job")
        raise
    logger.info("Application submitted", job_id=job_id, user_id=current_user.user_id)
    return db_application


@app.get("/applications/me", response_model=List[schemas.MyApplication], tags=["Applications"])
def list_my_applications_endpoint(
    current_user: models.Profile = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return crud.list_user_applications(db, current_user.user_id)


@app.get("/applications/me/job-ids", response_model=List[str], tags=["Applications"])
def list_my_applied_job_ids_endpoint(
    current_user: models.Profile = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return crud.list_applied_job_ids(db, current_user.user_id)


@app.get("/jobs/{job_id}/applications", response_model=List[schemas.CandidateApplication], tags=["Applications"])
def list_job_applications_endpoint(
    job_id: str,
    current_user: models.Profile = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    _get_managed_job_or_404(db, job_id, current_user.user_id)
    return crud.list_job_applications(db, job_id)


@app.patch("/applications/{application_id}/status", response_model=schemas.Application, tags=["Applications"])
def update_application_status_endpoint(
    application_id: str,
    update: schemas.ApplicationStatusUpdate,
    current_user: models.Profile = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    db_application = crud.get_application(db, application_id)
    if not db_application:
        raise HTTPException(status_code=404, detail="Application not found")
    permissions.require_company_member(db, db_application.job.company_id, current_user.user_id)
    updated = crud.update_application_status(db, application_id, update.status)
    logger.info("Application status updated", application_id=application_id, status=update.status.value)
    return updated


# --- Candidate Outreach Endpoints --- #
def _selected_applicants(db: Session, job_id: str, user_ids: List[str], exclude: Optional[str] = None):
    applications = crud.list_job_applications(db, job_id)
    selected = set(user_ids) - {exclude}
    chosen = [application for application in applications if application.user_id in selected]
    if not chosen:
        raise HTTPException(status_code=400, detail="None of the selected users applied to this job")
    return chosen


async def _send_message(db: Session, conversation_id: str, sender_id: str, content: str) -> models.Message:
    db_message = crud.create_message(db, conversation_id, sender_id, content)
    await manager.publish(
        conversation_id,
        schemas.Message.model_validate(db_message).model_dump(mode="json"),
        event="message_created",
    )
    return db_message


def _start_conversation(db: Session, user_id: str, other_user_id: str) -> models.Conversation:
    if user_id == other_user_id:
        raise HTTPException(status_code=400, detail="Cannot start a conversation with yourself")
    conversation = crud.find_shared_conversation(db, user_id, other_user_id)
    if conversation:
        return conversation
    return crud.create_conversation(db, [user_id, other_user_id])


@app.post("/jobs/{job_id}/candidates/message", response_model=schemas.OutreachResult, tags=["Outreach"])
async def message_candidates_endpoint(
    job_id: str,
    outreach: schemas.CandidateMessageRequest,
    current_user: models.Profile = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    job = _get_managed_job_or_404(db, job_id, current_user.user_id)
    applicants = _selected_applicants(db, job_id, outreach.user_ids, exclude=current_user.user_id)
    content = logic.candidate_message_content(job.title, outreach.content)
    for application in applicants:
        conversation = _start_conversation(db, current_user.user_id, application.user_id)
        await _send_message(db, conversation.id, current_user.user_id, content)
    logger.info("Messaged candidates", job_id=job_id, count=len(applicants))
    return {"sent": len(applicants)}


@app.post("/jobs/{job_id}/candidates/email", response_model=schemas.OutreachResult, tags=["Outreach"])
async def email_candidates_endpoint(
    job_id: str,
    outreach: schemas.CandidateEmailRequest,
    current_user: models.Profile = Depends(get_current_user),
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    job = _get_managed_job_or_404(db, job_id, current_user.user_id)
    applicants = _selected_applicants(db, job_id, outreach.user_ids)
    recipients = [a.profile.email for a in applicants if a.profile and a.profile.email]
    if not recipients:
        raise HTTPException(status_code=400, detail="The selected candidates have no email address")

    request = schemas.EmailRequest(
        to=recipients,
        subject=outreach.subject or logic.job_update_subject(job.title),
        message=outreach.message,
        job_title=job.title,
        company_name=job.company.name if job.company else None,
    )
    try:
        result = await emails.send_candidate_email(request, settings)
    except emails.EmailDeliveryError as exc:
        logger.error("Candidate email failed", job_id=job_id, exc=str(exc))
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(exc))
    return {"sent": result.sent}


# --- Email Function --- #
@app.options("/functions/send-candidate-email", include_in_schema=False)
async def send_candidate_email_preflight():
    return Response(headers=FUNCTION_CORS_HEADERS)


@app.post("/functions/send-candidate-email", tags=["Functions"])
async def send_candidate_email_function(
    request: Request,
    current_user: models.Profile = Depends(get_current_user),
    settings: Settings = Depends(get_settings),
):
    """Send the templated candidate email; answers ``{success, sent}`` or ``{error}``."""
    try:
        payload = schemas.EmailRequest.model_validate(await request.json())
        result = await emails.send_candidate_email(payload, settings)
    except (ValueError, emails.EmailDeliveryError) as exc:
        logger.error("Error sending emails", exc=str(exc))
        return JSONResponse(
            content={"error": str(exc)},
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            headers=FUNCTION_CORS_HEADERS,
        )
    return JSONResponse(content=result.model_dump(), headers=FUNCTION_CORS_HEADERS)


# --- Address Lookup --- #
@app.get("/address/{postal_code}", response_model=schemas.Address, tags=["Address"])
async def lookup_address_endpoint(postal_code: str, settings: Settings = Depends(get_settings)):
    address = await address_lookup.lookup_postal_code(postal_code, settings)
    if address is None:
        raise HTTPException(status_code=404, detail="Postal code not found")
    return address


# --- Messaging Endpoints --- #
@app.get("/conversations", response_model=List[schemas.Conversation], tags=["Messages"])
def list_conversations_endpoint(
    current_user: models.Profile = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    conversations = []
    for conversation in crud.list_conversations(db, current_user.user_id):
        last_message = crud.get_last_message(db, conversation.id)
        conversations.append(
            schemas.Conversation(
                id=conversation.id,
                created_at=conversation.created_at,
                updated_at=conversation.updated_at,
                participants=[schemas.Participant.model_validate(p) for p in conversation.participants],
                last_message=schemas.Message.model_validate(last_message) if last_message else None,
            )
        )
    return conversations


@app.post("/conversations", response_model=schemas.ConversationRef, tags=["Messages"])
def start_conversation_endpoint(
    start: schemas.ConversationStart,
    current_user: models.Profile = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return _start_conversation(db, current_user.user_id, start.user_id)


@app.get("/conversations/{conversation_id}/messages", response_model=List[schemas.Message], tags=["Messages"])
def list_messages_endpoint(
    conversation_id: str,
    current_user: models.Profile = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    permissions.require_participant(db, conversation_id, current_user.user_id)
    return crud.list_messages(db, conversation_id)


@app.post(
    "/conversations/{conversation_id}/messages",
    response_model=schemas.Message,
    status_code=status.HTTP_201_CREATED,
    tags=["Messages"],
)
async def send_message_endpoint(
    conversation_id: str,
    message: schemas.MessageCreate,
    current_user: models.Profile = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    permissions.require_participant(db, conversation_id, current_user.user_id)
    return await _send_message(db, conversation_id, current_user.user_id, message.content)


@app.post("/conversations/{conversation_id}/read", response_model=schemas.Participant, tags=["Messages"])
def mark_conversation_read_endpoint(
    conversation_id: str,
    current_user: models.Profile = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    permissions.require_participant(db, conversation_id, current_user.user_id)
    return crud.mark_conversation_read(db, conversation_id, current_user.user_id)


@app.get("/conversations/{conversation_id}/stream", tags=["Messages"])
async def stream_conversation(
    request: Request,
    conversation_id: str,
    token: Union[str, None] = None,
):
    """Server-Sent Events stream of new messages in a conversation.

    EventSource cannot send headers, so the access token travels in the query.
    """
    settings = get_settings()
    if token:
        user_id = verify_token(token).sub
    else:
        if settings.auth_enabled:
            logger.warning("SSE 401: No token provided while auth is enabled")
            raise HTTPException(401, "No token provided")
        user_id = auth.LOCAL_USER_ID

    with SessionLocal() as db:
        permissions.require_participant(db, conversation_id, user_id)

    queue = await manager.connect(conversation_id)

    async def event_generator():
        try:
            while True:
                message_dict = await queue.get()
                if await request.is_disconnected():
                    logger.info("SSE client disconnected", conversation_id=conversation_id)
                    break
                yield message_dict
        except asyncio.CancelledError:
            logger.info("SSE connection cancelled", conversation_id=conversation_id)
        finally:
            manager.disconnect(conversation_id, queue)

    return EventSourceResponse(event_generator())


# --- Analytics Endpoints --- #
@app.get("/analytics/company", response_model=schemas.CompanyAnalytics, tags=["Analytics"])
def company_analytics_endpoint(
    current_user: models.Profile = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    company_id = permissions.get_user_company(db, current_user.user_id)
    if not company_id:
        return logic.empty_company_analytics()
    jobs = crud.list_company_jobs(db, company_id)
    applications = crud.list_applications_for_jobs(db, [job.id for job in jobs])
    return logic.company_analytics(jobs, applications)


# --- Admin Endpoints --- #
@app.get("/admin/users", response_model=List[schemas.AdminUser], tags=["Admin"])
def admin_list_users_endpoint(
    search: Optional[str] = None,
    current_user: models.Profile = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    permissions.require_admin_area(db, current_user.user_id)
    return crud.list_profiles(db, search=search, limit=100)


@app.get("/admin/companies", response_model=List[schemas.Company], tags=["Admin"])
def admin_list_companies_endpoint(
    current_user: models.Profile = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    permissions.require_admin_area(db, current_user.user_id)
    return crud.list_companies(db)


@app.get("/admin/jobs", response_model=List[schemas.Job], tags=["Admin"])
def admin_list_jobs_endpoint(
    current_user: models.Profile = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    permissions.require_admin_area(db, current_user.user_id)
    return crud.list_all_jobs(db, limit=100)


@app.put("/admin/users/{user_id}/role", tags=["Admin"])
def admin_update_role_endpoint(
    user_id: str,
    update: schemas.RoleUpdate,
    current_user: models.Profile = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    permissions.require_admin_area(db, current_user.user_id)
    if update.role == models.AppRole.root and not permissions.has_role(
        db, current_user.user_id, models.AppRole.root
    ):
        raise HTTPException(status_code=403, detail="Only root users can grant the root role")
    if not crud.get_profile_by_user_id(db, user_id):
        raise HTTPException(status_code=404, detail="User not found")
    crud.set_user_role(db, user_id, update.role)
    db.commit()
    logger.info("Role updated", user_id=user_id, role=update.role.value, by=current_user.user_id)
    return {"user_id": user_id, "role": update.role.value}


@app.delete("/admin/companies/{company_id}", tags=["Admin"])
def admin_delete_company_endpoint(
    company_id: str,
    current_user: models.Profile = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    permissions.require_admin_area(db, current_user.user_id)
    if not crud.delete_company(db, company_id):
        raise HTTPException(status_code=404, detail="Company not found")
    logger.info("Company deleted", company_id=company_id, by=current_user.user_id)
    return {"status": "deleted", "company_id": company_id}


# --- Main execution --- (for running with uvicorn)
if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8000)
