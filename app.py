from fastapi import FastAPI, Depends, HTTPException, Request, Response, status, Query
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from sqlalchemy.orm import Session
from typing import List, Optional
from datetime import datetime, timezone
from urllib.parse import quote
import unicodedata

from database import get_db, engine, Base, SessionLocal
import models
from schemas import (
    # Auth schemas
    LoginRequest, LoginResponse, ProfileResponse, AuthCallbackRequest,
    RedirectTarget, SessionStatus,
    # Attention schemas
    AttentionCreate, AttentionResponse,
    # Appointment schemas
    AppointmentCreate, AppointmentResponse, AppointmentStatusUpdate,
    # Reminder schemas
    ReminderCreate, ReminderUpdate, ReminderCompletion, ReminderResponse,
    # Lookup / dashboard schemas
    StudentSearchResult, StatsResponse, DashboardResponse,
    # General schemas
    SuccessResponse, ErrorResponse
)

from app_logger import get_logger
from auth import (
    AuthService, AccessGate, InvalidSession, build_login_url, get_current_user,
    get_session_token, is_psychologist
)
from config import settings, local_now
from crud import CRUDService, RecordNotFound, InvalidStatusTransition, format_grade_label
from pdf_export import PDFExportError, AttentionSnapshot, generate_attention_pdf
from seed import seed_demo_data

logger = get_logger("api")

# Create database tables
Base.metadata.create_all(bind=engine)

# Initialize FastAPI app
app = FastAPI(
    title="PsychDesk - School Psychology Office",
    description="""Counseling session log for a school psychology office.

    Features:
    - Session (attention) history with PDF export
    - Appointment scheduling
    - Staff reminders
    - Student roster lookup
    """,
    version="1.0.0",
    docs_url="/api/docs",
    redoc_url="/api/redoc",
    openapi_url="/api/openapi.json"
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# ========== HELPERS ==========

def _set_session_cookie(response: Response, token: str):
    response.set_cookie(
        settings.session_cookie_name,
        token,
        max_age=settings.access_token_expire_minutes * 60,
        httponly=True,
        secure=settings.cookie_secure,
        samesite="lax",
    )

def _safe_return_path(return_to: Optional[str]) -> str:
    """Only same-site paths are accepted as post-login targets"""
    if not return_to or not return_to.startswith("/") or return_to.startswith("//"):
        return "/"
    return return_to

def _owned_attention(crud: CRUDService, attention_id: int, user: models.Profile) -> models.Attention:
    attention = crud.get_attention(attention_id)
    if not attention or (is_psychologist(user) and attention.psychologist_id != user.id):
        raise HTTPException(status_code=404, detail="Attention not found")
    return attention

def _owned_appointment(crud: CRUDService, appointment_id: int, user: models.Profile) -> models.Appointment:
    appointment = crud.get_appointment(appointment_id)
    if not appointment or (is_psychologist(user) and appointment.psychologist_id != user.id):
        raise HTTPException(status_code=404, detail="Appointment not found")
    return appointment

def _owned_reminder(crud: CRUDService, reminder_id: int, user: models.Profile) -> models.Reminder:
    reminder = crud.get_reminder(reminder_id)
    if not reminder or reminder.psychologist_id != user.id:
        raise HTTPException(status_code=404, detail="Reminder not found")
    return reminder

def _content_disposition(filename: str) -> str:
    fallback = unicodedata.normalize("NFKD", filename).encode("ascii", "ignore").decode("ascii").replace('"', "")
    return f"attachment; filename=\"{fallback}\"; filename*=UTF-8''{quote(filename)}"

# ========== AUTHENTICATION ENDPOINTS ==========

@app.post("/api/login", response_model=LoginResponse)
def login(
    credentials: LoginRequest,
    response: Response,
    db: Session = Depends(get_db)
):
    """Username/password login; the session token is also set as a cookie"""
    auth_service = AuthService(db)
    user = auth_service.authenticate_user(credentials.username, credentials.password)
    if not user:
        logger.info("Failed login for '%s'", credentials.username)
        return JSONResponse(
            status_code=status.HTTP_401_UNAUTHORIZED,
            content={"success": False, "message": "Credenciales incorrectas"}
        )

    token = auth_service.create_access_token(user)
    _set_session_cookie(response, token)
    logger.info("Profile %s logged in", user.id)

    return LoginResponse(user=ProfileResponse.model_validate(user), access_token=token)

@app.post("/api/logout", response_model=RedirectTarget)
def logout(response: Response):
    """Drop the session cookie and point the client at the portal"""
    response.delete_cookie(settings.session_cookie_name)
    return RedirectTarget(redirect_to=build_login_url())

@app.post("/api/auth/callback", response_model=RedirectTarget)
def auth_callback(
    payload: AuthCallbackRequest,
    response: Response,
    db: Session = Depends(get_db)
):
    """Adopt a session token handed back by the identity portal"""
    if not payload.access_token:
        return RedirectTarget(redirect_to=build_login_url())

    try:
        AuthService(db).verify_token(payload.access_token)
    except InvalidSession as e:
        logger.error("Error setting session: %s", e)
        return RedirectTarget(redirect_to=build_login_url(error="session_error"))

    _set_session_cookie(response, payload.access_token)
    return RedirectTarget(redirect_to=_safe_return_path(payload.return_to))

@app.get("/api/session", response_model=SessionStatus)
def session_status(
    request: Request,
    return_to: Optional[str] = None,
    token: Optional[str] = Depends(get_session_token),
    db: Session = Depends(get_db)
):
    """Gate outcome for the current caller: redirect, forbidden, allowed or unresolved"""
    result = AccessGate(db).evaluate(
        token, settings.allowed_roles,
        return_to=return_to or request.headers.get("referer") or str(request.base_url)
    )
    return SessionStatus(
        outcome=result.outcome,
        location=result.location,
        profile=ProfileResponse.model_validate(result.profile) if result.profile else None
    )

@app.get("/api/profile/me", response_model=ProfileResponse)
def get_current_profile(current_user: models.Profile = Depends(get_current_user)):
    """Get current profile"""
    return ProfileResponse.model_validate(current_user)

# ========== DASHBOARD ENDPOINTS ==========

@app.get("/api/stats", response_model=StatsResponse)
def get_stats(
    current_user: models.Profile = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Office-wide counters"""
    return StatsResponse(**CRUDService(db).get_stats(local_now().date()))

@app.get("/api/dashboard", response_model=DashboardResponse)
def get_dashboard(
    current_user: models.Profile = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Counters, upcoming appointments and open reminders for the caller"""
    dashboard = CRUDService(db).get_dashboard(current_user.id, local_now().date())
    return DashboardResponse(
        stats=StatsResponse(**dashboard["stats"]),
        upcoming_appointments=[AppointmentResponse.model_validate(a) for a in dashboard["upcoming_appointments"]],
        today_appointments=[AppointmentResponse.model_validate(a) for a in dashboard["today_appointments"]],
        reminders=[ReminderResponse.model_validate(r) for r in dashboard["reminders"]],
    )

# ========== APPOINTMENT ENDPOINTS ==========

@app.get("/api/appointments", response_model=List[AppointmentResponse])
def get_appointments(
    limit: Optional[int] = Query(None, ge=1, le=500),
    current_user: models.Profile = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Pending appointments of the caller, soonest first"""
    appointments = CRUDService(db).get_pending_appointments(current_user.id, limit=limit)
    return [AppointmentResponse.model_validate(a) for a in appointments]

@app.post("/api/appointments", response_model=SuccessResponse)
def create_appointment(
    appointment_data: AppointmentCreate,
    current_user: models.Profile = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Schedule an appointment"""
    appointment = CRUDService(db).create_appointment(appointment_data, current_user.id)
    return SuccessResponse(message="Appointment scheduled", id=appointment.id)

@app.get("/api/appointments/{appointment_id}", response_model=AppointmentResponse)
def get_appointment(
    appointment_id: int,
    current_user: models.Profile = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Direct lookup, whatever the status"""
    return AppointmentResponse.model_validate(_owned_appointment(CRUDService(db), appointment_id, current_user))

@app.patch("/api/appointments/{appointment_id}/status", response_model=AppointmentResponse)
def update_appointment_status(
    appointment_id: int,
    status_update: AppointmentStatusUpdate,
    current_user: models.Profile = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Complete or cancel a pending appointment"""
    crud = CRUDService(db)
    _owned_appointment(crud, appointment_id, current_user)
    appointment = crud.update_appointment_status(appointment_id, status_update.status)
    return AppointmentResponse.model_validate(appointment)

# ========== REMINDER ENDPOINTS ==========

@app.get("/api/reminders", response_model=List[ReminderResponse])
def get_reminders(
    include_completed: bool = Query(True),
    limit: Optional[int] = Query(None, ge=1, le=500),
    current_user: models.Profile = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Reminders of the caller, open ones first, then newest first"""
    reminders = CRUDService(db).get_reminders(current_user.id, include_completed=include_completed, limit=limit)
    return [ReminderResponse.model_validate(r) for r in reminders]

@app.post("/api/reminders", response_model=SuccessResponse)
def create_reminder(
    reminder_data: ReminderCreate,
    current_user: models.Profile = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    reminder = CRUDService(db).create_reminder(reminder_data, current_user.id)
    return SuccessResponse(message="Reminder created", id=reminder.id)

@app.put("/api/reminders/{reminder_id}", response_model=ReminderResponse)
def update_reminder(
    reminder_id: int,
    reminder_data: ReminderUpdate,
    current_user: models.Profile = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    crud = CRUDService(db)
    _owned_reminder(crud, reminder_id, current_user)
    return ReminderResponse.model_validate(crud.update_reminder(reminder_id, reminder_data))

@app.patch("/api/reminders/{reminder_id}/complete", response_model=ReminderResponse)
def complete_reminder(
    reminder_id: int,
    completion: Optional[ReminderCompletion] = None,
    current_user: models.Profile = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Set the completion flag; without a body the flag is toggled"""
    crud = CRUDService(db)
    _owned_reminder(crud, reminder_id, current_user)
    completed = completion.is_completed if completion else None
    return ReminderResponse.model_validate(crud.set_reminder_completed(reminder_id, completed))

@app.delete("/api/reminders/{reminder_id}", response_model=SuccessResponse)
def delete_reminder(
    reminder_id: int,
    current_user: models.Profile = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    crud = CRUDService(db)
    _owned_reminder(crud, reminder_id, current_user)
    crud.delete_reminder(reminder_id)
    return SuccessResponse(message="Reminder deleted")

# ========== ATTENTION ENDPOINTS ==========

@app.get("/api/attentions", response_model=List[AttentionResponse])
def get_attentions(
    search: Optional[str] = None,
    date: Optional[str] = None,
    current_user: models.Profile = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Session history, most recent first.

    Psychologists see their own sessions; supervisors and admins see all.
    """
    owner = current_user.id if is_psychologist(current_user) else None
    attentions = CRUDService(db).get_attentions(psychologist_id=owner, name=search, day=date)
    return [AttentionResponse.model_validate(a) for a in attentions]

@app.post("/api/attentions", response_model=SuccessResponse)
def create_attention(
    attention_data: AttentionCreate,
    current_user: models.Profile = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Log a session; when it came from an appointment, that appointment is completed too"""
    crud = CRUDService(db)
    if attention_data.appointment_id is not None:
        _owned_appointment(crud, attention_data.appointment_id, current_user)
    attention = crud.record_attention(attention_data, current_user.id)
    return SuccessResponse(message="Attention recorded", id=attention.id)

@app.get("/api/attentions/{attention_id}", response_model=AttentionResponse)
def get_attention(
    attention_id: int,
    current_user: models.Profile = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    return AttentionResponse.model_validate(_owned_attention(CRUDService(db), attention_id, current_user))

@app.delete("/api/attentions/{attention_id}", response_model=SuccessResponse)
def delete_attention(
    attention_id: int,
    current_user: models.Profile = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    crud = CRUDService(db)
    _owned_attention(crud, attention_id, current_user)
    crud.delete_attention(attention_id)
    return SuccessResponse(message="Attention deleted")

@app.get("/api/attentions/{attention_id}/pdf")
def export_attention_pdf(
    attention_id: int,
    current_user: models.Profile = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Download the session record as a PDF document"""
    snapshot = AttentionSnapshot.from_record(_owned_attention(CRUDService(db), attention_id, current_user))
    document = generate_attention_pdf(snapshot)
    return Response(
        content=document.content,
        media_type="application/pdf",
        headers={"Content-Disposition": _content_disposition(document.filename)}
    )

# ========== SEARCH ENDPOINTS ==========

@app.get("/api/students/search", response_model=List[StudentSearchResult])
def search_students(
    q: str = Query(""),
    current_user: models.Profile = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Roster lookup by first or last name (any term matches)"""
    students = CRUDService(db).search_students(q)
    return [
        StudentSearchResult(
            id=s.id,
            first_name=s.first_name,
            last_name=s.last_name,
            full_name=f"{s.first_name or ''} {s.last_name or ''}".strip(),
            grade_label=format_grade_label(s.classroom),
        )
        for s in students
    ]

# ========== SYSTEM HEALTH ==========

@app.get("/api/health")
def health_check():
    """System health check"""
    return {
        "status": "healthy",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "version": app.version,
    }

# ========== ERROR HANDLERS ==========

@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request, exc):
    """Custom HTTP exception handler"""
    headers = getattr(exc, "headers", None)
    details = {"path": request.url.path}
    if headers and "X-Login-Url" in headers:
        details["login_url"] = headers["X-Login-Url"]
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(
            error=str(exc.detail),
            code=str(exc.status_code),
            details=details
        ).model_dump(),
        headers=headers
    )

@app.exception_handler(RecordNotFound)
async def not_found_handler(request, exc):
    return JSONResponse(
        status_code=404,
        content=ErrorResponse(
            error=str(exc),
            code="NOT_FOUND",
            details={"path": request.url.path, "resource": exc.resource}
        ).model_dump()
    )

@app.exception_handler(InvalidStatusTransition)
async def invalid_transition_handler(request, exc):
    return JSONResponse(
        status_code=409,
        content=ErrorResponse(
            error=str(exc),
            code="INVALID_STATUS_TRANSITION",
            details={"path": request.url.path, "current": exc.current, "requested": exc.requested}
        ).model_dump()
    )

@app.exception_handler(PDFExportError)
async def pdf_export_handler(request, exc):
    return JSONResponse(
        status_code=422,
        content=ErrorResponse(
            error=str(exc),
            code="PDF_EXPORT_FAILED",
            details={"path": request.url.path}
        ).model_dump()
    )

@app.exception_handler(Exception)
async def general_exception_handler(request, exc):
    """General exception handler"""
    logger.exception("Unhandled error on %s", request.url.path)
    return JSONResponse(
        status_code=500,
        content=ErrorResponse(
            error="Internal server error",
            code="INTERNAL_ERROR",
            details={"message": str(exc)}
        ).model_dump()
    )

# ========== STARTUP ==========

@app.on_event("startup")
def startup_event():
    """Run on application startup"""
    logger.info("PsychDesk API starting up on port %s", settings.port)

    if settings.seed_demo_data:
        db = SessionLocal()
        try:
            seed_demo_data(db)
        finally:
            db.close()

# ========== MAIN EXECUTION ==========

def main():
    import uvicorn

    uvicorn.run(
        "app:app",
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level.lower()
    )

if __name__ == "__main__":
    main()
