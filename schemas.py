from pydantic import BaseModel, Field, ConfigDict, field_validator
from typing import Optional, List, Any, Dict
from datetime import datetime, date
from enum import Enum

from models import AppointmentStatus, ReminderType

# Base Schemas
class BaseSchema(BaseModel):
    model_config = ConfigDict(from_attributes=True, populate_by_name=True)

def _check_iso_date(v: str) -> str:
    try:
        return date.fromisoformat(v).isoformat()
    except (TypeError, ValueError):
        raise ValueError("date must be in YYYY-MM-DD format")

def _check_clock_time(v: Optional[str]) -> Optional[str]:
    if v is None or v == "":
        return v
    # accept HH:MM or HH:MM:SS, store HH:MM
    for fmt in ("%H:%M", "%H:%M:%S"):
        try:
            return datetime.strptime(v, fmt).strftime("%H:%M")
        except ValueError:
            continue
    raise ValueError("time must be in HH:MM format")

# Profile / Auth Schemas
class ProfileResponse(BaseSchema):
    id: int
    username: Optional[str] = None
    email: Optional[str] = None
    full_name: Optional[str] = None
    role: str
    active: bool = True
    created_at: Optional[datetime] = None

class LoginRequest(BaseModel):
    username: str = Field(..., min_length=1)
    password: str = Field(..., min_length=1)

class LoginResponse(BaseSchema):
    success: bool = True
    user: ProfileResponse
    access_token: str
    token_type: str = "bearer"

class AuthCallbackRequest(BaseSchema):
    access_token: Optional[str] = None
    refresh_token: Optional[str] = None
    return_to: str = Field("/", alias="returnTo")

class RedirectTarget(BaseSchema):
    redirect_to: str

class GateOutcome(str, Enum):
    REDIRECT = "redirect"
    FORBIDDEN = "forbidden"
    ALLOWED = "allowed"
    UNRESOLVED = "unresolved"

class SessionStatus(BaseSchema):
    outcome: GateOutcome
    location: Optional[str] = None
    profile: Optional[ProfileResponse] = None

# Attention Schemas
class AttentionBase(BaseSchema):
    student_name: str
    grade: Optional[str] = ""
    date: str
    time: Optional[str] = ""
    reason: Optional[str] = ""
    observations: Optional[str] = ""
    recommendations: Optional[str] = ""
    student_id: Optional[int] = None

class AttentionCreate(AttentionBase):
    student_name: str = Field(..., min_length=1, max_length=255)
    # set when the session is logged from a scheduled appointment
    appointment_id: Optional[int] = None

    @field_validator("student_name")
    @classmethod
    def strip_student_name(cls, v):
        v = v.strip()
        if not v:
            raise ValueError("student_name is required")
        return v

    @field_validator("date")
    @classmethod
    def validate_date(cls, v):
        return _check_iso_date(v)

    @field_validator("time")
    @classmethod
    def validate_time(cls, v):
        return _check_clock_time(v)

class AttentionResponse(AttentionBase):
    id: int
    psychologist_id: int
    psychologist_name: Optional[str] = None
    created_at: Optional[datetime] = None

# Appointment Schemas
class AppointmentBase(BaseSchema):
    student_name: str
    grade: Optional[str] = ""
    date: str
    time: Optional[str] = ""
    student_id: Optional[int] = None

class AppointmentCreate(AppointmentBase):
    student_name: str = Field(..., min_length=1, max_length=255)

    @field_validator("student_name")
    @classmethod
    def strip_student_name(cls, v):
        v = v.strip()
        if not v:
            raise ValueError("student_name is required")
        return v

    @field_validator("date")
    @classmethod
    def validate_date(cls, v):
        return _check_iso_date(v)

    @field_validator("time")
    @classmethod
    def validate_time(cls, v):
        return _check_clock_time(v)

class AppointmentStatusUpdate(BaseModel):
    status: AppointmentStatus

class AppointmentResponse(AppointmentBase):
    id: int
    status: AppointmentStatus
    psychologist_id: int
    created_at: Optional[datetime] = None

# Reminder Schemas
class ReminderCreate(BaseSchema):
    title: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = ""
    type: ReminderType = ReminderType.INFO

class ReminderUpdate(BaseSchema):
    title: Optional[str] = Field(None, min_length=1, max_length=255)
    description: Optional[str] = None
    type: Optional[ReminderType] = None

class ReminderCompletion(BaseModel):
    # omitted -> toggle the current flag
    is_completed: Optional[bool] = None

class ReminderResponse(BaseSchema):
    id: int
    title: str
    description: Optional[str] = ""
    type: ReminderType
    is_completed: bool = False
    psychologist_id: int
    created_at: Optional[datetime] = None

# Student lookup
class StudentSearchResult(BaseSchema):
    id: int
    first_name: str
    last_name: str
    full_name: str
    grade_label: str

# Dashboard Schemas
class StatsResponse(BaseSchema):
    total_attentions: int = Field(0, serialization_alias="totalAttentions")
    today_appointments: int = Field(0, serialization_alias="todayAppointments")

class DashboardResponse(BaseSchema):
    stats: StatsResponse
    upcoming_appointments: List[AppointmentResponse]
    today_appointments: List[AppointmentResponse]
    reminders: List[ReminderResponse]

# API Response Schemas
class SuccessResponse(BaseSchema):
    success: bool = True
    message: Optional[str] = None
    id: Optional[int] = None
    data: Optional[Any] = None

class ErrorResponse(BaseSchema):
    success: bool = False
    error: str
    code: str
    details: Optional[Dict[str, Any]] = None
