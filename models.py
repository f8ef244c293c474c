from sqlalchemy import (
    Column, Integer, String, Boolean, DateTime, Text,
    ForeignKey, Index
)
from sqlalchemy.orm import relationship
from datetime import datetime, timezone
from database import Base
import enum

class UserRole(str, enum.Enum):
    ADMIN = "admin"
    SUPERVISOR = "supervisor"
    SUBDIRECTOR = "subdirector"
    DOCENTE = "docente"
    DOCENTE_INGLES = "docente_ingles"
    SECRETARIA = "secretaria"
    PSICOLOGA = "psicologa"
    AUXILIAR = "auxiliar"
    ADMINISTRATIVO = "administrativo"
    STUDENT = "student"
    PARENT = "parent"

class AppointmentStatus(str, enum.Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    CANCELLED = "cancelled"

class ReminderType(str, enum.Enum):
    INFO = "info"
    WARNING = "warning"
    SUCCESS = "success"

def _utcnow():
    return datetime.now(timezone.utc)

class Profile(Base):
    __tablename__ = "profiles"

    id = Column(Integer, primary_key=True, index=True)
    username = Column(String(100), unique=True, index=True)
    hashed_password = Column(String(255))  # null for portal-provisioned identities
    email = Column(String(255), index=True)
    full_name = Column(String(255))
    # kept as free text; the gate normalizes case and whitespace
    role = Column(String(50), nullable=False, default=UserRole.PSICOLOGA.value)
    active = Column(Boolean, default=True)
    last_login = Column(DateTime(timezone=True))
    created_at = Column(DateTime(timezone=True), default=_utcnow)

    attentions = relationship("Attention", back_populates="psychologist")
    appointments = relationship("Appointment", back_populates="psychologist")
    reminders = relationship("Reminder", back_populates="psychologist")

class Classroom(Base):
    __tablename__ = "classrooms"

    id = Column(Integer, primary_key=True, index=True)
    level = Column(String(50))  # "primaria", "secundaria"
    grade = Column(String(50))  # e.g., "5to"
    section = Column(String(10))  # e.g., "A"

    students = relationship("Student", back_populates="classroom")

class Student(Base):
    __tablename__ = "students"

    id = Column(Integer, primary_key=True, index=True)
    first_name = Column(String(100), nullable=False)
    last_name = Column(String(100), nullable=False)
    classroom_id = Column(Integer, ForeignKey("classrooms.id"))

    classroom = relationship("Classroom", back_populates="students")

    __table_args__ = (
        Index("idx_student_names", "first_name", "last_name"),
    )

class Attention(Base):
    __tablename__ = "attentions"

    id = Column(Integer, primary_key=True, index=True)
    student_name = Column(String(255), nullable=False)
    grade = Column(String(100))
    date = Column(String(10), nullable=False)  # YYYY-MM-DD
    time = Column(String(5))  # HH:MM
    reason = Column(Text)
    observations = Column(Text)
    recommendations = Column(Text)

    psychologist_id = Column(Integer, ForeignKey("profiles.id"), nullable=False)
    student_id = Column(Integer, ForeignKey("students.id"), nullable=True)
    created_at = Column(DateTime(timezone=True), default=_utcnow)

    psychologist = relationship("Profile", back_populates="attentions")

    @property
    def psychologist_name(self):
        return self.psychologist.full_name if self.psychologist else None

    __table_args__ = (
        Index("idx_attention_owner_date", "psychologist_id", "date"),
    )

class Appointment(Base):
    __tablename__ = "appointments"

    id = Column(Integer, primary_key=True, index=True)
    student_name = Column(String(255), nullable=False)
    grade = Column(String(100))
    date = Column(String(10), nullable=False)
    time = Column(String(5))
    status = Column(String(20), nullable=False, default=AppointmentStatus.PENDING.value)

    psychologist_id = Column(Integer, ForeignKey("profiles.id"), nullable=False)
    student_id = Column(Integer, ForeignKey("students.id"), nullable=True)
    created_at = Column(DateTime(timezone=True), default=_utcnow)

    psychologist = relationship("Profile", back_populates="appointments")

    __table_args__ = (
        Index("idx_appointment_owner_status_date", "psychologist_id", "status", "date"),
    )

class Reminder(Base):
    __tablename__ = "reminders"

    id = Column(Integer, primary_key=True, index=True)
    title = Column(String(255), nullable=False)
    description = Column(Text)
    type = Column(String(20), default=ReminderType.INFO.value)
    is_completed = Column(Boolean, default=False)

    psychologist_id = Column(Integer, ForeignKey("profiles.id"), nullable=False)
    created_at = Column(DateTime(timezone=True), default=_utcnow)

    psychologist = relationship("Profile", back_populates="reminders")
