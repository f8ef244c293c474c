from sqlalchemy.orm import Session, joinedload
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy import or_, func, desc, asc
from typing import List, Optional, Dict, Any
from datetime import date

import models
from app_logger import get_logger
from schemas import (
    AttentionCreate, AppointmentCreate, ReminderCreate, ReminderUpdate
)

logger = get_logger("crud")

# Lookup cap for the student search modal
STUDENT_SEARCH_LIMIT = 10
STUDENT_SEARCH_MIN_LENGTH = 2

# pending is the only state an appointment may leave
ALLOWED_TRANSITIONS = {
    models.AppointmentStatus.PENDING.value: {
        models.AppointmentStatus.COMPLETED.value,
        models.AppointmentStatus.CANCELLED.value,
    },
}

class RecordNotFound(Exception):
    def __init__(self, resource: str, record_id: int):
        self.resource = resource
        self.record_id = record_id
        super().__init__(f"{resource} {record_id} not found")

class InvalidStatusTransition(Exception):
    def __init__(self, current: str, requested: str):
        self.current = current
        self.requested = requested
        super().__init__(f"Cannot change appointment status from '{current}' to '{requested}'")

def format_grade_label(classroom: Optional[models.Classroom]) -> str:
    """Render a classroom as '<grade> <section> - <Level>'."""
    if classroom is None:
        return "Sin grado asignado"
    level = classroom.level or ""
    level = level[:1].upper() + level[1:]
    return f"{classroom.grade} {classroom.section} - {level}"

class CRUDService:
    def __init__(self, db: Session):
        self.db = db

    # Appointment CRUD
    def create_appointment(self, appointment_data: AppointmentCreate, psychologist_id: int) -> models.Appointment:
        """Schedule a new pending appointment"""
        appointment = models.Appointment(
            **appointment_data.model_dump(),
            psychologist_id=psychologist_id,
            status=models.AppointmentStatus.PENDING.value
        )
        self.db.add(appointment)
        self.db.commit()
        self.db.refresh(appointment)
        logger.info("Appointment %s scheduled for %s on %s", appointment.id, appointment.student_name, appointment.date)
        return appointment

    def get_appointment(self, appointment_id: int) -> Optional[models.Appointment]:
        """Get appointment by ID, whatever its status"""
        return self.db.query(models.Appointment).filter(models.Appointment.id == appointment_id).first()

    def get_pending_appointments(
        self,
        psychologist_id: Optional[int] = None,
        limit: Optional[int] = None
    ) -> List[models.Appointment]:
        """Pending appointments, soonest first"""
        query = self.db.query(models.Appointment).filter(
            models.Appointment.status == models.AppointmentStatus.PENDING.value
        )
        if psychologist_id is not None:
            query = query.filter(models.Appointment.psychologist_id == psychologist_id)

        query = query.order_by(asc(models.Appointment.date), asc(models.Appointment.time))
        if limit:
            query = query.limit(limit)
        return query.all()

    def _check_transition(self, appointment: models.Appointment, status: str):
        if status not in ALLOWED_TRANSITIONS.get(appointment.status, set()):
            raise InvalidStatusTransition(appointment.status, status)

    def update_appointment_status(self, appointment_id: int, status: str) -> models.Appointment:
        """Move a pending appointment to completed or cancelled"""
        appointment = self.get_appointment(appointment_id)
        if not appointment:
            raise RecordNotFound("Appointment", appointment_id)

        status = models.AppointmentStatus(status).value
        self._check_transition(appointment, status)

        appointment.status = status
        self.db.commit()
        self.db.refresh(appointment)
        logger.info("Appointment %s marked %s", appointment_id, status)
        return appointment

    # Reminder CRUD
    def create_reminder(self, reminder_data: ReminderCreate, psychologist_id: int) -> models.Reminder:
        data = reminder_data.model_dump()
        data["type"] = models.ReminderType(data["type"]).value
        reminder = models.Reminder(**data, psychologist_id=psychologist_id, is_completed=False)
        self.db.add(reminder)
        self.db.commit()
        self.db.refresh(reminder)
        return reminder

    def get_reminder(self, reminder_id: int) -> Optional[models.Reminder]:
        return self.db.query(models.Reminder).filter(models.Reminder.id == reminder_id).first()

    def get_reminders(
        self,
        psychologist_id: Optional[int] = None,
        include_completed: bool = True,
        limit: Optional[int] = None
    ) -> List[models.Reminder]:
        """Reminders, open ones first, then newest first"""
        query = self.db.query(models.Reminder)
        if psychologist_id is not None:
            query = query.filter(models.Reminder.psychologist_id == psychologist_id)
        if not include_completed:
            query = query.filter(models.Reminder.is_completed == False)

        # open reminders first; id breaks ties between rows created within the same clock tick
        query = query.order_by(
            asc(models.Reminder.is_completed), desc(models.Reminder.created_at), desc(models.Reminder.id)
        )
        if limit:
            query = query.limit(limit)
        return query.all()

    def update_reminder(self, reminder_id: int, reminder_data: ReminderUpdate) -> models.Reminder:
        reminder = self.get_reminder(reminder_id)
        if not reminder:
            raise RecordNotFound("Reminder", reminder_id)

        update_data = reminder_data.model_dump(exclude_unset=True)
        for field, value in update_data.items():
            if value is None and field in ("title", "type"):
                continue
            if field == "type":
                value = models.ReminderType(value).value
            setattr(reminder, field, value)

        self.db.commit()
        self.db.refresh(reminder)
        return reminder

    def set_reminder_completed(self, reminder_id: int, completed: Optional[bool] = None) -> models.Reminder:
        """Set the completion flag, or toggle it when no value is given"""
        reminder = self.get_reminder(reminder_id)
        if not reminder:
            raise RecordNotFound("Reminder", reminder_id)

        reminder.is_completed = (not reminder.is_completed) if completed is None else completed
        self.db.commit()
        self.db.refresh(reminder)
        return reminder

    def delete_reminder(self, reminder_id: int) -> bool:
        reminder = self.get_reminder(reminder_id)
        if not reminder:
            return False
        self.db.delete(reminder)
        self.db.commit()
        return True

    # Attention CRUD
    def get_attention(self, attention_id: int) -> Optional[models.Attention]:
        return self.db.query(models.Attention).options(
            joinedload(models.Attention.psychologist)
        ).filter(models.Attention.id == attention_id).first()

    def get_attentions(
        self,
        psychologist_id: Optional[int] = None,
        name: Optional[str] = None,
        day: Optional[str] = None
    ) -> List[models.Attention]:
        """Session history, most recent first"""
        query = self.db.query(models.Attention).options(joinedload(models.Attention.psychologist))

        if psychologist_id is not None:
            query = query.filter(models.Attention.psychologist_id == psychologist_id)
        if name:
            query = query.filter(
                func.lower(models.Attention.student_name).contains(name.lower(), autoescape=True)
            )
        if day:
            query = query.filter(models.Attention.date == day)

        return query.order_by(desc(models.Attention.date), desc(models.Attention.time)).all()

    def record_attention(self, attention_data: AttentionCreate, psychologist_id: int) -> models.Attention:
        """Log a session and, when it came from an appointment, complete it.

        Both writes share one transaction: either the attention exists and the
        appointment is completed, or neither changed.
        """
        appointment = None
        if attention_data.appointment_id is not None:
            appointment = self.get_appointment(attention_data.appointment_id)
            if not appointment:
                raise RecordNotFound("Appointment", attention_data.appointment_id)
            self._check_transition(appointment, models.AppointmentStatus.COMPLETED.value)

        attention = models.Attention(
            **attention_data.model_dump(exclude={"appointment_id"}),
            psychologist_id=psychologist_id
        )

        try:
            self.db.add(attention)
            if appointment is not None:
                appointment.status = models.AppointmentStatus.COMPLETED.value
            self.db.commit()
        except SQLAlchemyError:
            self.db.rollback()
            logger.exception("Failed to record attention for %s", attention_data.student_name)
            raise

        self.db.refresh(attention)
        logger.info(
            "Attention %s recorded for %s%s", attention.id, attention.student_name,
            f" (appointment {appointment.id} completed)" if appointment is not None else ""
        )
        return attention

    def delete_attention(self, attention_id: int) -> bool:
        attention = self.db.query(models.Attention).filter(models.Attention.id == attention_id).first()
        if not attention:
            return False
        self.db.delete(attention)
        self.db.commit()
        logger.info("Attention %s deleted", attention_id)
        return True

    # Dashboard Statistics
    def count_attentions(self, psychologist_id: Optional[int] = None) -> int:
        query = self.db.query(func.count(models.Attention.id))
        if psychologist_id is not None:
            query = query.filter(models.Attention.psychologist_id == psychologist_id)
        return query.scalar() or 0

    def count_pending_for_date(self, day: str, psychologist_id: Optional[int] = None) -> int:
        query = self.db.query(func.count(models.Appointment.id)).filter(
            models.Appointment.date == day,
            models.Appointment.status == models.AppointmentStatus.PENDING.value
        )
        if psychologist_id is not None:
            query = query.filter(models.Appointment.psychologist_id == psychologist_id)
        return query.scalar() or 0

    def get_stats(self, today: date, psychologist_id: Optional[int] = None) -> Dict[str, int]:
        day = today.isoformat()
        return {
            "total_attentions": self.count_attentions(psychologist_id),
            "today_appointments": self.count_pending_for_date(day, psychologist_id),
        }

    def get_dashboard(self, psychologist_id: int, today: date) -> Dict[str, Any]:
        """Counters, the next five pending appointments and three open reminders"""
        upcoming = self.get_pending_appointments(psychologist_id, limit=5)
        day = today.isoformat()
        return {
            "stats": self.get_stats(today, psychologist_id),
            "upcoming_appointments": upcoming,
            "today_appointments": [a for a in upcoming if a.date == day],
            "reminders": self.get_reminders(psychologist_id, include_completed=False, limit=3),
        }

    # Search functionality
    def search_students(
        self,
        query: str,
        limit: int = STUDENT_SEARCH_LIMIT
    ) -> List[models.Student]:
        """Search students by first or last name.

        Every whitespace-separated term widens the match: a student matching
        any single term is returned.
        """
        query = (query or "").strip()
        if len(query) < STUDENT_SEARCH_MIN_LENGTH:
            return []

        search_query = self.db.query(models.Student).options(joinedload(models.Student.classroom))

        # Split query into terms
        terms = query.split()

        conditions = []
        for term in terms:
            term_pattern = f"%{term}%"
            conditions.extend([
                models.Student.first_name.ilike(term_pattern),
                models.Student.last_name.ilike(term_pattern)
            ])

        search_query = search_query.filter(or_(*conditions))
        return search_query.limit(limit).all()
