from datetime import date, timedelta
from typing import Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

import models
from app_logger import get_logger
from auth import get_password_hash
from config import local_now, settings

logger = get_logger("seed")

DEMO_REMINDERS = [
    {"title": "Actualización de Expedientes",
     "description": "Recuerda completar las observaciones de las atenciones de la semana pasada.",
     "type": "warning"},
    {"title": "Taller de Convivencia",
     "description": "Preparar materiales para el taller de mañana con 3ro de Secundaria.",
     "type": "info"},
]

DEMO_ATTENTIONS = [
    {
        "student_name": "Juan Pérez García",
        "grade": "5to Primaria A",
        "date": "2026-02-15",
        "time": "09:30",
        "reason": "Dificultades de concentración en clase de matemáticas.",
        "observations": "El alumno se muestra distraído y con ansiedad ante exámenes.",
        "recommendations": "Técnicas de respiración y apoyo pedagógico adicional.",
    },
    {
        "student_name": "María Rodríguez López",
        "grade": "3ro Secundaria B",
        "date": "2026-02-18",
        "time": "11:00",
        "reason": "Problemas de convivencia con sus compañeros.",
        "observations": "Se identifica un conflicto grupal por malentendidos en redes sociales.",
        "recommendations": "Taller de habilidades sociales y mediación escolar.",
    },
    {
        "student_name": "Carlos Mendoza Soto",
        "grade": "1ro Secundaria C",
        "date": "2026-02-19",
        "time": "14:15",
        "reason": "Bajo rendimiento académico en el primer bimestre.",
        "observations": "Falta de hábitos de estudio y desmotivación escolar.",
        "recommendations": "Establecer un horario de estudio en casa y seguimiento semanal.",
    },
    {
        "student_name": "Ana Belén Torres",
        "grade": "6to Primaria B",
        "date": "2026-02-20",
        "time": "10:45",
        "reason": "Orientación vocacional temprana.",
        "observations": "La alumna muestra interés por las artes y ciencias biológicas.",
        "recommendations": "Explorar perfiles profesionales y participar en ferias de ciencias.",
    },
]

# (level, grade, section) -> [(first_name, last_name), ...]
DEMO_ROSTER = {
    ("primaria", "4to", "A"): [("Roberto", "Díaz Flores")],
    ("primaria", "5to", "A"): [("Juan", "Pérez García")],
    ("primaria", "6to", "B"): [("Ana Belén", "Torres Ruiz")],
    ("secundaria", "1ro", "C"): [("Carlos", "Mendoza Soto")],
    ("secundaria", "2do", "A"): [("Lucía", "Méndez Vargas")],
    ("secundaria", "3ro", "B"): [("María", "Rodríguez López")],
    ("secundaria", "5to", "A"): [("Kevin", "Quispe Mamani")],
}

def _table_is_empty(db: Session, model) -> bool:
    return (db.query(func.count(model.id)).scalar() or 0) == 0

def ensure_admin(db: Session) -> models.Profile:
    admin = db.query(models.Profile).filter(models.Profile.username == settings.admin_username).first()
    if admin:
        return admin

    admin = models.Profile(
        username=settings.admin_username,
        hashed_password=get_password_hash(settings.admin_password) if settings.admin_password else None,
        full_name="Psic. Principal",
        role=models.UserRole.PSICOLOGA.value,
        active=True,
    )
    db.add(admin)
    db.commit()
    db.refresh(admin)
    logger.info("Created default profile '%s'", admin.username)
    return admin

def seed_demo_data(db: Session, today: Optional[date] = None) -> None:
    """Populate empty tables with demo rows; tables that hold data are left alone."""
    admin = ensure_admin(db)
    today = today or local_now().date()
    tomorrow = today + timedelta(days=1)

    if _table_is_empty(db, models.Reminder):
        for r in DEMO_REMINDERS:
            db.add(models.Reminder(**r, psychologist_id=admin.id, is_completed=False))
        logger.info("Seeded %d reminders", len(DEMO_REMINDERS))

    if _table_is_empty(db, models.Appointment):
        appointments = [
            ("Roberto Díaz", "4to Primaria", today, "08:00"),
            ("Lucía Méndez", "2do Secundaria", today, "10:30"),
            ("Kevin Quispe", "5to Secundaria", tomorrow, "09:00"),
        ]
        for student_name, grade, day, time in appointments:
            db.add(models.Appointment(
                student_name=student_name, grade=grade, date=day.isoformat(), time=time,
                status=models.AppointmentStatus.PENDING.value, psychologist_id=admin.id
            ))
        logger.info("Seeded %d appointments", len(appointments))

    if _table_is_empty(db, models.Attention):
        for a in DEMO_ATTENTIONS:
            db.add(models.Attention(**a, psychologist_id=admin.id))
        logger.info("Seeded %d attentions", len(DEMO_ATTENTIONS))

    if _table_is_empty(db, models.Student):
        for (level, grade, section), names in DEMO_ROSTER.items():
            classroom = models.Classroom(level=level, grade=grade, section=section)
            db.add(classroom)
            for first_name, last_name in names:
                db.add(models.Student(first_name=first_name, last_name=last_name, classroom=classroom))
        logger.info("Seeded %d classrooms", len(DEMO_ROSTER))

    db.commit()
