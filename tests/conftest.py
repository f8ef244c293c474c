# tests/conftest.py
"""
Shared fixtures: an in-memory SQLite database rebuilt for every test, a
FastAPI TestClient, and a few profiles with session headers.

The environment is set before the application modules are imported so the
engine binds to the in-memory database and no demo rows are seeded.
"""

import os

os.environ["PSYCHDESK_DATABASE_URL"] = "sqlite://"
os.environ["PSYCHDESK_SEED_DEMO_DATA"] = "false"
os.environ["PSYCHDESK_PORTAL_URL"] = "https://portal.example.edu/"

import pytest
from fastapi.testclient import TestClient

import models
from app import app
from auth import AuthService, get_password_hash
from database import Base, SessionLocal, engine


@pytest.fixture
def db():
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def client(db):
    return TestClient(app)


def _make_profile(db, username, role, full_name, active=True, password="secret123"):
    profile = models.Profile(
        username=username,
        hashed_password=get_password_hash(password),
        full_name=full_name,
        role=role,
        active=active,
    )
    db.add(profile)
    db.commit()
    db.refresh(profile)
    return profile


@pytest.fixture
def psychologist(db):
    return _make_profile(db, "lvargas", "psicologa", "Laura Vargas")


@pytest.fixture
def other_psychologist(db):
    return _make_profile(db, "mrios", "psicologa", "Marco Ríos")


@pytest.fixture
def supervisor(db):
    return _make_profile(db, "supervisor", "supervisor", "Rosa Campos")


@pytest.fixture
def docente(db):
    return _make_profile(db, "docente1", "docente", "Pablo Núñez")


@pytest.fixture
def make_profile(db):
    def factory(username, role="psicologa", full_name="Test User", **kwargs):
        return _make_profile(db, username, role, full_name, **kwargs)
    return factory


@pytest.fixture
def headers_for(db):
    def factory(profile):
        token = AuthService(db).create_access_token(profile)
        return {"Authorization": f"Bearer {token}"}
    return factory


@pytest.fixture
def auth_headers(psychologist, headers_for):
    return headers_for(psychologist)
