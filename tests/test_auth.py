from urllib.parse import parse_qs, urlparse

import models
from auth import AccessGate, AuthService, build_login_url, role_allowed
from config import settings
from schemas import GateOutcome


def test_login_returns_token_and_sets_cookie(client, psychologist):
    r = client.post("/api/login", json={"username": "lvargas", "password": "secret123"})
    assert r.status_code == 200
    body = r.json()
    assert body["success"] is True
    assert body["user"]["full_name"] == "Laura Vargas"
    assert "hashed_password" not in body["user"]
    assert body["access_token"]
    assert settings.session_cookie_name in r.cookies

    # the cookie alone is enough for later calls
    me = client.get("/api/profile/me")
    assert me.status_code == 200
    assert me.json()["username"] == "lvargas"


def test_login_rejects_bad_credentials(client, psychologist):
    r = client.post("/api/login", json={"username": "lvargas", "password": "wrong"})
    assert r.status_code == 401
    assert r.json() == {"success": False, "message": "Credenciales incorrectas"}

    r = client.post("/api/login", json={"username": "nobody", "password": "secret123"})
    assert r.status_code == 401


def test_login_rejects_inactive_profile(client, make_profile):
    make_profile("retired", active=False)
    r = client.post("/api/login", json={"username": "retired", "password": "secret123"})
    assert r.status_code == 403


def test_missing_session_is_401_with_login_url(client, db):
    r = client.get("/api/appointments")
    assert r.status_code == 401
    login_url = r.headers["X-Login-Url"]
    assert login_url.startswith("https://portal.example.edu/?")
    query = parse_qs(urlparse(login_url).query)
    assert query["view"] == ["login"]
    assert query["returnTo"][0].endswith("/api/appointments")
    assert r.json()["details"]["login_url"] == login_url


def test_role_outside_allowed_set_is_forbidden(client, docente, headers_for):
    r = client.get("/api/appointments", headers=headers_for(docente))
    assert r.status_code == 403
    assert r.json()["success"] is False


def test_role_comparison_ignores_case_and_padding(client, make_profile, headers_for):
    profile = make_profile("padded", role="  PSICOLOGA ")
    r = client.get("/api/profile/me", headers=headers_for(profile))
    assert r.status_code == 200


def test_role_allowed():
    assert role_allowed("Supervisor", ["psicologa", "supervisor"])
    assert role_allowed(" admin ", ["ADMIN"])
    assert not role_allowed("docente", ["psicologa"])
    assert not role_allowed(None, ["psicologa"])


def test_expired_token_redirects(db, psychologist):
    from datetime import timedelta

    token = AuthService(db).create_access_token(psychologist, expires_delta=timedelta(seconds=-5))
    result = AccessGate(db).evaluate(token, ["psicologa"], return_to="/history")
    assert result.outcome == GateOutcome.REDIRECT
    assert result.location == build_login_url("/history")


def test_gate_unresolved_when_profile_missing(db):
    ghost = models.Profile(id=999, role="psicologa")
    token = AuthService(db).create_access_token(ghost)
    result = AccessGate(db).evaluate(token, ["psicologa"])
    assert result.outcome == GateOutcome.UNRESOLVED
    assert result.location is None
    assert result.profile is None


def test_session_endpoint_outcomes(client, psychologist, docente, headers_for):
    r = client.get("/api/session", params={"return_to": "https://app.example.edu/history?x=1"})
    assert r.json()["outcome"] == "redirect"
    query = parse_qs(urlparse(r.json()["location"]).query)
    assert query["returnTo"] == ["https://app.example.edu/history?x=1"]

    r = client.get("/api/session", headers=headers_for(docente))
    assert r.json()["outcome"] == "forbidden"

    r = client.get("/api/session", headers=headers_for(psychologist))
    body = r.json()
    assert body["outcome"] == "allowed"
    assert body["profile"]["id"] == psychologist.id


def test_session_endpoint_unresolved(client, db, headers_for):
    ghost = models.Profile(id=4242, role="psicologa")
    r = client.get("/api/session", headers=headers_for(ghost))
    assert r.json() == {"outcome": "unresolved", "location": None, "profile": None}

    r = client.get("/api/profile/me", headers=headers_for(ghost))
    assert r.status_code == 503


def test_auth_callback_adopts_portal_token(client, db, psychologist):
    token = AuthService(db).create_access_token(psychologist)
    r = client.post("/api/auth/callback", json={"access_token": token, "refresh_token": "r", "returnTo": "/history"})
    assert r.status_code == 200
    assert r.json() == {"redirect_to": "/history"}
    assert r.cookies.get(settings.session_cookie_name) == token


def test_auth_callback_failures(client, db, psychologist):
    r = client.post("/api/auth/callback", json={"access_token": "not-a-jwt"})
    assert r.json()["redirect_to"] == build_login_url(error="session_error")

    r = client.post("/api/auth/callback", json={})
    assert r.json()["redirect_to"] == build_login_url()

    token = AuthService(db).create_access_token(psychologist)
    r = client.post("/api/auth/callback", json={"access_token": token, "returnTo": "https://evil.example.com"})
    assert r.json()["redirect_to"] == "/"


def test_logout_points_to_portal(client, psychologist):
    client.post("/api/login", json={"username": "lvargas", "password": "secret123"})
    r = client.post("/api/logout")
    assert r.status_code == 200
    assert r.json()["redirect_to"] == "https://portal.example.edu/?view=login"
    assert client.get("/api/profile/me").status_code == 401
