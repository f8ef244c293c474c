from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional, Dict, Any, Iterable
from urllib.parse import urlencode

import jwt
from passlib.context import CryptContext
from fastapi import HTTPException, Request, status, Depends
from fastapi.security import OAuth2PasswordBearer
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app_logger import get_logger
from config import settings
from database import get_db
from schemas import GateOutcome
import models

logger = get_logger("auth")

# Password hashing
pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")

# Bearer tokens are optional; the session cookie is the browser transport
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/login", auto_error=False)

class InvalidSession(Exception):
    """Raised when a session token is missing, expired or malformed."""

def verify_password(plain_password: str, hashed_password: Optional[str]) -> bool:
    if not hashed_password:
        return False
    return pwd_context.verify(plain_password, hashed_password)

def get_password_hash(password: str) -> str:
    return pwd_context.hash(password)

def normalize_role(role: Optional[str]) -> str:
    return (role or "").upper().strip()

def role_allowed(role: Optional[str], allowed_roles: Iterable[str]) -> bool:
    """Compare a profile role against the allowed set, ignoring case and padding."""
    user_role = normalize_role(role)
    return any(normalize_role(r) == user_role for r in allowed_roles)

def build_login_url(return_to: Optional[str] = None, error: Optional[str] = None) -> str:
    """Identity portal login URL, carrying where to come back to."""
    params = {"view": "login"}
    if return_to:
        params["returnTo"] = return_to
    if error:
        params["error"] = error
    return f"{settings.portal_url}?{urlencode(params)}"

class AuthService:
    def __init__(self, db: Session):
        self.db = db

    def authenticate_user(self, username: str, password: str) -> Optional[models.Profile]:
        """Authenticate a profile with username and password"""
        user = self.db.query(models.Profile).filter(models.Profile.username == username).first()

        if not user:
            return None

        if not verify_password(password, user.hashed_password):
            return None

        if not user.active:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="User account is inactive"
            )

        # Update last login
        user.last_login = datetime.now(timezone.utc)
        self.db.commit()

        return user

    def create_access_token(self, user: models.Profile, expires_delta: Optional[timedelta] = None) -> str:
        """Create JWT session token"""
        to_encode = {
            "sub": str(user.id),
            "role": user.role,
            "exp": datetime.now(timezone.utc) + (expires_delta or timedelta(minutes=settings.access_token_expire_minutes))
        }

        return jwt.encode(to_encode, settings.secret_key, algorithm=settings.token_algorithm)

    def verify_token(self, token: Optional[str]) -> Dict[str, Any]:
        """Decode a session token, raising InvalidSession on any failure"""
        if not token:
            raise InvalidSession("No session")
        try:
            payload = jwt.decode(token, settings.secret_key, algorithms=[settings.token_algorithm])
        except jwt.ExpiredSignatureError:
            raise InvalidSession("Session has expired")
        except jwt.InvalidTokenError:
            raise InvalidSession("Could not validate session")

        if not payload.get("sub"):
            raise InvalidSession("Session carries no subject")
        return payload

@dataclass
class GateResult:
    outcome: GateOutcome
    location: Optional[str] = None
    profile: Optional[models.Profile] = None

class AccessGate:
    """Decide whether a caller may enter a role-restricted area.

    One pass per navigation: no session redirects to the portal login,
    a profile with a role outside the allowed set is forbidden. When the
    profile itself cannot be loaded the gate is left unresolved.
    """

    def __init__(self, db: Session):
        self.db = db

    def evaluate(
        self,
        token: Optional[str],
        allowed_roles: Iterable[str],
        return_to: Optional[str] = None
    ) -> GateResult:
        try:
            payload = AuthService(self.db).verify_token(token)
        except InvalidSession:
            return GateResult(GateOutcome.REDIRECT, location=build_login_url(return_to))

        try:
            profile = self.db.query(models.Profile).filter(
                models.Profile.id == int(payload["sub"])
            ).first()
        except (SQLAlchemyError, ValueError) as e:
            logger.error("Error fetching profile: %s", e)
            return GateResult(GateOutcome.UNRESOLVED)

        if profile is None:
            logger.error("Error fetching profile: no profile for subject %s", payload["sub"])
            return GateResult(GateOutcome.UNRESOLVED)

        if not profile.active or not role_allowed(profile.role, allowed_roles):
            return GateResult(GateOutcome.FORBIDDEN, profile=profile)

        return GateResult(GateOutcome.ALLOWED, profile=profile)

def get_session_token(
    request: Request,
    bearer: Optional[str] = Depends(oauth2_scheme)
) -> Optional[str]:
    """Bearer header first, then the session cookie"""
    return bearer or request.cookies.get(settings.session_cookie_name)

def require_role(*roles: str):
    """Dependency factory: the current profile, if its role is allowed"""
    allowed = roles or tuple(settings.allowed_roles)

    def role_checker(
        request: Request,
        token: Optional[str] = Depends(get_session_token),
        db: Session = Depends(get_db)
    ) -> models.Profile:
        result = AccessGate(db).evaluate(token, allowed, return_to=str(request.url))

        if result.outcome == GateOutcome.REDIRECT:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Not authenticated",
                headers={"WWW-Authenticate": "Bearer", "X-Login-Url": result.location},
            )
        if result.outcome == GateOutcome.UNRESOLVED:
            raise HTTPException(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                detail="Profile could not be loaded"
            )
        if result.outcome == GateOutcome.FORBIDDEN:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Insufficient permissions"
            )
        return result.profile
    return role_checker

# Any role allowed into the psychology module
get_current_user = require_role()

def is_psychologist(user: models.Profile) -> bool:
    """Psychologists only ever see their own records"""
    return normalize_role(user.role) == normalize_role(models.UserRole.PSICOLOGA.value)
