from datetime import datetime
from typing import List, Optional

import pytz
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Runtime configuration, read from the environment (prefix PSYCHDESK_)
    or from a local .env file.
    """

    portal_url: str = "http://localhost:5173/portal"
    database_url: str = "sqlite:///psychology.db"
    secret_key: str = "change-me-in-production"
    token_algorithm: str = "HS256"
    access_token_expire_minutes: int = 60 * 2

    session_cookie_name: str = "psychdesk_session"
    cookie_secure: bool = False

    host: str = "0.0.0.0"
    port: int = 3000

    timezone: str = "America/Lima"
    school_name: str = "I.E.P. Valores y Ciencias"

    seed_demo_data: bool = True
    log_level: str = "INFO"

    # roles allowed into the psychology module
    allowed_roles: List[str] = Field(default_factory=lambda: ["psicologa", "admin", "supervisor"])

    admin_username: str = "admin"
    admin_password: Optional[str] = "admin123"

    model_config = SettingsConfigDict(
        env_prefix="PSYCHDESK_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )


settings = Settings()


def local_now() -> datetime:
    """Current wall-clock time in the school's timezone."""
    return datetime.now(pytz.timezone(settings.timezone))
