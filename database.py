from sqlalchemy import create_engine, event
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

from config import settings

connect_args = {}
engine_kwargs = {}
is_sqlite = settings.database_url.startswith("sqlite")
if is_sqlite:
    # FastAPI runs sync endpoints in a threadpool
    connect_args["check_same_thread"] = False
    if settings.database_url in ("sqlite://", "sqlite:///:memory:"):
        # one shared connection, or every thread sees its own empty database
        engine_kwargs["poolclass"] = StaticPool

engine = create_engine(settings.database_url, connect_args=connect_args, **engine_kwargs)

if is_sqlite:
    @event.listens_for(engine, "connect")
    def _register_unicode_lower(dbapi_connection, connection_record):
        # SQLite's lower() only folds ASCII; names like "Álvaro" must match "álvaro"
        dbapi_connection.create_function("lower", 1, lambda s: s.lower() if s is not None else None)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()


def get_db():
    """Yield one session per request."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
