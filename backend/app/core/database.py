from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base, sessionmaker
from app.core.config import settings


def _engine_options(url: str) -> dict:
    if url.startswith("sqlite"):
        # Sync dependencies run in FastAPI's threadpool, not the creating thread
        return {"connect_args": {"check_same_thread": False}}
    # Long-lived Postgres connections can be dropped by the server between requests
    return {"pool_pre_ping": True}


engine = create_engine(settings.DATABASE_URL, **_engine_options(settings.DATABASE_URL))

# One session per request; nothing is written until a service commits
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

# Base class for all database models
Base = declarative_base()


def get_db():
    """
    Dependency for getting database session.

    Closed once the request completes, whether the handler returned or raised.
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
