# app/db.py
from contextlib import contextmanager

from sqlalchemy import JSON, create_engine
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import sessionmaker, DeclarativeBase
from app.config import get_settings


settings = get_settings()


def make_engine(database_url: str):
    connect_args = {}
    if database_url.startswith("sqlite"):
        # FastAPI serves requests from a thread pool
        connect_args["check_same_thread"] = False
    return create_engine(
        database_url,
        echo=False,  # set True if you want to see SQL queries
        future=True,
        connect_args=connect_args,
    )


# Synchronous engine is enough for now
engine = make_engine(settings.database_url)

SessionLocal = sessionmaker(
    bind=engine,
    autoflush=False,
    autocommit=False,
    future=True,
)


class Base(DeclarativeBase):
    """
    Base class for ORM models.
    """
    pass


# JSONB on PostgreSQL, plain JSON everywhere else (sqlite in tests)
JSONType = JSON().with_variant(JSONB(), "postgresql")


@contextmanager
def db_session(session_factory=None):
    db = (session_factory or SessionLocal)()
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


def init_db(bind=None) -> None:
    """
    Create all tables. Call this once at startup.
    """
    # Register the models on Base.metadata
    import app.models  # noqa: F401

    Base.metadata.create_all(bind=bind or engine)
