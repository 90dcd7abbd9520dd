import os
from contextlib import contextmanager
from typing import Iterator

from sqlalchemy import create_engine
from sqlalchemy.orm import Session, declarative_base, sessionmaker

# Importing config loads .env before DATABASE_URL is read
from wedding_payments.config import BASE_DIR  # noqa: F401
from wedding_payments.exceptions import ConfigurationError

DATABASE_URL = os.getenv("DATABASE_URL")
if not DATABASE_URL:
    raise ConfigurationError(
        "DATABASE_URL is not set", context={"missing": ["DATABASE_URL"]}
    )


def _engine_options(url: str) -> dict:
    if url.startswith("sqlite"):
        # Request handlers run in the threadpool; the webhook and polling may share a file
        return {"connect_args": {"check_same_thread": False, "timeout": 15}}
    return {"pool_pre_ping": True}


engine = create_engine(DATABASE_URL, **_engine_options(DATABASE_URL))

SessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False)
Base = declarative_base()


@contextmanager
def session_scope() -> Iterator[Session]:
    """A session for one unit of work; uncommitted changes are rolled back on error."""
    db = SessionLocal()
    try:
        yield db
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()
