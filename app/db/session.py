import logging
from contextlib import contextmanager

from sqlalchemy import create_engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker, declarative_base
from app.core.config import settings
from app.core.errors import BackendUnavailableError

logger = logging.getLogger(__name__)

# pool_pre_ping lets the status workflow's connectivity check see a dead server
# instead of a stale pooled connection
engine = create_engine(
    settings.DATABASE_URL,
    pool_pre_ping=True
)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def session_scope():
    """Short-lived session for work done outside a request (push callbacks, live feeds)."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def backend_errors(db, action: str):
    """Roll back and re-raise database failures as ``BackendUnavailableError``."""
    try:
        yield
    except SQLAlchemyError:
        db.rollback()
        logger.exception("Database error while trying to %s", action)
        raise BackendUnavailableError(f"Could not {action}, please try again")
