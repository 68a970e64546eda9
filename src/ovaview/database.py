"""Database setup and back-office tables."""

import uuid
from datetime import datetime
from typing import Generator

from sqlalchemy import Boolean, Column, DateTime, Integer, String, create_engine
from sqlalchemy.orm import Session, sessionmaker, declarative_base

from .config import settings

engine = create_engine(settings.database_url, future=True)
SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)
Base = declarative_base()


def new_id() -> str:
    return uuid.uuid4().hex


class Client(Base):
    """A monitored organisation; client-scoped users belong to one."""

    __tablename__ = "clients"

    id = Column(String, primary_key=True, default=new_id)
    name = Column(String, nullable=False)
    slug = Column(String, unique=True, index=True, nullable=False)
    contact_email = Column(String)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)


class RevokedToken(Base):
    """Denylist entry for a session token revoked before its expiry."""

    __tablename__ = "revoked_tokens"

    jti = Column(String, primary_key=True)
    token_type = Column(String, nullable=False)
    expires_at = Column(DateTime, index=True, nullable=False)
    revoked_at = Column(DateTime, default=datetime.utcnow, nullable=False)


class VisitLog(Base):
    """A page or endpoint visit, recorded for the admin activity log."""

    __tablename__ = "visit_logs"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String, index=True)
    ip_address = Column(String, nullable=False)
    user_agent = Column(String)
    page = Column(String, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, index=True, nullable=False)


def get_db() -> Generator[Session, None, None]:
    """Provide a transactional scope around a series of operations."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def init_db() -> None:
    """Create database tables if they do not exist."""
    from .models import user  # noqa: F401

    Base.metadata.create_all(bind=engine)
