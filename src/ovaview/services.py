"""Service layer for user, client and visit-log administration."""

import logging
import secrets
from typing import Dict, List, Optional, Tuple

from prometheus_client import Counter
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from .database import Client, VisitLog
from .errors import InternalError, NotFoundError, OvaviewError, ValidationError
from .models.user import User
from .passwords import hash_password
from .roles import Role
from .slug import generate_slug, generate_unique_slug


logger = logging.getLogger(__name__)

MIN_PASSWORD_LENGTH = 8

USER_COUNTER = Counter("users_created_total", "Total credential records created")
CLIENT_COUNTER = Counter("clients_created_total", "Total client records created")


def _handle_service_error(session: Session, exc: Exception) -> None:
    """Rollback the transaction and re-raise as an API error."""
    session.rollback()
    if isinstance(exc, OvaviewError):
        raise exc
    logger.exception("service layer error", exc_info=exc)
    if isinstance(exc, SQLAlchemyError):
        raise InternalError("Database error") from exc
    raise InternalError() from exc


def _parse_role(value: Optional[str]) -> Role:
    try:
        return Role.parse(value or Role.USER)
    except ValueError as exc:
        raise ValidationError(str(exc)) from None


def _check_password(password: str) -> None:
    if len(password) < MIN_PASSWORD_LENGTH:
        raise ValidationError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")


def _check_client(session: Session, client_id: Optional[str]) -> None:
    if client_id and session.get(Client, client_id) is None:
        raise ValidationError("Client not found")


def list_users(
    session: Session, role: Optional[str] = None, client_id: Optional[str] = None
) -> List[User]:
    try:
        query = session.query(User)
        if role:
            query = query.filter(User.role == _parse_role(role))
        if client_id:
            query = query.filter(User.client_id == client_id)
        return query.order_by(User.created_at.desc()).all()
    except Exception as exc:
        _handle_service_error(session, exc)


def get_user(session: Session, user_id: str) -> User:
    user = session.get(User, user_id)
    if user is None:
        raise NotFoundError("User not found")
    return user


def create_user(
    session: Session,
    email: str,
    name: str = "",
    password: Optional[str] = None,
    role: Optional[str] = None,
    client_id: Optional[str] = None,
) -> User:
    """Create a credential record; the password is only ever stored hashed.

    Without a password the account gets a random secret nobody knows and
    stays unusable until an administrator sets one.
    """
    try:
        if not email:
            raise ValidationError("Email is required")
        if session.query(User).filter(User.email == email).first():
            raise ValidationError("Email already exists")
        if password is not None:
            _check_password(password)
        _check_client(session, client_id)
        user = User(
            name=name.strip(),
            email=email,
            password=hash_password(password or secrets.token_urlsafe(16)),
            role=_parse_role(role),
            client_id=client_id or None,
            is_active=True,
        )
        session.add(user)
        session.commit()
        session.refresh(user)
        USER_COUNTER.inc()
        logger.info("created user %s with role %s", user.id, user.role.value)
        return user
    except Exception as exc:
        _handle_service_error(session, exc)


def update_user(session: Session, user_id: str, changes: Dict[str, object]) -> User:
    """Apply a partial update. ``changes`` uses model attribute names."""
    try:
        user = get_user(session, user_id)
        if changes.get("email") and changes["email"] != user.email:
            taken = session.query(User).filter(User.email == changes["email"]).first()
            if taken:
                raise ValidationError("Email already exists")
            user.email = changes["email"]
        if changes.get("name"):
            user.name = str(changes["name"]).strip()
        if changes.get("role"):
            user.role = _parse_role(str(changes["role"]))
        if isinstance(changes.get("is_active"), bool):
            user.is_active = changes["is_active"]
        if "client_id" in changes:
            _check_client(session, changes["client_id"])
            user.client_id = changes["client_id"] or None
        if changes.get("password"):
            _check_password(str(changes["password"]))
            user.password = hash_password(str(changes["password"]))
        session.commit()
        session.refresh(user)
        logger.info("updated user %s fields=%s", user.id, sorted(k for k in changes if k != "password"))
        return user
    except Exception as exc:
        _handle_service_error(session, exc)


def delete_user(session: Session, user_id: str) -> None:
    try:
        user = get_user(session, user_id)
        session.delete(user)
        session.commit()
        logger.info("deleted user %s", user_id)
    except Exception as exc:
        _handle_service_error(session, exc)


def list_clients(session: Session) -> List[Client]:
    try:
        return session.query(Client).order_by(Client.name).all()
    except Exception as exc:
        _handle_service_error(session, exc)


def create_client(session: Session, name: str, contact_email: Optional[str] = None) -> Client:
    try:
        if not name or len(name.strip()) < 2:
            raise ValidationError("Name must be at least 2 characters")
        if not generate_slug(name):
            raise ValidationError("Name must contain letters or digits")

        def slug_taken(slug: str) -> bool:
            return session.query(Client).filter(Client.slug == slug).first() is not None

        client = Client(
            name=name.strip(),
            slug=generate_unique_slug(name, slug_taken),
            contact_email=contact_email,
        )
        session.add(client)
        session.commit()
        session.refresh(client)
        CLIENT_COUNTER.inc()
        logger.info("created client %s slug=%s", client.id, client.slug)
        return client
    except Exception as exc:
        _handle_service_error(session, exc)


def log_visit(
    session: Session,
    ip_address: str,
    page: str,
    user_id: Optional[str] = None,
    user_agent: Optional[str] = None,
) -> None:
    """Record a visit. Failures are logged and never break the caller."""
    try:
        session.add(
            VisitLog(user_id=user_id, ip_address=ip_address, user_agent=user_agent, page=page)
        )
        session.commit()
    except SQLAlchemyError:
        session.rollback()
        logger.warning("failed to record visit to %s", page, exc_info=True)


def get_visit_logs(session: Session, skip: int = 0, limit: int = 50) -> Tuple[List[VisitLog], int]:
    try:
        query = session.query(VisitLog)
        total = query.count()
        records = query.order_by(VisitLog.created_at.desc()).offset(skip).limit(limit).all()
        return records, total
    except Exception as exc:
        _handle_service_error(session, exc)
