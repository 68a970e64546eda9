"""Session token issuance, decoding and revocation.

Tokens are HS256 JWTs. Every token carries its own ``jti`` drawn from
``secrets.token_urlsafe(32)``, which makes the bearer value unguessable and
gives the revocation denylist a key.
"""

import logging
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from .config import settings
from .database import RevokedToken
from .errors import AuthenticationError
from .roles import Role

logger = logging.getLogger(__name__)

ACCESS = "access"
REFRESH = "refresh"
SOURCE_STORE = "store"
SOURCE_FALLBACK = "fallback"

UNAUTHENTICATED = "Authentication required"


@dataclass
class Principal:
    """Session view of an authenticated identity. Never holds password material."""

    id: str
    email: str
    username: str
    role: Role
    is_active: bool = True
    client_id: Optional[str] = None
    source: str = SOURCE_STORE

    @classmethod
    def from_user(cls, user) -> "Principal":
        return cls(
            id=user.id,
            email=user.email,
            username=user.name,
            role=Role.parse(user.role),
            is_active=user.is_active,
            client_id=user.client_id,
        )


@dataclass
class SessionToken:
    access_token: str
    refresh_token: str
    expires_at: datetime


@dataclass
class TokenClaims:
    jti: str
    token_type: str
    expires_at: datetime
    principal: Principal


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _encode(principal: Principal, token_type: str, issued_at: datetime, expires_at: datetime) -> str:
    payload = {
        "sub": principal.id,
        "email": principal.email,
        "name": principal.username,
        "role": principal.role.value,
        "client_id": principal.client_id,
        "src": principal.source,
        "type": token_type,
        "jti": secrets.token_urlsafe(32),
        "iat": issued_at,
        "exp": expires_at,
    }
    return jwt.encode(payload, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def issue_session(principal: Principal, now: Optional[datetime] = None) -> SessionToken:
    """Create an access/refresh pair with an absolute expiry."""
    now = now or _utcnow()
    expires_at = now + timedelta(hours=settings.session_ttl_hours)
    refresh_expires_at = now + timedelta(minutes=settings.refresh_token_expire_minutes)
    return SessionToken(
        access_token=_encode(principal, ACCESS, now, expires_at),
        refresh_token=_encode(principal, REFRESH, now, refresh_expires_at),
        expires_at=expires_at,
    )


def decode_token(token: Optional[str], expected_type: str = ACCESS) -> TokenClaims:
    """Validate a token and return its claims.

    Absent, malformed, tampered, mistyped and expired tokens all raise the
    same ``AuthenticationError`` so callers cannot tell them apart.
    """
    if not token:
        raise AuthenticationError(UNAUTHENTICATED)
    try:
        payload = jwt.decode(
            token,
            settings.jwt_secret,
            algorithms=[settings.jwt_algorithm],
            options={"require": ["exp", "sub", "jti"]},
        )
        if payload.get("type") != expected_type:
            raise AuthenticationError(UNAUTHENTICATED)
        principal = Principal(
            id=payload["sub"],
            email=payload.get("email", ""),
            username=payload.get("name", ""),
            role=Role.parse(payload["role"]),
            client_id=payload.get("client_id"),
            source=payload.get("src", SOURCE_STORE),
        )
    except (jwt.PyJWTError, KeyError, ValueError):
        raise AuthenticationError(UNAUTHENTICATED) from None
    return TokenClaims(
        jti=payload["jti"],
        token_type=expected_type,
        expires_at=datetime.fromtimestamp(payload["exp"], tz=timezone.utc),
        principal=principal,
    )


def is_revoked(db: Session, jti: str) -> bool:
    return db.get(RevokedToken, jti) is not None


def revoke_token(db: Session, claims: TokenClaims) -> None:
    """Add a token to the denylist until its natural expiry."""
    if is_revoked(db, claims.jti):
        return
    db.add(
        RevokedToken(
            jti=claims.jti,
            token_type=claims.token_type,
            expires_at=claims.expires_at.astimezone(timezone.utc).replace(tzinfo=None),
        )
    )
    try:
        db.commit()
    except IntegrityError:
        # a concurrent request revoked the same token first
        db.rollback()
        raise AuthenticationError(UNAUTHENTICATED) from None
    logger.info("revoked %s token for principal %s", claims.token_type, claims.principal.id)


def purge_revoked_tokens(db: Session, now: Optional[datetime] = None) -> int:
    """Drop denylist rows whose tokens would have expired anyway."""
    cutoff = (now or _utcnow()).astimezone(timezone.utc).replace(tzinfo=None)
    deleted = (
        db.query(RevokedToken)
        .filter(RevokedToken.expires_at < cutoff)
        .delete(synchronize_session=False)
    )
    db.commit()
    return deleted
