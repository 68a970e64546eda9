"""Credential verification, principal resolution and role-gated dependencies."""

import hmac
import logging
from dataclasses import dataclass
from typing import Callable, List, Optional, Sequence

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from .config import Settings, settings
from .database import get_db
from .errors import AuthenticationError, AuthorizationError
from .gate import is_authorized
from .models.user import User
from .passwords import encode_secret, hash_password, verify_password
from .roles import Role
from .tokens import (
    ACCESS,
    REFRESH,
    SOURCE_FALLBACK,
    SOURCE_STORE,
    UNAUTHENTICATED,
    Principal,
    SessionToken,
    TokenClaims,
    decode_token,
    is_revoked,
    issue_session,
    revoke_token,
)

logger = logging.getLogger(__name__)

security = HTTPBearer(auto_error=False)

INVALID_CREDENTIALS = "Invalid email or password"


@dataclass(frozen=True)
class FallbackIdentity:
    """A configured login that bypasses the users table."""

    id: str
    username: str
    email: Optional[str]
    password: Optional[str]
    role: Role

    def matches(self, email: str, password: str) -> bool:
        if not self.email or not self.password:
            return False
        email_ok = hmac.compare_digest(encode_secret(email), encode_secret(self.email))
        password_ok = hmac.compare_digest(encode_secret(password), encode_secret(self.password))
        return email_ok and password_ok


def load_fallback_identities(cfg: Settings = settings) -> List[FallbackIdentity]:
    return [
        FallbackIdentity("fallback-admin", "Admin User", cfg.admin_email, cfg.admin_password, Role.ADMIN),
        FallbackIdentity("fallback-client", "Client User", cfg.client_email, cfg.client_password, Role.CLIENT_USER),
    ]


def get_fallback_identities(request: Request) -> List[FallbackIdentity]:
    return request.app.state.fallback_identities


def authenticate(
    db: Session,
    email: str,
    password: str,
    fallbacks: Sequence[FallbackIdentity] = (),
    allow_legacy: Optional[bool] = None,
) -> Principal:
    """Resolve an email/password pair to a principal.

    Stored records are tried first, then each fallback identity in order.
    Every failure raises the same ``AuthenticationError``.
    """
    if allow_legacy is None:
        allow_legacy = settings.allow_legacy_passwords

    try:
        email.encode("utf-8")
    except UnicodeError:
        raise AuthenticationError(INVALID_CREDENTIALS) from None

    user = db.query(User).filter(User.email == email).first()
    if user is not None and user.is_active and verify_password(password, user.password, allow_legacy):
        if ":" not in user.password:
            # migrate plaintext rows as soon as their owner logs in
            logger.warning("upgrading legacy plaintext password for user %s", user.id)
            user.password = hash_password(password)
            db.commit()
        return Principal.from_user(user)

    for fallback in fallbacks:
        if fallback.matches(email, password):
            logger.warning("fallback identity %s used for login", fallback.id)
            principal = Principal(
                id=fallback.id,
                email=email,
                username=fallback.username,
                role=fallback.role,
                source=SOURCE_FALLBACK,
            )
            if user is not None:
                principal.id = user.id
                principal.username = user.name or fallback.username
                principal.client_id = user.client_id
            return principal

    raise AuthenticationError(INVALID_CREDENTIALS)


def _fallback_configured(principal: Principal, fallbacks: Sequence[FallbackIdentity]) -> bool:
    return any(
        f.email and f.password and f.email == principal.email and f.role is principal.role
        for f in fallbacks
    )


def _resolve(db: Session, claims: TokenClaims, fallbacks: Sequence[FallbackIdentity] = ()) -> Principal:
    if is_revoked(db, claims.jti):
        raise AuthenticationError(UNAUTHENTICATED)
    principal = claims.principal
    if principal.source == SOURCE_FALLBACK:
        # sessions end once the identity is removed from configuration
        if not _fallback_configured(principal, fallbacks):
            raise AuthenticationError(UNAUTHENTICATED)
        return principal
    if principal.source != SOURCE_STORE:
        raise AuthenticationError(UNAUTHENTICATED)
    # the stored record is authoritative for role and activation
    user = db.get(User, principal.id)
    if user is None or not user.is_active:
        raise AuthenticationError(UNAUTHENTICATED)
    return Principal.from_user(user)


def extract_token(request: Request, credentials: Optional[HTTPAuthorizationCredentials]) -> Optional[str]:
    if credentials is not None and credentials.credentials:
        return credentials.credentials
    return request.cookies.get(settings.session_cookie_name)


def get_current_claims(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> TokenClaims:
    return decode_token(extract_token(request, credentials), ACCESS)


def get_current_principal(
    claims: TokenClaims = Depends(get_current_claims),
    db: Session = Depends(get_db),
    fallbacks: List[FallbackIdentity] = Depends(get_fallback_identities),
) -> Principal:
    return _resolve(db, claims, fallbacks)


def require_roles(*roles: Role) -> Callable[..., Principal]:
    """Build a dependency that admits admins and any of ``roles``."""

    def checker(principal: Principal = Depends(get_current_principal)) -> Principal:
        if not is_authorized(principal.role, roles):
            logger.info(
                "denied principal %s with role %s, requires %s",
                principal.id,
                principal.role.value,
                [r.value for r in roles],
            )
            raise AuthorizationError()
        return principal

    return checker


def refresh_session(
    db: Session,
    refresh_token: Optional[str],
    fallbacks: Sequence[FallbackIdentity] = (),
) -> tuple[Principal, SessionToken]:
    """Rotate a refresh token into a fresh session."""
    claims = decode_token(refresh_token, REFRESH)
    principal = _resolve(db, claims, fallbacks)
    revoke_token(db, claims)
    return principal, issue_session(principal)
