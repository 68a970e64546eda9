"""FastAPI application exposing authentication and back-office endpoints."""

from datetime import datetime
from typing import Dict, List, Optional

import logging
from fastapi import Depends, FastAPI, Query, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, RedirectResponse
from fastapi.security import HTTPAuthorizationCredentials
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address
from prometheus_client import Counter

from pydantic import BaseModel
from pydantic.alias_generators import to_camel

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from .auth import (
    authenticate,
    get_current_principal,
    get_fallback_identities,
    load_fallback_identities,
    refresh_session,
    require_roles,
    security,
)
from .config import settings
from .database import Client, get_db, init_db
from .errors import (
    AuthenticationError,
    InternalError,
    OvaviewError,
    ValidationError,
    ovaview_error_handler,
    request_validation_handler,
)
from .gate import (
    SessionState,
    is_authorized,
    required_roles_for,
    resolve_navigation,
    visible_navigation,
)
from .models.user import User
from .roles import Role
from .services import (
    create_client,
    create_user,
    delete_user,
    get_user,
    get_visit_logs,
    list_clients,
    list_users,
    log_visit,
    update_user,
)
from .tokens import (
    ACCESS,
    REFRESH,
    UNAUTHENTICATED,
    Principal,
    SessionToken,
    decode_token,
    issue_session,
    revoke_token,
)


limiter = Limiter(key_func=get_remote_address, enabled=settings.rate_limit_enabled)
app = FastAPI(title=settings.api_title)
app.state.limiter = limiter
app.state.fallback_identities = load_fallback_identities(settings)
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
app.add_exception_handler(OvaviewError, ovaview_error_handler)
app.add_exception_handler(RequestValidationError, request_validation_handler)
init_db()

logger = logging.getLogger(__name__)

# Prometheus counter to track API requests by method, endpoint and status code
REQUEST_COUNTER = Counter(
    "api_requests_total",
    "Total API requests",
    ["method", "endpoint", "status"],
)
LOGIN_COUNTER = Counter(
    "login_attempts_total",
    "Login attempts by outcome",
    ["outcome"],
)

require_admin = require_roles(Role.ADMIN)


@app.middleware("http")
async def edge_gate(request: Request, call_next):
    """Coarse session check: only looks for a plausible token, never at roles."""
    path = request.url.path
    has_cookie = bool(request.cookies.get(settings.session_cookie_name))

    if path.startswith("/api/"):
        has_bearer = request.headers.get("authorization", "").lower().startswith("bearer ")
        if not (has_cookie or has_bearer) and not path.startswith("/api/auth"):
            return JSONResponse(status_code=401, content={"error": UNAUTHENTICATED})
        return await call_next(request)

    state = SessionState.AUTHENTICATED if has_cookie else SessionState.ANONYMOUS
    target = resolve_navigation(path, state)
    if target is not None:
        return RedirectResponse(target, status_code=307)
    return await call_next(request)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    """Log incoming requests and their outcomes while updating metrics."""
    logger.info("request %s %s", request.method, request.url.path)
    try:
        response = await call_next(request)
        REQUEST_COUNTER.labels(
            method=request.method,
            endpoint=request.url.path,
            status=str(response.status_code),
        ).inc()
        logger.info(
            "response %s %s status %s",
            request.method,
            request.url.path,
            response.status_code,
        )
        return response
    except Exception:
        REQUEST_COUNTER.labels(
            method=request.method,
            endpoint=request.url.path,
            status="500",
        ).inc()
        logger.exception(
            "error handling %s %s", request.method, request.url.path
        )
        raise


class CamelModel(BaseModel):
    """Schema whose JSON form uses camelCase keys."""

    class Config:
        alias_generator = to_camel
        populate_by_name = True


class LoginRequest(BaseModel):
    """Request body for login."""

    email: Optional[str] = None
    password: Optional[str] = None


class RefreshRequest(CamelModel):
    refresh_token: Optional[str] = None


class LogoutRequest(CamelModel):
    refresh_token: Optional[str] = None


class PrincipalResponse(CamelModel):
    """Session view of the authenticated user."""

    id: str
    email: str
    username: str
    role: Role
    is_active: bool = True
    client_id: Optional[str] = None

    @classmethod
    def from_principal(cls, principal: Principal) -> "PrincipalResponse":
        return cls(
            id=principal.id,
            email=principal.email,
            username=principal.username,
            role=principal.role,
            is_active=principal.is_active,
            client_id=principal.client_id,
        )


class TokenResponse(CamelModel):
    """Bearer access token, refresh token and absolute expiry."""

    access_token: str
    refresh_token: str
    expires_at: datetime


class SessionResponse(BaseModel):
    user: PrincipalResponse
    token: TokenResponse


class UserCreate(CamelModel):
    """Request body for creating a credential record."""

    email: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    name: Optional[str] = None
    password: Optional[str] = None
    role: Optional[str] = None
    client_id: Optional[str] = None


class UserUpdate(CamelModel):
    """Partial update; unset fields are left alone."""

    email: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    name: Optional[str] = None
    username: Optional[str] = None
    password: Optional[str] = None
    role: Optional[str] = None
    is_active: Optional[bool] = None
    client_id: Optional[str] = None


class UserResponse(CamelModel):
    """Serialized credential record, password excluded."""

    id: str
    username: str
    email: str
    role: Role
    is_active: bool
    client_id: Optional[str] = None
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_user(cls, user: User) -> "UserResponse":
        return cls(
            id=user.id,
            username=user.name,
            email=user.email,
            role=Role.parse(user.role),
            is_active=user.is_active,
            client_id=user.client_id,
            created_at=user.created_at,
            updated_at=user.updated_at,
        )


class ClientCreate(CamelModel):
    name: str
    contact_email: Optional[str] = None


class ClientResponse(CamelModel):
    id: str
    name: str
    slug: str
    contact_email: Optional[str] = None
    is_active: bool
    created_at: datetime

    class Config:
        from_attributes = True


class ProfileResponse(BaseModel):
    user: PrincipalResponse
    client: Optional[ClientResponse] = None


class NavItemResponse(CamelModel):
    label: str
    href: str
    required_role: Optional[Role] = None


class NavSectionResponse(BaseModel):
    title: str
    items: List[NavItemResponse]


class AccessResponse(CamelModel):
    path: str
    allowed: bool
    required_roles: List[Role]


class VisitLogResponse(CamelModel):
    id: int
    user_id: Optional[str] = None
    ip_address: str
    user_agent: Optional[str] = None
    page: str
    created_at: datetime

    class Config:
        from_attributes = True


class VisitLogListResponse(BaseModel):
    """Paginated list of visit log entries."""

    total: int
    items: List[VisitLogResponse]


def _session_response(response: Response, principal: Principal, session: SessionToken) -> SessionResponse:
    response.set_cookie(
        settings.session_cookie_name,
        session.access_token,
        expires=session.expires_at,
        httponly=True,
        samesite="lax",
        secure=settings.cookie_secure,
    )
    return SessionResponse(
        user=PrincipalResponse.from_principal(principal),
        token=TokenResponse(
            access_token=session.access_token,
            refresh_token=session.refresh_token,
            expires_at=session.expires_at,
        ),
    )


def _client_ip(request: Request) -> str:
    return request.client.host if request.client else "unknown"


@app.post("/api/auth/login", response_model=SessionResponse)
@limiter.limit(settings.login_rate_limit)
def login(
    request: Request,
    response: Response,
    payload: LoginRequest,
    db: Session = Depends(get_db),
    fallbacks=Depends(get_fallback_identities),
):
    """Exchange email and password for a session."""
    if not payload.email or not payload.password:
        raise ValidationError("Email and password are required")

    try:
        principal = authenticate(db, payload.email, payload.password, fallbacks)
    except AuthenticationError:
        LOGIN_COUNTER.labels(outcome="failure").inc()
        logger.info("failed login for %s from %s", payload.email, _client_ip(request))
        raise
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception("login lookup failed")
        raise InternalError("Login failed") from exc

    LOGIN_COUNTER.labels(outcome="success").inc()
    logger.info("login %s role=%s source=%s", principal.id, principal.role.value, principal.source)
    log_visit(
        db,
        _client_ip(request),
        "/login",
        user_id=principal.id,
        user_agent=request.headers.get("user-agent"),
    )
    return _session_response(response, principal, issue_session(principal))


@app.post("/api/auth/refresh", response_model=SessionResponse)
@limiter.limit(settings.login_rate_limit)
def refresh(
    request: Request,
    response: Response,
    payload: RefreshRequest,
    db: Session = Depends(get_db),
    fallbacks=Depends(get_fallback_identities),
):
    """Rotate a refresh token into a new session."""
    principal, session = refresh_session(db, payload.refresh_token, fallbacks)
    return _session_response(response, principal, session)


@app.post("/api/auth/logout")
def logout(
    request: Request,
    response: Response,
    payload: Optional[LogoutRequest] = None,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    db: Session = Depends(get_db),
) -> Dict[str, bool]:
    """Clear the session cookie and revoke whatever tokens came with the call."""
    presented = [
        (credentials.credentials if credentials else None)
        or request.cookies.get(settings.session_cookie_name),
        payload.refresh_token if payload else None,
    ]
    for token, token_type in zip(presented, (ACCESS, REFRESH)):
        if not token:
            continue
        try:
            revoke_token(db, decode_token(token, token_type))
        except AuthenticationError:
            logger.debug("logout ignored an invalid %s token", token_type)
    response.delete_cookie(settings.session_cookie_name)
    return {"success": True}


@app.get("/api/auth/me", response_model=PrincipalResponse)
def me(principal: Principal = Depends(get_current_principal)):
    """Return the principal behind the presented session."""
    return PrincipalResponse.from_principal(principal)


@app.get("/api/navigation", response_model=List[NavSectionResponse])
def navigation(principal: Principal = Depends(get_current_principal)):
    """Back-office sections the caller's role may see."""
    return [
        NavSectionResponse(
            title=section.title,
            items=[
                NavItemResponse(label=i.label, href=i.href, required_role=i.required_role)
                for i in section.items
            ],
        )
        for section in visible_navigation(principal.role)
    ]


@app.get("/api/navigation/access", response_model=AccessResponse)
def navigation_access(path: str, principal: Principal = Depends(get_current_principal)):
    """Whether the caller may open the page at ``path``."""
    required = required_roles_for(path)
    return AccessResponse(
        path=path,
        allowed=is_authorized(principal.role, required),
        required_roles=required,
    )


@app.get("/api/users", response_model=List[UserResponse], dependencies=[Depends(require_admin)])
def get_users(
    role: Optional[str] = None,
    client_id: Optional[str] = Query(None, alias="clientId"),
    db: Session = Depends(get_db),
):
    """List credential records, newest first."""
    return [UserResponse.from_user(u) for u in list_users(db, role=role, client_id=client_id)]


@app.post(
    "/api/users",
    response_model=UserResponse,
    status_code=201,
    dependencies=[Depends(require_admin)],
)
def post_user(payload: UserCreate, db: Session = Depends(get_db)):
    """Create a credential record."""
    name = payload.name or f"{payload.first_name or ''} {payload.last_name or ''}".strip()
    user = create_user(
        db,
        email=payload.email or "",
        name=name,
        password=payload.password,
        role=payload.role,
        client_id=payload.client_id,
    )
    return UserResponse.from_user(user)


@app.get("/api/users/{user_id}", response_model=UserResponse, dependencies=[Depends(require_admin)])
def get_user_endpoint(user_id: str, db: Session = Depends(get_db)):
    return UserResponse.from_user(get_user(db, user_id))


def _apply_update(db: Session, user_id: str, payload: UserUpdate) -> UserResponse:
    changes = payload.model_dump(exclude_unset=True)
    first, last = changes.pop("first_name", None), changes.pop("last_name", None)
    username = changes.pop("username", None)
    if first and last:
        changes["name"] = f"{first} {last}"
    elif not changes.get("name") and username:
        changes["name"] = username
    return UserResponse.from_user(update_user(db, user_id, changes))


@app.put("/api/users/{user_id}", response_model=UserResponse, dependencies=[Depends(require_admin)])
def put_user(user_id: str, payload: UserUpdate, db: Session = Depends(get_db)):
    """Update a credential record."""
    return _apply_update(db, user_id, payload)


@app.patch("/api/users/{user_id}", response_model=UserResponse, dependencies=[Depends(require_admin)])
def patch_user(user_id: str, payload: UserUpdate, db: Session = Depends(get_db)):
    """Partially update a credential record, e.g. toggle ``isActive``."""
    return _apply_update(db, user_id, payload)


@app.delete("/api/users/{user_id}", dependencies=[Depends(require_admin)])
def delete_user_endpoint(user_id: str, db: Session = Depends(get_db)) -> Dict[str, bool]:
    delete_user(db, user_id)
    return {"success": True}


@app.get("/api/clients", response_model=List[ClientResponse], dependencies=[Depends(require_admin)])
def get_clients(db: Session = Depends(get_db)):
    return [ClientResponse.model_validate(c) for c in list_clients(db)]


@app.post(
    "/api/clients",
    response_model=ClientResponse,
    status_code=201,
    dependencies=[Depends(require_admin)],
)
def post_client(payload: ClientCreate, db: Session = Depends(get_db)):
    """Create a client; its slug is derived from the name."""
    return ClientResponse.model_validate(
        create_client(db, payload.name, contact_email=payload.contact_email)
    )


@app.get("/api/client-portal/profile", response_model=ProfileResponse)
def client_profile(
    principal: Principal = Depends(require_roles(Role.CLIENT_USER)),
    db: Session = Depends(get_db),
):
    """The caller and the client organisation they belong to."""
    client = db.get(Client, principal.client_id) if principal.client_id else None
    return ProfileResponse(
        user=PrincipalResponse.from_principal(principal),
        client=ClientResponse.model_validate(client) if client else None,
    )


@app.get("/api/logs/visit", response_model=VisitLogListResponse, dependencies=[Depends(require_admin)])
def get_visit_log(skip: int = 0, limit: int = 50, db: Session = Depends(get_db)):
    """Return paginated visit log entries, newest first."""
    records, total = get_visit_logs(db, skip, limit)
    return VisitLogListResponse(
        total=total, items=[VisitLogResponse.model_validate(r) for r in records]
    )
