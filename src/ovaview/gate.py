"""Role gate, navigation metadata and the edge redirect rules."""

from dataclasses import dataclass
from enum import Enum
from typing import Iterable, List, Optional, Tuple
from urllib.parse import quote

from .roles import Role

LOGIN_PATH = "/login"
LANDING_PATH = "/dashboard"
PUBLIC_PREFIXES: Tuple[str, ...] = ("/login", "/api/auth", "/media", "/docs", "/openapi.json")


class SessionState(str, Enum):
    ANONYMOUS = "anonymous"
    AUTHENTICATING = "authenticating"
    AUTHENTICATED = "authenticated"
    EXPIRED = "expired"
    LOGGED_OUT = "logged_out"


def is_authorized(role: Optional[Role], required_roles: Iterable[Role] = ()) -> bool:
    """Flat role check with a standing exception for administrators."""
    required = {Role.parse(r) for r in required_roles}
    if not required:
        return True
    if role is None:
        return False
    if role is Role.ADMIN:
        return True
    return role in required


def is_public_path(path: str) -> bool:
    return any(path.startswith(prefix) for prefix in PUBLIC_PREFIXES)


def resolve_navigation(path: str, state: SessionState) -> Optional[str]:
    """Return where a page navigation should be redirected, if anywhere.

    Expired and logged-out sessions behave exactly like anonymous ones.
    """
    if state is SessionState.AUTHENTICATED:
        if path == LOGIN_PATH:
            return LANDING_PATH
        return None
    if state is SessionState.AUTHENTICATING or is_public_path(path):
        return None
    return f"{LOGIN_PATH}?redirect={quote(path, safe='')}"


@dataclass(frozen=True)
class NavItem:
    label: str
    href: str
    required_role: Optional[Role] = None


@dataclass(frozen=True)
class NavSection:
    title: str
    items: Tuple[NavItem, ...]


NAVIGATION: Tuple[NavSection, ...] = (
    NavSection("USER MANAGEMENT", (
        NavItem("User Management", "/users", Role.ADMIN),
        NavItem("Client Management", "/clients", Role.ADMIN),
        NavItem("Client Users", "/client-users", Role.ADMIN),
    )),
    NavSection("MANAGEMENT", (
        NavItem("Dashboard", "/dashboard"),
        NavItem("Industry Data", "/industries"),
        NavItem("Keywords", "/keywords"),
        NavItem("Daily Insights", "/daily-insights"),
    )),
    NavSection("LOG MANAGEMENT", (
        NavItem("Email Log", "/logs/email", Role.ADMIN),
        NavItem("Visit Log", "/logs/visit", Role.ADMIN),
        NavItem("Tender Log", "/logs/tender", Role.ADMIN),
        NavItem("Media Entry Log", "/logs/media-entry", Role.ADMIN),
        NavItem("Client Article Views", "/logs/article-views", Role.ADMIN),
    )),
    NavSection("MEDIA", (
        NavItem("Print Media", "/media/print/publications"),
        NavItem("Radio", "/media/radio/stations"),
        NavItem("Television", "/media/tv/stations"),
        NavItem("Web Media", "/media/web"),
    )),
    NavSection("REPORTS", (
        NavItem("Reports", "/reports"),
        NavItem("Settings", "/settings", Role.ADMIN),
    )),
)


def required_roles_for(path: str) -> List[Role]:
    """Roles declared by the longest navigation entry that prefixes ``path``."""
    best: Optional[NavItem] = None
    for section in NAVIGATION:
        for item in section.items:
            if path == item.href or path.startswith(item.href.rstrip("/") + "/"):
                if best is None or len(item.href) > len(best.href):
                    best = item
    if best is None or best.required_role is None:
        return []
    return [best.required_role]


def visible_navigation(role: Optional[Role]) -> List[NavSection]:
    sections = []
    for section in NAVIGATION:
        items = tuple(
            item for item in section.items
            if is_authorized(role, [item.required_role] if item.required_role else [])
        )
        if items:
            sections.append(NavSection(section.title, items))
    return sections
