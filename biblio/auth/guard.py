"""
Route guard: decides Allow / RedirectTo / Reject for a request before any
handler runs.

The decision is a pure function of the path, the HTTP method and the decoded
token claims.  Rules live in :data:`RULES` and are evaluated top to bottom;
the first rule whose predicate matches produces the decision.  The order is
part of the contract:

1. ``PUBLIC`` pages are open to everyone, signed in or not.  This comes first
   so staff are never bounced away from the catalogue.
2. ``API`` routes pass through; every API handler authorizes itself.
3. ``AUTH_PAGE`` (login/register) sends a signed-in user to their landing page.
4. ``PROTECTED_DEFAULT`` without a valid token goes to the login page with the
   original URL as ``callbackUrl`` (or 401 for non-navigational methods).
5. ``LIBRARIAN_ONLY`` sends non-staff to their profile.
6. ``MEMBER_OR_LIBRARIAN`` needs any valid token.
7. Anything else is allowed.
"""

import enum
import re
from collections.abc import Callable
from dataclasses import dataclass
from urllib.parse import urlencode

from biblio.models.user import UserRole

LOGIN_PATH = "/login"
DASHBOARD_PATH = "/dashboard"
PROFILE_PATH = "/profile"

PUBLIC_ROUTES: frozenset[str] = frozenset(
    {"/", "/materials", "/about", "/health", "/docs", "/redoc", "/openapi.json"}
)
# Single-segment material detail pages; "manage" is the staff page, not an item.
ITEM_DETAIL_PATTERN = re.compile(r"^/materials/(?!manage$)[^/]+$")
API_PREFIX = "/api/"
AUTH_PAGES: tuple[str, ...] = ("/login", "/register")
LIBRARIAN_ROUTES: tuple[str, ...] = (
    "/dashboard",
    "/materials/manage",
    "/users/manage",
    "/categories/manage",
    "/collections/manage",
    "/material-types/manage",
    "/subjects/manage",
    "/library-info/manage",
    "/import-export",
)
MEMBER_ROUTES: tuple[str, ...] = ("/profile", "/loans/request")

# A form POST cannot be replayed after a login round-trip, so only these get
# redirected; everything else is rejected outright.
NAVIGATION_METHODS: frozenset[str] = frozenset({"GET", "HEAD"})


class RouteCategory(str, enum.Enum):
    PUBLIC = "public"
    API = "api"
    AUTH_PAGE = "auth-page"
    PROTECTED_DEFAULT = "protected-default"
    LIBRARIAN_ONLY = "librarian-only"
    MEMBER_OR_LIBRARIAN = "member-or-librarian"


@dataclass(frozen=True)
class TokenClaims:
    user_id: str
    role: UserRole

    @property
    def is_staff(self) -> bool:
        return self.role.is_staff

    @classmethod
    def from_payload(cls, payload: dict) -> "TokenClaims | None":
        """Claims from a verified JWT payload; ``None`` if ``sub`` or ``role`` is unusable."""
        user_id = payload.get("sub")
        try:
            role = UserRole(payload.get("role"))
        except ValueError:
            return None
        if not user_id:
            return None
        return cls(user_id=str(user_id), role=role)


@dataclass(frozen=True)
class Allow:
    pass


@dataclass(frozen=True)
class RedirectTo:
    location: str


@dataclass(frozen=True)
class Reject:
    status_code: int = 401
    detail: str = "Not authenticated"


Decision = Allow | RedirectTo | Reject

ALLOW = Allow()


@dataclass(frozen=True)
class GuardRequest:
    path: str
    token: TokenClaims | None
    method: str
    url: str


@dataclass(frozen=True)
class Rule:
    category: RouteCategory
    matches: Callable[[GuardRequest], bool]
    decide: Callable[[GuardRequest], Decision]


def _under(path: str, prefixes: tuple[str, ...]) -> bool:
    return any(path == p or path.startswith(p + "/") for p in prefixes)


def landing_page(token: TokenClaims) -> str:
    return DASHBOARD_PATH if token.is_staff else PROFILE_PATH


def login_redirect(callback_url: str) -> RedirectTo:
    return RedirectTo(f"{LOGIN_PATH}?{urlencode({'callbackUrl': callback_url})}")


def _is_public(req: GuardRequest) -> bool:
    return req.path in PUBLIC_ROUTES or ITEM_DETAIL_PATTERN.match(req.path) is not None


def _auth_page(req: GuardRequest) -> Decision:
    return RedirectTo(landing_page(req.token)) if req.token else ALLOW


def _unauthenticated(req: GuardRequest) -> Decision:
    if req.method in NAVIGATION_METHODS:
        return login_redirect(req.url)
    return Reject()


def _librarian_only(req: GuardRequest) -> Decision:
    return ALLOW if req.token and req.token.is_staff else RedirectTo(PROFILE_PATH)


def _member_or_librarian(req: GuardRequest) -> Decision:
    return ALLOW if req.token else RedirectTo(LOGIN_PATH)


RULES: tuple[Rule, ...] = (
    Rule(RouteCategory.PUBLIC, _is_public, lambda req: ALLOW),
    Rule(RouteCategory.API, lambda req: req.path.startswith(API_PREFIX), lambda req: ALLOW),
    Rule(RouteCategory.AUTH_PAGE, lambda req: _under(req.path, AUTH_PAGES), _auth_page),
    Rule(RouteCategory.PROTECTED_DEFAULT, lambda req: req.token is None, _unauthenticated),
    Rule(
        RouteCategory.LIBRARIAN_ONLY,
        lambda req: _under(req.path, LIBRARIAN_ROUTES),
        _librarian_only,
    ),
    Rule(
        RouteCategory.MEMBER_OR_LIBRARIAN,
        lambda req: _under(req.path, MEMBER_ROUTES),
        _member_or_librarian,
    ),
)


def evaluate(
    path: str,
    token: TokenClaims | None,
    *,
    method: str = "GET",
    url: str | None = None,
) -> tuple[RouteCategory, Decision]:
    """Run :data:`RULES` in order and return the matching category and its decision."""
    req = GuardRequest(path=path, token=token, method=method.upper(), url=url or path)
    for rule in RULES:
        if rule.matches(req):
            return rule.category, rule.decide(req)
    return RouteCategory.PROTECTED_DEFAULT, ALLOW


def classify(
    path: str,
    token: TokenClaims | None,
    *,
    method: str = "GET",
    url: str | None = None,
) -> Decision:
    return evaluate(path, token, method=method, url=url)[1]
