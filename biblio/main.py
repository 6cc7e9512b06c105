import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.openapi.utils import get_openapi
from fastapi.responses import JSONResponse
from starlette.middleware.sessions import SessionMiddleware

from biblio import __version__
from biblio.api.pages import router as pages_router
from biblio.api.v1.auth import router as auth_router
from biblio.api.v1.export import import_router
from biblio.api.v1.export import router as export_router
from biblio.api.v1.health import router as health_router
from biblio.api.v1.loans import router as loans_router
from biblio.api.v1.materials import router as materials_router
from biblio.api.v1.users import router as users_router
from biblio.auth.middleware import GuardMiddleware
from biblio.core.config import settings
from biblio.core.errors import LibraryError
from biblio.core.logging import setup_logging

logger = logging.getLogger(__name__)

_TAG_METADATA: list[dict[str, Any]] = [
    {"name": "health", "description": "Liveness check. No authentication required."},
    {
        "name": "auth",
        "description": (
            "OAuth 2.0 login via **Google** or **GitHub**. The callback stores a JWT in the "
            "`access_token` cookie; API clients may send it as `Authorization: Bearer <token>`."
        ),
    },
    {
        "name": "materials",
        "description": (
            "Catalogue and physical copies.\n\n"
            "- **GET** endpoints are **public**.\n"
            "- Cataloguing and copy management require **Librarian** or **Admin**."
        ),
    },
    {
        "name": "loans",
        "description": (
            "Loan lifecycle: `requested` → `active` → `returned`, or `requested` → "
            "`rejected`.\n\n"
            "Every transition that frees a copy also restores the material's `quantity` in "
            "the same transaction. `returned` and `rejected` are final."
        ),
    },
    {"name": "users", "description": "Account listing (staff) and role changes (admin)."},
    {
        "name": "export",
        "description": "CSV export of loans and materials, and CSV import of materials (staff).",
    },
    {"name": "pages", "description": "Landing pages used by the route guard."},
]

_APP_DESCRIPTION = """\
Library management service: catalogue, copies, and the loan workflow.

## Roles

| Role | Capabilities |
|------|--------------|
| **Admin** | Everything a librarian can do, plus role changes |
| **Librarian** | Catalogue materials and copies; approve, reject, return and reschedule any loan |
| **Member** | Browse; request loans; return **own** loans |

## Route guard

Every request passes through the route guard first. Public pages and `/api/*` pass
through; other pages redirect anonymous visitors to `/login?callbackUrl=...` and
members away from staff pages to `/profile`.
"""


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    setup_logging()
    yield


app = FastAPI(
    title="Biblio",
    description=_APP_DESCRIPTION,
    version=__version__,
    openapi_tags=_TAG_METADATA,
    license_info={"name": "MIT"},
    lifespan=lifespan,
)

# Starlette runs the last-added middleware first: CORS, then session, then guard.
app.add_middleware(GuardMiddleware)
# Authlib keeps its redirect bookkeeping in the session cookie.
app.add_middleware(
    SessionMiddleware,
    secret_key=settings.SECRET_KEY,
    same_site="lax",
    https_only=settings.is_production,
)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_origin_regex=settings.cors_origin_regex,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(health_router)
app.include_router(pages_router)
app.include_router(auth_router)
app.include_router(materials_router)
app.include_router(loans_router)
app.include_router(users_router)
app.include_router(export_router)
app.include_router(import_router)


@app.exception_handler(LibraryError)
async def library_error_handler(request: Request, exc: LibraryError) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.detail, "code": exc.code},
    )


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=500,
        content={"detail": "Internal server error", "code": "error"},
    )


def _custom_openapi() -> dict[str, Any]:
    if app.openapi_schema:
        return app.openapi_schema  # type: ignore[return-value]

    schema = get_openapi(
        title=app.title,
        version=app.version,
        description=app.description,
        tags=app.openapi_tags,
        license_info=app.license_info,
        routes=app.routes,
    )
    schema.setdefault("components", {}).setdefault("securitySchemes", {})["BearerAuth"] = {
        "type": "http",
        "scheme": "bearer",
        "bearerFormat": "JWT",
        "description": "JWT issued by `GET /api/v1/auth/callback/{provider}`.",
    }

    app.openapi_schema = schema  # type: ignore[assignment]
    return schema  # type: ignore[return-value]


app.openapi = _custom_openapi  # type: ignore[method-assign]
