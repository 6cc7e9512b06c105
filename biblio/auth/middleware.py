import logging

from fastapi import Request
from fastapi.responses import JSONResponse, RedirectResponse
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.responses import Response

from biblio.auth.guard import RedirectTo, Reject, TokenClaims, evaluate
from biblio.auth.jwt import JWTError, decode_token
from biblio.core.config import settings

logger = logging.getLogger(__name__)


def read_token(request: Request) -> TokenClaims | None:
    """Verified claims from the bearer header or the access-token cookie, if any."""
    raw: str | None = None
    header = request.headers.get("authorization", "")
    scheme, _, credentials = header.partition(" ")
    if scheme.lower() == "bearer" and credentials:
        raw = credentials
    else:
        raw = request.cookies.get(settings.ACCESS_TOKEN_COOKIE)
    if not raw:
        return None
    try:
        payload = decode_token(raw)
    except JWTError:
        return None
    return TokenClaims.from_payload(payload)


class GuardMiddleware(BaseHTTPMiddleware):
    """Applies :func:`biblio.auth.guard.evaluate` to every request."""

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        token = read_token(request)
        category, decision = evaluate(
            request.url.path,
            token,
            method=request.method,
            url=str(request.url),
        )
        if isinstance(decision, RedirectTo):
            logger.debug(
                "Guard: %s %s (%s) -> redirect %s",
                request.method,
                request.url.path,
                category.value,
                decision.location,
            )
            return RedirectResponse(decision.location, status_code=307)
        if isinstance(decision, Reject):
            logger.debug(
                "Guard: %s %s (%s) -> %d",
                request.method,
                request.url.path,
                category.value,
                decision.status_code,
            )
            return JSONResponse(
                status_code=decision.status_code,
                content={"detail": decision.detail, "code": "unauthorized"},
            )
        return await call_next(request)
