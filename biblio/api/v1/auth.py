import httpx
from fastapi import APIRouter, Depends, HTTPException, Query, Request
from fastapi.responses import JSONResponse, RedirectResponse
from sqlalchemy.ext.asyncio import AsyncSession

from biblio.auth.dependencies import get_current_user
from biblio.auth.guard import TokenClaims, landing_page
from biblio.auth.jwt import create_user_token
from biblio.auth.oauth import (
    SUPPORTED_PROVIDERS,
    generate_oauth_state,
    oauth,
    safe_callback_url,
    verify_oauth_state,
)
from biblio.core.config import settings
from biblio.db.session import get_db
from biblio.models.user import User
from biblio.schemas.user import UserResponse
from biblio.services.user import get_or_create_user

router = APIRouter(prefix="/api/v1/auth", tags=["auth"])

ALL_PROVIDERS = ("google", "github")

_AUTH_ERROR_RESPONSES: dict = {
    400: {"description": "Unsupported or unknown OAuth provider."},
    503: {"description": "OAuth provider is not configured on this server."},
}


def _check_provider(provider: str) -> None:
    if provider not in ALL_PROVIDERS:
        raise HTTPException(status_code=400, detail=f"Unsupported provider: {provider}")
    if provider not in SUPPORTED_PROVIDERS:
        raise HTTPException(
            status_code=503,
            detail=f"Provider '{provider}' is not configured on this server",
        )


def _redirect_uri(provider: str) -> str:
    return f"{settings.BACKEND_URL}/api/v1/auth/callback/{provider}"


async def _fetch_google_profile(http: httpx.AsyncClient, code: str) -> tuple[str, str, str]:
    token_resp = await http.post(
        "https://oauth2.googleapis.com/token",
        data={
            "code": code,
            "client_id": settings.GOOGLE_CLIENT_ID,
            "client_secret": settings.GOOGLE_CLIENT_SECRET,
            "redirect_uri": _redirect_uri("google"),
            "grant_type": "authorization_code",
        },
    )
    token_resp.raise_for_status()
    userinfo_resp = await http.get(
        "https://www.googleapis.com/oauth2/v3/userinfo",
        headers={"Authorization": f"Bearer {token_resp.json()['access_token']}"},
    )
    userinfo_resp.raise_for_status()
    userinfo = userinfo_resp.json()
    email: str = userinfo["email"]
    return email, userinfo.get("name") or email.split("@")[0], userinfo["sub"]


async def _fetch_github_profile(http: httpx.AsyncClient, code: str) -> tuple[str, str, str]:
    token_resp = await http.post(
        "https://github.com/login/oauth/access_token",
        data={
            "code": code,
            "client_id": settings.GITHUB_CLIENT_ID,
            "client_secret": settings.GITHUB_CLIENT_SECRET,
            "redirect_uri": _redirect_uri("github"),
        },
        headers={"Accept": "application/json"},
    )
    token_resp.raise_for_status()
    gh_headers = {
        "Authorization": f"token {token_resp.json().get('access_token', '')}",
        "Accept": "application/json",
    }
    profile_resp = await http.get("https://api.github.com/user", headers=gh_headers)
    profile_resp.raise_for_status()
    profile = profile_resp.json()

    name = profile.get("name") or profile.get("login") or "GitHub User"
    email = profile.get("email") or ""
    if not email:
        # Hidden primary address: fall back to the verified addresses list
        emails_resp = await http.get("https://api.github.com/user/emails", headers=gh_headers)
        emails_resp.raise_for_status()
        verified = [e for e in emails_resp.json() if e.get("verified")]
        primary = next((e["email"] for e in verified if e.get("primary")), None)
        if primary is None and verified:
            primary = verified[0]["email"]
        if primary is None:
            raise HTTPException(status_code=400, detail="No verified email found in GitHub account")
        email = primary
    return email, name, str(profile["id"])


@router.get(
    "/login/{provider}",
    summary="Start OAuth login",
    description=(
        "Redirects the browser to the provider's consent page. `callbackUrl` (set by the "
        "route guard when it bounced an anonymous visitor) is carried through the signed "
        "OAuth state and restored after login."
    ),
    status_code=302,
    responses={**_AUTH_ERROR_RESPONSES},
)
async def login(
    provider: str,
    request: Request,
    callback_url: str | None = Query(None, alias="callbackUrl"),
) -> None:
    _check_provider(provider)
    client = oauth.create_client(provider)
    state = generate_oauth_state(settings.SECRET_KEY, safe_callback_url(callback_url))
    return await client.authorize_redirect(request, _redirect_uri(provider), state=state)


@router.get(
    "/callback/{provider}",
    summary="OAuth callback: issues JWT",
    description=(
        "Exchanges the authorization code for a profile, creates the user on first login "
        "(as `member`), stores the JWT in the access-token cookie and redirects to the "
        "original `callbackUrl` or to the role landing page (`/dashboard` for staff, "
        "`/profile` otherwise)."
    ),
    responses={302: {"description": "Redirect with the access-token cookie set."}},
)
async def callback(
    provider: str,
    request: Request,
    db: AsyncSession = Depends(get_db),
) -> RedirectResponse:
    _check_provider(provider)

    callback_path = verify_oauth_state(
        request.query_params.get("state", ""),
        settings.SECRET_KEY,
        max_age=settings.OAUTH_STATE_MAX_AGE_SECONDS,
    )
    if callback_path is None:
        raise HTTPException(status_code=400, detail="Invalid or expired OAuth state")

    code = request.query_params.get("code")
    if not code:
        raise HTTPException(status_code=400, detail="Missing authorization code")

    async with httpx.AsyncClient() as http:
        if provider == "google":
            email, name, subject = await _fetch_google_profile(http, code)
        else:
            email, name, subject = await _fetch_github_profile(http, code)

    user = await get_or_create_user(db, email=email, name=name, provider=provider, subject=subject)
    token = create_user_token(user)
    target = callback_path or landing_page(TokenClaims(user_id=str(user.id), role=user.role))

    response = RedirectResponse(url=target, status_code=302)
    response.set_cookie(
        settings.ACCESS_TOKEN_COOKIE,
        token,
        max_age=settings.ACCESS_TOKEN_EXPIRE_MINUTES * 60,
        httponly=True,
        samesite="lax",
        secure=settings.is_production,
    )
    return response


@router.post("/logout", summary="Clear the access-token cookie")
async def logout() -> JSONResponse:
    response = JSONResponse({"detail": "Logged out"})
    response.delete_cookie(settings.ACCESS_TOKEN_COOKIE)
    return response


@router.get(
    "/me",
    response_model=UserResponse,
    summary="Get current user",
    responses={401: {"description": "Missing, invalid, or expired token."}},
)
async def me(current_user: User = Depends(get_current_user)) -> UserResponse:
    return UserResponse.model_validate(current_user)
