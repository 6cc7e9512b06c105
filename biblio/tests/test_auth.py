"""Auth endpoint and OAuth helper tests — no DB required."""

import base64

import pytest
from httpx import AsyncClient

from biblio.auth import oauth as oauth_module
from biblio.auth.jwt import create_access_token, decode_token
from biblio.auth.oauth import generate_oauth_state, safe_callback_url, verify_oauth_state
from biblio.core.config import settings


async def test_me_unauthenticated(anon_client: AsyncClient) -> None:
    resp = await anon_client.get("/api/v1/auth/me")
    assert resp.status_code == 401


async def test_me_invalid_token(anon_client: AsyncClient) -> None:
    resp = await anon_client.get(
        "/api/v1/auth/me", headers={"Authorization": "Bearer not.a.valid.token"}
    )
    assert resp.status_code == 401
    assert resp.json()["code"] == "unauthorized"


async def test_login_unsupported_provider(anon_client: AsyncClient) -> None:
    resp = await anon_client.get("/api/v1/auth/login/twitter", follow_redirects=False)
    assert resp.status_code == 400
    assert "Unsupported provider" in resp.json()["detail"]


async def test_login_unconfigured_provider(anon_client: AsyncClient) -> None:
    """When credentials are empty strings the provider won't be in SUPPORTED_PROVIDERS."""
    original = oauth_module.SUPPORTED_PROVIDERS.copy()
    oauth_module.SUPPORTED_PROVIDERS.discard("google")
    try:
        resp = await anon_client.get("/api/v1/auth/login/google", follow_redirects=False)
        assert resp.status_code == 503
        assert "not configured" in resp.json()["detail"]
    finally:
        oauth_module.SUPPORTED_PROVIDERS.update(original)


async def test_callback_rejects_bad_state(anon_client: AsyncClient) -> None:
    original = oauth_module.SUPPORTED_PROVIDERS.copy()
    oauth_module.SUPPORTED_PROVIDERS.add("github")
    try:
        resp = await anon_client.get(
            "/api/v1/auth/callback/github",
            params={"state": "forged", "code": "abc"},
            follow_redirects=False,
        )
        assert resp.status_code == 400
        assert "state" in resp.json()["detail"]
    finally:
        oauth_module.SUPPORTED_PROVIDERS.clear()
        oauth_module.SUPPORTED_PROVIDERS.update(original)


async def test_logout_clears_cookie(anon_client: AsyncClient) -> None:
    resp = await anon_client.post("/api/v1/auth/logout")
    assert resp.status_code == 200
    assert f"{settings.ACCESS_TOKEN_COOKIE}=" in resp.headers["set-cookie"]


async def test_login_page_lists_providers(anon_client: AsyncClient) -> None:
    resp = await anon_client.get("/login")
    assert resp.status_code == 200
    assert set(resp.json()["providers"]) == oauth_module.SUPPORTED_PROVIDERS


# ---------------------------------------------------------------------------
# Tokens
# ---------------------------------------------------------------------------


def test_access_token_round_trip_keeps_role():
    token = create_access_token({"sub": "abc", "role": "member"})
    payload = decode_token(token)
    assert payload["sub"] == "abc"
    assert payload["role"] == "member"
    assert "exp" in payload


# ---------------------------------------------------------------------------
# OAuth state and callback URLs
# ---------------------------------------------------------------------------


def test_state_carries_callback():
    state = generate_oauth_state("secret", "/dashboard?tab=loans")
    assert verify_oauth_state(state, "secret") == "/dashboard?tab=loans"


def test_state_without_callback():
    assert verify_oauth_state(generate_oauth_state("secret"), "secret") == ""


def test_state_wrong_secret():
    assert verify_oauth_state(generate_oauth_state("secret", "/profile"), "other") is None


def test_state_expired():
    state = generate_oauth_state("secret", "/profile")
    assert verify_oauth_state(state, "secret", max_age=-1) is None


@pytest.mark.parametrize("state", ["", "garbage", base64.urlsafe_b64encode(b"a.b.c").decode()])
def test_state_malformed(state):
    assert verify_oauth_state(state, "secret") is None


@pytest.mark.parametrize(
    "url, expected",
    [
        (None, ""),
        ("", ""),
        ("/profile", "/profile"),
        ("/dashboard?tab=loans", "/dashboard?tab=loans"),
        (f"{settings.BACKEND_URL}/dashboard", "/dashboard"),
        ("https://evil.example.com/dashboard", ""),
        ("//evil.example.com/x", ""),
        ("javascript:alert(1)", ""),
        ("/\\evil.example.com/x", ""),
        ("/\\/evil.example.com", ""),
        ("///evil.example.com", ""),
        ("/profile\r\nSet-Cookie: x=1", ""),
        (f"{settings.BACKEND_URL}/\\evil.example.com", ""),
    ],
)
def test_safe_callback_url(url, expected):
    assert safe_callback_url(url) == expected


def test_state_carries_only_the_sanitized_callback():
    state = generate_oauth_state("secret", safe_callback_url("/\\evil.example.com/x"))
    assert verify_oauth_state(state, "secret") == ""

    state = generate_oauth_state("secret", safe_callback_url("/loans?status=active"))
    assert verify_oauth_state(state, "secret") == "/loans?status=active"
