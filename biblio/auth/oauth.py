import base64
import hashlib
import hmac as _hmac
import secrets
import time
from urllib.parse import urlsplit

from authlib.integrations.starlette_client import OAuth

from biblio.core.config import settings

oauth = OAuth()
SUPPORTED_PROVIDERS: set[str] = set()

if settings.GOOGLE_CLIENT_ID and settings.GOOGLE_CLIENT_SECRET:
    oauth.register(
        "google",
        client_id=settings.GOOGLE_CLIENT_ID,
        client_secret=settings.GOOGLE_CLIENT_SECRET,
        server_metadata_url="https://accounts.google.com/.well-known/openid-configuration",
        client_kwargs={"scope": "openid email profile"},
    )
    SUPPORTED_PROVIDERS.add("google")

if settings.GITHUB_CLIENT_ID and settings.GITHUB_CLIENT_SECRET:
    oauth.register(
        "github",
        client_id=settings.GITHUB_CLIENT_ID,
        client_secret=settings.GITHUB_CLIENT_SECRET,
        access_token_url="https://github.com/login/oauth/access_token",
        authorize_url="https://github.com/login/oauth/authorize",
        api_base_url="https://api.github.com/",
        client_kwargs={"scope": "read:user user:email"},
    )
    SUPPORTED_PROVIDERS.add("github")


def _b64(data: str) -> str:
    return base64.urlsafe_b64encode(data.encode()).decode().rstrip("=")


def _unb64(data: str) -> str:
    padded = data + "=" * ((4 - len(data) % 4) % 4)
    return base64.urlsafe_b64decode(padded.encode()).decode()


def safe_callback_url(url: str | None) -> str:
    """
    Reduce *url* to a same-site path, or ``""`` if it points anywhere else.

    The guard hands over the full URL it intercepted; only its path and query
    survive so a crafted ``callbackUrl`` cannot bounce the user off-site.
    """
    if not url or any(ord(c) < 32 or ord(c) == 127 for c in url):
        return ""
    # Browsers read a backslash in a path as a slash.
    url = url.replace("\\", "/")
    if url.startswith("//"):
        return ""
    parts = urlsplit(url)
    allowed_hosts = {urlsplit(settings.BACKEND_URL).netloc, urlsplit(settings.FRONTEND_URL).netloc}
    if parts.netloc and parts.netloc not in allowed_hosts:
        return ""
    path = parts.path
    if not path.startswith("/") or path.startswith("//"):
        return ""
    return f"{path}?{parts.query}" if parts.query else path


# ---------------------------------------------------------------------------
# Stateless OAuth state
#
# The state token is HMAC-signed and carries the post-login callback path, so
# nothing has to survive in a server-side session across the provider
# round-trip.
# ---------------------------------------------------------------------------


def generate_oauth_state(secret_key: str, callback_url: str = "") -> str:
    """Return a URL-safe signed state: ``<nonce>.<timestamp>.<callback>.<hmac>``."""
    payload = f"{secrets.token_hex(16)}.{int(time.time())}.{_b64(callback_url)}"
    sig = _hmac.new(secret_key.encode(), payload.encode(), hashlib.sha256).hexdigest()
    return _b64(f"{payload}.{sig}")


def verify_oauth_state(state: str, secret_key: str, max_age: int = 600) -> str | None:
    """
    Return the callback path carried by *state* (possibly ``""``), or ``None``
    when the signature does not match or the state is older than *max_age*.
    """
    try:
        raw = _unb64(state)
        nonce, ts, callback, sig = raw.split(".")
        if int(time.time()) - int(ts) > max_age:
            return None
        payload = f"{nonce}.{ts}.{callback}"
        expected = _hmac.new(secret_key.encode(), payload.encode(), hashlib.sha256).hexdigest()
        if not _hmac.compare_digest(sig, expected):
            return None
        return _unb64(callback)
    except ValueError:
        return None
