from datetime import datetime, timedelta, timezone

from jose import JWTError, jwt

from biblio.core.config import settings
from biblio.models.user import User

ALGORITHM = "HS256"


def create_access_token(data: dict, expires_delta: timedelta | None = None) -> str:
    expire = datetime.now(tz=timezone.utc) + (
        expires_delta or timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)
    )
    return jwt.encode({**data, "exp": expire}, settings.SECRET_KEY, algorithm=ALGORITHM)


def create_user_token(user: User, expires_delta: timedelta | None = None) -> str:
    """Token carrying the claims the route guard needs: user id and role."""
    return create_access_token({"sub": str(user.id), "role": user.role.value}, expires_delta)


def decode_token(token: str) -> dict:
    """Decode and verify *token*; raises ``JWTError`` when invalid or expired."""
    return jwt.decode(token, settings.SECRET_KEY, algorithms=[ALGORITHM])


__all__ = ["ALGORITHM", "JWTError", "create_access_token", "create_user_token", "decode_token"]
