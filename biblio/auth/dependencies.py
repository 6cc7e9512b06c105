import uuid

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from biblio.auth.jwt import JWTError, decode_token
from biblio.core.config import settings
from biblio.core.errors import Forbidden, Unauthorized
from biblio.db.session import get_db
from biblio.models.user import STAFF_ROLES, User, UserRole

security = HTTPBearer(auto_error=False)


async def get_optional_user(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Depends(security),
    db: AsyncSession = Depends(get_db),
) -> User | None:
    """
    The signed-in user, or ``None`` for an anonymous caller.

    An unusable token counts as no token at all, as it does for the route guard.
    """
    token = credentials.credentials if credentials else request.cookies.get(
        settings.ACCESS_TOKEN_COOKIE
    )
    if not token:
        return None
    try:
        payload = decode_token(token)
        user_id = uuid.UUID(payload["sub"])
    except (JWTError, KeyError, ValueError):
        return None
    return await db.get(User, user_id)


async def get_current_user(user: User | None = Depends(get_optional_user)) -> User:
    if user is None:
        raise Unauthorized("Not authenticated")
    return user


def require_role(*roles: UserRole) -> Depends:
    async def _dep(current_user: User = Depends(get_current_user)) -> User:
        if current_user.role not in roles:
            raise Forbidden("Insufficient permissions")
        return current_user

    return Depends(_dep)


def require_staff() -> Depends:
    return require_role(*STAFF_ROLES)
