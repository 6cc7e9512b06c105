import logging
import uuid

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from biblio.core.errors import NotFound
from biblio.db.session import transaction
from biblio.models.user import User, UserRole

logger = logging.getLogger(__name__)


async def get_or_create_user(
    db: AsyncSession,
    *,
    email: str,
    name: str,
    provider: str,
    subject: str,
) -> User:
    """
    The account behind an OAuth identity, created as ``member`` on first login.

    Lookup is by ``(provider, subject)`` and then by email, so accounts the
    seed script created without a provider are linked on their first login.
    Roles are never touched here.
    """
    async with transaction(db, "get_or_create_user"):
        user = await db.scalar(
            select(User).where(User.oauth_provider == provider, User.oauth_subject == subject)
        )
        if user is None:
            user = await db.scalar(select(User).where(User.email == email))
            if user is not None and user.oauth_provider is None:
                user.oauth_provider, user.oauth_subject = provider, subject
        if user is None:
            user = User(
                email=email,
                name=name,
                role=UserRole.MEMBER,
                oauth_provider=provider,
                oauth_subject=subject,
            )
            db.add(user)
            logger.info("New %s account for %s", provider, email)
    await db.refresh(user)
    return user


async def list_users(db: AsyncSession, *, role: UserRole | None = None) -> list[User]:
    stmt = select(User).order_by(User.created_at)
    if role is not None:
        stmt = stmt.where(User.role == role)
    return list((await db.scalars(stmt)).all())


async def update_user_role(db: AsyncSession, user_id: uuid.UUID, role: UserRole) -> User:
    async with transaction(db, "update_user_role"):
        user = await db.get(User, user_id)
        if user is None:
            raise NotFound("User not found")
        previous, user.role = user.role, role
    logger.info("User %s role: %s -> %s", user.id, previous.value, role.value)
    await db.refresh(user)
    return user
