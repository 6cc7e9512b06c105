import uuid

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from biblio.auth.dependencies import require_role, require_staff
from biblio.db.session import get_db
from biblio.models.user import UserRole
from biblio.schemas.user import RoleUpdate, UserResponse
from biblio.services.user import list_users, update_user_role

router = APIRouter(prefix="/api/v1/users", tags=["users"])


@router.get(
    "",
    response_model=list[UserResponse],
    dependencies=[require_staff()],
    summary="List users",
    description="Every account ordered by creation date. **Requires:** librarian or admin.",
    responses={
        401: {"description": "Missing, invalid, or expired token."},
        403: {"description": "Forbidden: librarian or admin role required."},
    },
)
async def get_users(
    role: UserRole | None = Query(None, description="Only users with this role."),
    db: AsyncSession = Depends(get_db),
) -> list[UserResponse]:
    return [UserResponse.model_validate(u) for u in await list_users(db, role=role)]


@router.patch(
    "/{user_id}/role",
    response_model=UserResponse,
    dependencies=[require_role(UserRole.ADMIN)],
    summary="Change a user's role",
    description=(
        "Roles are assigned here and nowhere else; the loan workflow never changes them.\n\n"
        "**Requires:** admin."
    ),
    responses={
        401: {"description": "Missing, invalid, or expired token."},
        403: {"description": "Forbidden: admin role required."},
        404: {"description": "User not found."},
    },
)
async def patch_user_role(
    user_id: uuid.UUID,
    body: RoleUpdate,
    db: AsyncSession = Depends(get_db),
) -> UserResponse:
    return UserResponse.model_validate(await update_user_role(db, user_id, body.role))
