"""
Landing pages the route guard redirects to.

They return JSON; rendering is left to the frontend.  The guard has already
gated them by role, and each handler still checks the session itself.
"""

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from biblio.api.v1.auth import ALL_PROVIDERS
from biblio.auth.dependencies import get_current_user, require_staff
from biblio.auth.oauth import SUPPORTED_PROVIDERS
from biblio.db.session import get_db
from biblio.models.user import User
from biblio.schemas.loan import LoanResponse
from biblio.schemas.user import UserResponse
from biblio.services.dashboard import get_dashboard_stats
from biblio.services.loan import list_loans

router = APIRouter(tags=["pages"])


class LoginPage(BaseModel):
    providers: list[str]
    login_url: str


class DashboardPage(BaseModel):
    total_materials: int
    total_users: int
    total_loans: int
    requested_loans: int
    active_loans: int
    overdue_loans: int
    recent_loans: list[LoanResponse]


class ProfilePage(BaseModel):
    user: UserResponse
    loans: list[LoanResponse]


def _login_page() -> LoginPage:
    return LoginPage(
        providers=[p for p in ALL_PROVIDERS if p in SUPPORTED_PROVIDERS],
        login_url="/api/v1/auth/login/{provider}",
    )


@router.get("/login", response_model=LoginPage, summary="Available login providers")
async def login_page() -> LoginPage:
    return _login_page()


@router.get("/register", response_model=LoginPage, summary="Available sign-up providers")
async def register_page() -> LoginPage:
    # First OAuth login creates the account, so sign-up and login share providers.
    return _login_page()


@router.get(
    "/dashboard",
    response_model=DashboardPage,
    dependencies=[require_staff()],
    summary="Staff dashboard",
)
async def dashboard_page(
    db: AsyncSession = Depends(get_db),
) -> DashboardPage:
    stats = await get_dashboard_stats(db)
    return DashboardPage(
        total_materials=stats.total_materials,
        total_users=stats.total_users,
        total_loans=stats.total_loans,
        requested_loans=stats.requested_loans,
        active_loans=stats.active_loans,
        overdue_loans=stats.overdue_loans,
        recent_loans=[LoanResponse.model_validate(loan) for loan in stats.recent_loans],
    )


@router.get("/profile", response_model=ProfilePage, summary="Signed-in user and their loans")
async def profile_page(
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> ProfilePage:
    # Staff get their own borrowing history here too, not every loan.
    loans, _, _ = await list_loans(db, current_user=current_user, user_id=current_user.id)
    return ProfilePage(
        user=UserResponse.model_validate(current_user),
        loans=[LoanResponse.model_validate(loan) for loan in loans],
    )
