from dataclasses import dataclass, field
from datetime import datetime, timezone

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from biblio.models.loan import Loan, LoanStatus
from biblio.models.material import Material
from biblio.models.user import User


@dataclass
class DashboardStats:
    total_materials: int
    total_users: int
    total_loans: int
    requested_loans: int
    active_loans: int
    overdue_loans: int
    recent_loans: list[Loan] = field(default_factory=list)


async def _count(db: AsyncSession, stmt) -> int:
    return (await db.scalar(select(func.count()).select_from(stmt.subquery()))) or 0


async def get_dashboard_stats(db: AsyncSession, *, recent: int = 5) -> DashboardStats:
    now = datetime.now(tz=timezone.utc)
    recent_loans = await db.scalars(
        select(Loan)
        .options(selectinload(Loan.material), selectinload(Loan.copy), selectinload(Loan.user))
        .order_by(Loan.loan_date.desc())
        .limit(recent)
    )
    return DashboardStats(
        total_materials=await _count(db, select(Material.id)),
        total_users=await _count(db, select(User.id)),
        total_loans=await _count(db, select(Loan.id)),
        requested_loans=await _count(
            db, select(Loan.id).where(Loan.status == LoanStatus.REQUESTED)
        ),
        active_loans=await _count(db, select(Loan.id).where(Loan.status == LoanStatus.ACTIVE)),
        overdue_loans=await _count(
            db,
            select(Loan.id).where(Loan.status == LoanStatus.ACTIVE, Loan.due_date < now),
        ),
        recent_loans=list(recent_loans.all()),
    )
