import enum
import logging
import math
import uuid
from datetime import datetime, timedelta, timezone

from sqlalchemy import Select, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from biblio.core.config import settings
from biblio.core.errors import Forbidden, InvalidState, NotFound, ValidationFailure
from biblio.db.session import transaction
from biblio.models.loan import Loan, LoanStatus
from biblio.models.material import Copy, CopyStatus, Material
from biblio.models.user import User
from biblio.services.material import adjust_quantity

logger = logging.getLogger(__name__)


class LoanAction(str, enum.Enum):
    APPROVE = "approve"
    REJECT = "reject"
    RETURN = "return"


# action -> (legal source states, target state).  Terminal states appear in no
# source set, so nothing ever leaves them.
TRANSITIONS: dict[LoanAction, tuple[frozenset[LoanStatus], LoanStatus]] = {
    LoanAction.APPROVE: (frozenset({LoanStatus.REQUESTED}), LoanStatus.ACTIVE),
    LoanAction.REJECT: (frozenset({LoanStatus.REQUESTED}), LoanStatus.REJECTED),
    LoanAction.RETURN: (
        frozenset({LoanStatus.REQUESTED, LoanStatus.ACTIVE}),
        LoanStatus.RETURNED,
    ),
}


def ensure_transition(current: LoanStatus, action: LoanAction) -> LoanStatus:
    """Return the target status of *action* from *current* or raise InvalidState."""
    sources, target = TRANSITIONS[action]
    if current not in sources:
        raise InvalidState(f"Cannot {action.value} a loan that is {current.value}")
    return target


def _with_relations(stmt: Select) -> Select:
    return stmt.options(
        selectinload(Loan.material),
        selectinload(Loan.copy),
        selectinload(Loan.user),
    ).execution_options(populate_existing=True)


async def _lock_loan(db: AsyncSession, loan_id: uuid.UUID) -> Loan:
    # The status check must read the row under the same lock the write uses;
    # a concurrent transition blocks here until the other one commits.
    loan = await db.scalar(
        _with_relations(select(Loan).where(Loan.id == loan_id)).with_for_update(of=Loan)
    )
    if loan is None:
        raise NotFound("Loan not found")
    return loan


def _future_due_date(due_date: datetime, now: datetime) -> datetime:
    # Naive datetimes are taken as UTC.
    if due_date.tzinfo is None:
        due_date = due_date.replace(tzinfo=timezone.utc)
    if due_date <= now:
        raise ValidationFailure("Due date must be in the future")
    return due_date


async def request_loan(
    db: AsyncSession,
    *,
    material_id: uuid.UUID,
    current_user: User | None,
    due_date: datetime | None = None,
    guest_name: str | None = None,
    guest_email: str | None = None,
) -> Loan:
    """
    Open a loan in ``requested`` state.

    Reserves the lowest-numbered available copy of the material and takes it
    out of ``quantity`` in the same transaction.  The material row is locked
    so concurrent requests for one title serialize.
    """
    now = datetime.now(tz=timezone.utc)
    due_date = _future_due_date(due_date or now + timedelta(days=settings.LOAN_PERIOD_DAYS), now)
    if current_user is None and not (guest_name and guest_email):
        raise ValidationFailure("Guest name and email are required for anonymous requests")

    async with transaction(db, "request_loan"):
        material = await db.scalar(
            select(Material)
            .where(Material.id == material_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        if material is None:
            raise NotFound("Material not found")

        copy = await db.scalar(
            select(Copy)
            .where(Copy.material_id == material_id, Copy.status == CopyStatus.AVAILABLE)
            .order_by(Copy.registration_number)
            .limit(1)
            .with_for_update()
        )
        if copy is None or material.quantity < 1:
            raise InvalidState("No copies of this material are available")

        copy.status = CopyStatus.ON_LOAN
        await adjust_quantity(db, material_id, -1)

        loan = Loan(
            material_id=material_id,
            copy_id=copy.id,
            user_id=current_user.id if current_user else None,
            guest_name=None if current_user else guest_name,
            guest_email=None if current_user else guest_email,
            loan_date=now,
            due_date=due_date,
            status=LoanStatus.REQUESTED,
        )
        db.add(loan)

    logger.info(
        "Loan %s requested for material %s (copy %s)",
        loan.id,
        material_id,
        copy.registration_number,
    )
    return await get_loan(db, loan.id)


async def approve_loan(db: AsyncSession, *, loan_id: uuid.UUID) -> Loan:
    """Move a requested loan to ``active``.  The copy was reserved at request time."""
    async with transaction(db, "approve_loan"):
        loan = await _lock_loan(db, loan_id)
        target = ensure_transition(loan.status, LoanAction.APPROVE)
        if loan.copy_id is None:
            raise ValidationFailure("Loan has no copy assigned")
        loan.status = target

    logger.info("Loan %s: requested -> active", loan.id)
    return loan


async def _close_loan(db: AsyncSession, loan: Loan, action: LoanAction) -> Loan:
    """Shared body of reject and return; runs inside the caller's transaction."""
    previous = loan.status
    target = ensure_transition(previous, action)
    if loan.copy_id is None or loan.copy is None:
        raise ValidationFailure("Loan has no copy assigned")

    loan.status = target
    loan.return_date = datetime.now(tz=timezone.utc)
    loan.copy.status = CopyStatus.AVAILABLE
    await adjust_quantity(db, loan.material_id, 1)

    logger.info("Loan %s: %s -> %s", loan.id, previous.value, target.value)
    return loan


async def reject_loan(db: AsyncSession, *, loan_id: uuid.UUID) -> Loan:
    async with transaction(db, "reject_loan"):
        loan = await _lock_loan(db, loan_id)
        await _close_loan(db, loan, LoanAction.REJECT)
    return loan


async def return_loan(db: AsyncSession, *, loan_id: uuid.UUID, current_user: User) -> Loan:
    """
    Close a loan and put its copy back on the shelf.

    - Staff can return any loan.
    - A member can only return their own loan.
    - Returning twice fails with InvalidState; quantity is incremented once.
    """
    async with transaction(db, "return_loan"):
        loan = await _lock_loan(db, loan_id)
        if not current_user.role.is_staff and loan.user_id != current_user.id:
            raise Forbidden("Cannot return another user's loan")
        await _close_loan(db, loan, LoanAction.RETURN)
    return loan


async def change_due_date(db: AsyncSession, *, loan_id: uuid.UUID, due_date: datetime) -> Loan:
    """Move the due date of a loan that is still ``requested`` or ``active``."""
    due_date = _future_due_date(due_date, datetime.now(tz=timezone.utc))
    async with transaction(db, "change_due_date"):
        loan = await _lock_loan(db, loan_id)
        if loan.status.is_terminal:
            raise InvalidState(
                f"Cannot change the due date of a loan that is {loan.status.value}"
            )
        previous, loan.due_date = loan.due_date, due_date

    logger.info("Loan %s due date: %s -> %s", loan.id, previous.isoformat(), due_date.isoformat())
    return loan


async def get_loan(
    db: AsyncSession, loan_id: uuid.UUID, *, current_user: User | None = None
) -> Loan:
    loan = await db.scalar(_with_relations(select(Loan).where(Loan.id == loan_id)))
    if loan is None:
        raise NotFound("Loan not found")
    if (
        current_user is not None
        and not current_user.role.is_staff
        and loan.user_id != current_user.id
    ):
        raise Forbidden("Cannot view another user's loan")
    return loan


async def list_loans(
    db: AsyncSession,
    *,
    current_user: User,
    status: LoanStatus | None = None,
    q: str | None = None,
    user_id: uuid.UUID | None = None,
    start_date: datetime | None = None,
    end_date: datetime | None = None,
    page: int = 1,
    page_size: int = 20,
) -> tuple[list[Loan], int, int]:
    """
    List loans, newest first.

    - MEMBER sees only their own loans; ``user_id`` is ignored for them.
    - Staff see all loans and may filter by borrower.

    Returns ``(loans, total, pages)``.
    """
    base = select(Loan)
    if not current_user.role.is_staff:
        base = base.where(Loan.user_id == current_user.id)
    elif user_id is not None:
        base = base.where(Loan.user_id == user_id)

    if status is not None:
        base = base.where(Loan.status == status)
    if q:
        pattern = f"%{q}%"
        base = (
            base.join(Material, Loan.material_id == Material.id)
            .outerjoin(User, Loan.user_id == User.id)
            .where(
                or_(
                    Material.title.ilike(pattern),
                    User.name.ilike(pattern),
                    User.email.ilike(pattern),
                    Loan.guest_name.ilike(pattern),
                )
            )
        )
    if start_date is not None:
        base = base.where(Loan.loan_date >= start_date)
    if end_date is not None:
        base = base.where(Loan.loan_date <= end_date)

    total: int = (await db.scalar(select(func.count()).select_from(base.subquery()))) or 0

    rows = await db.scalars(
        _with_relations(
            base.order_by(Loan.loan_date.desc()).offset((page - 1) * page_size).limit(page_size)
        )
    )
    pages = math.ceil(total / page_size) if page_size else 1
    return list(rows.all()), total, pages
