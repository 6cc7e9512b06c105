import uuid
from datetime import datetime

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from biblio.auth.dependencies import get_current_user, get_optional_user, require_staff
from biblio.db.session import get_db
from biblio.models.loan import LoanStatus
from biblio.models.user import User
from biblio.schemas.loan import LoanListResponse, LoanRequest, LoanResponse, LoanUpdate
from biblio.services.loan import (
    approve_loan,
    change_due_date,
    get_loan,
    list_loans,
    reject_loan,
    request_loan,
    return_loan,
)

router = APIRouter(prefix="/api/v1/loans", tags=["loans"])

_AUTH_RESPONSES: dict = {
    401: {"description": "Missing, invalid, or expired token."},
}
_STAFF_RESPONSES: dict = {
    **_AUTH_RESPONSES,
    403: {"description": "Forbidden: librarian or admin role required."},
}
_TRANSITION_RESPONSES: dict = {
    400: {"description": "The loan is not in a state this operation accepts."},
    404: {"description": "Loan not found."},
    422: {"description": "The loan has no copy assigned."},
}


@router.post(
    "",
    response_model=LoanResponse,
    status_code=201,
    summary="Request a loan",
    description=(
        "Reserves the first available copy of a material and opens a loan in "
        "`requested` state. The material's `quantity` drops by one.\n\n"
        "Signed-in users borrow as themselves. Anonymous visitors must send "
        "`guest_name` and `guest_email`."
    ),
    responses={
        400: {"description": "No copies of the material are available."},
        404: {"description": "Material not found."},
        422: {"description": "Missing guest details or a due date in the past."},
    },
)
async def request_loan_endpoint(
    body: LoanRequest,
    current_user: User | None = Depends(get_optional_user),
    db: AsyncSession = Depends(get_db),
) -> LoanResponse:
    loan = await request_loan(
        db,
        material_id=body.material_id,
        current_user=current_user,
        due_date=body.due_date,
        guest_name=body.guest_name,
        guest_email=body.guest_email,
    )
    return LoanResponse.model_validate(loan)


@router.get(
    "",
    response_model=LoanListResponse,
    summary="List loans",
    description=(
        "Paginated loans, newest first.\n\n"
        "- **Members** see only their own loans.\n"
        "- **Librarians** and **Admins** see every loan and may filter by `user_id`.\n\n"
        "`q` matches the material title, the borrower's name or email, or the guest name."
    ),
    responses={**_AUTH_RESPONSES},
)
async def list_loans_endpoint(
    status: LoanStatus | None = Query(None, description="Only loans in this status."),
    q: str | None = Query(None, description="Free-text search."),
    user_id: uuid.UUID | None = Query(None, description="Borrower filter (staff only)."),
    start_date: datetime | None = Query(None, description="Loans requested at or after."),
    end_date: datetime | None = Query(None, description="Loans requested at or before."),
    page: int = Query(1, ge=1, description="Page number (1-based)."),
    page_size: int = Query(20, ge=1, le=100, description="Items per page (1-100)."),
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> LoanListResponse:
    loans, total, pages = await list_loans(
        db,
        current_user=current_user,
        status=status,
        q=q,
        user_id=user_id,
        start_date=start_date,
        end_date=end_date,
        page=page,
        page_size=page_size,
    )
    return LoanListResponse(
        items=[LoanResponse.model_validate(loan) for loan in loans],
        total=total,
        page=page,
        page_size=page_size,
        pages=pages,
    )


@router.get(
    "/{loan_id}",
    response_model=LoanResponse,
    summary="Get a loan",
    responses={
        **_AUTH_RESPONSES,
        403: {"description": "Members may only view their own loans."},
        404: {"description": "Loan not found."},
    },
)
async def get_loan_endpoint(
    loan_id: uuid.UUID,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> LoanResponse:
    loan = await get_loan(db, loan_id, current_user=current_user)
    return LoanResponse.model_validate(loan)


@router.post(
    "/{loan_id}/approve",
    response_model=LoanResponse,
    dependencies=[require_staff()],
    summary="Approve a loan request",
    description="`requested` → `active`. The copy stays reserved; quantity is unchanged.",
    responses={**_STAFF_RESPONSES, **_TRANSITION_RESPONSES},
)
async def approve_loan_endpoint(
    loan_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
) -> LoanResponse:
    loan = await approve_loan(db, loan_id=loan_id)
    return LoanResponse.model_validate(loan)


@router.post(
    "/{loan_id}/reject",
    response_model=LoanResponse,
    dependencies=[require_staff()],
    summary="Reject a loan request",
    description=(
        "`requested` → `rejected`. Sets `return_date`, frees the copy and gives the "
        "material its quantity back, all in one transaction."
    ),
    responses={**_STAFF_RESPONSES, **_TRANSITION_RESPONSES},
)
async def reject_loan_endpoint(
    loan_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
) -> LoanResponse:
    loan = await reject_loan(db, loan_id=loan_id)
    return LoanResponse.model_validate(loan)


@router.post(
    "/{loan_id}/return",
    response_model=LoanResponse,
    summary="Return a loan",
    description=(
        "`requested`/`active` → `returned`. Sets `return_date`, frees the copy and gives "
        "the material its quantity back, all in one transaction. Returning a loan twice "
        "fails with `400`.\n\n"
        "- **Members** may only return their **own** loans.\n"
        "- **Librarians** and **Admins** may return any loan."
    ),
    responses={
        **_AUTH_RESPONSES,
        403: {"description": "Members may only return their own loans."},
        **_TRANSITION_RESPONSES,
    },
)
async def return_loan_endpoint(
    loan_id: uuid.UUID,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> LoanResponse:
    loan = await return_loan(db, loan_id=loan_id, current_user=current_user)
    return LoanResponse.model_validate(loan)


@router.patch(
    "/{loan_id}",
    response_model=LoanResponse,
    dependencies=[require_staff()],
    summary="Change a loan's due date",
    description="Only `due_date` can change, and only while the loan is `requested` or `active`.",
    responses={
        **_STAFF_RESPONSES,
        400: {"description": "The loan is already closed."},
        404: {"description": "Loan not found."},
        422: {"description": "Due date in the past."},
    },
)
async def change_due_date_endpoint(
    loan_id: uuid.UUID,
    body: LoanUpdate,
    db: AsyncSession = Depends(get_db),
) -> LoanResponse:
    loan = await change_due_date(db, loan_id=loan_id, due_date=body.due_date)
    return LoanResponse.model_validate(loan)
