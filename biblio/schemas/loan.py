import uuid
from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from biblio.models.loan import LoanStatus

_EXAMPLE_MATERIAL_ID = "3fa85f64-5717-4562-b3fc-2c963f66afa6"
_EXAMPLE_LOAN_ID = "8a1bc234-9876-4def-b3fc-1a2b3c4d5e6f"
_EXAMPLE_USER_ID = "1b2c3d4e-5f6a-7b8c-9d0e-1f2a3b4c5d6e"
_EXAMPLE_COPY_ID = "5c6d7e8f-1a2b-4c3d-9e8f-0a1b2c3d4e5f"

_EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"


class LoanRequest(BaseModel):
    material_id: uuid.UUID = Field(
        ...,
        description="UUID of the material to borrow. One of its available copies is reserved.",
        examples=[_EXAMPLE_MATERIAL_ID],
    )
    due_date: datetime | None = Field(
        None,
        description="When the copy must be back. Defaults to `LOAN_PERIOD_DAYS` from now.",
    )
    guest_name: str | None = Field(
        None,
        max_length=255,
        description="Borrower name. Required when the request is made without a token.",
    )
    guest_email: str | None = Field(
        None,
        max_length=255,
        pattern=_EMAIL_PATTERN,
        description="Borrower email. Required when the request is made without a token.",
    )

    model_config = ConfigDict(
        json_schema_extra={
            "example": {"material_id": _EXAMPLE_MATERIAL_ID, "due_date": "2024-02-03T00:00:00Z"}
        }
    )


class LoanUpdate(BaseModel):
    due_date: datetime = Field(
        ...,
        description="New due date. Must be in the future; naive values are read as UTC.",
        examples=["2024-02-17T09:00:00Z"],
    )

    model_config = ConfigDict(extra="forbid")


class LoanUserSummary(BaseModel):
    id: uuid.UUID
    name: str
    email: str

    model_config = ConfigDict(from_attributes=True)


class LoanMaterialSummary(BaseModel):
    id: uuid.UUID
    title: str
    author: str
    isbn: str | None = None

    model_config = ConfigDict(from_attributes=True)


class LoanCopySummary(BaseModel):
    id: uuid.UUID
    registration_number: str

    model_config = ConfigDict(from_attributes=True)


class LoanResponse(BaseModel):
    id: uuid.UUID = Field(..., description="Unique loan identifier (UUID v4).")
    status: LoanStatus = Field(
        ...,
        description=(
            "`requested`: waiting for a librarian. `active`: copy handed out. "
            "`returned` or `rejected`: closed."
        ),
    )
    loan_date: datetime = Field(..., description="UTC timestamp when the loan was requested.")
    due_date: datetime = Field(..., description="UTC timestamp when the copy is due back.")
    return_date: datetime | None = Field(
        None,
        description="UTC timestamp when the loan was closed. `null` while requested or active.",
    )
    user: LoanUserSummary | None = Field(None, description="Registered borrower, if any.")
    guest_name: str | None = Field(None, description="Guest borrower name.")
    guest_email: str | None = Field(None, description="Guest borrower email.")
    material: LoanMaterialSummary
    copy_: LoanCopySummary | None = Field(None, alias="copy", description="Reserved copy.")

    model_config = ConfigDict(
        from_attributes=True,
        populate_by_name=True,
        json_schema_extra={
            "example": {
                "id": _EXAMPLE_LOAN_ID,
                "status": "active",
                "loan_date": "2024-01-20T09:00:00Z",
                "due_date": "2024-02-03T09:00:00Z",
                "return_date": None,
                "user": {"id": _EXAMPLE_USER_ID, "name": "Alice", "email": "alice@example.com"},
                "guest_name": None,
                "guest_email": None,
                "material": {
                    "id": _EXAMPLE_MATERIAL_ID,
                    "title": "Dune",
                    "author": "Frank Herbert",
                    "isbn": "9780441013593",
                },
                "copy": {"id": _EXAMPLE_COPY_ID, "registration_number": "BK00042"},
            }
        },
    )


class LoanListResponse(BaseModel):
    items: list[LoanResponse] = Field(..., description="Loans on the current page.")
    total: int = Field(..., description="Total number of loans matching the query.")
    page: int = Field(..., description="Current page (1-based).")
    page_size: int = Field(..., description="Items per page.")
    pages: int = Field(..., description="Total number of pages.")
