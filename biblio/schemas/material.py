import uuid
from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from biblio.models.material import CopyStatus

_EXAMPLE_MATERIAL_ID = "3fa85f64-5717-4562-b3fc-2c963f66afa6"


class CopyCreate(BaseModel):
    registration_number: str = Field(
        ...,
        min_length=1,
        max_length=50,
        description="Unique inventory number, e.g. `BK00042`.",
        examples=["BK00042"],
    )
    notes: str | None = Field(None, description="Free-form notes about this copy.")


class MaterialCreate(BaseModel):
    title: str = Field(..., min_length=1, max_length=500, examples=["Dune"])
    author: str = Field(..., min_length=1, max_length=255, examples=["Frank Herbert"])
    isbn: str | None = Field(None, max_length=20, examples=["9780441013593"])
    description: str | None = None
    copies: list[CopyCreate] = Field(
        default_factory=list,
        description="Physical copies to register. `quantity` starts at the number of copies.",
    )


class MaterialUpdate(BaseModel):
    """Partial update: only the fields present in the body change."""

    title: str | None = Field(None, min_length=1, max_length=500)
    author: str | None = Field(None, min_length=1, max_length=255)
    isbn: str | None = Field(None, max_length=20)
    description: str | None = None


class CopyUpdate(BaseModel):
    status: CopyStatus | None = Field(
        None,
        description=(
            "`available`, `maintenance` or `lost`. Copies on loan change only through "
            "their loan."
        ),
        examples=["maintenance"],
    )
    notes: str | None = None


class CopyResponse(BaseModel):
    id: uuid.UUID
    registration_number: str
    status: CopyStatus
    notes: str | None = None

    model_config = ConfigDict(from_attributes=True)


class MaterialResponse(BaseModel):
    id: uuid.UUID = Field(..., description="Unique material identifier (UUID v4).")
    title: str
    author: str
    isbn: str | None = None
    description: str | None = None
    quantity: int = Field(..., description="Copies currently available for loan.")
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(
        from_attributes=True,
        json_schema_extra={
            "example": {
                "id": _EXAMPLE_MATERIAL_ID,
                "title": "Dune",
                "author": "Frank Herbert",
                "isbn": "9780441013593",
                "description": None,
                "quantity": 2,
                "created_at": "2024-01-15T10:30:00Z",
                "updated_at": "2024-01-15T10:30:00Z",
            }
        },
    )


class MaterialDetailResponse(MaterialResponse):
    copies: list[CopyResponse] = Field(default_factory=list)


class MaterialListResponse(BaseModel):
    items: list[MaterialResponse]
    total: int
    page: int
    page_size: int
    pages: int


class NextRegistrationNumberResponse(BaseModel):
    next_registration_number: str = Field(..., examples=["BK00043"])


class RejectedRow(BaseModel):
    line: int = Field(..., description="Line number in the uploaded file, header is line 1.")
    reason: str


class MaterialImportResponse(BaseModel):
    created: int = Field(..., description="Materials created from the file.")
    rejected: list[RejectedRow] = Field(default_factory=list)
