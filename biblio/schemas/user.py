import uuid
from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from biblio.models.user import UserRole

_EXAMPLE_USER_ID = "1b2c3d4e-5f6a-7b8c-9d0e-1f2a3b4c5d6e"


class UserResponse(BaseModel):
    id: uuid.UUID = Field(..., description="Unique user identifier (UUID v4).")
    email: str
    name: str
    role: UserRole = Field(
        ...,
        description="`admin` | `librarian` | `member`. New users start as `member`.",
    )
    oauth_provider: str | None = None
    created_at: datetime

    model_config = ConfigDict(
        from_attributes=True,
        json_schema_extra={
            "example": {
                "id": _EXAMPLE_USER_ID,
                "email": "alice@example.com",
                "name": "Alice Smith",
                "role": "member",
                "oauth_provider": "google",
                "created_at": "2024-01-10T08:00:00Z",
            }
        },
    )


class RoleUpdate(BaseModel):
    role: UserRole = Field(..., examples=["librarian"])

    model_config = ConfigDict(json_schema_extra={"example": {"role": "librarian"}})
