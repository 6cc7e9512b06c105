from biblio.schemas.loan import LoanListResponse, LoanRequest, LoanResponse, LoanUpdate
from biblio.schemas.material import (
    CopyCreate,
    CopyResponse,
    CopyUpdate,
    MaterialCreate,
    MaterialDetailResponse,
    MaterialImportResponse,
    MaterialListResponse,
    MaterialResponse,
    MaterialUpdate,
    NextRegistrationNumberResponse,
)
from biblio.schemas.user import RoleUpdate, UserResponse

__all__ = [
    "CopyCreate",
    "CopyResponse",
    "CopyUpdate",
    "LoanListResponse",
    "LoanRequest",
    "LoanResponse",
    "LoanUpdate",
    "MaterialCreate",
    "MaterialDetailResponse",
    "MaterialImportResponse",
    "MaterialListResponse",
    "MaterialResponse",
    "MaterialUpdate",
    "NextRegistrationNumberResponse",
    "RoleUpdate",
    "UserResponse",
]
