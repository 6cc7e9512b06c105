from biblio.models.loan import Loan, LoanStatus
from biblio.models.material import Copy, CopyStatus, Material
from biblio.models.user import STAFF_ROLES, User, UserRole

__all__ = [
    "Copy",
    "CopyStatus",
    "Loan",
    "LoanStatus",
    "Material",
    "STAFF_ROLES",
    "User",
    "UserRole",
]
