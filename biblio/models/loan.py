import enum
import uuid
from datetime import datetime

from sqlalchemy import CheckConstraint, ForeignKey, Index, String, text
from sqlalchemy import Enum as SAEnum
from sqlalchemy.dialects.postgresql import TIMESTAMP, UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from biblio.db.base import Base
from biblio.models.material import Copy, Material
from biblio.models.user import User


class LoanStatus(str, enum.Enum):
    REQUESTED = "requested"
    ACTIVE = "active"
    RETURNED = "returned"
    REJECTED = "rejected"

    @property
    def is_terminal(self) -> bool:
        return self in (LoanStatus.RETURNED, LoanStatus.REJECTED)


class Loan(Base):
    __tablename__ = "loans"

    __table_args__ = (
        # At most one outstanding loan holds a given copy.
        Index(
            "uq_outstanding_loan_per_copy",
            "copy_id",
            unique=True,
            postgresql_where=text("status IN ('requested', 'active')"),
        ),
        CheckConstraint(
            "(return_date IS NULL) = (status IN ('requested', 'active'))",
            name="ck_loans_return_date_matches_status",
        ),
        CheckConstraint(
            "status <> 'active' OR copy_id IS NOT NULL",
            name="ck_loans_active_has_copy",
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    material_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("materials.id", ondelete="RESTRICT"),
        nullable=False,
    )
    copy_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("copies.id", ondelete="RESTRICT"),
        nullable=True,
    )
    user_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("users.id", ondelete="RESTRICT"),
        nullable=True,
        index=True,
    )
    guest_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    guest_email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    loan_date: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), server_default=text("now()"), nullable=False
    )
    due_date: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True), nullable=False)
    return_date: Mapped[datetime | None] = mapped_column(TIMESTAMP(timezone=True), nullable=True)
    status: Mapped[LoanStatus] = mapped_column(
        SAEnum(LoanStatus, name="loanstatus", values_callable=lambda e: [m.value for m in e]),
        nullable=False,
        server_default=text("'requested'"),
    )

    material: Mapped[Material] = relationship()
    copy: Mapped[Copy | None] = relationship()
    user: Mapped[User | None] = relationship()

    def __repr__(self) -> str:
        return f"<Loan id={self.id} material_id={self.material_id} status={self.status}>"
