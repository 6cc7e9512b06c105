"""initial_schema

Revision ID: 3b7c1e2a
Revises:
Create Date: 2026-10-19 00:00:00.000000

"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "3b7c1e2a"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def _enum(*values: str, name: str) -> postgresql.ENUM:
    return postgresql.ENUM(*values, name=name, create_type=False)


def upgrade() -> None:
    # Raw SQL so IF NOT EXISTS is honoured on re-runs
    op.execute("""
    DO $$
    BEGIN
        IF NOT EXISTS (SELECT 1 FROM pg_type WHERE typname = 'userrole') THEN
            CREATE TYPE userrole AS ENUM ('admin', 'librarian', 'member');
        END IF;

        IF NOT EXISTS (SELECT 1 FROM pg_type WHERE typname = 'copystatus') THEN
            CREATE TYPE copystatus AS ENUM ('available', 'on_loan', 'maintenance', 'lost');
        END IF;

        IF NOT EXISTS (SELECT 1 FROM pg_type WHERE typname = 'loanstatus') THEN
            CREATE TYPE loanstatus AS ENUM ('requested', 'active', 'returned', 'rejected');
        END IF;
    END$$;
    """)

    # --- users ---
    op.create_table(
        "users",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column(
            "role",
            _enum("admin", "librarian", "member", name="userrole"),
            server_default="member",
            nullable=False,
        ),
        sa.Column("oauth_provider", sa.String(50), nullable=True),
        sa.Column("oauth_subject", sa.String(255), nullable=True),
        sa.Column(
            "created_at",
            postgresql.TIMESTAMP(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("email"),
    )
    op.create_index("ix_users_email", "users", ["email"], unique=True)

    # --- materials ---
    op.create_table(
        "materials",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("title", sa.String(500), nullable=False),
        sa.Column("author", sa.String(255), nullable=False),
        sa.Column("isbn", sa.String(20), nullable=True),
        sa.Column("description", sa.Text, nullable=True),
        sa.Column("quantity", sa.Integer, server_default="0", nullable=False),
        sa.Column(
            "created_at",
            postgresql.TIMESTAMP(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.Column(
            "updated_at",
            postgresql.TIMESTAMP(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("isbn"),
    )

    # --- copies ---
    op.create_table(
        "copies",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("material_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("registration_number", sa.String(50), nullable=False),
        sa.Column(
            "status",
            _enum("available", "on_loan", "maintenance", "lost", name="copystatus"),
            server_default="available",
            nullable=False,
        ),
        sa.Column("notes", sa.Text, nullable=True),
        sa.ForeignKeyConstraint(["material_id"], ["materials.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("registration_number"),
    )
    op.create_index("ix_copies_material_id", "copies", ["material_id"])

    # --- loans ---
    op.create_table(
        "loans",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("material_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("copy_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("user_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("guest_name", sa.String(255), nullable=True),
        sa.Column("guest_email", sa.String(255), nullable=True),
        sa.Column(
            "loan_date",
            postgresql.TIMESTAMP(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.Column("due_date", postgresql.TIMESTAMP(timezone=True), nullable=False),
        sa.Column("return_date", postgresql.TIMESTAMP(timezone=True), nullable=True),
        sa.Column(
            "status",
            _enum("requested", "active", "returned", "rejected", name="loanstatus"),
            server_default="requested",
            nullable=False,
        ),
        sa.ForeignKeyConstraint(["material_id"], ["materials.id"], ondelete="RESTRICT"),
        sa.ForeignKeyConstraint(["copy_id"], ["copies.id"], ondelete="RESTRICT"),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="RESTRICT"),
        sa.PrimaryKeyConstraint("id"),
        sa.CheckConstraint(
            "(return_date IS NULL) = (status IN ('requested', 'active'))",
            name="ck_loans_return_date_matches_status",
        ),
        sa.CheckConstraint(
            "status <> 'active' OR copy_id IS NOT NULL",
            name="ck_loans_active_has_copy",
        ),
    )
    op.create_index("ix_loans_user_id", "loans", ["user_id"])

    # One outstanding loan per copy
    op.execute("""
        CREATE UNIQUE INDEX IF NOT EXISTS uq_outstanding_loan_per_copy
        ON loans (copy_id)
        WHERE status IN ('requested', 'active')
    """)


def downgrade() -> None:
    op.execute("DROP INDEX IF EXISTS uq_outstanding_loan_per_copy")
    op.drop_index("ix_loans_user_id", table_name="loans")
    op.drop_table("loans")
    op.drop_index("ix_copies_material_id", table_name="copies")
    op.drop_table("copies")
    op.drop_table("materials")
    op.drop_index("ix_users_email", table_name="users")
    op.drop_table("users")

    op.execute("DROP TYPE IF EXISTS loanstatus")
    op.execute("DROP TYPE IF EXISTS copystatus")
    op.execute("DROP TYPE IF EXISTS userrole")
