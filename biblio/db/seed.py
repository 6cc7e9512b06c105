"""
Seed script: demo users, a small catalogue with copies, and a few loans in
every lifecycle state.

Run with:
    python -m biblio.db.seed
"""

import asyncio
import logging
from datetime import datetime, timedelta, timezone

from sqlalchemy import func, select

from biblio.core.logging import setup_logging
from biblio.db.session import AsyncSessionLocal
from biblio.models.loan import Loan, LoanStatus
from biblio.models.material import Copy, CopyStatus, Material
from biblio.models.user import User, UserRole

logger = logging.getLogger(__name__)

SEED_USERS = [
    {"email": "admin@library.local", "name": "Admin User", "role": UserRole.ADMIN},
    {"email": "librarian@library.local", "name": "Jane Librarian", "role": UserRole.LIBRARIAN},
    {"email": "member@library.local", "name": "John Member", "role": UserRole.MEMBER},
]

# (title, author, isbn, number of copies)
SEED_MATERIALS = [
    ("Don Quijote de la Mancha", "Miguel de Cervantes", "9788424116293", 4),
    ("El principito", "Antoine de Saint-Exupéry", "9788498381498", 3),
    ("Cien años de soledad", "Gabriel García Márquez", "9780307474728", 2),
    ("Dune", "Frank Herbert", "9780441013593", 2),
    ("1984", "George Orwell", "9780451524935", 3),
    ("The Pragmatic Programmer", "David Thomas", "9780135957059", 1),
]


def _build_catalogue() -> list[Material]:
    materials: list[Material] = []
    number = 0
    for title, author, isbn, copies in SEED_MATERIALS:
        material = Material(title=title, author=author, isbn=isbn, quantity=copies)
        for _ in range(copies):
            number += 1
            material.copies.append(
                Copy(registration_number=f"BK{number:05d}", status=CopyStatus.AVAILABLE)
            )
        materials.append(material)
    return materials


def _checkout(material: Material, copy: Copy) -> None:
    copy.status = CopyStatus.ON_LOAN
    material.quantity -= 1


async def seed() -> None:
    async with AsyncSessionLocal() as session:
        user_count = await session.scalar(select(func.count()).select_from(User))
        if user_count:
            logger.info("Database already seeded (%d users found). Skipping.", user_count)
            return

        users = {data["role"]: User(**data) for data in SEED_USERS}
        materials = _build_catalogue()
        session.add_all([*users.values(), *materials])

        member = users[UserRole.MEMBER]
        now = datetime.now(tz=timezone.utc)
        quijote, principito, cien_anos = materials[0], materials[1], materials[2]

        _checkout(quijote, quijote.copies[0])
        _checkout(cien_anos, cien_anos.copies[0])
        loans = [
            Loan(
                user=member,
                material=quijote,
                copy=quijote.copies[0],
                loan_date=now - timedelta(days=7),
                due_date=now + timedelta(days=7),
                status=LoanStatus.ACTIVE,
            ),
            Loan(
                user=member,
                material=principito,
                copy=principito.copies[0],
                loan_date=now - timedelta(days=30),
                due_date=now - timedelta(days=16),
                return_date=now - timedelta(days=20),
                status=LoanStatus.RETURNED,
            ),
            Loan(
                guest_name="Ana Visitante",
                guest_email="ana@example.com",
                material=cien_anos,
                copy=cien_anos.copies[0],
                loan_date=now - timedelta(hours=2),
                due_date=now + timedelta(days=14),
                status=LoanStatus.REQUESTED,
            ),
        ]
        session.add_all(loans)

        await session.commit()
        logger.info(
            "Seeded %d users, %d materials and %d loans.", len(users), len(materials), len(loans)
        )


if __name__ == "__main__":
    setup_logging()
    asyncio.run(seed())
