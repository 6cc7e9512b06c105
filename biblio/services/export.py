"""CSV exchange of loan and material records: export of both, import of materials."""

import csv
import io
import logging
from collections.abc import Iterable

from pydantic import ValidationError
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from biblio.core.errors import InvalidState, ValidationFailure
from biblio.db.session import transaction
from biblio.models.loan import Loan
from biblio.models.material import Copy, Material
from biblio.schemas.material import CopyCreate, MaterialCreate, MaterialImportResponse, RejectedRow
from biblio.services.material import build_material

logger = logging.getLogger(__name__)

LOAN_COLUMNS = [
    "id",
    "status",
    "loan_date",
    "due_date",
    "return_date",
    "material_id",
    "material_title",
    "copy_registration_number",
    "borrower_name",
    "borrower_email",
]

MATERIAL_COLUMNS = [
    "id",
    "title",
    "author",
    "isbn",
    "description",
    "quantity",
    "copies",
]
# Columns an import file must carry; the rest of MATERIAL_COLUMNS is optional
# and `id` and `quantity` are ignored.
REQUIRED_IMPORT_COLUMNS = ("title", "author")


def _isoformat(value) -> str:
    return value.isoformat() if value is not None else ""


def loan_row(loan: Loan) -> dict[str, str]:
    if loan.user is not None:
        name, email = loan.user.name, loan.user.email
    else:
        name, email = loan.guest_name or "", loan.guest_email or ""
    return {
        "id": str(loan.id),
        "status": loan.status.value,
        "loan_date": _isoformat(loan.loan_date),
        "due_date": _isoformat(loan.due_date),
        "return_date": _isoformat(loan.return_date),
        "material_id": str(loan.material_id),
        "material_title": loan.material.title,
        "copy_registration_number": loan.copy.registration_number if loan.copy else "",
        "borrower_name": name,
        "borrower_email": email,
    }


def material_row(material: Material) -> dict[str, str]:
    return {
        "id": str(material.id),
        "title": material.title,
        "author": material.author,
        "isbn": material.isbn or "",
        "description": material.description or "",
        "quantity": str(material.quantity),
        # Registration numbers are alphanumeric, so a semicolon is a safe separator.
        "copies": ";".join(c.registration_number for c in material.copies),
    }


def to_csv(columns: list[str], rows: Iterable[dict[str, str]]) -> str:
    buffer = io.StringIO()
    writer = csv.DictWriter(buffer, fieldnames=columns)
    writer.writeheader()
    writer.writerows(rows)
    return buffer.getvalue()


async def export_loans_csv(db: AsyncSession) -> str:
    loans = await db.scalars(
        select(Loan)
        .options(selectinload(Loan.material), selectinload(Loan.copy), selectinload(Loan.user))
        .order_by(Loan.loan_date.desc())
    )
    return to_csv(LOAN_COLUMNS, (loan_row(loan) for loan in loans.all()))


async def export_materials_csv(db: AsyncSession) -> str:
    materials = await db.scalars(
        select(Material).options(selectinload(Material.copies)).order_by(Material.title)
    )
    return to_csv(MATERIAL_COLUMNS, (material_row(m) for m in materials.all()))


def _split_copies(value: str) -> list[str]:
    return [number.strip() for number in value.split(";") if number.strip()]


def _schema_error(exc: ValidationError) -> str:
    error = exc.errors()[0]
    field = ".".join(str(part) for part in error["loc"])
    return f"{field}: {error['msg']}" if field else error["msg"]


def parse_materials_csv(body: str) -> tuple[list[tuple[int, MaterialCreate]], list[RejectedRow]]:
    """
    Read a file in the export layout into materials ready to create.

    Returns ``(accepted, rejected)`` where each accepted entry keeps its line
    number.  A row is rejected when it fails validation or repeats an ISBN or
    a registration number used earlier in the same file.  A file without the
    required columns is refused as a whole.
    """
    reader = csv.DictReader(io.StringIO(body))
    missing = [c for c in REQUIRED_IMPORT_COLUMNS if c not in (reader.fieldnames or [])]
    if missing:
        raise ValidationFailure(f"CSV is missing required columns: {', '.join(missing)}")

    accepted: list[tuple[int, MaterialCreate]] = []
    rejected: list[RejectedRow] = []
    seen_isbns: set[str] = set()
    seen_numbers: set[str] = set()
    for row in reader:
        line = reader.line_num
        # Short rows pad with None; surplus cells land under the None key.
        values = {key: (value or "").strip() for key, value in row.items() if key}
        try:
            data = MaterialCreate(
                title=values["title"],
                author=values["author"],
                isbn=values.get("isbn") or None,
                description=values.get("description") or None,
                copies=[
                    CopyCreate(registration_number=number)
                    for number in _split_copies(values.get("copies", ""))
                ],
            )
        except ValidationError as exc:
            rejected.append(RejectedRow(line=line, reason=_schema_error(exc)))
            continue

        numbers = [c.registration_number for c in data.copies]
        repeated = seen_numbers.intersection(numbers) or {
            n for n in numbers if numbers.count(n) > 1
        }
        if data.isbn and data.isbn in seen_isbns:
            rejected.append(RejectedRow(line=line, reason=f"Duplicate ISBN {data.isbn} in file"))
        elif repeated:
            rejected.append(
                RejectedRow(
                    line=line,
                    reason=f"Duplicate registration number {min(repeated)} in file",
                )
            )
        else:
            if data.isbn:
                seen_isbns.add(data.isbn)
            seen_numbers.update(numbers)
            accepted.append((line, data))
    return accepted, rejected


async def import_materials_csv(db: AsyncSession, body: str) -> MaterialImportResponse:
    """
    Create every acceptable material in *body*, with its copies, in one
    transaction.

    Rows whose ISBN or registration numbers already exist in the catalogue
    are reported back instead of created.  ``quantity`` is the number of
    copies listed; every copy starts ``available``.
    """
    accepted, rejected = parse_materials_csv(body)
    isbns = {data.isbn for _, data in accepted if data.isbn}
    numbers = {c.registration_number for _, data in accepted for c in data.copies}

    created = 0
    async with transaction(db, "import_materials"):
        taken_isbns = set(
            (await db.scalars(select(Material.isbn).where(Material.isbn.in_(sorted(isbns))))).all()
        )
        taken_numbers = set(
            (
                await db.scalars(
                    select(Copy.registration_number).where(
                        Copy.registration_number.in_(sorted(numbers))
                    )
                )
            ).all()
        )
        for line, data in accepted:
            clash = taken_numbers.intersection(c.registration_number for c in data.copies)
            if data.isbn in taken_isbns:
                rejected.append(RejectedRow(line=line, reason=f"ISBN {data.isbn} already exists"))
            elif clash:
                rejected.append(
                    RejectedRow(
                        line=line, reason=f"Registration number {min(clash)} already exists"
                    )
                )
            else:
                db.add(build_material(data))
                created += 1
        try:
            await db.flush()
        except IntegrityError as exc:
            raise InvalidState(
                "The catalogue changed during the import; nothing was created"
            ) from exc

    rejected.sort(key=lambda r: r.line)
    logger.info("Material import: %d created, %d rejected", created, len(rejected))
    return MaterialImportResponse(created=created, rejected=rejected)
