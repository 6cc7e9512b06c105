import logging
import math
import re
import uuid
from collections.abc import Iterable

from sqlalchemy import delete, func, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from biblio.core.errors import InvalidState, NotFound, ValidationFailure
from biblio.db.session import transaction
from biblio.models.material import Copy, CopyStatus, Material
from biblio.schemas.material import (
    CopyCreate,
    CopyUpdate,
    MaterialCreate,
    MaterialListResponse,
    MaterialResponse,
    MaterialUpdate,
)

logger = logging.getLogger(__name__)

_PREFIX_RE = re.compile(r"^[A-Za-z]*")


def next_registration_number(last: str | None) -> str:
    """
    Number that follows *last*, keeping its alphabetic prefix and zero padding.

    ``BK0099`` -> ``BK0100``; ``None`` -> ``1``.  A value with no numeric tail
    cannot be continued and restarts at ``1``.
    """
    if not last:
        return "1"
    prefix = _PREFIX_RE.match(last).group(0)
    digits = last[len(prefix) :]
    if not digits.isdigit():
        return "1"
    return f"{prefix}{int(digits) + 1:0{len(digits)}d}"


def registration_sort_key(number: str) -> tuple[str, int, str]:
    """Order registration numbers numerically within a prefix: ``BK9`` < ``BK10``."""
    prefix = _PREFIX_RE.match(number).group(0)
    digits = number[len(prefix) :]
    return prefix, len(digits), digits


def latest_registration_number(numbers: Iterable[str]) -> str | None:
    return max(numbers, key=registration_sort_key, default=None)


async def list_materials(
    db: AsyncSession,
    *,
    q: str | None = None,
    available_only: bool = False,
    page: int = 1,
    page_size: int = 20,
) -> MaterialListResponse:
    stmt = select(Material)
    if q:
        stmt = stmt.where(
            or_(
                Material.title.ilike(f"%{q}%"),
                Material.author.ilike(f"%{q}%"),
                Material.isbn.ilike(f"%{q}%"),
            )
        )
    if available_only:
        stmt = stmt.where(Material.quantity > 0)

    total: int = (await db.execute(select(func.count()).select_from(stmt.subquery()))).scalar_one()
    rows = (
        await db.execute(
            stmt.order_by(Material.title).offset((page - 1) * page_size).limit(page_size)
        )
    ).scalars().all()

    return MaterialListResponse(
        items=[MaterialResponse.model_validate(r) for r in rows],
        total=total,
        page=page,
        page_size=page_size,
        pages=math.ceil(total / page_size) if page_size else 1,
    )


async def get_material(db: AsyncSession, material_id: uuid.UUID) -> Material:
    material = await db.scalar(
        select(Material)
        .where(Material.id == material_id)
        .options(selectinload(Material.copies))
        .execution_options(populate_existing=True)
    )
    if material is None:
        raise NotFound("Material not found")
    return material


async def _lock_material(db: AsyncSession, material_id: uuid.UUID) -> Material:
    material = await db.scalar(
        select(Material)
        .where(Material.id == material_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    if material is None:
        raise NotFound("Material not found")
    return material


async def adjust_quantity(db: AsyncSession, material_id: uuid.UUID, delta: int) -> None:
    """Add *delta* to the material's available count in one UPDATE."""
    await db.execute(
        update(Material)
        .where(Material.id == material_id)
        .values(quantity=Material.quantity + delta)
        .execution_options(synchronize_session="fetch")
    )


def build_material(data: MaterialCreate) -> Material:
    """A new material with all of its copies on the shelf."""
    material = Material(
        title=data.title,
        author=data.author,
        isbn=data.isbn,
        description=data.description,
        quantity=len(data.copies),
    )
    material.copies = [
        Copy(registration_number=c.registration_number, notes=c.notes, status=CopyStatus.AVAILABLE)
        for c in data.copies
    ]
    return material


async def create_material(db: AsyncSession, data: MaterialCreate) -> Material:
    material = build_material(data)
    async with transaction(db, "create_material"):
        db.add(material)
        try:
            await db.flush()
        except IntegrityError as exc:
            raise InvalidState("ISBN or registration number already exists") from exc

    logger.info("Material %s catalogued with %d copies", material.id, len(data.copies))
    return await get_material(db, material.id)


async def update_material(
    db: AsyncSession, material_id: uuid.UUID, data: MaterialUpdate
) -> Material:
    """Change the descriptive fields that were sent; copies and quantity are untouched."""
    changes = data.model_dump(exclude_unset=True)
    for field in ("title", "author"):
        if field in changes and not changes[field]:
            raise ValidationFailure(f"{field.capitalize()} cannot be empty")

    async with transaction(db, "update_material"):
        material = await _lock_material(db, material_id)
        for field, value in changes.items():
            setattr(material, field, value)
        try:
            await db.flush()
        except IntegrityError as exc:
            raise InvalidState("ISBN already exists") from exc

    return await get_material(db, material_id)


async def delete_material(db: AsyncSession, material_id: uuid.UUID) -> None:
    """Remove a material and its copies.  Refused once any loan references it."""
    async with transaction(db, "delete_material"):
        await _lock_material(db, material_id)
        try:
            await db.execute(delete(Material).where(Material.id == material_id))
        except IntegrityError as exc:
            raise InvalidState("Material has loans and cannot be deleted") from exc

    logger.info("Material %s deleted", material_id)


async def add_copy(db: AsyncSession, material_id: uuid.UUID, data: CopyCreate) -> Material:
    """Register one more ``available`` copy; ``quantity`` goes up by one."""
    async with transaction(db, "add_copy"):
        await _lock_material(db, material_id)
        db.add(
            Copy(
                material_id=material_id,
                registration_number=data.registration_number,
                notes=data.notes,
                status=CopyStatus.AVAILABLE,
            )
        )
        try:
            await db.flush()
        except IntegrityError as exc:
            raise InvalidState("Registration number already exists") from exc
        await adjust_quantity(db, material_id, 1)

    logger.info("Material %s: copy %s added", material_id, data.registration_number)
    return await get_material(db, material_id)


async def update_copy(
    db: AsyncSession, material_id: uuid.UUID, copy_id: uuid.UUID, data: CopyUpdate
) -> Material:
    """
    Change a copy's notes or move it between ``available``, ``maintenance``
    and ``lost``.

    ``quantity`` follows the copy: leaving ``available`` takes one off, coming
    back adds one.  A copy on loan only changes through its loan, and no copy
    can be put ``on_loan`` from here.
    """
    if data.status == CopyStatus.ON_LOAN:
        raise ValidationFailure("Copies go on loan through a loan request")

    async with transaction(db, "update_copy"):
        # Material first, then copy: the same order request_loan locks them in.
        await _lock_material(db, material_id)
        copy = await db.scalar(
            select(Copy)
            .where(Copy.id == copy_id, Copy.material_id == material_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        if copy is None:
            raise NotFound("Copy not found")
        if copy.status == CopyStatus.ON_LOAN:
            raise InvalidState("Copy is on loan")

        previous = copy.status
        if "notes" in data.model_fields_set:
            copy.notes = data.notes
        if data.status is not None and data.status != previous:
            copy.status = data.status
            delta = int(data.status == CopyStatus.AVAILABLE) - int(previous == CopyStatus.AVAILABLE)
            if delta:
                await adjust_quantity(db, material_id, delta)
            logger.info(
                "Copy %s: %s -> %s", copy.registration_number, previous.value, data.status.value
            )

    return await get_material(db, material_id)


async def get_next_registration_number(db: AsyncSession) -> str:
    numbers = await db.scalars(select(Copy.registration_number))
    return next_registration_number(latest_registration_number(numbers.all()))
