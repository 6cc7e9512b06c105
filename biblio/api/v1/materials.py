import uuid

from fastapi import APIRouter, Depends, Query, Response
from sqlalchemy.ext.asyncio import AsyncSession

from biblio.auth.dependencies import require_staff
from biblio.db.session import get_db
from biblio.schemas.material import (
    CopyCreate,
    CopyUpdate,
    MaterialCreate,
    MaterialDetailResponse,
    MaterialListResponse,
    MaterialUpdate,
    NextRegistrationNumberResponse,
)
from biblio.services.material import (
    add_copy,
    create_material,
    delete_material,
    get_material,
    get_next_registration_number,
    list_materials,
    update_copy,
    update_material,
)

router = APIRouter(prefix="/api/v1/materials", tags=["materials"])

_STAFF_RESPONSES: dict = {
    401: {"description": "Missing, invalid, or expired token."},
    403: {"description": "Forbidden: librarian or admin role required."},
}


@router.get(
    "",
    response_model=MaterialListResponse,
    summary="Search the catalogue",
    description="Public. `q` matches title, author or ISBN (case-insensitive).",
)
async def list_materials_endpoint(
    q: str | None = Query(None, description="Free-text search."),
    available: bool = Query(False, description="Only materials with a copy on the shelf."),
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    db: AsyncSession = Depends(get_db),
) -> MaterialListResponse:
    return await list_materials(db, q=q, available_only=available, page=page, page_size=page_size)


# Fixed path, registered before /{material_id}
@router.get(
    "/next-registration-number",
    response_model=NextRegistrationNumberResponse,
    dependencies=[require_staff()],
    summary="Suggest the next copy registration number",
    responses={**_STAFF_RESPONSES},
)
async def next_registration_number_endpoint(
    db: AsyncSession = Depends(get_db),
) -> NextRegistrationNumberResponse:
    return NextRegistrationNumberResponse(
        next_registration_number=await get_next_registration_number(db)
    )


@router.get(
    "/{material_id}",
    response_model=MaterialDetailResponse,
    summary="Get a material with its copies",
    responses={404: {"description": "Material not found."}},
)
async def get_material_endpoint(
    material_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
) -> MaterialDetailResponse:
    return MaterialDetailResponse.model_validate(await get_material(db, material_id))


@router.post(
    "",
    response_model=MaterialDetailResponse,
    status_code=201,
    dependencies=[require_staff()],
    summary="Catalogue a material",
    description="Creates the material and its copies; `quantity` starts at the number of copies.",
    responses={
        **_STAFF_RESPONSES,
        400: {"description": "Duplicate ISBN or registration number."},
    },
)
async def create_material_endpoint(
    data: MaterialCreate,
    db: AsyncSession = Depends(get_db),
) -> MaterialDetailResponse:
    return MaterialDetailResponse.model_validate(await create_material(db, data))


@router.patch(
    "/{material_id}",
    response_model=MaterialDetailResponse,
    dependencies=[require_staff()],
    summary="Edit a material",
    description="Changes only the fields present in the body. Copies are managed separately.",
    responses={
        **_STAFF_RESPONSES,
        400: {"description": "Duplicate ISBN."},
        404: {"description": "Material not found."},
    },
)
async def update_material_endpoint(
    material_id: uuid.UUID,
    data: MaterialUpdate,
    db: AsyncSession = Depends(get_db),
) -> MaterialDetailResponse:
    return MaterialDetailResponse.model_validate(await update_material(db, material_id, data))


@router.delete(
    "/{material_id}",
    status_code=204,
    dependencies=[require_staff()],
    summary="Delete a material and its copies",
    responses={
        **_STAFF_RESPONSES,
        400: {"description": "The material has loans."},
        404: {"description": "Material not found."},
    },
)
async def delete_material_endpoint(
    material_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
) -> Response:
    await delete_material(db, material_id)
    return Response(status_code=204)


@router.post(
    "/{material_id}/copies",
    response_model=MaterialDetailResponse,
    status_code=201,
    dependencies=[require_staff()],
    summary="Add a copy",
    description="Registers an `available` copy; the material's `quantity` goes up by one.",
    responses={
        **_STAFF_RESPONSES,
        400: {"description": "Duplicate registration number."},
        404: {"description": "Material not found."},
    },
)
async def add_copy_endpoint(
    material_id: uuid.UUID,
    data: CopyCreate,
    db: AsyncSession = Depends(get_db),
) -> MaterialDetailResponse:
    return MaterialDetailResponse.model_validate(await add_copy(db, material_id, data))


@router.patch(
    "/{material_id}/copies/{copy_id}",
    response_model=MaterialDetailResponse,
    dependencies=[require_staff()],
    summary="Change a copy's status or notes",
    description=(
        "Moves a copy between `available`, `maintenance` and `lost`. Leaving `available` "
        "takes one off `quantity`; coming back adds one."
    ),
    responses={
        **_STAFF_RESPONSES,
        400: {"description": "The copy is on loan."},
        404: {"description": "Material or copy not found."},
        422: {"description": "`on_loan` cannot be set directly."},
    },
)
async def update_copy_endpoint(
    material_id: uuid.UUID,
    copy_id: uuid.UUID,
    data: CopyUpdate,
    db: AsyncSession = Depends(get_db),
) -> MaterialDetailResponse:
    return MaterialDetailResponse.model_validate(
        await update_copy(db, material_id, copy_id, data)
    )
