from fastapi import APIRouter, Depends, Request
from fastapi.responses import Response
from sqlalchemy.ext.asyncio import AsyncSession

from biblio.auth.dependencies import require_staff
from biblio.core.errors import ValidationFailure
from biblio.db.session import get_db
from biblio.schemas.material import MaterialImportResponse
from biblio.services.export import export_loans_csv, export_materials_csv, import_materials_csv

router = APIRouter(prefix="/api/v1/export", tags=["export"], dependencies=[require_staff()])
import_router = APIRouter(prefix="/api/v1/import", tags=["export"], dependencies=[require_staff()])

_STAFF_RESPONSES: dict = {
    401: {"description": "Missing, invalid, or expired token."},
    403: {"description": "Forbidden: librarian or admin role required."},
}


def _csv_response(body: str, filename: str) -> Response:
    return Response(
        content=body,
        media_type="text/csv; charset=utf-8",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@router.get("/loans", summary="Export all loans as CSV", responses={**_STAFF_RESPONSES})
async def export_loans(db: AsyncSession = Depends(get_db)) -> Response:
    return _csv_response(await export_loans_csv(db), "loans.csv")


@router.get("/materials", summary="Export the catalogue as CSV", responses={**_STAFF_RESPONSES})
async def export_materials(db: AsyncSession = Depends(get_db)) -> Response:
    return _csv_response(await export_materials_csv(db), "materials.csv")


@import_router.post(
    "/materials",
    response_model=MaterialImportResponse,
    summary="Import materials from CSV",
    description=(
        "The body is a CSV file in the layout `GET /api/v1/export/materials` produces. "
        "`title` and `author` columns are required; `copies` lists registration numbers "
        "separated by `;`. Valid rows are created in one transaction and the rest are "
        "reported back with their line numbers."
    ),
    responses={
        **_STAFF_RESPONSES,
        400: {"description": "The catalogue changed while the import ran."},
        422: {"description": "Not UTF-8, or the required columns are missing."},
    },
    openapi_extra={
        "requestBody": {
            "required": True,
            "content": {"text/csv": {"schema": {"type": "string"}}},
        }
    },
)
async def import_materials(
    request: Request, db: AsyncSession = Depends(get_db)
) -> MaterialImportResponse:
    try:
        body = (await request.body()).decode("utf-8-sig")
    except UnicodeDecodeError as exc:
        raise ValidationFailure("CSV must be UTF-8 encoded") from exc
    return await import_materials_csv(db, body)
