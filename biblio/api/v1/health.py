from fastapi import APIRouter
from pydantic import BaseModel, Field

from biblio import __version__

router = APIRouter(tags=["health"])


class HealthResponse(BaseModel):
    status: str = Field(..., description='Always `"ok"` when the server is running.')
    version: str


@router.get("/health", response_model=HealthResponse, summary="Health check")
async def health_check() -> dict:
    return {"status": "ok", "version": __version__}
