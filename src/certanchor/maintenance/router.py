"""Maintenance API router."""

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from certanchor.common.security import require_api_key

router = APIRouter()


class SweepResponse(BaseModel):
    temp_documents: list[str]
    provisional_certificates: list[str]


@router.post("/maintenance/sweep", response_model=SweepResponse)
async def run_sweep(_=Depends(require_api_key)):
    from certanchor.deps import get_scheduler

    return SweepResponse(**await get_scheduler().run_once())
