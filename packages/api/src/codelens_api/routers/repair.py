"""
Repair endpoint.
"""
from codelens_core.service import ReviewService
from fastapi import APIRouter, Depends

from codelens_api.routers import get_service
from codelens_api.schemas import RepairRequest, RepairResponse

router = APIRouter(tags=["repair"])


@router.post("/repair", response_model=RepairResponse, response_model_exclude_none=True)
async def repair(req: RepairRequest, service: ReviewService = Depends(get_service)):
    """Recover a structured result from malformed raw text.

    With a reviewId, a successful repair also completes that review record.
    """
    outcome = await service.repair(req.raw_text, language=req.language, review_id=req.review_id)
    return RepairResponse(**outcome.to_dict())
