"""
Review submission, status and streaming endpoints.

Submissions return 202 immediately and run the pipeline as a background
task; clients follow progress by polling the status or chunks routes, or
use POST /reviews/stream to receive the same events over one connection.
"""
import json
import logging
from typing import Any, Dict

from codelens_core.service import ReviewService
from codelens_store.errors import ReviewNotFoundError
from fastapi import APIRouter, BackgroundTasks, Depends, Query, status
from fastapi.responses import StreamingResponse

from codelens_api.routers import get_service
from codelens_api.schemas import (
    ChunksResponse,
    ImplementationRequest,
    StatusResponse,
    SubmitRequest,
    SubmitResponse,
)

logger = logging.getLogger(__name__)

router = APIRouter(tags=["reviews"])

_EXCLUDE_NONE = {"response_model_exclude_none": True}


@router.post("/reviews", status_code=status.HTTP_202_ACCEPTED, response_model=SubmitResponse)
async def submit_review(
    req: SubmitRequest,
    background_tasks: BackgroundTasks,
    service: ReviewService = Depends(get_service),
):
    review_id = await service.submit_review(req.code, req.language, filename=req.filename, focus=req.focus)
    background_tasks.add_task(service.process_review, review_id, req.code, req.language, req.focus)
    return SubmitResponse(review_id=review_id, status="queued")


@router.post("/detections", status_code=status.HTTP_202_ACCEPTED, response_model=SubmitResponse)
async def submit_detection(
    req: SubmitRequest,
    background_tasks: BackgroundTasks,
    service: ReviewService = Depends(get_service),
):
    review_id = await service.submit_detection(req.code, req.language, filename=req.filename, focus=req.focus)
    background_tasks.add_task(service.process_detection, review_id, req.code, req.language, req.focus)
    return SubmitResponse(review_id=review_id, status="queued")


@router.post("/implementations", status_code=status.HTTP_202_ACCEPTED, response_model=SubmitResponse)
async def submit_implementation(
    req: ImplementationRequest,
    background_tasks: BackgroundTasks,
    service: ReviewService = Depends(get_service),
):
    issues = [i.to_issue() for i in req.issues]
    review_id = await service.submit_implementation(
        req.code, req.language, issues, senior_feedback=req.senior_feedback, filename=req.filename
    )
    background_tasks.add_task(
        service.process_implementation, review_id, req.code, req.language, issues, req.senior_feedback
    )
    return SubmitResponse(review_id=review_id, status="queued")


@router.post("/reviews/stream")
async def stream_review(req: SubmitRequest, service: ReviewService = Depends(get_service)):
    """Submit a review and stream its events as Server-Sent Events.

    Events arrive in causal order: ``metadata``, ``chunk`` per fragment, then
    ``complete`` or ``error``, after which the server closes the stream.
    """
    review_id = await service.submit_review(req.code, req.language, filename=req.filename, focus=req.focus)

    async def event_stream():
        async for event in service.stream_review(review_id, req.code, req.language, req.focus):
            yield _sse_event(event)

    return StreamingResponse(
        event_stream(),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )


@router.get("/reviews/{review_id}", response_model=StatusResponse, **_EXCLUDE_NONE)
async def get_review(review_id: str, service: ReviewService = Depends(get_service)):
    record = await service.get_review(review_id)
    return StatusResponse.from_record(record)


@router.get("/reviews/{review_id}/chunks", response_model=ChunksResponse, **_EXCLUDE_NONE)
async def get_chunks(
    review_id: str,
    last_chunk: int = Query(-1, alias="lastChunk", ge=-1),
    service: ReviewService = Depends(get_service),
):
    """Return only the fragments after index *lastChunk* plus the next cursor."""
    record = await service.get_review(review_id)
    new = record.chunks[last_chunk + 1 :]
    return ChunksResponse(
        review_id=record.id,
        status=str(record.status),
        chunks=new,
        next_chunk_id=last_chunk + len(new),
        is_complete=record.is_complete,
        error=record.error,
    )


@router.delete("/reviews/{review_id}")
async def delete_review(review_id: str, service: ReviewService = Depends(get_service)):
    if not await service.store.delete(review_id):
        raise ReviewNotFoundError(review_id)
    return {"reviewId": review_id, "deleted": True}


def _sse_event(event: Dict[str, Any]) -> str:
    """Serialize an event as one SSE ``data:`` frame."""
    return f"data: {json.dumps(event)}\n\n"
