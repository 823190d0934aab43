"""Batch generation endpoints.

POST   /api/batch/segment             split an outline into units (dry run)
POST   /api/batch/run-stream          run/resume a batch, SSE progress + text chunks
POST   /api/batch/run                 run/resume a batch, JSON merged artifact
POST   /api/batch/progress/lookup     fingerprint the inputs and load saved progress
GET    /api/batch/progress/{key}      load saved progress by key
DELETE /api/batch/progress/{key}      discard saved progress
POST   /api/batch/files                upload a raw file body to the workflow backend
"""

from __future__ import annotations

import asyncio
import json
import logging

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import StreamingResponse

from tenderflow.config import get_settings
from tenderflow.deps import get_orchestrator, get_progress_store, get_workflow_client
from tenderflow.exceptions import BatchRunError, OutlineError, TenderFlowError, WorkflowError
from tenderflow.schemas.batch import (
    BatchContext,
    BatchEvent,
    BatchRunRequest,
    FileUploadResponse,
    MergedArtifact,
    ProgressLookupRequest,
    ProgressLookupResponse,
    ProgressRecord,
    SegmentRequest,
    SegmentResponse,
)
from tenderflow.services.batch_orchestrator import BatchCallbacks, BatchOrchestrator
from tenderflow.services.outline_segmenter import require_units
from tenderflow.services.progress_store import ProgressStore
from tenderflow.services.workflow_client import WorkflowClient, get_file_category, get_file_type

logger = logging.getLogger(__name__)

router = APIRouter()


def _sse(event: BatchEvent) -> str:
    event_data = event.model_dump(exclude_none=True)
    return f"event: {event.event_type}\ndata: {json.dumps(event_data, ensure_ascii=False)}\n\n"


def _context_for(req: BatchRunRequest) -> BatchContext:
    context = req.to_context(get_settings().WORKFLOW_API_KEY)
    if not context.api_key:
        raise HTTPException(status_code=400, detail="No workflow API key supplied or configured")
    return context


@router.post("/segment", response_model=SegmentResponse)
async def segment(req: SegmentRequest):
    """Preview how an outline will be split."""
    try:
        units = require_units(req.outline)
    except OutlineError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e
    return SegmentResponse(total=len(units), units=units)


# ---------------------------------------------------------------------------
# Runs
# ---------------------------------------------------------------------------

async def _batch_event_stream(
    orchestrator: BatchOrchestrator, req: BatchRunRequest, context: BatchContext,
):
    """Async generator that yields SSE events while the batch runs.

    The run executes as a separate task feeding a queue; if the client goes
    away the task is cancelled, and the next request resumes from the last
    persisted unit.
    """
    queue: asyncio.Queue[BatchEvent | None] = asyncio.Queue()

    def on_progress(current: int, total: int, label: str) -> None:
        queue.put_nowait(BatchEvent(event_type="progress", current=current, total=total, label=label))

    def on_stream_chunk(index: int, title: str, chunk: str, _units) -> None:
        queue.put_nowait(BatchEvent(event_type="chunk", index=index, title=title, chunk=chunk))

    async def drive() -> None:
        try:
            artifact = await orchestrator.run(
                req.outline,
                context,
                BatchCallbacks(on_progress=on_progress, on_stream_chunk=on_stream_chunk),
                resume=req.resume,
            )
            queue.put_nowait(BatchEvent(event_type="complete", result=artifact.model_dump()))
        except TenderFlowError as e:
            queue.put_nowait(BatchEvent(event_type="error", error=str(e)))
        except Exception as e:
            logger.exception("Batch stream failed unexpectedly")
            queue.put_nowait(BatchEvent(event_type="error", error=f"Stream error: {e}"))
        finally:
            queue.put_nowait(None)

    task = asyncio.create_task(drive())
    try:
        while True:
            event = await queue.get()
            if event is None:
                break
            yield _sse(event)
    finally:
        if not task.done():
            logger.info("Batch stream client disconnected, cancelling run")
            task.cancel()


@router.post("/run-stream")
async def run_batch_stream(
    req: BatchRunRequest, orchestrator: BatchOrchestrator = Depends(get_orchestrator),
):
    """Run the batch with a text/event-stream of progress, chunk, error and complete events."""
    context = _context_for(req)
    return StreamingResponse(
        _batch_event_stream(orchestrator, req, context),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",
        },
    )


@router.post("/run", response_model=MergedArtifact)
async def run_batch(
    req: BatchRunRequest, orchestrator: BatchOrchestrator = Depends(get_orchestrator),
):
    """Run the batch and return the merged artifact once every unit is done."""
    context = _context_for(req)
    try:
        return await orchestrator.run(req.outline, context, resume=req.resume)
    except OutlineError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e
    except BatchRunError as e:
        raise HTTPException(
            status_code=502,
            detail={"message": str(e), "unit_index": e.unit_index, "unit_title": e.unit_title},
        ) from e


# ---------------------------------------------------------------------------
# Manual progress management
# ---------------------------------------------------------------------------

@router.post("/progress/lookup", response_model=ProgressLookupResponse)
async def lookup_progress(
    req: ProgressLookupRequest, store: ProgressStore = Depends(get_progress_store),
):
    key = store.compute_key(req.outline, req.prior_result, req.company_profile, req.user_requirement)
    return ProgressLookupResponse(key=key, record=await store.load_async(key))


@router.get("/progress/{key}", response_model=ProgressRecord)
async def get_progress(key: str, store: ProgressStore = Depends(get_progress_store)):
    record = await store.load_async(key)
    if record is None:
        raise HTTPException(status_code=404, detail="No saved progress for this key")
    return record


@router.delete("/progress/{key}", status_code=204)
async def delete_progress(key: str, store: ProgressStore = Depends(get_progress_store)):
    await store.clear_async(key)


# ---------------------------------------------------------------------------
# File upload
# ---------------------------------------------------------------------------

@router.post("/files", response_model=FileUploadResponse)
async def upload_file(
    request: Request,
    filename: str,
    file_type: str | None = None,
    api_key: str | None = None,
    client: WorkflowClient = Depends(get_workflow_client),
):
    """Forward the raw request body to the backend's file store.

    The returned id can be passed as a workflow file input.
    """
    key = api_key or get_settings().WORKFLOW_API_KEY
    if not key:
        raise HTTPException(status_code=400, detail="No workflow API key supplied or configured")
    content = await request.body()
    if not content:
        raise HTTPException(status_code=400, detail="Empty file body")

    resolved_type = (file_type or get_file_type(filename)).upper()
    try:
        upload_id = await client.upload_file(key, filename, content, resolved_type)
    except WorkflowError as e:
        raise HTTPException(status_code=502, detail=str(e)) from e
    return FileUploadResponse(
        id=upload_id,
        filename=filename,
        file_type=resolved_type,
        category=get_file_category(resolved_type),
    )
