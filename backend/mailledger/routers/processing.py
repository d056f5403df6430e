"""Queue processing API: start a job, poll / stream its status, reset processed messages."""

from __future__ import annotations

import asyncio
import json
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session
from sse_starlette.sse import EventSourceResponse

from ..auth import require_api_key, require_api_key_for_sse
from ..config import settings
from ..database import SessionLocal, get_sync_db
from ..job_state_db import TERMINAL, create_job, job_to_dict, resolve_job
from ..message_store import unprocess_all
from ..schemas import JobStatusResponse, ProcessStartRequest, ProcessStartResponse, UnprocessResponse
from ..tasks import run_processing_job

router = APIRouter(prefix="/api/process", tags=["Processing"])


@router.post("", response_model=ProcessStartResponse, dependencies=[Depends(require_api_key)])
def start_processing(body: Optional[ProcessStartRequest] = None, db: Session = Depends(get_sync_db)):
    """Create a pending job and hand it to a worker. Returns immediately; poll /api/process/status."""
    limit = (body.limit if body else None) or settings.queue_default_batch_size
    job = create_job(db, limit=limit, trigger="manual")
    run_processing_job.delay(job.id)
    return ProcessStartResponse(job_id=job.id, status=job.status, message="Processing job queued.")


@router.get("/status", response_model=JobStatusResponse, dependencies=[Depends(require_api_key)])
def processing_status(job_id: Optional[str] = None, db: Session = Depends(get_sync_db)):
    """Job by id, or the newest active job, or the newest job."""
    job = resolve_job(db, job_id)
    if not job:
        raise HTTPException(status_code=404, detail="Job not found" if job_id else "No processing jobs yet")
    return JobStatusResponse(**job_to_dict(job))


async def _sse_generator(job_id: str):
    """Yield the job record every 0.5s until it is terminal."""
    while True:
        session = SessionLocal()
        try:
            job = resolve_job(session, job_id)
            state = job_to_dict(job) if job else None
        finally:
            session.close()
        if state is None:
            yield {"event": "error", "data": json.dumps({"error": "Job not found"})}
            break
        yield {"data": json.dumps(state, default=str)}
        if state["status"] in TERMINAL:
            break
        await asyncio.sleep(0.5)


@router.get("/events", dependencies=[Depends(require_api_key_for_sse)])
async def processing_events(job_id: str):
    """SSE stream of job progress."""
    return EventSourceResponse(_sse_generator(job_id))


@router.post("/unprocess-all", response_model=UnprocessResponse, dependencies=[Depends(require_api_key)])
def unprocess_all_messages(db: Session = Depends(get_sync_db)):
    """Mark every processed message unprocessed so the queue analyzes it again."""
    return UnprocessResponse(reset=unprocess_all(db))
