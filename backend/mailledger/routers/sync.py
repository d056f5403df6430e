"""Mail sync API: POST sync, GET sync status, Gmail OAuth."""
import logging
from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException
from fastapi.responses import RedirectResponse
from sqlalchemy.orm import Session

from ..auth import require_api_key
from ..database import SessionLocal, get_sync_db
from ..gmail_service import get_gmail_service, gmail_creds_ready_for_background
from ..schemas import SyncStartResponse, SyncStatusResponse
from ..services.sync_orchestrator import run_sync
from ..sync_state_db import get_state_from_db, try_begin_sync
from ..tasks import run_processing_job

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["sync"])


def _run_sync_task():
    session = SessionLocal()
    try:
        run_sync(session, on_job_created=lambda job_id: run_processing_job.delay(job_id))
    except Exception as e:
        # Already written to the sync record by run_sync.
        logger.error(f"Background sync failed: {e}")
    finally:
        session.close()


@router.get("/gmail/auth")
def gmail_auth(redirect_url: Optional[str] = None):
    """
    Complete Gmail OAuth in the browser. Open this URL on the machine running the API;
    after that, Sync works without blocking. Optional: ?redirect_url=http://localhost:5173
    """
    redirect_after = redirect_url or "http://localhost:5173"
    try:
        get_gmail_service(allow_interactive_oauth=True)
    except FileNotFoundError as e:
        return {"error": str(e), "hint": "Add credentials.json from Google Cloud Console to the backend folder."}
    return RedirectResponse(url=redirect_after, status_code=302)


@router.post("/sync", response_model=SyncStartResponse, dependencies=[Depends(require_api_key)])
def start_sync(background_tasks: BackgroundTasks, db: Session = Depends(get_sync_db)):
    """Start a sync unless one is fetching/processing (409). Poll GET /api/sync/status."""
    if not gmail_creds_ready_for_background():
        raise HTTPException(
            status_code=400,
            detail="Gmail authorization required. Open /api/gmail/auth in your browser to sign in, then try Sync again.",
        )
    if not try_begin_sync(db):
        raise HTTPException(status_code=409, detail="A sync is already in progress.")
    background_tasks.add_task(_run_sync_task)
    return SyncStartResponse(message="Sync started.", status="fetching")


@router.get("/sync/status", response_model=SyncStatusResponse, dependencies=[Depends(require_api_key)])
def sync_status(db: Session = Depends(get_sync_db)):
    """Current sync status; "processing" turns "completed" once nothing is left unprocessed."""
    return SyncStatusResponse(**get_state_from_db(db))
