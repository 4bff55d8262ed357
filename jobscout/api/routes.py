"""
FastAPI Routes for JobScout

REST, Server-Sent Events and WebSocket endpoints for LinkedIn scraping
sessions: start a scrape, follow its progress, pause/resume/cancel it and
manage the jobs it found.

Run with: uvicorn jobscout.api.routes:app --reload
"""

from dataclasses import dataclass
from datetime import datetime
from functools import lru_cache
from typing import Optional, Literal
import json
import logging

from fastapi import (
    FastAPI, HTTPException, WebSocket, WebSocketDisconnect, Depends,
    BackgroundTasks, Request
)
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import BaseModel, Field

from jobscout import __version__
from jobscout.core.config import Settings, get_settings
from jobscout.core.errors import (
    SearchParamsValidationError, SessionNotFoundError, JobNotFoundError,
    InvalidSessionTransition
)
from jobscout.core.schemas import (
    SearchParams, ScrapingProgress, ApplicationStatus, SheetExportConfig, APIResponse
)
from jobscout.services.exporter import SheetExporter, GoogleSheetsSink, jobs_to_csv
from jobscout.services.orchestrator import ScrapeOrchestrator
from jobscout.services.status import (
    SessionStatusService, ExportUnavailableError, NothingToExportError
)
from jobscout.services.stores import InMemoryJobStore, InMemorySessionStore

logging.basicConfig(
    level=getattr(logging, get_settings().log_level.upper(), logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

# ============================================================================
# FastAPI App Setup
# ============================================================================

app = FastAPI(
    title="JobScout API",
    description="LinkedIn job scraping sessions with live progress",
    version=__version__
)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Configure for production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ============================================================================
# Service Wiring
# ============================================================================

@dataclass
class Services:
    orchestrator: ScrapeOrchestrator
    status: SessionStatusService


def build_services(settings: Settings) -> Services:
    """Build stores, exporter, orchestrator and status service from settings."""
    if settings.database.backend == "sql":
        from jobscout.core.database import create_db_engine, init_db, get_session_factory
        from jobscout.services.sql_stores import SQLSessionStore, SQLJobStore

        engine = create_db_engine(settings.database)
        init_db(engine)
        session_factory = get_session_factory(engine)
        job_store = SQLJobStore(session_factory)
        session_store = SQLSessionStore(session_factory)
    else:
        job_store = InMemoryJobStore()
        session_store = InMemorySessionStore(job_store)

    exporter = None
    if settings.scraper.export_to_sheets:
        exporter = SheetExporter(GoogleSheetsSink(settings.google_sheets), settings.google_sheets)

    logger.info(f"Using {settings.database.backend} stores, sheet export {'on' if exporter else 'off'}")
    return Services(
        orchestrator=ScrapeOrchestrator(session_store, job_store, exporter=exporter, settings=settings),
        status=SessionStatusService(session_store, job_store, exporter=exporter, settings=settings),
    )


@lru_cache()
def get_services() -> Services:
    """Process-wide services. Override in tests via app.dependency_overrides."""
    return build_services(get_settings())


# ============================================================================
# Error Mapping
# ============================================================================

@app.exception_handler(SearchParamsValidationError)
async def validation_error_handler(request: Request, exc: SearchParamsValidationError):
    return JSONResponse(status_code=400, content={"detail": "Invalid search parameters", "errors": exc.errors})


@app.exception_handler(SessionNotFoundError)
@app.exception_handler(JobNotFoundError)
async def not_found_handler(request: Request, exc: LookupError):
    return JSONResponse(status_code=404, content={"detail": str(exc)})


@app.exception_handler(InvalidSessionTransition)
async def transition_error_handler(request: Request, exc: InvalidSessionTransition):
    return JSONResponse(status_code=409, content={"detail": str(exc)})


# ============================================================================
# Request/Response Models
# ============================================================================

class ScrapeRequest(BaseModel):
    """Start a scraping session."""
    user_id: str
    cv_id: Optional[str] = None
    search_params: SearchParams
    export_to_sheets: Optional[bool] = None


class ScrapeStartedResponse(BaseModel):
    session_id: str
    status: str
    message: str


class ProgressReportRequest(BaseModel):
    """Progress pushed by an out-of-process scraper."""
    user_id: str
    progress: ScrapingProgress


class UserRequest(BaseModel):
    user_id: str


class ExportRequest(BaseModel):
    user_id: str
    spreadsheet_name: Optional[str] = None
    share_with_user: Optional[str] = None


class JobStatusUpdateRequest(BaseModel):
    user_id: str
    application_status: ApplicationStatus
    notes: Optional[str] = Field(default=None, max_length=5000)


# ============================================================================
# Health Check
# ============================================================================

@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {
        "status": "healthy",
        "timestamp": datetime.now().isoformat(),
        "version": __version__
    }


# ============================================================================
# Scraping Endpoints
# ============================================================================

@app.post("/linkedin/scrape", status_code=202, response_model=ScrapeStartedResponse)
async def start_scrape(
    request: ScrapeRequest,
    background_tasks: BackgroundTasks,
    services: Services = Depends(get_services),
):
    """
    Validate the search, create a pending session and run it in the
    background. Poll /linkedin/sessions/{id} or stream its updates.
    """
    session = services.orchestrator.create_session(
        request.search_params,
        user_id=request.user_id,
        cv_id=request.cv_id,
    )
    background_tasks.add_task(services.orchestrator.run_session, session, request.export_to_sheets)
    logger.info(f"Queued scraping session {session.id} for user {request.user_id}")

    return ScrapeStartedResponse(
        session_id=session.id,
        status=session.status.value,
        message="Scraping session started",
    )


@app.post("/linkedin/sessions/{session_id}/retry", status_code=202, response_model=ScrapeStartedResponse)
async def retry_session(
    session_id: str,
    request: UserRequest,
    background_tasks: BackgroundTasks,
    services: Services = Depends(get_services),
):
    """Start a new session with the search params of a failed one."""
    source = services.status.retry_source(session_id, request.user_id)
    session = services.orchestrator.create_session(
        source.search_params,
        user_id=request.user_id,
        cv_id=source.cv_id,
        retry_count=source.retry_count + 1,
    )
    background_tasks.add_task(services.orchestrator.run_session, session)
    logger.info(f"Retrying session {session_id} as {session.id}")

    return ScrapeStartedResponse(
        session_id=session.id,
        status=session.status.value,
        message=f"Retry of session {session_id} started",
    )


# ============================================================================
# Session Endpoints
# ============================================================================

@app.get("/linkedin/sessions")
async def list_sessions(user_id: str, services: Services = Depends(get_services)):
    """All sessions of a user, newest first."""
    return services.status.list_sessions(user_id)


@app.get("/linkedin/sessions/{session_id}")
async def get_session(session_id: str, user_id: str, services: Services = Depends(get_services)):
    """Session status with progress percentage and time remaining."""
    return services.status.get_status(session_id, user_id)


@app.get("/linkedin/sessions/{session_id}/jobs")
async def get_session_jobs(session_id: str, user_id: str, services: Services = Depends(get_services)):
    jobs = services.status.list_jobs(session_id, user_id)
    return {
        "session_id": session_id,
        "total": len(jobs),
        "jobs": jobs,
    }


@app.post("/linkedin/sessions/{session_id}/progress")
async def report_progress(
    session_id: str,
    request: ProgressReportRequest,
    services: Services = Depends(get_services),
):
    return services.status.report_progress(session_id, request.user_id, request.progress)


@app.post("/linkedin/sessions/{session_id}/pause")
async def pause_session(session_id: str, request: UserRequest, services: Services = Depends(get_services)):
    return services.status.pause(session_id, request.user_id)


@app.post("/linkedin/sessions/{session_id}/resume")
async def resume_session(session_id: str, request: UserRequest, services: Services = Depends(get_services)):
    return services.status.resume(session_id, request.user_id)


@app.post("/linkedin/sessions/{session_id}/cancel")
async def cancel_session(session_id: str, request: UserRequest, services: Services = Depends(get_services)):
    return services.status.cancel(session_id, request.user_id)


@app.post("/linkedin/sessions/{session_id}/export")
async def export_session(session_id: str, request: ExportRequest, services: Services = Depends(get_services)):
    """Export the stored jobs of a session to a new spreadsheet."""
    config = None
    if request.spreadsheet_name or request.share_with_user:
        config = SheetExportConfig(
            spreadsheet_name=request.spreadsheet_name or f"LinkedIn Jobs - {session_id}",
            worksheet_name=get_settings().google_sheets.worksheet_name,
            share_with_user=request.share_with_user,
        )
    try:
        url = services.status.export_session(session_id, request.user_id, config)
    except NothingToExportError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except ExportUnavailableError as e:
        raise HTTPException(status_code=503, detail=str(e))
    except SessionNotFoundError:
        raise
    except Exception as e:
        logger.error(f"Export error: {e}")
        raise HTTPException(status_code=502, detail=f"Spreadsheet export failed: {e}")

    return APIResponse(success=True, message="Jobs exported", data={"google_sheets_url": url})


@app.get("/linkedin/sessions/{session_id}/export")
async def download_session_jobs(
    session_id: str,
    user_id: str,
    format: Literal["json", "csv"] = "json",
    services: Services = Depends(get_services),
):
    """Download the stored jobs of a session as JSON or a CSV attachment."""
    try:
        jobs = services.status.export_jobs(session_id, user_id)
    except NothingToExportError as e:
        raise HTTPException(status_code=404, detail=str(e))

    if format == "csv":
        return StreamingResponse(
            iter([jobs_to_csv(jobs)]),
            media_type="text/csv",
            headers={"Content-Disposition": f'attachment; filename="linkedin-jobs-{session_id}.csv"'},
        )

    session = services.status.get_status(session_id, user_id)
    return {
        "session": session,
        "jobs": jobs,
        "export_options": {
            "total_jobs": len(jobs),
            "formats": ["json", "csv", "google-sheets"],
            "google_sheets_url": session.google_sheets_url,
        },
    }


@app.delete("/linkedin/sessions/{session_id}")
async def delete_session(session_id: str, user_id: str, services: Services = Depends(get_services)):
    services.status.delete_session(session_id, user_id)
    return APIResponse(success=True, message=f"Session {session_id} deleted")


@app.delete("/linkedin/sessions")
async def cleanup_sessions(
    user_id: str,
    older_than_days: int = 30,
    services: Services = Depends(get_services),
):
    """Delete a user's sessions older than N days."""
    if older_than_days < 0:
        raise HTTPException(status_code=400, detail="older_than_days must not be negative")
    deleted = services.status.cleanup_old_sessions(user_id, older_than_days)
    return APIResponse(success=True, message=f"Deleted {deleted} sessions", data={"deleted": deleted})


# ============================================================================
# Job Endpoints
# ============================================================================

@app.get("/linkedin/jobs")
async def list_jobs(
    user_id: str,
    application_status: Optional[ApplicationStatus] = None,
    services: Services = Depends(get_services),
):
    jobs = services.status.list_user_jobs(user_id, application_status)
    return {"total": len(jobs), "jobs": jobs}


@app.patch("/linkedin/jobs/{job_id}")
async def update_job(job_id: str, request: JobStatusUpdateRequest, services: Services = Depends(get_services)):
    """Update the application status (and notes) of a scraped job."""
    return services.status.update_job_status(
        job_id, request.user_id, request.application_status, request.notes
    )


@app.delete("/linkedin/jobs/{job_id}")
async def delete_job(job_id: str, user_id: str, services: Services = Depends(get_services)):
    services.status.delete_job(job_id, user_id)
    return APIResponse(success=True, message=f"Job {job_id} deleted")


# ============================================================================
# Live Updates (SSE + WebSocket)
# ============================================================================

@app.get("/linkedin/sessions/{session_id}/stream")
async def stream_session(session_id: str, user_id: str, services: Services = Depends(get_services)):
    """
    Server-Sent Events stream of session status.

    Sends one `status` event, then `update` events until the session
    finishes or the subscription reaches its maximum lifetime.
    """
    subscription = services.status.subscribe(session_id, user_id)

    async def event_stream():
        try:
            async for event in subscription.events():
                yield f"data: {json.dumps(event)}\n\n"
            yield f"data: {json.dumps({'type': 'done', 'reason': subscription.close_reason})}\n\n"
        finally:
            await subscription.close()

    return StreamingResponse(event_stream(), media_type="text/event-stream")


@app.websocket("/ws/sessions/{session_id}")
async def session_websocket(
    websocket: WebSocket,
    session_id: str,
    user_id: str,
    services: Services = Depends(get_services),
):
    """
    WebSocket variant of the session stream.

    Messages:
    - {"type": "status" | "update", "data": {...}}
    - {"type": "error", "message": "..."}
    - {"type": "done", "reason": "terminal" | "timeout" | "error"}
    """
    await websocket.accept()

    try:
        subscription = services.status.subscribe(session_id, user_id)
    except SessionNotFoundError as e:
        await websocket.send_json({"type": "error", "message": str(e)})
        await websocket.close(code=4404)
        return

    try:
        async with subscription:
            async for event in subscription.events():
                await websocket.send_json(event)
            await websocket.send_json({"type": "done", "reason": subscription.close_reason})
        await websocket.close()
    except WebSocketDisconnect:
        logger.info(f"WebSocket for session {session_id} disconnected")


# ============================================================================
# Startup Event
# ============================================================================

@app.on_event("startup")
async def startup_event():
    """Initialize on startup."""
    logger.info("JobScout API starting up...")


@app.on_event("shutdown")
async def shutdown_event():
    """Cleanup on shutdown."""
    logger.info("JobScout API shutting down...")


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
