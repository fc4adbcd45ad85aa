"""Reminder Sync Agent - FastAPI application."""

import logging
import sys
import os
from contextlib import asynccontextmanager
from typing import Dict, Optional

from fastapi import FastAPI, Request, status, HTTPException
from fastapi.responses import JSONResponse, Response
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel
import httpx

from shared.config import SyncSettings, get_sync_settings
from shared.models import ObservedExchange
from services.reminder_sync.credentials import CredentialSource, JsonFileStore, MemoryStore
from services.reminder_sync.engine import ReconciliationEngine
from services.reminder_sync.notifications import NotificationService, StatusBoard
from services.reminder_sync.repository import ReminderRepository
from services.reminder_sync.tap import TrafficTap
from services.reminder_sync.transport import Transport

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    handlers=[logging.StreamHandler(sys.stdout)]
)

logger = logging.getLogger(__name__)


class Agent:
    """Wires the sync components together for one process."""

    def __init__(self, settings: SyncSettings, client: Optional[httpx.AsyncClient] = None):
        self.settings = settings
        self.client = client or httpx.AsyncClient(base_url=settings.base_url)
        # Captured tokens go where the credential source reads them
        if settings.credential_storage_file:
            self.store = JsonFileStore(settings.credential_storage_file)
        else:
            self.store = MemoryStore()

        self.credentials = CredentialSource(
            self.store,
            settings.credential_storage_key,
            poll_interval=settings.credential_poll_interval,
            max_wait=settings.credential_max_wait
        )
        self.transport = Transport(self.client, settings)
        self.repository = ReminderRepository(self.transport, self.credentials, settings)
        self.status_board = StatusBoard()
        self.notifications = NotificationService()
        self.engine = ReconciliationEngine(
            self.repository,
            self.credentials,
            self.status_board,
            self.notifications,
            settings
        )
        self.tap = TrafficTap(
            self.engine,
            settings,
            credential_store=self.store,
            credentials=self.credentials
        )

    async def aclose(self):
        self.engine.close()
        await self.client.aclose()


agent: Optional[Agent] = None


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan context manager for startup and shutdown events."""
    global agent

    logger.info("Reminder Sync Agent starting up...")

    settings = get_sync_settings()
    agent = Agent(settings)
    logger.info(f"Agent initialized - API: {settings.base_url}, trigger field: {settings.trigger_field}")

    yield

    await agent.aclose()
    logger.info("Reminder Sync Agent shutting down...")


# Create FastAPI application
app = FastAPI(
    title="Reminder Sync Agent",
    description="Keeps service reminders in step with job service due dates",
    version="0.1.0",
    lifespan=lifespan
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # The forwarder runs inside the host page
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Error handling middleware
@app.middleware("http")
async def error_handling_middleware(request: Request, call_next):
    """Global error handling middleware."""
    try:
        response = await call_next(request)
        return response
    except Exception as exc:
        logger.error(f"Unhandled exception: {exc}", exc_info=True)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={
                "error": "Internal server error",
                "detail": str(exc)
            }
        )


@app.get("/health", status_code=status.HTTP_200_OK)
async def health_check():
    """Health check endpoint."""
    has_token = bool(agent and agent.credentials.store.get(agent.settings.credential_storage_key))
    return {
        "status": "healthy" if has_token else "degraded",
        "service": "reminder_sync",
        "version": "0.1.0",
        "dependencies": {
            "session_credential": "present" if has_token else "missing"
        }
    }


@app.get("/", status_code=status.HTTP_200_OK)
async def root():
    """Root endpoint."""
    return {
        "service": "Reminder Sync Agent",
        "version": "0.1.0",
        "status": "running"
    }


# Request/Response models
class ExchangeRequest(BaseModel):
    """One exchange observed by the in-page forwarder."""
    method: str
    url: str
    request_headers: Dict[str, str] = {}
    request_body: Optional[str] = None
    status_code: Optional[int] = None
    response_body: Optional[str] = None


class NavigationRequest(BaseModel):
    """The user entered or left a job page."""
    job_id: str
    action: str  # enter, leave


class StorageValueRequest(BaseModel):
    """A host storage value pushed by the forwarder."""
    value: str


class StatusResponse(BaseModel):
    """Latest status reported for a job."""
    job_id: str
    kind: str
    message: Optional[str] = None
    reminder_id: Optional[str] = None
    reminder_number: Optional[str] = None
    due_date: Optional[str] = None


@app.post("/exchanges", status_code=status.HTTP_202_ACCEPTED)
async def observe_exchange(request: ExchangeRequest):
    """
    Feed an observed host exchange to the traffic tap.

    Always accepted: the tap swallows anything it cannot read so the
    forwarder never sees a failure caused by host traffic.
    """
    agent.tap.observe_exchange(ObservedExchange(**request.model_dump()))
    return {"observed": True}


@app.post("/navigation", status_code=status.HTTP_202_ACCEPTED)
async def navigation(request: NavigationRequest):
    """Record that the user entered or left a job."""
    if request.action == "enter":
        agent.engine.navigated_to(request.job_id)
    elif request.action == "leave":
        agent.engine.navigated_away(request.job_id)
    else:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Unknown navigation action '{request.action}'"
        )
    return {"job_id": request.job_id, "action": request.action}


@app.put("/storage/{key}", status_code=status.HTTP_204_NO_CONTENT)
async def put_storage_value(key: str, request: StorageValueRequest):
    """Mirror a host storage value (e.g. the session credential envelope)."""
    agent.store.set(key, request.value)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@app.get("/jobs/{job_id}/status", response_model=StatusResponse, status_code=status.HTTP_200_OK)
async def get_job_status(job_id: str):
    """Latest reminder status for a job."""
    event = agent.status_board.get(job_id)

    if event is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"No status for job {job_id}"
        )

    reminder = event.reminder
    return StatusResponse(
        job_id=job_id,
        kind=event.kind,
        message=event.message,
        reminder_id=reminder.id if reminder else None,
        reminder_number=reminder.number if reminder else None,
        due_date=reminder.due_date if reminder else None
    )


if __name__ == "__main__":
    import uvicorn

    port = int(os.getenv("REMINDER_SYNC_PORT", 8010))
    uvicorn.run(app, host="0.0.0.0", port=port)
