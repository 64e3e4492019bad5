"""
CEP Automation API - FastAPI Backend
Accepts CEP download requests, runs them in the background and reports their status.
"""

import time
from contextlib import asynccontextmanager
from datetime import date, datetime
from typing import List, Optional

from fastapi import Depends, FastAPI, HTTPException, Request, status
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, EmailStr, Field, field_validator, model_validator

from api.config import AppConfig, config
from api.logging_config import log_browser_event, log_job_event, log_request, logger, setup_logging
from api.repository import SupabasePaymentRepository
from api.storage import SupabaseArtifactStorage
from browser.stealth import describe_engines
from core.errors import JobNotFoundError
from core.fallback import BrowserFallbackOrchestrator
from core.file_manager import FileManager
from core.job_manager import JobLifecycleManager
from core.job_store import JobStore
from core.models import FormatType, JobStatus

VERSION = "1.0.0"


def build_manager(cfg: Optional[AppConfig] = None) -> JobLifecycleManager:
    """Wire the job manager to Supabase, Playwright and the local data directory."""
    cfg = cfg or config
    files = FileManager(cfg.DATA_DIR)
    files.initialize_directories()
    orchestrator = BrowserFallbackOrchestrator(
        files,
        policy=cfg.fallback_policy,
        automation_config=cfg.automation_config,
    )
    return JobLifecycleManager(
        JobStore(),
        SupabasePaymentRepository(),
        orchestrator,
        SupabaseArtifactStorage(),
        files,
        job_deadline=cfg.job_deadline,
    )


# === Pydantic Models with Validation ===

class YesterdayRequest(BaseModel):
    email: EmailStr
    format: FormatType = Field(default=FormatType.BOTH, examples=["pdf", "xml", "both"])

    @field_validator("format", mode="before")
    @classmethod
    def normalize_format(cls, v):
        # Accepts any casing and the portal's "ambos"
        return FormatType(v) if isinstance(v, str) else v


class RangeRequest(YesterdayRequest):
    start_date: date = Field(..., examples=["2024-03-01"])
    end_date: date = Field(..., examples=["2024-03-15"])

    @model_validator(mode="after")
    def check_order(self):
        if self.start_date > self.end_date:
            raise ValueError("start_date must be on or before end_date")
        return self


class JobAccepted(BaseModel):
    job_id: str
    status: JobStatus
    message: str


class JobView(BaseModel):
    job_id: str
    status: JobStatus
    email: str
    format: FormatType
    start_date: Optional[str] = None
    end_date: Optional[str] = None
    records_processed: Optional[int] = None
    token: Optional[str] = None
    result_reference: Optional[str] = None
    error: Optional[str] = None
    created_at: datetime
    completed_at: Optional[datetime] = None
    download_available: bool = False


def get_manager(request: Request) -> JobLifecycleManager:
    return request.app.state.manager


def create_app(manager: Optional[JobLifecycleManager] = None) -> FastAPI:
    """Build the API. Tests pass their own ``manager``; otherwise one is wired at startup."""

    # === Lifespan Management ===

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan management."""
        setup_logging(log_dir=config.LOG_DIR)
        logger.info("Starting CEP Automation API...")

        if manager is None:
            missing = config.validate()
            if missing:
                logger.warning(f"Missing configuration: {', '.join(missing)}")
            app.state.manager = build_manager()
        else:
            app.state.manager = manager

        for engine in describe_engines():
            log_browser_event(engine["name"], "registered", {"browser": engine["browser"], "profile": engine["profile"]})

        yield
        # Shutdown
        logger.info("Shutting down CEP Automation API...")
        await app.state.manager.shutdown()

    app = FastAPI(
        title="CEP Automation API",
        description="Downloads payment confirmation archives from the Banxico CEP portal",
        version=VERSION,
        lifespan=lifespan,
        docs_url="/docs" if config.DEBUG else None,
        redoc_url="/redoc" if config.DEBUG else None,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.CORS_ORIGINS,
        allow_methods=["GET", "POST"],
        allow_headers=["Content-Type"],
    )

    # === Request Logging Middleware ===

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        """Log all HTTP requests."""
        started = time.perf_counter()
        response = await call_next(request)
        log_request(request.method, request.url.path, response.status_code, (time.perf_counter() - started) * 1000)
        return response

    # === API Endpoints ===

    @app.get("/health")
    async def health():
        """Detailed health check."""
        return {
            "status": "healthy",
            "timestamp": datetime.now().isoformat(),
            "engines": describe_engines(),
            "version": VERSION,
        }

    @app.post("/cep/yesterday", status_code=status.HTTP_202_ACCEPTED, response_model=JobAccepted)
    async def create_yesterday_job(body: YesterdayRequest, jobs: JobLifecycleManager = Depends(get_manager)):
        """Queue a job for yesterday's payments."""
        job = await jobs.submit(body.email, body.format)
        log_job_event(job.id, "created", email=body.email)
        return JobAccepted(job_id=job.id, status=job.status, message="CEP processing started")

    @app.post("/cep/range", status_code=status.HTTP_202_ACCEPTED, response_model=JobAccepted)
    async def create_range_job(body: RangeRequest, jobs: JobLifecycleManager = Depends(get_manager)):
        """Queue a job for every payment between two dates, inclusive."""
        job = await jobs.submit(
            body.email,
            body.format,
            start_date=body.start_date.isoformat(),
            end_date=body.end_date.isoformat(),
        )
        log_job_event(job.id, f"created for {job.start_date}..{job.end_date}", email=body.email)
        return JobAccepted(job_id=job.id, status=job.status, message="CEP processing started")

    @app.get("/cep", response_model=List[JobView])
    async def list_jobs(jobs: JobLifecycleManager = Depends(get_manager)):
        return [job.to_dict() for job in await jobs.store.list()]

    @app.get("/cep/{job_id}", response_model=JobView)
    async def get_job(job_id: str, jobs: JobLifecycleManager = Depends(get_manager)):
        try:
            job = await jobs.store.require(job_id)
        except JobNotFoundError:
            raise HTTPException(status_code=404, detail="Job not found")
        return job.to_dict()

    @app.post("/cep/{job_id}/cancel", response_model=JobView)
    async def cancel_job(job_id: str, jobs: JobLifecycleManager = Depends(get_manager)):
        if job_id not in jobs.store:
            raise HTTPException(status_code=404, detail="Job not found")
        if not await jobs.cancel(job_id):
            raise HTTPException(status_code=409, detail="Job is not running")
        job = await jobs.store.require(job_id)
        log_job_event(job_id, "cancelled", email=job.email)
        return job.to_dict()

    return app


app = create_app()


# Run with: uvicorn api.main:app --reload --port 8080
if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host=config.HOST, port=config.PORT)
