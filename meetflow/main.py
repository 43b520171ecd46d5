"""
FastAPI application for the meeting lifecycle pipeline
Components are built once per app and shared through app.state
"""

import logging
import time
import uuid
from contextlib import asynccontextmanager
from typing import Optional

import httpx
import structlog
from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from openai import AsyncOpenAI

from . import __version__
from .analysis.qualification_scorer import QualificationScorer
from .audio.transcriber import TranscriptionWorker, WhisperTranscriber
from .config import Settings, get_settings
from .database.init_db import DatabaseManager
from .dialers.adapters import ProviderAdapter
from .dialers.client import RecordingDownloader
from .dialers.webhooks import WebhookHandler
from .errors import PipelineError
from .qualification.state_machine import QualificationStateMachine
from .retention.cleanup import RetentionScheduler
from .services.acquisition import RecordingAcquisitionService
from .services.scoring import ScoringService
from .storage.recordings import RecordingStorage, build_storage
from .tasks.scheduler import TaskScheduler
from .utils.helpers import utc_now
from .utils.security import SecurityManager
from .web.routers import cron, disputes, meetings, recordings, scoring, webhooks

logger = structlog.get_logger("meetflow.main")


def configure_logging(settings: Settings) -> None:
    """Setup structured logging"""
    logging.basicConfig(format="%(message)s", level=getattr(logging, settings.log_level))

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            structlog.processors.JSONRenderer()
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


def build_components(
    app: FastAPI,
    settings: Settings,
    storage: Optional[RecordingStorage] = None,
    openai_client: Optional[AsyncOpenAI] = None,
    http_transport: Optional[httpx.AsyncBaseTransport] = None
) -> None:
    """Construct every pipeline component and attach it to app.state"""
    state = app.state
    state.settings = settings
    state.security = SecurityManager(settings)
    state.db = DatabaseManager(settings)
    state.storage = storage if storage is not None else build_storage(settings, state.security)

    downloader = RecordingDownloader(settings, state.security, transport=http_transport)
    state.acquisition = RecordingAcquisitionService(settings, state.storage, downloader)
    state.webhook_handler = WebhookHandler(ProviderAdapter(state.security), state.acquisition)

    state.scorer = QualificationScorer(settings, client=openai_client)
    state.scoring = ScoringService(state.scorer)
    state.state_machine = QualificationStateMachine(settings)

    state.transcription_worker = None
    if settings.enable_transcription:
        state.transcription_worker = TranscriptionWorker(
            settings,
            state.db,
            state.storage,
            WhisperTranscriber(settings, transport=http_transport),
            scoring=state.scoring,
        )

    state.retention = RetentionScheduler(settings, state.db, state.storage)
    state.scheduler = TaskScheduler(settings, state.retention)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan management"""
    state = app.state
    logger.info("Starting meetflow", version=__version__, environment=state.settings.environment)

    await state.db.init_database()
    await state.scheduler.start()
    logger.info("Application startup completed")

    try:
        yield
    finally:
        logger.info("Shutting down application")
        await state.scheduler.stop()
        await state.db.close()
        logger.info("Application shutdown completed")


def error_response(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={
            "error": {
                "code": status_code,
                "message": message,
                "timestamp": utc_now().isoformat()
            }
        }
    )


def register_handlers(app: FastAPI) -> None:
    """Request logging middleware and error handlers"""

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        """Log all requests"""
        start = time.perf_counter()
        request_id = uuid.uuid4().hex[:12]

        logger.info(
            "Request started",
            request_id=request_id,
            method=request.method,
            path=request.url.path,
            client_ip=request.client.host if request.client else None
        )

        try:
            response = await call_next(request)
        except Exception as e:
            logger.error(
                "Request failed",
                request_id=request_id,
                error=str(e),
                duration_seconds=round(time.perf_counter() - start, 3)
            )
            raise

        logger.info(
            "Request completed",
            request_id=request_id,
            status_code=response.status_code,
            duration_seconds=round(time.perf_counter() - start, 3)
        )
        return response

    @app.exception_handler(PipelineError)
    async def pipeline_error_handler(request: Request, exc: PipelineError):
        """Log full context, return a safe message"""
        log = logger.error if exc.status_code >= 500 else logger.warning
        log(
            "Pipeline error",
            error_type=type(exc).__name__,
            status_code=exc.status_code,
            request_path=request.url.path,
            **exc.to_log()
        )
        message = exc.public_message if exc.status_code >= 500 else exc.message
        return error_response(exc.status_code, message)

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        logger.warning("Request validation failed", path=request.url.path, errors=str(exc.errors()))
        return error_response(400, "Invalid request")

    @app.exception_handler(HTTPException)
    async def http_exception_handler(request: Request, exc: HTTPException):
        """Handle HTTP exceptions"""
        return error_response(exc.status_code, exc.detail)

    @app.exception_handler(Exception)
    async def general_exception_handler(request: Request, exc: Exception):
        """Handle general exceptions"""
        logger.error(f"Unhandled exception: {exc}", path=request.url.path, exc_info=True)
        return error_response(500, "Internal server error")


def create_app(
    settings: Optional[Settings] = None,
    storage: Optional[RecordingStorage] = None,
    openai_client: Optional[AsyncOpenAI] = None,
    http_transport: Optional[httpx.AsyncBaseTransport] = None
) -> FastAPI:
    """Application factory"""
    settings = settings or get_settings()
    configure_logging(settings)

    app = FastAPI(
        title="meetflow",
        description="Meeting lifecycle pipeline: dialer ingestion, qualification and retention",
        version=__version__,
        lifespan=lifespan,
        docs_url="/docs" if settings.is_development else None,
        redoc_url="/redoc" if settings.is_development else None
    )
    build_components(app, settings, storage, openai_client, http_transport)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"] if settings.is_development else [],
        allow_credentials=True,
        allow_methods=["GET", "POST"],
        allow_headers=["*"],
    )
    register_handlers(app)

    for module in (webhooks, meetings, disputes, recordings, scoring, cron):
        app.include_router(module.router)

    @app.get("/health")
    async def health_check():
        """Database connectivity check"""
        healthy = await app.state.db.ping()
        return JSONResponse(
            status_code=200 if healthy else 503,
            content={
                "status": "healthy" if healthy else "unhealthy",
                "database": healthy,
                "version": __version__,
                "timestamp": utc_now().isoformat()
            }
        )

    return app


if __name__ == "__main__":
    import uvicorn

    settings = get_settings()

    uvicorn.run(
        "meetflow.main:create_app",
        factory=True,
        host="0.0.0.0",
        port=8000,
        reload=settings.is_development,
        log_level=settings.log_level.lower(),
        access_log=True
    )
