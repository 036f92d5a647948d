"""
XhoraProc Exam Service - FastAPI Application
"""
import time
import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from . import __version__
from .config import settings
from .api import router as exam_router, shutdown_exams
from .utils.logging_config import setup_logging

logger = logging.getLogger(__name__)


# Create FastAPI app
app = FastAPI(
    title=settings.APP_NAME,
    description="Timed multiple-choice exams with camera and microphone proctoring",
    version=__version__,
    docs_url="/docs" if settings.DEBUG else None,
    redoc_url="/redoc" if settings.DEBUG else None
)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    """Log all incoming requests with timing."""
    start = time.time()
    path = request.url.path

    response = await call_next(request)

    if path not in ["/health", "/favicon.ico"]:
        duration_ms = int((time.time() - start) * 1000)
        logger.info(f"{request.method} {path} -> {response.status_code} in {duration_ms}ms")

    return response


app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=False,  # Must be False when using wildcard origin
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(exam_router)


@app.on_event("startup")
async def startup_event():
    setup_logging(
        service_name="xhoraproc",
        level=settings.LOG_LEVEL,
        log_to_file=settings.LOG_TO_FILE
    )
    logger.info(f"Exam duration: {settings.EXAM_DURATION_SECONDS}s, questions: {settings.QUESTION_LIMIT}")
    logger.info(f"Monitoring enabled: {settings.MONITORING_ENABLED}")


@app.on_event("shutdown")
async def shutdown_event():
    await shutdown_exams()


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {
        "status": "healthy",
        "service": settings.APP_NAME,
        "version": __version__
    }


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "message": settings.APP_NAME,
        "docs": "/docs" if settings.DEBUG else "Disabled in production"
    }
