from contextlib import asynccontextmanager
from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from loguru import logger
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
import sys
import os

from gradescan.core.config import settings
from gradescan.utils.exceptions import GradeScanError
from gradescan.services.pipeline import pipeline
from gradescan.api.routes import api_router
from gradescan.api.v1.routes import limiter

# logging
logger.remove()
logger.add(
    sys.stdout,
    format="<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | <cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - <level>{message}</level>",
    level=settings.log_level
)

# creating logs directory
os.makedirs(os.path.dirname(settings.log_file) or ".", exist_ok=True)
logger.add(
    settings.log_file,
    rotation="10 MB",
    retention="7 days",
    level=settings.log_level
)

#  safe initialize and shut down
@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info(f"Starting {settings.app_name} v{settings.app_version}")

    if not settings.validate_llm_config():
        logger.warning("No Gemini API key configured, scans fall back to manual entry unless a key is sent per request")

    await pipeline.scanner.initialize()
    logger.info(f"Scan service ready: {pipeline.scanner.status()}")

    yield

    # Shutdown
    await pipeline.scanner.cleanup()
    logger.info("Shutting down application")


app = FastAPI(
    title=settings.app_name,
    description="""
## GradeScan

Reads report cards and class grade sheets with a vision model, proposes
corrections against the existing gradebook, validates the result and
saves it once reviewed.
    """,
    version=settings.app_version,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json",
    lifespan=lifespan
)

# Add rate limiter to app state
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # restrict to the app's domains in production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# global exception handlers
@app.exception_handler(GradeScanError)
async def grade_scan_error_handler(
    request: Request,
    exc: GradeScanError
):
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={
            "success": False,
            "error": exc.message,
            "error_code": exc.error_code,
            "details": exc.details
        }
    )


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception):
    logger.exception(f"Unhandled exception: {exc}")
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "success": False,
            "error": "An unexpected error occurred",
            "error_code": "INTERNAL_ERROR",
            "details": {"message": str(exc)} if settings.debug else {}
        }
    )


# api routes
app.include_router(api_router, prefix="/api", tags=["Scan"])


@app.get("/", tags=["root"])
async def root():
    """Root endpoint - API information"""
    return {
        "name": settings.app_name,
        "version": settings.app_version,
        "description": "Report card scanning and grade entry API",
        "docs": "/docs",
        "health": "/api/v1/health",
        "scan": "/api/v1/scan",
        "scan_multi": "/api/v1/scan/multi"
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "gradescan.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug
    )
