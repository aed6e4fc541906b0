from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse
import logging

from exam_engine.core.config import settings
from exam_engine.core.database import SessionLocal, create_db_and_tables
from exam_engine.core.cache import cache
from exam_engine.core.events import event_bus
from exam_engine.api.v1.api import api_router
from exam_engine.services.event_handlers import register_default_subscribers
from exam_engine.middleware.performance import PerformanceMiddleware
from exam_engine.middleware.timezone import TimezoneMiddleware

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

app = FastAPI(
    title="Exam Engine API",
    description="Exam attempt lifecycle: sessions, timed attempts, shuffled questions, scoring and proctoring",
    version="1.0.0",
    docs_url="/docs" if settings.environment == "development" else None,
    redoc_url="/redoc" if settings.environment == "development" else None
)

app.add_middleware(GZipMiddleware, minimum_size=1000)

app.add_middleware(TimezoneMiddleware)

app.add_middleware(
    PerformanceMiddleware,
    slow_request_threshold=settings.slow_request_threshold
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.error(f"Unhandled exception on {request.method} {request.url.path}: {exc}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content={
            "success": False,
            "kind": "internal_error",
            "message": "An unexpected error occurred. Please try again later.",
            "request_id": getattr(request.state, 'request_id', 'unknown')
        }
    )


_subscribers_registered = False


@app.on_event("startup")
async def startup_event():
    """Application startup tasks"""
    global _subscribers_registered
    logger.info("Starting Exam Engine API...")

    create_db_and_tables()
    logger.info("Database initialized")

    if not _subscribers_registered:
        register_default_subscribers(event_bus, SessionLocal, cache)
        _subscribers_registered = True
        logger.info("Event subscribers registered")

    if cache.enabled:
        if cache.health_check():
            logger.info("Cache connection established")
        else:
            logger.warning("Cache connection failed - running without cache")
    else:
        logger.info("Cache disabled by configuration")

    logger.info("Exam Engine API startup completed")


@app.on_event("shutdown")
async def shutdown_event():
    """Application shutdown tasks"""
    logger.info("Shutting down Exam Engine API...")
    try:
        cache.close()
        logger.info("Cache connections closed")
    except Exception as e:
        logger.error(f"Error closing cache connections: {e}")
    logger.info("Exam Engine API shutdown completed")


app.include_router(api_router, prefix="/api/v1")


@app.get("/")
async def read_root():
    return {
        "message": "Exam Engine API",
        "version": "1.0.0",
    }
