import time
import asyncio
import logging
from contextlib import asynccontextmanager, suppress
from fastapi import FastAPI, Request
from kb_ingest.api.routers import health, ingest, status
from kb_ingest.background.watchdog import watchdog_loop
from kb_ingest.config import settings
from kb_ingest.dependencies import get_ingestion_pipeline, get_job_processor
from kb_ingest.utils.logger import setup_logging

# Configure logging
setup_logging()
logger = logging.getLogger(__name__)

@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Starts the stuck job watchdog on startup. On shutdown, stops it, waits for
    running pipelines and closes the HTTP clients.
    """
    logger.info("Application startup...")
    processor = app.dependency_overrides.get(get_job_processor, get_job_processor)()
    watchdog = asyncio.create_task(
        watchdog_loop(processor, settings.WATCHDOG_INTERVAL_SECONDS, settings.WATCHDOG_THRESHOLD_SECONDS)
    )
    yield # Application runs
    logger.info("Application shutdown...")
    watchdog.cancel()
    with suppress(asyncio.CancelledError):
        await watchdog
    await processor.wait_for_active()
    if get_ingestion_pipeline not in app.dependency_overrides and get_ingestion_pipeline.cache_info().currsize:
        pipeline = get_ingestion_pipeline()
        await pipeline.downloader.aclose()
        await pipeline.embedder.aclose()

# Create FastAPI app instance
app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description="Background ingestion of documents into a retrieval-ready knowledge base.",
    lifespan=lifespan
)

# Add a middleware to log requests
@app.middleware("http")
async def log_requests(request: Request, call_next):
    """
    Middleware to log incoming requests and their processing time.
    """
    start_time = time.time()
    logger.info(f"Incoming request: {request.method} {request.url.path}")
    response = await call_next(request)
    process_time = time.time() - start_time
    logger.info(f"Request finished: {request.method} {request.url.path} with status {response.status_code} in {process_time:.4f}s")
    return response

# Include API routers
app.include_router(health.router, prefix=settings.API_PREFIX, tags=["Health"])
app.include_router(ingest.router, prefix=settings.API_PREFIX, tags=["Ingestion"])
app.include_router(status.router, prefix=settings.API_PREFIX, tags=["Status"])

@app.get("/", tags=["Root"])
async def read_root():
    """
    Root endpoint providing a welcome message.
    """
    return {"message": f"Welcome to {settings.APP_NAME}!"}
