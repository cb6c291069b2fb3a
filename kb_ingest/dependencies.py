"""
Service wiring and dependencies for FastAPI endpoints
"""
from functools import lru_cache

from kb_ingest.background.ingestion import IngestionPipeline
from kb_ingest.config import settings
from kb_ingest.core.downloader import Downloader
from kb_ingest.core.embedder import Embedder
from kb_ingest.services.file_storage import BaseFileStorage, LocalFileStorage
from kb_ingest.services.job_processor import JobProcessor
from kb_ingest.services.job_store import create_job_store
from kb_ingest.services.knowledge_base import create_knowledge_base
from kb_ingest.services.progress_reporter import ProgressReporter
from kb_ingest.utils.rate_limiter import RateLimiter


@lru_cache
def get_job_processor() -> JobProcessor:
    store = create_job_store(settings)
    return JobProcessor(
        store=store,
        reporter=ProgressReporter(store),
        max_concurrent_jobs=settings.MAX_CONCURRENT_JOBS,
    )


@lru_cache
def get_file_storage() -> BaseFileStorage:
    return LocalFileStorage(settings.FILE_STORAGE_PATH, max_size_bytes=settings.MAX_UPLOAD_BYTES)


@lru_cache
def get_ingestion_pipeline() -> IngestionPipeline:
    return IngestionPipeline(
        processor=get_job_processor(),
        file_storage=get_file_storage(),
        downloader=Downloader(
            user_agent=settings.DOWNLOAD_USER_AGENT,
            request_timeout=settings.DOWNLOAD_TIMEOUT_SECONDS,
            max_retries=settings.DOWNLOAD_MAX_RETRIES,
        ),
        embedder=Embedder(),
        knowledge_base=create_knowledge_base(settings.KNOWLEDGE_BASE_BACKEND, settings.VECTOR_STORE_PATH),
        bucket=settings.STORAGE_BUCKET,
        upload_prefix=settings.UPLOAD_PREFIX,
        chunk_size=settings.CHUNK_SIZE,
        chunk_overlap=settings.CHUNK_OVERLAP,
        min_chunk_size=settings.CHUNK_MIN_SIZE,
        embedding_concurrency=settings.EMBEDDING_CONCURRENCY,
        progress_interval=settings.PROGRESS_REPORT_INTERVAL,
        rate_limiter=RateLimiter(settings.EMBEDDING_RATE_LIMIT) if settings.EMBEDDING_RATE_LIMIT > 0 else None,
    )
