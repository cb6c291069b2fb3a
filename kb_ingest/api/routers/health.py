from datetime import datetime
from fastapi import APIRouter, Depends

from kb_ingest.config import settings
from kb_ingest.dependencies import get_job_processor
from kb_ingest.models.schemas import HealthCheckResponse
from kb_ingest.services.job_processor import JobProcessor

router = APIRouter()

@router.get("/health", response_model=HealthCheckResponse, summary="Perform a health check")
async def health_check(processor: JobProcessor = Depends(get_job_processor)):
    """
    Reports service liveness and the number of job pipelines currently running.
    """
    return HealthCheckResponse(
        status="ok",
        timestamp=datetime.utcnow(),
        version=settings.APP_VERSION,
        active_jobs=len(processor.active_job_ids),
    )
