import logging
from fastapi import APIRouter, Depends, HTTPException, status
from typing import List

from kb_ingest.config import settings
from kb_ingest.dependencies import get_job_processor
from kb_ingest.errors import NotFoundError
from kb_ingest.models.schemas import CancelResponse, JobStatusResponse
from kb_ingest.services.job_processor import JobProcessor

logger = logging.getLogger(__name__)
router = APIRouter()

@router.get("/status/{job_id}", response_model=JobStatusResponse, summary="Get job status")
async def get_job_status(job_id: str, processor: JobProcessor = Depends(get_job_processor)):
    """
    Retrieves the current status and progress of a specific job.
    """
    try:
        job = processor.get_job(job_id)
    except NotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))

    logger.info(f"Retrieved status for job {job_id}: {job.status.value}")
    return JobStatusResponse.from_job(job)

@router.delete("/status/{job_id}", response_model=CancelResponse, summary="Cancel a job")
async def cancel_job(job_id: str, processor: JobProcessor = Depends(get_job_processor)):
    """
    Cancels a pending or processing job. The pipeline stops at its next stage
    boundary. Finished jobs cannot be cancelled.
    """
    try:
        job = processor.get_job(job_id)
    except NotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))

    if job.is_terminal:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Job is {job.status.value} and cannot be cancelled"
        )

    job = processor.cancel(job_id)
    return CancelResponse(job_id=job.id, status=job.status, message="Job cancelled successfully")

@router.get("/health/jobs", response_model=List[JobStatusResponse], summary="List jobs that stopped reporting progress")
async def get_stuck_jobs(processor: JobProcessor = Depends(get_job_processor)):
    """
    Retrieves jobs that are not in a terminal state and whose last update is
    older than WATCHDOG_THRESHOLD_SECONDS. These are candidates for being
    marked as failed by the watchdog.
    """
    stuck_jobs = processor.find_stuck_jobs(settings.WATCHDOG_THRESHOLD_SECONDS)
    return [JobStatusResponse.from_job(job) for job in stuck_jobs]
